"""Builds the one-time ``session.update`` configuration."""

from __future__ import annotations

from typing import Any

from ..agent.instructions import build_instructions
from ..config import settings
from ..tools.schemas import tool_declarations

# Twilio media streams carry 8 kHz mu-law in both directions.
TWILIO_AUDIO_FORMAT = "g711_ulaw"


def build_session_config() -> dict[str, Any]:
    """Returns the backend session config for one phone call.

    Turn detection both starts responses and interrupts them on caller
    speech, which is what drives barge-in on the relay side.
    """
    return {
        "turn_detection": {
            "type": settings.OPENAI_TURN_DETECTION_TYPE,
            "create_response": True,
            "interrupt_response": True,
        },
        "input_audio_format": TWILIO_AUDIO_FORMAT,
        "output_audio_format": TWILIO_AUDIO_FORMAT,
        "voice": settings.OPENAI_REALTIME_VOICE,
        "instructions": build_instructions(),
        "modalities": ["text", "audio"],
        "temperature": settings.OPENAI_TEMPERATURE,
        "tools": tool_declarations(),
        "tool_choice": "auto",
    }
