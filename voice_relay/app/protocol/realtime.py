"""OpenAI Realtime wire format.

Server events are parsed into a tagged union keyed on ``type``. Unknown
types fall back to the generic ``RealtimeEvent`` so new server events never
break a call.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ProtocolParseError

_LOGGER = logging.getLogger(__name__)

CHANNEL = "realtime"

AUDIO_DELTA_TYPES = ("response.audio.delta", "response.output_audio.delta")


class RealtimeEvent(BaseModel):
    """Server event the relay only logs."""

    model_config = ConfigDict(extra="allow")

    type: str
    event_id: str | None = None


class SessionCreatedEvent(RealtimeEvent):
    type: Literal["session.created"]
    session: dict[str, Any] = Field(default_factory=dict)


class SessionUpdatedEvent(RealtimeEvent):
    type: Literal["session.updated"]
    session: dict[str, Any] = Field(default_factory=dict)


class AudioDeltaEvent(RealtimeEvent):
    type: Literal["response.audio.delta", "response.output_audio.delta"]
    delta: str = ""
    response_id: str | None = None
    item_id: str | None = None


class SpeechStartedEvent(RealtimeEvent):
    type: Literal["input_audio_buffer.speech_started"]
    audio_start_ms: int | None = None
    item_id: str | None = None


class FunctionCallItem(BaseModel):
    """A function invocation the model embedded in its response output."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["function_call"]
    call_id: str = Field(min_length=1)
    name: str = ""
    arguments: str = ""

    @field_validator("arguments", mode="before")
    @classmethod
    def coerce_arguments(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value)


class ResponseBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    status: str | None = None
    output: list[Any] = Field(default_factory=list)

    @field_validator("output", mode="before")
    @classmethod
    def coerce_output(cls, value: Any) -> Any:
        return [] if value is None else value

    def function_calls(self) -> list[FunctionCallItem]:
        """Returns the well-formed function-call items of this response.

        Non-object entries and items without a usable ``call_id`` cannot be
        answered and are skipped.
        """
        calls: list[FunctionCallItem] = []
        for item in self.output:
            if not isinstance(item, dict) or item.get("type") != "function_call":
                continue
            try:
                calls.append(FunctionCallItem.model_validate(item))
            except ValidationError:
                _LOGGER.warning(
                    "Skipping malformed function_call output item.",
                    extra={"response_id": self.id, "item_keys": sorted(item.keys())},
                )
        return calls


class ResponseDoneEvent(RealtimeEvent):
    type: Literal["response.done"]
    response: ResponseBody = Field(default_factory=ResponseBody)


class ErrorEvent(RealtimeEvent):
    type: Literal["error"]
    error: dict[str, Any] = Field(default_factory=dict)


ServerEvent = Union[
    SessionCreatedEvent,
    SessionUpdatedEvent,
    AudioDeltaEvent,
    SpeechStartedEvent,
    ResponseDoneEvent,
    ErrorEvent,
    RealtimeEvent,
]

_EVENT_MODELS: dict[str, type[RealtimeEvent]] = {
    "session.created": SessionCreatedEvent,
    "session.updated": SessionUpdatedEvent,
    "response.audio.delta": AudioDeltaEvent,
    "response.output_audio.delta": AudioDeltaEvent,
    "input_audio_buffer.speech_started": SpeechStartedEvent,
    "response.done": ResponseDoneEvent,
    "error": ErrorEvent,
}


def parse_server_event(raw: str | bytes) -> ServerEvent:
    """Parses one backend websocket message into a typed server event.

    Raises:
        ProtocolParseError: If the message is not a JSON object with a
            string ``type`` or a known event does not match its shape.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolParseError("Realtime message is not valid JSON", channel=CHANNEL, raw=raw) from exc
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise ProtocolParseError("Realtime message has no event type", channel=CHANNEL, raw=raw)

    model = _EVENT_MODELS.get(data["type"], RealtimeEvent)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolParseError(
            f"Realtime {data['type']!r} event has an invalid shape: {exc.error_count()} error(s)",
            channel=CHANNEL,
            raw=raw,
        ) from exc


def session_update(session: dict[str, Any]) -> dict[str, Any]:
    return {"type": "session.update", "session": session}


def input_audio_append(audio: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio}


def function_call_output(call_id: str, output: dict[str, Any]) -> dict[str, Any]:
    """Builds the conversation item that answers one function call."""
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(output),
        },
    }


def response_create() -> dict[str, Any]:
    return {"type": "response.create"}
