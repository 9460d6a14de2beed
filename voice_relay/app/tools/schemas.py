"""Tool declarations advertised to the model and their argument models."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..errors import ToolArgumentError

CAPTURE_USER_TEXT = "capture_user_text"
END_CALL = "end_call"


class EndCallReason(str, Enum):
    USER_GOODBYE = "user_goodbye"
    EXPLICIT_REQUEST = "explicit_request"
    SILENCE_TIMEOUT = "silence_timeout"
    NO_INTENT = "no_intent"
    COMPLETED_TASK = "completed_task"


DEFAULT_END_CALL_REASON = EndCallReason.USER_GOODBYE


class CaptureUserTextArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""

    @field_validator("text")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()


class EndCallArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reason: EndCallReason = DEFAULT_END_CALL_REASON


ArgsT = TypeVar("ArgsT", bound=BaseModel)


def parse_tool_arguments(model: type[ArgsT], raw: str, *, tool_name: str, call_id: str) -> ArgsT:
    """Validates a function-call argument string against ``model``.

    An empty payload is treated as ``{}`` so defaults apply.

    Raises:
        ToolArgumentError: If the payload is not a JSON object or fails
            validation.
    """
    try:
        data: Any = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as exc:
        raise ToolArgumentError(
            f"Arguments for {tool_name} are not valid JSON", tool_name=tool_name, call_id=call_id
        ) from exc
    if not isinstance(data, dict):
        raise ToolArgumentError(
            f"Arguments for {tool_name} are not a JSON object", tool_name=tool_name, call_id=call_id
        )
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ToolArgumentError(
            f"Arguments for {tool_name} failed validation: {exc.error_count()} error(s)",
            tool_name=tool_name,
            call_id=call_id,
        ) from exc


def tool_declarations() -> list[dict[str, Any]]:
    """Returns the function tools declared in ``session.update``."""
    return [
        {
            "type": "function",
            "name": CAPTURE_USER_TEXT,
            "description": "Report the exact transcript of the latest user utterance to the server.",
            "parameters": {
                "type": "object",
                "properties": {
                    "text": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Exact transcript of the user's utterance in the user's language.",
                    },
                },
                "required": ["text"],
                "additionalProperties": False,
            },
        },
        {
            "type": "function",
            "name": END_CALL,
            "description": (
                "End the phone call when the user indicates the conversation is finished or requests to end."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "reason": {
                        "type": "string",
                        "enum": [reason.value for reason in EndCallReason],
                        "description": "Why the call is ending.",
                    },
                },
                "required": ["reason"],
                "additionalProperties": False,
            },
        },
    ]
