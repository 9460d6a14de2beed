"""Twilio Media Streams wire format.

Inbound frames are validated into typed models up front so handlers never
touch untyped JSON. Outbound frames are built by the ``build_*`` helpers.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ProtocolParseError

CHANNEL = "twilio"


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StreamStart(_Frame):
    """Payload of the ``start`` frame that opens a media stream."""

    stream_sid: str = Field(min_length=1, validation_alias=AliasChoices("streamSid", "streamId"))
    call_sid: str | None = Field(default=None, validation_alias="callSid")
    custom_parameters: dict[str, str] = Field(default_factory=dict, validation_alias="customParameters")


class StartFrame(_Frame):
    event: Literal["start"]
    start: StreamStart


class MediaPayload(_Frame):
    payload: str
    track: str | None = None

    @field_validator("payload")
    @classmethod
    def validate_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("media payload is not valid base64") from exc
        return value


class MediaFrame(_Frame):
    event: Literal["media"]
    media: MediaPayload


class MarkName(_Frame):
    name: str


class MarkFrame(_Frame):
    event: Literal["mark"]
    mark: MarkName


class StopFrame(_Frame):
    event: Literal["stop"]


class OtherFrame(_Frame):
    """Any frame the relay does not act on (``connected``, ``dtmf``, ...)."""

    model_config = ConfigDict(extra="allow")

    event: str = "unknown"


InboundFrame = Union[StartFrame, MediaFrame, MarkFrame, StopFrame, OtherFrame]

_FRAME_MODELS: dict[str, type[_Frame]] = {
    "start": StartFrame,
    "media": MediaFrame,
    "mark": MarkFrame,
    "stop": StopFrame,
}


def parse_inbound_frame(raw: str | bytes) -> InboundFrame:
    """Parses one Twilio websocket text frame into a typed model.

    Raises:
        ProtocolParseError: If the frame is not JSON or a known event does
            not match its expected shape.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolParseError("Twilio frame is not valid JSON", channel=CHANNEL, raw=raw) from exc
    if not isinstance(data, dict):
        raise ProtocolParseError("Twilio frame is not a JSON object", channel=CHANNEL, raw=raw)

    event = data.get("event")
    model = _FRAME_MODELS.get(event, OtherFrame) if isinstance(event, str) else OtherFrame
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        raise ProtocolParseError(
            f"Twilio {event!r} frame has an invalid shape: {exc.error_count()} error(s)",
            channel=CHANNEL,
            raw=raw,
        ) from exc


def build_media_frame(stream_sid: str, payload: str) -> dict[str, Any]:
    """Builds the frame that plays one chunk of agent audio to the caller."""
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def build_mark_frame(stream_sid: str, name: str) -> dict[str, Any]:
    """Builds a mark frame that Twilio echoes back once playback reaches it."""
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}


def build_clear_frame(stream_sid: str) -> dict[str, Any]:
    """Builds the frame that discards all audio queued for playback."""
    return {"event": "clear", "streamSid": stream_sid}
