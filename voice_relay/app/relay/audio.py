"""Bidirectional audio passthrough between Twilio and the realtime backend."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..protocol.realtime import input_audio_append
from ..protocol.twilio import build_clear_frame, build_mark_frame, build_media_frame
from ..session.models import Session

_LOGGER = logging.getLogger(__name__)

# Callback used to emit one JSON frame on the Twilio websocket.
InboundSender = Callable[[dict[str, Any]], Awaitable[None]]


class AudioRelay:
    """Reframes audio payloads between the two sockets of a session.

    Payloads are forwarded unchanged and in arrival order. Nothing is
    buffered, so ordering follows directly from the serialized handler loop
    that calls into this class.

    Every agent audio frame is followed by a Twilio ``mark``. Twilio echoes a
    mark once playback reaches it, so unacknowledged marks mean audio is
    still playing on the caller's side.
    """

    def __init__(self, emit_inbound: InboundSender) -> None:
        self._emit_inbound = emit_inbound

    async def forward_caller_audio(self, session: Session, payload: str) -> bool:
        """Sends one caller audio frame to the backend input buffer.

        Returns:
            ``False`` when there is no open backend to receive the frame.
        """
        backend = session.backend
        if backend is None or backend.closed or not payload:
            return False
        await backend.send_json(input_audio_append(payload))
        session.inbound_audio_frames += 1
        return True

    async def forward_agent_audio(self, session: Session, delta: str) -> bool:
        """Plays one backend audio delta to the caller.

        Returns:
            ``False`` when the stream identifier is not known yet.
        """
        if not session.id or not delta:
            return False
        await self._emit_inbound(build_media_frame(session.id, delta))
        mark_name = session.next_mark_name()
        session.outstanding_marks.add(mark_name)
        await self._emit_inbound(build_mark_frame(session.id, mark_name))
        session.agent_audio_frames += 1
        return True

    def on_playback_mark(self, session: Session, name: str) -> None:
        session.outstanding_marks.discard(name)

    def playback_active(self, session: Session) -> bool:
        return bool(session.outstanding_marks)

    async def clear_playback(self, session: Session) -> None:
        """Tells Twilio to discard every frame queued for playback.

        Frames already played are not recalled.
        """
        if not session.id:
            return
        await self._emit_inbound(build_clear_frame(session.id))
        dropped = len(session.outstanding_marks)
        session.outstanding_marks.clear()
        session.interruptions += 1
        _LOGGER.info(
            "User started speaking - cleared Twilio playback.",
            extra={"stream_sid": session.id, "dropped_marks": dropped},
        )
