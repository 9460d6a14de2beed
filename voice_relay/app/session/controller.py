"""Per-call lifecycle controller bridging Twilio and the realtime backend.

One ``SessionController`` exists per Twilio media-stream websocket:

1. ``main.py`` creates it for each websocket and awaits ``run()``.
2. ``run()`` accepts the websocket and starts the inbound reader task.
3. The inbound ``start`` frame opens the backend socket, starts the backend
   reader task and sends the one-time session config.
4. Both readers and the end-call timer only enqueue ``SessionMessage``
   objects. ``run()`` is the single consumer, so handlers for one call never
   overlap.
5. ``close()`` tears down both sockets exactly once, backend first.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..config import settings
from ..errors import ChannelConnectionError, ProtocolParseError
from ..observability import db as observability_db
from ..observability.logger import CallLogger
from ..protocol.realtime import (
    AudioDeltaEvent,
    ErrorEvent,
    ResponseDoneEvent,
    ServerEvent,
    SessionUpdatedEvent,
    SpeechStartedEvent,
    parse_server_event,
    session_update,
)
from ..protocol.twilio import InboundFrame, MarkFrame, MediaFrame, StartFrame, StopFrame, parse_inbound_frame
from ..realtime.client import BackendChannel, BackendConnector, open_realtime_connection
from ..realtime.session_config import build_session_config
from ..relay.audio import AudioRelay
from ..tools.dispatcher import ToolCallDispatcher
from .events import (
    BackendClosed,
    BackendEventReceived,
    GraceDelayElapsed,
    InboundClosed,
    InboundFrameReceived,
    SessionMessage,
)
from .models import Session, SessionState
from .store import SessionStore
from .termination import TerminationSequencer

_LOGGER = logging.getLogger(__name__)

CallLoggerFactory = Callable[[str, str | None], CallLogger]

_RELAYING_STATES = (SessionState.ACTIVE, SessionState.INTERRUPTED, SessionState.ENDING)


class SessionController:
    """Owns one ``Session`` and both of its sockets."""

    def __init__(
        self,
        websocket: WebSocket,
        *,
        store: SessionStore,
        connect_backend: BackendConnector = open_realtime_connection,
        settle_delay_s: float | None = None,
        grace_delay_s: float | None = None,
        call_logger_factory: CallLoggerFactory | None = None,
    ) -> None:
        """Initializes per-call state.

        Args:
            websocket: Twilio media-stream websocket, not yet accepted.
            store: Process-wide index of live sessions.
            connect_backend: Opens the realtime backend socket.
            settle_delay_s: Wait before sending ``session.update``; defaults
                to ``SESSION_UPDATE_DELAY_S``.
            grace_delay_s: Wait between end-call acknowledgment and teardown;
                defaults to ``END_CALL_GRACE_DELAY_S``.
            call_logger_factory: Builds the observability recorder; defaults
                to ``CallLogger`` when a database is configured.
        """
        self.websocket = websocket
        self.session = Session()
        self._store = store
        self._connect_backend = connect_backend
        self._settle_delay_s = settings.SESSION_UPDATE_DELAY_S if settle_delay_s is None else settle_delay_s
        if call_logger_factory is None and observability_db.is_enabled():
            call_logger_factory = CallLogger
        self._call_logger_factory = call_logger_factory
        self._call_logger: CallLogger | None = None

        self._queue: asyncio.Queue[SessionMessage] = asyncio.Queue()
        self._relay = AudioRelay(self._send_inbound_json)
        self._dispatcher = ToolCallDispatcher()
        self._termination = TerminationSequencer(
            grace_delay_s=settings.END_CALL_GRACE_DELAY_S if grace_delay_s is None else grace_delay_s,
            on_elapsed=self._enqueue_grace_elapsed,
        )

        self._inbound_reader_task: asyncio.Task[None] | None = None
        self._backend_reader_task: asyncio.Task[None] | None = None
        self._registered = False
        self._inbound_closed = False
        self._is_closing = False

    @property
    def state(self) -> SessionState:
        return self.session.state

    async def run(self) -> None:
        """Drives the session until it reaches ``CLOSED``.

        Handler failures that come from a socket tear the call down; any other
        handler exception is logged and also ends the call.
        """
        await self.on_inbound_connect()
        self._inbound_reader_task = asyncio.create_task(self._read_inbound())
        try:
            while not self.session.is_closed:
                message = await self._queue.get()
                await self._process(message)
        finally:
            await self.close(reason="session_loop_exit")
            await self._cancel_readers()

    async def _process(self, message: SessionMessage) -> None:
        try:
            if isinstance(message, InboundFrameReceived):
                await self.on_inbound_message(message.frame)
            elif isinstance(message, BackendEventReceived):
                await self.on_backend_message(message.event)
            elif isinstance(message, InboundClosed):
                await self.on_inbound_close(message.error)
            elif isinstance(message, BackendClosed):
                await self.on_backend_close(message.error)
            elif isinstance(message, GraceDelayElapsed):
                await self._on_grace_delay_elapsed()
        except ChannelConnectionError as exc:
            _LOGGER.warning("Connection failure; tearing down session: %s", exc, extra={"stream_sid": self.session.id})
            await self.close(reason="connection_error")
        except Exception:
            _LOGGER.exception("Session handler failed.", extra={"stream_sid": self.session.id})
            await self.close(reason="handler_error")

    async def on_inbound_connect(self) -> None:
        await self.websocket.accept()
        _LOGGER.info("Client connected.")

    async def on_inbound_message(self, frame: InboundFrame) -> None:
        """Routes one Twilio frame by event type."""
        if isinstance(frame, StartFrame):
            await self._handle_start(frame)
        elif isinstance(frame, MediaFrame):
            if self.session.state in _RELAYING_STATES:
                await self._relay.forward_caller_audio(self.session, frame.media.payload)
            else:
                _LOGGER.debug("Dropping caller audio before backend is ready.", extra={"state": self.session.state.value})
        elif isinstance(frame, MarkFrame):
            self._relay.on_playback_mark(self.session, frame.mark.name)
        elif isinstance(frame, StopFrame):
            _LOGGER.info("Incoming stream has stopped.", extra={"stream_sid": self.session.id})
            await self.close(reason="inbound_stopped")
        else:
            _LOGGER.debug("Received non-media event: %s", frame.event)

    async def on_backend_ready(self) -> None:
        """Sends the one-time session config and starts relaying."""
        session = self.session
        if session.state is not SessionState.AWAITING_BACKEND_READY or session.backend is None:
            return
        # Give the backend a moment to finish its own session setup.
        if self._settle_delay_s > 0:
            await asyncio.sleep(self._settle_delay_s)
        config = build_session_config()
        _LOGGER.debug("Sending session update.", extra={"stream_sid": session.id, "tools": len(config["tools"])})
        await session.backend.send_json(session_update(config))
        session.state = SessionState.ACTIVE

    async def on_backend_message(self, event: ServerEvent) -> None:
        """Routes one realtime server event by type."""
        session = self.session
        if event.type in settings.LOGGED_REALTIME_EVENT_TYPES:
            _LOGGER.info("Received event: %s", event.type, extra={"stream_sid": session.id})

        if isinstance(event, AudioDeltaEvent):
            await self._relay.forward_agent_audio(session, event.delta)
        elif isinstance(event, SpeechStartedEvent):
            await self._handle_speech_started()
        elif isinstance(event, ResponseDoneEvent):
            await self._handle_response_done(event)
        elif isinstance(event, SessionUpdatedEvent):
            _LOGGER.info("Session updated successfully.", extra={"stream_sid": session.id})
        elif isinstance(event, ErrorEvent):
            _LOGGER.warning("Realtime backend reported an error: %s", event.error, extra={"stream_sid": session.id})
            if self._call_logger:
                await self._call_logger.log_call_event(
                    event_type="backend_error",
                    payload=event.error,
                    direction="IN",
                    source="REALTIME",
                )

    async def on_inbound_close(self, error: BaseException | None = None) -> None:
        self._inbound_closed = True
        if error is not None:
            _LOGGER.warning("Twilio websocket failed: %s", error, extra={"stream_sid": self.session.id})
        _LOGGER.info("Client disconnected.", extra={"stream_sid": self.session.id})
        await self.close(reason="inbound_closed")

    async def on_backend_close(self, error: BaseException | None = None) -> None:
        if error is not None:
            _LOGGER.warning("Realtime websocket failed: %s", error, extra={"stream_sid": self.session.id})
        _LOGGER.info("Disconnected from the OpenAI Realtime API.", extra={"stream_sid": self.session.id})
        await self.close(reason="backend_closed")

    async def close(self, *, reason: str) -> None:
        """Tears down both sockets once; later calls are no-ops.

        The backend is always closed before the Twilio side.
        """
        if self._is_closing:
            return
        self._is_closing = True
        session = self.session
        _LOGGER.debug(
            "Closing session.",
            extra={"stream_sid": session.id, "reason": reason, "state": session.state.value},
        )

        if self._termination.cancel(session):
            _LOGGER.debug("Cancelled pending end-call close.", extra={"stream_sid": session.id})
        abandoned = session.abandon_tool_calls()
        if abandoned:
            _LOGGER.info(
                "Abandoned unresolved tool calls.",
                extra={"stream_sid": session.id, "call_ids": [call.call_id for call in abandoned]},
            )

        backend = session.backend
        session.backend = None
        if backend is not None:
            try:
                await backend.close()
            except Exception:
                _LOGGER.debug("Error closing realtime websocket.", exc_info=True)

        if not self._inbound_closed and self.websocket.client_state != WebSocketState.DISCONNECTED:
            try:
                await self.websocket.close()
            except Exception:
                _LOGGER.debug("Error closing Twilio websocket.", exc_info=True)
        self._inbound_closed = True

        if self._registered:
            self._store.remove(session.id)
            self._registered = False
        if self._call_logger:
            await self._call_logger.finalize_call(end_reason=session.end_reason or reason)

        session.state = SessionState.CLOSED
        _LOGGER.info(
            "Session closed.",
            extra={
                "stream_sid": session.id,
                "reason": reason,
                "inbound_audio_frames": session.inbound_audio_frames,
                "agent_audio_frames": session.agent_audio_frames,
                "interruptions": session.interruptions,
            },
        )

    async def _handle_start(self, frame: StartFrame) -> None:
        session = self.session
        if session.state is not SessionState.AWAITING_INBOUND_START:
            _LOGGER.warning("Ignoring repeated start frame.", extra={"stream_sid": session.id})
            return

        session.id = frame.start.stream_sid
        session.call_sid = frame.start.call_sid
        self._store.add(session)
        self._registered = True
        session.state = SessionState.AWAITING_BACKEND_READY
        _LOGGER.info("Incoming stream has started.", extra={"stream_sid": session.id, "call_sid": session.call_sid})

        if self._call_logger_factory is not None:
            self._call_logger = self._call_logger_factory(session.id, session.call_sid)
            await self._call_logger.ensure_call()
            await self._call_logger.log_call_event(
                event_type="start",
                payload=frame.start.model_dump(),
                direction="IN",
                source="TWILIO",
            )

        try:
            backend = await self._connect_backend()
        except ChannelConnectionError as exc:
            _LOGGER.error("Could not open realtime backend: %s", exc, extra={"stream_sid": session.id})
            await self.close(reason="backend_connect_failed")
            return

        session.backend = backend
        self._backend_reader_task = asyncio.create_task(self._read_backend(backend))
        await self.on_backend_ready()

    async def _handle_speech_started(self) -> None:
        session = self.session
        if not self._relay.playback_active(session):
            _LOGGER.debug("Speech started with no agent audio playing.", extra={"stream_sid": session.id})
            return
        if session.state is SessionState.ACTIVE:
            session.state = SessionState.INTERRUPTED
            await self._relay.clear_playback(session)
            session.state = SessionState.ACTIVE
        elif session.state is SessionState.ENDING:
            await self._relay.clear_playback(session)
        if self._call_logger:
            await self._call_logger.log_call_event(event_type="clear", direction="OUT", source="VOICE_RELAY")

    async def _handle_response_done(self, event: ResponseDoneEvent) -> None:
        calls = event.response.function_calls()
        if not calls:
            return
        outcome = await self._dispatcher.dispatch(
            self.session,
            calls,
            call_logger=self._call_logger,
            allow_continue=self.session.state is not SessionState.ENDING,
        )
        if outcome.end_reason is not None:
            self._termination.begin(self.session, outcome.end_reason)

    async def _on_grace_delay_elapsed(self) -> None:
        if self.session.state is SessionState.ENDING:
            await self.close(reason="end_call")

    async def _enqueue_grace_elapsed(self) -> None:
        await self._queue.put(GraceDelayElapsed())

    async def _send_inbound_json(self, payload: dict[str, Any]) -> None:
        """Serializes and sends one frame to Twilio.

        Raises:
            ChannelConnectionError: If the Twilio websocket is gone.
        """
        if self._inbound_closed:
            raise ChannelConnectionError("Twilio websocket is closed")
        try:
            await self.websocket.send_text(json.dumps(payload))
        except (WebSocketDisconnect, RuntimeError) as exc:
            self._inbound_closed = True
            raise ChannelConnectionError(f"Twilio websocket send failed: {exc}") from exc

    async def _read_inbound(self) -> None:
        error: BaseException | None = None
        try:
            while True:
                raw = await self.websocket.receive_text()
                try:
                    frame = parse_inbound_frame(raw)
                except ProtocolParseError as exc:
                    _LOGGER.warning("Dropping malformed Twilio frame: %s", exc, extra={"stream_sid": self.session.id})
                    continue
                await self._queue.put(InboundFrameReceived(frame))
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            error = exc
        await self._queue.put(InboundClosed(error))

    async def _read_backend(self, backend: BackendChannel) -> None:
        error: BaseException | None = None
        try:
            async for raw in backend.messages():
                try:
                    event = parse_server_event(raw)
                except ProtocolParseError as exc:
                    _LOGGER.warning("Dropping malformed realtime message: %s", exc, extra={"stream_sid": self.session.id})
                    continue
                await self._queue.put(BackendEventReceived(event))
        except Exception as exc:
            error = exc
        await self._queue.put(BackendClosed(error))

    async def _cancel_readers(self) -> None:
        """Cancels and drains reader tasks and any pending timer."""
        current = asyncio.current_task()
        for task in (self._inbound_reader_task, self._backend_reader_task):
            if task and task is not current and not task.done():
                task.cancel()
        for task in (self._inbound_reader_task, self._backend_reader_task):
            if task and task is not current:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        if self.session.close_timer is not None:
            await self.session.close_timer.wait_cancelled()
