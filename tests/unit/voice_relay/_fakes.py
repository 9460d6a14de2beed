from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

from fastapi import WebSocketDisconnect
from starlette.websockets import WebSocketState

from voice_relay.app.errors import ChannelConnectionError


def run(coro: Any) -> Any:
    return asyncio.run(coro)


async def wait_for(predicate: Callable[[], bool], *, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not met before timeout")
        await asyncio.sleep(0.001)


class FakeTwilioWebSocket:
    """Scripted stand-in for the FastAPI websocket Twilio connects on."""

    def __init__(self, timeline: list[str] | None = None) -> None:
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.timeline = timeline if timeline is not None else []
        self.sent_texts: list[str] = []
        self.accepted = False
        self.close_calls = 0
        self.client_state = WebSocketState.CONNECTED

    @property
    def sent(self) -> list[dict[str, Any]]:
        return [json.loads(text) for text in self.sent_texts]

    def push(self, frame: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, text: str) -> None:
        if self.client_state == WebSocketState.DISCONNECTED:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent_texts.append(text)

    async def receive_text(self) -> str:
        raw = await self._incoming.get()
        if raw is None:
            self.client_state = WebSocketState.DISCONNECTED
            raise WebSocketDisconnect(code=1000)
        return raw

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_calls += 1
        self.timeline.append("inbound_closed")
        self.client_state = WebSocketState.DISCONNECTED
        self._incoming.put_nowait(None)


class FakeBackend:
    """In-memory realtime backend channel."""

    def __init__(self, timeline: list[str] | None = None) -> None:
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        self.timeline = timeline if timeline is not None else []
        self.sent: list[dict[str, Any]] = []
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def sent_types(self) -> list[str]:
        return [payload["type"] for payload in self.sent]

    def push(self, event: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(event if isinstance(event, str) else json.dumps(event))

    def drop(self) -> None:
        self._incoming.put_nowait(None)

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise ChannelConnectionError("Realtime websocket is closed")
        self.sent.append(payload)

    async def messages(self):
        while True:
            raw = await self._incoming.get()
            if raw is None:
                return
            yield raw

    async def close(self) -> None:
        self.close_calls += 1
        self.timeline.append("backend_closed")
        self._closed = True
        self._incoming.put_nowait(None)


class FakeConnection:
    """Minimal asyncpg-like connection for observability writes."""

    def __init__(self) -> None:
        self.executed: list[tuple[str, tuple[Any, ...]]] = []

    async def execute(self, sql: str, *args: Any) -> str:
        self.executed.append((sql, args))
        return "INSERT 0 1"


class RecordingCallLogger:
    """Captures what the relay would persist for a call."""

    def __init__(self, stream_sid: str, call_sid: str | None = None) -> None:
        self.stream_sid = stream_sid
        self.call_sid = call_sid
        self.ensured = False
        self.call_events: list[dict[str, Any]] = []
        self.tool_calls: list[dict[str, Any]] = []
        self.transcripts: list[str] = []
        self.finalized_with: list[str | None] = []

    async def ensure_call(self) -> None:
        self.ensured = True

    async def log_call_event(self, **kwargs: Any) -> None:
        self.call_events.append(kwargs)

    async def log_tool_call(self, **kwargs: Any) -> None:
        self.tool_calls.append(kwargs)

    async def log_transcript(self, text: str) -> None:
        self.transcripts.append(text)

    async def finalize_call(self, *, end_reason: str | None = None) -> None:
        self.finalized_with.append(end_reason)


def start_frame(stream_sid: str = "MZ100", call_sid: str = "CA100") -> dict[str, Any]:
    return {
        "event": "start",
        "sequenceNumber": "1",
        "start": {"streamSid": stream_sid, "callSid": call_sid, "customParameters": {}},
        "streamSid": stream_sid,
    }


def media_frame(payload: str, stream_sid: str = "MZ100") -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"track": "inbound", "payload": payload}}


def mark_frame(name: str, stream_sid: str = "MZ100") -> dict[str, Any]:
    return {"event": "mark", "streamSid": stream_sid, "mark": {"name": name}}


def audio_delta(delta: str) -> dict[str, Any]:
    return {"type": "response.audio.delta", "response_id": "resp_1", "item_id": "item_1", "delta": delta}


def function_call(call_id: str, name: str, arguments: str) -> dict[str, Any]:
    return {"type": "function_call", "call_id": call_id, "name": name, "arguments": arguments}


def response_done(*items: dict[str, Any]) -> dict[str, Any]:
    return {"type": "response.done", "response": {"id": "resp_1", "status": "completed", "output": list(items)}}
