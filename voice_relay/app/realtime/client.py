"""Websocket client for the OpenAI Realtime backend."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..config import settings
from ..errors import ChannelConnectionError

_LOGGER = logging.getLogger(__name__)

# Realtime audio deltas can be large; keep headroom over the library default.
MAX_MESSAGE_BYTES = 16 * 1024 * 1024


class BackendChannel(Protocol):
    """Transport contract the session controller needs from the backend."""

    @property
    def closed(self) -> bool: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    def messages(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


BackendConnector = Callable[[], Awaitable[BackendChannel]]


class RealtimeConnection:
    """Owns one open backend websocket for exactly one session."""

    def __init__(self, websocket: ClientConnection) -> None:
        self._ws = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Serializes and sends one client event.

        Raises:
            ChannelConnectionError: If the socket is already gone.
        """
        if self._closed:
            raise ChannelConnectionError("Realtime websocket is closed")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            self._closed = True
            raise ChannelConnectionError("Realtime websocket closed while sending") from exc

    async def messages(self) -> AsyncIterator[str | bytes]:
        """Yields raw server messages until the socket closes.

        A normal close ends iteration; an abnormal one raises.

        Raises:
            ChannelConnectionError: If the connection dropped with an error.
        """
        try:
            async for raw in self._ws:
                yield raw
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            raise ChannelConnectionError(f"Realtime websocket dropped: {exc}") from exc
        finally:
            self._closed = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        _LOGGER.debug("Closing realtime websocket.")
        await self._ws.close()


async def open_realtime_connection(
    *,
    url: str | None = None,
    headers: dict[str, str] | None = None,
) -> RealtimeConnection:
    """Opens the backend websocket with the configured model and credential.

    Raises:
        ChannelConnectionError: If the handshake or TCP connect fails.
    """
    target = url or settings.realtime_url
    _LOGGER.debug("Connecting to realtime backend.", extra={"url": target})
    try:
        websocket = await connect(
            target,
            additional_headers=headers or settings.realtime_headers,
            max_size=MAX_MESSAGE_BYTES,
        )
    except (OSError, TimeoutError, WebSocketException) as exc:
        raise ChannelConnectionError(f"Could not connect to realtime backend: {exc}") from exc
    _LOGGER.info("Connected to the OpenAI Realtime API.")
    return RealtimeConnection(websocket)
