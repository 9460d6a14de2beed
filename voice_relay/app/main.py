"""FastAPI entrypoint for the Twilio to OpenAI Realtime voice relay.

This module performs three primary responsibilities:
1. Return TwiML for inbound calls so Twilio opens a media stream.
2. Host the websocket endpoint that runs one session controller per call.
3. Manage process-lifecycle resources such as the observability DB pool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse

from .config import settings
from .observability.db import close_pool, init_pool
from .session.controller import SessionController
from .session.store import SessionStore
from .twilio.twiml import build_connect_stream_twiml, media_stream_url

_LOGGER = logging.getLogger(__name__)

sessions = SessionStore()


def _configure_logging() -> None:
    """Configures runtime log levels for relay lifecycle tracing."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    observability_level = getattr(logging, settings.OBSERVABILITY_LOG_LEVEL.upper(), logging.INFO)
    websockets_level = getattr(logging, settings.WEBSOCKETS_LOG_LEVEL.upper(), logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(level)

    logging.getLogger("voice_relay").setLevel(level)
    logging.getLogger("voice_relay.app.observability").setLevel(observability_level)
    logging.getLogger("websockets").setLevel(websockets_level)
    _LOGGER.debug(
        "Logging configured for voice relay.",
        extra={
            "log_level": settings.LOG_LEVEL,
            "observability_log_level": settings.OBSERVABILITY_LOG_LEVEL,
            "websockets_log_level": settings.WEBSOCKETS_LOG_LEVEL,
        },
    )


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    """Validates required configuration and manages process-scoped resources.

    Raises:
        ConfigurationError: If ``OPENAI_API_KEY`` is missing.
    """
    settings.require_api_key()
    # Observability is optional and must not block call flow.
    if settings.DB_CONNECTION_STRING:
        try:
            await init_pool()
            _LOGGER.debug("Observability DB pool initialized.")
        except Exception:
            _LOGGER.exception("Failed to initialize observability DB pool.")
    try:
        yield
    finally:
        try:
            await close_pool()
        except Exception:
            _LOGGER.exception("Failed to close observability DB pool.")


_configure_logging()
app = FastAPI(lifespan=_lifespan)


@app.get("/")
async def index() -> dict[str, str]:
    return {"message": "Twilio Media Stream Server is running!"}


@app.get("/health")
async def health() -> dict[str, str | int]:
    """Returns a liveness response with the number of calls in flight."""
    return {"status": "ok", "service": "voice_relay", "active_sessions": len(sessions)}


@app.post("/incoming-call")
@app.get("/incoming-call")
async def incoming_call(request: Request) -> PlainTextResponse:
    """Returns TwiML that points Twilio at this host's media-stream socket."""
    host = request.headers.get("host") or request.url.netloc
    ws_url = media_stream_url(host)
    _LOGGER.debug("Building TwiML response for inbound call.", extra={"stream_url": ws_url})
    twiml = build_connect_stream_twiml(ws_url, greeting=settings.INCOMING_CALL_GREETING)
    return PlainTextResponse(content=twiml, media_type="text/xml")


@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket) -> None:
    """Bridges one Twilio media stream to the realtime backend."""
    _LOGGER.debug("Twilio websocket upgrade request received.", extra={"client": str(websocket.client)})
    controller = SessionController(websocket, store=sessions)
    try:
        await controller.run()
    except Exception:
        _LOGGER.exception("Unhandled error while processing Twilio media stream.")
        raise


def run() -> None:
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
