from __future__ import annotations

import html
import logging

_LOGGER = logging.getLogger(__name__)


def media_stream_url(host: str, path: str = "/media-stream") -> str:
    """Returns the secure websocket URL Twilio should stream the call to."""
    return f"wss://{host}{path}"


def build_connect_stream_twiml(ws_url: str, *, greeting: str | None = None) -> str:
    """Builds TwiML that bridges the call audio into a media stream.

    Args:
        ws_url: Websocket endpoint Twilio connects the stream to.
        greeting: Optional line Twilio speaks before connecting.
    """
    _LOGGER.debug(
        "Building Connect/Stream TwiML.",
        extra={"stream_url": ws_url, "has_greeting": bool(greeting)},
    )
    say_block = f"  <Say>{html.escape(greeting)}</Say>\n" if greeting else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<Response>\n"
        f"{say_block}"
        "  <Connect>\n"
        f'    <Stream url="{html.escape(ws_url)}" />\n'
        "  </Connect>\n"
        "</Response>"
    )
