"""Error taxonomy shared by relay components."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay-specific failures."""


class ConfigurationError(RelayError, ValueError):
    """Required startup configuration is missing or invalid.

    Raised once at process startup; never a per-session condition.
    """


class ChannelConnectionError(RelayError, ConnectionError):
    """A socket could not be opened or dropped unexpectedly.

    Fatal to the owning session, which is torn down symmetrically.
    """


class ProtocolParseError(RelayError, ValueError):
    """A received frame is not valid structured data for its channel.

    Only the offending frame is dropped.
    """

    def __init__(self, message: str, *, channel: str, raw: str | bytes | None = None) -> None:
        super().__init__(message)
        self.channel = channel
        self.raw = raw


class ToolArgumentError(RelayError, ValueError):
    """A function-call argument payload failed to parse or validate.

    The dispatcher substitutes default arguments instead of failing the batch.
    """

    def __init__(self, message: str, *, tool_name: str, call_id: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.call_id = call_id
