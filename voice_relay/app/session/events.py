"""Messages queued onto a session's dispatch loop."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..protocol.realtime import ServerEvent
from ..protocol.twilio import InboundFrame


@dataclass(slots=True, frozen=True)
class InboundFrameReceived:
    frame: InboundFrame


@dataclass(slots=True, frozen=True)
class InboundClosed:
    error: BaseException | None = None


@dataclass(slots=True, frozen=True)
class BackendEventReceived:
    event: ServerEvent


@dataclass(slots=True, frozen=True)
class BackendClosed:
    error: BaseException | None = None


@dataclass(slots=True, frozen=True)
class GraceDelayElapsed:
    pass


SessionMessage = Union[
    InboundFrameReceived,
    InboundClosed,
    BackendEventReceived,
    BackendClosed,
    GraceDelayElapsed,
]
