"""Per-call session record and tool-call bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..realtime.client import BackendChannel
    from .timer import SessionTimer


class SessionState(str, Enum):
    AWAITING_INBOUND_START = "AWAITING_INBOUND_START"
    AWAITING_BACKEND_READY = "AWAITING_BACKEND_READY"
    ACTIVE = "ACTIVE"
    INTERRUPTED = "INTERRUPTED"
    ENDING = "ENDING"
    CLOSED = "CLOSED"


class ToolCallStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    ABANDONED = "ABANDONED"


@dataclass
class ToolCall:
    """One function invocation requested by the model.

    Attributes:
        call_id: Correlates the invocation with its result event.
        name: Invoked tool name.
        arguments: Parsed arguments, ``{}`` when the raw payload was unusable.
        arguments_raw: Argument payload exactly as received.
        status: Lifecycle status; leaves ``PENDING`` exactly once.
        output: Result payload sent upstream once resolved.
    """

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    arguments_raw: str = ""
    status: ToolCallStatus = ToolCallStatus.PENDING
    output: dict[str, Any] | None = None

    def resolve(self, output: dict[str, Any]) -> None:
        """Marks the call answered with ``output``.

        Raises:
            RuntimeError: If the call already left ``PENDING``.
        """
        if self.status is not ToolCallStatus.PENDING:
            raise RuntimeError(f"Tool call {self.call_id} is already {self.status.value}")
        self.status = ToolCallStatus.RESOLVED
        self.output = output

    def abandon(self) -> None:
        if self.status is ToolCallStatus.PENDING:
            self.status = ToolCallStatus.ABANDONED


@dataclass
class Session:
    """State bridging one Twilio media stream to one realtime backend socket.

    A session is only ever touched from its controller's dispatch loop, so no
    field here needs locking.
    """

    id: str | None = None
    call_sid: str | None = None
    state: SessionState = SessionState.AWAITING_INBOUND_START
    backend: BackendChannel | None = None
    pending_tool_calls: dict[str, ToolCall] = field(default_factory=dict)
    resolved_call_ids: set[str] = field(default_factory=set)
    close_timer: SessionTimer | None = None
    end_reason: str | None = None
    transcript: list[str] = field(default_factory=list)

    # Playback marks sent after agent audio and not yet echoed by Twilio.
    outstanding_marks: set[str] = field(default_factory=set)
    mark_counter: int = 0

    inbound_audio_frames: int = 0
    agent_audio_frames: int = 0
    interruptions: int = 0

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def knows_call_id(self, call_id: str) -> bool:
        """Returns True when ``call_id`` is pending or already answered."""
        return call_id in self.pending_tool_calls or call_id in self.resolved_call_ids

    def register_tool_call(self, call: ToolCall) -> None:
        if self.knows_call_id(call.call_id):
            raise ValueError(f"Duplicate tool call id {call.call_id}")
        self.pending_tool_calls[call.call_id] = call

    def complete_tool_call(self, call_id: str, output: dict[str, Any]) -> ToolCall:
        """Resolves a pending call and moves it to the answered set."""
        call = self.pending_tool_calls.pop(call_id)
        call.resolve(output)
        self.resolved_call_ids.add(call_id)
        return call

    def abandon_tool_calls(self) -> list[ToolCall]:
        """Drops every outstanding call; no results will be sent for them."""
        abandoned = list(self.pending_tool_calls.values())
        for call in abandoned:
            call.abandon()
        self.pending_tool_calls.clear()
        return abandoned

    def next_mark_name(self) -> str:
        self.mark_counter += 1
        return str(self.mark_counter)
