"""Executes model function calls and reports their results upstream."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import ToolArgumentError
from ..observability.logger import CallLogger
from ..protocol.realtime import FunctionCallItem, function_call_output, response_create
from ..session.models import Session, ToolCall
from .schemas import (
    CAPTURE_USER_TEXT,
    END_CALL,
    CaptureUserTextArgs,
    EndCallArgs,
    EndCallReason,
    parse_tool_arguments,
)

_LOGGER = logging.getLogger(__name__)

UNKNOWN_TOOL_OUTPUT: dict[str, Any] = {"ok": False, "error": "unknown_tool"}


@dataclass(slots=True)
class ToolResult:
    """What one tool action produced."""

    output: dict[str, Any]
    arguments: dict[str, Any] = field(default_factory=dict)
    end_reason: EndCallReason | None = None
    error_message: str | None = None
    succeeded: bool = True


@dataclass(slots=True)
class DispatchOutcome:
    """Summary of one ``response.done`` batch.

    Attributes:
        resolved: Tool calls answered in this batch, in processing order.
        duplicates: Call ids skipped because the session already knew them.
        end_reason: Set when an ``end_call`` was accepted in this batch.
        continued: Whether ``response.create`` was sent after the batch.
    """

    resolved: list[ToolCall] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    end_reason: EndCallReason | None = None
    continued: bool = False

    @property
    def end_requested(self) -> bool:
        return self.end_reason is not None


ToolAction = Callable[[Session, FunctionCallItem, CallLogger | None], Awaitable[ToolResult]]


class ToolCallDispatcher:
    """Bridges ``function_call`` output items to local actions.

    Every distinct call id in a batch receives exactly one
    ``function_call_output``. Resolution is idempotent per session: a call id
    that is already pending or answered is skipped, never answered twice.
    """

    def __init__(self) -> None:
        self._actions: dict[str, ToolAction] = {
            CAPTURE_USER_TEXT: self._capture_user_text,
            END_CALL: self._end_call,
        }

    async def dispatch(
        self,
        session: Session,
        items: Sequence[FunctionCallItem],
        *,
        call_logger: CallLogger | None = None,
        allow_continue: bool = True,
    ) -> DispatchOutcome:
        """Resolves a batch of function calls for ``session``.

        After the batch, the backend is asked to keep generating unless an
        end-call was accepted or ``allow_continue`` is false.

        Raises:
            ChannelConnectionError: If the backend socket fails mid-batch. Any
                calls left unanswered stay pending until the session closes.
        """
        outcome = DispatchOutcome()
        backend = session.backend
        if backend is None:
            _LOGGER.warning("Dropping tool calls without a backend connection.", extra={"stream_sid": session.id})
            return outcome

        for item in items:
            if session.knows_call_id(item.call_id):
                _LOGGER.warning(
                    "Skipping duplicate tool call id.",
                    extra={"stream_sid": session.id, "call_id": item.call_id, "tool_name": item.name},
                )
                outcome.duplicates.append(item.call_id)
                continue

            call = ToolCall(call_id=item.call_id, name=item.name, arguments_raw=item.arguments)
            session.register_tool_call(call)

            action = self._actions.get(item.name)
            if action is None:
                _LOGGER.warning("Model called an unknown tool.", extra={"call_id": item.call_id, "tool_name": item.name})
                result = ToolResult(output=dict(UNKNOWN_TOOL_OUTPUT), error_message="unknown_tool", succeeded=False)
            else:
                result = await action(session, item, call_logger)
            call.arguments = result.arguments

            await backend.send_json(function_call_output(item.call_id, result.output))
            outcome.resolved.append(session.complete_tool_call(item.call_id, result.output))
            if result.end_reason is not None and outcome.end_reason is None:
                outcome.end_reason = result.end_reason

            if call_logger:
                await call_logger.log_tool_call(
                    call_id=item.call_id,
                    tool_name=item.name,
                    args_json=result.arguments,
                    result_json=result.output,
                    status="SUCCEEDED" if result.succeeded else "FAILED",
                    error_message=result.error_message,
                    arguments_raw=item.arguments,
                )

        if outcome.resolved and not outcome.end_requested and allow_continue:
            await backend.send_json(response_create())
            outcome.continued = True
        return outcome

    async def _capture_user_text(
        self,
        session: Session,
        item: FunctionCallItem,
        call_logger: CallLogger | None,
    ) -> ToolResult:
        error_message = None
        try:
            args = parse_tool_arguments(CaptureUserTextArgs, item.arguments, tool_name=item.name, call_id=item.call_id)
        except ToolArgumentError as exc:
            _LOGGER.warning("Using empty transcript for bad arguments: %s", exc, extra={"call_id": item.call_id})
            args = CaptureUserTextArgs()
            error_message = str(exc)

        _LOGGER.info("User said: %s", args.text or "(empty)", extra={"stream_sid": session.id})
        if args.text:
            session.transcript.append(args.text)
            if call_logger:
                await call_logger.log_transcript(args.text)
        return ToolResult(output={"ok": True}, arguments=args.model_dump(), error_message=error_message)

    async def _end_call(
        self,
        session: Session,
        item: FunctionCallItem,
        call_logger: CallLogger | None,
    ) -> ToolResult:
        del call_logger
        error_message = None
        try:
            args = parse_tool_arguments(EndCallArgs, item.arguments, tool_name=item.name, call_id=item.call_id)
        except ToolArgumentError as exc:
            _LOGGER.warning("Falling back to default end-call reason: %s", exc, extra={"call_id": item.call_id})
            args = EndCallArgs()
            error_message = str(exc)

        _LOGGER.info(
            "Model requested to end the call. Reason: %s",
            args.reason.value,
            extra={"stream_sid": session.id},
        )
        return ToolResult(
            output={"success": True},
            arguments=args.model_dump(mode="json"),
            end_reason=args.reason,
            error_message=error_message,
        )
