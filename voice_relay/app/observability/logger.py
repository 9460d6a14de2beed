"""Best-effort Postgres recorder for relayed calls.

Expected tables::

    relay_calls(stream_sid PK, call_sid, started_at, ended_at, end_reason)
    relay_call_events(stream_sid, event_type, direction, source, payload_json, created_at)
    relay_tool_calls(stream_sid, call_id, tool_name, args_json, result_json,
                     status, error_message, arguments_raw, created_at)
    relay_transcripts(stream_sid, seq, text, created_at)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .db import get_conn

_LOGGER = logging.getLogger(__name__)


def _to_jsonb(value: Any) -> str:
    return json.dumps(value, default=str)


class CallLogger:
    """Writes call, tool, and transcript rows without breaking call flow.

    Every write swallows database failures after logging them, since a lost
    observability row must never drop a live phone call.
    """

    def __init__(self, stream_sid: str, call_sid: str | None = None) -> None:
        self.stream_sid = stream_sid
        self.call_sid = call_sid
        self._transcript_seq = 0

    async def ensure_call(self) -> None:
        await self._execute(
            operation_name="ensure_call",
            query="""
                INSERT INTO relay_calls (stream_sid, call_sid, started_at)
                VALUES ($1, $2, now())
                ON CONFLICT (stream_sid) DO UPDATE
                SET call_sid = COALESCE(relay_calls.call_sid, EXCLUDED.call_sid)
            """,
            args=(self.stream_sid, self.call_sid),
        )

    async def log_call_event(
        self,
        *,
        event_type: str,
        payload: dict[str, Any] | None = None,
        direction: str | None = None,
        source: str | None = None,
    ) -> None:
        """Persists one control-level event (start, clear, backend error, ...)."""
        await self._execute(
            operation_name="log_call_event",
            query="""
                INSERT INTO relay_call_events (stream_sid, event_type, direction, source, payload_json)
                VALUES ($1, $2, $3, $4, $5)
            """,
            args=(self.stream_sid, event_type, direction, source, _to_jsonb(payload or {})),
        )

    async def log_tool_call(
        self,
        *,
        call_id: str,
        tool_name: str,
        args_json: dict[str, Any],
        result_json: dict[str, Any] | None,
        status: str,
        error_message: str | None = None,
        arguments_raw: str | None = None,
    ) -> None:
        await self._execute(
            operation_name="log_tool_call",
            query="""
                INSERT INTO relay_tool_calls
                (stream_sid, call_id, tool_name, args_json, result_json, status, error_message, arguments_raw)
                VALUES ($1,$2,$3,$4,$5,$6,$7,$8)
            """,
            args=(
                self.stream_sid,
                call_id,
                tool_name,
                _to_jsonb(args_json),
                _to_jsonb(result_json) if result_json is not None else None,
                status,
                error_message,
                arguments_raw,
            ),
        )

    async def log_transcript(self, text: str) -> None:
        """Appends one caller utterance reported by the transcript tool."""
        self._transcript_seq += 1
        await self._execute(
            operation_name="log_transcript",
            query="INSERT INTO relay_transcripts (stream_sid, seq, text) VALUES ($1, $2, $3)",
            args=(self.stream_sid, self._transcript_seq, text),
        )

    async def finalize_call(self, *, end_reason: str | None = None) -> None:
        await self._execute(
            operation_name="finalize_call",
            query="""
                UPDATE relay_calls
                SET ended_at = COALESCE(ended_at, now()),
                    end_reason = COALESCE($2, end_reason)
                WHERE stream_sid = $1
            """,
            args=(self.stream_sid, end_reason),
        )

    async def _execute(self, operation_name: str, query: str, args: tuple[Any, ...]) -> None:
        try:
            async with get_conn() as conn:
                await conn.execute(query, *args)
        except Exception:
            _LOGGER.debug(
                "Observability write failed during %s for stream_sid=%s",
                operation_name,
                self.stream_sid,
                exc_info=True,
            )
