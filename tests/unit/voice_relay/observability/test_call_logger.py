from __future__ import annotations

import contextlib
import json

import voice_relay.app.observability.logger as logger_module
from tests.unit.voice_relay._fakes import FakeConnection, run
from voice_relay.app.observability.logger import CallLogger


def _patch_conn(monkeypatch) -> FakeConnection:
    conn = FakeConnection()

    @contextlib.asynccontextmanager
    async def fake_get_conn():
        yield conn

    monkeypatch.setattr(logger_module, "get_conn", fake_get_conn)
    return conn


def test_call_rows_are_written_for_stream(monkeypatch) -> None:
    conn = _patch_conn(monkeypatch)
    call_logger = CallLogger("MZ800", "CA800")

    run(call_logger.ensure_call())
    run(call_logger.finalize_call(end_reason="user_goodbye"))

    assert "INSERT INTO relay_calls" in conn.executed[0][0]
    assert conn.executed[0][1] == ("MZ800", "CA800")
    assert conn.executed[1][1] == ("MZ800", "user_goodbye")


def test_tool_call_payloads_are_json_encoded(monkeypatch) -> None:
    conn = _patch_conn(monkeypatch)

    run(
        CallLogger("MZ800").log_tool_call(
            call_id="call_1",
            tool_name="end_call",
            args_json={"reason": "user_goodbye"},
            result_json={"success": True},
            status="SUCCEEDED",
            arguments_raw='{"reason":"user_goodbye"}',
        )
    )

    _sql, args = conn.executed[0]
    assert args[1:3] == ("call_1", "end_call")
    assert json.loads(args[3]) == {"reason": "user_goodbye"}
    assert json.loads(args[4]) == {"success": True}
    assert args[5] == "SUCCEEDED"


def test_transcript_rows_are_sequenced(monkeypatch) -> None:
    conn = _patch_conn(monkeypatch)
    call_logger = CallLogger("MZ800")

    run(call_logger.log_transcript("hello"))
    run(call_logger.log_transcript("goodbye"))

    assert [args for _sql, args in conn.executed] == [("MZ800", 1, "hello"), ("MZ800", 2, "goodbye")]


def test_write_failures_do_not_raise(monkeypatch) -> None:
    @contextlib.asynccontextmanager
    async def failing_get_conn():
        raise OSError("database unavailable")
        yield

    monkeypatch.setattr(logger_module, "get_conn", failing_get_conn)

    run(CallLogger("MZ800").log_call_event(event_type="clear", direction="OUT", source="VOICE_RELAY"))
