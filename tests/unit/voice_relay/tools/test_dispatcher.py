from __future__ import annotations

import json

from tests.unit.voice_relay._fakes import FakeBackend, RecordingCallLogger, run
from voice_relay.app.protocol.realtime import FunctionCallItem
from voice_relay.app.session.models import Session, SessionState, ToolCallStatus
from voice_relay.app.tools.dispatcher import UNKNOWN_TOOL_OUTPUT, ToolCallDispatcher
from voice_relay.app.tools.schemas import DEFAULT_END_CALL_REASON, EndCallReason


def _item(call_id: str, name: str, arguments: str = "{}") -> FunctionCallItem:
    return FunctionCallItem(type="function_call", call_id=call_id, name=name, arguments=arguments)


def _session() -> tuple[Session, FakeBackend]:
    backend = FakeBackend()
    return Session(id="MZ200", state=SessionState.ACTIVE, backend=backend), backend


def _outputs(backend: FakeBackend) -> list[tuple[str, dict]]:
    return [
        (payload["item"]["call_id"], json.loads(payload["item"]["output"]))
        for payload in backend.sent
        if payload["type"] == "conversation.item.create"
    ]


def test_dispatch_resolves_each_call_once_in_order() -> None:
    session, backend = _session()
    dispatcher = ToolCallDispatcher()

    outcome = run(
        dispatcher.dispatch(
            session,
            [
                _item("call_1", "capture_user_text", '{"text": "  tell me a joke  "}'),
                _item("call_2", "end_call", '{"reason": "completed_task"}'),
            ],
        )
    )

    assert _outputs(backend) == [("call_1", {"ok": True}), ("call_2", {"success": True})]
    assert [call.call_id for call in outcome.resolved] == ["call_1", "call_2"]
    assert all(call.status is ToolCallStatus.RESOLVED for call in outcome.resolved)
    assert outcome.end_reason is EndCallReason.COMPLETED_TASK
    assert not outcome.continued
    assert "response.create" not in backend.sent_types
    assert session.transcript == ["tell me a joke"]
    assert session.pending_tool_calls == {}
    assert session.resolved_call_ids == {"call_1", "call_2"}


def test_dispatch_requests_next_response_when_call_continues() -> None:
    session, backend = _session()

    outcome = run(ToolCallDispatcher().dispatch(session, [_item("call_1", "capture_user_text", '{"text": "hi"}')]))

    assert backend.sent_types == ["conversation.item.create", "response.create"]
    assert outcome.continued
    assert not outcome.end_requested


def test_dispatch_does_not_continue_when_not_allowed() -> None:
    session, backend = _session()

    outcome = run(
        ToolCallDispatcher().dispatch(
            session,
            [_item("call_1", "capture_user_text", '{"text": "hi"}')],
            allow_continue=False,
        )
    )

    assert backend.sent_types == ["conversation.item.create"]
    assert not outcome.continued


def test_duplicate_call_id_is_skipped() -> None:
    session, backend = _session()
    dispatcher = ToolCallDispatcher()

    run(dispatcher.dispatch(session, [_item("call_1", "capture_user_text", '{"text": "one"}')]))
    outcome = run(
        dispatcher.dispatch(
            session,
            [
                _item("call_1", "capture_user_text", '{"text": "one"}'),
                _item("call_1", "capture_user_text", '{"text": "one"}'),
            ],
        )
    )

    assert [call_id for call_id, _ in _outputs(backend)] == ["call_1"]
    assert outcome.duplicates == ["call_1", "call_1"]
    assert outcome.resolved == []
    assert backend.sent_types.count("response.create") == 1
    assert session.transcript == ["one"]


def test_unknown_tool_gets_exactly_one_error_result() -> None:
    session, backend = _session()
    logger = RecordingCallLogger("MZ200")

    outcome = run(ToolCallDispatcher().dispatch(session, [_item("call_7", "lookup_weather")], call_logger=logger))

    assert _outputs(backend) == [("call_7", UNKNOWN_TOOL_OUTPUT)]
    assert outcome.resolved[0].status is ToolCallStatus.RESOLVED
    assert logger.tool_calls[0]["status"] == "FAILED"
    assert logger.tool_calls[0]["error_message"] == "unknown_tool"


def test_malformed_end_call_arguments_fall_back_to_default_reason() -> None:
    session, backend = _session()
    logger = RecordingCallLogger("MZ200")

    outcome = run(
        ToolCallDispatcher().dispatch(session, [_item("call_3", "end_call", "{reason: nope")], call_logger=logger)
    )

    assert _outputs(backend) == [("call_3", {"success": True})]
    assert outcome.end_reason is DEFAULT_END_CALL_REASON
    assert logger.tool_calls[0]["status"] == "SUCCEEDED"
    assert logger.tool_calls[0]["error_message"]
    assert logger.tool_calls[0]["arguments_raw"] == "{reason: nope"


def test_invalid_end_call_reason_falls_back_to_default() -> None:
    session, _backend = _session()

    outcome = run(ToolCallDispatcher().dispatch(session, [_item("call_4", "end_call", '{"reason": "bored"}')]))

    assert outcome.end_reason is DEFAULT_END_CALL_REASON


def test_capture_user_text_records_transcript() -> None:
    session, _backend = _session()
    logger = RecordingCallLogger("MZ200")

    run(
        ToolCallDispatcher().dispatch(
            session,
            [_item("call_5", "capture_user_text", '{"text": "what is the weather"}')],
            call_logger=logger,
        )
    )

    assert logger.transcripts == ["what is the weather"]
    assert logger.tool_calls[0]["args_json"] == {"text": "what is the weather"}


def test_dispatch_without_backend_sends_nothing() -> None:
    session = Session(id="MZ200", state=SessionState.ACTIVE)

    outcome = run(ToolCallDispatcher().dispatch(session, [_item("call_1", "end_call")]))

    assert outcome.resolved == []
    assert session.pending_tool_calls == {}


def test_extra_argument_keys_do_not_discard_valid_values() -> None:
    session, _backend = _session()

    outcome = run(
        ToolCallDispatcher().dispatch(
            session,
            [
                _item("call_1", "capture_user_text", '{"text": "hello", "lang": "en"}'),
                _item("call_2", "end_call", '{"reason": "explicit_request", "note": "x"}'),
            ],
        )
    )

    assert session.transcript == ["hello"]
    assert outcome.end_reason is EndCallReason.EXPLICIT_REQUEST
