from __future__ import annotations

import json

import pytest

from tests.unit.voice_relay._fakes import audio_delta, function_call, response_done
from voice_relay.app.errors import ProtocolParseError
from voice_relay.app.protocol.realtime import (
    AudioDeltaEvent,
    ErrorEvent,
    RealtimeEvent,
    ResponseDoneEvent,
    SpeechStartedEvent,
    function_call_output,
    parse_server_event,
)


def test_parse_audio_delta_accepts_both_event_names() -> None:
    legacy = parse_server_event(json.dumps(audio_delta("AAAA")))
    current = parse_server_event('{"type": "response.output_audio.delta", "delta": "BBBB"}')

    assert isinstance(legacy, AudioDeltaEvent)
    assert legacy.delta == "AAAA"
    assert isinstance(current, AudioDeltaEvent)
    assert current.delta == "BBBB"


def test_parse_speech_started_and_error_events() -> None:
    assert isinstance(parse_server_event('{"type": "input_audio_buffer.speech_started"}'), SpeechStartedEvent)
    error = parse_server_event('{"type": "error", "error": {"code": "invalid_value"}}')

    assert isinstance(error, ErrorEvent)
    assert error.error == {"code": "invalid_value"}


def test_unknown_event_types_fall_back_to_generic_event() -> None:
    event = parse_server_event('{"type": "rate_limits.updated", "rate_limits": []}')

    assert type(event) is RealtimeEvent
    assert event.type == "rate_limits.updated"


def test_response_done_extracts_function_calls_in_order() -> None:
    raw = response_done(
        {"type": "message", "role": "assistant", "content": []},
        function_call("call_1", "capture_user_text", '{"text": "hi"}'),
        {"type": "function_call", "name": "end_call", "arguments": "{}"},
        function_call("call_2", "end_call", {"reason": "user_goodbye"}),
    )

    event = parse_server_event(json.dumps(raw))

    assert isinstance(event, ResponseDoneEvent)
    calls = event.response.function_calls()
    assert [call.call_id for call in calls] == ["call_1", "call_2"]
    assert calls[1].arguments == '{"reason": "user_goodbye"}'


@pytest.mark.parametrize("raw", ["{", "[]", '{"event_id": "evt_1"}', '{"type": "response.done", "response": 4}'])
def test_malformed_server_messages_raise(raw: str) -> None:
    with pytest.raises(ProtocolParseError) as exc_info:
        parse_server_event(raw)

    assert exc_info.value.channel == "realtime"


def test_function_call_output_encodes_result_as_string() -> None:
    payload = function_call_output("call_1", {"ok": True})

    assert payload == {
        "type": "conversation.item.create",
        "item": {"type": "function_call_output", "call_id": "call_1", "output": '{"ok": true}'},
    }


def test_non_object_output_entries_do_not_drop_function_calls() -> None:
    raw = response_done(None, "text", function_call("call_1", "end_call", '{"reason": "user_goodbye"}'))

    event = parse_server_event(json.dumps(raw))

    assert isinstance(event, ResponseDoneEvent)
    assert [call.call_id for call in event.response.function_calls()] == ["call_1"]


def test_null_output_parses_as_empty_batch() -> None:
    event = parse_server_event('{"type": "response.done", "response": {"id": "resp_2", "output": null}}')

    assert isinstance(event, ResponseDoneEvent)
    assert event.response.function_calls() == []
