from __future__ import annotations

from realtime_bridge.app.bridge.session import BridgeSession


def test_argument_fragments_accumulate_until_completion() -> None:
    session = BridgeSession()
    session.register_call("call-1", "lookup_booking")

    session.append_arguments("call-1", '{"a":1')
    session.append_arguments("call-1", "}")
    call = session.complete_call("call-1")

    assert call is not None
    assert call.name == "lookup_booking"
    assert call.arguments == '{"a":1}'
    assert session.pending_calls == {}


def test_call_completes_at_most_once() -> None:
    session = BridgeSession()
    session.register_call("call-1", "end_call")

    assert session.complete_call("call-1") is not None
    assert session.complete_call("call-1") is None
    assert session.register_call("call-1", "end_call") is None

    session.append_arguments("call-1", "{}")
    assert "call-1" not in session.pending_calls


def test_completion_arguments_replace_fragments() -> None:
    session = BridgeSession()
    session.append_arguments("call-2", '{"partial"')

    call = session.complete_call("call-2", name="set_voice", arguments='{"voice":"ash"}')

    assert call is not None
    assert call.name == "set_voice"
    assert call.arguments == '{"voice":"ash"}'


def test_completion_without_prior_fragments_is_still_dispatchable() -> None:
    call = BridgeSession().complete_call("call-3", name="end_call")

    assert call is not None
    assert call.arguments == ""


def test_cancelled_response_output_is_dropped() -> None:
    session = BridgeSession()
    session.begin_response("resp-1")

    assert session.should_drop("resp-1") is False
    assert session.cancel_current_response() == "resp-1"
    assert session.should_drop("resp-1") is True
    assert session.should_drop(None) is True
    assert session.should_drop("resp-2") is False

    session.begin_response("resp-2")
    assert session.should_drop("resp-1") is False
    assert session.should_drop("resp-2") is False


def test_cancel_without_active_response_is_noop() -> None:
    session = BridgeSession()

    assert session.cancel_current_response() is None
    assert session.should_drop(None) is False


def test_begin_response_clears_buffers() -> None:
    session = BridgeSession()
    session.text_buffer.append("old")
    session.transcript_buffer.append("old")

    session.begin_response("resp-9")

    assert session.text_buffer == []
    assert session.transcript_buffer == []
    assert session.current_response_id == "resp-9"
