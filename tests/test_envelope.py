import json

import pytest

from sigrelay.constants import T_ERROR, T_MESSAGE, T_VERIFY_REQUEST
from sigrelay.envelope import (
    decode_event,
    encode_event,
    event_time,
    make_event,
    required_fields,
    validate_event,
)
from sigrelay.errors import ProtocolError


def test_make_event_drops_none_fields() -> None:
    assert make_event(T_ERROR, message="x", extra=None) == {"type": "error", "message": "x"}


def test_encode_keeps_non_ascii_text() -> None:
    out = encode_event(make_event(T_ERROR, message="消息格式错误"))
    assert "消息格式错误" in out
    assert json.loads(out) == {"type": "error", "message": "消息格式错误"}


def test_decode_accepts_text_and_bytes() -> None:
    assert decode_event('{"type":"message"}') == {"type": "message"}
    assert decode_event('{"type":"message"}'.encode("utf-8")) == {"type": "message"}


@pytest.mark.parametrize(
    "frame",
    [
        "",
        "{not json",
        "[]",
        '"message"',
        "{}",
        '{"type": 3}',
        '{"type": ""}',
        b"\xff\xfe",
    ],
)
def test_decode_rejects_malformed_frames(frame) -> None:
    with pytest.raises(ProtocolError):
        decode_event(frame)


def test_protocol_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        decode_event("nope")


def test_guest_messages_must_name_guest_and_host() -> None:
    assert required_fields(T_MESSAGE, from_guest=True) == ("guestId", "to")
    assert required_fields(T_MESSAGE, from_guest=False) == ()
    assert required_fields(T_VERIFY_REQUEST, from_guest=True) == ("guestId", "to")
    assert required_fields("somethingNew", from_guest=False) == ()


def test_validate_rejects_blank_or_non_string_ids() -> None:
    with pytest.raises(ProtocolError):
        validate_event({"type": "allowGuest", "guestId": "  "}, from_guest=False)
    with pytest.raises(ProtocolError):
        validate_event({"type": "allowGuest", "guestId": 7}, from_guest=False)
    with pytest.raises(ProtocolError):
        validate_event({"type": "message", "guestId": "g1"}, from_guest=True)


def test_validate_rejects_non_string_to() -> None:
    with pytest.raises(ProtocolError):
        validate_event({"type": "message", "to": 5}, from_guest=False)


def test_validate_accepts_host_broadcast() -> None:
    validate_event({"type": "message", "content": "hi"}, from_guest=False)


def test_event_time_prefers_supplied_value() -> None:
    assert event_time({"time": 42}) == 42
    assert event_time({"time": 0}) == 0
    assert event_time({}) > 0
