from __future__ import annotations

import json
from typing import Any

from .constants import (
    F_GUEST_ID,
    F_TIME,
    F_TO,
    F_TYPE,
    T_ALLOW_GUEST,
    T_MESSAGE,
    T_REJECT_GUEST,
    T_REMOVE_GUEST,
    T_VERIFY_REQUEST,
)
from .errors import ProtocolError
from .util import now_ms

# Fields an inbound event must carry as non-empty strings. Which of them
# apply also depends on the sender's role; see required_fields().
_REQUIRED_BY_TYPE: dict[str, tuple[str, ...]] = {
    T_VERIFY_REQUEST: (F_GUEST_ID, F_TO),
    T_ALLOW_GUEST: (F_GUEST_ID,),
    T_REJECT_GUEST: (F_GUEST_ID,),
    T_REMOVE_GUEST: (F_GUEST_ID,),
}


def make_event(event_type: str, **fields: Any) -> dict:
    """Build an outbound event, dropping fields that are None."""
    event: dict[str, Any] = {F_TYPE: event_type}
    for k, v in fields.items():
        if v is not None:
            event[k] = v
    return event


def encode_event(event: dict) -> str:
    return json.dumps(event, ensure_ascii=False, separators=(",", ":"))


def decode_event(data: str | bytes) -> dict:
    """Parse one inbound frame into an event dict.

    Raises ProtocolError for anything that is not a JSON object with a
    string ``type``.
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"frame is not UTF-8: {e}") from e

    try:
        event = json.loads(data)
    except ValueError as e:
        raise ProtocolError(f"invalid JSON: {e}") from e

    if not isinstance(event, dict):
        raise ProtocolError("event must be a JSON object")

    t = event.get(F_TYPE)
    if not isinstance(t, str) or not t:
        raise ProtocolError("event type must be a non-empty string")

    return event


def required_fields(event_type: str, *, from_guest: bool) -> tuple[str, ...]:
    if event_type == T_MESSAGE:
        # Guests address a host and identify themselves; hosts may broadcast.
        return (F_GUEST_ID, F_TO) if from_guest else ()
    return _REQUIRED_BY_TYPE.get(event_type, ())


def validate_event(event: dict, *, from_guest: bool) -> None:
    t = event[F_TYPE]
    for key in required_fields(t, from_guest=from_guest):
        v = event.get(key)
        if not isinstance(v, str) or not v.strip():
            raise ProtocolError(f"{t} requires string field {key!r}")

    to = event.get(F_TO)
    if to is not None and not isinstance(to, str):
        raise ProtocolError(f"{t} field 'to' must be a string")


def event_time(event: dict) -> Any:
    t = event.get(F_TIME)
    return t if t is not None else now_ms()
