from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from .constants import (
    Q_ID,
    Q_PWD,
    Q_ROLE,
    ROLE_ALIASES,
    TEXT_MISSING_PARAMS,
    TEXT_UNKNOWN_ROLE,
)
from .errors import ValidationError
from .util import normalize_id


@dataclass(frozen=True)
class Handshake:
    user_id: str
    role: str
    password: str | None = None

    def __repr__(self) -> str:
        # Keep passwords out of logs and tracebacks.
        pwd = "set" if self.password else None
        return f"Handshake(user_id={self.user_id!r}, role={self.role!r}, password={pwd})"


def parse_handshake(path: str) -> Handshake:
    """Read ``id``, ``role`` and ``pwd`` from a request target.

    Raises ValidationError if ``id`` or ``role`` is missing, or the role is
    not one the relay knows.
    """
    params = parse_qs(urlsplit(path).query)

    def first(name: str) -> str | None:
        values = params.get(name)
        return values[0] if values else None

    user_id = normalize_id(first(Q_ID))
    role_raw = first(Q_ROLE)
    if user_id is None or not role_raw or not role_raw.strip():
        raise ValidationError(TEXT_MISSING_PARAMS)

    role = ROLE_ALIASES.get(role_raw.strip().lower())
    if role is None:
        raise ValidationError(TEXT_UNKNOWN_ROLE)

    return Handshake(user_id=user_id, role=role, password=first(Q_PWD) or None)


def is_upgrade_request(headers) -> bool:
    upgrade = headers.get("Upgrade")
    return isinstance(upgrade, str) and upgrade.strip().lower() == "websocket"
