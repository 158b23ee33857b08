from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .constants import ROLE_GUEST, ROLE_HOST
from .util import fmt_id

if TYPE_CHECKING:
    from websockets.asyncio.server import ServerConnection

    from .service import RelayService

# Connection states
ST_CONNECTING = "connecting"
ST_VERIFYING = "verifying"
ST_BOOTSTRAPPED = "bootstrapped"
ST_ACTIVE = "active"
ST_CLOSED = "closed"


@dataclass
class Session:
    """One live connection: who is on the other end and how far it got."""

    user_id: str
    role: str
    conn: ServerConnection
    state: str = ST_CONNECTING
    connected_at: float = field(default_factory=time.monotonic)

    @property
    def is_host(self) -> bool:
        return self.role == ROLE_HOST

    @property
    def is_guest(self) -> bool:
        return self.role == ROLE_GUEST


class SessionManager:
    """
    Connection registry for the relay.

    This class is responsible for:
    - Mapping user ids to their live connection (one per id)
    - Overwriting on duplicate-id connects without telling the old socket
    - Guest lookups used for broadcast and allow/reject notifications
    - Registry teardown on shutdown

    Everything runs on the event loop thread, so no lock is taken here.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.session")
        self.sessions: dict[str, Session] = {}

    def add(self, user_id: str, role: str, conn: ServerConnection) -> Session:
        """Register a connection, replacing any previous one for the same id."""
        return self.register(Session(user_id=user_id, role=role, conn=conn))

    def register(self, sess: Session) -> Session:
        prev = self.sessions.get(sess.user_id)
        if prev is not None and prev.conn is not sess.conn:
            # The displaced socket stays open and is not told.
            self.log.info(
                "Replacing connection user=%s role=%s old_conn=%s new_conn=%s",
                fmt_id(sess.user_id),
                sess.role,
                self.hub._fmt_conn(prev.conn),
                self.hub._fmt_conn(sess.conn),
            )

        self.sessions[sess.user_id] = sess
        self.log.info(
            "Session created user=%s role=%s conn=%s",
            fmt_id(sess.user_id),
            sess.role,
            self.hub._fmt_conn(sess.conn),
        )
        return sess

    def lookup(self, user_id: str | None) -> ServerConnection | None:
        sess = self.sessions.get(user_id) if user_id else None
        return sess.conn if sess is not None else None

    def get(self, user_id: str | None) -> Session | None:
        return self.sessions.get(user_id) if user_id else None

    def remove(self, user_id: str, conn: ServerConnection | None = None) -> bool:
        """
        Drop the registry entry for a user id.

        When ``conn`` is given the entry is only removed if it still belongs
        to that connection, so a replaced socket closing late does not evict
        its successor.
        """
        sess = self.sessions.get(user_id)
        if sess is None:
            return False
        if conn is not None and sess.conn is not conn:
            return False

        self.sessions.pop(user_id, None)
        sess.state = ST_CLOSED
        return True

    def guests(self) -> list[Session]:
        return [s for s in self.sessions.values() if s.is_guest]

    def any_guest(self, *, exclude: ServerConnection | None = None) -> Session | None:
        """First registered guest connection that is not ``exclude``."""
        for sess in self.sessions.values():
            if sess.is_guest and sess.conn is not exclude:
                return sess
        return None

    def clear_all(self) -> list[ServerConnection]:
        """Clear all sessions and return their connections for teardown."""
        conns = [s.conn for s in self.sessions.values()]
        for s in self.sessions.values():
            s.state = ST_CLOSED
        self.sessions.clear()
        return conns

    def get_stats(self) -> dict[str, Any]:
        total = len(self.sessions)
        hosts = sum(1 for s in self.sessions.values() if s.is_host)
        active = sum(1 for s in self.sessions.values() if s.state == ST_ACTIVE)
        return {
            "total": total,
            "hosts": hosts,
            "guests": total - hosts,
            "active": active,
        }
