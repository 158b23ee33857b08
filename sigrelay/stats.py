"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Lifetime counters for the relay.

    Tracks:
    - Connections opened/closed and handshakes rejected
    - Frames in, malformed frames, bytes in/out
    - Messages forwarded, mailboxed, broadcast and dropped
    - Verification requests and login failures
    - Errors sent
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "conns_opened": 0,
            "conns_closed": 0,
            "handshakes_rejected": 0,
            "login_failures": 0,
            "frames_in": 0,
            "frames_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "verify_requests": 0,
            "msgs_forwarded": 0,
            "msgs_mailboxed": 0,
            "msgs_broadcast": 0,
            "msgs_dropped": 0,
            "errors_sent": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        return int(self._counters.get(key, 0))

    def format_stats(self) -> str:
        """Format current statistics as a single log-friendly line."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0

        s = self.hub.session_manager.get_stats()
        c = dict(self._counters)

        parts = [
            f"sigrelay {__version__}",
            f"uptime_s={uptime_s:.1f}",
            f"sessions={s['total']} hosts={s['hosts']} guests={s['guests']}",
        ]
        parts.append(" ".join(f"{k}={v}" for k, v in c.items()))
        return " ".join(parts)
