from __future__ import annotations

import asyncio
import os
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

ID_MAX_CHARS = 128


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_id(value) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if len(s) > ID_MAX_CHARS:
        return None

    # Ids end up as store keys and in log lines.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s


def fmt_id(value, *, limit: int = 24) -> str:
    if not isinstance(value, str) or not value:
        return "-"
    return value if len(value) <= limit else value[: limit - 3] + "..."


class KeyedLocks:
    """
    One asyncio.Lock per key, alive only while someone holds or awaits it.

    Keys come from client-chosen ids, so an entry is dropped as soon as its
    last user leaves ``hold()``.
    """

    def __init__(self) -> None:
        # key -> [lock, number of tasks holding or waiting]
        self._locks: dict[str, list] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._locks[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]
