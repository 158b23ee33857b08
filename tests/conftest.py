import json
from types import SimpleNamespace

import pytest
from websockets.exceptions import ConnectionClosedOK

from sigrelay.config import RelayRuntimeConfig
from sigrelay.service import RelayService
from sigrelay.store import MemoryStore


class FakeConnection:
    """Stands in for a websockets ServerConnection."""

    def __init__(self, name: str, *, path: str | None = None, frames=()) -> None:
        self.id = name
        self.request = SimpleNamespace(path=path) if path is not None else None
        self.sent: list[str] = []
        self.close_args: tuple[int, str] | None = None
        self._frames = list(frames)

    async def send(self, data: str) -> None:
        if self.close_args is not None:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_args = (code, reason)

    def __aiter__(self):
        return self._iter_frames()

    async def _iter_frames(self):
        for frame in self._frames:
            yield frame

    def respond(self, status, text: str):
        return int(status), text

    def events(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]

    def take(self) -> list[dict]:
        out = self.events()
        self.sent.clear()
        return out


@pytest.fixture
def make_conn():
    return FakeConnection


@pytest.fixture
def relay_factory():
    def build(store=None, **overrides) -> RelayService:
        cfg = RelayRuntimeConfig(store_backend="memory", **overrides)
        return RelayService(cfg, store=store if store is not None else MemoryStore())

    return build


@pytest.fixture
def relay(relay_factory) -> RelayService:
    return relay_factory()
