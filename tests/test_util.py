import asyncio

import pytest

from sigrelay.util import KeyedLocks, fmt_id, normalize_id


def test_keyed_locks_serialize_one_key() -> None:
    locks = KeyedLocks()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("h"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    async def scenario():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(scenario())
    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


def test_keyed_locks_drop_entries_when_released() -> None:
    locks = KeyedLocks()

    async def scenario():
        async with locks.hold("a"):
            async with locks.hold("b"):
                assert len(locks) == 2
        await asyncio.gather(*(_touch(locks, f"k{i}") for i in range(100)))

    asyncio.run(scenario())
    assert len(locks) == 0


def test_keyed_locks_release_on_error() -> None:
    locks = KeyedLocks()

    async def scenario():
        async with locks.hold("h"):
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
    assert len(locks) == 0


async def _touch(locks: KeyedLocks, key: str) -> None:
    async with locks.hold(key):
        await asyncio.sleep(0)


@pytest.mark.parametrize(
    "value,expected",
    [("  alice ", "alice"), ("", None), ("a\nb", None), ("x" * 129, None), (5, None)],
)
def test_normalize_id(value, expected) -> None:
    assert normalize_id(value) == expected


def test_fmt_id_truncates() -> None:
    assert fmt_id("x" * 30) == "x" * 21 + "..."
    assert fmt_id(None) == "-"
