"""Per-host guest permission lists.

Each host owns two ordered lists persisted in the store:

- ``allowed``: guests whose messages reach the host
- ``pending``: guests that asked for access and wait for a decision

A guest id is in at most one of the two lists at any time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .constants import NS_ALLOWED, NS_PENDING
from .util import KeyedLocks, fmt_id

if TYPE_CHECKING:
    from .service import RelayService


@dataclass(frozen=True)
class PermissionEntry:
    guest_id: str
    nickname: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.guest_id, "nickname": self.nickname}

    @classmethod
    def from_dict(cls, raw: Any) -> PermissionEntry | None:
        if not isinstance(raw, dict):
            return None
        gid = raw.get("id")
        if not isinstance(gid, str) or not gid:
            return None
        return cls(guest_id=gid, nickname=raw.get("nickname"))


@dataclass
class PermissionSnapshot:
    allowed: list[PermissionEntry] = field(default_factory=list)
    pending: list[PermissionEntry] = field(default_factory=list)

    def is_allowed(self, guest_id: str) -> bool:
        return any(e.guest_id == guest_id for e in self.allowed)

    def is_pending(self, guest_id: str) -> bool:
        return any(e.guest_id == guest_id for e in self.pending)

    def find_pending(self, guest_id: str) -> PermissionEntry | None:
        for e in self.pending:
            if e.guest_id == guest_id:
                return e
        return None

    def to_event_fields(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "allowed": [e.to_dict() for e in self.allowed],
            "pending": [e.to_dict() for e in self.pending],
        }


def _parse_list(raw: Any) -> list[PermissionEntry]:
    out: list[PermissionEntry] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        entry = PermissionEntry.from_dict(item)
        if entry is not None:
            out.append(entry)
    return out


def _dump_list(entries: list[PermissionEntry]) -> list[dict[str, Any]]:
    return [e.to_dict() for e in entries]


class PermissionStore:
    """
    Manages allowed/pending guest lists per host.

    Every operation is a read-modify-write of the whole list. Mutations for
    one host id are serialized through a per-host lock, so two connections
    acting on the same host cannot interleave inside this process.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.permissions")
        self._locks = KeyedLocks()

    async def _read(self, host_id: str) -> PermissionSnapshot:
        allowed = _parse_list(await self.hub.store.get(NS_ALLOWED, host_id))
        pending = _parse_list(await self.hub.store.get(NS_PENDING, host_id))
        return PermissionSnapshot(allowed=allowed, pending=pending)

    async def snapshot(self, host_id: str) -> PermissionSnapshot:
        """Current allowed and pending lists; absent lists are empty."""
        return await self._read(host_id)

    async def add_pending(self, host_id: str, guest_id: str, nickname: Any) -> bool:
        """Queue a guest for approval.

        Returns False (and writes nothing) if the guest is already allowed or
        pending.
        """
        async with self._locks.hold(host_id):
            snap = await self._read(host_id)
            if snap.is_allowed(guest_id) or snap.is_pending(guest_id):
                return False

            snap.pending.append(PermissionEntry(guest_id, nickname))
            await self.hub.store.put(NS_PENDING, host_id, _dump_list(snap.pending))

        self.log.info(
            "Pending guest=%s host=%s nickname=%r",
            fmt_id(guest_id),
            fmt_id(host_id),
            nickname,
        )
        return True

    async def approve(
        self, host_id: str, guest_id: str, nickname: Any = None
    ) -> PermissionSnapshot:
        """Move a guest to the allowed list.

        Appends only if absent from allowed and removes any pending entry.
        Without a nickname the pending entry's nickname is kept. Both lists
        are written with one put_many().
        """
        async with self._locks.hold(host_id):
            snap = await self._read(host_id)

            if nickname is None:
                prior = snap.find_pending(guest_id)
                if prior is not None:
                    nickname = prior.nickname

            if not snap.is_allowed(guest_id):
                snap.allowed.append(PermissionEntry(guest_id, nickname))
            snap.pending = [e for e in snap.pending if e.guest_id != guest_id]

            await self.hub.store.put_many(
                {
                    (NS_ALLOWED, host_id): _dump_list(snap.allowed),
                    (NS_PENDING, host_id): _dump_list(snap.pending),
                }
            )

        self.log.info("Approved guest=%s host=%s", fmt_id(guest_id), fmt_id(host_id))
        return snap

    async def reject(self, host_id: str, guest_id: str) -> PermissionSnapshot:
        """Remove a guest from the pending list only."""
        async with self._locks.hold(host_id):
            snap = await self._read(host_id)
            snap.pending = [e for e in snap.pending if e.guest_id != guest_id]
            await self.hub.store.put(NS_PENDING, host_id, _dump_list(snap.pending))

        self.log.info("Rejected guest=%s host=%s", fmt_id(guest_id), fmt_id(host_id))
        return snap

    async def revoke(self, host_id: str, guest_id: str) -> PermissionSnapshot:
        """Remove a guest from the allowed list only."""
        async with self._locks.hold(host_id):
            snap = await self._read(host_id)
            snap.allowed = [e for e in snap.allowed if e.guest_id != guest_id]
            await self.hub.store.put(NS_ALLOWED, host_id, _dump_list(snap.allowed))

        self.log.info("Revoked guest=%s host=%s", fmt_id(guest_id), fmt_id(host_id))
        return snap
