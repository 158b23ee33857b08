from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .constants import (
    F_CONTENT,
    F_FROM,
    F_GUEST_ID,
    F_TIME,
    F_TO,
    F_TYPE,
    NS_MAILBOX,
    T_MESSAGE,
)
from .util import KeyedLocks, fmt_id

if TYPE_CHECKING:
    from .service import RelayService


@dataclass(frozen=True)
class Message:
    """A chat message as stored in a mailbox and forwarded on the wire."""

    sender: Any
    content: Any
    time: Any
    guest_id: str | None = None
    to: str | None = None
    kind: str = T_MESSAGE

    def to_dict(self, *, include_to: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {
            F_TYPE: self.kind,
            F_FROM: self.sender,
        }
        if self.guest_id is not None:
            out[F_GUEST_ID] = self.guest_id
        out[F_CONTENT] = self.content
        out[F_TIME] = self.time
        if include_to and self.to is not None:
            out[F_TO] = self.to
        return out


class OfflineMailbox:
    """
    Per-host queue of messages that arrived while the host was offline.

    ``enqueue`` appends to the persisted list; ``flush`` reads the list and
    then deletes it. If the delete fails the error propagates and the
    messages stay stored for the next connect.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.mailbox")
        self._locks = KeyedLocks()

    async def _read(self, host_id: str) -> list[dict[str, Any]]:
        raw = await self.hub.store.get(NS_MAILBOX, host_id)
        if not isinstance(raw, list):
            return []
        return [m for m in raw if isinstance(m, dict)]

    async def enqueue(self, host_id: str, message: Message | dict[str, Any]) -> int:
        record = message.to_dict() if isinstance(message, Message) else dict(message)

        async with self._locks.hold(host_id):
            msgs = await self._read(host_id)
            msgs.append(record)

            dropped = 0
            cap = int(self.hub.config.mailbox_max_messages)
            if cap > 0 and len(msgs) > cap:
                dropped = len(msgs) - cap
                msgs = msgs[dropped:]

            await self.hub.store.put(NS_MAILBOX, host_id, msgs)

        if dropped:
            self.log.warning(
                "Mailbox full host=%s cap=%s; dropped %s oldest",
                fmt_id(host_id),
                cap,
                dropped,
            )
        self.log.debug("Mailboxed message host=%s size=%s", fmt_id(host_id), len(msgs))
        return len(msgs)

    async def flush(self, host_id: str) -> list[dict[str, Any]]:
        async with self._locks.hold(host_id):
            msgs = await self._read(host_id)
            await self.hub.store.delete(NS_MAILBOX, host_id)

        if msgs:
            self.log.info("Flushed mailbox host=%s messages=%s", fmt_id(host_id), len(msgs))
        return msgs

    async def peek(self, host_id: str) -> list[dict[str, Any]]:
        return await self._read(host_id)
