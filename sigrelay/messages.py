"""Outbound event helpers for the relay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from websockets.exceptions import ConnectionClosed

from .constants import T_ERROR, T_PERMISSIONS_LIST
from .envelope import encode_event, make_event

if TYPE_CHECKING:
    from websockets.asyncio.server import ServerConnection

    from .permissions import PermissionSnapshot
    from .service import RelayService


class MessageHelper:
    """
    Helper methods for sending events to connections.

    Handles:
    - Fire-and-forget sends (a closed peer is logged, never raised)
    - Error emission
    - Permission snapshot pushes to hosts
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.messages")

    async def send(self, conn: ServerConnection | None, event: dict) -> bool:
        """Send one event. Returns False if there was nobody to send to."""
        if conn is None:
            return False

        payload = encode_event(event)
        try:
            await conn.send(payload)
        except ConnectionClosed:
            self.log.debug(
                "Send to closed connection conn=%s type=%s",
                self.hub._fmt_conn(conn),
                event.get("type"),
            )
            return False
        except OSError as e:
            self.log.warning(
                "Send failed conn=%s bytes=%s err=%s",
                self.hub._fmt_conn(conn),
                len(payload),
                e,
            )
            return False

        self.hub.stats_manager.inc("bytes_out", len(payload.encode("utf-8")))
        return True

    async def emit(
        self, conn: ServerConnection | None, event_type: str, **fields: Any
    ) -> bool:
        return await self.send(conn, make_event(event_type, **fields))

    async def emit_error(self, conn: ServerConnection, text: str) -> None:
        self.hub.stats_manager.inc("errors_sent")
        await self.emit(conn, T_ERROR, message=text)

    async def send_permissions(
        self, conn: ServerConnection | None, snapshot: PermissionSnapshot
    ) -> bool:
        return await self.emit(conn, T_PERMISSIONS_LIST, **snapshot.to_event_fields())
