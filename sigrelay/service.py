from __future__ import annotations

import asyncio
import logging
import os
import signal
from http import HTTPStatus
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosedError
from websockets.http11 import Request, Response

from .config import RelayRuntimeConfig, apply_config_data, diff_config_summary, load_toml
from .constants import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    T_LOGIN_FAIL,
    TEXT_BAD_PASSWORD,
    TEXT_RUNNING,
)
from .credentials import CredentialVerifier
from .errors import AuthError, ValidationError
from .handshake import is_upgrade_request, parse_handshake
from .logging_config import configure_logging
from .mailbox import OfflineMailbox
from .messages import MessageHelper
from .permissions import PermissionStore
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .store import KeyValueStore, open_store
from .util import expand_path, fmt_id


class RelayService:
    def __init__(
        self, config: RelayRuntimeConfig, *, store: KeyValueStore | None = None
    ) -> None:
        self.config = config
        self.log = logging.getLogger("sigrelay.relay")

        if store is None:
            store_path = expand_path(config.store_path) if config.store_path else None
            store = open_store(config.store_backend, store_path)
        self.store = store

        self.stats_manager = StatsManager(self)

        # Connection registry; owned here so routing has one coordinator.
        self.session_manager = SessionManager(self)

        self.credentials = CredentialVerifier(self)
        self.permissions = PermissionStore(self)
        self.mailbox = OfflineMailbox(self)

        self.message_helper = MessageHelper(self)
        self.router = MessageRouter(self)

        self._server: Server | None = None
        self._shutdown: asyncio.Event | None = None

    def _fmt_conn(self, conn: Any) -> str:
        cid = getattr(conn, "id", None)
        if cid is not None:
            return str(cid)[:8]
        addr = getattr(conn, "remote_address", None)
        if isinstance(addr, tuple) and addr:
            return ":".join(str(p) for p in addr[:2])
        return "-"

    # Handshake

    def process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """
        Runs before the WebSocket upgrade.

        Plain HTTP requests get a status line; upgrade requests without a
        usable ``id``/``role`` are refused with 400 and never upgraded.
        """
        if not is_upgrade_request(request.headers):
            return connection.respond(HTTPStatus.OK, f"{TEXT_RUNNING}\n")

        try:
            parse_handshake(request.path)
        except ValidationError as e:
            self.stats_manager.inc("handshakes_rejected")
            self.log.info(
                "Rejected handshake conn=%s err=%s", self._fmt_conn(connection), e
            )
            return connection.respond(HTTPStatus.BAD_REQUEST, f"{e}\n")

        return None

    async def handle_connection(self, conn: ServerConnection) -> None:
        try:
            hs = parse_handshake(conn.request.path)
        except ValidationError as e:
            await conn.close(CLOSE_POLICY_VIOLATION, str(e))
            return

        self.stats_manager.inc("conns_opened")
        self.log.debug(
            "Connection open conn=%s user=%s role=%s",
            self._fmt_conn(conn),
            fmt_id(hs.user_id),
            hs.role,
        )

        try:
            sess = await self.router.open_session(
                hs.user_id, hs.role, conn, hs.password
            )
        except AuthError:
            await self.message_helper.emit(conn, T_LOGIN_FAIL, reason=TEXT_BAD_PASSWORD)
            await conn.close(CLOSE_POLICY_VIOLATION, TEXT_BAD_PASSWORD)
            self.stats_manager.inc("conns_closed")
            return
        except Exception:
            self.log.exception("Session open failed user=%s", fmt_id(hs.user_id))
            self.session_manager.remove(hs.user_id, conn)
            await conn.close(CLOSE_INTERNAL_ERROR, "internal error")
            self.stats_manager.inc("conns_closed")
            return

        try:
            async for data in conn:
                await self.router.route(sess, data)
        except ConnectionClosedError as e:
            self.log.debug(
                "Connection lost user=%s conn=%s err=%s",
                fmt_id(sess.user_id),
                self._fmt_conn(conn),
                e,
            )
        finally:
            self.router.close_session(sess)
            self.stats_manager.inc("conns_closed")

    # Lifecycle

    async def serve_forever(self) -> None:
        self.stats_manager.set_start_time()
        self._shutdown = asyncio.Event()
        self._install_signal_handlers()
        await self.store.open()

        ping_interval = self.config.ping_interval_s or None
        ping_timeout = self.config.ping_timeout_s or None

        async with serve(
            self.handle_connection,
            self.config.listen_host,
            self.config.listen_port,
            process_request=self.process_request,
            max_size=int(self.config.max_message_bytes) or None,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
        ) as server:
            self._server = server
            self.log.info(
                "Relay running listen=%s:%s store=%s",
                self.config.listen_host,
                self.config.listen_port,
                self.config.store_backend,
            )
            self.log.info(
                "Policy guest_notify_policy=%s notify_denied=%s mailbox_max_messages=%s",
                self.config.guest_notify_policy,
                self.config.notify_denied,
                self.config.mailbox_max_messages,
            )
            await self._shutdown.wait()

        self._server = None
        self.session_manager.clear_all()
        await self.store.close()
        self.log.info("Stopped %s", self.stats_manager.format_stats())

    def run_forever(self) -> None:
        asyncio.run(self.serve_forever())

    def stop(self) -> None:
        if self._shutdown is not None:
            self._shutdown.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.stop)
            loop.add_signal_handler(signal.SIGTERM, self.stop)
            loop.add_signal_handler(signal.SIGHUP, self.reload_config)
        except (NotImplementedError, AttributeError):
            # No loop signal support on this platform.
            self.log.debug("Signal handlers not installed")

    def reload_config(self) -> list[str]:
        """Re-read the config file and apply it.

        Policy and logging settings take effect at once; listener and store
        settings are reported as needing a restart. Returns the change lines.
        """
        cfg_path = self.config.config_path
        if not cfg_path or not os.path.exists(expand_path(cfg_path)):
            self.log.warning("Reload skipped: config_path not set or missing")
            return []

        old_cfg = self.config
        try:
            data = load_toml(expand_path(cfg_path))
            new_cfg = apply_config_data(old_cfg, data)
        except (OSError, ValueError) as e:
            self.log.error("Reload failed: %s", e)
            return []

        self.config = new_cfg

        try:
            configure_logging(self.config)
        except OSError:
            self.log.exception("Failed to reconfigure logging")

        changes = diff_config_summary(old_cfg, new_cfg)
        self.log.info("Reloaded config changes=%s", len(changes))
        for line in changes:
            self.log.info("- %s", line)
        return changes
