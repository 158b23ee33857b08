from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import (
    F_CONTENT,
    F_FROM,
    F_GUEST_ID,
    F_NICKNAME,
    F_TIME,
    F_TO,
    F_TYPE,
    HOST_SENDER,
    NOTIFY_ADDRESSED,
    ROLE_HOST,
    T_ALLOW_GUEST,
    T_MESSAGE,
    T_OFFLINE_MESSAGES,
    T_REJECT_GUEST,
    T_REMOVE_GUEST,
    T_VERIFY_PASS,
    T_VERIFY_REJECT,
    T_VERIFY_REQUEST,
    TEXT_MALFORMED,
    TEXT_NOT_PERMITTED,
)
from .credentials import VerifyResult
from .envelope import decode_event, event_time, validate_event
from .errors import AuthError, ProtocolError
from .mailbox import Message
from .session import ST_ACTIVE, ST_BOOTSTRAPPED, ST_CLOSED, ST_VERIFYING, Session
from .util import fmt_id

if TYPE_CHECKING:
    from websockets.asyncio.server import ServerConnection

    from .service import RelayService


class MessageRouter:
    """
    Per-connection state machine of the relay.

    This class is responsible for:
    - Opening sessions (host password check, mailbox flush, permission push)
    - Decoding and validating inbound frames
    - Dispatching events by type and sender role
    - Permission gating of guest traffic
    - Forwarding to live peers, or mailboxing for an offline host
    - Closing sessions
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("sigrelay.router")

    # Lifecycle

    async def open_session(
        self, user_id: str, role: str, conn: ServerConnection, password: str | None
    ) -> Session:
        """
        Run the open transition for a new connection.

        Guests are registered and active immediately. Hosts are checked by
        the credential verifier first; on success they are registered, their
        mailbox is flushed and their permission snapshot loaded, and both are
        pushed before the session goes active.

        Raises AuthError on a password mismatch. The caller notifies the
        client and closes the connection.
        """
        sess = Session(user_id=user_id, role=role, conn=conn)

        if role != ROLE_HOST:
            self.hub.session_manager.register(sess)
            sess.state = ST_ACTIVE
            return sess

        if password:
            sess.state = ST_VERIFYING
        result = await self.hub.credentials.verify(user_id, password)
        if result is VerifyResult.REJECTED:
            sess.state = ST_CLOSED
            raise AuthError(user_id)

        # Only a verified host may take over the registry entry.
        self.hub.session_manager.register(sess)

        messages = await self.hub.mailbox.flush(user_id)
        snapshot = await self.hub.permissions.snapshot(user_id)
        sess.state = ST_BOOTSTRAPPED

        helper = self.hub.message_helper
        await helper.emit(conn, T_OFFLINE_MESSAGES, messages=messages)
        await helper.send_permissions(conn, snapshot)

        sess.state = ST_ACTIVE
        self.log.info(
            "Host online host=%s login=%s offline_messages=%s allowed=%s pending=%s",
            fmt_id(user_id),
            result.value,
            len(messages),
            len(snapshot.allowed),
            len(snapshot.pending),
        )
        return sess

    def close_session(self, sess: Session) -> None:
        removed = self.hub.session_manager.remove(sess.user_id, sess.conn)
        self.log.info(
            "Session closed user=%s role=%s registry_removed=%s",
            fmt_id(sess.user_id),
            sess.role,
            removed,
        )

    # Inbound

    async def route(self, sess: Session, data: str | bytes) -> None:
        """
        Main entry point for one inbound frame.

        Malformed frames and any failure while handling an event (including
        store failures) are answered with a generic error event; the session
        stays active either way.
        """
        stats = self.hub.stats_manager
        stats.inc("frames_in")
        size = len(data.encode("utf-8")) if isinstance(data, str) else len(data)
        stats.inc("bytes_in", size)

        try:
            event = decode_event(data)
            validate_event(event, from_guest=sess.is_guest)
        except ProtocolError as e:
            stats.inc("frames_bad")
            self.log.debug(
                "Bad frame user=%s role=%s bytes=%s err=%s",
                fmt_id(sess.user_id),
                sess.role,
                size,
                e,
            )
            await self.hub.message_helper.emit_error(sess.conn, TEXT_MALFORMED)
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX user=%s role=%s type=%s guest=%s to=%s bytes=%s",
                fmt_id(sess.user_id),
                sess.role,
                event.get(F_TYPE),
                fmt_id(event.get(F_GUEST_ID)),
                fmt_id(event.get(F_TO)),
                size,
            )

        try:
            await self._dispatch(sess, event)
        except Exception:
            self.log.exception(
                "Event handling failed user=%s type=%s",
                fmt_id(sess.user_id),
                event.get(F_TYPE),
            )
            await self.hub.message_helper.emit_error(sess.conn, TEXT_MALFORMED)

    async def _dispatch(self, sess: Session, event: dict) -> None:
        t = event[F_TYPE]

        if sess.is_guest:
            if t == T_VERIFY_REQUEST:
                await self._handle_verify_request(sess, event)
            elif t == T_MESSAGE:
                await self._handle_guest_message(sess, event)
            else:
                self._ignore(sess, t)
            return

        if t == T_ALLOW_GUEST:
            await self._handle_allow_guest(sess, event)
        elif t == T_REJECT_GUEST:
            await self._handle_reject_guest(sess, event)
        elif t == T_REMOVE_GUEST:
            await self._handle_remove_guest(sess, event)
        elif t == T_MESSAGE:
            await self._handle_host_message(sess, event)
        else:
            self._ignore(sess, t)

    def _ignore(self, sess: Session, t: Any) -> None:
        self.log.debug(
            "Ignoring event type=%s from user=%s role=%s",
            t,
            fmt_id(sess.user_id),
            sess.role,
        )

    # Peer lookups

    def _host_conn(self, host_id: str) -> ServerConnection | None:
        peer = self.hub.session_manager.get(host_id)
        return peer.conn if peer is not None and peer.is_host else None

    def _guest_conn(self, guest_id: str) -> ServerConnection | None:
        peer = self.hub.session_manager.get(guest_id)
        return peer.conn if peer is not None and peer.is_guest else None

    def _decision_target(self, sess: Session, guest_id: str) -> ServerConnection | None:
        """Pick the guest connection told about an allow/reject decision."""
        if self.hub.config.guest_notify_policy == NOTIFY_ADDRESSED:
            return self._guest_conn(guest_id)

        # Any guest that is not the sender. With several guests waiting at
        # once this may not be the guest the decision was about.
        peer = self.hub.session_manager.any_guest(exclude=sess.conn)
        return peer.conn if peer is not None else None

    # Guest events

    async def _handle_verify_request(self, sess: Session, event: dict) -> None:
        host_id = event[F_TO]
        guest_id = event[F_GUEST_ID]
        helper = self.hub.message_helper
        stats = self.hub.stats_manager
        stats.inc("verify_requests")

        snapshot = await self.hub.permissions.snapshot(host_id)

        if snapshot.is_allowed(guest_id):
            # Already allowed: deliver like a chat message, never mailboxed.
            out = self._guest_message(event, host_id).to_dict(include_to=False)
            if await helper.send(self._host_conn(host_id), out):
                stats.inc("msgs_forwarded")
            else:
                stats.inc("msgs_dropped")
            return

        if snapshot.is_pending(guest_id):
            self.log.debug(
                "Verify request already pending guest=%s host=%s",
                fmt_id(guest_id),
                fmt_id(host_id),
            )
            return

        nickname = event.get(F_FROM)
        if not await self.hub.permissions.add_pending(host_id, guest_id, nickname):
            return

        host_conn = self._host_conn(host_id)
        if host_conn is None:
            return

        notice = {
            F_TYPE: T_VERIFY_REQUEST,
            F_GUEST_ID: guest_id,
            F_FROM: nickname,
            F_CONTENT: event.get(F_CONTENT),
            F_TIME: event_time(event),
        }
        await helper.send(host_conn, notice)
        snapshot = await self.hub.permissions.snapshot(host_id)
        await helper.send_permissions(host_conn, snapshot)

    async def _handle_guest_message(self, sess: Session, event: dict) -> None:
        host_id = event[F_TO]
        guest_id = event[F_GUEST_ID]
        stats = self.hub.stats_manager

        snapshot = await self.hub.permissions.snapshot(host_id)
        if not snapshot.is_allowed(guest_id):
            stats.inc("msgs_dropped")
            self.log.debug(
                "Dropping message from unapproved guest=%s host=%s",
                fmt_id(guest_id),
                fmt_id(host_id),
            )
            if self.hub.config.notify_denied:
                await self.hub.message_helper.emit_error(sess.conn, TEXT_NOT_PERMITTED)
            return

        msg = self._guest_message(event, host_id)
        host_conn = self._host_conn(host_id)
        if host_conn is not None and await self.hub.message_helper.send(
            host_conn, msg.to_dict(include_to=False)
        ):
            stats.inc("msgs_forwarded")
            return

        await self.hub.mailbox.enqueue(host_id, msg)
        stats.inc("msgs_mailboxed")

    def _guest_message(self, event: dict, host_id: str) -> Message:
        return Message(
            sender=event.get(F_FROM),
            content=event.get(F_CONTENT),
            time=event_time(event),
            guest_id=event[F_GUEST_ID],
            to=host_id,
        )

    # Host events

    async def _handle_allow_guest(self, sess: Session, event: dict) -> None:
        guest_id = event[F_GUEST_ID]
        helper = self.hub.message_helper

        snapshot = await self.hub.permissions.approve(
            sess.user_id, guest_id, event.get(F_NICKNAME)
        )
        await helper.send_permissions(sess.conn, snapshot)
        await helper.emit(self._decision_target(sess, guest_id), T_VERIFY_PASS)

    async def _handle_reject_guest(self, sess: Session, event: dict) -> None:
        guest_id = event[F_GUEST_ID]
        helper = self.hub.message_helper

        snapshot = await self.hub.permissions.reject(sess.user_id, guest_id)
        await helper.send_permissions(sess.conn, snapshot)
        await helper.emit(self._decision_target(sess, guest_id), T_VERIFY_REJECT)

    async def _handle_remove_guest(self, sess: Session, event: dict) -> None:
        snapshot = await self.hub.permissions.revoke(sess.user_id, event[F_GUEST_ID])
        await self.hub.message_helper.send_permissions(sess.conn, snapshot)

    async def _handle_host_message(self, sess: Session, event: dict) -> None:
        helper = self.hub.message_helper
        stats = self.hub.stats_manager

        out = Message(
            sender=HOST_SENDER,
            content=event.get(F_CONTENT),
            time=event_time(event),
        ).to_dict(include_to=False)

        to = event.get(F_TO)
        if to:
            # Offline guests are not mailboxed; only hosts have mailboxes.
            if await helper.send(self._guest_conn(to), out):
                stats.inc("msgs_forwarded")
            else:
                stats.inc("msgs_dropped")
            return

        guests = self.hub.session_manager.guests()
        for peer in guests:
            await helper.send(peer.conn, out)
        stats.inc("msgs_broadcast")
        self.log.debug(
            "Broadcast from host=%s recipients=%s", fmt_id(sess.user_id), len(guests)
        )
