from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import decode, wire_of
from .constants import T_ANNOUNCEMENT, T_LOGIN, T_MESSAGE
from .delivery import Outbox
from .envelope import (
    Announcement,
    ChatMessage,
    EnvelopeError,
    FileChunk,
    FileMeta,
    Inbound,
    Login,
    UnknownMessageType,
    Who,
    make_error,
    make_relayed,
    message_type,
    parse_inbound,
)
from .registry import Connection, Session

if TYPE_CHECKING:
    from .service import RelayService


class MessageRouter:
    """
    Handles message routing and dispatching for the relay.

    This class is responsible for:
    - Decoding inbound frames (JSON text or CBOR binary)
    - Rejecting unknown tags and unauthenticated requests
    - Validating fields once, via envelope.parse_inbound
    - Dispatching each envelope to exactly one handler
    - Rate limiting
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("campusnet.router")

    def route_frame(self, conn: Connection, data: str | bytes, outbox: Outbox) -> None:
        """
        Main entry point for routing an inbound frame.

        This method should be called with the registry lock held.
        """
        registry = self.hub.registry
        if not registry.is_registered(conn):
            return

        stats = self.hub.stats_manager
        stats.inc("frames_in")
        stats.inc("bytes_in", len(data))

        # Replies follow the encoding the client speaks.
        conn.wire = wire_of(data)

        if not self.hub.session_manager.refill_and_take(conn, 1.0):
            stats.inc("rate_limited")
            self.log.debug("Rate limited cid=%s peer=%s", conn.cid, conn.peer)
            self._error(conn, "rate limited", outbox)
            return

        try:
            env = decode(data)
        except Exception as e:
            stats.inc("frames_bad")
            self.log.debug(
                "Bad frame cid=%s peer=%s bytes=%s err=%s", conn.cid, conn.peer, len(data), e
            )
            self._error(conn, f"invalid message: {e}", outbox)
            return

        try:
            t = message_type(env)
        except UnknownMessageType as e:
            stats.inc("frames_bad")
            self._error(conn, str(e), outbox)
            return
        except EnvelopeError as e:
            stats.inc("frames_bad")
            self._error(conn, f"invalid message: {e}", outbox)
            return

        sess = registry.get_session(conn)
        if t != T_LOGIN and sess is None:
            self._error(conn, "not logged in", outbox)
            return

        try:
            msg = parse_inbound(env)
        except EnvelopeError as e:
            stats.inc("frames_bad")
            self._error(conn, str(e), outbox)
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX cid=%s user=%r t=%s bytes=%s",
                conn.cid,
                sess.user_id if sess else None,
                t,
                len(data),
            )

        if isinstance(msg, Login):
            self.hub.session_manager.login(conn, msg, outbox)
        elif sess is not None:
            self._dispatch(conn, sess, msg, outbox)

    def _dispatch(self, conn: Connection, sess: Session, msg: Inbound, outbox: Outbox) -> None:
        if isinstance(msg, ChatMessage):
            self._handle_message(conn, sess, msg, outbox)
        elif isinstance(msg, Announcement):
            self._handle_announcement(conn, sess, msg, outbox)
        elif isinstance(msg, Who):
            self.hub.presence.who(conn, outbox)
        elif isinstance(msg, FileMeta):
            self.hub.file_relay.relay_meta(conn, sess, msg, outbox)
        elif isinstance(msg, FileChunk):
            self.hub.file_relay.relay_chunk(conn, sess, msg, outbox)

    def _handle_message(
        self, conn: Connection, sess: Session, msg: ChatMessage, outbox: Outbox
    ) -> None:
        env = make_relayed(T_MESSAGE, sender=sess.user_id, to=msg.to, text=msg.text)
        n = self.hub.delivery.route(conn, msg.to, env, outbox)
        self.hub.stats_manager.inc("msgs_forwarded")
        self.log.info(
            "Message from=%r to=%r chars=%s targets=%s",
            sess.user_id,
            msg.to,
            len(msg.text),
            n,
        )

    def _handle_announcement(
        self, conn: Connection, sess: Session, msg: Announcement, outbox: Outbox
    ) -> None:
        env = make_relayed(T_ANNOUNCEMENT, sender=sess.user_id, text=msg.text)
        self.hub.delivery.broadcast(env, outbox)
        self.hub.stats_manager.inc("announcements_forwarded")
        self.log.info("Announcement from=%r chars=%s", sess.user_id, len(msg.text))

    def _error(self, conn: Connection, text: str, outbox: Outbox) -> None:
        self.hub.stats_manager.inc("errors_sent")
        self.hub.delivery.reply(conn, make_error(text), outbox)
