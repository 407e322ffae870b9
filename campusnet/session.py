from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .constants import (
    CLOSE_DISPLACED,
    DUP_REJECT,
    R_MISSING_USER_ID,
    R_USER_ID_IN_USE,
    T_LOGIN_ACK,
)
from .delivery import Outbox
from .envelope import Login, make_envelope, make_error
from .registry import Connection, Session

if TYPE_CHECKING:
    from .service import RelayService


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


class SessionManager:
    """
    Turns anonymous connections into identified sessions.

    This class is responsible for:
    - The login exchange (loginAck + presence fan-out)
    - The duplicate-login policy (replace the older connection, or reject)
    - Per-connection rate limiting with a token bucket

    Must be called with the registry lock held.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("campusnet.session")
        self._rate: dict[Connection, _RateState] = {}

    def on_connect(self, conn: Connection) -> None:
        per_min = int(self.hub.config.rate_limit_msgs_per_minute)
        if per_min > 0:
            self._rate[conn] = _RateState(tokens=float(per_min), last_refill=time.monotonic())

    def on_close(self, conn: Connection) -> None:
        self._rate.pop(conn, None)

    def login(self, conn: Connection, msg: Login, outbox: Outbox) -> Session | None:
        registry = self.hub.registry

        user_id = msg.user_id
        if not user_id:
            self.hub.delivery.reply(
                conn, make_envelope(T_LOGIN_ACK, ok=False, reason=R_MISSING_USER_ID), outbox
            )
            self.log.debug("Login rejected cid=%s reason=%s", conn.cid, R_MISSING_USER_ID)
            return None

        display_name = msg.display_name or user_id

        holder = registry.lookup_by_user(user_id)
        if holder is not None and holder is not conn:
            if self.hub.config.duplicate_login == DUP_REJECT:
                self.hub.delivery.reply(
                    conn, make_envelope(T_LOGIN_ACK, ok=False, reason=R_USER_ID_IN_USE), outbox
                )
                self.log.info(
                    "Login rejected user=%r cid=%s: held by cid=%s",
                    user_id,
                    conn.cid,
                    holder.cid,
                )
                return None
            self._displace(holder, outbox)

        sess = registry.attach_session(conn, user_id, display_name)
        self.hub.stats_manager.inc("logins")

        self.hub.delivery.reply(
            conn,
            make_envelope(T_LOGIN_ACK, ok=True, userId=sess.user_id, displayName=sess.display_name),
            outbox,
        )
        self.hub.presence.announce_online(conn, sess, outbox)

        self.log.info(
            "User logged in user=%r display_name=%r cid=%s peer=%s",
            sess.user_id,
            sess.display_name,
            conn.cid,
            conn.peer,
        )
        return sess

    def _displace(self, holder: Connection, outbox: Outbox) -> None:
        old = self.hub.registry.detach_session(holder)
        self.hub.delivery.reply(holder, make_error("logged in from another connection"), outbox)
        outbox.close_after(holder, CLOSE_DISPLACED, "logged in elsewhere")
        self.hub.stats_manager.inc("displaced")
        self.log.info(
            "Displacing older login user=%r cid=%s",
            old.user_id if old else None,
            holder.cid,
        )

    def refill_and_take(self, conn: Connection, cost: float = 1.0) -> bool:
        """
        Token bucket rate limiting.

        Refills tokens based on elapsed time and attempts to take `cost` tokens.
        Returns True if tokens were available and taken, False if rate limited.
        Connections without a bucket (limit disabled) are never limited.
        """
        state = self._rate.get(conn)
        if state is None:
            return True

        now = time.monotonic()
        per_min = float(max(1, int(self.hub.config.rate_limit_msgs_per_minute)))
        rate_per_s = per_min / 60.0
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * rate_per_s)
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = dict(self.hub.registry.get_stats())
        stats["rate_buckets"] = len(self._rate)
        return stats
