"""Presence events and the online directory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import F_DISPLAY_NAME, F_USER_ID, PRESENCE_ONLINE, T_PRESENCE, T_WHO
from .delivery import Outbox
from .envelope import make_envelope
from .registry import Connection, Session

if TYPE_CHECKING:
    from .service import RelayService


class PresenceDirectory:
    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("campusnet.presence")

    def announce_online(self, conn: Connection, sess: Session, outbox: Outbox) -> None:
        """Tell every other live connection that ``sess`` just logged in."""
        env = make_envelope(
            T_PRESENCE,
            event=PRESENCE_ONLINE,
            userId=sess.user_id,
            displayName=sess.display_name,
        )
        self.hub.delivery.broadcast(env, outbox, exclude=conn)

    def online_users(self) -> list[dict[str, str]]:
        return [
            {F_USER_ID: s.user_id, F_DISPLAY_NAME: s.display_name}
            for _conn, s in self.hub.registry.sessions()
        ]

    def who(self, conn: Connection, outbox: Outbox) -> None:
        users = self.online_users()
        self.hub.delivery.reply(conn, make_envelope(T_WHO, users=users), outbox)
        self.log.debug("who cid=%s online=%d", conn.cid, len(users))
