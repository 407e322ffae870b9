"""Connection registry: live connections, their sessions and the user-id index."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from .constants import WIRE_JSON


@dataclass(eq=False)
class Connection:
    """One live transport link. Identity is by object, not by field values."""

    cid: str
    peer: str
    transport: Any
    created_at: float = field(default_factory=time.time)
    alive: bool = True
    wire: str = WIRE_JSON


@dataclass(frozen=True)
class Session:
    user_id: str
    display_name: str
    logged_in_at: float = field(default_factory=time.time)


class ConnectionRegistry:
    """
    Authoritative store of connections and sessions.

    The user-id index always points at a registered connection whose session
    carries that id. Every method takes the registry lock, and callers may
    hold ``lock`` across several calls to make a routing step atomic.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._sessions: dict[Connection, Session | None] = {}
        self._index_by_user: dict[str, Connection] = {}

    def register(self, conn: Connection) -> None:
        with self.lock:
            self._sessions[conn] = None

    def attach_session(self, conn: Connection, user_id: str, display_name: str) -> Session:
        """
        Bind an identity to a registered connection.

        Overwrites any earlier session on the same connection. If another
        connection is indexed under ``user_id`` it loses the index entry; the
        duplicate-login policy in SessionManager decides whether that may
        happen.
        """
        with self.lock:
            if conn not in self._sessions:
                raise KeyError(f"connection {conn.cid} is not registered")

            old = self._sessions.get(conn)
            if old is not None and self._index_by_user.get(old.user_id) is conn:
                self._index_by_user.pop(old.user_id, None)

            sess = Session(user_id=user_id, display_name=display_name)
            self._sessions[conn] = sess
            self._index_by_user[user_id] = conn
            return sess

    def detach_session(self, conn: Connection) -> Session | None:
        with self.lock:
            old = self._sessions.get(conn)
            if old is None:
                return None
            self._sessions[conn] = None
            if self._index_by_user.get(old.user_id) is conn:
                self._index_by_user.pop(old.user_id, None)
            return old

    def remove(self, conn: Connection) -> tuple[bool, Session | None]:
        """
        Forget a connection. Idempotent.

        Returns (removed, session) where ``removed`` is False if the
        connection was already gone.
        """
        with self.lock:
            conn.alive = False
            if conn not in self._sessions:
                return False, None
            sess = self._sessions.pop(conn)
            if sess is not None and self._index_by_user.get(sess.user_id) is conn:
                self._index_by_user.pop(sess.user_id, None)
            return True, sess

    def get_session(self, conn: Connection) -> Session | None:
        with self.lock:
            return self._sessions.get(conn)

    def is_registered(self, conn: Connection) -> bool:
        with self.lock:
            return conn in self._sessions

    def lookup_by_user(self, user_id: str) -> Connection | None:
        with self.lock:
            return self._index_by_user.get(user_id)

    def live_connections(self) -> tuple[Connection, ...]:
        """Point-in-time snapshot used by broadcasts."""
        with self.lock:
            return tuple(self._sessions.keys())

    def sessions(self) -> list[tuple[Connection, Session]]:
        """Authenticated connections in registration order."""
        with self.lock:
            return [(c, s) for c, s in self._sessions.items() if s is not None]

    def clear_all(self) -> list[Connection]:
        with self.lock:
            conns = list(self._sessions.keys())
            for c in conns:
                c.alive = False
            self._sessions.clear()
            self._index_by_user.clear()
            return conns

    def get_stats(self) -> dict[str, int]:
        with self.lock:
            total = len(self._sessions)
            authenticated = sum(1 for s in self._sessions.values() if s is not None)
            return {
                "total": total,
                "authenticated": authenticated,
                "indexed_by_user": len(self._index_by_user),
            }
