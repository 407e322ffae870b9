"""Address resolution and best-effort delivery."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .codec import encode
from .constants import ROOM_PREFIX
from .registry import Connection

if TYPE_CHECKING:
    from .service import RelayService


def is_room_address(address: str | None) -> bool:
    return isinstance(address, str) and address.startswith(ROOM_PREFIX)


@dataclass
class Outbox:
    """Envelopes queued while the registry lock is held, sent after release."""

    messages: list[tuple[Connection, dict]] = field(default_factory=list)
    closing: list[tuple[Connection, int, str]] = field(default_factory=list)

    def queue(self, conn: Connection, env: dict) -> None:
        self.messages.append((conn, env))

    def close_after(self, conn: Connection, code: int, reason: str) -> None:
        self.closing.append((conn, code, reason))


class DeliveryEngine:
    """
    Resolves addresses to target connections and sends envelopes.

    Resolution runs with the registry lock held and only queues into an
    Outbox; ``flush`` does the actual I/O without the lock.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("campusnet.delivery")
        self._closers_lock = threading.Lock()
        self._closers: list[threading.Thread] = []

    def resolve(self, sender: Connection, address: str | None) -> list[Connection]:
        """
        Target connections for ``address`` as seen from ``sender``.

        Room or missing address: every live connection, sender included.
        Direct address: the indexed connection (if any) followed by the
        sender's own echo copy.
        """
        registry = self.hub.registry
        if address is None or is_room_address(address):
            return list(registry.live_connections())

        targets: list[Connection] = []
        target = registry.lookup_by_user(address)
        if target is not None:
            targets.append(target)
        if sender not in targets:
            targets.append(sender)
        return targets

    def route(self, sender: Connection, address: str | None, env: dict, outbox: Outbox) -> int:
        """Queue ``env`` for every resolved target; returns the target count."""
        targets = self.resolve(sender, address)
        for conn in targets:
            outbox.queue(conn, env)
        return len(targets)

    def broadcast(self, env: dict, outbox: Outbox, *, exclude: Connection | None = None) -> None:
        for conn in self.hub.registry.live_connections():
            if conn is exclude:
                continue
            outbox.queue(conn, env)

    def reply(self, conn: Connection, env: dict, outbox: Outbox) -> None:
        outbox.queue(conn, env)

    def flush(self, outbox: Outbox) -> None:
        if self.log.isEnabledFor(logging.DEBUG) and outbox.messages:
            self.log.debug("Sending %d envelope(s)", len(outbox.messages))

        # One encoding per wire format, shared across targets. None marks an
        # envelope that could not be encoded for that format.
        encoded: dict[tuple[int, str], str | bytes | None] = {}
        for conn, env in outbox.messages:
            key = (id(env), conn.wire)
            if key not in encoded:
                encoded[key] = self._encode(env, conn.wire)
            payload = encoded[key]
            if payload is None:
                self.hub.stats_manager.inc("send_failures")
                continue
            self._send_payload(conn, payload)

        for conn, code, reason in outbox.closing:
            self._close_later(conn, code, reason)

    def join_closers(self, timeout: float | None = None) -> None:
        """Wait for pending close handshakes started by ``flush``."""
        with self._closers_lock:
            pending = list(self._closers)
        for t in pending:
            t.join(timeout)

    def _encode(self, env: dict, wire: str) -> str | bytes | None:
        try:
            return encode(env, wire)
        except (TypeError, ValueError) as e:
            self.log.warning("Encode failed t=%s wire=%s err=%s", env.get("type"), wire, e)
            return None

    def _close_later(self, conn: Connection, code: int, reason: str) -> None:
        # A closing handshake waits on the peer; an unresponsive one must not
        # stall the thread that is routing for someone else.
        t = threading.Thread(
            target=self._close_transport,
            args=(conn, code, reason),
            name=f"campusnet-close-{conn.cid}",
            daemon=True,
        )
        with self._closers_lock:
            self._closers = [c for c in self._closers if c.is_alive()]
            t.start()
            self._closers.append(t)

    def _close_transport(self, conn: Connection, code: int, reason: str) -> None:
        try:
            conn.transport.close(code, reason)
        except Exception:
            self.log.debug("Close failed cid=%s", conn.cid, exc_info=True)

    def _send_payload(self, conn: Connection, payload: str | bytes) -> bool:
        # Connections removed after the snapshot was taken are skipped.
        if not conn.alive:
            self.hub.stats_manager.inc("sends_skipped")
            return False
        try:
            conn.transport.send(payload)
        except OSError as e:
            self.hub.stats_manager.inc("send_failures")
            self.log.warning(
                "Send failed cid=%s peer=%s bytes=%s err=%s",
                conn.cid,
                conn.peer,
                len(payload),
                e,
            )
            return False
        except Exception:
            # Typically websockets.ConnectionClosed: the peer went away mid-send.
            self.hub.stats_manager.inc("send_failures")
            self.log.debug(
                "Send failed cid=%s peer=%s bytes=%s",
                conn.cid,
                conn.peer,
                len(payload),
                exc_info=True,
            )
            return False

        self.hub.stats_manager.inc("bytes_out", len(payload))
        return True
