from __future__ import annotations

import http
import logging
import signal
import threading
from typing import Any

from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from . import __version__
from .config import RelayRuntimeConfig
from .delivery import DeliveryEngine, Outbox
from .files import FileTransferRelay
from .presence import PresenceDirectory
from .registry import Connection, ConnectionRegistry
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .util import fmt_peer


class RelayService:
    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("campusnet.relay")

        self._shutdown = threading.Event()

        # The registry owns the only shared mutable state, and its lock.
        # Connection handler threads route under that lock and send after
        # releasing it.
        self.registry = ConnectionRegistry()

        self.stats_manager = StatsManager(self)

        # Address resolution and best-effort sends
        self.delivery = DeliveryEngine(self)

        # Login exchange and rate limiting
        self.session_manager = SessionManager(self)

        # Presence events and the who directory
        self.presence = PresenceDirectory(self)

        # fileMeta/fileChunk pass-through
        self.file_relay = FileTransferRelay(self)

        self.router = MessageRouter(self)

        self._server: Server | None = None
        self._server_thread: threading.Thread | None = None

    # Connection lifecycle. These are transport-agnostic: anything with
    # send(data) and close(code, reason) works as a transport.

    def handle_connect(self, transport: Any, *, cid: str, peer: str) -> Connection:
        conn = Connection(cid=cid, peer=peer, transport=transport)
        with self.registry.lock:
            self.registry.register(conn)
            self.session_manager.on_connect(conn)
        self.stats_manager.inc("connections")
        self.log.info("Client connected peer=%s cid=%s", conn.peer, conn.cid)
        return conn

    def handle_frame(self, conn: Connection, data: str | bytes) -> None:
        outbox = Outbox()
        with self.registry.lock:
            self.router.route_frame(conn, data, outbox)
        self.delivery.flush(outbox)

    def handle_close(self, conn: Connection) -> None:
        with self.registry.lock:
            removed, sess = self.registry.remove(conn)
            self.session_manager.on_close(conn)

        if not removed:
            return

        self.stats_manager.inc("disconnects")
        self.log.info(
            "Client disconnected peer=%s user=%r cid=%s",
            conn.peer,
            sess.user_id if sess else None,
            conn.cid,
        )

    # websockets plumbing

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        path = request.path.split("?", 1)[0]
        if path != self.config.ws_path:
            self.log.debug("Rejecting handshake path=%r peer=%s", path, fmt_peer(connection.remote_address))
            return connection.respond(http.HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    def _handle_ws(self, ws: ServerConnection) -> None:
        conn = self.handle_connect(ws, cid=ws.id.hex, peer=fmt_peer(ws.remote_address))
        try:
            for data in ws:
                self.handle_frame(conn, data)
        except ConnectionClosed as e:
            self.log.debug("Connection error cid=%s: %s", conn.cid, e)
        finally:
            self.handle_close(conn)

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            raise RuntimeError("relay is not started")
        host, port = self._server.socket.getsockname()[:2]
        return str(host), int(port)

    def start(self) -> None:
        if self._server is not None:
            return

        self.stats_manager.set_start_time()
        cfg = self.config
        self._server = serve(
            self._handle_ws,
            cfg.host,
            cfg.port,
            process_request=self._process_request,
            server_header=f"{cfg.server_name}/{__version__}",
            max_size=cfg.max_frame_bytes or None,
            ping_interval=cfg.ping_interval_s or None,
            ping_timeout=cfg.ping_timeout_s or None,
        )
        self._server_thread = threading.Thread(
            target=self._server.serve_forever,
            name="campusnet-server",
            daemon=True,
        )
        self._server_thread.start()

        host, port = self.address
        self.log.info("%s relay running on ws://%s:%s%s", cfg.server_name, host, port, cfg.ws_path)
        self.log.info(
            "Policy duplicate_login=%s rate_limit_msgs_per_minute=%s max_chunk_chars=%s max_frame_bytes=%s",
            cfg.duplicate_login,
            cfg.rate_limit_msgs_per_minute,
            cfg.max_chunk_chars,
            cfg.max_frame_bytes,
        )

    def run_forever(self) -> None:
        if self._server is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self._shutdown.set())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown.set())

        while not self._shutdown.is_set():
            self._shutdown.wait(0.25)

        self.log.info("Shutting down relay")
        self.stop()

    def stop(self) -> None:
        self._shutdown.set()

        server = self._server
        self._server = None
        if server is not None:
            server.shutdown()
        if self._server_thread is not None:
            self._server_thread.join(timeout=5.0)
            self._server_thread = None

        conns = self.registry.clear_all()
        for conn in conns:
            try:
                conn.transport.close(1001, "server shutting down")
            except Exception:
                pass
        self.delivery.join_closers(timeout=2.0)

        if server is not None:
            self.log.info("Relay stopped\n%s", self.stats_manager.format_stats())
