import itertools
import json

import pytest

from campusnet.codec import decode
from campusnet.config import RelayRuntimeConfig
from campusnet.service import RelayService


class FakeTransport:
    """Stands in for a websocket: records what the relay sends."""

    def __init__(self) -> None:
        self.sent: list = []
        self.closed: tuple[int, str] | None = None
        self.broken = False

    def send(self, data) -> None:
        if self.broken:
            raise BrokenPipeError("peer went away")
        self.sent.append(data)

    def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)


class Client:
    def __init__(self, hub: RelayService, conn, transport: FakeTransport) -> None:
        self.hub = hub
        self.conn = conn
        self.transport = transport

    def send(self, obj) -> None:
        self.hub.handle_frame(self.conn, json.dumps(obj))

    def send_raw(self, data) -> None:
        self.hub.handle_frame(self.conn, data)

    def login(self, user_id, display_name=None) -> dict:
        msg = {"type": "login", "userId": user_id}
        if display_name is not None:
            msg["displayName"] = display_name
        self.send(msg)
        return self.of_type("loginAck")[-1]

    def close(self) -> None:
        self.hub.handle_close(self.conn)

    @property
    def inbox(self) -> list[dict]:
        return [decode(d) for d in self.transport.sent]

    def of_type(self, t: str) -> list[dict]:
        return [m for m in self.inbox if m["type"] == t]

    def clear(self) -> None:
        self.transport.sent.clear()


class Relay:
    def __init__(self, **overrides) -> None:
        self.hub = RelayService(RelayRuntimeConfig(**overrides))
        self._ids = itertools.count(1)

    def connect(self) -> Client:
        n = next(self._ids)
        transport = FakeTransport()
        conn = self.hub.handle_connect(transport, cid=f"c{n}", peer=f"10.0.0.{n}:5000")
        return Client(self.hub, conn, transport)

    def logged_in(self, user_id: str, display_name=None) -> Client:
        client = self.connect()
        ack = client.login(user_id, display_name)
        assert ack["ok"] is True
        return client


@pytest.fixture
def make_relay():
    return Relay


@pytest.fixture
def relay() -> Relay:
    return Relay()
