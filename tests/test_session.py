from campusnet.constants import CLOSE_DISPLACED


def test_duplicate_login_replaces_older_connection(relay) -> None:
    old = relay.logged_in("alice")
    old.clear()

    new = relay.connect()
    ack = new.login("alice", "Alice (phone)")
    assert ack["ok"] is True

    assert {"type": "error", "error": "logged in from another connection"} in old.inbox
    relay.hub.delivery.join_closers(timeout=1.0)
    assert old.transport.closed == (CLOSE_DISPLACED, "logged in elsewhere")
    assert relay.hub.registry.get_session(old.conn) is None
    assert relay.hub.registry.lookup_by_user("alice") is new.conn

    # The old handler thread reports the close later; it must not disturb the new login.
    old.close()
    assert relay.hub.registry.lookup_by_user("alice") is new.conn

    new.clear()
    new.send({"type": "who"})
    assert new.inbox[0]["users"] == [{"userId": "alice", "displayName": "Alice (phone)"}]


def test_duplicate_login_rejected_by_policy(make_relay) -> None:
    relay = make_relay(duplicate_login="reject")
    old = relay.logged_in("alice")
    old.clear()

    new = relay.connect()
    ack = new.login("alice")
    assert ack == {"type": "loginAck", "ok": False, "reason": "userId_in_use"}
    assert relay.hub.registry.get_session(new.conn) is None
    assert relay.hub.registry.lookup_by_user("alice") is old.conn
    assert old.inbox == []
    assert old.transport.closed is None


def test_relogin_on_same_connection(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    bob.clear()

    ack = alice.login("alicia", "Alicia")
    assert ack == {"type": "loginAck", "ok": True, "userId": "alicia", "displayName": "Alicia"}
    assert bob.of_type("presence") == [
        {"type": "presence", "event": "online", "userId": "alicia", "displayName": "Alicia"}
    ]
    assert relay.hub.registry.lookup_by_user("alice") is None
    assert relay.hub.registry.lookup_by_user("alicia") is alice.conn


def test_relogin_same_id_is_not_a_duplicate(make_relay) -> None:
    relay = make_relay(duplicate_login="reject")
    alice = relay.logged_in("alice")
    assert alice.login("alice", "Alice")["ok"] is True
    assert alice.transport.closed is None


def test_login_counts(relay) -> None:
    relay.logged_in("alice")
    relay.connect().login("")
    assert relay.hub.stats_manager.get("logins") == 1
