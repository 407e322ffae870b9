import cbor2


def test_login_with_blank_user_id_is_rejected(relay) -> None:
    watcher = relay.logged_in("watcher")
    watcher.clear()
    c = relay.connect()

    ack = c.login("   ")
    assert ack == {"type": "loginAck", "ok": False, "reason": "missing_userId"}
    assert c.inbox == [ack]
    assert watcher.inbox == []
    assert relay.hub.registry.get_session(c.conn) is None


def test_login_defaults_display_name_and_notifies_others(relay) -> None:
    bob = relay.logged_in("bob")
    carol = relay.connect()
    bob.clear()

    alice = relay.connect()
    ack = alice.login("alice")
    assert ack == {"type": "loginAck", "ok": True, "userId": "alice", "displayName": "alice"}

    expected = {"type": "presence", "event": "online", "userId": "alice", "displayName": "alice"}
    assert bob.of_type("presence") == [expected]
    assert carol.of_type("presence") == [expected]
    assert alice.of_type("presence") == []


def test_login_blank_display_name_falls_back_to_user_id(relay) -> None:
    c = relay.connect()
    assert c.login("alice", "   ")["displayName"] == "alice"


def test_direct_message_to_unknown_user_only_echoes(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    alice.clear()
    bob.clear()

    alice.send({"type": "message", "to": "ghost", "text": "boo"})

    assert [m["type"] for m in alice.inbox] == ["message"]
    msg = alice.inbox[0]
    assert msg["from"] == "alice"
    assert msg["to"] == "ghost"
    assert msg["text"] == "boo"
    assert "ts" in msg
    assert bob.inbox == []


def test_direct_message_reaches_target_and_sender(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    carol = relay.logged_in("carol")
    for c in (alice, bob, carol):
        c.clear()

    alice.send({"type": "message", "to": "bob", "text": "hi bob"})

    assert len(bob.inbox) == 1
    assert bob.inbox == alice.inbox
    assert carol.inbox == []


def test_message_to_self_is_delivered_once(relay) -> None:
    alice = relay.logged_in("alice")
    alice.clear()
    alice.send({"type": "message", "to": "alice", "text": "note to self"})
    assert len(alice.inbox) == 1


def test_from_is_taken_from_session_not_client(relay) -> None:
    alice = relay.logged_in("alice")
    alice.clear()
    alice.send({"type": "message", "to": "room:general", "text": "hi", "from": "mallory"})
    assert alice.inbox[0]["from"] == "alice"


def test_room_message_reaches_every_live_connection(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    anon = relay.connect()
    for c in (alice, bob, anon):
        c.clear()

    alice.send({"type": "message", "to": "room:general", "text": "hello all"})

    copies = [alice.inbox, bob.inbox, anon.inbox]
    for inbox in copies:
        assert len(inbox) == 1
    first = alice.inbox[0]
    assert {k: first[k] for k in ("type", "from", "to", "text")} == {
        "type": "message",
        "from": "alice",
        "to": "room:general",
        "text": "hello all",
    }
    assert bob.inbox[0] == first
    assert anon.inbox[0] == first


def test_announcement_broadcasts_including_sender(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    alice.clear()
    bob.clear()

    alice.send({"type": "announcement", "text": "fire drill at 3"})

    for c in (alice, bob):
        (ann,) = c.inbox
        assert ann["type"] == "announcement"
        assert ann["from"] == "alice"
        assert ann["text"] == "fire drill at 3"
        assert "to" not in ann


def test_who_lists_each_authenticated_user_once(relay) -> None:
    relay.logged_in("alice", "Alice A.")
    bob = relay.logged_in("bob")
    relay.connect()
    relay.connect()
    bob.clear()

    bob.send({"type": "who"})
    (reply,) = bob.inbox
    assert reply["type"] == "who"
    assert sorted(reply["users"], key=lambda u: u["userId"]) == [
        {"userId": "alice", "displayName": "Alice A."},
        {"userId": "bob", "displayName": "bob"},
    ]


def test_closed_connection_drops_out_of_who(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    alice.close()
    bob.clear()

    bob.send({"type": "who"})
    assert bob.inbox[0]["users"] == [{"userId": "bob", "displayName": "bob"}]


def test_unknown_type_errors_only_to_sender_and_connection_survives(relay) -> None:
    alice = relay.logged_in("alice")
    bob = relay.logged_in("bob")
    alice.clear()
    bob.clear()

    alice.send({"type": "bogus"})
    (err,) = alice.inbox
    assert err["type"] == "error"
    assert "bogus" in err["error"]
    assert bob.inbox == []

    alice.clear()
    alice.send({"type": "who"})
    assert alice.inbox[0]["type"] == "who"


def test_requests_before_login_are_refused(relay) -> None:
    anon = relay.connect()
    other = relay.logged_in("bob")
    other.clear()

    for msg in (
        {"type": "message", "to": "room:general", "text": "hi"},
        {"type": "announcement", "text": "hi"},
        {"type": "who"},
        {"type": "fileMeta", "fileId": "f1"},
        {"type": "fileChunk", "fileId": "f1", "seq": 0, "dataBase64": "QQ=="},
    ):
        anon.clear()
        anon.send(msg)
        assert anon.inbox == [{"type": "error", "error": "not logged in"}]

    assert other.inbox == []


def test_not_logged_in_wins_over_field_validation(relay) -> None:
    anon = relay.connect()
    anon.send({"type": "message"})
    assert anon.inbox == [{"type": "error", "error": "not logged in"}]


def test_malformed_frame_gets_error_and_connection_stays_open(relay) -> None:
    alice = relay.logged_in("alice")
    alice.clear()

    alice.send_raw("{not json")
    (err,) = alice.inbox
    assert err["type"] == "error"
    assert err["error"].startswith("invalid message")

    alice.clear()
    alice.send_raw("[1, 2]")
    assert alice.inbox[0]["error"].startswith("invalid message")

    alice.clear()
    alice.send({"type": "message", "to": "room:x", "text": "still here"})
    assert alice.inbox[0]["text"] == "still here"
    assert relay.hub.stats_manager.get("frames_bad") == 2


def test_invalid_fields_are_reported(relay) -> None:
    alice = relay.logged_in("alice")
    alice.clear()
    alice.send({"type": "message", "to": "bob"})
    assert alice.inbox == [{"type": "error", "error": "invalid message: missing 'text'"}]


def test_cbor_client_gets_cbor_replies(relay) -> None:
    json_peer = relay.logged_in("bob")
    json_peer.clear()

    c = relay.connect()
    c.send_raw(cbor2.dumps({"type": "login", "userId": "robot"}))
    raw = c.transport.sent[0]
    assert isinstance(raw, bytes)
    assert cbor2.loads(raw)["ok"] is True

    c.send_raw(cbor2.dumps({"type": "message", "to": "room:lab", "text": "beep"}))
    assert isinstance(c.transport.sent[-1], bytes)
    assert isinstance(json_peer.transport.sent[-1], str)
    assert json_peer.inbox[-1]["text"] == "beep"


def test_rate_limit(make_relay) -> None:
    relay = make_relay(rate_limit_msgs_per_minute=2)
    alice = relay.logged_in("alice")
    alice.send({"type": "who"})
    alice.clear()

    alice.send({"type": "who"})
    assert alice.inbox == [{"type": "error", "error": "rate limited"}]
    assert relay.hub.stats_manager.get("rate_limited") == 1


def test_frames_from_unregistered_connection_are_ignored(relay) -> None:
    alice = relay.logged_in("alice")
    alice.close()
    alice.clear()
    alice.send({"type": "who"})
    assert alice.inbox == []
