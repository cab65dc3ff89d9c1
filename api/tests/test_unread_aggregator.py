import random
import threading

from app.gateway import Eq
from app.realtime import INSERT, RealtimeEvent
from app.services.live import ChatRoom, InboxBridge, LetterBox
from app.services.unread import UnreadAggregator, count_initial_unread, load_initial_counts


def _assert_total_consistent(snap):
    assert snap.total == snap.matches + snap.messages + snap.letters


def test_increments_and_resets_leave_other_fields_alone():
    agg = UnreadAggregator("viewer")
    agg.increment_matches()
    agg.increment_letters(2)
    agg.increment_messages("chat-a")
    agg.increment_messages("chat-a")
    snap = agg.increment_messages("chat-b")

    assert (snap.matches, snap.messages, snap.letters, snap.total) == (1, 3, 2, 6)
    assert snap.per_chat == {"chat-a": 2, "chat-b": 1}

    snap = agg.reset_chat("chat-a")
    assert (snap.matches, snap.messages, snap.letters) == (1, 1, 2)
    snap = agg.reset_matches()
    assert (snap.matches, snap.messages, snap.letters) == (0, 1, 2)
    snap = agg.reset_letters()
    assert (snap.matches, snap.messages, snap.letters, snap.total) == (0, 1, 0, 1)


def test_total_holds_under_interleaved_threads():
    agg = UnreadAggregator("viewer")
    ops = [
        agg.increment_matches,
        agg.increment_letters,
        lambda: agg.increment_messages("c1"),
        lambda: agg.increment_messages("c2"),
        agg.reset_matches,
        agg.reset_letters,
        lambda: agg.reset_chat("c1"),
    ]
    seen = []
    agg.add_listener(seen.append)

    def worker(seed):
        rng = random.Random(seed)
        for _ in range(200):
            rng.choice(ops)()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for snap in seen:
        _assert_total_consistent(snap)
    _assert_total_consistent(agg.snapshot())


def test_apply_command():
    agg = UnreadAggregator("viewer")
    agg.increment_messages("m1")
    agg.increment_letters()
    assert agg.apply_command("chat:m1").messages == 0
    assert agg.apply_command("letters").letters == 0
    try:
        agg.apply_command("everything")
    except ValueError:
        pass
    else:
        raise AssertionError("unknown command accepted")


def test_initial_load_counts_requests_and_unread_letters(gateway, matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    z = make_profile("Zed")
    matches.create_from_swipe(x["id"], y["id"])
    seen_request = matches.create_from_swipe(z["id"], y["id"]).match
    gateway.update("chat_matches", [Eq("id", seen_request["id"])], {"viewed": True})
    gateway.insert("letters", {"sender_id": x["id"], "recipient_id": y["id"], "content": "hi", "status": "pending"})
    read = gateway.insert("letters", {"sender_id": z["id"], "recipient_id": y["id"], "content": "yo", "status": "pending"})
    gateway.update("letters", [Eq("id", read["id"])], {"read_at": matches.clock()})

    assert count_initial_unread(gateway, y["id"]) == {"matches": 1, "letters": 1, "messages": 0}
    snap = load_initial_counts(gateway, UnreadAggregator(y["id"]))
    assert (snap.matches, snap.letters, snap.messages, snap.total) == (1, 1, 0, 2)


def test_bridge_counts_realtime_inserts_once(hub, gateway, matches, letters, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    agg = UnreadAggregator(y["id"])
    bridge = InboxBridge(hub, gateway, agg).start()

    matches.create_from_swipe(x["id"], y["id"])
    letter = gateway.insert("letters", {"sender_id": x["id"], "recipient_id": y["id"], "content": "hi", "status": "pending"})
    snap = agg.snapshot()
    assert (snap.matches, snap.letters) == (1, 1)

    # a replayed event for a known letter is ignored
    hub.publish(RealtimeEvent(INSERT, "letters", new=letter))
    assert agg.snapshot().letters == 1

    # a request aimed at someone else does not count
    z = make_profile("Zed")
    matches.create_from_swipe(x["id"], z["id"])
    assert agg.snapshot().matches == 1

    bridge.close()
    assert hub.subscriber_count() == 0
    gateway.insert("letters", {"sender_id": x["id"], "recipient_id": y["id"], "content": "again", "status": "pending"})
    assert agg.snapshot().letters == 1


def test_opening_a_chat_clears_only_that_thread(hub, gateway, matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    z = make_profile("Zed")
    with_x = matches.ensure_mutual_match(x["id"], y["id"]).match
    with_z = matches.ensure_mutual_match(z["id"], y["id"]).match

    agg = UnreadAggregator(y["id"])
    bridge = InboxBridge(hub, gateway, agg).start()
    room = ChatRoom(hub, matches, y["id"], bridge=bridge).open()

    matches.send_message(with_x["id"], x["id"], "hey")
    matches.send_message(with_z["id"], z["id"], "hello")
    snap = agg.snapshot()
    assert snap.per_chat == {with_x["id"]: 1, with_z["id"]: 1}

    thread = room.select(with_x["id"])
    assert thread["marked_read"] == 1
    snap = agg.snapshot()
    assert snap.per_chat == {with_z["id"]: 1}
    assert snap.messages == 1

    # reopening does not decrement again
    room.deselect()
    room.select(with_x["id"])
    assert agg.snapshot().messages == 1

    # a message into the open thread is appended and read immediately
    matches.send_message(with_x["id"], x["id"], "still here")
    assert [m["content"] for m in room.messages] == ["hey", "still here"]
    assert agg.snapshot().messages == 1
    assert matches.mark_thread_read(with_x["id"], y["id"]) == 0

    # a message into another chat only moves its preview
    matches.send_message(with_z["id"], z["id"], "ping")
    assert len(room.messages) == 2
    assert room.chats[with_z["id"]].last_message["content"] == "ping"

    room.close()
    bridge.close()


def test_chat_list_puts_latest_activity_first(hub, matches, make_profile, clock):
    x = make_profile("Xan")
    y = make_profile("Yara")
    z = make_profile("Zed")
    with_x = matches.ensure_mutual_match(x["id"], y["id"]).match
    clock.advance(minutes=1)
    with_z = matches.ensure_mutual_match(z["id"], y["id"]).match

    room = ChatRoom(hub, matches, y["id"])
    assert room.is_open is False
    room.open()
    assert room.is_open is True
    assert [v.id for v in room.chat_list()] == [with_z["id"], with_x["id"]]

    clock.advance(minutes=1)
    matches.send_message(with_x["id"], x["id"], "bump")
    assert [v.id for v in room.chat_list()] == [with_x["id"], with_z["id"]]

    room.close()
    assert room.is_open is False
    clock.advance(minutes=1)
    matches.send_message(with_z["id"], z["id"], "unheard")
    assert [v.id for v in room.chat_list()] == [with_x["id"], with_z["id"]]


def test_chat_room_reports_partner_like(hub, matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.create_from_swipe(x["id"], y["id"]).match
    matches.accept_request(match["id"], y["id"])
    matches.toggle_like(match["id"], x["id"], False)

    liked = []
    room = ChatRoom(hub, matches, y["id"], on_partner_liked=liked.append).open()
    assert room.chats[match["id"]].both_liked is False

    matches.toggle_like(match["id"], x["id"], True)
    assert room.chats[match["id"]].both_liked is True
    assert [v.id for v in liked] == [match["id"]]

    matches.toggle_like(match["id"], y["id"], False)
    assert room.chats[match["id"]].user_has_liked is False
    assert len(liked) == 1
    room.close()


def test_letter_box_tracks_inserts_updates_and_search(hub, gateway, letters, make_profile, clock):
    x = make_profile("Xan")
    y = make_profile("Yara")
    box = LetterBox(hub, letters, y["id"]).open()
    assert box.letters() == []

    first = gateway.insert("letters", {"sender_id": x["id"], "recipient_id": y["id"], "content": "Tea later?", "status": "pending", "created_at": clock()})
    clock.advance(minutes=1)
    gateway.insert("letters", {"sender_id": x["id"], "recipient_id": y["id"], "content": "Or coffee", "status": "pending", "created_at": clock()})

    assert [l["content"] for l in box.letters()] == ["Or coffee", "Tea later?"]
    assert box.letters()[0]["sender_name"] == "Xan"
    assert box.unread_count() == 2

    letters.mark_read(first["id"], y["id"])
    assert box.unread_count() == 1
    letters.like_letter(first["id"], y["id"])
    assert box.get(first["id"])["status"] == "liked"
    assert [l["content"] for l in box.letters(search="tea")] == ["Tea later?"]

    letters.start_chat(first["id"], x["id"])
    assert box.get(first["id"]) is None
    box.close()
