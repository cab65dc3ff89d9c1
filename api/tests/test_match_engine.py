from datetime import timedelta

import pytest

from app.gateway import Eq, pair_filter
from app.services import events as ev
from app.services.errors import ForbiddenError, ValidationError
from app.services.matches import MatchEngine, canonical_pair, pair_key


def _pair_rows(gateway, a, b):
    return gateway.select("chat_matches", [pair_filter(a, b)])


def test_swipe_like_then_accept(matches, make_profile, clock, bus):
    x = make_profile("Xan")
    y = make_profile("Yara")

    outcome = matches.create_from_swipe(x["id"], y["id"])
    match = outcome.match
    assert outcome.created is True
    assert match["status"] == "pending_request"
    assert match["user1_id"] == x["id"] and match["user2_id"] == y["id"]
    assert match["user1_liked"] is True and match["user2_liked"] is False
    assert match["viewed"] is False
    assert match["expires_at"] == clock() + timedelta(days=7)

    clock.advance(days=3)
    accepted = matches.accept_request(match["id"], y["id"]).match
    assert accepted["status"] == "active"
    assert accepted["user2_liked"] is True
    assert accepted["viewed"] is True
    # the window restarts at acceptance
    assert accepted["expires_at"] == clock() + timedelta(days=7)
    assert bus.kinds() == [ev.MATCH_REQUESTED, ev.MATCH_ACCEPTED]


def test_second_swipe_like_reuses_existing_match(matches, gateway, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    first = matches.create_from_swipe(x["id"], y["id"])
    again = matches.create_from_swipe(y["id"], x["id"])

    assert again.created is False
    assert again.match["id"] == first.match["id"]
    assert len(_pair_rows(gateway, x["id"], y["id"])) == 1


def test_cannot_like_yourself(matches, make_profile):
    x = make_profile()
    with pytest.raises(ValidationError):
        matches.create_from_swipe(x["id"], x["id"])


def test_only_recipient_answers_a_request(matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.create_from_swipe(x["id"], y["id"]).match
    with pytest.raises(ForbiddenError):
        matches.accept_request(match["id"], x["id"])


def test_decline_is_terminal_and_frees_the_pair(matches, gateway, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.create_from_swipe(x["id"], y["id"]).match

    declined = matches.decline_request(match["id"], y["id"]).match
    assert declined["status"] == "declined"
    assert declined["user2_liked"] is False
    assert declined["viewed"] is True
    with pytest.raises(ValidationError):
        matches.accept_request(match["id"], y["id"])

    # declined rows persist; a fresh request may be created afterwards
    fresh = matches.create_from_swipe(x["id"], y["id"])
    assert fresh.created is True
    assert len(_pair_rows(gateway, x["id"], y["id"])) == 2


def test_double_accept_from_two_tabs_is_a_noop(gateway, bus, clock, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    tab1 = MatchEngine(gateway, bus, clock=clock)
    match = tab1.create_from_swipe(x["id"], y["id"]).match

    class StaleReads:
        """Serves the pre-accept row once, as a tab that loaded before the other clicked."""

        def __init__(self, inner, stale_row):
            self.inner = inner
            self.stale_row = stale_row

        def select(self, collection, where=(), **kwargs):
            if collection == "chat_matches" and self.stale_row is not None:
                row, self.stale_row = self.stale_row, None
                return [row]
            return self.inner.select(collection, where, **kwargs)

        def __getattr__(self, name):
            return getattr(self.inner, name)

    tab2 = MatchEngine(StaleReads(gateway, dict(match)), bus, clock=clock)

    first = tab1.accept_request(match["id"], y["id"])
    second = tab2.accept_request(match["id"], y["id"])

    assert first.changed is True
    assert second.changed is False
    assert second.match["status"] == "active"
    rows = _pair_rows(gateway, x["id"], y["id"])
    assert [r["status"] for r in rows] == ["active"]
    assert bus.kinds().count(ev.MATCH_ACCEPTED) == 1


def test_mutual_match_uses_canonical_order(matches, make_profile):
    a = make_profile("Ann")
    b = make_profile("Bea")
    low, high = canonical_pair(a["id"], b["id"])

    outcome = matches.ensure_mutual_match(high, low)
    match = outcome.match
    assert (match["user1_id"], match["user2_id"]) == (low, high)
    assert match["pair_key"] == pair_key(a["id"], b["id"])
    assert match["status"] == "active"
    assert match["user1_liked"] and match["user2_liked"] and match["viewed"]


def test_concurrent_mutual_match_creation_yields_one_match(gateway, bus, clock, make_profile):
    a = make_profile("Ann")
    b = make_profile("Bea")
    first = MatchEngine(gateway, bus, clock=clock)
    second = MatchEngine(gateway, bus, clock=clock)

    original_find = first.find_active_match
    raced = {}

    def find_then_lose_race(user_a, user_b):
        found = original_find(user_a, user_b)
        if not raced:
            # the other process completes its whole check-then-create in between
            raced["outcome"] = second.ensure_mutual_match(user_b, user_a)
        return found

    first.find_active_match = find_then_lose_race
    outcome = first.ensure_mutual_match(a["id"], b["id"])

    assert raced["outcome"].created is True
    assert outcome.created is False
    assert outcome.match["id"] == raced["outcome"].match["id"]
    assert len(_pair_rows(gateway, a["id"], b["id"])) == 1


def test_mutual_like_promotes_a_pending_request(matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    request = matches.create_from_swipe(x["id"], y["id"]).match

    outcome = matches.ensure_mutual_match(x["id"], y["id"])
    assert outcome.match["id"] == request["id"]
    assert outcome.match["status"] == "active"
    assert outcome.match["user2_liked"] is True


def test_toggle_like_flips_only_own_flag(matches, make_profile, bus):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.create_from_swipe(x["id"], y["id"]).match
    matches.accept_request(match["id"], y["id"])

    view = matches.toggle_like(match["id"], x["id"])
    assert view.user_has_liked is False
    assert view.partner_has_liked is True
    assert view.both_liked is False
    assert view.status == "active"

    view = matches.toggle_like(match["id"], x["id"], True)
    assert view.both_liked is True
    assert bus.kinds()[-1] == ev.MATCH_LIKED


def test_reveal_round_trip(matches, make_profile, bus):
    a = make_profile("Ann", instagram_id="ann.gram")
    b = make_profile("Bea", instagram_id="bea_b")
    match = matches.ensure_mutual_match(a["id"], b["id"]).match

    view = matches.toggle_reveal(match["id"], a["id"], True)
    assert view.status == "pending_reveal"
    assert view.reveal_requested_by == a["id"]
    assert matches.get_match_view(match["id"], a["id"]).partner_profile["instagram_id"] is None

    view = matches.toggle_reveal(match["id"], b["id"], True)
    assert view.status == "revealed"
    assert view.both_reveal is True
    assert matches.get_match_view(match["id"], b["id"]).partner_profile["instagram_id"] == "ann.gram"

    view = matches.toggle_reveal(match["id"], b["id"], False)
    assert view.status == "pending_reveal"
    assert view.both_reveal is False
    assert bus.kinds() == [ev.REVEAL_REQUESTED, ev.REVEAL_COMPLETED]


def test_reveal_needs_both_likes(matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.create_from_swipe(x["id"], y["id"]).match
    matches.accept_request(match["id"], y["id"])
    matches.toggle_like(match["id"], y["id"], False)

    with pytest.raises(ValidationError):
        matches.toggle_reveal(match["id"], x["id"], True)


def test_reveal_status_is_rederived_from_stored_flags(matches, gateway, make_profile):
    a = make_profile("Ann")
    b = make_profile("Bea")
    match = matches.ensure_mutual_match(a["id"], b["id"]).match
    # flag write landed but the status write did not
    gateway.update("chat_matches", [Eq("id", match["id"])], {"user1_reveal": True, "user2_reveal": True})

    fresh, changed = matches.sync_reveal_status(match["id"])
    assert changed is True
    assert fresh["status"] == "revealed"


def test_reveal_off_on_both_sides_returns_to_active(matches, gateway, make_profile):
    a = make_profile("Ann")
    b = make_profile("Bea")
    match = matches.ensure_mutual_match(a["id"], b["id"]).match
    matches.toggle_reveal(match["id"], a["id"], True)
    assert matches.toggle_reveal(match["id"], b["id"], True).status == "revealed"

    # a turned reveal off but its status write never landed
    side_a = "user1" if match["user1_id"] == a["id"] else "user2"
    gateway.update("chat_matches", [Eq("id", match["id"])], {f"{side_a}_reveal": False})

    view = matches.toggle_reveal(match["id"], b["id"], False)
    assert view.both_reveal is False
    assert view.status == "active"
    assert matches.get_match(match["id"])["status"] == "active"
    assert matches.get_match_view(match["id"], b["id"]).partner_profile["instagram_id"] is None


def test_messaging_requires_a_live_chat(matches, make_profile, clock):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.create_from_swipe(x["id"], y["id"]).match

    with pytest.raises(ValidationError):
        matches.send_message(match["id"], x["id"], "hey")

    matches.accept_request(match["id"], y["id"])
    message = matches.send_message(match["id"], x["id"], "  hey there  ")
    assert message["content"] == "hey there"
    assert message["receiver_id"] == y["id"]

    with pytest.raises(ValidationError):
        matches.send_message(match["id"], x["id"], "   ")

    clock.advance(days=7)
    with pytest.raises(ValidationError, match="expired"):
        matches.send_message(match["id"], y["id"], "still there?")
    view = matches.get_match_view(match["id"], y["id"])
    assert view.is_expired is True
    assert view.can_message is False
    assert view.time_left == "Expired"


def test_expiry_survives_a_fresh_engine(gateway, bus, clock, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    engine = MatchEngine(gateway, bus, clock=clock)
    match = engine.ensure_mutual_match(x["id"], y["id"]).match
    clock.advance(days=8)

    restarted = MatchEngine(gateway, bus, clock=clock)
    assert restarted.get_match_view(match["id"], x["id"]).can_message is False
    assert restarted.get_match(match["id"])["status"] == "active"


def test_outsiders_cannot_read_or_write(matches, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    z = make_profile("Zed")
    match = matches.ensure_mutual_match(x["id"], y["id"]).match
    with pytest.raises(ForbiddenError):
        matches.list_messages(match["id"], z["id"])
    with pytest.raises(ForbiddenError):
        matches.send_message(match["id"], z["id"], "hi")


def test_opening_a_thread_marks_unread_in_one_batch(matches, gateway, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    match = matches.ensure_mutual_match(x["id"], y["id"]).match
    matches.send_message(match["id"], x["id"], "one")
    matches.send_message(match["id"], x["id"], "two")
    matches.send_message(match["id"], y["id"], "mine")

    calls = []
    original = gateway.update

    def counting_update(collection, where, patch):
        calls.append(collection)
        return original(collection, where, patch)

    gateway.update = counting_update
    thread = matches.open_thread(match["id"], y["id"])

    assert thread["marked_read"] == 2
    assert calls == ["chat_messages"]
    unread = [m for m in matches.list_messages(match["id"], y["id"]) if m["receiver_id"] == y["id"] and m["read_at"] is None]
    assert unread == []
    assert matches.mark_thread_read(match["id"], y["id"]) == 0


def test_request_listing_marks_viewed(matches, make_profile, gateway):
    x = make_profile("Xan")
    y = make_profile("Yara")
    ghost_id = "00000000-0000-0000-0000-00000000dead"
    matches.create_from_swipe(x["id"], y["id"])
    gateway.insert(
        "chat_matches",
        {
            "user1_id": ghost_id,
            "user2_id": y["id"],
            "pair_key": pair_key(ghost_id, y["id"]),
            "status": "pending_request",
            "user1_liked": True,
            "expires_at": matches.clock() + timedelta(days=7),
        },
    )

    requests = matches.list_requests(y["id"])
    assert len(requests) == 2
    names = sorted(r["sender_profile"]["first_name"] for r in requests)
    assert names == ["Someone", "Xan"]
    assert all(r["viewed"] is False for r in requests)
    assert all(r["viewed"] for r in matches.list_requests(y["id"]))


def test_chat_list_has_partner_and_last_message(matches, make_profile, clock):
    x = make_profile("Xan", instagram_id="xan")
    y = make_profile("Yara")
    z = make_profile("Zed")
    live = matches.ensure_mutual_match(x["id"], y["id"]).match
    matches.create_from_swipe(z["id"], x["id"])
    matches.send_message(live["id"], y["id"], "first")
    clock.advance(minutes=1)
    matches.send_message(live["id"], x["id"], "latest")

    chats = matches.list_chats(x["id"])
    assert [c.id for c in chats] == [live["id"]]
    chat = chats[0]
    assert chat.partner_id == y["id"]
    assert chat.partner_profile["first_name"] == "Yara"
    assert chat.last_message["content"] == "latest"
    assert chat.time_left == "6d 23h"


def test_chat_list_includes_legacy_pending_rows(matches, gateway, make_profile):
    x = make_profile("Xan")
    y = make_profile("Yara")
    legacy = matches.ensure_mutual_match(x["id"], y["id"]).match
    gateway.update("chat_matches", [Eq("id", legacy["id"])], {"status": "pending"})

    chats = matches.list_chats(x["id"])
    assert [c.id for c in chats] == [legacy["id"]]
    assert chats[0].status == "pending_reveal"
    assert chats[0].can_message is True
