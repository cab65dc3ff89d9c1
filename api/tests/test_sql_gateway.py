from datetime import date, datetime, timezone

import pytest

from app.gateway import AllOf, AnyOf, Embed, Eq, Gt, In, IsNull, Lte, Neq
from app.services.errors import ConflictError
from app.services.matches import pair_key


def _match(user1, user2, status="active", expires_at=None):
    return {
        "user1_id": user1,
        "user2_id": user2,
        "pair_key": pair_key(user1, user2),
        "status": status,
        "expires_at": expires_at or datetime(2030, 1, 1, tzinfo=timezone.utc),
    }


def test_active_pair_index_raises_conflict(gateway):
    gateway.insert("chat_matches", _match("a", "b"))
    with pytest.raises(ConflictError):
        gateway.insert("chat_matches", _match("b", "a", status="pending_request"))


def test_closed_matches_do_not_block_a_new_one(gateway):
    gateway.insert("chat_matches", _match("a", "b", status="declined"))
    gateway.insert("chat_matches", _match("a", "b", status="expired"))
    created = gateway.insert("chat_matches", _match("a", "b"))
    assert created["status"] == "active"
    assert len(gateway.select("chat_matches", [Eq("pair_key", "a:b")])) == 3


def test_predicates(gateway, make_profile):
    ana = make_profile("Ana", age=22)
    bo = make_profile("Bo", age=30, city="Denver")
    cy = make_profile("Cy", age=40, bio=None)

    def names(where):
        return sorted(p["first_name"] for p in gateway.select("profiles", where))

    assert names([Gt("age", 22), Lte("age", 40)]) == ["Bo", "Cy"]
    assert names([Neq("city", "Austin")]) == ["Bo"]
    assert names([In("id", [ana["id"], cy["id"]])]) == ["Ana", "Cy"]
    assert names([In("id", [])]) == []
    assert names([IsNull("bio")]) == ["Ana", "Bo", "Cy"]
    assert names([AnyOf(Eq("first_name", "Ana"), AllOf(Eq("city", "Denver"), Eq("age", 30)))]) == ["Ana", "Bo"]
    assert bo["created_at"].tzinfo is not None


def test_conditional_update_returns_only_changed_rows(gateway):
    row = gateway.insert("chat_matches", _match("a", "b", status="pending_request"))
    first = gateway.update("chat_matches", [Eq("id", row["id"]), Eq("status", "pending_request")], {"status": "active"})
    second = gateway.update("chat_matches", [Eq("id", row["id"]), Eq("status", "pending_request")], {"status": "declined"})
    assert [r["status"] for r in first] == ["active"]
    assert second == []
    with pytest.raises(ValueError):
        gateway.update("chat_matches", [], {"status": "declined"})


def test_upsert_inserts_then_updates(gateway):
    created = gateway.upsert("chat_preferences", {"user_id": "u1", "min_age": 20, "max_age": 30, "show_me": []})
    updated = gateway.upsert("chat_preferences", {"user_id": "u1", "min_age": 25, "max_age": 30, "show_me": ["woman"]})
    assert created["min_age"] == 20
    assert updated["min_age"] == 25
    assert updated["show_me"] == ["woman"]
    assert len(gateway.select("chat_preferences")) == 1


def test_embed_joins_related_profiles(gateway, make_profile):
    ana = make_profile("Ana")
    gateway.insert("letters", {"sender_id": ana["id"], "recipient_id": "ghost", "content": "hi", "status": "pending"})
    rows = gateway.select(
        "letters",
        embed=[Embed("sender_profile", "sender_id", columns=("first_name",)), Embed("recipient_profile", "recipient_id")],
    )
    assert rows[0]["sender_profile"] == {"id": ana["id"], "first_name": "Ana"}
    assert rows[0]["recipient_profile"] is None


def test_swipe_counter_stops_at_limit(gateway):
    today = date(2025, 6, 1)
    counts = [gateway.rpc("increment_swipe_count", user_id="u1", limit=2, swipe_date=today) for _ in range(3)]
    assert counts == [1, 2, -1]
    assert gateway.rpc("increment_swipe_count", user_id="u1", limit=2, swipe_date=date(2025, 6, 2)) == 1


def test_coupon_activates_profile_until_used_up(gateway, make_profile):
    me = make_profile("Mia", is_active=False, subscription_ended=True)
    other = make_profile("Ana", is_active=False)
    gateway.insert("coupons", {"code": "SPRING", "max_uses": 1, "used_count": 0, "is_active": True})

    assert gateway.rpc("validate_coupon_and_activate", code=" spring ", user_id=me["id"]) is True
    profile = gateway.select("profiles", [Eq("id", me["id"])])[0]
    assert profile["is_active"] is True
    assert profile["subscription_ended"] is False
    assert gateway.rpc("validate_coupon_and_activate", code="SPRING", user_id=other["id"]) is False
    assert gateway.rpc("validate_coupon_and_activate", code="NOPE", user_id=other["id"]) is False


def test_unknown_procedure(gateway):
    with pytest.raises(ValueError):
        gateway.rpc("drop_everything")
