import pytest

from app.gateway import Eq
from app.services.errors import ForbiddenError, ValidationError
from app.services.reports import reportable_partners, submit_report


def test_only_live_mutual_chats_are_reportable(matches, gateway, make_profile, clock):
    me = make_profile("Mia")
    chat = make_profile("Ana", age=31)
    asked = make_profile("Bo")
    unliked = make_profile("Cy")
    matches.ensure_mutual_match(me["id"], chat["id"])
    matches.create_from_swipe(asked["id"], me["id"])
    cooled = matches.ensure_mutual_match(me["id"], unliked["id"]).match
    matches.toggle_like(cooled["id"], unliked["id"], False)

    partners = reportable_partners(gateway, me["id"], clock())
    assert [(p["user_id"], p["first_name"], p["age"], p["status"]) for p in partners] == [
        (chat["id"], "Ana", 31, "active")
    ]

    clock.advance(days=8)
    assert reportable_partners(gateway, me["id"], clock()) == []


def test_report_is_stored_for_a_current_partner(matches, gateway, make_profile, clock):
    me = make_profile("Mia")
    other = make_profile("Ana")
    matches.ensure_mutual_match(me["id"], other["id"])

    report = submit_report(gateway, me["id"], other["id"], "  rude messages  ", clock())
    stored = gateway.select("user_reports", [Eq("id", report["id"])])
    assert len(stored) == 1
    assert stored[0]["reporter_id"] == me["id"]
    assert stored[0]["reported_user_id"] == other["id"]
    assert stored[0]["message"] == "rude messages"


def test_report_rejects_strangers_and_bad_input(matches, gateway, make_profile, clock):
    me = make_profile("Mia")
    stranger = make_profile("Zed")
    with pytest.raises(ForbiddenError):
        submit_report(gateway, me["id"], stranger["id"], "spam", clock())
    with pytest.raises(ValidationError):
        submit_report(gateway, me["id"], me["id"], "spam", clock())
    with pytest.raises(ValidationError):
        submit_report(gateway, me["id"], stranger["id"], "   ", clock())
    assert gateway.select("user_reports", [Eq("reporter_id", me["id"])]) == []


def test_legacy_pending_chat_can_be_reported(matches, gateway, make_profile, clock):
    me = make_profile("Mia")
    other = make_profile("Ana")
    match = matches.ensure_mutual_match(me["id"], other["id"]).match
    gateway.update("chat_matches", [Eq("id", match["id"])], {"status": "pending"})

    partners = reportable_partners(gateway, me["id"], clock())
    assert [(p["user_id"], p["status"]) for p in partners] == [(other["id"], "pending_reveal")]
