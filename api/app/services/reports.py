"""
User reports.

A user may only report someone they currently share a live chat with: a
messaging-status match both sides still like that has not run out.
"""

import logging
from datetime import datetime
from typing import Any

from ..config import REPORT_MAX_LENGTH
from ..gateway import Eq, In, PersistenceGateway, participant_filter
from ..http_helpers import validate_text_body
from .errors import ForbiddenError, ValidationError
from .matches import MESSAGING_FILTER, _now_utc, partner_of
from .state_machine import effective_status, is_expired

logger = logging.getLogger(__name__)


def reportable_partners(gateway: PersistenceGateway, viewer_id: str, now: datetime | None = None) -> list[dict[str, Any]]:
    now = now or _now_utc()
    rows = gateway.select(
        "chat_matches",
        [participant_filter(viewer_id), MESSAGING_FILTER, Eq("user1_liked", True), Eq("user2_liked", True)],
        order_by="created_at",
        descending=True,
    )
    live = [r for r in rows if not is_expired(r.get("expires_at"), now)]
    if not live:
        return []
    partner_ids = sorted({partner_of(r, viewer_id) for r in live})
    profiles = {str(p["id"]): p for p in gateway.select("profiles", [In("id", partner_ids)])}
    partners = []
    for row in live:
        partner_id = partner_of(row, viewer_id)
        profile = profiles.get(partner_id) or {}
        partners.append(
            {
                "user_id": partner_id,
                "match_id": str(row["id"]),
                "first_name": profile.get("first_name"),
                "age": profile.get("age"),
                "status": effective_status(row["status"], row.get("expires_at"), now).value,
            }
        )
    return partners


def submit_report(
    gateway: PersistenceGateway,
    reporter_id: str,
    reported_user_id: str,
    message: Any,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or _now_utc()
    body = validate_text_body(message, field="report", max_length=REPORT_MAX_LENGTH)
    reported_user_id = str(reported_user_id or "").strip()
    if not reported_user_id:
        raise ValidationError("reported_user_id is required")
    if reported_user_id == str(reporter_id):
        raise ValidationError("You cannot report yourself")
    if reported_user_id not in {p["user_id"] for p in reportable_partners(gateway, reporter_id, now)}:
        raise ForbiddenError("You can only report someone you are currently chatting with")

    report = gateway.insert(
        "user_reports",
        {"reporter_id": str(reporter_id), "reported_user_id": reported_user_id, "message": body, "created_at": now},
    )
    logger.info("[SAFETY] report %s filed by %s against %s", report["id"], reporter_id, reported_user_id)
    return report
