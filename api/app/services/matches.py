"""
Match lifecycle engine.

A match moves pending_request -> active -> (pending_reveal <-> revealed) or
ends declined; "expired" is never written, it is derived from expires_at on
every read. All reads that decide a write go back to storage first.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import MATCH_WINDOW_DAYS, MESSAGE_MAX_LENGTH
from ..gateway import Embed, Eq, In, IsNull, PersistenceGateway, pair_filter, participant_filter
from ..http_helpers import instagram_url, validate_text_body
from . import events as ev
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .profiles import PROFILE_CARD_COLUMNS, SOMEONE, load_profile, public_card
from .state_machine import (
    ACTIVE_FAMILY,
    MESSAGING_STATUSES,
    IllegalTransition,
    MatchStatus,
    derive_reveal_status,
    effective_status,
    is_expired,
    parse_match_status,
    remaining_time_label,
    status_values,
    transition_status,
)

logger = logging.getLogger(__name__)

# "pending" is a legacy spelling some rows still carry.
ACTIVE_FAMILY_FILTER = In("status", [*status_values(ACTIVE_FAMILY), "pending"])
MESSAGING_FILTER = In("status", [*status_values(MESSAGING_STATUSES), "pending"])
REVEAL_SYNC_ATTEMPTS = 3


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    a, b = sorted([str(user_a), str(user_b)])
    return a, b


def pair_key(user_a: str, user_b: str) -> str:
    a, b = canonical_pair(user_a, user_b)
    return f"{a}:{b}"


def side_of(match: dict[str, Any], user_id: str) -> str:
    if str(match["user1_id"]) == str(user_id):
        return "user1"
    if str(match["user2_id"]) == str(user_id):
        return "user2"
    raise ForbiddenError("You are not part of this match")


def partner_of(match: dict[str, Any], user_id: str) -> str:
    return str(match["user2_id"]) if side_of(match, user_id) == "user1" else str(match["user1_id"])


@dataclass
class MatchView:
    """Per-viewer projection. Derived flags are recomputed from the row every time, never stored."""

    id: str
    user1_id: str
    user2_id: str
    partner_id: str
    status: str
    stored_status: str
    expires_at: datetime | None
    viewed: bool
    user_has_liked: bool
    partner_has_liked: bool
    both_liked: bool
    user_has_revealed: bool
    partner_has_revealed: bool
    both_reveal: bool
    reveal_requested_by: str | None
    is_expired: bool
    can_message: bool
    time_left: str
    created_at: datetime | None = None
    partner_profile: dict[str, Any] | None = None
    last_message: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        out = {
            "id": self.id,
            "user1_id": self.user1_id,
            "user2_id": self.user2_id,
            "partner_id": self.partner_id,
            "status": self.status,
            "stored_status": self.stored_status,
            "expires_at": self.expires_at,
            "viewed": self.viewed,
            "user_has_liked": self.user_has_liked,
            "partner_has_liked": self.partner_has_liked,
            "both_liked": self.both_liked,
            "user_has_revealed": self.user_has_revealed,
            "partner_has_revealed": self.partner_has_revealed,
            "both_reveal": self.both_reveal,
            "reveal_requested_by": self.reveal_requested_by,
            "is_expired": self.is_expired,
            "can_message": self.can_message,
            "time_left": self.time_left,
            "created_at": self.created_at,
            "partner_profile": self.partner_profile,
            "last_message": self.last_message,
        }
        out.update(self.extra)
        return out


def project_match(
    row: dict[str, Any],
    viewer_id: str,
    now: datetime,
    *,
    partner_profile: dict[str, Any] | None = None,
    last_message: dict[str, Any] | None = None,
) -> MatchView:
    side = side_of(row, viewer_id)
    other = "user2" if side == "user1" else "user1"
    user_liked = bool(row.get(f"{side}_liked"))
    partner_liked = bool(row.get(f"{other}_liked"))
    user_revealed = bool(row.get(f"{side}_reveal"))
    partner_revealed = bool(row.get(f"{other}_reveal"))
    both_reveal = user_revealed and partner_revealed
    effective = effective_status(row["status"], row.get("expires_at"), now)
    card = None
    if partner_profile is not None or row.get("partner_profile") is not None:
        card = public_card(
            partner_profile or row.get("partner_profile"),
            reveal_handle=both_reveal and effective == MatchStatus.REVEALED,
            fallback_id=str(row[f"{other}_id"]),
        )
        card["instagram_url"] = instagram_url(card.get("instagram_id"))
    return MatchView(
        id=str(row["id"]),
        user1_id=str(row["user1_id"]),
        user2_id=str(row["user2_id"]),
        partner_id=str(row[f"{other}_id"]),
        status=effective.value,
        stored_status=parse_match_status(row["status"]).value,
        expires_at=row.get("expires_at"),
        viewed=bool(row.get("viewed")),
        user_has_liked=user_liked,
        partner_has_liked=partner_liked,
        both_liked=user_liked and partner_liked,
        user_has_revealed=user_revealed,
        partner_has_revealed=partner_revealed,
        both_reveal=both_reveal,
        reveal_requested_by=str(row["reveal_requested_by"]) if row.get("reveal_requested_by") else None,
        is_expired=effective == MatchStatus.EXPIRED,
        can_message=effective in MESSAGING_STATUSES,
        time_left=remaining_time_label(row.get("expires_at"), now),
        created_at=row.get("created_at"),
        partner_profile=card,
        last_message=last_message,
    )


@dataclass
class MatchOutcome:
    match: dict[str, Any]
    created: bool = False
    changed: bool = True


class MatchEngine:
    def __init__(
        self,
        gateway: PersistenceGateway,
        events: ev.EventBus | None = None,
        *,
        clock: Callable[[], datetime] = _now_utc,
        window_days: int = MATCH_WINDOW_DAYS,
    ) -> None:
        self.gateway = gateway
        self.events = events or ev.EventBus()
        self.clock = clock
        self.window_days = window_days

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self.window_days)

    def get_match(self, match_id: str) -> dict[str, Any]:
        rows = self.gateway.select("chat_matches", [Eq("id", match_id)], limit=1)
        if not rows:
            raise NotFoundError("match", match_id)
        return rows[0]

    def _participant_match(self, match_id: str, viewer_id: str) -> dict[str, Any]:
        row = self.get_match(match_id)
        side_of(row, viewer_id)
        return row

    def find_active_match(self, user_a: str, user_b: str) -> dict[str, Any] | None:
        rows = self.gateway.select(
            "chat_matches",
            [pair_filter(str(user_a), str(user_b)), ACTIVE_FAMILY_FILTER],
            order_by="created_at",
            limit=1,
        )
        return rows[0] if rows else None

    # -- creation ---------------------------------------------------------

    def create_from_swipe(self, actor_id: str, target_id: str) -> MatchOutcome:
        if str(actor_id) == str(target_id):
            raise ValidationError("You cannot like your own profile")
        existing = self.find_active_match(actor_id, target_id)
        if existing:
            logger.info("[MATCH] swipe-like %s -> %s reuses %s", actor_id, target_id, existing["id"])
            return MatchOutcome(existing, created=False, changed=False)

        now = self.clock()
        record = {
            "user1_id": str(actor_id),
            "user2_id": str(target_id),
            "pair_key": pair_key(actor_id, target_id),
            "status": MatchStatus.PENDING_REQUEST.value,
            "user1_liked": True,
            "user2_liked": False,
            "viewed": False,
            "expires_at": self._expiry(now),
            "created_at": now,
            "updated_at": now,
        }
        try:
            created = self.gateway.insert("chat_matches", record)
        except ConflictError:
            existing = self.find_active_match(actor_id, target_id)
            if existing is None:
                raise
            logger.info("[MATCH] swipe-like %s -> %s lost a creation race, reusing %s", actor_id, target_id, existing["id"])
            return MatchOutcome(existing, created=False, changed=False)

        logger.info("[MATCH] request %s created %s -> %s", created["id"], actor_id, target_id)
        self.events.emit(ev.LifecycleEvent(ev.MATCH_REQUESTED, actor_id=str(actor_id), recipient_id=str(target_id), entity_id=str(created["id"])))
        return MatchOutcome(created, created=True)

    def ensure_mutual_match(self, user_a: str, user_b: str) -> MatchOutcome:
        """Existing-or-create for a mutual like. Safe to call repeatedly and concurrently for one pair."""
        if str(user_a) == str(user_b):
            raise ValidationError("A match needs two different people")
        existing = self.find_active_match(user_a, user_b)
        if existing:
            return self._promote_existing(existing)

        low, high = canonical_pair(user_a, user_b)
        now = self.clock()
        record = {
            "user1_id": low,
            "user2_id": high,
            "pair_key": pair_key(low, high),
            "status": MatchStatus.ACTIVE.value,
            "user1_liked": True,
            "user2_liked": True,
            "viewed": True,
            "expires_at": self._expiry(now),
            "created_at": now,
            "updated_at": now,
        }
        try:
            created = self.gateway.insert("chat_matches", record)
        except ConflictError:
            existing = self.find_active_match(low, high)
            if existing is None:
                raise
            logger.info("[MATCH] mutual match %s/%s lost a creation race, reusing %s", low, high, existing["id"])
            return self._promote_existing(existing)
        logger.info("[MATCH] mutual match %s created for %s/%s", created["id"], low, high)
        return MatchOutcome(created, created=True)

    def _promote_existing(self, existing: dict[str, Any]) -> MatchOutcome:
        if parse_match_status(existing["status"]) != MatchStatus.PENDING_REQUEST:
            return MatchOutcome(existing, created=False, changed=False)
        now = self.clock()
        rows = self.gateway.update(
            "chat_matches",
            [Eq("id", existing["id"]), Eq("status", MatchStatus.PENDING_REQUEST.value)],
            {
                "status": MatchStatus.ACTIVE.value,
                "user1_liked": True,
                "user2_liked": True,
                "viewed": True,
                "expires_at": self._expiry(now),
            },
        )
        if rows:
            logger.info("[MATCH] pending request %s promoted by mutual like", existing["id"])
            return MatchOutcome(rows[0], created=False, changed=True)
        return MatchOutcome(self.get_match(existing["id"]), created=False, changed=False)

    # -- request decisions ------------------------------------------------

    def accept_request(self, match_id: str, actor_id: str) -> MatchOutcome:
        row = self.get_match(match_id)
        if str(row["user2_id"]) != str(actor_id):
            raise ForbiddenError("Only the recipient can answer this request")
        now = self.clock()
        transition_status(row["status"], "accept", now, row.get("expires_at"))
        if parse_match_status(row["status"]) == MatchStatus.ACTIVE:
            return MatchOutcome(row, changed=False)

        rows = self.gateway.update(
            "chat_matches",
            [Eq("id", match_id), Eq("status", MatchStatus.PENDING_REQUEST.value)],
            {
                "status": MatchStatus.ACTIVE.value,
                "user2_liked": True,
                "viewed": True,
                "expires_at": self._expiry(now),
            },
        )
        if not rows:
            fresh = self.get_match(match_id)
            transition_status(fresh["status"], "accept", now, fresh.get("expires_at"))
            logger.info("[MATCH] accept %s was already applied", match_id)
            return MatchOutcome(fresh, changed=False)

        accepted = rows[0]
        logger.info("[MATCH] %s accepted by %s", match_id, actor_id)
        self.events.emit(ev.LifecycleEvent(ev.MATCH_ACCEPTED, actor_id=str(actor_id), recipient_id=str(accepted["user1_id"]), entity_id=str(match_id)))
        return MatchOutcome(accepted)

    def decline_request(self, match_id: str, actor_id: str) -> MatchOutcome:
        row = self.get_match(match_id)
        if str(row["user2_id"]) != str(actor_id):
            raise ForbiddenError("Only the recipient can answer this request")
        now = self.clock()
        transition_status(row["status"], "decline", now, row.get("expires_at"))
        if parse_match_status(row["status"]) == MatchStatus.DECLINED:
            return MatchOutcome(row, changed=False)

        rows = self.gateway.update(
            "chat_matches",
            [Eq("id", match_id), Eq("status", MatchStatus.PENDING_REQUEST.value)],
            {"status": MatchStatus.DECLINED.value, "user2_liked": False, "viewed": True},
        )
        if not rows:
            fresh = self.get_match(match_id)
            transition_status(fresh["status"], "decline", now, fresh.get("expires_at"))
            return MatchOutcome(fresh, changed=False)
        logger.info("[MATCH] %s declined by %s", match_id, actor_id)
        self.events.emit(ev.LifecycleEvent(ev.MATCH_DECLINED, actor_id=str(actor_id), recipient_id=str(row["user1_id"]), entity_id=str(match_id)))
        return MatchOutcome(rows[0])

    def list_requests(self, viewer_id: str) -> list[dict[str, Any]]:
        rows = self.gateway.select(
            "chat_matches",
            [Eq("user2_id", viewer_id), Eq("status", MatchStatus.PENDING_REQUEST.value)],
            order_by="created_at",
            descending=True,
            embed=[Embed("sender_profile", "user1_id", columns=PROFILE_CARD_COLUMNS)],
        )
        unviewed = [str(r["id"]) for r in rows if not r.get("viewed")]
        if unviewed:
            self.gateway.update("chat_matches", [In("id", unviewed), Eq("viewed", False)], {"viewed": True})
        out = []
        for r in rows:
            out.append(
                {
                    "id": str(r["id"]),
                    "user1_id": str(r["user1_id"]),
                    "status": r["status"],
                    "created_at": r.get("created_at"),
                    "viewed": bool(r.get("viewed")),
                    "sender_profile": public_card(r.get("sender_profile"), fallback_id=str(r["user1_id"]), fallback_name=SOMEONE),
                }
            )
        return out

    # -- in-chat actions --------------------------------------------------

    def toggle_like(self, match_id: str, actor_id: str, liked: bool | None = None) -> MatchView:
        row = self._participant_match(match_id, actor_id)
        side = side_of(row, actor_id)
        now = self.clock()
        transition_status(row["status"], "like", now, row.get("expires_at"))
        previous = bool(row.get(f"{side}_liked"))
        value = (not previous) if liked is None else bool(liked)
        if value == previous:
            return project_match(row, actor_id, now)

        rows = self.gateway.update("chat_matches", [Eq("id", match_id)], {f"{side}_liked": value})
        fresh = rows[0] if rows else self.get_match(match_id)
        view = project_match(fresh, actor_id, now)
        if value:
            self.events.emit(
                ev.LifecycleEvent(
                    ev.MATCH_LIKED,
                    actor_id=str(actor_id),
                    recipient_id=view.partner_id,
                    entity_id=str(match_id),
                    payload={"both_liked": view.both_liked},
                )
            )
        return view

    def toggle_reveal(self, match_id: str, actor_id: str, reveal: bool | None = None) -> MatchView:
        row = self._participant_match(match_id, actor_id)
        side = side_of(row, actor_id)
        other = "user2" if side == "user1" else "user1"
        now = self.clock()
        previous = bool(row.get(f"{side}_reveal"))
        value = (not previous) if reveal is None else bool(reveal)
        transition_status(
            row["status"],
            "reveal",
            now,
            row.get("expires_at"),
            user1_reveal=value if side == "user1" else bool(row.get("user1_reveal")),
            user2_reveal=value if side == "user2" else bool(row.get("user2_reveal")),
        )
        if value and not (row.get("user1_liked") and row.get("user2_liked")):
            raise ValidationError("You both need to like the chat before revealing")

        if value != previous:
            patch: dict[str, Any] = {f"{side}_reveal": value}
            if value and not row.get(f"{other}_reveal"):
                patch["reveal_requested_by"] = str(actor_id)
            elif not value and not row.get(f"{other}_reveal"):
                patch["reveal_requested_by"] = None
            self.gateway.update("chat_matches", [Eq("id", match_id)], patch)

        fresh, status_changed = self.sync_reveal_status(match_id)
        view = project_match(fresh, actor_id, now)
        if value and not previous:
            kind = ev.REVEAL_COMPLETED if view.both_reveal else ev.REVEAL_REQUESTED
            self.events.emit(ev.LifecycleEvent(kind, actor_id=str(actor_id), recipient_id=view.partner_id, entity_id=str(match_id)))
        logger.info("[MATCH] reveal %s by %s -> %s (status %s, changed=%s)", match_id, actor_id, value, view.status, status_changed)
        return view

    def sync_reveal_status(self, match_id: str) -> tuple[dict[str, Any], bool]:
        """Second step of a reveal toggle: re-read both flags and make status agree with them."""
        for _ in range(REVEAL_SYNC_ATTEMPTS):
            fresh = self.get_match(match_id)
            current = parse_match_status(fresh["status"])
            if current not in MESSAGING_STATUSES:
                return fresh, False
            target = derive_reveal_status(current, bool(fresh.get("user1_reveal")), bool(fresh.get("user2_reveal")))
            if target == current:
                return fresh, False
            rows = self.gateway.update(
                "chat_matches",
                [
                    Eq("id", match_id),
                    Eq("status", fresh["status"]),
                    Eq("user1_reveal", bool(fresh.get("user1_reveal"))),
                    Eq("user2_reveal", bool(fresh.get("user2_reveal"))),
                ],
                {"status": target.value},
            )
            if rows:
                return rows[0], True
        raise ConflictError("Reveal state kept changing, please try again")

    # -- messaging --------------------------------------------------------

    def send_message(self, match_id: str, sender_id: str, content: Any) -> dict[str, Any]:
        body = validate_text_body(content, field="message", max_length=MESSAGE_MAX_LENGTH)
        row = self._participant_match(match_id, sender_id)
        now = self.clock()
        try:
            transition_status(row["status"], "message", now, row.get("expires_at"))
        except IllegalTransition:
            if is_expired(row.get("expires_at"), now) and parse_match_status(row["status"]) in MESSAGING_STATUSES:
                raise ValidationError("This chat has expired. You can no longer send messages.") from None
            raise ValidationError("You can only send messages in active chats.") from None

        message = self.gateway.insert(
            "chat_messages",
            {
                "match_id": str(match_id),
                "sender_id": str(sender_id),
                "receiver_id": partner_of(row, sender_id),
                "content": body,
                "created_at": now,
            },
        )
        self.events.emit(
            ev.LifecycleEvent(
                ev.MESSAGE_SENT,
                actor_id=str(sender_id),
                recipient_id=str(message["receiver_id"]),
                entity_id=str(message["id"]),
                payload={"match_id": str(match_id)},
            )
        )
        return message

    def list_messages(self, match_id: str, viewer_id: str) -> list[dict[str, Any]]:
        self._participant_match(match_id, viewer_id)
        return self.gateway.select("chat_messages", [Eq("match_id", match_id)], order_by="created_at")

    def mark_thread_read(self, match_id: str, viewer_id: str) -> int:
        self._participant_match(match_id, viewer_id)
        rows = self.gateway.update(
            "chat_messages",
            [Eq("match_id", match_id), Eq("receiver_id", viewer_id), IsNull("read_at")],
            {"read_at": self.clock()},
        )
        if rows:
            logger.info("[MATCH] %s marked %s message(s) read in %s", viewer_id, len(rows), match_id)
        return len(rows)

    def open_thread(self, match_id: str, viewer_id: str) -> dict[str, Any]:
        marked = self.mark_thread_read(match_id, viewer_id)
        view = self.get_match_view(match_id, viewer_id)
        return {"match": view.as_dict(), "messages": self.list_messages(match_id, viewer_id), "marked_read": marked}

    # -- views ------------------------------------------------------------

    def _partner_card(self, partner_id: str) -> dict[str, Any] | None:
        try:
            return load_profile(self.gateway, partner_id)
        except NotFoundError:
            return None

    def get_match_view(self, match_id: str, viewer_id: str) -> MatchView:
        row = self._participant_match(match_id, viewer_id)
        partner = self._partner_card(partner_of(row, viewer_id))
        return project_match(row, viewer_id, self.clock(), partner_profile=partner or {})

    def list_chats(self, viewer_id: str) -> list[MatchView]:
        rows = self.gateway.select(
            "chat_matches",
            [participant_filter(viewer_id), MESSAGING_FILTER, Eq("user2_liked", True)],
            order_by="created_at",
            descending=True,
        )
        if not rows:
            return []
        partner_ids = sorted({partner_of(r, viewer_id) for r in rows})
        partners = {str(p["id"]): p for p in self.gateway.select("profiles", [In("id", partner_ids)])}
        latest: dict[str, dict[str, Any]] = {}
        for msg in self.gateway.select(
            "chat_messages",
            [In("match_id", [str(r["id"]) for r in rows])],
            order_by="created_at",
            descending=True,
        ):
            latest.setdefault(str(msg["match_id"]), msg)
        now = self.clock()
        return [
            project_match(
                r,
                viewer_id,
                now,
                partner_profile=partners.get(partner_of(r, viewer_id)) or {},
                last_message=latest.get(str(r["id"])),
            )
            for r in rows
        ]
