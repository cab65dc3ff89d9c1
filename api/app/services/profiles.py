import logging
from datetime import datetime, timezone
from typing import Any

from ..config import PROFILE_FETCH_TIMEOUT_SECONDS, READ_RETRY_ATTEMPTS, READ_RETRY_DELAY_SECONDS
from ..gateway import Eq, PersistenceGateway
from ..http_helpers import sanitize_profile_payload
from .errors import ConflictError, NotFoundError
from .resilience import call_with_timeout, retry_read

logger = logging.getLogger(__name__)

ANONYMOUS = "Anonymous"
SOMEONE = "Someone"

PROFILE_CARD_COLUMNS = (
    "first_name",
    "age",
    "gender",
    "city",
    "state",
    "occupation",
    "bio",
    "tagline",
    "mental_tags",
    "looking_for",
    "love_language",
    "text_style",
    "instagram_id",
    "chat_starter",
    "current_song",
    "ick",
    "green_flag",
)

EMPTY_PROFILE_DEFAULTS: dict[str, Any] = {
    "first_name": None,
    "age": None,
    "gender": None,
    "city": None,
    "state": None,
    "occupation": None,
    "bio": None,
    "tagline": None,
    "mental_tags": [],
    "looking_for": [],
    "love_language": None,
    "text_style": None,
    "instagram_id": None,
    "is_active": False,
    "subscription_ended": False,
}


def placeholder_profile(profile_id: str | None, name: str = ANONYMOUS) -> dict[str, Any]:
    card: dict[str, Any] = {k: None for k in PROFILE_CARD_COLUMNS}
    card.update({"id": profile_id, "first_name": name, "mental_tags": [], "looking_for": [], "placeholder": True})
    return card


def public_card(profile: dict[str, Any] | None, *, reveal_handle: bool = False, fallback_id: str | None = None, fallback_name: str = ANONYMOUS) -> dict[str, Any]:
    if not profile:
        return placeholder_profile(fallback_id, fallback_name)
    card = {"id": str(profile.get("id") or fallback_id)}
    for key in PROFILE_CARD_COLUMNS:
        card[key] = profile.get(key)
    if not card.get("first_name"):
        card["first_name"] = fallback_name
    if not reveal_handle:
        card["instagram_id"] = None
    return card


def display_name(profile: dict[str, Any] | None, fallback: str = SOMEONE) -> str:
    name = str((profile or {}).get("first_name") or "").strip()
    return name or fallback


def is_onboarded(profile: dict[str, Any] | None) -> bool:
    return bool(profile and profile.get("first_name") and profile.get("gender"))


def load_profile(
    gateway: PersistenceGateway,
    profile_id: str,
    *,
    timeout_seconds: float = PROFILE_FETCH_TIMEOUT_SECONDS,
    max_attempts: int = READ_RETRY_ATTEMPTS,
    delay_seconds: float = READ_RETRY_DELAY_SECONDS,
) -> dict[str, Any] | None:
    return retry_read(
        lambda: call_with_timeout(
            gateway.rpc,
            timeout_seconds,
            "get_profile_by_id",
            profile_id=profile_id,
            operation="profile fetch",
        ),
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        operation="profile fetch",
    )


def get_profile(gateway: PersistenceGateway, profile_id: str) -> dict[str, Any]:
    profile = load_profile(gateway, profile_id)
    if not profile:
        raise NotFoundError("profile", profile_id)
    return profile


def ensure_profile(gateway: PersistenceGateway, user_id: str) -> dict[str, Any]:
    """Signup hook: create the empty profile row once."""
    rows = gateway.select("profiles", [Eq("id", user_id)], limit=1)
    if rows:
        return rows[0]
    try:
        created = gateway.insert("profiles", {"id": user_id, **EMPTY_PROFILE_DEFAULTS})
    except ConflictError:
        return gateway.select("profiles", [Eq("id", user_id)], limit=1)[0]
    logger.info("[PROFILE] created empty profile for %s", user_id)
    return created


def update_profile(gateway: PersistenceGateway, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    ensure_profile(gateway, user_id)
    patch = sanitize_profile_payload(payload)
    if not patch:
        return gateway.select("profiles", [Eq("id", user_id)], limit=1)[0]
    patch["updated_at"] = datetime.now(timezone.utc)
    rows = gateway.update("profiles", [Eq("id", user_id)], patch)
    if not rows:
        raise NotFoundError("profile", user_id)
    return rows[0]


def activate_with_coupon(gateway: PersistenceGateway, user_id: str, code: str) -> bool:
    ok = bool(gateway.rpc("validate_coupon_and_activate", code=code, user_id=user_id))
    logger.info("[PROFILE] coupon activation user=%s ok=%s", user_id, ok)
    return ok
