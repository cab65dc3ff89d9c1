import re
from typing import Any

from .services.errors import ValidationError

ALLOWED_GENDERS = {"man", "woman", "nonbinary", "other"}
ALLOWED_LOOKING_FOR = {"friendship", "casual", "relationship", "marriage", "not_sure"}
MAX_MENTAL_TAGS = 3

_HANDLE_RE = re.compile(r"[A-Za-z0-9._]{1,30}")
_INSTAGRAM_PREFIX_RE = re.compile(r"^(https?://)?(www\.)?instagram\.com/", re.IGNORECASE)

_TEXT_FIELDS = {
    "first_name": 80,
    "city": 120,
    "state": 120,
    "occupation": 120,
    "bio": 1000,
    "tagline": 200,
    "love_language": 64,
    "text_style": 64,
    "chat_starter": 300,
    "current_song": 200,
    "ick": 300,
    "green_flag": 300,
}


def validate_text_body(value: Any, *, field: str, max_length: int) -> str:
    body = str(value or "").strip()
    if not body:
        raise ValidationError(f"{field} is required")
    if len(body) > max_length:
        raise ValidationError(f"{field} must be {max_length} characters or fewer")
    return body


def normalize_instagram_handle(raw: Any) -> str | None:
    if raw is None:
        return None
    value = _INSTAGRAM_PREFIX_RE.sub("", str(raw).strip()).strip("/").lstrip("@")
    if not value:
        return None
    if not _HANDLE_RE.fullmatch(value):
        raise ValidationError("instagram handle may only contain letters, numbers, periods and underscores (max 30)")
    return value


def instagram_url(handle: str | None) -> str | None:
    return f"https://instagram.com/{handle}" if handle else None


def _clean_list(raw: Any, *, field: str, allowed: set[str] | None = None, max_items: int | None = None) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"{field} must be an array")
    out: list[str] = []
    for value in raw:
        item = str(value or "").strip()
        if not item:
            continue
        if allowed is not None:
            item = item.lower()
            if item not in allowed:
                raise ValidationError(f"{field} may only include: {', '.join(sorted(allowed))}")
        if item not in out:
            out.append(item)
    if max_items is not None and len(out) > max_items:
        raise ValidationError(f"You can choose up to {max_items} {field.replace('_', ' ')}")
    return out


def sanitize_profile_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Validate an onboarding/profile edit payload into a column patch. Absent keys are left untouched."""
    patch: dict[str, Any] = {}

    for key, max_len in _TEXT_FIELDS.items():
        if key not in payload:
            continue
        raw = payload.get(key)
        value = str(raw).strip() if raw is not None else ""
        if len(value) > max_len:
            raise ValidationError(f"{key} must be {max_len} characters or fewer")
        patch[key] = value or None

    if "age" in payload:
        raw_age = payload.get("age")
        if raw_age in (None, ""):
            patch["age"] = None
        else:
            try:
                age = int(raw_age)
            except (TypeError, ValueError):
                raise ValidationError("age must be a whole number") from None
            if age < 18 or age > 100:
                raise ValidationError("age must be between 18 and 100")
            patch["age"] = age

    if "gender" in payload:
        gender = str(payload.get("gender") or "").strip().lower() or None
        if gender is not None and gender not in ALLOWED_GENDERS:
            raise ValidationError(f"gender must be one of: {', '.join(sorted(ALLOWED_GENDERS))}")
        patch["gender"] = gender

    if "mental_tags" in payload:
        patch["mental_tags"] = _clean_list(payload.get("mental_tags"), field="mental_tags", max_items=MAX_MENTAL_TAGS)

    if "looking_for" in payload:
        patch["looking_for"] = _clean_list(payload.get("looking_for"), field="looking_for", allowed=ALLOWED_LOOKING_FOR)

    if "instagram_id" in payload:
        patch["instagram_id"] = normalize_instagram_handle(payload.get("instagram_id"))

    return patch
