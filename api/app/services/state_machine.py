from datetime import datetime, timezone
from enum import Enum

from .errors import ValidationError


class MatchStatus(str, Enum):
    PENDING_REQUEST = "pending_request"
    ACTIVE = "active"
    REVEALED = "revealed"
    PENDING_REVEAL = "pending_reveal"
    DECLINED = "declined"
    # never stored; derived from expires_at
    EXPIRED = "expired"


class LetterStatus(str, Enum):
    PENDING = "pending"
    LIKED = "liked"
    MATCHED = "matched"
    DECLINED = "declined"
    STARTED_CHAT = "started_chat"


ACTIVE_FAMILY = frozenset(
    {MatchStatus.PENDING_REQUEST, MatchStatus.ACTIVE, MatchStatus.REVEALED, MatchStatus.PENDING_REVEAL}
)
MESSAGING_STATUSES = frozenset({MatchStatus.ACTIVE, MatchStatus.REVEALED, MatchStatus.PENDING_REVEAL})

# Legacy rows written as "pending" are read as pending_reveal.
_LEGACY_MATCH_STATUS = {"pending": MatchStatus.PENDING_REVEAL}


class IllegalTransition(ValidationError):
    def __init__(self, entity: str, current: str, action: str):
        self.entity = entity
        self.current = current
        self.action = action
        super().__init__(f"Cannot {action} a {entity} in status {current}")


def status_values(statuses) -> list[str]:
    return sorted(s.value for s in statuses)


def parse_match_status(raw: str | MatchStatus) -> MatchStatus:
    if isinstance(raw, MatchStatus):
        return raw
    value = str(raw or "").strip().lower()
    if value in _LEGACY_MATCH_STATUS:
        return _LEGACY_MATCH_STATUS[value]
    try:
        return MatchStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown match status: {raw!r}") from None


def parse_letter_status(raw: str | LetterStatus) -> LetterStatus:
    if isinstance(raw, LetterStatus):
        return raw
    try:
        return LetterStatus(str(raw or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown letter status: {raw!r}") from None


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    if expires_at is None:
        return False
    return _as_utc(now) >= _as_utc(expires_at)


def effective_status(current: str | MatchStatus, expires_at: datetime | None, now: datetime) -> MatchStatus:
    status = parse_match_status(current)
    if status in MESSAGING_STATUSES and is_expired(expires_at, now):
        return MatchStatus.EXPIRED
    return status


def can_message(current: str | MatchStatus, expires_at: datetime | None, now: datetime) -> bool:
    return effective_status(current, expires_at, now) in MESSAGING_STATUSES


def derive_reveal_status(current: str | MatchStatus, user1_reveal: bool, user2_reveal: bool) -> MatchStatus:
    status = parse_match_status(current)
    if user1_reveal and user2_reveal:
        return MatchStatus.REVEALED
    if user1_reveal or user2_reveal:
        return MatchStatus.PENDING_REVEAL
    if status in {MatchStatus.PENDING_REVEAL, MatchStatus.REVEALED}:
        return MatchStatus.ACTIVE
    return status


def transition_status(
    current: str | MatchStatus,
    action: str,
    now: datetime,
    expires_at: datetime | None,
    *,
    user1_reveal: bool = False,
    user2_reveal: bool = False,
) -> MatchStatus:
    status = parse_match_status(current)
    effective = effective_status(status, expires_at, now)

    if action == "accept":
        if status == MatchStatus.PENDING_REQUEST:
            return MatchStatus.ACTIVE
        if status == MatchStatus.ACTIVE and effective != MatchStatus.EXPIRED:
            return MatchStatus.ACTIVE
        raise IllegalTransition("match", effective.value, action)

    if action == "decline":
        if status in {MatchStatus.PENDING_REQUEST, MatchStatus.DECLINED}:
            return MatchStatus.DECLINED
        raise IllegalTransition("match", effective.value, action)

    if action in {"like", "message"}:
        if effective in MESSAGING_STATUSES:
            return status
        raise IllegalTransition("match", effective.value, action)

    if action == "reveal":
        if effective in MESSAGING_STATUSES:
            return derive_reveal_status(status, user1_reveal, user2_reveal)
        raise IllegalTransition("match", effective.value, action)

    raise ValidationError(f"Unknown match action: {action}")


_LETTER_TRANSITIONS: dict[str, dict[LetterStatus, LetterStatus]] = {
    "like": {
        LetterStatus.PENDING: LetterStatus.LIKED,
        LetterStatus.LIKED: LetterStatus.LIKED,
    },
    "decline": {
        LetterStatus.PENDING: LetterStatus.DECLINED,
        LetterStatus.DECLINED: LetterStatus.DECLINED,
    },
    "match": {
        LetterStatus.LIKED: LetterStatus.MATCHED,
        LetterStatus.MATCHED: LetterStatus.MATCHED,
    },
    "start_chat": {
        LetterStatus.LIKED: LetterStatus.STARTED_CHAT,
        LetterStatus.MATCHED: LetterStatus.STARTED_CHAT,
        LetterStatus.STARTED_CHAT: LetterStatus.STARTED_CHAT,
    },
}


def transition_letter(current: str | LetterStatus, action: str) -> LetterStatus:
    status = parse_letter_status(current)
    table = _LETTER_TRANSITIONS.get(action)
    if table is None:
        raise ValidationError(f"Unknown letter action: {action}")
    if status not in table:
        raise IllegalTransition("letter", status.value, action)
    return table[status]


def remaining_time_label(expires_at: datetime | None, now: datetime) -> str:
    if expires_at is None:
        return "--"
    if is_expired(expires_at, now):
        return "Expired"
    seconds = int((_as_utc(expires_at) - _as_utc(now)).total_seconds())
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
