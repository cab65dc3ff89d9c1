"""
Swipe discovery.

The selector owns preference state and the per-user exclusion sets (profile
ids already liked or skipped). Candidate choice itself is the storage
layer's ``get_random_profile`` procedure; the daily quota is its
``increment_swipe_count`` procedure.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from ..config import (
    DAILY_SWIPE_LIMIT,
    DEFAULT_MAX_AGE,
    DEFAULT_MIN_AGE,
    DISCOVERY_TIMEOUT_SECONDS,
    EXCLUSION_CACHE_SIZE,
    EXCLUSION_CACHE_TTL_SECONDS,
    READ_RETRY_ATTEMPTS,
    READ_RETRY_DELAY_SECONDS,
    SWIPE_LIMIT_REACHED,
)
from ..gateway import Eq, Gt, PersistenceGateway
from . import events as ev
from .errors import ValidationError
from .matches import MatchEngine, MatchOutcome, _now_utc
from .profiles import public_card
from .resilience import SlowConnectionError, call_with_timeout, retry_read

logger = logging.getLogger(__name__)

LIKE = "like"
PASS = "pass"

FOUND = "found"
EXHAUSTED = "exhausted"
SLOW = "slow"

PREFERENCE_FIELDS = ("min_age", "max_age", "show_me", "preferred_city", "preferred_gender")


def default_preferences(user_id: str) -> dict[str, Any]:
    return {
        "user_id": str(user_id),
        "min_age": DEFAULT_MIN_AGE,
        "max_age": DEFAULT_MAX_AGE,
        "show_me": [],
        "preferred_city": None,
        "preferred_gender": None,
    }


@dataclass
class ExclusionSet:
    liked: set[str] = field(default_factory=set)
    skipped: set[str] = field(default_factory=set)

    def all_ids(self) -> set[str]:
        return self.liked | self.skipped

    def add(self, action: str, profile_id: str) -> None:
        (self.liked if action == LIKE else self.skipped).add(str(profile_id))

    def clear(self) -> None:
        self.liked.clear()
        self.skipped.clear()


@dataclass
class _CachedExclusions:
    exclusions: ExclusionSet
    loaded_at: datetime


@dataclass
class CandidateResult:
    status: str
    profile: dict[str, Any] | None = None
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status, "profile": self.profile, "message": self.message}


@dataclass
class SwipeOutcome:
    action: str
    target_id: str
    swipe_count: int
    rate_limited: bool = False
    match: MatchOutcome | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "target_id": self.target_id,
            "swipe_count": self.swipe_count,
            "rate_limited": self.rate_limited,
            "match_id": str(self.match.match["id"]) if self.match else None,
            "match_created": bool(self.match and self.match.created),
        }


def _clean_preferences(patch: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    merged = {k: current.get(k) for k in PREFERENCE_FIELDS}
    for key in PREFERENCE_FIELDS:
        if key in patch:
            merged[key] = patch[key]
    try:
        min_age = int(merged["min_age"] if merged["min_age"] is not None else DEFAULT_MIN_AGE)
        max_age = int(merged["max_age"] if merged["max_age"] is not None else DEFAULT_MAX_AGE)
    except (TypeError, ValueError):
        raise ValidationError("Age range must be whole numbers") from None
    if min_age < DEFAULT_MIN_AGE or max_age > DEFAULT_MAX_AGE or min_age > max_age:
        raise ValidationError(f"Age range must be within {DEFAULT_MIN_AGE}-{DEFAULT_MAX_AGE} and min <= max")
    show_me = merged.get("show_me") or []
    if not isinstance(show_me, list):
        raise ValidationError("show_me must be an array")
    return {
        "min_age": min_age,
        "max_age": max_age,
        "show_me": [str(s).strip().lower() for s in show_me if str(s).strip()],
        "preferred_city": (str(merged["preferred_city"]).strip() or None) if merged.get("preferred_city") else None,
        "preferred_gender": (str(merged["preferred_gender"]).strip().lower() or None) if merged.get("preferred_gender") else None,
    }


class DiscoverySelector:
    def __init__(
        self,
        gateway: PersistenceGateway,
        matches: MatchEngine,
        events: ev.EventBus | None = None,
        *,
        clock: Callable[[], datetime] = _now_utc,
        daily_limit: int = DAILY_SWIPE_LIMIT,
        timeout_seconds: float = DISCOVERY_TIMEOUT_SECONDS,
        max_attempts: int = READ_RETRY_ATTEMPTS,
        delay_seconds: float = READ_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] | None = None,
        cache_size: int = EXCLUSION_CACHE_SIZE,
        cache_ttl_seconds: int = EXCLUSION_CACHE_TTL_SECONDS,
    ) -> None:
        self.gateway = gateway
        self.matches = matches
        self.events = events or matches.events
        self.clock = clock
        self.daily_limit = daily_limit
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.sleep = sleep
        self.cache_size = max(1, cache_size)
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._cache: OrderedDict[str, _CachedExclusions] = OrderedDict()
        self._lock = threading.Lock()

    # -- preferences ------------------------------------------------------

    def get_preferences(self, user_id: str) -> dict[str, Any]:
        rows = self.gateway.select("chat_preferences", [Eq("user_id", user_id)], limit=1)
        if rows:
            return rows[0]
        logger.info("[SWIPE] creating default preferences for %s", user_id)
        return self.gateway.upsert("chat_preferences", default_preferences(user_id))

    def update_preferences(self, user_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Any filter change clears both exclusion sets: a new filter may re-admit skipped profiles."""
        current = self.get_preferences(user_id)
        cleaned = _clean_preferences(patch, current)
        changed = any(cleaned[k] != current.get(k) for k in PREFERENCE_FIELDS)
        if not changed:
            return current
        saved = self.gateway.upsert(
            "chat_preferences",
            {"user_id": str(user_id), **cleaned, "exclusions_reset_at": self.clock()},
        )
        with self._lock:
            self._remember(str(user_id), ExclusionSet())
        logger.info("[SWIPE] preferences changed for %s, exclusions reset", user_id)
        return saved

    # -- exclusions -------------------------------------------------------

    def _remember(self, key: str, exclusions: ExclusionSet) -> None:
        # caller holds the lock
        self._cache[key] = _CachedExclusions(exclusions, self.clock())
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def cached_users(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    def exclusions(self, user_id: str) -> ExclusionSet:
        """
        Profile ids the user liked or skipped since their last filter reset.

        Entries are kept in a small LRU and re-read from ``swipe_logs`` once
        they are older than the TTL, so swipes recorded by another worker show
        up without a restart.
        """
        key = str(user_id)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and self.clock() - cached.loaded_at < self.cache_ttl:
                self._cache.move_to_end(key)
                return cached.exclusions
        prefs = self.get_preferences(key)
        where = [Eq("user_id", key)]
        if prefs.get("exclusions_reset_at"):
            where.append(Gt("created_at", prefs["exclusions_reset_at"]))
        entries = self.gateway.select("swipe_logs", where, order_by="created_at")
        current = ExclusionSet()
        for entry in entries:
            current.add(entry["action"], entry["swiped_profile_id"])
        with self._lock:
            self._remember(key, current)
        logger.info("[SWIPE] loaded %s exclusions for %s", len(current.all_ids()), key)
        return current

    # -- candidates -------------------------------------------------------

    def _fetch(self, user_id: str, prefs: dict[str, Any], exclude: list[str]) -> dict[str, Any] | None:
        return call_with_timeout(
            self.gateway.rpc,
            self.timeout_seconds,
            "get_random_profile",
            user_id=str(user_id),
            min_age=prefs.get("min_age") or DEFAULT_MIN_AGE,
            max_age=prefs.get("max_age") or DEFAULT_MAX_AGE,
            preferred_gender=prefs.get("preferred_gender"),
            preferred_city=prefs.get("preferred_city"),
            exclude_ids=exclude,
            operation="candidate fetch",
        )

    def fetch_next_candidate(self, user_id: str) -> CandidateResult:
        prefs = self.get_preferences(user_id)
        exclude = sorted(self.exclusions(user_id).all_ids())
        kwargs: dict[str, Any] = {"max_attempts": self.max_attempts, "delay_seconds": self.delay_seconds, "operation": "candidate fetch"}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        try:
            profile = retry_read(lambda: self._fetch(user_id, prefs, exclude), **kwargs)
        except SlowConnectionError as exc:
            return CandidateResult(SLOW, message=exc.message)
        if not profile:
            return CandidateResult(EXHAUSTED, message="No more profiles match your filters right now")
        return CandidateResult(FOUND, profile=public_card(profile))

    # -- swipes -----------------------------------------------------------

    def record_swipe(self, user_id: str, target_id: str, action: str) -> SwipeOutcome:
        action = (action or "").strip().lower()
        if action not in (LIKE, PASS):
            raise ValidationError("action must be 'like' or 'pass'")
        if str(user_id) == str(target_id):
            raise ValidationError("You cannot swipe on your own profile")

        count = int(self.gateway.rpc("increment_swipe_count", user_id=str(user_id), limit=self.daily_limit))
        if count == SWIPE_LIMIT_REACHED:
            logger.info("[SWIPE] daily limit reached for %s", user_id)
            return SwipeOutcome(action, str(target_id), count, rate_limited=True)

        self.gateway.insert(
            "swipe_logs",
            {"user_id": str(user_id), "action": action, "swiped_profile_id": str(target_id), "created_at": self.clock()},
        )
        exclusions = self.exclusions(user_id)
        with self._lock:
            exclusions.add(action, target_id)

        outcome = None
        if action == LIKE:
            outcome = self.matches.create_from_swipe(user_id, target_id)
        self.events.emit(
            ev.LifecycleEvent(ev.SWIPE_RECORDED, actor_id=str(user_id), entity_id=str(target_id), payload={"action": action, "count": count})
        )
        return SwipeOutcome(action, str(target_id), count, match=outcome)

