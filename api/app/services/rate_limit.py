"""Per-user throttles for the write endpoints.

Each action named in ``config.RATE_LIMITS`` gets a sliding window counted per
signed-in user. The dependency runs after ``get_current_user``, so anonymous
callers get their 401 before they can touch a bucket.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Depends, HTTPException

from ..auth.deps import get_current_user
from ..config import RATE_LIMITS

logger = logging.getLogger(__name__)

SWEEP_EVERY = 512


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


class ActionThrottle:
    def __init__(
        self,
        limits: dict[str, tuple[int, int]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limits = dict(RATE_LIMITS if limits is None else limits)
        self._clock = clock
        self._hits: dict[tuple[str, str], deque[float]] = {}
        self._lock = threading.Lock()
        self._checks = 0

    def _window(self, action: str) -> tuple[int, int]:
        try:
            return self.limits[action]
        except KeyError:
            raise ValueError(f"No rate limit configured for action {action!r}") from None

    def check(self, action: str, user_id: str) -> RateDecision:
        limit, window = self._window(action)
        now = self._clock()
        key = (action, str(user_id))
        with self._lock:
            self._checks += 1
            if self._checks % SWEEP_EVERY == 0:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= limit:
                retry_after = max(1, int(hits[0] + window - now))
                return RateDecision(allowed=False, remaining=0, retry_after_seconds=retry_after)
            hits.append(now)
            return RateDecision(allowed=True, remaining=limit - len(hits))

    def _sweep(self, now: float) -> None:
        # buckets whose newest hit has aged out hold nothing worth keeping
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self.limits[key[0]][1]]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug(f"[rate_limit] swept {len(stale)} idle buckets")

    def sweep(self) -> None:
        with self._lock:
            self._sweep(self._clock())

    def tracked_buckets(self) -> int:
        with self._lock:
            return len(self._hits)


throttle = ActionThrottle()


def rate_limited(action: str):
    """Route dependency that spends one ``action`` hit for the current user."""
    if action not in RATE_LIMITS:
        raise ValueError(f"No rate limit configured for action {action!r}")

    def _dep(current_user: dict[str, Any] = Depends(get_current_user)) -> None:
        decision = throttle.check(action, current_user["id"])
        if not decision.allowed:
            logger.info(f"[rate_limit] {action} blocked for user={current_user['id']}")
            raise HTTPException(
                status_code=429,
                detail=f"Too many requests. Retry in {decision.retry_after_seconds}s",
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

    return Depends(_dep)
