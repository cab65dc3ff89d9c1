import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, TypeVar

from .errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="bounded-read")


class SlowConnectionError(TransientError):
    """The collaborator did not answer within the bounded wait."""

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation} is taking longer than expected, please check your connection")


def call_with_timeout(fn: Callable[..., T], timeout_seconds: float, *args: Any, operation: str = "request", **kwargs: Any) -> T:
    """Run ``fn`` with a bounded wait. The worker is abandoned, not killed, on timeout."""
    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeout:
        future.cancel()
        logger.warning("[RESILIENCE] %s exceeded %.1fs", operation, timeout_seconds)
        raise SlowConnectionError(operation, timeout_seconds) from None


def retry_read(
    fn: Callable[[], T],
    *,
    max_attempts: int,
    delay_seconds: float,
    operation: str = "read",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Retry a read-only call on TransientError with linear backoff. Never wrap writes in this."""
    attempts = max(1, max_attempts)
    attempt = 1
    while True:
        try:
            return fn()
        except TransientError as exc:
            logger.info("[RESILIENCE] %s attempt %s/%s failed: %s", operation, attempt, max_attempts, exc.message)
            if attempt >= attempts:
                raise
            sleep(delay_seconds * attempt)
            attempt += 1
