"""Fixed-window rate limiting and retry-with-backoff for gateway calls."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, TypeVar

from .errors import GatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RateWindow:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by endpoint identity.

    A window opens on the first request for a key and lasts ``window_seconds``.
    Within a window at most ``limit`` requests are allowed.
    """

    def __init__(
        self,
        limit: int = 60,
        window_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock or time.monotonic
        self.windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        """Count a request against ``key``; False when the window is exhausted."""
        now = self.clock()
        with self._lock:
            window = self.windows.get(key)
            if window is None or now > window.reset_at:
                self.windows[key] = RateWindow(count=1, reset_at=now + self.window_seconds)
                return True

            if window.count >= self.limit:
                logger.warning(f"Rate limit exceeded for {key}. Requests: {window.count}/{self.limit}")
                return False

            window.count += 1
            return True

    def current_count(self, key: str) -> int:
        now = self.clock()
        with self._lock:
            window = self.windows.get(key)
            if window is None or now > window.reset_at:
                return 0
            return window.count

    def reset(self, key: Optional[str] = None):
        with self._lock:
            if key is None:
                self.windows.clear()
            else:
                self.windows.pop(key, None)


def retry_with_backoff(
    operation: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """Run ``operation``, retrying retryable gateway errors with exponential backoff.

    Only a ``GatewayError`` flagged ``retryable`` (HTTP 429 or 5xx) is retried;
    anything else propagates immediately. After ``max_retries`` additional
    attempts the last error is raised.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except GatewayError as e:
            if not e.retryable or attempt >= max_retries:
                raise
            delay = base_delay * (2 ** attempt)
            logger.info(
                f"Gateway returned {e.status_code}, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{max_retries})"
            )
            sleep(delay)
            attempt += 1
