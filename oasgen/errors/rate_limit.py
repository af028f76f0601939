"""Per-fingerprint fixed-window rate limiting for error output."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RateLimitBucket:
    count: int = 0
    window_reset_time: float = 0.0


class RateLimiter:
    """Fixed-window limiter keyed by error fingerprint.

    The first occurrence opens a window of ``window_ms``; occurrences are
    admitted while the count within the window stays at or below
    ``max_per_window``.
    """

    def __init__(
        self,
        window_ms: int = 60000,
        max_per_window: int = 100,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.window_ms = window_ms
        self.max_per_window = max_per_window
        self._clock = clock or monotonic_ms
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.RLock()
        self.rejected = 0

    def check(self, fingerprint: str) -> bool:
        """Record an occurrence and return whether it is admitted."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.setdefault(fingerprint, RateLimitBucket())
            if now > bucket.window_reset_time:
                bucket.count = 0
                bucket.window_reset_time = now + self.window_ms
            bucket.count += 1

            if bucket.count <= self.max_per_window:
                return True

            self.rejected += 1
            if bucket.count == self.max_per_window + 1:
                logger.warning(
                    f"Rate limit reached for fingerprint {fingerprint}: "
                    f"more than {self.max_per_window} errors in {self.window_ms} ms"
                )
            return False

    def get_bucket(self, fingerprint: str) -> Optional[RateLimitBucket]:
        with self._lock:
            return self._buckets.get(fingerprint)

    def reset(self, fingerprint: Optional[str] = None) -> None:
        with self._lock:
            if fingerprint is None:
                self._buckets.clear()
                self.rejected = 0
            else:
                self._buckets.pop(fingerprint, None)
