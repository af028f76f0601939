"""Exponential backoff arithmetic shared by network errors and the recovery dispatcher."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

RATE_LIMITED_MAX_RETRIES = 5


@dataclass
class BackoffPolicy:
    """Exponential backoff with optional jitter, all durations in milliseconds."""

    base_delay_ms: int = 1000
    factor: float = 2.0
    max_delay_ms: int = 30000
    jitter: bool = True
    max_retries: int = 3

    def compute_delay(
        self,
        attempt: int,
        jitter: Optional[bool] = None,
        rng: Optional[random.Random] = None,
    ) -> int:
        """Delay before retry number ``attempt`` (1-based).

        ``min(base * factor**(attempt - 1), max)``, scaled by a random
        factor in [0.5, 1.5) when jitter is on and capped at ``max_delay_ms``
        either way.
        """
        attempt = max(1, int(attempt))
        try:
            delay = min(self.base_delay_ms * self.factor ** (attempt - 1), self.max_delay_ms)
        except OverflowError:
            delay = self.max_delay_ms

        use_jitter = self.jitter if jitter is None else jitter
        if use_jitter:
            delay = min(delay * (0.5 + (rng or random).random()), self.max_delay_ms)

        return int(delay)

    def should_retry(self, attempt: int, max_retries: Optional[int] = None) -> bool:
        limit = self.max_retries if max_retries is None else max_retries
        return attempt <= limit
