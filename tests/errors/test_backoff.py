"""Tests for BackoffPolicy."""

import random

from oasgen.errors import BackoffPolicy


class TestBackoffPolicy:
    """Test BackoffPolicy."""

    def test_non_decreasing_and_bounded(self):
        """Test delays never decrease and never exceed the cap."""
        policy = BackoffPolicy(base_delay_ms=100, factor=2.0, max_delay_ms=5000, jitter=False)

        delays = [policy.compute_delay(n) for n in range(1, 40)]

        assert delays == sorted(delays)
        assert max(delays) == 5000
        assert delays[:4] == [100, 200, 400, 800]

    def test_jitter_bounds(self):
        """Test jitter stays within half to one and a half of the base delay, capped."""
        policy = BackoffPolicy(base_delay_ms=1000, factor=2.0, max_delay_ms=30000)
        rng = random.Random(42)

        for attempt in range(1, 10):
            nominal = min(1000 * 2 ** (attempt - 1), 30000)
            delay = policy.compute_delay(attempt, rng=rng)
            assert nominal * 0.5 <= delay <= min(nominal * 1.5, 30000)

    def test_huge_attempt(self):
        """Test overflow falls back to the cap."""
        policy = BackoffPolicy(jitter=False)

        assert policy.compute_delay(10_000) == policy.max_delay_ms

    def test_should_retry(self):
        policy = BackoffPolicy(max_retries=3)

        assert policy.should_retry(3)
        assert not policy.should_retry(4)
        assert policy.should_retry(5, max_retries=5)
