"""
Tests for the fixed-window rate limiter.
"""

import pytest

from zone.exceptions import RateLimitExceededError
from zone.services.rate_limit import FixedWindowRateLimiter, limiters


@pytest.fixture
def limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter("test", window_seconds=60, max_requests=3, message="slow down")


class TestFixedWindowRateLimiter:
    """Tests for FixedWindowRateLimiter."""

    def test_allows_up_to_max(self, limiter: FixedWindowRateLimiter):
        assert [limiter.hit("k", now=0) for _ in range(3)] == [None, None, None]

    def test_rejects_over_max_with_retry_after(self, limiter: FixedWindowRateLimiter):
        for _ in range(3):
            limiter.hit("k", now=0)

        assert limiter.hit("k", now=20) == 40

    def test_retry_after_is_at_least_one(self, limiter: FixedWindowRateLimiter):
        for _ in range(3):
            limiter.hit("k", now=0)

        assert limiter.hit("k", now=59.9) == 1

    def test_window_rolls_over(self, limiter: FixedWindowRateLimiter):
        for _ in range(3):
            limiter.hit("k", now=0)

        assert limiter.hit("k", now=60) is None

    def test_keys_are_independent(self, limiter: FixedWindowRateLimiter):
        for _ in range(3):
            limiter.hit("a", now=0)

        assert limiter.hit("b", now=0) is None

    def test_check_raises(self, limiter: FixedWindowRateLimiter):
        for _ in range(3):
            limiter.check("k", now=0)

        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check("k", now=30)

        assert exc_info.value.scope == "test"
        assert exc_info.value.retry_after == 30
        assert exc_info.value.message == "slow down"

    def test_reset(self, limiter: FixedWindowRateLimiter):
        for _ in range(3):
            limiter.hit("k", now=0)

        limiter.reset()

        assert limiter.hit("k", now=1) is None


class TestConfiguredLimiters:
    """The configured endpoint classes."""

    def test_scopes(self):
        assert set(limiters) == {"api", "config", "unlock_request", "unlock_verify"}

    def test_unlock_limits_are_tight(self):
        assert limiters["unlock_request"].max_requests == 3
        assert limiters["unlock_verify"].max_requests == 5
        assert limiters["unlock_request"].window_seconds == 900
