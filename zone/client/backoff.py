"""
Exponential backoff driven by request outcomes.

Only throttling grows the hold. Any other server response clears it; a
transport failure leaves it untouched because no server answered.
"""

from enum import Enum


class FetchOutcome(str, Enum):
    """Transport-independent result of one request."""

    OK = "ok"
    THROTTLED = "throttled"
    UNREACHABLE = "unreachable"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class Backoff:
    """
    Hold state after consecutive throttled responses.

    After the n-th consecutive throttle the hold is
    ``min(base * 2 ** (n - 1), cap)`` seconds from the moment it was recorded.
    """

    def __init__(self, base_seconds: float, cap_seconds: float) -> None:
        self.base_seconds = base_seconds
        self.cap_seconds = cap_seconds
        self.consecutive_failures = 0
        self.until = 0.0

    def delay_for(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self.base_seconds * 2 ** (failures - 1), self.cap_seconds)

    @property
    def current_delay(self) -> float:
        return self.delay_for(self.consecutive_failures)

    def record(self, outcome: FetchOutcome, now: float) -> None:
        if outcome is FetchOutcome.THROTTLED:
            self.consecutive_failures += 1
            self.until = now + self.current_delay
        elif outcome is not FetchOutcome.UNREACHABLE:
            self.reset()

    def active(self, now: float) -> bool:
        return now < self.until

    def remaining(self, now: float) -> float:
        return max(0.0, self.until - now)

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.until = 0.0
