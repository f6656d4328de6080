"""
Rate Limiting - in-memory fixed-window counters.

One limiter per endpoint class. State is process-local, so limits apply
per worker; that is acceptable for abuse protection on a single node.
"""

import time
from dataclasses import dataclass
from typing import ClassVar

from zone.config import settings
from zone.exceptions import RateLimitExceededError


@dataclass
class _Window:
    started_at: float
    count: int


class FixedWindowRateLimiter:
    """
    Allows ``max_requests`` per ``window_seconds`` for each key.

    Usage:
        limiter = FixedWindowRateLimiter("unlock_request", 900, 3, "Too many OTP requests")
        retry_after = limiter.hit(f"{client_ip}:{user_uuid}")
        if retry_after is not None:
            ...reject with 429
    """

    _MAX_KEYS: ClassVar[int] = 10000

    def __init__(self, scope: str, window_seconds: int, max_requests: int, message: str) -> None:
        self.scope = scope
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.message = message
        self._windows: dict[str, _Window] = {}

    def _cleanup(self, now: float) -> None:
        if len(self._windows) < self._MAX_KEYS:
            return
        expired = [k for k, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for k in expired:
            del self._windows[k]

    def hit(self, key: str, now: float | None = None) -> int | None:
        """
        Count one request for ``key``.

        Returns None when allowed, otherwise seconds until the window resets.
        """
        now = time.monotonic() if now is None else now
        window = self._windows.get(key)

        if window is None or now - window.started_at >= self.window_seconds:
            self._cleanup(now)
            self._windows[key] = _Window(started_at=now, count=1)
            return None

        if window.count >= self.max_requests:
            return max(1, int(window.started_at + self.window_seconds - now))

        window.count += 1
        return None

    def check(self, key: str, now: float | None = None) -> None:
        """Count one request, raising RateLimitExceededError when over budget."""
        retry_after = self.hit(key, now)
        if retry_after is not None:
            raise RateLimitExceededError(self.scope, retry_after, self.message)

    def reset(self) -> None:
        """Forget all counters."""
        self._windows.clear()


limiters: dict[str, FixedWindowRateLimiter] = {
    "api": FixedWindowRateLimiter(
        "api",
        settings.rate_limit_window_seconds,
        settings.rate_limit_max_requests,
        "Too many requests from this IP, please try again later",
    ),
    "config": FixedWindowRateLimiter(
        "config",
        settings.config_rate_limit_window_seconds,
        settings.config_rate_limit_max_requests,
        "Too many config requests, please try again later",
    ),
    "unlock_request": FixedWindowRateLimiter(
        "unlock_request",
        settings.unlock_request_window_seconds,
        settings.unlock_request_max_requests,
        "Too many OTP requests, please try again later",
    ),
    "unlock_verify": FixedWindowRateLimiter(
        "unlock_verify",
        settings.unlock_verify_window_seconds,
        settings.unlock_verify_max_requests,
        "Too many verification attempts, please try again later",
    ),
}
