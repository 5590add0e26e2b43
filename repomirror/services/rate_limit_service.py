"""Failed-login throttling with an in-memory sliding window. Lost on restart."""

from __future__ import annotations

import time
from collections import deque


class LoginThrottle:
    """Count failures per key and block a key once it hits the limit.

    Used from the event loop only; no method awaits, so checks and updates
    never interleave.
    """

    def __init__(self, max_failures: int, window_seconds: int) -> None:
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self._failures: dict[str, deque[float]] = {}

    def _recent(self, key: str, now: float) -> deque[float]:
        failures = self._failures.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while failures and failures[0] <= cutoff:
            failures.popleft()
        return failures

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` may try again; 0 when it is not blocked."""
        now = time.monotonic()
        failures = self._recent(key, now)
        if len(failures) < self.max_failures:
            if not failures:
                del self._failures[key]
            return 0
        return max(int(failures[0] + self.window_seconds - now) + 1, 1)

    def record_failure(self, key: str) -> None:
        now = time.monotonic()
        self._recent(key, now).append(now)

    def reset(self, key: str) -> None:
        self._failures.pop(key, None)
