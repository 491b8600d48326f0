"""In-process rate limiting for login attempts and public lookup endpoints.

State lives in memory, so limits are per worker process.
"""

import math
import time
from collections import deque
from threading import Lock

from fastapi import Request

from storefront.core.errors import TooManyAttemptsError


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class _TimestampWindows:
    """Per-key deques of event times, trimmed to the trailing window."""

    def __init__(self, *, window_seconds: int):
        self.window_seconds = window_seconds
        self._events: dict[str, deque[float]] = {}
        self._lock = Lock()

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def _trimmed(self, key: str, now: float) -> deque[float]:
        events = self._events.setdefault(key, deque())
        while events and events[0] < now - self.window_seconds:
            events.popleft()
        return events


def _retry_after(until: float, now: float) -> int:
    return max(math.ceil(until - now), 1)


class LoginRateLimiter(_TimestampWindows):
    """Locks a key out for ``lock_seconds`` once it collects ``max_attempts`` failures."""

    def __init__(self, *, max_attempts: int, window_seconds: int, lock_seconds: int):
        super().__init__(window_seconds=window_seconds)
        self.max_attempts = max_attempts
        self.lock_seconds = lock_seconds
        self._locked_until: dict[str, float] = {}

    def clear(self) -> None:
        super().clear()
        with self._lock:
            self._locked_until.clear()

    def check(self, key: str) -> int:
        """Seconds until ``key`` may try again; 0 when it is not locked."""
        now = time.monotonic()
        with self._lock:
            until = self._locked_until.get(key, 0.0)
            if until <= now:
                self._locked_until.pop(key, None)
                return 0
            return _retry_after(until, now)

    def enforce(self, key: str, *, detail: str) -> None:
        retry_after = self.check(key)
        if retry_after:
            raise TooManyAttemptsError(detail, retry_after=retry_after)

    def register_failure(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            failures = self._trimmed(key, now)
            failures.append(now)
            if len(failures) >= self.max_attempts:
                self._locked_until[key] = now + self.lock_seconds
                failures.clear()

    def register_success(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)
            self._locked_until.pop(key, None)


class SlidingWindowRateLimiter(_TimestampWindows):
    """Allows ``max_requests`` per key inside any trailing window."""

    def __init__(self, *, max_requests: int, window_seconds: int):
        super().__init__(window_seconds=window_seconds)
        self.max_requests = max_requests

    def check_and_consume(self, key: str) -> int:
        """Records one request for ``key``; returns retry-after seconds when over the limit."""
        now = time.monotonic()
        with self._lock:
            requests = self._trimmed(key, now)
            if len(requests) >= self.max_requests:
                return _retry_after(requests[0] + self.window_seconds, now)
            requests.append(now)
            return 0

    def enforce(self, request: Request, *, detail: str) -> None:
        retry_after = self.check_and_consume(client_ip(request))
        if retry_after:
            raise TooManyAttemptsError(detail, retry_after=retry_after)
