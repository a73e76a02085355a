"""
Per-origin sliding-window rate limiting for the orchestrator entry point.

The limiter is injected into the authorization pipeline rather than held in
module state, so tests can hand in a deterministic clock or a fake.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Mapping, Protocol

from CronHalo.shared.redis_utils import RedisKeys, SyncRedisClient

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 60 * 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter(Protocol):
    limit: int

    def hit(self, identifier: str) -> RateLimitDecision:
        """Record an attempt for identifier and say whether it is allowed."""
        ...


class InMemoryRateLimiter:
    """
    Sliding window limiter kept in process memory.

    Attempts are tracked per identifier in a deque of timestamps. A single
    lock guards the map, so overlapping triggers cannot both take the last
    slot. Rejected attempts are not recorded. Identifiers whose window has
    emptied are dropped, and the whole map is swept at most once per window.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: dict[str, deque[float]] = {}
        self._last_sweep: float | None = None
        self._lock = threading.Lock()

    @staticmethod
    def _trim(attempts: deque[float], cutoff: float):
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()

    def _sweep(self, cutoff: float):
        for identifier in list(self._attempts):
            attempts = self._attempts[identifier]
            self._trim(attempts, cutoff)
            if not attempts:
                del self._attempts[identifier]

    def hit(self, identifier: str) -> RateLimitDecision:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if self._last_sweep is None or now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            attempts = self._attempts.get(identifier)
            if attempts is not None:
                self._trim(attempts, cutoff)
            else:
                attempts = deque()

            if len(attempts) >= self.limit:
                retry_after = max(0, int(attempts[0] + self.window_seconds - now) + 1)
                return RateLimitDecision(False, self.limit, 0, retry_after)

            attempts.append(now)
            self._attempts[identifier] = attempts
            return RateLimitDecision(True, self.limit, self.limit - len(attempts))

    def attempts(self, identifier: str) -> int:
        with self._lock:
            return len(self._attempts.get(identifier, ()))

    def tracked(self) -> int:
        """Number of identifiers currently holding attempts."""
        with self._lock:
            return len(self._attempts)

    def reset(self, identifier: str | None = None):
        with self._lock:
            if identifier is None:
                self._attempts.clear()
            else:
                self._attempts.pop(identifier, None)


class RedisRateLimiter:
    """Sliding window limiter shared across processes through Redis."""

    def __init__(
        self,
        client: SyncRedisClient,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        prefix: str = "cron",
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._clock = clock

    def hit(self, identifier: str) -> RateLimitDecision:
        key = RedisKeys.rate_limit(self.prefix, identifier)
        now = self._clock()
        count, member = self.client.record_attempt(key, self.window_seconds, now=now)

        if count > self.limit:
            self.client.discard(key, member)
            oldest = self.client.oldest_attempt(key)
            retry_after = self.window_seconds
            if oldest is not None:
                retry_after = max(0, int(oldest + self.window_seconds - now) + 1)
            return RateLimitDecision(False, self.limit, 0, retry_after)

        return RateLimitDecision(True, self.limit, self.limit - count)


def client_identifier(headers: Mapping[str, str], peer: str | None = None) -> str:
    """
    Resolve the caller's network origin.

    First hop of X-Forwarded-For, then X-Real-IP, then the socket peer.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer or "unknown"
