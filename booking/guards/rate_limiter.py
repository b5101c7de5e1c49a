"""
Fixed-window rate limiting per caller origin.

The limiter logic is independent of where counters live: a CounterStore
increments a key inside a fixed window and reports the window's remaining
lifetime. InMemoryCounterStore suffices for a single instance;
RedisCounterStore shares counters across instances.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from booking.errors import RateLimited

logger = logging.getLogger(__name__)

# Booking attempts: 10 requests per minute per origin
RATE_LIMIT_MAX_REQUESTS = 10
RATE_LIMIT_WINDOW_SECONDS = 60


class CounterStore(ABC):
    @abstractmethod
    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        """
        Increment the counter of key in its current window.

        A window starts on the first increment after the previous one expired.

        Returns:
            (count in current window, seconds until the window resets)
        """


class InMemoryCounterStore(CounterStore):
    """
    Process-local counters; windows reset lazily on first use after expiry.

    Expired windows of origins that never come back are pruned at most once
    per prune_interval seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, prune_interval: float = 60.0):
        self._clock = clock
        self._counters: dict[str, list[float]] = {}  # key -> [count, reset_at]
        self._prune_interval = prune_interval
        self._next_prune = clock() + prune_interval

    def __len__(self) -> int:
        return len(self._counters)

    def _prune(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._counters.items() if now > reset_at]
        for key in expired:
            del self._counters[key]
        self._next_prune = now + self._prune_interval
        if expired:
            logger.debug(f"Pruned {len(expired)} expired rate limit windows")

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        now = self._clock()
        if now >= self._next_prune:
            self._prune(now)

        entry = self._counters.get(key)

        if entry is None or now > entry[1]:
            entry = [0, now + window_seconds]
            self._counters[key] = entry

        entry[0] += 1
        return int(entry[0]), max(0, int(entry[1] - now))


class RedisCounterStore(CounterStore):
    """Counters shared through Redis INCR + EXPIRE."""

    def __init__(self, redis_client, prefix: str = "rate_limit"):
        self.redis = redis_client
        self.prefix = prefix

    async def increment(self, key: str, window_seconds: int) -> tuple[int, int]:
        redis_key = f"{self.prefix}:{key}"

        count = await self.redis.incr(redis_key)
        if count == 1:
            await self.redis.expire(redis_key, window_seconds)

        ttl = await self.redis.ttl(redis_key)
        if ttl < 0:
            # Key lost its TTL (e.g. crash between INCR and EXPIRE)
            await self.redis.expire(redis_key, window_seconds)
            ttl = window_seconds

        return int(count), int(ttl)


@dataclass
class RateLimitDecision:
    allowed: bool
    count: int
    remaining: int
    retry_after: int


class RateLimiter:
    """
    Per-origin fixed window limiter.

    Counter store failures are logged and the request is let through.
    """

    def __init__(
        self,
        counter_store: CounterStore,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        scope: str = "booking",
    ):
        self.counter_store = counter_store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.scope = scope

    async def hit(self, origin: str) -> RateLimitDecision:
        try:
            count, ttl = await self.counter_store.increment(
                f"{self.scope}:{origin}", self.window_seconds
            )
        except Exception as e:
            logger.error(
                f"Rate limit check failed for origin {origin}: {e}",
                extra={"origin": origin},
            )
            return RateLimitDecision(
                allowed=True, count=0, remaining=self.max_requests, retry_after=0
            )

        allowed = count <= self.max_requests
        if not allowed:
            logger.warning(
                f"Rate limit exceeded for origin {origin}: {count} requests",
                extra={"origin": origin},
            )
        return RateLimitDecision(
            allowed=allowed,
            count=count,
            remaining=max(0, self.max_requests - count),
            retry_after=ttl if not allowed else 0,
        )

    async def check(self, origin: str) -> bool:
        """Count one request for origin and tell whether it is allowed."""
        return (await self.hit(origin)).allowed

    async def enforce(self, origin: str) -> None:
        """Like check(), but raises RateLimited when the budget is exhausted."""
        decision = await self.hit(origin)
        if not decision.allowed:
            raise RateLimited(
                "Too many attempts, please wait before retrying",
                retry_after=decision.retry_after or self.window_seconds,
                details={"origin": origin, "max_requests": self.max_requests},
            )
