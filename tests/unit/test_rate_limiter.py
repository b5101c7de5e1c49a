"""
Unit tests for the fixed-window rate limiter and its counter stores.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from booking.errors import RateLimited
from booking.guards import InMemoryCounterStore, RateLimiter, RedisCounterStore


class FakeMonotonic:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryCounterStore:
    @pytest.mark.asyncio
    async def test_counts_within_window(self):
        clock = FakeMonotonic()
        store = InMemoryCounterStore(clock)

        assert await store.increment("k", 60) == (1, 60)
        clock.now += 15
        assert await store.increment("k", 60) == (2, 45)

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self):
        clock = FakeMonotonic()
        store = InMemoryCounterStore(clock)
        await store.increment("k", 60)
        await store.increment("k", 60)

        clock.now += 61
        count, ttl = await store.increment("k", 60)

        assert count == 1
        assert ttl == 60

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        store = InMemoryCounterStore(FakeMonotonic())
        await store.increment("a", 60)

        count, _ = await store.increment("b", 60)

        assert count == 1

    @pytest.mark.asyncio
    async def test_expired_origins_are_pruned(self):
        clock = FakeMonotonic()
        store = InMemoryCounterStore(clock, prune_interval=60)
        for i in range(100):
            await store.increment(f"origin-{i}", 30)
        assert len(store) == 100

        clock.now += 45
        await store.increment("origin-0", 30)
        assert len(store) == 100

        clock.now += 20
        count, _ = await store.increment("fresh", 30)

        assert count == 1
        assert len(store) == 2


class TestRedisCounterStore:
    @pytest.mark.asyncio
    async def test_first_hit_sets_expiry(self):
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=1)
        redis.expire = AsyncMock()
        redis.ttl = AsyncMock(return_value=60)

        count, ttl = await RedisCounterStore(redis).increment("booking:1.2.3.4", 60)

        assert (count, ttl) == (1, 60)
        redis.incr.assert_awaited_once_with("rate_limit:booking:1.2.3.4")
        redis.expire.assert_awaited_once_with("rate_limit:booking:1.2.3.4", 60)

    @pytest.mark.asyncio
    async def test_later_hit_keeps_expiry(self):
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=4)
        redis.expire = AsyncMock()
        redis.ttl = AsyncMock(return_value=12)

        count, ttl = await RedisCounterStore(redis).increment("k", 60)

        assert (count, ttl) == (4, 12)
        redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restores_lost_ttl(self):
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=3)
        redis.expire = AsyncMock()
        redis.ttl = AsyncMock(return_value=-1)

        count, ttl = await RedisCounterStore(redis).increment("k", 60)

        assert (count, ttl) == (3, 60)
        redis.expire.assert_awaited_once_with("rate_limit:k", 60)


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_max(self):
        limiter = RateLimiter(InMemoryCounterStore(FakeMonotonic()), max_requests=3, window_seconds=60)

        results = [await limiter.check("1.2.3.4") for _ in range(4)]

        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_enforce_raises_with_retry_after(self):
        clock = FakeMonotonic()
        limiter = RateLimiter(InMemoryCounterStore(clock), max_requests=1, window_seconds=60)
        await limiter.enforce("1.2.3.4")
        clock.now += 20

        with pytest.raises(RateLimited) as exc_info:
            await limiter.enforce("1.2.3.4")

        assert exc_info.value.retry_after == 40
        assert exc_info.value.details["max_requests"] == 1

    @pytest.mark.asyncio
    async def test_window_expiry_restores_budget(self):
        clock = FakeMonotonic()
        limiter = RateLimiter(InMemoryCounterStore(clock), max_requests=1, window_seconds=60)
        assert await limiter.check("1.2.3.4")
        assert not await limiter.check("1.2.3.4")

        clock.now += 61

        assert await limiter.check("1.2.3.4")

    @pytest.mark.asyncio
    async def test_counter_failure_fails_open(self):
        counter_store = MagicMock()
        counter_store.increment = AsyncMock(side_effect=ConnectionError("redis down"))
        limiter = RateLimiter(counter_store, max_requests=1)

        decision = await limiter.hit("1.2.3.4")

        assert decision.allowed
        await limiter.enforce("1.2.3.4")
