from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.engine import RateLimitStoreError
from app.ratelimit import (
    LimitClass,
    MemoryRateLimitStore,
    RateLimitStore,
    RateLimitWindowEntry,
    RedisRateLimitStore,
    TieredRateLimiter,
)


class FakeClock:
    def __init__(self, start_ms: int = 0) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FailingStore:
    async def increment(self, key: str, window_ms: int) -> RateLimitWindowEntry:
        raise ConnectionError("store down")

    async def close(self) -> None:
        return None


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._commands: list[tuple[str, str]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._commands.clear()

    def incr(self, key: str) -> None:
        self._commands.append(("incr", key))

    def pttl(self, key: str) -> None:
        self._commands.append(("pttl", key))

    async def execute(self) -> list[int]:
        results = []
        for command, key in self._commands:
            if command == "incr":
                self._redis.counts[key] = self._redis.counts.get(key, 0) + 1
                results.append(self._redis.counts[key])
            else:
                results.append(self._redis.ttls.get(key, -1))
        return results


class FakeRedis:
    """In-memory double for the redis.asyncio calls the store makes."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        assert transaction
        return FakePipeline(self)

    async def pexpire(self, key: str, ms: int) -> bool:
        self.ttls[key] = ms
        return True

    async def aclose(self) -> None:
        self.closed = True


def make_limiter(
    store: RateLimitStore | None = None,
    clock: FakeClock | None = None,
    **kwargs: Any,
) -> tuple[TieredRateLimiter, FakeClock]:
    clock = clock or FakeClock(1_000_000)
    limiter = TieredRateLimiter(
        store or MemoryRateLimitStore(clock=clock),
        clock=clock,
        **kwargs,
    )
    return limiter, clock


def test_free_generation_limit_scenario() -> None:
    """Free tier gets 3 generation calls per minute, then a 30s wait."""
    limiter, clock = make_limiter()

    async def scenario() -> list[Any]:
        decisions = []
        for _ in range(3):
            decisions.append(
                await limiter.check_and_increment("user-1", "generation", "free")
            )
        clock.advance(30_000)
        decisions.append(
            await limiter.check_and_increment("user-1", "generation", "free")
        )
        return decisions

    decisions = asyncio.run(scenario())

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    denied = decisions[-1]
    assert denied.limit == 3
    assert denied.reset_at_ms == 1_060_000
    assert denied.retry_after_seconds(clock()) == 30


def test_window_resets_after_expiry() -> None:
    limiter, clock = make_limiter()

    async def scenario() -> tuple[Any, Any]:
        for _ in range(5):
            await limiter.check_and_increment("user-2", LimitClass.UPLOAD, "free")
        blocked = await limiter.check_and_increment("user-2", "upload", "free")
        clock.advance(60_000)
        fresh = await limiter.check_and_increment("user-2", "upload", "free")
        return blocked, fresh

    blocked, fresh = asyncio.run(scenario())

    assert not blocked.allowed
    assert fresh.allowed
    assert fresh.remaining == 4
    assert fresh.reset_at_ms == clock() + 60_000


def test_limit_classes_and_identifiers_are_independent() -> None:
    limiter, _ = make_limiter()

    async def scenario() -> tuple[Any, Any, Any]:
        for _ in range(3):
            await limiter.check_and_increment("user-3", "generation", "free")
        general = await limiter.check_and_increment("user-3", "general", "free")
        other_user = await limiter.check_and_increment(
            "user-4", "generation", "free"
        )
        blocked = await limiter.check_and_increment("user-3", "generation", "free")
        return general, other_user, blocked

    general, other_user, blocked = asyncio.run(scenario())

    assert general.allowed and general.remaining == 9
    assert other_user.allowed and other_user.remaining == 2
    assert not blocked.allowed


def test_tier_selects_limit() -> None:
    limiter, _ = make_limiter()

    async def scenario() -> list[Any]:
        return [
            await limiter.check_and_increment(f"u-{tier}", "general", tier)
            for tier in ("maker", "pro", "enterprise", "admin", "bogus")
        ]

    limits = [decision.limit for decision in asyncio.run(scenario())]

    assert limits[:3] == [30, 60, 100]
    assert limits[3] > 1_000_000
    assert limits[4] == 10


def test_allow_list_bypasses_store() -> None:
    limiter, _ = make_limiter(FailingStore(), allow_list=("10.0.0.1", "svc"))

    async def scenario() -> tuple[Any, Any]:
        by_id = await limiter.check_and_increment("svc", "auth", "free")
        by_ip = await limiter.check_and_increment(
            "user-5", "auth", "free", client_ip="10.0.0.1"
        )
        return by_id, by_ip

    by_id, by_ip = asyncio.run(scenario())

    assert by_id.allowed and by_id.remaining == 5
    assert by_ip.allowed


def test_store_failure_raises_by_default() -> None:
    limiter, _ = make_limiter(FailingStore())

    with pytest.raises(RateLimitStoreError) as excinfo:
        asyncio.run(limiter.check_and_increment("user-6", "general", "pro"))

    assert excinfo.value.status_code == 503
    assert excinfo.value.details["key"] == "general:user-6"


def test_store_failure_fails_open_when_configured() -> None:
    limiter, _ = make_limiter(FailingStore(), skip_on_error=True)

    decision = asyncio.run(limiter.check_and_increment("user-7", "general", "pro"))

    assert decision.allowed
    assert decision.remaining == 60


def test_unknown_limit_class_is_rejected() -> None:
    limiter, _ = make_limiter()

    with pytest.raises(ValueError):
        asyncio.run(limiter.check_and_increment("user-8", "download", "pro"))


def test_policy_header_value() -> None:
    limiter, _ = make_limiter(window_ms=30_000)

    assert limiter.policy(60) == "60;w=30"


def test_memory_store_lazy_expiry_and_sweep() -> None:
    clock = FakeClock(0)
    store = MemoryRateLimitStore(clock=clock)

    async def scenario() -> None:
        await store.increment("a", 1_000)
        await store.increment("b", 5_000)

    asyncio.run(scenario())
    clock.advance(1_000)

    assert store.get("a") is None
    assert store.get("b") == RateLimitWindowEntry(count=1, reset_at_ms=5_000)

    clock.advance(4_000)
    assert store.sweep() == 1
    assert len(store) == 0


def test_memory_store_sweeper_lifecycle() -> None:
    clock = FakeClock(0)
    store = MemoryRateLimitStore(clock=clock)

    async def scenario() -> bool:
        await store.increment("a", 10)
        clock.advance(10)
        task = store.start_sweeper(0.01)
        assert store.start_sweeper(0.01) is task
        await asyncio.sleep(0.05)
        await store.close()
        return task.done()

    assert asyncio.run(scenario())
    assert len(store) == 0


def test_redis_store_sets_expiry_on_first_hit() -> None:
    redis = FakeRedis()
    clock = FakeClock(500)
    store = RedisRateLimitStore(redis, prefix="t:", clock=clock)

    async def scenario() -> tuple[RateLimitWindowEntry, RateLimitWindowEntry]:
        first = await store.increment("general:u", 60_000)
        redis.ttls["t:general:u"] = 42_000
        second = await store.increment("general:u", 60_000)
        await store.close()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == RateLimitWindowEntry(count=1, reset_at_ms=60_500)
    assert second == RateLimitWindowEntry(count=2, reset_at_ms=42_500)
    assert redis.closed
    assert isinstance(store, RateLimitStore)
