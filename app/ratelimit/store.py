"""Backing stores for fixed-window rate-limit counters.

A store only knows how to bump a counter inside a window. Limits, tiers
and allow lists live in the limiter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from app.constants import RATE_LIMIT_PREFIX, SWEEP_INTERVAL_SECONDS

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitWindowEntry:
    count: int
    reset_at_ms: int

    def expired(self, at_ms: int) -> bool:
        return at_ms >= self.reset_at_ms


@runtime_checkable
class RateLimitStore(Protocol):
    async def increment(self, key: str, window_ms: int) -> RateLimitWindowEntry:
        """Atomically bump the counter for ``key`` in its current window."""
        ...

    async def close(self) -> None:
        ...


class MemoryRateLimitStore:
    """Single-process counters with lazy expiry and an optional sweeper."""

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._entries: dict[str, RateLimitWindowEntry] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> RateLimitWindowEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def increment(self, key: str, window_ms: int) -> RateLimitWindowEntry:
        # no await below: increment-or-create is atomic on the event loop
        now = self._clock()
        current = self.get(key)
        if current is None:
            entry = RateLimitWindowEntry(count=1, reset_at_ms=now + window_ms)
        else:
            entry = RateLimitWindowEntry(
                count=current.count + 1,
                reset_at_ms=current.reset_at_ms,
            )
        self._entries[key] = entry
        return entry

    def sweep(self) -> int:
        """Drop expired windows and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def start_sweeper(
        self,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
    ) -> asyncio.Task[None]:
        """Start periodic cleanup on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval_seconds))
        return self._sweeper

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug(
                    "rate_limit_sweep",
                    extra={"event": "rate_limit_sweep", "removed": removed},
                )

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        self._entries.clear()


class RedisRateLimitStore:
    """Counters shared by every instance through Redis INCR with a TTL."""

    def __init__(
        self,
        client: Redis,
        prefix: str = RATE_LIMIT_PREFIX,
        clock: Clock = now_ms,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._clock = clock

    @classmethod
    def from_url(
        cls,
        url: str,
        prefix: str = RATE_LIMIT_PREFIX,
    ) -> RedisRateLimitStore:
        from redis.asyncio import from_url

        return cls(from_url(url), prefix=prefix)

    @property
    def prefix(self) -> str:
        return self._prefix

    async def increment(self, key: str, window_ms: int) -> RateLimitWindowEntry:
        full_key = self._prefix + key
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.pttl(full_key)
            count, ttl = await pipe.execute()

        ttl = int(ttl)
        if ttl < 0:
            # first hit in the window: counter exists but has no expiry yet
            await self._client.pexpire(full_key, window_ms)
            ttl = window_ms

        return RateLimitWindowEntry(
            count=int(count),
            reset_at_ms=self._clock() + ttl,
        )

    async def close(self) -> None:
        await self._client.aclose()
