from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from app.constants import RATE_LIMIT_WINDOW_MS
from app.engine.exceptions import RateLimitStoreError
from app.pricing.tiers import SubscriptionTier, get_tier_limits
from app.ratelimit.store import Clock, RateLimitStore, now_ms

logger = logging.getLogger(__name__)


class LimitClass(str, Enum):
    GENERAL = "general"
    GENERATION = "generation"
    UPLOAD = "upload"
    AUTH = "auth"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at_ms: int
    limit: int
    limit_class: str

    def retry_after_seconds(self, at_ms: int) -> int:
        """Whole seconds until the window resets, never negative."""
        return max(0, math.ceil((self.reset_at_ms - at_ms) / 1000))


class TieredRateLimiter:
    """Fixed-window request caps per (limit class, identifier).

    The counter is incremented before it is compared, so the request that
    first crosses the limit is itself counted and rejected. Bursts of up to
    twice the limit across a window boundary are an accepted trade-off of
    fixed windows.
    """

    def __init__(
        self,
        store: RateLimitStore,
        *,
        allow_list: Iterable[str] = (),
        skip_on_error: bool = False,
        window_ms: int = RATE_LIMIT_WINDOW_MS,
        clock: Clock = now_ms,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        self._store = store
        self._allow_list = frozenset(allow_list)
        self._skip_on_error = skip_on_error
        self._window_ms = window_ms
        self._clock = clock

    @property
    def store(self) -> RateLimitStore:
        return self._store

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def skip_on_error(self) -> bool:
        return self._skip_on_error

    def now_ms(self) -> int:
        return self._clock()

    def policy(self, limit: int) -> str:
        """Value for the ``X-RateLimit-Policy`` header."""
        return f"{limit};w={self._window_ms // 1000}"

    def is_allow_listed(self, *candidates: str | None) -> bool:
        return any(item in self._allow_list for item in candidates if item)

    async def check_and_increment(
        self,
        identifier: str,
        limit_class: LimitClass | str,
        tier: SubscriptionTier | str | None,
        *,
        client_ip: str | None = None,
    ) -> RateLimitDecision:
        """Count one request and decide whether it may proceed."""
        class_name = LimitClass(limit_class).value
        limit = get_tier_limits(tier).limit_for(class_name)

        if self.is_allow_listed(identifier, client_ip):
            return RateLimitDecision(
                allowed=True,
                remaining=limit,
                reset_at_ms=self._clock() + self._window_ms,
                limit=limit,
                limit_class=class_name,
            )

        key = f"{class_name}:{identifier}"
        try:
            entry = await self._store.increment(key, self._window_ms)
        except Exception as exc:
            logger.error(
                "rate_limit_store_error",
                exc_info=exc,
                extra={
                    "event": "rate_limit_store_error",
                    "limit_class": class_name,
                    "identifier": identifier,
                },
            )
            if self._skip_on_error:
                return RateLimitDecision(
                    allowed=True,
                    remaining=limit,
                    reset_at_ms=self._clock() + self._window_ms,
                    limit=limit,
                    limit_class=class_name,
                )
            raise RateLimitStoreError(key, exc) from exc

        allowed = entry.count <= limit
        if not allowed:
            logger.info(
                "rate_limit_exceeded",
                extra={
                    "event": "rate_limit_exceeded",
                    "limit_class": class_name,
                    "identifier": identifier,
                    "tier": getattr(tier, "value", tier),
                },
            )

        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, limit - entry.count),
            reset_at_ms=entry.reset_at_ms,
            limit=limit,
            limit_class=class_name,
        )
