"""Tiered fixed-window rate limiting."""

from app.ratelimit.limiter import LimitClass, RateLimitDecision, TieredRateLimiter
from app.ratelimit.store import (
    MemoryRateLimitStore,
    RateLimitStore,
    RateLimitWindowEntry,
    RedisRateLimitStore,
)

__all__ = [
    "LimitClass",
    "MemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimitStore",
    "RateLimitWindowEntry",
    "RedisRateLimitStore",
    "TieredRateLimiter",
]
