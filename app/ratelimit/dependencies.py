from __future__ import annotations

import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request, Response

from app.engine.exceptions import RateLimitExceeded
from app.pricing.tiers import SubscriptionTier, parse_tier
from app.ratelimit.limiter import LimitClass, RateLimitDecision, TieredRateLimiter

USER_ID_HEADER = "X-User-Id"
TIER_HEADER = "X-Subscription-Tier"


@dataclass(frozen=True)
class Subscriber:
    identifier: str
    tier: SubscriptionTier | None
    raw_tier: str | None = None
    user_id: str | None = None
    client_ip: str | None = None


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def resolve_subscriber(request: Request) -> Subscriber:
    """Identify the caller from upstream auth state or trusted gateway headers.

    Identity headers are ignored unless the app opted in to trusting them,
    so an unauthenticated caller is keyed by IP on the free tier.
    """
    subscriber = getattr(request.state, "subscriber", None)
    if isinstance(subscriber, Subscriber):
        return subscriber

    client_ip = _client_ip(request)
    user_id: str | None = None
    raw_tier: str | None = None
    if getattr(request.app.state, "trust_gateway_headers", False):
        user_id = request.headers.get(USER_ID_HEADER) or None
        raw_tier = request.headers.get(TIER_HEADER) or None
    return Subscriber(
        identifier=user_id or client_ip or "anonymous",
        tier=parse_tier(raw_tier),
        raw_tier=raw_tier,
        user_id=user_id,
        client_ip=client_ip,
    )


def get_rate_limiter(request: Request) -> TieredRateLimiter:
    return request.app.state.rate_limiter


def rate_limit_headers(
    decision: RateLimitDecision,
    limiter: TieredRateLimiter,
) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at_ms / 1000)),
        "X-RateLimit-Policy": limiter.policy(decision.limit),
    }


def rate_limit(
    limit_class: LimitClass | str = LimitClass.GENERAL,
    *,
    enable_headers: bool | None = None,
) -> Callable[[Request, Response], Awaitable[RateLimitDecision]]:
    """Build a route dependency that enforces the caller's tier limit."""
    resolved_class = LimitClass(limit_class)

    async def dependency(request: Request, response: Response) -> RateLimitDecision:
        limiter = get_rate_limiter(request)
        subscriber = resolve_subscriber(request)
        decision = await limiter.check_and_increment(
            subscriber.identifier,
            resolved_class,
            subscriber.tier,
            client_ip=subscriber.client_ip,
        )

        send_headers = enable_headers
        if send_headers is None:
            send_headers = getattr(request.app.state, "rate_limit_headers", True)
        headers = rate_limit_headers(decision, limiter) if send_headers else {}

        if not decision.allowed:
            retry_after = decision.retry_after_seconds(limiter.now_ms())
            headers["Retry-After"] = str(retry_after)
            raise RateLimitExceeded(
                limit=decision.limit,
                limit_class=decision.limit_class,
                retry_after=retry_after,
                headers=headers,
            )

        response.headers.update(headers)
        return decision

    return dependency


rate_limit_general = rate_limit(LimitClass.GENERAL)
rate_limit_generation = rate_limit(LimitClass.GENERATION)
rate_limit_upload = rate_limit(LimitClass.UPLOAD)
rate_limit_auth = rate_limit(LimitClass.AUTH)
