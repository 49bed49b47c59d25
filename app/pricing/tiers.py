"""Subscription tiers and the per-tier tables that price and throttle them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TypeVar

from app.constants import NO_LIMIT

T = TypeVar("T")


class SubscriptionTier(str, Enum):
    FREE = "free"
    MAKER = "maker"
    PRO = "pro"
    AGENCY = "agency"
    ENTERPRISE = "enterprise"
    LIFETIME = "lifetime"
    UNLIMITED = "unlimited"
    ADMIN = "admin"


def parse_tier(raw: SubscriptionTier | str | None) -> SubscriptionTier | None:
    """Resolve a stored tier string, returning ``None`` when unrecognised."""
    if isinstance(raw, SubscriptionTier):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        return SubscriptionTier(raw.strip().lower())
    except ValueError:
        return None


def tier_label(raw: SubscriptionTier | str | None) -> str:
    tier = parse_tier(raw)
    if tier is not None:
        return tier.value
    if isinstance(raw, str) and raw.strip():
        return raw.strip().lower()
    return "unknown"


def build_tier_table(
    values: Mapping[SubscriptionTier, T],
    name: str,
) -> Mapping[SubscriptionTier, T]:
    """Freeze a per-tier table, refusing tables that skip a tier.

    Every table is built at import time, so a tier added to
    ``SubscriptionTier`` without a row in each table fails on first import
    instead of silently pricing or throttling with a fallback.
    """
    missing = [tier.value for tier in SubscriptionTier if tier not in values]
    if missing:
        raise ValueError(f"Tier table '{name}' is missing tiers: {missing}")

    extra = [key for key in values if not isinstance(key, SubscriptionTier)]
    if extra:
        raise ValueError(f"Tier table '{name}' has unknown keys: {extra}")

    return MappingProxyType(dict(values))


ML_TIER_MULTIPLIERS = build_tier_table(
    {
        SubscriptionTier.FREE: 2.0,
        SubscriptionTier.MAKER: 1.5,
        SubscriptionTier.PRO: 1.0,
        SubscriptionTier.AGENCY: 0.5,
        SubscriptionTier.ENTERPRISE: 0.5,
        SubscriptionTier.LIFETIME: 0.75,
        SubscriptionTier.UNLIMITED: 0.0,
        SubscriptionTier.ADMIN: 0.0,
    },
    "ml_tier_multipliers",
)

WORKFLOW_TIER_MULTIPLIERS = build_tier_table(
    {
        SubscriptionTier.FREE: 2.0,
        SubscriptionTier.MAKER: 1.5,
        SubscriptionTier.PRO: 1.0,
        SubscriptionTier.AGENCY: 0.75,
        SubscriptionTier.ENTERPRISE: 0.5,
        SubscriptionTier.LIFETIME: 0.8,
        SubscriptionTier.UNLIMITED: 0.5,
        SubscriptionTier.ADMIN: 0.0,
    },
    "workflow_tier_multipliers",
)

# executions per day that are not charged
FREE_EXECUTIONS_PER_TIER = build_tier_table(
    {
        SubscriptionTier.FREE: 0,
        SubscriptionTier.MAKER: 5,
        SubscriptionTier.PRO: 20,
        SubscriptionTier.AGENCY: 100,
        SubscriptionTier.ENTERPRISE: 500,
        SubscriptionTier.LIFETIME: 30,
        SubscriptionTier.UNLIMITED: 999_999,
        SubscriptionTier.ADMIN: 999_999,
    },
    "free_executions_per_tier",
)


@dataclass(frozen=True)
class TierLimits:
    """Requests allowed per rate-limit window, by limit class."""

    general: int
    generation: int
    upload: int
    auth: int

    def __post_init__(self) -> None:
        for field_name in ("general", "generation", "upload", "auth"):
            if getattr(self, field_name) <= 0:
                raise ValueError(f"{field_name} limit must be > 0")

    def limit_for(self, limit_class: str) -> int:
        """Return the limit for a limit class name."""
        if limit_class not in {"general", "generation", "upload", "auth"}:
            raise ValueError(f"Unknown limit class '{limit_class}'")
        return getattr(self, limit_class)

    @property
    def unlimited(self) -> bool:
        return self.general >= NO_LIMIT


_FREE_LIMITS = TierLimits(general=10, generation=3, upload=5, auth=5)
_MAKER_LIMITS = TierLimits(general=30, generation=15, upload=10, auth=10)
_PRO_LIMITS = TierLimits(general=60, generation=30, upload=20, auth=15)
_AGENCY_LIMITS = TierLimits(general=100, generation=60, upload=40, auth=20)
_NO_LIMITS = TierLimits(
    general=NO_LIMIT, generation=NO_LIMIT, upload=NO_LIMIT, auth=NO_LIMIT
)

TIER_RATE_LIMITS = build_tier_table(
    {
        SubscriptionTier.FREE: _FREE_LIMITS,
        SubscriptionTier.MAKER: _MAKER_LIMITS,
        SubscriptionTier.PRO: _PRO_LIMITS,
        SubscriptionTier.AGENCY: _AGENCY_LIMITS,
        SubscriptionTier.ENTERPRISE: _AGENCY_LIMITS,
        SubscriptionTier.LIFETIME: _PRO_LIMITS,
        SubscriptionTier.UNLIMITED: _AGENCY_LIMITS,
        SubscriptionTier.ADMIN: _NO_LIMITS,
    },
    "tier_rate_limits",
)


def get_tier_limits(raw: SubscriptionTier | str | None) -> TierLimits:
    """Return rate limits for a tier; unknown tiers get the free limits."""
    tier = parse_tier(raw)
    if tier is None:
        tier = SubscriptionTier.FREE
    return TIER_RATE_LIMITS[tier]
