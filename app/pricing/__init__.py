"""Pricing tables: tiers, endpoint costs and premium component surcharges."""

from app.pricing.lookup import EndpointCostTable, normalize_operation_id
from app.pricing.models import (
    DEFAULT_ENDPOINT_COST,
    EndpointCostConfig,
    ResolvedEndpoint,
)
from app.pricing.repository import CostTableError, CostTableRepository
from app.pricing.tiers import (
    SubscriptionTier,
    TierLimits,
    get_tier_limits,
    parse_tier,
)

__all__ = [
    "DEFAULT_ENDPOINT_COST",
    "CostTableError",
    "CostTableRepository",
    "EndpointCostConfig",
    "EndpointCostTable",
    "ResolvedEndpoint",
    "SubscriptionTier",
    "TierLimits",
    "get_tier_limits",
    "normalize_operation_id",
    "parse_tier",
]
