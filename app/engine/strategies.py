"""Named pricing strategies.

ML service calls and workflow executions are priced by the same function
but with their own multiplier tables and surcharge rules. The two product
lines are kept apart on purpose, so changing one never reprices the other.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from app.constants import (
    COMPLEXITY_INTERVAL_NODES,
    DURATION_INTERVAL_MS,
    MAX_COST_CAP,
)
from app.pricing.tiers import (
    ML_TIER_MULTIPLIERS,
    WORKFLOW_TIER_MULTIPLIERS,
    SubscriptionTier,
    parse_tier,
)

UNKNOWN_TIER_MULTIPLIER = 1.0


@dataclass(frozen=True)
class PricingStrategy:
    name: str
    multipliers: Mapping[SubscriptionTier, float]
    max_cost_cap: int = MAX_COST_CAP
    duration_interval_ms: int = DURATION_INTERVAL_MS
    # None disables the per-node complexity surcharge
    complexity_interval_nodes: int | None = None

    def multiplier_for(self, tier: SubscriptionTier | str | None) -> float:
        resolved = parse_tier(tier)
        if resolved is None:
            return UNKNOWN_TIER_MULTIPLIER
        return self.multipliers[resolved]

    def duration_cost(self, duration_ms: float) -> int:
        """One credit per full duration interval."""
        return int(duration_ms // self.duration_interval_ms)

    def complexity_cost(self, nodes_executed: float) -> int:
        """One credit per full block of executed nodes."""
        if self.complexity_interval_nodes is None:
            return 0
        return int(nodes_executed // self.complexity_interval_nodes)


ML_REQUEST_PRICING = PricingStrategy(
    name="ml_request",
    multipliers=ML_TIER_MULTIPLIERS,
)

WORKFLOW_PRICING = PricingStrategy(
    name="workflow",
    multipliers=WORKFLOW_TIER_MULTIPLIERS,
    complexity_interval_nodes=COMPLEXITY_INTERVAL_NODES,
)
