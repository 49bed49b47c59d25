"""Credit ledger gate.

Combines a cost estimate with a balance the caller already read from its
ledger. Debiting that balance is left to the caller's own transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.engine.calculator import (
    CostBreakdown,
    CostModel,
    PayloadHints,
    TierInput,
    default_cost_model,
    non_negative,
)
from app.pricing.tiers import tier_label

BYOK_BREAKDOWN = "Bring your own key - billed by your provider | Total: 0 credits"


@dataclass(frozen=True)
class GateDecision:
    can_afford: bool
    required: int
    remaining: int
    deficit: int
    breakdown: str
    tier: str
    cost: CostBreakdown | None = None
    byok: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_afford": self.can_afford,
            "required": self.required,
            "remaining": self.remaining,
            "deficit": self.deficit,
            "breakdown": self.breakdown,
            "tier": self.tier,
            "byok": self.byok,
            "cost": self.cost.to_dict() if self.cost else None,
        }


def check_credit_gate(
    operation_id: str,
    tier: TierInput,
    current_balance: int,
    payload_hints: PayloadHints | None = None,
    *,
    byok: bool = False,
    model: CostModel | None = None,
) -> GateDecision:
    remaining = int(non_negative(current_balance))
    if byok:
        return GateDecision(
            can_afford=True,
            required=0,
            remaining=remaining,
            deficit=0,
            breakdown=BYOK_BREAKDOWN,
            tier=tier_label(tier),
            byok=True,
        )

    cost_model = model or default_cost_model()
    estimate = cost_model.estimate_cost(operation_id, tier, payload_hints)
    return GateDecision(
        can_afford=remaining >= estimate.total_cost,
        required=estimate.total_cost,
        remaining=remaining,
        deficit=max(0, estimate.total_cost - remaining),
        breakdown=estimate.human_readable_breakdown,
        tier=estimate.tier,
        cost=estimate,
    )
