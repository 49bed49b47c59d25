"""Engine package exports."""

from app.engine.calculator import (
    Affordability,
    CostBreakdown,
    CostModel,
    CreditSufficiency,
    WorkflowCostEstimate,
    calculate_actual_cost,
    can_afford,
    check_credit_sufficiency,
    default_cost_model,
    estimate_cost,
    free_executions_remaining,
    get_tier_multiplier,
    is_execution_free,
    price,
)
from app.engine.exceptions import (
    InsufficientCredits,
    MeteringError,
    RateLimitExceeded,
    RateLimitStoreError,
)
from app.engine.gate import GateDecision, check_credit_gate
from app.engine.strategies import (
    ML_REQUEST_PRICING,
    WORKFLOW_PRICING,
    PricingStrategy,
)

__all__ = [
    "ML_REQUEST_PRICING",
    "WORKFLOW_PRICING",
    "Affordability",
    "CostBreakdown",
    "CostModel",
    "CreditSufficiency",
    "GateDecision",
    "InsufficientCredits",
    "MeteringError",
    "PricingStrategy",
    "RateLimitExceeded",
    "RateLimitStoreError",
    "WorkflowCostEstimate",
    "calculate_actual_cost",
    "can_afford",
    "check_credit_gate",
    "check_credit_sufficiency",
    "default_cost_model",
    "estimate_cost",
    "free_executions_remaining",
    "get_tier_multiplier",
    "is_execution_free",
    "price",
]
