from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.constants import NO_LIMIT


class EstimateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operation_id: str = Field(min_length=1, max_length=512)
    # falls back to the caller's subscription tier when omitted
    tier: str | None = None
    payload_hints: dict[str, Any] | None = None


class ChargeRequest(EstimateRequest):
    duration_ms: float = Field(ge=0)
    status_code: int = Field(ge=100, le=599)


class GateRequest(EstimateRequest):
    current_balance: int
    byok: bool = False


class WorkflowChargeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    duration_ms: float = Field(ge=0)
    nodes_executed: int = Field(ge=0)
    premium_nodes_used: list[str] = Field(default_factory=list)
    status_code: int = Field(default=200, ge=100, le=599)
    tier: str | None = None


class WorkflowNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(min_length=1)


class WorkflowEstimateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nodes: list[WorkflowNode]
    credits_remaining: int
    executions_today: int = Field(default=0, ge=0)
    tier: str | None = None


class CostBreakdownResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operation_id: str
    tier: str
    strategy: str
    base_cost: float
    item_cost: float | None
    token_cost: float | None
    duration_cost: int
    complexity_cost: int
    premium_surcharge_cost: int
    tier_multiplier: float
    raw_total: float | None
    total_cost: int
    was_capped: bool
    is_premium: bool
    human_readable_breakdown: str
    failed: bool
    premium_components: list[str]


class GateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    can_afford: bool
    required: int
    remaining: int
    deficit: int
    breakdown: str
    tier: str
    byok: bool
    cost: CostBreakdownResponse | None = None


class WorkflowEstimateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    estimated_min_cost: int
    estimated_max_cost: int
    breakdown: str
    can_afford: bool
    credits_remaining: int
    premium_nodes: list[str]
    free_executions_remaining: int
    is_free: bool


class TierLimitsEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    general: int | None
    generation: int | None
    upload: int | None
    auth: int | None

    @classmethod
    def from_limits(cls, values: dict[str, int]) -> "TierLimitsEntry":
        """Render the no-limit sentinel as ``null``."""
        return cls(
            **{
                key: (None if value >= NO_LIMIT else value)
                for key, value in values.items()
            }
        )


class TierSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tier: str
    ml_multiplier: float
    workflow_multiplier: float
    free_executions_per_day: int
    rate_limits: TierLimitsEntry


class TiersResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    window_seconds: int
    tiers: list[TierSummary]


class EndpointCostEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operation_id: str
    base: float
    premium: bool
    per_item: float | None = None
    per_token: float | None = None


class EndpointsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    table_version: str
    endpoints: list[EndpointCostEntry]


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str
    table_version: str
    published_at: str
    endpoint_count: int
    version: str
    rate_limit_store: str
