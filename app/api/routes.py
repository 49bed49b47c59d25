from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Request

from app import __version__
from app.api.schemas import (
    ChargeRequest,
    CostBreakdownResponse,
    EndpointCostEntry,
    EndpointsResponse,
    EstimateRequest,
    GateRequest,
    GateResponse,
    HealthResponse,
    TierLimitsEntry,
    TierSummary,
    TiersResponse,
    WorkflowChargeRequest,
    WorkflowEstimateRequest,
    WorkflowEstimateResponse,
)
from app.engine import (
    CostBreakdown,
    CostModel,
    InsufficientCredits,
    check_credit_gate,
    free_executions_remaining,
    is_execution_free,
)
from app.pricing.repository import CostTableRepository
from app.pricing.tiers import (
    FREE_EXECUTIONS_PER_TIER,
    ML_TIER_MULTIPLIERS,
    TIER_RATE_LIMITS,
    WORKFLOW_TIER_MULTIPLIERS,
    SubscriptionTier,
)
from app.ratelimit.dependencies import (
    rate_limit_general,
    rate_limit_generation,
    resolve_subscriber,
)
from app.ratelimit.limiter import TieredRateLimiter

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1")


def _get_repository(request: Request) -> CostTableRepository:
    return request.app.state.repository


def _get_cost_model(request: Request) -> CostModel:
    return request.app.state.cost_model


def _get_limiter(request: Request) -> TieredRateLimiter:
    return request.app.state.rate_limiter


def _effective_tier(request: Request, requested: str | None) -> str | None:
    if requested:
        return requested
    return resolve_subscriber(request).raw_tier


def _to_response(cost: CostBreakdown) -> CostBreakdownResponse:
    return CostBreakdownResponse(**cost.to_dict())


@router.post(
    "/estimate",
    response_model=CostBreakdownResponse,
    dependencies=[Depends(rate_limit_general)],
)
def estimate(payload: EstimateRequest, request: Request) -> CostBreakdownResponse:
    """Pre-flight credit estimate for an operation."""
    tier = _effective_tier(request, payload.tier)
    cost = _get_cost_model(request).estimate_cost(
        payload.operation_id, tier, payload.payload_hints
    )
    logger.info(
        "estimate_requested",
        extra={
            "event": "estimate_requested",
            "operation_id": payload.operation_id,
            "tier": cost.tier,
            "total_cost": cost.total_cost,
        },
    )
    return _to_response(cost)


@router.post(
    "/charge",
    response_model=CostBreakdownResponse,
    dependencies=[Depends(rate_limit_general)],
)
def charge(payload: ChargeRequest, request: Request) -> CostBreakdownResponse:
    """Final charge for a completed operation; the caller records the debit."""
    tier = _effective_tier(request, payload.tier)
    cost = _get_cost_model(request).calculate_actual_cost(
        payload.operation_id,
        tier,
        payload.duration_ms,
        payload.status_code,
        payload.payload_hints,
    )
    logger.info(
        "charge_calculated",
        extra={
            "event": "charge_calculated",
            "operation_id": payload.operation_id,
            "tier": cost.tier,
            "status_code": payload.status_code,
            "total_cost": cost.total_cost,
        },
    )
    return _to_response(cost)


@router.post(
    "/gate",
    response_model=GateResponse,
    dependencies=[Depends(rate_limit_general)],
)
def gate(payload: GateRequest, request: Request) -> GateResponse:
    """Decide whether the caller's balance covers the estimated cost."""
    tier = _effective_tier(request, payload.tier)
    decision = check_credit_gate(
        payload.operation_id,
        tier,
        payload.current_balance,
        payload.payload_hints,
        byok=payload.byok,
        model=_get_cost_model(request),
    )
    if not decision.can_afford:
        raise InsufficientCredits(
            required=decision.required,
            available=decision.remaining,
            breakdown=decision.breakdown,
            tier=decision.tier,
        )

    body = decision.to_dict()
    return GateResponse(success=True, **body)


@router.post(
    "/workflows/charge",
    response_model=CostBreakdownResponse,
    dependencies=[Depends(rate_limit_generation)],
)
def charge_workflow(
    payload: WorkflowChargeRequest, request: Request
) -> CostBreakdownResponse:
    """Charge a finished workflow run."""
    tier = _effective_tier(request, payload.tier)
    cost = _get_cost_model(request).calculate_workflow_cost(
        payload.duration_ms,
        payload.nodes_executed,
        payload.premium_nodes_used,
        tier,
        status_code=payload.status_code,
    )
    logger.info(
        "workflow_charge_calculated",
        extra={
            "event": "workflow_charge_calculated",
            "tier": cost.tier,
            "status_code": payload.status_code,
            "total_cost": cost.total_cost,
        },
    )
    return _to_response(cost)


@router.post(
    "/workflows/estimate",
    response_model=WorkflowEstimateResponse,
    dependencies=[Depends(rate_limit_generation)],
)
def estimate_workflow(
    payload: WorkflowEstimateRequest, request: Request
) -> WorkflowEstimateResponse:
    """Estimate a credit range for a flow before it runs."""
    model = _get_cost_model(request)
    tier = _effective_tier(request, payload.tier)
    node_types = [node.type for node in payload.nodes]
    estimate = model.estimate_workflow_cost(
        len(node_types), node_types, tier, payload.credits_remaining
    )
    return WorkflowEstimateResponse(
        estimated_min_cost=estimate.estimated_min_cost,
        estimated_max_cost=estimate.estimated_max_cost,
        breakdown=estimate.breakdown,
        can_afford=estimate.can_afford,
        credits_remaining=estimate.credits_remaining,
        premium_nodes=list(estimate.premium_nodes),
        free_executions_remaining=free_executions_remaining(
            tier, payload.executions_today
        ),
        is_free=is_execution_free(tier, payload.executions_today),
    )


@router.get("/tiers", response_model=TiersResponse)
def list_tiers(request: Request) -> TiersResponse:
    """Expose multipliers and rate limits for every subscription tier."""
    limiter = _get_limiter(request)
    tiers = [
        TierSummary(
            tier=tier.value,
            ml_multiplier=ML_TIER_MULTIPLIERS[tier],
            workflow_multiplier=WORKFLOW_TIER_MULTIPLIERS[tier],
            free_executions_per_day=FREE_EXECUTIONS_PER_TIER[tier],
            rate_limits=TierLimitsEntry.from_limits(asdict(TIER_RATE_LIMITS[tier])),
        )
        for tier in SubscriptionTier
    ]
    return TiersResponse(window_seconds=limiter.window_ms // 1000, tiers=tiers)


@router.get("/endpoints", response_model=EndpointsResponse)
def list_endpoints(request: Request) -> EndpointsResponse:
    """List the ML endpoint cost table."""
    repository = _get_repository(request)
    model = _get_cost_model(request)
    endpoints = [
        EndpointCostEntry(
            operation_id=operation_id,
            **repository.serialize_endpoint(config),
        )
        for operation_id, config in sorted(model.list_endpoint_costs().items())
    ]
    return EndpointsResponse(
        table_version=repository.table_version, endpoints=endpoints
    )


@router.get("/healthz", response_model=HealthResponse, include_in_schema=False)
def healthz(request: Request) -> HealthResponse:
    """Liveness and readiness check; returns 200 when the app is ready."""
    repository = _get_repository(request)
    store = _get_limiter(request).store
    return HealthResponse(
        status="ok",
        table_version=repository.table_version,
        published_at=repository.meta.published_at,
        endpoint_count=len(repository.endpoints),
        version=__version__,
        rate_limit_store=type(store).__name__,
    )
