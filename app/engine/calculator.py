from __future__ import annotations

import math
import sys
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Any

from app.constants import (
    BATCH_PAYLOAD_FIELDS,
    WORKFLOW_BASE_COST,
    WORKFLOW_MAX_DURATION_MS,
    WORKFLOW_MIN_DURATION_MS,
    WORKFLOW_MIN_NODE_SHARE,
    WORKFLOW_MIN_PREMIUM_SHARE,
)
from app.engine.strategies import (
    ML_REQUEST_PRICING,
    WORKFLOW_PRICING,
    PricingStrategy,
)
from app.pricing.lookup import EndpointCostTable
from app.pricing.models import EndpointCostConfig
from app.pricing.repository import CostTableRepository
from app.pricing.tiers import (
    FREE_EXECUTIONS_PER_TIER,
    SubscriptionTier,
    parse_tier,
    tier_label,
)

PayloadHints = Mapping[str, Any]
TierInput = SubscriptionTier | str | None

FAILED_BREAKDOWN = "Failed request - no charge"
# float noise guard before ceiling, e.g. 5 + 10 * 0.1
_ROUNDING_DIGITS = 9


@dataclass(frozen=True)
class CostBreakdown:
    operation_id: str
    tier: str
    strategy: str
    base_cost: float
    item_cost: float
    token_cost: float
    duration_cost: int
    complexity_cost: int
    premium_surcharge_cost: int
    tier_multiplier: float
    raw_total: float
    total_cost: int
    was_capped: bool
    is_premium: bool
    human_readable_breakdown: str
    failed: bool = False
    premium_components: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["premium_components"] = list(self.premium_components)
        for key in ("item_cost", "token_cost", "raw_total"):
            # JSON has no infinity; overflowed amounts are reported as null
            if not math.isfinite(payload[key]):
                payload[key] = None
        return payload


@dataclass(frozen=True)
class Affordability:
    can_afford: bool
    required: int
    remaining: int
    deficit: int


@dataclass(frozen=True)
class WorkflowCostEstimate:
    estimated_min_cost: int
    estimated_max_cost: int
    breakdown: str
    can_afford: bool
    credits_remaining: int
    premium_nodes: tuple[str, ...]


@dataclass(frozen=True)
class CreditSufficiency:
    can_execute: bool
    credits_needed: int
    shortfall: int


def non_negative(value: Any) -> float:
    """Clamp malformed, negative or non-finite numeric input to zero."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    except OverflowError:
        # ints beyond float range: huge positives still hit the cap
        return sys.float_info.max if value > 0 else 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _surcharge(value: float) -> float:
    # an overflowed per-unit surcharge must still be billed, at the cap
    if value == math.inf:
        return value
    return non_negative(value)


def _is_failure(status_code: Any) -> bool:
    # an unreadable status is treated as failed: never bill unconfirmed work
    if isinstance(status_code, bool):
        return True
    try:
        return int(status_code) >= 400
    except (TypeError, ValueError, OverflowError):
        return True


def item_count_from_hints(hints: PayloadHints | None) -> int:
    """Derive a batch size from explicit hints or known batch payload fields."""
    if not isinstance(hints, Mapping):
        return 1

    explicit = hints.get("item_count")
    if explicit is not None:
        return max(1, int(non_negative(explicit)))

    for field_name in BATCH_PAYLOAD_FIELDS:
        value = hints.get(field_name)
        if isinstance(value, (list, tuple)):
            return max(1, len(value))
    return 1


def token_count_from_hints(hints: PayloadHints | None) -> int:
    if not isinstance(hints, Mapping):
        return 0
    return int(non_negative(hints.get("token_count")))


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.4f}".rstrip("0").rstrip(".")


def _credits(value: float) -> str:
    return "credit" if value == 1 else "credits"


def _ceil_share(count: int, share: float) -> int:
    return math.ceil(round(count * share, _ROUNDING_DIGITS))


def price(
    strategy: PricingStrategy,
    *,
    operation_id: str,
    tier: TierInput,
    base_cost: float,
    is_premium: bool = False,
    item_count: int = 1,
    item_cost: float = 0.0,
    token_count: int = 0,
    token_cost: float = 0.0,
    duration_ms: float = 0.0,
    nodes_executed: int = 0,
    premium_components: tuple[str, ...] = (),
    premium_surcharge: float = 0,
) -> CostBreakdown:
    """Price one operation: sum surcharges, apply multiplier, ceil, then cap.

    Estimates and final charges both go through here; only the input
    signals differ.
    """
    base = non_negative(base_cost)
    items = _surcharge(item_cost)
    tokens = _surcharge(token_cost)
    duration = non_negative(duration_ms)
    nodes = int(non_negative(nodes_executed))

    duration_cost = strategy.duration_cost(duration)
    complexity_cost = strategy.complexity_cost(nodes)
    premium_cost = int(non_negative(premium_surcharge))
    multiplier = strategy.multiplier_for(tier)

    raw_sum = base + items + tokens + duration_cost + complexity_cost + premium_cost
    raw_total = raw_sum * multiplier if multiplier else 0.0
    if math.isfinite(raw_total):
        rounded = math.ceil(round(raw_total, _ROUNDING_DIGITS))
    else:
        # surcharges overflowed float range
        rounded = strategy.max_cost_cap + 1
    total_cost = min(rounded, strategy.max_cost_cap)
    was_capped = rounded > strategy.max_cost_cap

    label = tier_label(tier)
    parts = [f"Base: {_format_number(base)} {_credits(base)}"]
    if items > 0:
        parts.append(f"Batch items ({item_count}): +{_format_number(items)}")
    if tokens > 0:
        parts.append(f"Tokens ({token_count}): +{_format_number(tokens)}")
    if is_premium:
        parts.append("Premium endpoint")
    if duration_cost > 0:
        seconds = int(duration // 1000)
        parts.append(
            f"Duration ({seconds}s): +{duration_cost} {_credits(duration_cost)}"
        )
    if complexity_cost > 0:
        parts.append(f"Complexity ({nodes} nodes): +{complexity_cost}")
    if premium_cost > 0:
        parts.append(
            f"Premium nodes ({len(premium_components)}): +{premium_cost}"
        )
    parts.append(f"{label} tier: {float(multiplier)!r}x multiplier")
    if was_capped:
        parts.append(f"Capped at {strategy.max_cost_cap} credits")
    parts.append(f"Total: {total_cost} {_credits(total_cost)}")

    return CostBreakdown(
        operation_id=operation_id,
        tier=label,
        strategy=strategy.name,
        base_cost=base,
        item_cost=items,
        token_cost=tokens,
        duration_cost=duration_cost,
        complexity_cost=complexity_cost,
        premium_surcharge_cost=premium_cost,
        tier_multiplier=multiplier,
        raw_total=raw_total,
        total_cost=total_cost,
        was_capped=was_capped,
        is_premium=is_premium,
        human_readable_breakdown=" | ".join(parts),
        premium_components=premium_components,
    )


def _failed_breakdown(
    strategy: PricingStrategy,
    operation_id: str,
    tier: TierInput,
) -> CostBreakdown:
    return CostBreakdown(
        operation_id=operation_id,
        tier=tier_label(tier),
        strategy=strategy.name,
        base_cost=0.0,
        item_cost=0.0,
        token_cost=0.0,
        duration_cost=0,
        complexity_cost=0,
        premium_surcharge_cost=0,
        tier_multiplier=1.0,
        raw_total=0.0,
        total_cost=0,
        was_capped=False,
        is_premium=False,
        human_readable_breakdown=FAILED_BREAKDOWN,
        failed=True,
    )


class CostModel:
    def __init__(
        self,
        endpoints: EndpointCostTable,
        premium_components: Mapping[str, int],
        *,
        ml_strategy: PricingStrategy = ML_REQUEST_PRICING,
        workflow_strategy: PricingStrategy = WORKFLOW_PRICING,
    ) -> None:
        """Build a pure cost model over static, pre-validated tables."""
        self._endpoints = endpoints
        self._premium_components = premium_components
        self._ml_strategy = ml_strategy
        self._workflow_strategy = workflow_strategy

    @classmethod
    def from_repository(cls, repository: CostTableRepository) -> CostModel:
        return cls(repository.endpoints, repository.premium_components)

    @property
    def endpoints(self) -> EndpointCostTable:
        return self._endpoints

    @property
    def premium_components(self) -> Mapping[str, int]:
        return self._premium_components

    @property
    def ml_strategy(self) -> PricingStrategy:
        return self._ml_strategy

    @property
    def workflow_strategy(self) -> PricingStrategy:
        return self._workflow_strategy

    # ------------------------------------------------------------------
    # ML endpoint pricing
    # ------------------------------------------------------------------

    def estimate_cost(
        self,
        operation_id: str,
        tier: TierInput,
        payload_hints: PayloadHints | None = None,
    ) -> CostBreakdown:
        """Pre-flight estimate for an endpoint call."""
        return self._price_endpoint(operation_id, tier, payload_hints, 0.0)

    def calculate_actual_cost(
        self,
        operation_id: str,
        tier: TierInput,
        duration_ms: float,
        status_code: int,
        payload_hints: PayloadHints | None = None,
    ) -> CostBreakdown:
        """Final charge after execution; failed calls are never billed."""
        if _is_failure(status_code):
            return _failed_breakdown(self._ml_strategy, operation_id, tier)
        return self._price_endpoint(
            operation_id, tier, payload_hints, duration_ms
        )

    def can_afford(
        self,
        operation_id: str,
        tier: TierInput,
        credits_remaining: int,
        payload_hints: PayloadHints | None = None,
    ) -> Affordability:
        estimate = self.estimate_cost(operation_id, tier, payload_hints)
        remaining = int(non_negative(credits_remaining))
        return Affordability(
            can_afford=remaining >= estimate.total_cost,
            required=estimate.total_cost,
            remaining=remaining,
            deficit=max(0, estimate.total_cost - remaining),
        )

    def resolve_endpoint(self, operation_id: str) -> EndpointCostConfig:
        return self._endpoints.resolve(operation_id).config

    def is_premium_endpoint(self, operation_id: str) -> bool:
        return self.resolve_endpoint(operation_id).is_premium

    def list_endpoint_costs(self) -> dict[str, EndpointCostConfig]:
        """Return a copy of the endpoint cost table."""
        return self._endpoints.as_dict()

    def _price_endpoint(
        self,
        operation_id: str,
        tier: TierInput,
        payload_hints: PayloadHints | None,
        duration_ms: float,
    ) -> CostBreakdown:
        config = self._endpoints.resolve(operation_id).config

        item_count = item_count_from_hints(payload_hints)
        item_cost = 0.0
        if config.per_item_cost and item_count > 1:
            item_cost = (item_count - 1) * config.per_item_cost

        token_count = token_count_from_hints(payload_hints)
        token_cost = 0.0
        if config.per_token_cost and token_count > 0:
            token_cost = token_count * config.per_token_cost

        return price(
            self._ml_strategy,
            operation_id=operation_id,
            tier=tier,
            base_cost=config.base_cost,
            is_premium=config.is_premium,
            item_count=item_count,
            item_cost=item_cost,
            token_count=token_count,
            token_cost=token_cost,
            duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Workflow pricing
    # ------------------------------------------------------------------

    def calculate_workflow_cost(
        self,
        duration_ms: float,
        nodes_executed: int,
        premium_nodes_used: Iterable[str] = (),
        tier: TierInput = SubscriptionTier.FREE,
        *,
        status_code: int = 200,
        operation_id: str = "workflow",
    ) -> CostBreakdown:
        """Charge a workflow run by duration, node count and premium nodes."""
        if _is_failure(status_code):
            return _failed_breakdown(self._workflow_strategy, operation_id, tier)

        components = tuple(str(node) for node in premium_nodes_used)
        surcharge = sum(
            self._premium_components.get(node, 0) for node in components
        )
        return price(
            self._workflow_strategy,
            operation_id=operation_id,
            tier=tier,
            base_cost=WORKFLOW_BASE_COST,
            duration_ms=duration_ms,
            nodes_executed=nodes_executed,
            premium_components=components,
            premium_surcharge=surcharge,
        )

    def estimate_workflow_cost(
        self,
        node_count: int,
        node_types: Iterable[str],
        tier: TierInput,
        credits_remaining: int,
    ) -> WorkflowCostEstimate:
        """Estimate a min/max credit range before a workflow runs."""
        nodes = int(non_negative(node_count))
        premium = tuple(self.extract_premium_nodes(node_types))

        min_premium_count = _ceil_share(len(premium), WORKFLOW_MIN_PREMIUM_SHARE)
        min_premium = premium[:min_premium_count]
        min_cost = self.calculate_workflow_cost(
            WORKFLOW_MIN_DURATION_MS,
            _ceil_share(nodes, WORKFLOW_MIN_NODE_SHARE),
            min_premium,
            tier,
        )
        max_cost = self.calculate_workflow_cost(
            WORKFLOW_MAX_DURATION_MS,
            nodes,
            premium,
            tier,
        )

        remaining = int(non_negative(credits_remaining))
        breakdown = (
            f"Estimated {min_cost.total_cost}-{max_cost.total_cost} credits "
            f"({nodes} nodes, {len(premium)} premium)"
        )
        return WorkflowCostEstimate(
            estimated_min_cost=min_cost.total_cost,
            estimated_max_cost=max_cost.total_cost,
            breakdown=breakdown,
            can_afford=remaining >= min_cost.total_cost,
            credits_remaining=remaining,
            premium_nodes=premium,
        )

    def extract_premium_nodes(
        self,
        nodes: Iterable[Mapping[str, Any] | str],
    ) -> list[str]:
        """Return node types that carry a premium surcharge, in flow order."""
        premium: list[str] = []
        for node in nodes:
            node_type = node.get("type") if isinstance(node, Mapping) else node
            if not isinstance(node_type, str):
                continue
            if self._premium_components.get(node_type, 0) > 0:
                premium.append(node_type)
        return premium


def check_credit_sufficiency(
    credits_remaining: int,
    estimated_cost: int,
) -> CreditSufficiency:
    remaining = int(non_negative(credits_remaining))
    needed = int(non_negative(estimated_cost))
    return CreditSufficiency(
        can_execute=remaining >= needed,
        credits_needed=needed,
        shortfall=max(0, needed - remaining),
    )


def free_executions_remaining(tier: TierInput, executions_today: int) -> int:
    """Free workflow runs left today; unknown tiers get none."""
    resolved = parse_tier(tier)
    if resolved is None:
        return 0
    used = int(non_negative(executions_today))
    return max(0, FREE_EXECUTIONS_PER_TIER[resolved] - used)


def is_execution_free(tier: TierInput, executions_today: int) -> bool:
    return free_executions_remaining(tier, executions_today) > 0


def get_tier_multiplier(
    tier: TierInput,
    strategy: PricingStrategy = ML_REQUEST_PRICING,
) -> float:
    return strategy.multiplier_for(tier)


@lru_cache(maxsize=1)
def default_cost_model() -> CostModel:
    """Cost model over the packaged tables, loaded once per process."""
    return CostModel.from_repository(CostTableRepository())


def estimate_cost(
    operation_id: str,
    tier: TierInput,
    payload_hints: PayloadHints | None = None,
) -> CostBreakdown:
    return default_cost_model().estimate_cost(operation_id, tier, payload_hints)


def calculate_actual_cost(
    operation_id: str,
    tier: TierInput,
    duration_ms: float,
    status_code: int,
    payload_hints: PayloadHints | None = None,
) -> CostBreakdown:
    return default_cost_model().calculate_actual_cost(
        operation_id, tier, duration_ms, status_code, payload_hints
    )


def can_afford(
    operation_id: str,
    tier: TierInput,
    credits_remaining: int,
    payload_hints: PayloadHints | None = None,
) -> Affordability:
    return default_cost_model().can_afford(
        operation_id, tier, credits_remaining, payload_hints
    )
