from __future__ import annotations

import math

import pytest

from app.engine import (
    ML_REQUEST_PRICING,
    WORKFLOW_PRICING,
    CostModel,
    calculate_actual_cost,
    can_afford,
    estimate_cost,
    get_tier_multiplier,
)
from app.engine.calculator import FAILED_BREAKDOWN
from app.pricing import (
    CostTableRepository,
    EndpointCostConfig,
    EndpointCostTable,
    SubscriptionTier,
)


def make_model() -> CostModel:
    """Create a cost model bound to the packaged cost tables."""
    return CostModel.from_repository(CostTableRepository())


def make_custom_model(**entries: EndpointCostConfig) -> CostModel:
    """Create a cost model over an ad-hoc endpoint table."""
    table = EndpointCostTable(
        {f"/{name.replace('_', '-')}": config for name, config in entries.items()}
    )
    return CostModel(table, {})


def test_estimate_known_endpoint_for_pro() -> None:
    """Price a premium endpoint at base cost for the pro tier."""
    result = make_model().estimate_cost("/rag/query", "pro")

    assert result.total_cost == 3
    assert result.is_premium
    assert not result.was_capped
    assert result.human_readable_breakdown == (
        "Base: 3 credits | Premium endpoint | pro tier: 1.0x multiplier "
        "| Total: 3 credits"
    )


def test_estimate_strips_gateway_mount_and_query() -> None:
    """Resolve full gateway paths to their table entry."""
    result = make_model().estimate_cost("/api/v1/copilot/chat?stream=1", "free")

    assert result.base_cost == 3
    assert result.tier_multiplier == 2.0
    assert result.total_cost == 6


def test_estimate_prefix_match_on_segment_boundary() -> None:
    """Sub-paths of a configured endpoint inherit its cost."""
    result = make_model().estimate_cost("/api/v1/rag/query/abc123", "pro")

    assert result.total_cost == 3


def test_estimate_does_not_match_partial_segment() -> None:
    """A sibling path that merely shares a prefix string gets the default."""
    result = make_model().estimate_cost("/v1/copilot/chat-summary", "pro")

    assert result.base_cost == 1
    assert not result.is_premium
    assert result.total_cost == 1


def test_unknown_endpoint_uses_default_config() -> None:
    """Unknown operations degrade to a small default charge."""
    result = make_model().estimate_cost("/totally/unknown/path", "pro")

    assert result.base_cost == 1
    assert result.total_cost == 1
    assert not result.was_capped


def test_unknown_tier_uses_neutral_multiplier() -> None:
    """Unrecognised tiers price at 1.0x instead of failing."""
    result = make_model().estimate_cost("/rag/query", "platinum")

    assert result.tier == "platinum"
    assert result.tier_multiplier == 1.0
    assert result.total_cost == 3


def test_batch_items_scale_linearly() -> None:
    """Each item beyond the first adds the per-item cost."""
    model = make_model()

    eleven = model.estimate_cost(
        "/embeddings/batch", "pro", {"texts": ["t"] * 11}
    )
    twelve = model.estimate_cost(
        "/embeddings/batch", "pro", {"documents": ["d"] * 12}
    )

    # 5 + 10 * 0.1 lands exactly on 6
    assert eleven.total_cost == 6
    assert twelve.total_cost == 7
    assert "Batch items (12)" in twelve.human_readable_breakdown


def test_explicit_item_count_takes_precedence() -> None:
    """An explicit item_count hint wins over payload batch fields."""
    result = make_model().estimate_cost(
        "/transcription/batch",
        "pro",
        {"item_count": 3, "files": ["a"] * 10},
    )

    assert result.item_cost == 2.0
    assert result.total_cost == 22


def test_per_item_cost_ignored_for_single_item_endpoints() -> None:
    """Batch hints do not change endpoints without a per-item cost."""
    result = make_model().estimate_cost(
        "/rag/query", "pro", {"items": list(range(50))}
    )

    assert result.item_cost == 0
    assert result.total_cost == 3


def test_token_surcharge_for_llm_endpoints() -> None:
    """Token counts add the per-token cost before rounding up."""
    result = make_model().estimate_cost(
        "/copilot/chat", "pro", {"token_count": 2500}
    )

    assert result.token_cost == pytest.approx(2.5)
    assert result.total_cost == 6


def test_free_tier_duration_scenario() -> None:
    """Free tier, base 3, 65s: (3 + 2) * 2.0 = 10."""
    result = make_model().calculate_actual_cost(
        "/rag/query", "free", 65_000, 200
    )

    assert result.duration_cost == 2
    assert result.total_cost == 10
    assert not result.was_capped
    assert "Duration (65s): +2 credits" in result.human_readable_breakdown


def test_batch_scenario_is_capped() -> None:
    """Pro tier, base 50 plus 299 * 0.3 rounds to 140 and caps at 100."""
    model = make_custom_model(
        analysis_huge=EndpointCostConfig(
            base_cost=50, is_premium=True, per_item_cost=0.3
        )
    )

    result = model.calculate_actual_cost(
        "/analysis-huge", "pro", 0, 200, {"item_count": 300}
    )

    assert result.raw_total == pytest.approx(139.7)
    assert result.total_cost == 100
    assert result.was_capped
    assert "Capped at 100 credits" in result.human_readable_breakdown


@pytest.mark.parametrize(
    ("base_cost", "tier", "expected", "capped"),
    [
        (100, "pro", 100, False),
        (50, "free", 100, False),
        (50.5, "free", 100, True),
        (99.2, "pro", 100, False),
    ],
)
def test_cap_applies_after_rounding(
    base_cost: float, tier: str, expected: int, capped: bool
) -> None:
    """Report capping only when the rounded total exceeds the cap."""
    model = make_custom_model(op=EndpointCostConfig(base_cost=base_cost))

    result = model.estimate_cost("/op", tier)

    assert result.total_cost == expected
    assert result.was_capped is capped
    if not capped:
        assert result.total_cost == math.ceil(result.raw_total)


@pytest.mark.parametrize("status_code", [400, 402, 404, 500, 503])
@pytest.mark.parametrize("tier", ["free", "pro", "agency", "unknown"])
def test_failed_requests_are_free(status_code: int, tier: str) -> None:
    """Failed operations never produce a charge."""
    result = make_model().calculate_actual_cost(
        "/transcription/diarize", tier, 600_000, status_code
    )

    assert result.total_cost == 0
    assert result.failed
    assert result.human_readable_breakdown == FAILED_BREAKDOWN


def test_unreadable_status_is_treated_as_failure() -> None:
    """A status that cannot be read as an int is never billed."""
    result = make_model().calculate_actual_cost("/rag/query", "pro", 0, "ok")

    assert result.total_cost == 0


@pytest.mark.parametrize(
    ("operation_id", "duration_ms", "hints"),
    [
        ("/rag/query", 0, None),
        ("/transcription/batch", 95_000, {"files": ["f"] * 4}),
        ("/copilot/chat", 31_000, {"token_count": 1_234}),
        ("/unknown/thing", 10_000, None),
    ],
)
def test_tier_discount_is_monotonic(
    operation_id: str, duration_ms: int, hints: dict | None
) -> None:
    """Higher tiers never pay more than lower tiers for the same work."""
    model = make_model()

    def total(tier: str) -> int:
        return model.calculate_actual_cost(
            operation_id, tier, duration_ms, 200, hints
        ).total_cost

    assert total("agency") <= total("pro") <= total("maker") <= total("free")


def test_negative_and_non_finite_inputs_are_clamped() -> None:
    """Malformed telemetry is clamped to zero rather than raising."""
    model = make_model()

    negative = model.calculate_actual_cost("/rag/query", "pro", -5_000, 200)
    not_a_number = model.calculate_actual_cost(
        "/rag/query", "pro", float("nan"), 200
    )
    bad_items = model.estimate_cost(
        "/embeddings/batch", "pro", {"item_count": -7}
    )

    assert negative.total_cost == 3
    assert not_a_number.total_cost == 3
    assert bad_items.total_cost == 5


def test_admin_and_unlimited_pay_nothing_for_ml_calls() -> None:
    """Zero multipliers produce a zero charge."""
    model = make_model()

    admin = model.calculate_actual_cost("/langgraph/execute", "admin", 90_000, 200)
    unlimited = model.estimate_cost("/langgraph/execute", "unlimited")

    assert admin.total_cost == 0
    assert unlimited.total_cost == 0
    assert "admin tier: 0.0x multiplier" in admin.human_readable_breakdown


def test_can_afford_reports_deficit() -> None:
    """Report required, remaining and the shortfall."""
    model = make_model()

    short = model.can_afford("/transcription/transcribe", "free", 5)
    enough = model.can_afford("/transcription/transcribe", "free", 25)

    assert not short.can_afford
    assert short.required == 20
    assert short.remaining == 5
    assert short.deficit == 15
    assert enough.can_afford
    assert enough.deficit == 0


def test_module_level_functions_use_packaged_tables() -> None:
    """The module-level API prices with the default cost model."""
    assert estimate_cost("/rag/query", SubscriptionTier.PRO).total_cost == 3
    assert calculate_actual_cost("/rag/query", "pro", 0, 500).total_cost == 0
    assert can_afford("/rag/query", "maker", 4).required == 5


def test_strategies_keep_separate_multipliers() -> None:
    """ML and workflow pricing use their own tier tables."""
    assert get_tier_multiplier("lifetime") == 0.75
    assert get_tier_multiplier("lifetime", WORKFLOW_PRICING) == 0.8
    assert ML_REQUEST_PRICING.multiplier_for("agency") == 0.5
    assert WORKFLOW_PRICING.multiplier_for("agency") == 0.75
    assert ML_REQUEST_PRICING.complexity_cost(95) == 0
    assert WORKFLOW_PRICING.complexity_cost(95) == 9


def test_endpoint_helpers() -> None:
    """Expose premium flags and a copy of the cost table."""
    model = make_model()

    assert model.is_premium_endpoint("/api/v1/rag/query")
    assert not model.is_premium_endpoint("/rag/delete")

    costs = model.list_endpoint_costs()
    costs.clear()
    assert "/rag/query" in model.list_endpoint_costs()


@pytest.mark.parametrize("item_count", [1e308, 10**400])
def test_overflowing_batch_size_bills_the_cap(item_count: float) -> None:
    """Batch sizes beyond float range are capped instead of raising."""
    result = make_model().estimate_cost(
        "/transcription/batch", "free", {"item_count": item_count}
    )

    assert result.total_cost == 100
    assert result.was_capped


def test_overflowing_surcharge_is_capped() -> None:
    """A per-item surcharge that overflows to infinity still caps."""
    model = make_custom_model(
        bulk=EndpointCostConfig(base_cost=1, per_item_cost=10.0)
    )

    result = model.estimate_cost("/bulk", "pro", {"item_count": 1e308})
    admin = model.estimate_cost("/bulk", "admin", {"item_count": 1e308})

    assert result.total_cost == 100
    assert result.was_capped
    assert result.to_dict()["item_cost"] is None
    assert result.to_dict()["raw_total"] is None
    assert admin.total_cost == 0


def test_out_of_range_telemetry_is_clamped() -> None:
    model = make_model()

    huge_duration = model.calculate_actual_cost("/rag/query", "pro", 10**400, 200)
    negative_huge = model.calculate_actual_cost("/rag/query", "pro", -(10**400), 200)
    infinite_status = model.calculate_actual_cost(
        "/rag/query", "pro", 0, float("inf")
    )
    huge_status = model.calculate_actual_cost("/rag/query", "pro", 0, 10**400)

    assert huge_duration.total_cost == 100
    assert huge_duration.was_capped
    assert negative_huge.total_cost == 3
    assert infinite_status.total_cost == 0
    assert infinite_status.failed
    assert huge_status.failed
