from __future__ import annotations

from dataclasses import dataclass

from app.constants import DEFAULT_BASE_COST


@dataclass(frozen=True)
class EndpointCostConfig:
    base_cost: float
    is_premium: bool = False
    # fractional credits per extra batch item
    per_item_cost: float | None = None
    # fractional credits per token reported by the caller
    per_token_cost: float | None = None

    def __post_init__(self) -> None:
        if self.base_cost < 0:
            raise ValueError("base_cost must be >= 0")
        for name in ("per_item_cost", "per_token_cost"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0")


DEFAULT_ENDPOINT_COST = EndpointCostConfig(base_cost=DEFAULT_BASE_COST)


@dataclass(frozen=True)
class ResolvedEndpoint:
    operation_id: str
    # table key that matched, None when the default applied
    matched_key: str | None
    match_kind: str
    config: EndpointCostConfig


@dataclass(frozen=True)
class TableMeta:
    table_version: str
    published_at: str
    schema_version: int
