from __future__ import annotations

from collections.abc import Mapping

from app.constants import MOUNT_PREFIXES
from app.pricing.models import (
    DEFAULT_ENDPOINT_COST,
    EndpointCostConfig,
    ResolvedEndpoint,
)


def normalize_operation_id(operation_id: str) -> str:
    """Strip query string, trailing slash and gateway mount prefix."""
    path = operation_id.split("?", 1)[0].strip()
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    for mount in sorted(MOUNT_PREFIXES, key=len, reverse=True):
        if path.startswith(mount + "/"):
            return path[len(mount):]
    return path


class EndpointCostTable:
    """Two-phase cost lookup: exact key, then longest path-segment prefix.

    Prefix rules only match on ``/`` boundaries, so ``/copilot/chat`` covers
    ``/copilot/chat/stream`` but never ``/copilot/chat-summary``.
    """

    def __init__(
        self,
        entries: Mapping[str, EndpointCostConfig],
        default: EndpointCostConfig = DEFAULT_ENDPOINT_COST,
    ) -> None:
        self._exact: dict[str, EndpointCostConfig] = dict(entries)
        self._prefix_rules: tuple[tuple[str, EndpointCostConfig], ...] = tuple(
            sorted(
                ((key.rstrip("/"), config) for key, config in entries.items()),
                key=lambda rule: (-len(rule[0]), rule[0]),
            )
        )
        self._default = default

    def __len__(self) -> int:
        return len(self._exact)

    @property
    def default(self) -> EndpointCostConfig:
        return self._default

    def as_dict(self) -> dict[str, EndpointCostConfig]:
        return dict(self._exact)

    def resolve(self, operation_id: str) -> ResolvedEndpoint:
        """Resolve an operation id to its cost config; never raises."""
        if not isinstance(operation_id, str):
            operation_id = ""

        config = self._exact.get(operation_id)
        if config is not None:
            return ResolvedEndpoint(operation_id, operation_id, "exact", config)

        path = normalize_operation_id(operation_id)
        config = self._exact.get(path)
        if config is not None:
            return ResolvedEndpoint(operation_id, path, "exact", config)

        for prefix, rule_config in self._prefix_rules:
            if path.startswith(prefix + "/"):
                return ResolvedEndpoint(
                    operation_id, prefix, "prefix", rule_config
                )

        return ResolvedEndpoint(operation_id, None, "default", self._default)
