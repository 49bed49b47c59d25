from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from jsonschema import Draft202012Validator

from app.pricing import models as pricing_models
from app.pricing.lookup import EndpointCostTable


class CostTableError(ValueError):
    """Raised when a cost table fails to load or validate."""


class CostTableRepository:
    def __init__(self, root_dir: Path | None = None) -> None:
        """Load and validate the static cost tables once at startup."""
        self._root_dir = root_dir or Path(__file__).resolve().parent
        self._data_dir = self._root_dir / "data"
        self._schema_dir = self._root_dir / "schema"

        self._endpoint_validator = Draft202012Validator(
            self._read_json(self._schema_dir / "ml_endpoints.schema.json")
        )
        premium_schema = self._schema_dir / "premium_components.schema.json"
        self._premium_validator = Draft202012Validator(
            self._read_json(premium_schema)
        )

        self._meta, self._endpoints = self._load_endpoints()
        self._premium_components = self._load_premium_components()

    @property
    def table_version(self) -> str:
        """Return the version of the loaded endpoint cost table."""
        return self._meta.table_version

    @property
    def meta(self) -> pricing_models.TableMeta:
        return self._meta

    @property
    def endpoints(self) -> EndpointCostTable:
        return self._endpoints

    @property
    def premium_components(self) -> Mapping[str, int]:
        return self._premium_components

    @staticmethod
    def serialize_endpoint(
        config: pricing_models.EndpointCostConfig,
    ) -> dict[str, Any]:
        """Serialize an endpoint config using the on-disk field names."""
        serialized: dict[str, Any] = {
            "base": config.base_cost,
            "premium": config.is_premium,
        }
        if config.per_item_cost is not None:
            serialized["per_item"] = config.per_item_cost
        if config.per_token_cost is not None:
            serialized["per_token"] = config.per_token_cost
        return serialized

    # ------------------------------------------------------------------
    # Internal loading
    # ------------------------------------------------------------------

    def _load_endpoints(
        self,
    ) -> tuple[pricing_models.TableMeta, EndpointCostTable]:
        raw = self._read_json(self._data_dir / "ml_endpoints.json")
        self._validate_schema(self._endpoint_validator, raw, "ml_endpoints.json")

        meta = pricing_models.TableMeta(
            table_version=raw["table_version"],
            published_at=raw["published_at"],
            schema_version=raw["schema_version"],
        )
        entries: dict[str, pricing_models.EndpointCostConfig] = {}
        for key, raw_entry in raw["endpoints"].items():
            normalized = key.rstrip("/")
            if normalized in entries:
                message = f"Duplicate endpoint '{normalized}' in ml_endpoints.json"
                raise CostTableError(message)
            entries[normalized] = pricing_models.EndpointCostConfig(
                base_cost=float(raw_entry["base"]),
                is_premium=raw_entry["premium"],
                per_item_cost=self._optional_float(raw_entry.get("per_item")),
                per_token_cost=self._optional_float(raw_entry.get("per_token")),
            )
        return meta, EndpointCostTable(entries)

    def _load_premium_components(self) -> Mapping[str, int]:
        raw = self._read_json(self._data_dir / "premium_components.json")
        self._validate_schema(
            self._premium_validator,
            raw,
            "premium_components.json",
        )
        return MappingProxyType(
            {str(node): int(cost) for node, cost in raw["components"].items()}
        )

    @staticmethod
    def _optional_float(value: Any) -> float | None:
        return None if value is None else float(value)

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CostTableError(f"Cannot read {path.name}: {exc}") from exc

    @staticmethod
    def _validate_schema(
        validator: Draft202012Validator,
        payload: dict[str, Any],
        filename: str,
    ) -> None:
        errors = sorted(
            validator.iter_errors(payload),
            key=lambda err: list(err.path),
        )
        if not errors:
            return

        first_error = errors[0]
        path = ".".join(str(part) for part in first_error.path)
        path_suffix = f" at '{path}'" if path else ""
        raise CostTableError(
            (
                "Schema validation failed for "
                f"{filename}{path_suffix}: {first_error.message}"
            )
        )
