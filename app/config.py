from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.constants import (
    RATE_LIMIT_PREFIX,
    RATE_LIMIT_WINDOW_MS,
    SWEEP_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Runtime settings read from ``METERING_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="METERING_", extra="ignore")

    redis_url: str | None = Field(
        default=None,
        description="Shared counter store; in-process counters when unset",
    )
    rate_limit_prefix: str = RATE_LIMIT_PREFIX
    rate_limit_window_ms: int = Field(default=RATE_LIMIT_WINDOW_MS, gt=0)
    rate_limit_skip_on_error: bool = False
    # comma separated identifiers or client IPs
    rate_limit_allow_list: str = ""
    rate_limit_enable_headers: bool = True
    # only enable behind a gateway that strips client-sent identity headers
    trust_gateway_headers: bool = False
    sweep_interval_seconds: float = Field(default=SWEEP_INTERVAL_SECONDS, gt=0)
    log_level: str = "INFO"

    @property
    def allow_list(self) -> tuple[str, ...]:
        """Return the parsed rate-limit allow list."""
        return tuple(
            item.strip()
            for item in self.rate_limit_allow_list.split(",")
            if item.strip()
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return process-wide settings loaded once from the environment."""
    return Settings()
