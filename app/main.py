from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, cast

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from app import __version__
from app.api.errors import (
    internal_error_handler,
    metering_error_handler,
    validation_error_handler,
)
from app.api.middleware import BodySizeLimitMiddleware, RequestIdMiddleware
from app.api.routes import router
from app.config import Settings, get_settings
from app.constants import MAX_REQUEST_BODY_BYTES
from app.engine import CostModel, MeteringError
from app.logging import configure_logging
from app.pricing import CostTableRepository
from app.ratelimit import (
    MemoryRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
    TieredRateLimiter,
)

logger = logging.getLogger(__name__)


def build_rate_limit_store(settings: Settings) -> RateLimitStore:
    """Pick the counter store once: shared Redis when configured."""
    if settings.redis_url:
        return RedisRateLimitStore.from_url(
            settings.redis_url, prefix=settings.rate_limit_prefix
        )
    return MemoryRateLimitStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and graceful shutdown."""
    store = app.state.rate_limiter.store
    if isinstance(store, MemoryRateLimitStore):
        store.start_sweeper(app.state.settings.sweep_interval_seconds)
    logger.info(
        "startup",
        extra={"event": "startup", "rate_limit_store": type(store).__name__},
    )
    yield
    await store.close()
    logger.info("shutdown", extra={"event": "shutdown"})


def create_app(
    settings: Settings | None = None,
    store: RateLimitStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Credit Metering & Tiered Rate Limiting API",
        version=__version__,
        lifespan=lifespan,
    )

    repository = CostTableRepository()
    rate_limiter = TieredRateLimiter(
        store or build_rate_limit_store(settings),
        allow_list=settings.allow_list,
        skip_on_error=settings.rate_limit_skip_on_error,
        window_ms=settings.rate_limit_window_ms,
    )

    app.state.settings = settings
    app.state.repository = repository
    app.state.cost_model = CostModel.from_repository(repository)
    app.state.rate_limiter = rate_limiter
    app.state.rate_limit_headers = settings.rate_limit_enable_headers
    app.state.trust_gateway_headers = settings.trust_gateway_headers

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        BodySizeLimitMiddleware,
        max_body_bytes=MAX_REQUEST_BODY_BYTES,
    )
    app.include_router(router)

    app.add_exception_handler(MeteringError, cast(Any, metering_error_handler))
    app.add_exception_handler(
        RequestValidationError,
        cast(Any, validation_error_handler),
    )
    app.add_exception_handler(Exception, cast(Any, internal_error_handler))

    return app


app = create_app()
