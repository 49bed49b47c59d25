from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.engine.exceptions import MeteringError, RateLimitExceeded

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str | None:
    """Read request ID from request state when available."""
    return getattr(request.state, "request_id", None)


def build_error_payload(
    code: str, message: str, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Build a consistent API error payload envelope."""
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
    }


def build_rate_limit_payload(exc: RateLimitExceeded) -> dict[str, Any]:
    """Build the 429 body clients use to render countdowns."""
    return {
        "success": False,
        "error": {
            "code": exc.code,
            "message": exc.message,
            "retryAfter": exc.retry_after,
            "limit": exc.limit,
            "type": exc.limit_class,
        },
    }


def _respond(
    request: Request,
    status_code: int,
    content: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(content),
        headers=headers,
    )
    request_id = _get_request_id(request)
    if request_id:
        response.headers["X-Request-Id"] = request_id
    return response


async def metering_error_handler(
    request: Request,
    exc: MeteringError,
) -> JSONResponse:
    """Convert a domain metering error into an HTTP response."""
    logger.info(
        "metering_error",
        extra={
            "event": "metering_error",
            "status_code": exc.status_code,
            "error_code": exc.code,
            "request_id": _get_request_id(request),
        },
    )
    if isinstance(exc, RateLimitExceeded):
        content = build_rate_limit_payload(exc)
    else:
        content = build_error_payload(exc.code, exc.message, exc.details)
    return _respond(request, exc.status_code, content, exc.headers)


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return a normalized response for request validation failures."""
    return _respond(
        request,
        400,
        build_error_payload(
            "INVALID_REQUEST",
            "Request validation failed",
            {"validation_errors": exc.errors()},
        ),
    )


async def internal_error_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Return a generic internal error response without leaking details."""
    logger.exception(
        "internal_error",
        extra={
            "event": "internal_error",
            "status_code": 500,
            "error_code": "INTERNAL_ERROR",
            "request_id": _get_request_id(request),
        },
    )
    return _respond(
        request,
        500,
        build_error_payload("INTERNAL_ERROR", "Internal server error"),
    )
