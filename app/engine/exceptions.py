from __future__ import annotations

from typing import Any


class MeteringError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Create a structured metering exception for API and core layers."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers or {}


class RateLimitStoreError(MeteringError):
    """The rate-limit backing store could not be reached."""

    def __init__(self, key: str, cause: BaseException) -> None:
        super().__init__(
            "RATE_LIMIT_STORE_UNAVAILABLE",
            "Rate limit store unavailable",
            status_code=503,
            details={"key": key, "reason": type(cause).__name__},
        )
        self.cause = cause


class RateLimitExceeded(MeteringError):
    def __init__(
        self,
        *,
        limit: int,
        limit_class: str,
        retry_after: int,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            "RATE_LIMIT_EXCEEDED",
            "Too many requests. Please try again later.",
            status_code=429,
            details={
                "retryAfter": retry_after,
                "limit": limit,
                "type": limit_class,
            },
            headers=headers,
        )
        self.limit = limit
        self.limit_class = limit_class
        self.retry_after = retry_after


class InsufficientCredits(MeteringError):
    def __init__(
        self,
        *,
        required: int,
        available: int,
        breakdown: str,
        tier: str,
    ) -> None:
        deficit = max(0, required - available)
        super().__init__(
            "INSUFFICIENT_CREDITS",
            (
                f"This operation requires {required} credits, but you only "
                f"have {available} remaining. Please upgrade your plan or "
                "purchase more credits."
            ),
            status_code=402,
            details={
                "required": required,
                "available": available,
                "deficit": deficit,
                "breakdown": breakdown,
                "tier": tier,
            },
        )
