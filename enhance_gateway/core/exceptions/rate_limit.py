"""
Rate Limiting Exceptions

Author: System Architect
Date: 2025-12-08
"""

from typing import Any

from enhance_gateway.core.exceptions.base import GatewayError


class RateLimitError(GatewayError):
    """Base exception for rate limiting errors."""
    code = "RATE_LIMITED"
    status_code = 429
    retriable = True


class RateLimitExceededError(RateLimitError):
    """
    Raised when a fixed-window counter is exceeded.

    Clients should retry after ``retry_after_ms``. The response carries:
    - Retry-After: seconds until the window resets
    - X-RateLimit-Limit / X-RateLimit-Remaining / X-RateLimit-Reset

    Common causes:
    - Too many requests from one user in the window
    - Too many requests against one endpoint in the window
    """

    def __init__(
        self,
        message: str,
        retry_after_ms: int,
        scope: str | None = None,
        headers: dict[str, str] | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.retry_after_ms = retry_after_ms
        self.scope = scope
        self.headers = dict(headers or {})
        self.details.setdefault("retry_after_ms", retry_after_ms)
        if scope:
            self.details.setdefault("scope", scope)
