"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
Specialized exceptions live in their respective themed modules.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Every error carries a machine-readable ``code`` and the HTTP status it
    maps to, so the API layer can render any of them uniformly.

    Attributes:
        message: Error message
        request_id: Request ID for correlation (if available)
        details: Additional error details (dict)

    Example:
        raise JobEnqueueError(
            "Queue rejected job",
            request_id="abc-123",
            details={"queue": "enhancement", "attempts": 3}
        )
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    retriable: bool = False

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to the API error body.

        Returns:
            Dict with code, error_type, message, request_id and details
        """
        return {
            "code": self.code,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        request_id_str = f", request_id='{self.request_id}'" if self.request_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{request_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        request_id: str | None = None,
        **details
    ) -> "GatewayError":
        """
        Create an error from another exception.

        Useful for wrapping third-party exceptions with additional context.

        Example:
            >>> try:
            ...     await redis.ping()
            ... except redis.ConnectionError as e:
            ...     raise StoreConnectionError.from_exception(e, host="localhost")
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, request_id=request_id, details=error_details)


class ConfigurationError(GatewayError):
    """Raised when configuration is invalid or missing."""
    code = "CONFIGURATION_ERROR"
