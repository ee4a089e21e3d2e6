"""
Circuit Breaker Exceptions

Author: System Architect
Date: 2025-12-08
"""

from typing import Any

from enhance_gateway.core.exceptions.base import GatewayError


class CircuitBreakerError(GatewayError):
    """Base exception for circuit breaker errors."""
    code = "CIRCUIT_OPEN"
    status_code = 503
    retriable = True


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when a call is rejected by an open (or trial-occupied half-open) circuit.

    No downstream call was made. Clients should retry later.

    Common causes:
    - The guarded operation failed repeatedly and the circuit opened
    - The circuit is half-open and another request holds the single trial
    """

    def __init__(
        self,
        message: str,
        operation: str,
        state: str,
        retry_after_ms: int = 0,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.operation = operation
        self.state = state
        self.retry_after_ms = retry_after_ms
        self.details.setdefault("operation", operation)
        self.details.setdefault("state", state)
        self.details.setdefault("retry_after_ms", retry_after_ms)
