"""Resilience primitives: circuit breaking and admission control."""

from enhance_gateway.core.resilience.circuit_breaker import (
    CircuitBreakerManager,
    CircuitSnapshot,
    CircuitState,
    DistributedCircuitBreaker,
    Permit,
    PermitKind,
    ResilientCall,
)
from enhance_gateway.core.resilience.rate_limiter import (
    RateLimitDecision,
    RateLimiter,
    RateLimitResult,
    RateLimitRule,
)

__all__ = [
    "CircuitBreakerManager",
    "CircuitSnapshot",
    "CircuitState",
    "DistributedCircuitBreaker",
    "Permit",
    "PermitKind",
    "RateLimitDecision",
    "RateLimitResult",
    "RateLimitRule",
    "RateLimiter",
    "ResilientCall",
]
