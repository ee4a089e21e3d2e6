"""
Request Pipeline

Explicit, ordered admission stages in front of a route handler.

┌──────────────────────────────────────────────────────────────┐
│ STAGE 1: CIRCUIT BREAKER                                     │
│ - OPEN: serve the fallback, or reject with 503               │
│ - otherwise take a permit and record the handler's outcome   │
└──────────────────────────────────────────────────────────────┘
                              ↓
┌──────────────────────────────────────────────────────────────┐
│ STAGE 2: RATE LIMITER                                        │
│ - Count the request against every scope, stop at the first   │
│   rejection and reject with 429                              │
│ - skip-failed-requests: a failing handler gets its counts    │
│   back                                                       │
└──────────────────────────────────────────────────────────────┘
                              ↓
┌──────────────────────────────────────────────────────────────┐
│ HANDLER                                                      │
└──────────────────────────────────────────────────────────────┘

A request rejected by either stage never reaches the handler. A rate-limit
rejection says nothing about the guarded operation, so the breaker treats it
as neutral and hands its permit back.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from enhance_gateway.core.config.constants import HEADER_FALLBACK_RESPONSE
from enhance_gateway.core.exceptions import CircuitBreakerOpenError, GatewayError, RateLimitExceededError
from enhance_gateway.core.logging import get_logger
from enhance_gateway.core.resilience import (
    DistributedCircuitBreaker,
    Permit,
    RateLimiter,
    RateLimitResult,
    RateLimitRule,
)

logger = get_logger(__name__)


@dataclass
class RequestContext:
    """Per-request state shared by reference across stages and the handler."""

    request_id: str
    user_id: str
    endpoint: str
    client_ip: str | None = None
    payload: Any = None
    rate_limit: RateLimitResult | None = None
    circuit_permit: Permit | None = None
    fallback_used: bool = False
    response_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[RequestContext], Awaitable[Any]]
NextStage = Callable[[RequestContext], Awaitable[Any]]


class PipelineStage(ABC):
    @abstractmethod
    async def handle(self, ctx: RequestContext, call_next: NextStage) -> Any:
        ...


class CircuitBreakerStage(PipelineStage):
    """
    Guards everything after it with a circuit breaker.

    ``fallback(ctx)`` may answer while the circuit is OPEN; returning None
    means it has nothing to offer and the request is rejected with 503.
    """

    def __init__(
        self,
        breaker: DistributedCircuitBreaker,
        fallback: Callable[[RequestContext], Awaitable[Any | None]] | None = None,
    ):
        self.breaker = breaker
        self.fallback = fallback

    def _is_neutral(self, exc: Exception) -> bool:
        # Caller errors (4xx) say nothing about the operation's health
        if isinstance(exc, self.breaker.excluded_exceptions):
            return True
        return isinstance(exc, GatewayError) and exc.status_code < 500

    async def handle(self, ctx: RequestContext, call_next: NextStage) -> Any:
        try:
            permit = await self.breaker.acquire()
        except CircuitBreakerOpenError:
            if self.fallback is not None:
                result = await self.fallback(ctx)
                if result is not None:
                    ctx.fallback_used = True
                    ctx.response_headers[HEADER_FALLBACK_RESPONSE] = "true"
                    logger.info("Serving fallback for open circuit", operation=self.breaker.name, endpoint=ctx.endpoint)
                    return result
            raise

        ctx.circuit_permit = permit
        try:
            result = await call_next(ctx)
        except RateLimitExceededError:
            await self.breaker.release(permit)
            raise
        except Exception as e:
            if self._is_neutral(e):
                await self.breaker.release(permit)
            else:
                await self.breaker.record_failure(permit)
            raise

        await self.breaker.record_success(permit)
        return result


class RateLimitStage(PipelineStage):
    """
    Admission against one or more fixed-window scopes.

    ``identity_resolver(rule, ctx)`` names the counter identity for a rule,
    e.g. the user ID for ``user`` or ``{endpoint}:{user}`` for ``endpoint``.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        rules: list[RateLimitRule],
        identity_resolver: Callable[[RateLimitRule, RequestContext], str],
        skip_failed_requests: bool = False,
    ):
        self.limiter = limiter
        self.rules = rules
        self.identity_resolver = identity_resolver
        self.skip_failed_requests = skip_failed_requests

    async def handle(self, ctx: RequestContext, call_next: NextStage) -> Any:
        checks = [(rule, self.identity_resolver(rule, ctx)) for rule in self.rules]
        result = await self.limiter.admit_all(checks)
        ctx.rate_limit = result
        headers = RateLimiter.headers(result)
        ctx.response_headers.update(headers)

        if not result.allowed:
            rejected = result.rejected
            raise RateLimitExceededError(
                f"Rate limit exceeded for {rejected.scope}",
                retry_after_ms=result.retry_after_ms,
                scope=rejected.scope,
                headers=headers,
                request_id=ctx.request_id,
                details={"limit": rejected.limit, "window_ms": rejected.window_ms},
            )

        try:
            return await call_next(ctx)
        except Exception:
            if self.skip_failed_requests:
                await self.limiter.release(result)
            raise


class RequestPipeline:
    """Runs ``stages`` in order around ``handler``."""

    def __init__(self, stages: list[PipelineStage], handler: Handler):
        self.stages = list(stages)
        self.handler = handler

    async def execute(self, ctx: RequestContext) -> Any:
        async def dispatch(index: int, current: RequestContext) -> Any:
            if index == len(self.stages):
                return await self.handler(current)
            return await self.stages[index].handle(current, lambda c: dispatch(index + 1, c))

        return await dispatch(0, ctx)


class PipelineBuilder:
    """
    Usage:
        pipeline = (
            PipelineBuilder()
            .use(CircuitBreakerStage(breaker))
            .use(RateLimitStage(limiter, rules, resolver))
            .build(handler)
        )
        result = await pipeline.execute(ctx)
    """

    def __init__(self):
        self._stages: list[PipelineStage] = []

    def use(self, stage: PipelineStage | None) -> "PipelineBuilder":
        if stage is not None:
            self._stages.append(stage)
        return self

    def build(self, handler: Handler) -> RequestPipeline:
        return RequestPipeline(self._stages, handler)
