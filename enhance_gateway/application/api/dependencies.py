"""
FastAPI Dependencies

Accessors for the ServiceContainer built in the lifespan, the caller's
identity, and the admission pipeline for mutating routes.

The identity comes from ``X-User-ID``, set by the authentication layer in
front of the gateway; a request without it is rejected with 401.
"""

from typing import Annotated

from fastapi import Depends, Request

from enhance_gateway.application.container import ServiceContainer
from enhance_gateway.core.config.constants import HEADER_USER_ID
from enhance_gateway.core.exceptions import AuthenticationRequiredError
from enhance_gateway.core.logging import get_request_id
from enhance_gateway.core.resilience import RateLimitRule
from enhance_gateway.services.request_pipeline import (
    CircuitBreakerStage,
    Handler,
    PipelineBuilder,
    RateLimitStage,
    RequestContext,
    RequestPipeline,
)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_user_id(request: Request) -> str:
    user_id = (request.headers.get(HEADER_USER_ID) or "").strip()
    if not user_id:
        raise AuthenticationRequiredError(
            "Authentication required",
            request_id=get_request_id(),
            details={"header": HEADER_USER_ID},
        )
    return user_id


def get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]
UserIdDep = Annotated[str, Depends(get_user_id)]
ClientIpDep = Annotated[str | None, Depends(get_client_ip)]


def build_context(endpoint: str, user_id: str, client_ip: str | None, payload=None) -> RequestContext:
    return RequestContext(
        request_id=get_request_id() or "",
        user_id=user_id,
        endpoint=endpoint,
        client_ip=client_ip,
        payload=payload,
    )


def _resolve_identity(rule: RateLimitRule, ctx: RequestContext) -> str:
    # Endpoint scopes carry the endpoint in the scope name; both are per user
    return ctx.user_id


def build_pipeline(container: ServiceContainer, operation: str, handler: Handler, fallback=None) -> RequestPipeline:
    """CircuitBreaker -> RateLimiter -> handler for ``operation``."""
    rate_limit = container.settings.rate_limit
    limiter_stage = None
    if rate_limit.RATE_LIMIT_ENABLED:
        limiter_stage = RateLimitStage(
            container.limiter,
            container.rate_limit_rules(operation),
            _resolve_identity,
            skip_failed_requests=rate_limit.RATE_LIMIT_SKIP_FAILED_REQUESTS,
        )

    return (
        PipelineBuilder()
        .use(CircuitBreakerStage(container.breakers.get_breaker(operation), fallback=fallback))
        .use(limiter_stage)
        .build(handler)
    )
