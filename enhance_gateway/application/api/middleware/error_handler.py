"""
Error Handling

Two layers:

1. Exception handlers render every ``GatewayError`` as its ``to_dict()``
   body with the error's own status code. Rate-limit rejections carry
   Retry-After and X-RateLimit-* headers; open circuits carry Retry-After.
2. ``ErrorHandlingMiddleware`` is the last line of defense: anything that
   escapes the handlers is logged with its traceback and answered with a
   generic 500, so internals never reach the client.
"""

import math
import traceback
from collections.abc import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from enhance_gateway.core.config.constants import HEADER_REQUEST_ID, HEADER_RETRY_AFTER
from enhance_gateway.core.exceptions import (
    CircuitBreakerOpenError,
    GatewayError,
    RateLimitExceededError,
    ValidationError,
)
from enhance_gateway.core.logging import get_logger, get_request_id

logger = get_logger(__name__)


def _error_response(exc: GatewayError, headers: dict[str, str] | None = None) -> JSONResponse:
    if exc.request_id is None:
        exc.request_id = get_request_id()
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        method=request.method,
        error_code=exc.code,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    return _error_response(exc)


async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    headers = dict(exc.headers)
    headers.setdefault(HEADER_RETRY_AFTER, str(max(math.ceil(exc.retry_after_ms / 1000), 1)))
    return _error_response(exc, headers)


async def circuit_open_handler(request: Request, exc: CircuitBreakerOpenError) -> JSONResponse:
    logger.warning("Circuit open", path=request.url.path, operation=exc.operation, state=exc.state)
    return _error_response(exc, {HEADER_RETRY_AFTER: str(max(math.ceil(exc.retry_after_ms / 1000), 1))})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError(
        "Request validation failed",
        details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]},
    )
    return _error_response(error)


def register_exception_handlers(app: FastAPI) -> None:
    # Most specific first; Starlette resolves handlers along the MRO anyway
    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(CircuitBreakerOpenError, circuit_open_handler)
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch-all for exceptions no handler claimed."""

    def __init__(self, app, include_traceback: bool = False):
        super().__init__(app)
        self.include_traceback = include_traceback

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            error_type = type(e).__name__
            logger.error(
                f"Unhandled exception in request: {request.method} {request.url.path}",
                method=request.method,
                path=request.url.path,
                error_type=error_type,
                error_message=str(e),
                exc_info=True,
            )

            request_id = get_request_id()
            body = {
                "code": "INTERNAL_ERROR",
                "error_type": error_type,
                "message": "An unexpected error occurred while processing your request",
                "request_id": request_id,
                "details": {},
            }
            if self.include_traceback:
                body["details"] = {"traceback": traceback.format_exc(), "detail": str(e)}

            return JSONResponse(
                status_code=500,
                content=body,
                headers={HEADER_REQUEST_ID: request_id} if request_id else None,
            )
