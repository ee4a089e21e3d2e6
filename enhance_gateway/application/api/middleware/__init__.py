"""HTTP middleware and exception handlers."""

from enhance_gateway.application.api.middleware.error_handler import (
    ErrorHandlingMiddleware,
    register_exception_handlers,
)

__all__ = ["ErrorHandlingMiddleware", "register_exception_handlers"]
