"""API routers."""

from enhance_gateway.application.api.routes.enhance import router as enhance_router
from enhance_gateway.application.api.routes.health import metrics_router
from enhance_gateway.application.api.routes.health import router as health_router
from enhance_gateway.application.api.routes.webhooks import router as webhooks_router

__all__ = ["enhance_router", "health_router", "metrics_router", "webhooks_router"]
