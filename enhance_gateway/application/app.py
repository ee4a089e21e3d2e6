#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Configures the enhancement gateway: lifespan-managed services, middleware,
exception handlers and routes.

Author: System Architect
Date: 2025-12-05
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from enhance_gateway.application.api.middleware import ErrorHandlingMiddleware, register_exception_handlers
from enhance_gateway.application.api.routes import enhance_router, health_router, metrics_router, webhooks_router
from enhance_gateway.application.container import ServiceContainer
from enhance_gateway.core.config.constants import HEADER_REQUEST_ID
from enhance_gateway.core.config.settings import Settings, get_settings
from enhance_gateway.core.logging import clear_request_id, get_logger, set_request_id, setup_logging

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, container: ServiceContainer | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Defaults to the process-wide settings
        container: Pre-built services (tests); built in the lifespan otherwise.
            A supplied container is used as-is and its workers are not started.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)
        logger.info(
            "Starting enhancement gateway",
            environment=settings.app.ENVIRONMENT,
            version=settings.app.APP_VERSION,
        )

        if container is not None:
            app.state.container = container
            yield
            return

        services = await ServiceContainer.build(settings)
        app.state.container = services
        await services.start()
        logger.info("Application startup complete")

        try:
            yield
        finally:
            logger.info("Shutting down application")
            await services.stop()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Document enhancement gateway: admission control, deduplication, jobs and webhooks",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(ErrorHandlingMiddleware, include_traceback=settings.app.ENVIRONMENT == "development")
    register_exception_handlers(app)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id
            return response
        finally:
            clear_request_id()

    base_path = settings.app.API_BASE_PATH
    app.include_router(health_router, prefix=base_path)
    app.include_router(metrics_router)
    app.include_router(enhance_router, prefix=base_path)
    app.include_router(webhooks_router, prefix=base_path)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "docs": "/docs",
            "health": f"{base_path}/health",
        }

    return app
