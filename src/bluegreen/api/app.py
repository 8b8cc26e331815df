"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bluegreen.api.dependencies.services import ServiceContainer
from bluegreen.api.middleware.correlation import CorrelationIdMiddleware
from bluegreen.api.routes import (
    deployment_routes,
    health_routes,
    traffic_routes,
)
from bluegreen.config import get_settings, Settings
from bluegreen.infrastructure.observability.tracing import setup_tracing


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    container = ServiceContainer.get_instance()
    settings = container.settings
    logger.info(
        "application_starting",
        environment=settings.environment.value,
        debug=settings.debug,
    )
    setup_tracing(settings.observability, settings.environment)
    await container.startup()

    yield

    logger.info("application_shutting_down")
    await container.shutdown()
    logger.info("application_shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Blue/Green Deployment Controller",
        description="Zero-downtime blue/green deployments with health-gated traffic shifts",
        version="1.0.0",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    # Middleware (order matters - first added = outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    # Routes
    app.include_router(health_routes.router)
    app.include_router(deployment_routes.router, prefix=settings.api_prefix)
    app.include_router(traffic_routes.router, prefix=settings.api_prefix)

    return app
