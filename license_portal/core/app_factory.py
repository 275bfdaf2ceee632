"""Application factory for the FastAPI app.

Centralizes app construction (state, lifespan, middleware, handlers,
routers) so tests can build isolated apps with their own limiter registry.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from license_portal.api.routes import health_router, rate_limit_router
from license_portal.core.config import settings
from license_portal.core.exception_handlers import setup_exception_handlers
from license_portal.core.logging import configure_logging
from license_portal.core.middleware import request_id_middleware
from license_portal.core.openapi import apply_openapi_customizations
from license_portal.core.rate_limit import rate_limit_middleware
from license_portal.services.cleanup_sweeper import CleanupSweeper
from license_portal.services.rate_limit_registry import RateLimiterRegistry, build_registry

logger = logging.getLogger(__name__)


def create_app(registry: RateLimiterRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        registry: Limiter registry to use; built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    registry = registry or build_registry(settings.rate_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper = CleanupSweeper(registry, settings.rate_limit.cleanup_interval_seconds)
        app.state.cleanup_sweeper = sweeper
        await sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title="License Portal API",
        description=(
            "License and credit management API. Every /api route is protected "
            "by an in-process sliding-window rate limiter with per-route presets; "
            "responses carry X-RateLimit-* headers and rejected requests get 429 "
            "with Retry-After."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.rate_limiters = registry

    # Last registered runs first: request id wraps rate limiting
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(rate_limit_router, prefix="/api")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
