"""FastAPI application factory and entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI

from canarywatch.api.middleware import CorrelationIdMiddleware, add_exception_handlers
from canarywatch.api.routes import assignments, events, rollout, system
from canarywatch.config import Settings
from canarywatch.context import build_context
from canarywatch.logging import configure_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the canary context on startup, release it on shutdown."""
    settings = Settings()

    configure_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        environment=settings.environment,
    )

    ctx = build_context(settings)
    if settings.remote_config_url:
        await ctx.config_store.refresh_async()

    app.state.canary = ctx
    app.state.settings = settings

    logger.info(
        "canarywatch API started",
        host=settings.api_host,
        port=settings.api_port,
        environment=settings.environment,
    )
    yield

    ctx.close()
    logger.info("canarywatch API shut down")


def include_routers(app: FastAPI) -> None:
    """Mount every route module under /api/v1."""
    prefix = "/api/v1"
    app.include_router(system.router, prefix=prefix)
    app.include_router(rollout.router, prefix=prefix)
    app.include_router(assignments.router, prefix=prefix)
    app.include_router(events.router, prefix=prefix)


def create_app() -> FastAPI:
    """Application factory."""
    app = FastAPI(
        title="canarywatch",
        description="Canary rollout decision engine API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationIdMiddleware)
    add_exception_handlers(app)

    # Prometheus metrics endpoint
    from prometheus_client import make_asgi_app

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    include_routers(app)
    return app


def main() -> None:
    """Entry point for `canarywatch-api` command."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "canarywatch.api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
    )
