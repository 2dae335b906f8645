"""Health check and config endpoints."""

from __future__ import annotations

import redis
from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from canarywatch import __version__
from canarywatch.api.deps import ContextDep, SettingsDep
from canarywatch.api.schemas import ConfigCheckResponse, HealthResponse
from canarywatch.assignment import RedisAssignmentStore

router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
def health_check(
    ctx: ContextDep,
) -> HealthResponse:
    db_ok = False
    try:
        db_ok = ctx.db.check_connection()
    except SQLAlchemyError:
        db_ok = False

    redis_ok: bool | None = None
    store = ctx.assignments.store
    if isinstance(store, RedisAssignmentStore):
        try:
            redis_ok = store.ping()
        except redis.RedisError:
            redis_ok = False

    healthy = db_ok and redis_ok is not False
    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=__version__,
        db_connected=db_ok,
        redis_connected=redis_ok,
    )


@router.get("/config/check", response_model=ConfigCheckResponse)
def config_check(
    settings: SettingsDep,
) -> ConfigCheckResponse:
    return ConfigCheckResponse(
        environment=settings.environment,
        configured={
            "posthog": bool(settings.posthog_api_key and settings.posthog_project_id),
            "redis": bool(settings.redis_url),
            "remote_config": bool(settings.remote_config_url),
        },
    )
