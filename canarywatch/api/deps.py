"""FastAPI dependency injection."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from canarywatch.config import Settings
from canarywatch.context import CanaryContext


def _get_context(request: Request) -> CanaryContext:
    """Get the canary context from app state."""
    return request.app.state.canary  # type: ignore[no-any-return]


def _get_settings(request: Request) -> Settings:
    """Get the settings instance from app state."""
    return request.app.state.settings  # type: ignore[no-any-return]


ContextDep = Annotated[CanaryContext, Depends(_get_context)]
SettingsDep = Annotated[Settings, Depends(_get_settings)]
