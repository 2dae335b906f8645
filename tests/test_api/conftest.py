"""FastAPI test client fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from canarywatch.api.app import include_routers
from canarywatch.api.middleware import CorrelationIdMiddleware, add_exception_handlers
from canarywatch.clock import SequenceRandomSource
from canarywatch.context import CanaryContext, build_context

if TYPE_CHECKING:
    from collections.abc import Callable

    from canarywatch.clock import FixedClock
    from canarywatch.config import Settings
    from canarywatch.db import Database


def _create_test_app(ctx: CanaryContext) -> FastAPI:
    """Create a FastAPI app with an injected context (no lifespan)."""
    app = FastAPI(title="canarywatch Test")

    app.state.canary = ctx
    app.state.settings = ctx.settings

    app.add_middleware(CorrelationIdMiddleware)
    add_exception_handlers(app)
    include_routers(app)
    return app


@pytest.fixture()
def canary(settings: Settings, clock: FixedClock, db: Database) -> CanaryContext:
    return build_context(
        settings,
        clock=clock,
        random_source=SequenceRandomSource([10.0, 90.0]),
        db=db,
    )


@pytest.fixture()
def client(canary: CanaryContext) -> TestClient:
    return TestClient(_create_test_app(canary))


@pytest.fixture()
def make_client() -> Callable[[CanaryContext], TestClient]:
    """Build a client around a custom context (e.g. a failing assignment store)."""

    def _make(ctx: CanaryContext) -> TestClient:
        return TestClient(_create_test_app(ctx))

    return _make
