"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from canarywatch.aggregator import MetricsAggregator
from canarywatch.clock import FixedClock
from canarywatch.config import Settings
from canarywatch.config_store import ConfigStore
from canarywatch.db import Database

# All time-dependent fixtures share this instant
NOW = datetime(2025, 5, 10, 12, 0, tzinfo=UTC)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        environment="production",
        data_dir=tmp_path,
        remote_config_url="",
        redis_url="",
        posthog_api_key="",
        posthog_project_id="",
        log_level="DEBUG",
        log_format="console",
        max_retries=1,
        worker_id="test-worker",
        _env_file=None,
    )


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture()
def db(tmp_path) -> Database:
    db = Database(tmp_path / "test.db", worker_id="test-worker")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture()
def config_store(settings: Settings, clock: FixedClock, db: Database) -> ConfigStore:
    return ConfigStore(settings, clock=clock, history=db)


@pytest.fixture()
def aggregator(clock: FixedClock) -> MetricsAggregator:
    return MetricsAggregator(
        ignored_errors=["Script error.", "ResizeObserver loop limit exceeded"],
        clock=clock,
    )
