"""Process-wide wiring of the canary engine components.

One ``CanaryContext`` is built per process (CLI invocation, API app, task
worker) and passed to whatever needs it; nothing here is a module global.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from canarywatch.aggregator import MetricsAggregator
from canarywatch.assignment import AssignmentEngine, InMemoryAssignmentStore, RedisAssignmentStore
from canarywatch.clients.posthog import PostHogClient
from canarywatch.clock import SystemClock, SystemRandomSource
from canarywatch.config_store import ConfigStore
from canarywatch.db import Database
from canarywatch.orchestrator import Orchestrator

if TYPE_CHECKING:
    from canarywatch.config import Settings
    from canarywatch.protocols import AssignmentStorePort, ClockPort, RandomSourcePort

logger = structlog.get_logger()


@dataclass
class CanaryContext:
    settings: Settings
    clock: ClockPort
    db: Database
    config_store: ConfigStore
    assignments: AssignmentEngine
    aggregator: MetricsAggregator
    orchestrator: Orchestrator
    analytics: PostHogClient | None = None

    def close(self) -> None:
        self.db.close()


def _assignment_store(settings: Settings) -> AssignmentStorePort:
    if settings.redis_url:
        logger.debug("Using Redis assignment store")
        return RedisAssignmentStore.from_url(settings.redis_url)
    return InMemoryAssignmentStore()


def build_context(
    settings: Settings,
    clock: ClockPort | None = None,
    random_source: RandomSourcePort | None = None,
    store: AssignmentStorePort | None = None,
    db: Database | None = None,
) -> CanaryContext:
    """Build every component from *settings*; injected parts replace the defaults."""
    clock = clock or SystemClock()
    settings.ensure_data_dir()
    if db is None:
        db = Database(settings.db_path, worker_id=settings.worker_id)
        db.init_schema()

    config_store = ConfigStore(settings, clock=clock, history=db)
    config_store.load()

    aggregator = MetricsAggregator(
        ignored_errors=config_store.thresholds.errors.ignored_errors,
        clock=clock,
        event_log=db if settings.shared_event_log else None,
    )

    analytics: PostHogClient | None = None
    if settings.posthog_api_key and settings.posthog_project_id:
        analytics = PostHogClient(
            api_key=settings.posthog_api_key,
            project_id=settings.posthog_project_id,
            host=settings.posthog_host,
            max_retries=settings.max_retries,
        )

    orchestrator = Orchestrator(
        config_store,
        aggregator,
        snapshot_source=analytics,
        history=db,
        clock=clock,
        lookback_hours=settings.lookback_hours,
        reset_metrics=settings.reset_metrics_after_evaluation,
    )

    return CanaryContext(
        settings=settings,
        clock=clock,
        db=db,
        config_store=config_store,
        assignments=AssignmentEngine(
            store or _assignment_store(settings),
            random_source=random_source or SystemRandomSource(),
            clock=clock,
        ),
        aggregator=aggregator,
        orchestrator=orchestrator,
        analytics=analytics,
    )
