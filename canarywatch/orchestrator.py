"""Evaluate-and-adjust cycle: snapshots -> health decision -> rollout config."""

from __future__ import annotations

import threading
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from canarywatch.clients.posthog import AnalyticsUnavailableError
from canarywatch.clock import SystemClock, ensure_utc
from canarywatch.config_store import override_thresholds
from canarywatch.evaluator import HealthEvaluator
from canarywatch.metrics import (
    evaluation_duration_seconds,
    evaluations_skipped_total,
    evaluations_total,
)
from canarywatch.models.assignment import Variant
from canarywatch.models.config import RolloutStatus
from canarywatch.models.decision import RolloutAction
from canarywatch.models.evaluation import EvaluationOutcome
from canarywatch.notifications import notify_outcome
from canarywatch.rollout import current_percentage

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from canarywatch.aggregator import MetricsAggregator
    from canarywatch.config_store import ConfigStore
    from canarywatch.models.snapshot import MetricsSnapshot
    from canarywatch.protocols import ClockPort, HistoryPort, SnapshotSourcePort

logger = structlog.get_logger()


class Orchestrator:
    """Runs one evaluation cycle at a time and writes the result back to the config.

    Ticks that arrive while a cycle is still running are skipped, never queued.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        aggregator: MetricsAggregator,
        *,
        snapshot_source: SnapshotSourcePort | None = None,
        history: HistoryPort | None = None,
        evaluator: HealthEvaluator | None = None,
        clock: ClockPort | None = None,
        lookback_hours: float = 48,
        reset_metrics: bool = True,
    ) -> None:
        self.config_store = config_store
        self.aggregator = aggregator
        self.snapshot_source = snapshot_source
        self.history = history
        self.evaluator = evaluator or HealthEvaluator()
        self._clock = clock or SystemClock()
        self.lookback_hours = lookback_hours
        self.reset_metrics = reset_metrics
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def evaluate_and_adjust(
        self,
        lookback_hours: float | None = None,
        threshold_overrides: Mapping[str, Any] | None = None,
        analyze_only: bool = False,
        now: datetime | None = None,
    ) -> EvaluationOutcome | None:
        """Run one cycle. Returns None when skipped because another is in flight.

        Raises ValueError when *threshold_overrides* produce invalid thresholds.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Evaluation already in progress, skipping tick")
            evaluations_skipped_total.inc()
            return None
        try:
            structlog.contextvars.bind_contextvars(evaluation_id=uuid.uuid4().hex[:12])
            with evaluation_duration_seconds.time():
                return self._run(lookback_hours, threshold_overrides, analyze_only, now)
        finally:
            structlog.contextvars.unbind_contextvars("evaluation_id")
            self._lock.release()

    def _run(
        self,
        lookback_hours: float | None,
        threshold_overrides: Mapping[str, Any] | None,
        analyze_only: bool,
        now: datetime | None,
    ) -> EvaluationOutcome:
        at = ensure_utc(now) if now else self._clock.now()
        config = self.config_store.current
        thresholds = override_thresholds(config.thresholds, threshold_overrides)
        if lookback_hours is None:
            lookback_hours = self.lookback_hours
        stable, canary = self._snapshots(at, lookback_hours)

        decision = self.evaluator.evaluate(stable, canary, thresholds)
        evaluations_total.labels(action=decision.action.value).inc()

        status_before = config.status
        percentage_before = current_percentage(config, at)
        logger.info(
            "Canary evaluated",
            action=decision.action.value,
            confidence=decision.confidence,
            reasons=decision.reasons,
            critical_issues=decision.critical_issues,
            analyze_only=analyze_only,
        )

        if analyze_only:
            return EvaluationOutcome(
                decision=decision,
                status_before=status_before,
                status_after=status_before,
                percentage_before=percentage_before,
                percentage_after=percentage_before,
                applied=False,
                stable=stable,
                canary=canary,
                evaluated_at=at,
            )

        # Another process may have changed the rollout while metrics were gathered
        config = self.config_store.current
        status_before = config.status
        percentage_before = current_percentage(config, at)

        changes: dict[str, Any] = {
            "last_evaluation_date": at,
            "last_evaluation_result": decision,
        }
        if decision.action == RolloutAction.ROLLBACK:
            changes["status"] = RolloutStatus.ROLLED_BACK
        elif decision.action == RolloutAction.SLOW_DOWN and status_before == RolloutStatus.ACTIVE:
            # SLOW_DOWN pauses only an ACTIVE rollout (ROLLED_BACK keeps its floor) and
            # freezes the ceiling at the exposure it had reached
            changes["status"] = RolloutStatus.PAUSED
            changes["canary_percentage"] = percentage_before

        updated = self.config_store.update_distribution("automated", **changes)
        outcome = EvaluationOutcome(
            decision=decision,
            status_before=status_before,
            status_after=updated.status,
            percentage_before=percentage_before,
            percentage_after=current_percentage(updated, at),
            applied=True,
            stable=stable,
            canary=canary,
            evaluated_at=at,
        )

        if self.history is not None:
            try:
                self.history.record_decision(outcome)
            except SQLAlchemyError as exc:
                logger.error("Failed to record evaluation history", error=str(exc))

        if outcome.status_changed:
            logger.warning(
                "Rollout status changed",
                status_before=status_before.value,
                status_after=outcome.status_after.value,
                percentage_after=outcome.percentage_after,
            )
        notify_outcome(outcome)

        if self.reset_metrics and self.snapshot_source is None and decision.action.is_decisive:
            self.aggregator.reset(at)
        return outcome

    def _snapshots(
        self, at: datetime, lookback_hours: float
    ) -> tuple[MetricsSnapshot | None, MetricsSnapshot | None]:
        if self.snapshot_source is None:
            snapshots = self.aggregator.snapshots(at)
            return snapshots[Variant.STABLE], snapshots[Variant.CANARY]

        start = at - timedelta(hours=lookback_hours)
        try:
            snapshots = self.snapshot_source.fetch_snapshots(start, at)
        except AnalyticsUnavailableError as exc:
            logger.warning("Analytics unavailable, evaluation will be inconclusive", error=str(exc))
            return None, None
        return snapshots.get(Variant.STABLE), snapshots.get(Variant.CANARY)
