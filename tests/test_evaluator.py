"""Tests for the health evaluator decision rules."""

from __future__ import annotations

import pytest

from canarywatch.evaluator import HealthEvaluator, evaluate
from canarywatch.models.config import Thresholds
from canarywatch.models.decision import RolloutAction
from canarywatch.models.snapshot import (
    EngagementSummary,
    ErrorRecord,
    MetricsSnapshot,
    PerformanceSummary,
)


def _snapshot(pageviews: int = 1000, errors: int | list = 0, **kwargs) -> MetricsSnapshot:
    return MetricsSnapshot(pageviews=pageviews, errors=errors, **kwargs)


def _thresholds(**overrides) -> Thresholds:
    return Thresholds.model_validate(overrides)


@pytest.fixture()
def evaluator() -> HealthEvaluator:
    return HealthEvaluator()


class TestDataSufficiency:
    def test_missing_snapshot_is_inconclusive(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(None, _snapshot(), Thresholds())
        assert decision.action == RolloutAction.INCONCLUSIVE
        assert decision.confidence == 0.0

    def test_low_canary_pageviews_need_more_data(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(_snapshot(1000), _snapshot(10), Thresholds())
        assert decision.action == RolloutAction.NEED_MORE_DATA
        assert decision.confidence == 0.3
        assert decision.reasons == ["Insufficient canary pageviews: 10 < 100"]

    def test_low_unique_users_need_more_data(self, evaluator: HealthEvaluator):
        stable = _snapshot(engagement=EngagementSummary(unique_users=30))
        canary = _snapshot(engagement=EngagementSummary(unique_users=80))
        decision = evaluator.evaluate(stable, canary, Thresholds())
        assert decision.action == RolloutAction.NEED_MORE_DATA
        assert "stable unique users" in decision.reasons[0]

    def test_unique_users_skipped_when_unknown(self, evaluator: HealthEvaluator):
        stable = _snapshot(engagement=EngagementSummary(unique_users=30))
        decision = evaluator.evaluate(stable, _snapshot(), Thresholds())
        assert decision.action == RolloutAction.PROCEED

    def test_hours_of_data_gate(self, evaluator: HealthEvaluator):
        thresholds = _thresholds(minSampleSize={"hoursOfData": 24})
        decision = evaluator.evaluate(
            _snapshot(window_hours=48), _snapshot(window_hours=2), thresholds
        )
        assert decision.action == RolloutAction.NEED_MORE_DATA
        assert "canary data window" in decision.reasons[0]

    def test_hours_of_data_disabled_by_default(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(window_hours=0.5), _snapshot(window_hours=0.5), Thresholds()
        )
        assert decision.action == RolloutAction.PROCEED


class TestErrors:
    def test_error_spike_is_rollback(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(1000, 5),
            _snapshot(1000, 50),
            _thresholds(errors={"maxErrorRate": 0.02, "criticalErrors": 0.005}),
        )
        assert decision.action == RolloutAction.ROLLBACK
        assert decision.confidence == 0.9
        assert decision.critical_issues == 1
        assert any(reason.startswith("Critical: Error rate") for reason in decision.reasons)

    def test_error_spike_without_critical_bound_is_caution(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(1000, 5),
            _snapshot(1000, 50),
            _thresholds(errors={"maxErrorRate": 0.02, "criticalErrors": 0.5}),
        )
        assert decision.action == RolloutAction.CAUTION
        assert decision.critical_issues == 0
        assert len(decision.reasons) == 2

    def test_zero_stable_error_rate_is_a_baseline(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(_snapshot(1000, 0), _snapshot(1000, 10), Thresholds())
        assert decision.action == RolloutAction.CAUTION
        assert decision.reasons == ["Error rate increased: 1.00% vs 0.00%"]

    def test_ignored_errors_do_not_count(self, evaluator: HealthEvaluator):
        noise = [ErrorRecord(message="Script error.") for _ in range(100)]
        decision = evaluator.evaluate(_snapshot(1000, 0), _snapshot(1000, noise), Thresholds())
        assert decision.action == RolloutAction.PROCEED


class TestPerformance:
    def test_page_load_regression_is_caution(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(performance=PerformanceSummary(page_load_time=1000)),
            _snapshot(performance=PerformanceSummary(page_load_time=1500)),
            Thresholds(),
        )
        assert decision.action == RolloutAction.CAUTION
        assert decision.reasons == ["Page load time degraded: 1500ms vs 1000ms"]

    def test_page_load_above_critical_is_rollback(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(performance=PerformanceSummary(page_load_time=1000)),
            _snapshot(performance=PerformanceSummary(page_load_time=6000)),
            Thresholds(),
        )
        assert decision.action == RolloutAction.ROLLBACK
        assert decision.reasons[0].startswith("Critical: Page load time degraded")

    def test_three_issues_slow_down(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(performance=PerformanceSummary(page_load_time=1000, lcp=2500, fid=100)),
            _snapshot(performance=PerformanceSummary(page_load_time=1300, lcp=3200, fid=140)),
            Thresholds(),
        )
        assert decision.action == RolloutAction.SLOW_DOWN
        assert decision.confidence == 0.7
        assert len(decision.reasons) == 3

    def test_cls_increase(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(performance=PerformanceSummary(cls=0.05)),
            _snapshot(performance=PerformanceSummary(cls=0.1)),
            Thresholds(),
        )
        assert decision.reasons == ["CLS increased: 0.100 vs 0.050"]

    def test_zero_or_missing_baseline_skipped(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(performance=PerformanceSummary(page_load_time=0, lcp=None)),
            _snapshot(performance=PerformanceSummary(page_load_time=4000, lcp=9000)),
            Thresholds(),
        )
        assert decision.action == RolloutAction.PROCEED

    def test_within_ratio_is_fine(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(performance=PerformanceSummary(page_load_time=1000, fid=100)),
            _snapshot(performance=PerformanceSummary(page_load_time=1150, fid=125)),
            Thresholds(),
        )
        assert decision.action == RolloutAction.PROCEED


class TestEngagement:
    def test_scroll_depth_drop(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(engagement=EngagementSummary(scroll_depth=60, duration=120)),
            _snapshot(engagement=EngagementSummary(scroll_depth=40, duration=110)),
            Thresholds(),
        )
        assert decision.action == RolloutAction.CAUTION
        assert decision.reasons == ["Scroll depth dropped: 40.0% vs 60.0%"]

    def test_session_duration_drop(self, evaluator: HealthEvaluator):
        decision = evaluator.evaluate(
            _snapshot(engagement=EngagementSummary(duration=100)),
            _snapshot(engagement=EngagementSummary(duration=50)),
            Thresholds(),
        )
        assert decision.reasons == ["Session duration dropped: 50s vs 100s"]


class TestDecision:
    def test_identical_snapshots_proceed(self, evaluator: HealthEvaluator):
        snapshot = _snapshot(
            1000,
            5,
            performance=PerformanceSummary(page_load_time=1200, lcp=2000, fid=80, cls=0.05),
            engagement=EngagementSummary(scroll_depth=55, duration=90, unique_users=300),
        )
        decision = evaluator.evaluate(snapshot, snapshot, Thresholds())
        assert decision.action == RolloutAction.PROCEED
        assert decision.confidence == 0.8
        assert decision.reasons == ["All metrics within acceptable range"]
        assert decision.critical_issues == 0

    def test_evaluate_is_pure(self, evaluator: HealthEvaluator):
        stable = _snapshot(1000, 5)
        canary = _snapshot(1000, 50)
        thresholds = Thresholds()
        first = evaluator.evaluate(stable, canary, thresholds)
        second = evaluator.evaluate(stable, canary, thresholds)
        assert first == second
        assert stable == _snapshot(1000, 5)

    def test_module_level_shortcut(self):
        decision = evaluate(_snapshot(), _snapshot(), Thresholds())
        assert decision.action == RolloutAction.PROCEED
