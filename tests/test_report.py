"""Tests for the markdown evaluation report and operator notifications."""

from __future__ import annotations

from datetime import UTC, datetime

from structlog.testing import capture_logs

from canarywatch.models.config import RolloutStatus
from canarywatch.models.decision import Decision, RolloutAction
from canarywatch.models.evaluation import EvaluationOutcome
from canarywatch.models.snapshot import ErrorRecord, MetricsSnapshot
from canarywatch.notifications import notify_outcome
from canarywatch.report import render_markdown

AT = datetime(2025, 5, 10, 12, 0, tzinfo=UTC)


def _outcome(action: RolloutAction, **kwargs) -> EvaluationOutcome:
    values = {
        "decision": Decision(action=action, confidence=0.9, reasons=["Something happened"]),
        "status_before": RolloutStatus.ACTIVE,
        "status_after": RolloutStatus.ACTIVE,
        "percentage_before": 10,
        "percentage_after": 10,
        "evaluated_at": AT,
    }
    values.update(kwargs)
    return EvaluationOutcome(**values)


class TestRenderMarkdown:
    def test_rollback_report(self):
        outcome = _outcome(
            RolloutAction.ROLLBACK,
            status_after=RolloutStatus.ROLLED_BACK,
            percentage_after=2,
            stable=MetricsSnapshot(pageviews=1000, errors=5),
            canary=MetricsSnapshot(pageviews=1000, errors=50),
        )
        report = render_markdown(outcome)
        assert report.startswith("# Canary Deployment Analysis")
        assert "| Stable | 1000 | 5 | 0.50% |" in report
        assert "| Canary | 1000 | 50 | 5.00% |" in report
        assert "**Recommended action**: ROLLBACK" in report
        assert "- Something happened" in report
        assert "Status ACTIVE -> ROLLED_BACK, exposure 10% -> 2%" in report

    def test_ignored_errors_excluded_from_table(self):
        canary = MetricsSnapshot(
            pageviews=100,
            errors=[ErrorRecord(message="Script error."), ErrorRecord(message="boom")],
        )
        outcome = _outcome(RolloutAction.CAUTION, canary=canary)
        report = render_markdown(outcome, ["Script error."])
        assert "| Canary | 100 | 1 | 1.00% |" in report

    def test_missing_metrics(self):
        report = render_markdown(_outcome(RolloutAction.INCONCLUSIVE))
        assert "| Stable | n/a | n/a | n/a |" in report

    def test_no_change(self):
        report = render_markdown(_outcome(RolloutAction.PROCEED))
        assert "No changes to canary percentage were needed" in report

    def test_analysis_only(self):
        report = render_markdown(_outcome(RolloutAction.ROLLBACK, applied=False))
        assert "Analysis only; configuration was not changed" in report


class TestNotifications:
    def test_rollback_notifies(self):
        outcome = _outcome(
            RolloutAction.ROLLBACK, status_after=RolloutStatus.ROLLED_BACK, percentage_after=2
        )
        with capture_logs() as logs:
            notify_outcome(outcome)
        assert [entry["event"] for entry in logs] == ["Canary Rolled Back"]
        assert logs[0]["log_level"] == "warning"

    def test_pause_notifies(self):
        outcome = _outcome(RolloutAction.SLOW_DOWN, status_after=RolloutStatus.PAUSED)
        with capture_logs() as logs:
            notify_outcome(outcome)
        assert len(logs) == 1

    def test_no_status_change_is_quiet(self):
        with capture_logs() as logs:
            notify_outcome(_outcome(RolloutAction.CAUTION))
        assert logs == []
