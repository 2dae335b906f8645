"""Operator notifications for rollout state changes (structured log output)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from canarywatch.models.evaluation import EvaluationOutcome

logger = structlog.get_logger()


def notify_console(title: str, message: str, **context: object) -> None:
    logger.warning(title, message=message, **context)


def notify_rollback(outcome: EvaluationOutcome) -> None:
    """Canary was rolled back to its safety floor."""
    notify_console(
        "Canary Rolled Back",
        f"Exposure reduced from {outcome.percentage_before}% to {outcome.percentage_after}%. "
        "Run: canarywatch resume once the issue is fixed",
        action=outcome.decision.action.value,
        reasons=outcome.decision.reasons,
    )


def notify_paused(outcome: EvaluationOutcome) -> None:
    """Canary rollout was paused at its current exposure."""
    notify_console(
        "Canary Rollout Paused",
        f"Exposure frozen at {outcome.percentage_after}%. "
        "Run: canarywatch resume to continue the rollout",
        action=outcome.decision.action.value,
        reasons=outcome.decision.reasons,
    )


def notify_outcome(outcome: EvaluationOutcome) -> None:
    """Dispatch a notification when an applied outcome changed the rollout status."""
    if not outcome.applied or not outcome.status_changed:
        return
    if outcome.status_after.value == "ROLLED_BACK":
        notify_rollback(outcome)
    elif outcome.status_after.value == "PAUSED":
        notify_paused(outcome)
