"""Huey task queue: scheduled evaluate-and-adjust and remote config refresh."""

from __future__ import annotations

from typing import Any

import structlog
from huey import SqliteHuey, crontab

from canarywatch.config import Settings

logger = structlog.get_logger()

# Initialize Huey with settings
_settings = Settings()
_settings.ensure_data_dir()

huey = SqliteHuey(
    name="canarywatch",
    filename=str(_settings.huey_db_path),
    immediate=_settings.huey_immediate,
)


def evaluation_schedule(interval_minutes: int) -> Any:
    """Crontab for an evaluation interval given in minutes (rounded to whole hours past 60)."""
    if interval_minutes <= 0:
        raise ValueError("evaluation interval must be positive")
    if interval_minutes < 60:
        return crontab(minute=f"*/{interval_minutes}")
    hours = max(1, interval_minutes // 60)
    return crontab(minute="0", hour=f"*/{hours}")


def _evaluate(
    lookback_hours: float | None = None,
    threshold_overrides: dict[str, Any] | None = None,
    analyze_only: bool = False,
) -> dict[str, Any] | None:
    """Inner logic for one evaluation (not wrapped by Huey)."""
    from canarywatch.context import build_context

    settings = Settings()
    ctx = build_context(settings)
    try:
        ctx.config_store.refresh()
        outcome = ctx.orchestrator.evaluate_and_adjust(
            lookback_hours=lookback_hours,
            threshold_overrides=threshold_overrides,
            analyze_only=analyze_only,
        )
        if outcome is None:
            return None
        return outcome.model_dump(mode="json", by_alias=True)
    finally:
        ctx.close()


@huey.task()  # type: ignore[untyped-decorator]
def evaluate_task(
    lookback_hours: float | None = None,
    threshold_overrides: dict[str, Any] | None = None,
    analyze_only: bool = False,
) -> dict[str, Any] | None:
    """Run one evaluate-and-adjust cycle on demand.

    Returns the outcome as a camelCase dict, or None when the run was skipped.
    """
    return _evaluate(lookback_hours, threshold_overrides, analyze_only)


@huey.periodic_task(evaluation_schedule(_settings.evaluation_interval_minutes))  # type: ignore[untyped-decorator]
@huey.lock_task("periodic-evaluation-lock")  # type: ignore[untyped-decorator]
def periodic_evaluation() -> dict[str, Any] | None:
    """Scheduled evaluation. lock_task keeps two workers from evaluating at once."""
    logger.info("Periodic evaluation triggered")
    return _evaluate()


@huey.periodic_task(crontab(minute="*/5"))  # type: ignore[untyped-decorator]
def periodic_config_refresh() -> bool:
    """Pull the remote config overlay every five minutes when one is configured."""
    settings = Settings()
    if not settings.remote_config_url:
        return False
    from canarywatch.context import build_context

    ctx = build_context(settings)
    try:
        applied = ctx.config_store.refresh()
        if applied:
            ctx.config_store.save()
        return applied
    finally:
        ctx.close()
