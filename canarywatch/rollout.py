"""Gradual rollout: turn a config and a point in time into an exposure percentage."""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, time, timedelta

from canarywatch.clock import ensure_utc
from canarywatch.models.config import CanaryConfig, Distribution, RolloutStatus

_ONE_DAY = timedelta(days=1)


def _distribution(config: CanaryConfig | Distribution) -> Distribution:
    return config.distribution if isinstance(config, CanaryConfig) else config


def days_elapsed(start: date, now: datetime) -> int:
    """Whole days since midnight UTC of *start*; negative before it."""
    started = datetime.combine(start, time.min, tzinfo=UTC)
    return math.floor((ensure_utc(now) - started) / _ONE_DAY)


def current_percentage(config: CanaryConfig | Distribution, now: datetime) -> int:
    """Effective canary exposure for *now*, always within [0, canary_percentage].

    A rolled-back canary keeps only its safety floor, a paused one stays at
    the configured percentage, and a gradual rollout ramps linearly from the
    start date over the rollout period, capped by the configured percentage.
    """
    dist = _distribution(config)
    ceiling = dist.canary_percentage

    if dist.status == RolloutStatus.ROLLED_BACK:
        return min(dist.safety_floor_percentage, ceiling)
    if dist.status == RolloutStatus.PAUSED:
        return ceiling
    if not dist.gradual_rollout:
        return ceiling

    days = days_elapsed(dist.start_date, now)
    if days < 0:
        return 0
    # days * 100 first keeps the division exact for whole-number periods
    linear = min(100, math.floor(days * 100 / dist.rollout_period_days))
    return min(linear, ceiling)


def rollout_schedule(
    config: CanaryConfig | Distribution, days: int, start: date | None = None
) -> list[tuple[date, int]]:
    """``(day, percentage)`` for each day from *start* (default: rollout start)."""
    first = start or _distribution(config).start_date
    schedule = []
    for offset in range(days + 1):
        day = first + timedelta(days=offset)
        at = datetime.combine(day, time.min, tzinfo=UTC)
        schedule.append((day, current_percentage(config, at)))
    return schedule
