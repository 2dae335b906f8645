"""Canary configuration document: distribution settings and metric thresholds."""

from __future__ import annotations

import math
from datetime import UTC, date, datetime
from enum import StrEnum

from pydantic import AliasChoices, Field, field_validator

from canarywatch.models.base import CamelModel
from canarywatch.models.decision import Decision

DEFAULT_ROLLOUT_PERIOD_DAYS = 7.0


def _today() -> date:
    return datetime.now(UTC).date()


def clamp_percentage(value: object) -> int:
    """Coerce *value* to an integer percentage in [0, 100].

    Raises ValueError for values that are not numeric at all.
    """
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"percentage must be numeric, got {value!r}") from exc
    if math.isnan(number):
        raise ValueError("percentage must not be NaN")
    if math.isinf(number):
        return 0 if number < 0 else 100
    return max(0, min(100, math.floor(number)))


class RolloutStatus(StrEnum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ROLLED_BACK = "ROLLED_BACK"


# --- Thresholds ---


class PageLoadThresholds(CamelModel):
    p50: float = 1500.0
    p90: float = 3000.0
    critical_threshold: float = 5000.0


class PercentileThresholds(CamelModel):
    p50: float
    p90: float


class PerformanceThresholds(CamelModel):
    """Performance bounds in milliseconds (CLS is unitless)."""

    page_load: PageLoadThresholds = Field(default_factory=PageLoadThresholds)
    lcp: PercentileThresholds = Field(
        default_factory=lambda: PercentileThresholds(p50=2500.0, p90=4000.0)
    )
    fid: PercentileThresholds = Field(
        default_factory=lambda: PercentileThresholds(p50=100.0, p90=300.0)
    )
    cls: PercentileThresholds = Field(
        default_factory=lambda: PercentileThresholds(p50=0.1, p90=0.25)
    )


class ErrorThresholds(CamelModel):
    max_error_rate: float = 0.02
    critical_errors: float = 0.005
    ignored_errors: list[str] = Field(
        default_factory=lambda: ["Script error.", "ResizeObserver loop limit exceeded"]
    )


class EngagementThresholds(CamelModel):
    min_scroll_depth: float = 30.0
    min_session_duration: float = 60.0
    bounce_rate_threshold: float = 0.6


class MinSampleSize(CamelModel):
    """Sufficiency gate. ``hours_of_data`` of 0 disables the time-window check."""

    page_views: int = 100
    unique_users: int = 50
    hours_of_data: float = 0.0


class Thresholds(CamelModel):
    performance: PerformanceThresholds = Field(default_factory=PerformanceThresholds)
    errors: ErrorThresholds = Field(default_factory=ErrorThresholds)
    engagement: EngagementThresholds = Field(default_factory=EngagementThresholds)
    min_sample_size: MinSampleSize = Field(default_factory=MinSampleSize)


# --- Distribution ---


class Distribution(CamelModel):
    """How much traffic the canary receives and where the rollout stands.

    Legacy keys (``rolloutPeriod``, ``initialDate``, ``safetyThreshold``) are
    accepted on input; output always uses the current names.
    """

    canary_percentage: int = 5
    gradual_rollout: bool = True
    rollout_period_days: float = Field(
        default=DEFAULT_ROLLOUT_PERIOD_DAYS,
        alias="rolloutPeriodDays",
        validation_alias=AliasChoices(
            "rolloutPeriodDays", "rolloutPeriod", "rollout_period_days"
        ),
    )
    start_date: date = Field(
        default_factory=_today,
        alias="startDate",
        validation_alias=AliasChoices("startDate", "initialDate", "start_date"),
    )
    safety_floor_percentage: int = Field(
        default=2,
        alias="safetyFloorPercentage",
        validation_alias=AliasChoices(
            "safetyFloorPercentage", "safetyThreshold", "safety_floor_percentage"
        ),
    )
    status: RolloutStatus = RolloutStatus.ACTIVE
    last_evaluation_date: datetime | None = None
    last_evaluation_result: Decision | None = None

    @field_validator("canary_percentage", "safety_floor_percentage", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> int:
        return clamp_percentage(value)

    @field_validator("rollout_period_days", mode="before")
    @classmethod
    def _positive_period(cls, value: object) -> float:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValueError(f"rollout period must be numeric, got {value!r}") from exc
        if math.isnan(number) or number <= 0:
            return DEFAULT_ROLLOUT_PERIOD_DAYS
        return number

    @field_validator("start_date", mode="before")
    @classmethod
    def _date_only(cls, value: object) -> object:
        # Accept full ISO timestamps ("2025-05-01T00:00:00Z") as well as plain dates
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value


class AnalyticsSection(CamelModel):
    debug: bool = False
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    endpoint: str | None = None


class CanaryConfig(CamelModel):
    """The full configuration document, as persisted and fetched remotely."""

    canary_version: str = "1.0.0"
    distribution: Distribution = Field(default_factory=Distribution)
    feature_flags: dict[str, bool] = Field(default_factory=dict)
    analytics: AnalyticsSection = Field(default_factory=AnalyticsSection)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    last_updated: datetime | None = None
    update_source: str = "default"

    # Read-only accessors over the distribution section

    @property
    def canary_percentage(self) -> int:
        return self.distribution.canary_percentage

    @property
    def gradual_rollout(self) -> bool:
        return self.distribution.gradual_rollout

    @property
    def rollout_period_days(self) -> float:
        return self.distribution.rollout_period_days

    @property
    def start_date(self) -> date:
        return self.distribution.start_date

    @property
    def safety_floor_percentage(self) -> int:
        return self.distribution.safety_floor_percentage

    @property
    def status(self) -> RolloutStatus:
        return self.distribution.status

    def with_distribution(self, **changes: object) -> CanaryConfig:
        """Return a copy with the given distribution fields replaced and re-validated."""
        distribution = Distribution.model_validate({**self.distribution.model_dump(), **changes})
        return self.model_copy(update={"distribution": distribution})
