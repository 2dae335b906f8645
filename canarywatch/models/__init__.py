"""Re-exports all Pydantic models."""

from canarywatch.models.assignment import Assignment, Variant
from canarywatch.models.base import CamelModel
from canarywatch.models.config import (
    AnalyticsSection,
    CanaryConfig,
    Distribution,
    EngagementThresholds,
    ErrorThresholds,
    MinSampleSize,
    PageLoadThresholds,
    PercentileThresholds,
    PerformanceThresholds,
    RolloutStatus,
    Thresholds,
)
from canarywatch.models.decision import Decision, RolloutAction
from canarywatch.models.evaluation import EvaluationOutcome
from canarywatch.models.snapshot import (
    EngagementSummary,
    ErrorRecord,
    Event,
    EventType,
    MetricsSnapshot,
    PerformanceSummary,
)

__all__ = [
    "AnalyticsSection",
    "Assignment",
    "CamelModel",
    "CanaryConfig",
    "Decision",
    "Distribution",
    "EngagementSummary",
    "EngagementThresholds",
    "ErrorRecord",
    "ErrorThresholds",
    "EvaluationOutcome",
    "Event",
    "EventType",
    "MetricsSnapshot",
    "MinSampleSize",
    "PageLoadThresholds",
    "PercentileThresholds",
    "PerformanceSummary",
    "PerformanceThresholds",
    "RolloutAction",
    "RolloutStatus",
    "Thresholds",
    "Variant",
]
