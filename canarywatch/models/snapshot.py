"""Ingested events and the per-variant metrics snapshot built from them."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from canarywatch.models.assignment import Variant
from canarywatch.models.base import CamelModel, utcnow


class EventType(StrEnum):
    PAGEVIEW = "pageview"
    ERROR = "error"
    CLICK = "click"
    ENGAGEMENT = "engagementSample"
    PERFORMANCE = "performance"


class Event(CamelModel):
    """One instrumentation record from a client."""

    variant: Variant
    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class ErrorRecord(CamelModel):
    message: str = ""
    timestamp: datetime | None = None


class EngagementSummary(CamelModel):
    """Averaged engagement. Each field is None when no samples were seen."""

    scroll_depth: float | None = None
    duration: float | None = None
    unique_users: int | None = None


class PerformanceSummary(CamelModel):
    """Averaged performance measurements (ms, CLS unitless)."""

    page_load_time: float | None = None
    lcp: float | None = None
    fid: float | None = None
    cls: float | None = None


class MetricsSnapshot(CamelModel):
    """Aggregated metrics for one variant over one evaluation window."""

    variant: Variant | None = None
    pageviews: int = Field(default=0, ge=0)
    errors: list[ErrorRecord] = Field(default_factory=list)
    clicks: int = Field(default=0, ge=0)
    engagement: EngagementSummary | None = None
    performance: PerformanceSummary | None = None
    window_hours: float | None = None

    @field_validator("errors", mode="before")
    @classmethod
    def _expand_error_count(cls, value: object) -> object:
        # Analytics backends often report only a count
        if isinstance(value, bool):
            raise ValueError("errors must be a list or a count")
        if isinstance(value, int):
            if value < 0:
                raise ValueError("error count must not be negative")
            return [ErrorRecord() for _ in range(value)]
        return value

    @property
    def unique_users(self) -> int | None:
        return self.engagement.unique_users if self.engagement else None

    def relevant_errors(self, ignored: list[str]) -> list[ErrorRecord]:
        """Errors whose message contains none of the *ignored* substrings."""
        return [
            err
            for err in self.errors
            if not any(pattern and pattern in err.message for pattern in ignored)
        ]

    def error_rate(self, ignored: list[str]) -> float | None:
        """Relevant errors per pageview, or None when there are no pageviews."""
        if self.pageviews <= 0:
            return None
        return len(self.relevant_errors(ignored)) / self.pageviews
