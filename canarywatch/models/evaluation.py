"""Result of one orchestrated evaluate-and-adjust cycle."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from canarywatch.models.base import CamelModel, utcnow
from canarywatch.models.config import RolloutStatus
from canarywatch.models.decision import Decision
from canarywatch.models.snapshot import MetricsSnapshot


class EvaluationOutcome(CamelModel):
    decision: Decision
    status_before: RolloutStatus
    status_after: RolloutStatus
    percentage_before: int
    percentage_after: int
    applied: bool = True
    stable: MetricsSnapshot | None = None
    canary: MetricsSnapshot | None = None
    evaluated_at: datetime = Field(default_factory=utcnow)

    @property
    def status_changed(self) -> bool:
        return self.status_before != self.status_after
