"""Rollout decision produced by the health evaluator."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from canarywatch.models.base import CamelModel


class RolloutAction(StrEnum):
    PROCEED = "PROCEED"
    CAUTION = "CAUTION"
    SLOW_DOWN = "SLOW_DOWN"
    ROLLBACK = "ROLLBACK"
    NEED_MORE_DATA = "NEED_MORE_DATA"
    INCONCLUSIVE = "INCONCLUSIVE"

    @property
    def is_decisive(self) -> bool:
        """True when the evaluation had enough data to judge the canary."""
        return self not in (RolloutAction.NEED_MORE_DATA, RolloutAction.INCONCLUSIVE)


class Decision(CamelModel):
    """Outcome of one health evaluation. Never mutated after creation."""

    action: RolloutAction
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    critical_issues: int = 0
