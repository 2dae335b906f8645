"""API request/response schemas (separate from domain models)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from canarywatch.models.assignment import Variant
from canarywatch.models.config import RolloutStatus
from canarywatch.models.evaluation import EvaluationOutcome

# --- Responses ---


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    db_connected: bool
    redis_connected: bool | None = None


class ConfigCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: str
    configured: dict[str, bool]


class PercentageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    percentage: int
    canary_percentage: int
    status: RolloutStatus
    at: str


class ScheduleEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    percentage: int


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    schedule: list[ScheduleEntry]


class EvaluateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    skipped: bool
    outcome: EvaluationOutcome | None = None


class HistoryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    decisions: list[EvaluationOutcome]
    total: int


class PercentagePointResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    percentage: int
    effective_percentage: int
    status: str
    source: str
    version: str


class PercentageHistoryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    points: list[PercentagePointResponse]
    total: int


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    applied: bool
    canary_percentage: int


class IngestResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    accepted: int
    rejected: int


# --- Requests ---


class EvaluateRequest(BaseModel):
    lookback_hours: float | None = Field(default=None, gt=0)
    threshold_overrides: dict[str, Any] = Field(default_factory=dict)
    analyze_only: bool = False


class AdjustRequest(BaseModel):
    percentage: float = Field(ge=0, le=100)
    reset_status: bool | None = None


class StatusRequest(BaseModel):
    status: RolloutStatus


class VariantRequest(BaseModel):
    variant: Variant


class EventBatchRequest(BaseModel):
    # Raw camelCase events; each one is validated individually so one bad record
    # does not reject the batch
    events: list[dict[str, Any]] = Field(default_factory=list)
