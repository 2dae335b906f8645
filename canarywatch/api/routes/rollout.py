"""Rollout configuration, evaluation and history endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from canarywatch.api.deps import ContextDep
from canarywatch.api.schemas import (
    AdjustRequest,
    EvaluateRequest,
    EvaluateResponse,
    HistoryResponse,
    PercentageHistoryResponse,
    PercentagePointResponse,
    PercentageResponse,
    RefreshResponse,
    ScheduleEntry,
    ScheduleResponse,
    StatusRequest,
)
from canarywatch.clock import ensure_utc
from canarywatch.models.config import CanaryConfig
from canarywatch.rollout import rollout_schedule

router = APIRouter(prefix="/rollout", tags=["rollout"])


@router.get("/config", response_model=CanaryConfig)
def get_config(ctx: ContextDep) -> CanaryConfig:
    return ctx.config_store.current


@router.get("/percentage", response_model=PercentageResponse)
def get_percentage(
    ctx: ContextDep,
    at: datetime | None = None,
) -> PercentageResponse:
    when = ensure_utc(at) if at else ctx.clock.now()
    config = ctx.config_store.current
    return PercentageResponse(
        percentage=ctx.config_store.effective_percentage(when),
        canary_percentage=config.canary_percentage,
        status=config.status,
        at=when.isoformat(),
    )


@router.get("/schedule", response_model=ScheduleResponse)
def get_schedule(
    ctx: ContextDep,
    days: int = Query(default=14, ge=0, le=365),
) -> ScheduleResponse:
    schedule = rollout_schedule(ctx.config_store.current, days)
    return ScheduleResponse(
        schedule=[ScheduleEntry(date=day.isoformat(), percentage=pct) for day, pct in schedule]
    )


@router.post("/evaluate", response_model=EvaluateResponse)
def evaluate(
    body: EvaluateRequest,
    ctx: ContextDep,
) -> EvaluateResponse:
    outcome = ctx.orchestrator.evaluate_and_adjust(
        lookback_hours=body.lookback_hours,
        threshold_overrides=body.threshold_overrides or None,
        analyze_only=body.analyze_only,
    )
    return EvaluateResponse(skipped=outcome is None, outcome=outcome)


@router.post("/adjust", response_model=CanaryConfig)
def adjust(
    body: AdjustRequest,
    ctx: ContextDep,
) -> CanaryConfig:
    return ctx.config_store.set_percentage(
        body.percentage, reset_status=body.reset_status, source="api"
    )


@router.post("/status", response_model=CanaryConfig)
def set_status(
    body: StatusRequest,
    ctx: ContextDep,
) -> CanaryConfig:
    return ctx.config_store.set_status(body.status, source="api")


@router.post("/config/refresh", response_model=RefreshResponse)
async def refresh_config(ctx: ContextDep) -> RefreshResponse:
    if not ctx.settings.remote_config_url:
        raise ValueError("No remote config URL configured")
    applied = await ctx.config_store.refresh_async()
    if applied:
        ctx.config_store.save()
    return RefreshResponse(applied=applied, canary_percentage=ctx.config_store.current.canary_percentage)


@router.get("/history", response_model=HistoryResponse)
def get_history(
    ctx: ContextDep,
    limit: int = Query(default=20, ge=1, le=500),
) -> HistoryResponse:
    decisions = ctx.db.list_decisions(limit)
    return HistoryResponse(decisions=decisions, total=len(decisions))


@router.get("/history/percentages", response_model=PercentageHistoryResponse)
def get_percentage_history(ctx: ContextDep) -> PercentageHistoryResponse:
    points = [PercentagePointResponse(**point) for point in ctx.db.percentage_history()]
    return PercentageHistoryResponse(points=points, total=len(points))
