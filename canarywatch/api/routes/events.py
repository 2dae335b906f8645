"""Event ingestion and live snapshot endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from canarywatch.api.deps import ContextDep
from canarywatch.api.schemas import EventBatchRequest, IngestResponse
from canarywatch.models.assignment import Variant
from canarywatch.models.snapshot import MetricsSnapshot

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=IngestResponse)
def ingest_events(
    body: EventBatchRequest,
    ctx: ContextDep,
) -> IngestResponse:
    accepted, rejected = ctx.aggregator.ingest(body.events)
    return IngestResponse(accepted=accepted, rejected=rejected)


@router.get("/snapshot/{variant}", response_model=MetricsSnapshot)
def get_snapshot(
    variant: Variant,
    ctx: ContextDep,
) -> MetricsSnapshot:
    return ctx.aggregator.snapshot(variant)
