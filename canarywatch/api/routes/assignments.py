"""Client variant assignment endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from canarywatch.api.deps import ContextDep
from canarywatch.api.schemas import VariantRequest
from canarywatch.models.assignment import Assignment

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.get("/{client_id}", response_model=Assignment)
def get_assignment(
    client_id: str,
    ctx: ContextDep,
) -> Assignment:
    """Return the client's sticky assignment, drawing one on first contact."""
    return ctx.assignments.assign(client_id, ctx.config_store.current)


@router.put("/{client_id}", response_model=Assignment)
def set_assignment(
    client_id: str,
    body: VariantRequest,
    ctx: ContextDep,
) -> Assignment:
    return ctx.assignments.set_variant(client_id, body.variant)
