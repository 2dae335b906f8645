"""Per-client variant assignment."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from canarywatch.models.base import CamelModel, utcnow


class Variant(StrEnum):
    STABLE = "stable"
    CANARY = "canary"


class Assignment(CamelModel):
    """Sticky variant choice for one client.

    ``assigned_at_percentage`` is the effective canary percentage at the time
    of the draw, or ``None`` when the variant was set by a manual override.
    """

    client_id: str = Field(min_length=1)
    variant: Variant
    assigned_at_percentage: int | None = None
    assigned_at: datetime = Field(default_factory=utcnow)

    @property
    def is_manual(self) -> bool:
        return self.assigned_at_percentage is None
