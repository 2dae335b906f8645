"""Port interfaces (Protocols) between the decision engine and its collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from canarywatch.models.assignment import Assignment, Variant
    from canarywatch.models.config import CanaryConfig
    from canarywatch.models.evaluation import EvaluationOutcome
    from canarywatch.models.snapshot import Event, MetricsSnapshot


@runtime_checkable
class ClockPort(Protocol):
    """Source of the current time (always timezone-aware UTC)."""

    def now(self) -> datetime: ...


@runtime_checkable
class RandomSourcePort(Protocol):
    """Uniform random draws in [0, 100)."""

    def percent(self) -> float: ...


@runtime_checkable
class AssignmentStorePort(Protocol):
    """Per-client key-value storage with compare-and-set semantics.

    ``get`` raises CorruptAssignmentError when a stored record cannot be
    decoded; the caller decides how to recover.
    """

    def get(self, client_id: str) -> Assignment | None: ...
    def set(self, assignment: Assignment) -> None: ...
    def set_if_absent(self, assignment: Assignment) -> Assignment: ...
    def delete(self, client_id: str) -> None: ...


@runtime_checkable
class SnapshotSourcePort(Protocol):
    """Provides per-variant metrics for an evaluation window."""

    def fetch_snapshots(
        self, start: datetime, end: datetime
    ) -> dict[Variant, MetricsSnapshot]: ...


@runtime_checkable
class HistoryPort(Protocol):
    """Append-only sink for evaluation and config history."""

    def record_decision(self, outcome: EvaluationOutcome) -> None: ...
    def record_config_change(
        self, config: CanaryConfig, effective_percentage: int
    ) -> None: ...


@runtime_checkable
class EventLogPort(Protocol):
    """Append-only event storage shared by every process that ingests or evaluates.

    ``load_events`` returns the events of the current window in arrival order
    together with the id of the last row read (None when empty).
    """

    def append_events(self, events: list[Event]) -> int: ...
    def load_events(self) -> tuple[list[Event], int | None]: ...
    def reset_events(self, started_at: datetime, up_to_id: int | None = None) -> None: ...
    def window_started_at(self) -> datetime | None: ...
