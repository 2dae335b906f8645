"""SQLAlchemy-backed store for evaluation history, config changes and ingested events."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypedDict

from sqlalchemy import delete, func, select, text

from canarywatch.db.engine import create_db_engine, create_session_factory
from canarywatch.db.orm import Base, ConfigChangeRow, DecisionRow, EventRow, MetricsWindowRow
from canarywatch.models.config import RolloutStatus
from canarywatch.models.decision import Decision, RolloutAction
from canarywatch.models.evaluation import EvaluationOutcome
from canarywatch.models.snapshot import Event, MetricsSnapshot

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy import Engine
    from sqlalchemy.orm import Session, sessionmaker

    from canarywatch.models.config import CanaryConfig


class PercentagePointDict(TypedDict):
    timestamp: str
    percentage: int
    effective_percentage: int
    status: str
    source: str
    version: str


class Database:
    """History of evaluation outcomes and config changes, plus the shared event window."""

    def __init__(self, db_path: str | Path = ":memory:", worker_id: str = ""):
        self.db_path = str(db_path)
        self.worker_id = worker_id
        self._engine: Engine = create_db_engine(self.db_path)
        self._session_factory: sessionmaker[Session] = create_session_factory(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def init_schema(self) -> None:
        """Create all tables via ORM metadata."""
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        self._engine.dispose()

    def check_connection(self) -> bool:
        """Verify the database is reachable. Returns True or raises."""
        with self._session_factory() as session:
            session.execute(text("SELECT 1"))
        return True

    # --- Decisions ---

    def record_decision(self, outcome: EvaluationOutcome) -> int:
        decision = outcome.decision
        with self._session_factory() as session:
            row = DecisionRow(
                action=decision.action.value,
                confidence=decision.confidence,
                reasons_json=json.dumps(decision.reasons),
                critical_issues=decision.critical_issues,
                status_before=outcome.status_before.value,
                status_after=outcome.status_after.value,
                percentage_before=outcome.percentage_before,
                percentage_after=outcome.percentage_after,
                applied=outcome.applied,
                stable_json=_snapshot_json(outcome.stable),
                canary_json=_snapshot_json(outcome.canary),
                evaluated_at=_format_dt(outcome.evaluated_at),
                worker_id=self.worker_id,
            )
            session.add(row)
            session.commit()
            return row.id

    def list_decisions(self, limit: int = 20) -> list[EvaluationOutcome]:
        """Most recent outcomes first."""
        with self._session_factory() as session:
            stmt = (
                select(DecisionRow)
                .order_by(DecisionRow.evaluated_at.desc(), DecisionRow.id.desc())
                .limit(limit)
            )
            rows = session.scalars(stmt).all()
            return [self._row_to_outcome(r) for r in rows]

    # --- Config changes ---

    def record_config_change(self, config: CanaryConfig, effective_percentage: int) -> int:
        changed_at = config.last_updated or datetime.now(UTC)
        with self._session_factory() as session:
            row = ConfigChangeRow(
                canary_percentage=config.canary_percentage,
                effective_percentage=effective_percentage,
                safety_floor_percentage=config.safety_floor_percentage,
                status=config.status.value,
                source=config.update_source,
                canary_version=config.canary_version,
                changed_at=_format_dt(changed_at),
            )
            session.add(row)
            session.commit()
            return row.id

    def percentage_history(self) -> list[PercentagePointDict]:
        """Configured percentage over time, oldest first.

        Entries sharing a timestamp and percentage collapse into the most
        recently recorded one.
        """
        with self._session_factory() as session:
            stmt = select(ConfigChangeRow).order_by(ConfigChangeRow.changed_at, ConfigChangeRow.id)
            rows = session.scalars(stmt).all()

        points: list[PercentagePointDict] = []
        seen: set[tuple[str, int]] = set()
        for row in reversed(rows):
            key = (row.changed_at, row.canary_percentage)
            if key in seen:
                continue
            seen.add(key)
            points.append(
                {
                    "timestamp": row.changed_at,
                    "percentage": row.canary_percentage,
                    "effective_percentage": row.effective_percentage,
                    "status": row.status,
                    "source": row.source,
                    "version": row.canary_version,
                }
            )
        points.reverse()
        return points

    # --- Events ---

    def append_events(self, events: list[Event]) -> int:
        if not events:
            return 0
        with self._session_factory() as session:
            session.add_all(
                [
                    EventRow(
                        variant=event.variant.value,
                        type=event.type.value,
                        payload_json=json.dumps(event.payload, default=str),
                        occurred_at=_format_dt(event.timestamp),
                        worker_id=self.worker_id,
                    )
                    for event in events
                ]
            )
            session.commit()
        return len(events)

    def load_events(self) -> tuple[list[Event], int | None]:
        """Events of the current window in arrival order, and the last row id read."""
        with self._session_factory() as session:
            rows = session.scalars(select(EventRow).order_by(EventRow.id)).all()
            events = [
                Event(
                    variant=row.variant,
                    type=row.type,
                    payload=json.loads(row.payload_json),
                    timestamp=self._parse_dt(row.occurred_at),
                )
                for row in rows
            ]
            return events, (rows[-1].id if rows else None)

    def reset_events(self, started_at: datetime, up_to_id: int | None = None) -> None:
        """Open a new window, dropping events up to *up_to_id* (all when None)."""
        with self._session_factory() as session:
            stmt = delete(EventRow)
            if up_to_id is not None:
                stmt = stmt.where(EventRow.id <= up_to_id)
            session.execute(stmt)
            session.add(
                MetricsWindowRow(started_at=_format_dt(started_at), worker_id=self.worker_id)
            )
            session.commit()

    def window_started_at(self) -> datetime | None:
        with self._session_factory() as session:
            value = session.scalar(select(func.max(MetricsWindowRow.started_at)))
        return self._parse_dt(value) if value else None

    # --- Helpers ---

    @staticmethod
    def _parse_dt(value: str) -> datetime:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    @staticmethod
    def _row_to_outcome(row: DecisionRow) -> EvaluationOutcome:
        return EvaluationOutcome(
            decision=Decision(
                action=RolloutAction(row.action),
                confidence=row.confidence,
                reasons=json.loads(row.reasons_json),
                critical_issues=row.critical_issues,
            ),
            status_before=RolloutStatus(row.status_before),
            status_after=RolloutStatus(row.status_after),
            percentage_before=row.percentage_before,
            percentage_after=row.percentage_after,
            applied=row.applied,
            stable=_snapshot_from_json(row.stable_json),
            canary=_snapshot_from_json(row.canary_json),
            evaluated_at=Database._parse_dt(row.evaluated_at),
        )


def _format_dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _snapshot_json(snapshot: MetricsSnapshot | None) -> str | None:
    if snapshot is None:
        return None
    return snapshot.model_dump_json(by_alias=True)


def _snapshot_from_json(value: str | None) -> MetricsSnapshot | None:
    if value is None:
        return None
    return MetricsSnapshot.model_validate_json(value)
