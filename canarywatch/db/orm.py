"""ORM rows for decision and config history and the shared event window."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, CheckConstraint, Float, Index, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow_str() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Base(DeclarativeBase):
    pass


class DecisionRow(Base):
    __tablename__ = "decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reasons_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    critical_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status_before: Mapped[str] = mapped_column(Text, nullable=False)
    status_after: Mapped[str] = mapped_column(Text, nullable=False)
    percentage_before: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage_after: Mapped[int] = mapped_column(Integer, nullable=False)
    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Snapshots as camelCase JSON, null when metrics were unavailable
    stable_json: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    canary_json: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    evaluated_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)
    worker_id: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        CheckConstraint(
            "action IN ('PROCEED', 'CAUTION', 'SLOW_DOWN', 'ROLLBACK', "
            "'NEED_MORE_DATA', 'INCONCLUSIVE')",
            name="ck_decisions_action",
        ),
        Index("idx_decisions_evaluated_at", "evaluated_at"),
    )


class ConfigChangeRow(Base):
    __tablename__ = "config_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    canary_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    safety_floor_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, default="")
    canary_version: Mapped[str] = mapped_column(Text, nullable=False, default="")
    changed_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'PAUSED', 'ROLLED_BACK')",
            name="ck_config_changes_status",
        ),
        Index("idx_config_changes_changed_at", "changed_at"),
    )


class EventRow(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    variant: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    occurred_at: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)
    worker_id: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        CheckConstraint("variant IN ('stable', 'canary')", name="ck_events_variant"),
    )


class MetricsWindowRow(Base):
    """One row per aggregator reset; the newest marks the current window start."""

    __tablename__ = "metrics_windows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[str] = mapped_column(Text, nullable=False)
    worker_id: Mapped[str] = mapped_column(Text, nullable=False, default="")
