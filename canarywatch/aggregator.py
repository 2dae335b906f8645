"""Per-variant running metrics built from client instrumentation events."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from canarywatch.clock import SystemClock, ensure_utc
from canarywatch.metrics import events_ingested_total, events_rejected_total
from canarywatch.models.assignment import Variant
from canarywatch.models.snapshot import (
    EngagementSummary,
    ErrorRecord,
    Event,
    EventType,
    MetricsSnapshot,
    PerformanceSummary,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from datetime import datetime

    from canarywatch.protocols import ClockPort, EventLogPort

logger = structlog.get_logger()

# Names seen in performance events, mapped to snapshot fields
_PERFORMANCE_NAMES = {
    "pageLoadTime": "page_load_time",
    "page_load_time": "page_load_time",
    "load": "page_load_time",
    "lcp": "lcp",
    "LCP": "lcp",
    "fid": "fid",
    "FID": "fid",
    "cls": "cls",
    "CLS": "cls",
}

_CLIENT_ID_KEYS = ("clientId", "userId", "distinctId")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _mean(samples: list[float]) -> float | None:
    return sum(samples) / len(samples) if samples else None


@dataclass
class _VariantState:
    pageviews: int = 0
    clicks: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)
    client_ids: set[str] = field(default_factory=set)
    scroll_depth: list[float] = field(default_factory=list)
    duration: list[float] = field(default_factory=list)
    performance: dict[str, list[float]] = field(
        default_factory=lambda: {"page_load_time": [], "lcp": [], "fid": [], "cls": []}
    )
    first_event_at: datetime | None = None


class MetricsAggregator:
    """Accumulates events per variant since the last ``reset``.

    Error events are all kept; ignored messages are only excluded when an
    error rate is computed.

    With an *event_log* attached, events are appended to it instead of being
    held in memory, and snapshots are folded from the log. Every process
    sharing the log (API, task worker, CLI) then sees the same window.
    """

    def __init__(
        self,
        ignored_errors: Iterable[str] = (),
        clock: ClockPort | None = None,
        event_log: EventLogPort | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self.ignored_errors = list(ignored_errors)
        self._log = event_log
        self._lock = threading.Lock()
        self._state = {variant: _VariantState() for variant in Variant}
        self._window_start = self._clock.now()
        # Highest log row folded into the last snapshot; reset discards up to it
        self._log_high_water: int | None = None

    @property
    def window_start(self) -> datetime:
        if self._log is not None:
            return self._log.window_started_at() or self._window_start
        return self._window_start

    def record(self, event: Event) -> None:
        if self._log is not None:
            self._log.append_events([event])
        else:
            with self._lock:
                self._fold(self._state[event.variant], event)
        events_ingested_total.labels(variant=event.variant.value, type=event.type.value).inc()

    def record_many(self, events: Iterable[Event]) -> int:
        batch = list(events)
        if self._log is not None:
            self._log.append_events(batch)
            for event in batch:
                events_ingested_total.labels(
                    variant=event.variant.value, type=event.type.value
                ).inc()
            return len(batch)
        for event in batch:
            self.record(event)
        return len(batch)

    def ingest(self, raw: Iterable[Mapping[str, Any]]) -> tuple[int, int]:
        """Record camelCase wire events. Returns ``(accepted, rejected)``."""
        valid: list[Event] = []
        rejected = 0
        for item in raw:
            try:
                valid.append(Event.model_validate(item))
            except ValidationError as exc:
                rejected += 1
                events_rejected_total.inc()
                logger.warning("Skipping malformed event", errors=exc.error_count())
        accepted = self.record_many(valid)
        return accepted, rejected

    def snapshot(self, variant: Variant, now: datetime | None = None) -> MetricsSnapshot:
        return self.snapshots(now)[variant]

    def snapshots(self, now: datetime | None = None) -> dict[Variant, MetricsSnapshot]:
        states = self._current_states()
        window_start = self.window_start
        return {
            variant: self._build_snapshot(variant, states[variant], window_start, now)
            for variant in Variant
        }

    def error_rate(self, variant: Variant) -> float | None:
        return self.snapshot(variant).error_rate(self.ignored_errors)

    def reset(self, now: datetime | None = None) -> None:
        """Start a new window; everything recorded so far is discarded.

        With an event log, only rows folded into the last snapshot are
        dropped, so events arriving during an evaluation carry over.
        """
        started_at = ensure_utc(now) if now else self._clock.now()
        with self._lock:
            self._state = {variant: _VariantState() for variant in Variant}
            self._window_start = started_at
            if self._log is not None:
                self._log.reset_events(started_at, up_to_id=self._log_high_water)
                self._log_high_water = None
        logger.info("Metrics window reset", window_start=started_at.isoformat())

    def _current_states(self) -> dict[Variant, _VariantState]:
        if self._log is None:
            with self._lock:
                return self._state
        events, high_water = self._log.load_events()
        states = {variant: _VariantState() for variant in Variant}
        for event in events:
            self._fold(states[event.variant], event)
        with self._lock:
            self._log_high_water = high_water
        return states

    def _build_snapshot(
        self,
        variant: Variant,
        state: _VariantState,
        window_start: datetime,
        now: datetime | None,
    ) -> MetricsSnapshot:
        with self._lock:
            perf = {name: _mean(samples) for name, samples in state.performance.items()}
            performance = (
                PerformanceSummary(**perf) if any(v is not None for v in perf.values()) else None
            )
            scroll = _mean(state.scroll_depth)
            duration = _mean(state.duration)
            users = len(state.client_ids) or None
            engagement = (
                EngagementSummary(scroll_depth=scroll, duration=duration, unique_users=users)
                if scroll is not None or duration is not None or users is not None
                else None
            )
            return MetricsSnapshot(
                variant=variant,
                pageviews=state.pageviews,
                errors=list(state.errors),
                clicks=state.clicks,
                engagement=engagement,
                performance=performance,
                window_hours=self._window_hours(state, window_start, now),
            )

    def _window_hours(
        self, state: _VariantState, window_start: datetime, now: datetime | None
    ) -> float:
        start = window_start
        if state.first_event_at is not None and state.first_event_at < start:
            start = state.first_event_at
        end = ensure_utc(now) if now else self._clock.now()
        return max(0.0, (end - start).total_seconds() / 3600)

    @classmethod
    def _fold(cls, state: _VariantState, event: Event) -> None:
        payload = event.payload
        timestamp = ensure_utc(event.timestamp)
        if state.first_event_at is None or timestamp < state.first_event_at:
            state.first_event_at = timestamp
        cls._track_client(state, payload)

        if event.type == EventType.PAGEVIEW:
            state.pageviews += 1
            for key, value in payload.items():
                cls._add_performance(state, key, value)
        elif event.type == EventType.ERROR:
            message = payload.get("message", payload.get("error", ""))
            state.errors.append(ErrorRecord(message=str(message or ""), timestamp=timestamp))
        elif event.type == EventType.CLICK:
            state.clicks += 1
        elif event.type == EventType.ENGAGEMENT:
            scroll = _number(payload.get("scrollDepth"))
            if scroll is not None:
                state.scroll_depth.append(scroll)
            duration = _number(payload.get("duration"))
            if duration is not None:
                state.duration.append(duration)
        elif event.type == EventType.PERFORMANCE:
            if "name" in payload:
                cls._add_performance(state, str(payload["name"]), payload.get("value"))
            else:
                for key, value in payload.items():
                    cls._add_performance(state, key, value)

    @staticmethod
    def _track_client(state: _VariantState, payload: Mapping[str, Any]) -> None:
        for key in _CLIENT_ID_KEYS:
            value = payload.get(key)
            if value:
                state.client_ids.add(str(value))
                return

    @staticmethod
    def _add_performance(state: _VariantState, name: str, value: Any) -> None:
        target = _PERFORMANCE_NAMES.get(name)
        number = _number(value)
        if target is None or number is None:
            return
        state.performance[target].append(number)
