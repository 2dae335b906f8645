"""Injectable time and randomness sources.

Production code uses ``SystemClock`` and ``SystemRandomSource``; tests and
what-if CLI commands pass ``FixedClock`` and ``SequenceRandomSource`` so that
rollout math and assignment draws are reproducible.
"""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock frozen at a given instant until advanced."""

    def __init__(self, at: datetime) -> None:
        self._now = ensure_utc(at)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = ensure_utc(at)

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        self._now = self._now + timedelta(**delta)
        return self._now


class SystemRandomSource:
    """Uniform draws in [0, 100) from ``random.Random``."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def percent(self) -> float:
        return self._rng.random() * 100.0


class SequenceRandomSource:
    """Replays a fixed sequence of draws, cycling when exhausted."""

    def __init__(self, values: Iterable[float]) -> None:
        self._values = list(values)
        if not self._values:
            raise ValueError("SequenceRandomSource needs at least one value")
        for value in self._values:
            if not 0.0 <= value < 100.0:
                raise ValueError(f"draw {value!r} outside [0, 100)")
        self._index = 0

    def percent(self) -> float:
        value = self._values[self._index % len(self._values)]
        self._index += 1
        return value
