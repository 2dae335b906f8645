"""Exponential backoff retry and circuit breaker for external calls."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import structlog

from canarywatch.metrics import (
    circuit_breaker_state,
    retry_attempts_total,
    retry_exhausted_total,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """All retry attempts failed."""


class CircuitOpenError(Exception):
    """Circuit breaker is open; the service is assumed unavailable."""


def with_retry(
    fn: Callable[[], T],
    *,
    operation: str = "",
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn*, retrying *retryable* failures with exponential backoff.

    Delay for attempt n is ``min(base_delay * 2**n, max_delay)``, scaled by a
    random factor in [0.5, 1.5) when *jitter* is set. Raises
    RetryExhaustedError after ``max_retries + 1`` failed calls.
    """
    label = operation or getattr(fn, "__name__", "call")
    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return fn()
        except retryable as exc:
            last_exc = exc
            if attempt == max_retries:
                break
            retry_attempts_total.labels(operation=label).inc()
            delay = min(base_delay * (2**attempt), max_delay)
            if jitter:
                delay *= 0.5 + random.random()
            logger.warning(
                "Retrying external call",
                operation=label,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_s=round(delay, 2),
                error=str(exc),
            )
            sleep(delay)
    retry_exhausted_total.labels(operation=label).inc()
    raise RetryExhaustedError(f"{label} failed after {max_retries + 1} attempts") from last_exc


@dataclass
class CircuitBreaker:
    """Trips after *failure_threshold* consecutive failures.

    Half-opens (allows the next call through) once *reset_timeout* seconds
    have passed since the last failure.
    """

    name: str
    failure_threshold: int = 5
    reset_timeout: float = 300.0
    clock: Callable[[], float] = time.monotonic

    _failures: int = field(default=0, init=False, repr=False)
    _opened_at: float | None = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        if self.clock() - self._opened_at >= self.reset_timeout:
            logger.info("Circuit breaker half-open", breaker=self.name)
            self._opened_at = None
            self._failures = 0
            circuit_breaker_state.labels(name=self.name).set(0)
            return False
        return True

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None
        circuit_breaker_state.labels(name=self.name).set(0)

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.failure_threshold and self._opened_at is None:
            logger.warning("Circuit breaker tripped", breaker=self.name, failures=self._failures)
            self._opened_at = self.clock()
            circuit_breaker_state.labels(name=self.name).set(1)

    def call(self, fn: Callable[[], T]) -> T:
        """Run *fn* unless the circuit is open."""
        if self.is_open:
            raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")
        try:
            result = fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
