"""Sticky per-client variant assignment and its storage backends.

Keys: canarywatch:assignment:{client_id}
Values: camelCase JSON ``Assignment`` documents
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, cast

import redis
import structlog
from pydantic import ValidationError

from canarywatch.clock import SystemClock, SystemRandomSource
from canarywatch.metrics import assignment_errors_total, assignments_total
from canarywatch.models.assignment import Assignment, Variant
from canarywatch.rollout import current_percentage

if TYPE_CHECKING:
    from datetime import datetime

    from canarywatch.models.config import CanaryConfig
    from canarywatch.protocols import AssignmentStorePort, ClockPort, RandomSourcePort

logger = structlog.get_logger()


class AssignmentError(Exception):
    """Assignment could not be read or persisted for one client."""


class CorruptAssignmentError(AssignmentError):
    """A stored assignment record could not be decoded."""


def _decode(client_id: str, raw: str) -> Assignment:
    try:
        return Assignment.model_validate_json(raw)
    except ValidationError as exc:
        raise CorruptAssignmentError(f"Corrupt assignment record for {client_id!r}") from exc


class InMemoryAssignmentStore:
    """Process-local store. Records are kept serialised so corruption behaves like Redis."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, client_id: str) -> Assignment | None:
        raw = self._records.get(client_id)
        if raw is None:
            return None
        return _decode(client_id, raw)

    def set(self, assignment: Assignment) -> None:
        with self._lock:
            self._records[assignment.client_id] = assignment.model_dump_json(by_alias=True)

    def set_if_absent(self, assignment: Assignment) -> Assignment:
        with self._lock:
            existing = self._records.get(assignment.client_id)
            if existing is None:
                self._records[assignment.client_id] = assignment.model_dump_json(by_alias=True)
                return assignment
        return _decode(assignment.client_id, existing)

    def delete(self, client_id: str) -> None:
        with self._lock:
            self._records.pop(client_id, None)

    def put_raw(self, client_id: str, raw: str) -> None:
        """Store an undecoded record as-is (used by imports and tests)."""
        with self._lock:
            self._records[client_id] = raw


class RedisAssignmentStore:
    """Redis-backed store shared between processes; ``SET NX`` provides compare-and-set."""

    _PREFIX = "canarywatch:assignment"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisAssignmentStore:
        # redis-py stubs: sync Redis.from_url returns Redis[bytes] by default
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _key(self, client_id: str) -> str:
        return f"{self._PREFIX}:{client_id}"

    def get(self, client_id: str) -> Assignment | None:
        raw = cast("str | None", self._client.get(self._key(client_id)))
        if raw is None:
            return None
        return _decode(client_id, raw)

    def set(self, assignment: Assignment) -> None:
        self._client.set(self._key(assignment.client_id), assignment.model_dump_json(by_alias=True))

    def set_if_absent(self, assignment: Assignment) -> Assignment:
        key = self._key(assignment.client_id)
        if self._client.set(key, assignment.model_dump_json(by_alias=True), nx=True):
            return assignment
        # Another writer got there first; its record wins
        raw = cast("str | None", self._client.get(key))
        if raw is None:
            # Deleted between SET NX and GET; try once more
            self._client.set(key, assignment.model_dump_json(by_alias=True), nx=True)
            return assignment
        return _decode(assignment.client_id, raw)

    def delete(self, client_id: str) -> None:
        self._client.delete(self._key(client_id))

    def ping(self) -> bool:
        return bool(self._client.ping())


class AssignmentEngine:
    """Decides and persists a sticky variant for each client.

    A client keeps its first variant even when the rollout percentage later
    changes; only ``set_variant`` (a manual override) replaces it.
    """

    def __init__(
        self,
        store: AssignmentStorePort,
        random_source: RandomSourcePort | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        self._store = store
        self._random = random_source or SystemRandomSource()
        self._clock = clock or SystemClock()

    @property
    def store(self) -> AssignmentStorePort:
        return self._store

    def get(self, client_id: str) -> Assignment | None:
        """Stored assignment for *client_id*, or None (also when the record is corrupt)."""
        try:
            return self._store.get(client_id)
        except CorruptAssignmentError:
            return None
        except redis.RedisError as exc:
            assignment_errors_total.labels(kind="storage").inc()
            raise AssignmentError(f"Could not read assignment for {client_id!r}") from exc

    def assign(
        self,
        client_id: str,
        config: CanaryConfig,
        now: datetime | None = None,
        existing: Assignment | None = None,
    ) -> Assignment:
        """Return the client's assignment, drawing and persisting one if needed."""
        if existing is not None:
            return existing

        try:
            stored = self._store.get(client_id)
        except CorruptAssignmentError:
            logger.warning("Discarding corrupt assignment record", client_id=client_id)
            assignment_errors_total.labels(kind="corrupt").inc()
            self._delete_quietly(client_id)
            stored = None
        except redis.RedisError as exc:
            assignment_errors_total.labels(kind="storage").inc()
            raise AssignmentError(f"Could not read assignment for {client_id!r}") from exc
        if stored is not None:
            return stored

        at = now or self._clock.now()
        percentage = current_percentage(config, at)
        draw = self._random.percent()
        # Strict comparison: 0% never yields canary, even for a draw of exactly 0
        variant = Variant.CANARY if draw < percentage else Variant.STABLE
        candidate = Assignment(
            client_id=client_id,
            variant=variant,
            assigned_at_percentage=percentage,
            assigned_at=at,
        )

        try:
            winner = self._store.set_if_absent(candidate)
        except CorruptAssignmentError:
            # A concurrent writer left an unreadable record; ours replaces it
            assignment_errors_total.labels(kind="corrupt").inc()
            try:
                self._store.set(candidate)
            except redis.RedisError as exc:
                assignment_errors_total.labels(kind="storage").inc()
                raise AssignmentError(f"Could not persist assignment for {client_id!r}") from exc
            winner = candidate
        except redis.RedisError as exc:
            assignment_errors_total.labels(kind="storage").inc()
            raise AssignmentError(f"Could not persist assignment for {client_id!r}") from exc

        if winner is candidate:
            assignments_total.labels(variant=variant.value, source="random").inc()
            logger.debug(
                "Assigned client",
                client_id=client_id,
                variant=variant.value,
                percentage=percentage,
            )
        return winner

    def set_variant(
        self,
        client_id: str,
        variant: Variant,
        now: datetime | None = None,
    ) -> Assignment:
        """Manual override: replace any previous assignment unconditionally."""
        assignment = Assignment(
            client_id=client_id,
            variant=variant,
            assigned_at_percentage=None,
            assigned_at=now or self._clock.now(),
        )
        try:
            self._store.set(assignment)
        except redis.RedisError as exc:
            assignment_errors_total.labels(kind="storage").inc()
            raise AssignmentError(f"Could not persist assignment for {client_id!r}") from exc
        assignments_total.labels(variant=variant.value, source="manual").inc()
        logger.info("Manual variant override", client_id=client_id, variant=variant.value)
        return assignment

    def _delete_quietly(self, client_id: str) -> None:
        try:
            self._store.delete(client_id)
        except redis.RedisError as exc:
            logger.warning("Could not delete corrupt assignment", client_id=client_id, error=str(exc))
