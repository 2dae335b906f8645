"""Canary configuration store: compiled-in defaults, local file and remote overlay.

The store always holds a complete, validated ``CanaryConfig`` (the last known
good one). Overlays are merged per top-level section; a section that fails
validation is dropped with a warning and the previous section is kept.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from canarywatch.clock import SystemClock
from canarywatch.metrics import (
    canary_percentage as canary_percentage_gauge,
    config_fetches_total,
    effective_percentage as effective_percentage_gauge,
    rollout_status as rollout_status_gauge,
)
from canarywatch.models.config import (
    AnalyticsSection,
    CanaryConfig,
    Distribution,
    RolloutStatus,
    Thresholds,
    clamp_percentage,
)
from canarywatch.rollout import current_percentage

if TYPE_CHECKING:
    from datetime import date, datetime

    from canarywatch.config import Settings
    from canarywatch.protocols import ClockPort, HistoryPort

logger = structlog.get_logger()

# Per-environment starting exposure and safety floor
ENVIRONMENT_DEFAULTS: dict[str, dict[str, int]] = {
    "development": {"canaryPercentage": 25, "safetyFloorPercentage": 5},
    "staging": {"canaryPercentage": 10, "safetyFloorPercentage": 5},
    "production": {"canaryPercentage": 5, "safetyFloorPercentage": 2},
}

# Older documents used these names for distribution fields
_LEGACY_DISTRIBUTION_KEYS = {
    "rolloutPeriod": "rolloutPeriodDays",
    "initialDate": "startDate",
    "safetyThreshold": "safetyFloorPercentage",
}

_SECTIONS: dict[str, tuple[str, type[Distribution | AnalyticsSection | Thresholds]]] = {
    "distribution": ("distribution", Distribution),
    "analytics": ("analytics", AnalyticsSection),
    "thresholds": ("thresholds", Thresholds),
}


def default_config(environment: str = "production", start: date | None = None) -> CanaryConfig:
    """Compiled-in defaults for *environment* (unknown names get production values)."""
    env_defaults = ENVIRONMENT_DEFAULTS.get(environment.lower(), ENVIRONMENT_DEFAULTS["production"])
    distribution: dict[str, Any] = dict(env_defaults)
    if start is not None:
        distribution["startDate"] = start
    return CanaryConfig(distribution=Distribution.model_validate(distribution))


def _normalise_distribution(raw: Mapping[str, Any]) -> dict[str, Any]:
    section = dict(raw)
    for legacy, current in _LEGACY_DISTRIBUTION_KEYS.items():
        if legacy in section:
            value = section.pop(legacy)
            section.setdefault(current, value)
    return section


def enforce_floor(config: CanaryConfig) -> CanaryConfig:
    """Clamp the safety floor so it never exceeds the canary percentage."""
    dist = config.distribution
    if dist.safety_floor_percentage <= dist.canary_percentage:
        return config
    logger.warning(
        "Safety floor above canary percentage, clamping",
        safety_floor=dist.safety_floor_percentage,
        canary_percentage=dist.canary_percentage,
    )
    return config.with_distribution(safety_floor_percentage=dist.canary_percentage)


def merge_config(base: CanaryConfig, raw: Mapping[str, Any]) -> CanaryConfig:
    """Overlay the camelCase document *raw* onto *base*.

    Each known section is merged shallowly: keys present in *raw* replace the
    base values, missing keys keep them. Unknown keys are ignored.
    """
    if not isinstance(raw, Mapping):
        logger.warning("Config overlay is not an object, ignoring", got=type(raw).__name__)
        return base

    updates: dict[str, Any] = {}
    for key, (field_name, model) in _SECTIONS.items():
        section = raw.get(key)
        if section is None:
            continue
        if not isinstance(section, Mapping):
            logger.warning("Config section is not an object, keeping previous", section=key)
            continue
        if model is Distribution:
            section = _normalise_distribution(section)
        current = getattr(base, field_name).model_dump(by_alias=True)
        try:
            updates[field_name] = model.model_validate({**current, **section})
        except ValidationError as exc:
            logger.warning(
                "Invalid config section, keeping previous",
                section=key,
                errors=exc.error_count(),
                error=str(exc).splitlines()[0],
            )

    flags = raw.get("featureFlags")
    if isinstance(flags, Mapping):
        updates["feature_flags"] = {
            **base.feature_flags,
            **{str(name): bool(value) for name, value in flags.items()},
        }

    if isinstance(raw.get("canaryVersion"), str):
        updates["canary_version"] = raw["canaryVersion"]
    if isinstance(raw.get("updateSource"), str):
        updates["update_source"] = raw["updateSource"]
    if raw.get("lastUpdated") is not None:
        try:
            stamp = CanaryConfig.model_validate({"lastUpdated": raw["lastUpdated"]})
        except ValidationError:
            logger.warning("Invalid lastUpdated in config, ignoring", value=raw["lastUpdated"])
        else:
            updates["last_updated"] = stamp.last_updated

    return enforce_floor(base.model_copy(update=updates))


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def override_thresholds(base: Thresholds, overrides: Mapping[str, Any] | None) -> Thresholds:
    """Deep-merge partial camelCase *overrides* over *base* for a single evaluation.

    Raises ValueError (pydantic ValidationError) when the result is invalid.
    """
    if not overrides:
        return base
    return Thresholds.model_validate(_deep_merge(base.model_dump(by_alias=True), overrides))


class ConfigStore:
    """Holds the current canary configuration and applies overlays and mutations.

    Reads (``current``, ``thresholds``, ``effective_percentage``) never block on
    a remote fetch; they see the last config that was successfully applied.

    The local file is shared with other processes (API, task worker, CLI).
    Reads and mutations first pick up a rewrite of the file by another
    process, and mutations apply on top of that state.
    """

    def __init__(
        self,
        settings: Settings,
        clock: ClockPort | None = None,
        history: HistoryPort | None = None,
    ) -> None:
        self._settings = settings
        self._clock = clock or SystemClock()
        self._history = history
        self._lock = threading.Lock()
        self._config = default_config(settings.environment, self._clock.now().date())
        self._issued_ticket = 0
        self._applied_ticket = 0
        self._file_signature: tuple[int, int, int] | None = None

    # --- Read-only accessors ---

    @property
    def current(self) -> CanaryConfig:
        self.sync()
        return self._config

    @property
    def thresholds(self) -> Thresholds:
        return self.current.thresholds

    def effective_percentage(self, now: datetime | None = None) -> int:
        return current_percentage(self.current, now or self._clock.now())

    # --- Local file ---

    def load(self) -> CanaryConfig:
        """Overlay the local JSON file onto the current config, or create it from defaults."""
        path = self._settings.config_path
        if not path.exists():
            # Persist the defaults so the rollout start date survives restarts
            logger.info("No local canary config file, writing defaults", path=str(path))
            self.save()
            self._update_gauges()
            return self._config
        if self._read_file(self._stat_file()):
            logger.info(
                "Loaded canary config",
                path=str(path),
                canary_percentage=self._config.canary_percentage,
                status=self._config.status.value,
            )
        return self._config

    def sync(self) -> bool:
        """Re-read the local file if it changed since this store last read or wrote it."""
        signature = self._stat_file()
        if signature is None or signature == self._file_signature:
            return False
        if not self._read_file(signature):
            return False
        logger.info(
            "Canary config changed on disk, reloaded",
            path=str(self._settings.config_path),
            canary_percentage=self._config.canary_percentage,
            status=self._config.status.value,
            update_source=self._config.update_source,
        )
        return True

    def save(self) -> None:
        """Write the current config as a camelCase JSON document.

        The document is written to a temporary file and renamed into place so
        readers in other processes never see a partial write.
        """
        self._settings.ensure_data_dir()
        path = self._settings.config_path
        document = self._config.model_dump(mode="json", by_alias=True)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp, path)
        self._file_signature = self._stat_file()

    def _stat_file(self) -> tuple[int, int, int] | None:
        try:
            stat = self._settings.config_path.stat()
        except OSError:
            return None
        return stat.st_ino, stat.st_mtime_ns, stat.st_size

    def _read_file(self, signature: tuple[int, int, int] | None) -> bool:
        path = self._settings.config_path
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read canary config file", path=str(path), error=str(exc))
            return False
        with self._lock:
            self._config = merge_config(self._config, raw)
            self._file_signature = signature
        self._update_gauges()
        return True

    # --- Mutations ---

    def update_distribution(self, source: str = "manual", **changes: Any) -> CanaryConfig:
        """Apply *changes* to the distribution of the latest config (on disk or in memory)."""
        self.sync()
        return self.replace(self._config.with_distribution(**changes), source=source)

    def replace(self, config: CanaryConfig, source: str = "manual", persist: bool = True) -> CanaryConfig:
        """Make *config* current, stamping ``lastUpdated`` and ``updateSource``."""
        stamped = enforce_floor(
            config.model_copy(update={"last_updated": self._clock.now(), "update_source": source})
        )
        with self._lock:
            self._config = stamped
        if persist:
            self.save()
        if self._history is not None:
            self._history.record_config_change(stamped, current_percentage(stamped, self._clock.now()))
        self._update_gauges()
        return stamped

    def set_status(self, status: RolloutStatus, source: str = "manual") -> CanaryConfig:
        previous = self.current.status
        logger.info("Setting rollout status", status=status.value, previous=previous.value)
        return self.update_distribution(source, status=status)

    def set_percentage(
        self,
        percentage: float,
        reset_status: bool | None = None,
        source: str = "manual",
    ) -> CanaryConfig:
        """Manually set the canary percentage ceiling.

        *reset_status* decides whether the status returns to ACTIVE; when None
        ``Settings.adjust_resets_status`` applies.
        """
        value = clamp_percentage(percentage)
        if reset_status is None:
            reset_status = self._settings.adjust_resets_status
        changes: dict[str, Any] = {"canary_percentage": value}
        if reset_status:
            changes["status"] = RolloutStatus.ACTIVE
        logger.info(
            "Adjusting canary percentage",
            percentage=value,
            previous=self.current.canary_percentage,
            reset_status=reset_status,
        )
        return self.update_distribution(source, **changes)

    # --- Remote overlay ---

    def issue_fetch(self) -> int:
        """Reserve a ticket for a remote fetch; later tickets supersede earlier ones."""
        with self._lock:
            self._issued_ticket += 1
            return self._issued_ticket

    def apply_fetched(self, ticket: int, raw: Mapping[str, Any]) -> bool:
        """Merge a fetched document unless a newer fetch has already been applied."""
        self.sync()
        with self._lock:
            if ticket <= self._applied_ticket:
                logger.info(
                    "Discarding superseded remote config",
                    ticket=ticket,
                    applied_ticket=self._applied_ticket,
                )
                config_fetches_total.labels(outcome="stale").inc()
                return False
            self._applied_ticket = ticket
            merged = merge_config(self._config, raw)
            self._config = merged.model_copy(update={"update_source": "remote"})
        config_fetches_total.labels(outcome="applied").inc()
        logger.info(
            "Applied remote config",
            ticket=ticket,
            canary_percentage=self._config.canary_percentage,
            status=self._config.status.value,
        )
        if self._history is not None:
            self._history.record_config_change(self._config, self.effective_percentage())
        self._update_gauges()
        return True

    def _fetch_params(self) -> dict[str, str]:
        return {"nocache": str(int(self._clock.now().timestamp() * 1000))}

    def _fetch_failed(self, url: str, exc: Exception) -> bool:
        logger.warning("Remote config fetch failed, keeping last known good", url=url, error=str(exc))
        config_fetches_total.labels(outcome="failed").inc()
        return False

    def refresh(self) -> bool:
        """Fetch and apply the remote config. Returns True when it was applied."""
        url = self._settings.remote_config_url
        if not url:
            return False
        ticket = self.issue_fetch()
        try:
            with httpx.Client(timeout=self._settings.remote_config_timeout) as client:
                resp = client.get(url, params=self._fetch_params())
                resp.raise_for_status()
                raw = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            return self._fetch_failed(url, exc)
        return self.apply_fetched(ticket, raw)

    async def refresh_async(self) -> bool:
        """Async variant of ``refresh`` for use inside the API event loop."""
        url = self._settings.remote_config_url
        if not url:
            return False
        ticket = self.issue_fetch()
        try:
            async with httpx.AsyncClient(timeout=self._settings.remote_config_timeout) as client:
                resp = await client.get(url, params=self._fetch_params())
                resp.raise_for_status()
                raw = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            return self._fetch_failed(url, exc)
        return self.apply_fetched(ticket, raw)

    def _update_gauges(self) -> None:
        canary_percentage_gauge.set(self._config.canary_percentage)
        effective_percentage_gauge.set(self.effective_percentage())
        for status in RolloutStatus:
            rollout_status_gauge.labels(status=status.value).set(
                1 if status == self._config.status else 0
            )
