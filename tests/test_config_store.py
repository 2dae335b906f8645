"""Tests for config defaults, merging, mutations and the remote overlay."""

from __future__ import annotations

import asyncio
import json
from datetime import date

import httpx
import pytest
import respx

from canarywatch.clock import FixedClock, SequenceRandomSource
from canarywatch.config import Settings
from canarywatch.config_store import (
    ConfigStore,
    default_config,
    enforce_floor,
    merge_config,
    override_thresholds,
)
from canarywatch.context import CanaryContext, build_context
from canarywatch.db import Database
from canarywatch.models.assignment import Variant
from canarywatch.models.config import CanaryConfig, Distribution, RolloutStatus, Thresholds

REMOTE_URL = "https://config.example.com/canary.json"


@pytest.fixture()
def remote_store(settings: Settings, clock: FixedClock, db: Database) -> ConfigStore:
    remote = settings.model_copy(update={"remote_config_url": REMOTE_URL})
    return ConfigStore(remote, clock=clock, history=db)


class TestDefaults:
    @pytest.mark.parametrize(
        ("environment", "percentage", "floor"),
        [("development", 25, 5), ("staging", 10, 5), ("production", 5, 2), ("unknown", 5, 2)],
    )
    def test_environment_defaults(self, environment: str, percentage: int, floor: int):
        config = default_config(environment)
        assert config.canary_percentage == percentage
        assert config.safety_floor_percentage == floor
        assert config.status == RolloutStatus.ACTIVE

    def test_store_starts_at_clock_date(self, config_store: ConfigStore, clock: FixedClock):
        assert config_store.current.start_date == clock.now().date()
        assert config_store.effective_percentage() == 0


class TestMergeConfig:
    def test_partial_section_keeps_base_values(self):
        base = default_config("production", date(2025, 5, 1))
        merged = merge_config(base, {"distribution": {"canaryPercentage": 30}})
        assert merged.canary_percentage == 30
        assert merged.start_date == date(2025, 5, 1)
        assert merged.rollout_period_days == 7
        assert merged.thresholds == base.thresholds

    def test_legacy_distribution_keys(self):
        merged = merge_config(
            default_config(),
            {
                "distribution": {
                    "rolloutPeriod": 14,
                    "initialDate": "2025-04-01T00:00:00Z",
                    "safetyThreshold": 3,
                }
            },
        )
        assert merged.rollout_period_days == 14
        assert merged.start_date == date(2025, 4, 1)
        assert merged.safety_floor_percentage == 3

    def test_invalid_section_keeps_previous(self):
        base = default_config()
        merged = merge_config(
            base,
            {"analytics": {"sampleRate": 5}, "distribution": {"canaryPercentage": 40}},
        )
        assert merged.analytics == base.analytics
        assert merged.canary_percentage == 40

    def test_percentages_clamped(self):
        merged = merge_config(default_config(), {"distribution": {"canaryPercentage": 150}})
        assert merged.canary_percentage == 100
        merged = merge_config(default_config(), {"distribution": {"canaryPercentage": -5}})
        assert merged.canary_percentage == 0

    def test_floor_clamped_to_percentage(self):
        merged = merge_config(
            default_config(),
            {"distribution": {"canaryPercentage": 3, "safetyFloorPercentage": 10}},
        )
        assert merged.safety_floor_percentage == 3

    def test_non_positive_period_falls_back(self):
        merged = merge_config(default_config(), {"distribution": {"rolloutPeriodDays": 0}})
        assert merged.rollout_period_days == 7

    def test_thresholds_merge_is_shallow(self):
        base = default_config()
        merged = merge_config(base, {"thresholds": {"errors": {"maxErrorRate": 0.05}}})
        assert merged.thresholds.errors.max_error_rate == 0.05
        # The errors object replaced the base one as a whole
        assert merged.thresholds.errors.critical_errors == 0.005
        assert merged.thresholds.performance == base.thresholds.performance

    def test_feature_flags_merged(self):
        base = merge_config(default_config(), {"featureFlags": {"newCheckout": True}})
        merged = merge_config(base, {"featureFlags": {"darkMode": False}})
        assert merged.feature_flags == {"newCheckout": True, "darkMode": False}

    def test_unknown_keys_ignored(self):
        base = default_config()
        merged = merge_config(base, {"somethingElse": 1, "distribution": {"colour": "blue"}})
        assert merged == base

    def test_top_level_fields(self):
        merged = merge_config(
            default_config(),
            {"canaryVersion": "2.3.0", "updateSource": "pipeline", "lastUpdated": "not a date"},
        )
        assert merged.canary_version == "2.3.0"
        assert merged.update_source == "pipeline"
        assert merged.last_updated is None

    def test_non_object_overlay_ignored(self):
        base = default_config()
        assert merge_config(base, ["not", "a", "dict"]) == base  # type: ignore[arg-type]


class TestEnforceFloor:
    def test_untouched_when_valid(self):
        config = default_config()
        assert enforce_floor(config) is config

    def test_clamps_floor(self):
        config = CanaryConfig(
            distribution=Distribution(canary_percentage=1, safety_floor_percentage=5)
        )
        assert enforce_floor(config).safety_floor_percentage == 1


class TestOverrideThresholds:
    def test_deep_merge(self):
        base = Thresholds()
        merged = override_thresholds(base, {"errors": {"maxErrorRate": 0.05}})
        assert merged.errors.max_error_rate == 0.05
        assert merged.errors.critical_errors == base.errors.critical_errors
        assert merged.errors.ignored_errors == base.errors.ignored_errors

    def test_empty_overrides_return_base(self):
        base = Thresholds()
        assert override_thresholds(base, None) is base
        assert override_thresholds(base, {}) is base

    def test_invalid_override_raises(self):
        with pytest.raises(ValueError):
            override_thresholds(Thresholds(), {"errors": {"maxErrorRate": "lots"}})


class TestLocalFile:
    def test_load_writes_defaults_when_missing(self, config_store: ConfigStore, settings: Settings):
        config_store.load()
        document = json.loads(settings.config_path.read_text())
        assert document["distribution"]["canaryPercentage"] == 5
        assert document["distribution"]["startDate"] == "2025-05-10"

    def test_load_overlays_file(self, config_store: ConfigStore, settings: Settings):
        settings.config_path.write_text(
            json.dumps({"distribution": {"canaryPercentage": 30, "startDate": "2025-05-01"}})
        )
        config = config_store.load()
        assert config.canary_percentage == 30
        assert config.start_date == date(2025, 5, 1)

    def test_load_ignores_unreadable_file(self, config_store: ConfigStore, settings: Settings):
        settings.config_path.write_text("{broken")
        before = config_store.current
        assert config_store.load() == before

    def test_save_round_trips(self, config_store: ConfigStore, settings: Settings, clock: FixedClock):
        config_store.set_percentage(40)
        reloaded = ConfigStore(settings, clock=clock)
        assert reloaded.load().canary_percentage == 40


class TestMutations:
    def test_replace_stamps_metadata(self, config_store: ConfigStore, clock: FixedClock):
        updated = config_store.replace(default_config().with_distribution(canary_percentage=20))
        assert updated.last_updated == clock.now()
        assert updated.update_source == "manual"
        assert config_store.current == updated

    def test_set_status(self, config_store: ConfigStore):
        config_store.set_status(RolloutStatus.PAUSED)
        assert config_store.current.status == RolloutStatus.PAUSED

    def test_set_percentage_keeps_status_by_default(self, config_store: ConfigStore):
        config_store.set_status(RolloutStatus.ROLLED_BACK)
        config_store.set_percentage(20)
        assert config_store.current.canary_percentage == 20
        assert config_store.current.status == RolloutStatus.ROLLED_BACK

    def test_set_percentage_reset_status(self, config_store: ConfigStore):
        config_store.set_status(RolloutStatus.ROLLED_BACK)
        config_store.set_percentage(20, reset_status=True)
        assert config_store.current.status == RolloutStatus.ACTIVE

    def test_set_percentage_uses_setting(self, settings: Settings, clock: FixedClock):
        store = ConfigStore(
            settings.model_copy(update={"adjust_resets_status": True}), clock=clock
        )
        store.set_status(RolloutStatus.PAUSED)
        store.set_percentage(12.7)
        assert store.current.canary_percentage == 12
        assert store.current.status == RolloutStatus.ACTIVE

    def test_mutations_recorded_in_history(self, config_store: ConfigStore, db: Database):
        config_store.set_percentage(20)
        config_store.set_status(RolloutStatus.PAUSED)
        points = db.percentage_history()
        # Same timestamp and percentage collapse into the latest change
        assert len(points) == 1
        assert points[0]["percentage"] == 20
        assert points[-1]["status"] == "PAUSED"
        assert points[-1]["source"] == "manual"


class TestSharedConfigFile:
    """An API process and a task worker share one data dir."""

    @pytest.fixture()
    def processes(self, settings: Settings, clock: FixedClock):
        worker = build_context(settings, clock=clock)
        api = build_context(settings, clock=clock, random_source=SequenceRandomSource([10.0]))
        yield worker, api
        worker.close()
        api.close()

    def test_status_change_seen_by_other_process(
        self, processes: tuple[CanaryContext, CanaryContext]
    ):
        worker, api = processes
        worker.config_store.set_status(RolloutStatus.ROLLED_BACK, source="automated")
        assert api.config_store.current.status == RolloutStatus.ROLLED_BACK
        assert api.config_store.current.update_source == "automated"

    def test_mutation_applies_on_top_of_other_process_write(
        self, processes: tuple[CanaryContext, CanaryContext], settings: Settings
    ):
        worker, api = processes
        worker.config_store.set_status(RolloutStatus.ROLLED_BACK, source="automated")
        api.config_store.set_percentage(30, reset_status=False)

        document = json.loads(settings.config_path.read_text())
        assert document["distribution"]["status"] == "ROLLED_BACK"
        assert document["distribution"]["canaryPercentage"] == 30
        assert worker.config_store.current.canary_percentage == 30

    def test_assignments_follow_rollback_from_other_process(
        self, processes: tuple[CanaryContext, CanaryContext]
    ):
        worker, api = processes
        api.config_store.update_distribution(canary_percentage=100, gradual_rollout=False)
        worker.config_store.set_status(RolloutStatus.ROLLED_BACK, source="automated")

        # Draw of 10 is canary at 100% but stable at the 2% floor
        assignment = api.assignments.assign("client-1", api.config_store.current)
        assert assignment.variant == Variant.STABLE
        assert assignment.assigned_at_percentage == 2

    def test_unchanged_file_not_reread(self, config_store: ConfigStore, settings: Settings):
        config_store.load()
        assert config_store.sync() is False

    def test_partial_file_keeps_last_good(self, config_store: ConfigStore, settings: Settings):
        config_store.set_percentage(40)
        settings.config_path.write_text('{"distribution": {"canaryPerc')
        assert config_store.sync() is False
        assert config_store.current.canary_percentage == 40


class TestRemoteOverlay:
    def test_newer_ticket_wins(self, config_store: ConfigStore):
        first = config_store.issue_fetch()
        second = config_store.issue_fetch()
        assert config_store.apply_fetched(second, {"distribution": {"canaryPercentage": 40}})
        assert not config_store.apply_fetched(first, {"distribution": {"canaryPercentage": 10}})
        assert config_store.current.canary_percentage == 40
        assert config_store.current.update_source == "remote"

    def test_in_order_tickets_both_apply(self, config_store: ConfigStore):
        first = config_store.issue_fetch()
        second = config_store.issue_fetch()
        assert config_store.apply_fetched(first, {"distribution": {"canaryPercentage": 10}})
        assert config_store.apply_fetched(second, {"distribution": {"canaryPercentage": 40}})
        assert config_store.current.canary_percentage == 40

    @respx.mock
    def test_refresh_applies_remote(self, remote_store: ConfigStore):
        route = respx.get(REMOTE_URL).mock(
            return_value=httpx.Response(200, json={"distribution": {"canaryPercentage": 35}})
        )
        assert remote_store.refresh() is True
        assert remote_store.current.canary_percentage == 35
        assert "nocache" in route.calls.last.request.url.params

    @respx.mock
    def test_refresh_failure_keeps_config(self, remote_store: ConfigStore):
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(500))
        before = remote_store.current
        assert remote_store.refresh() is False
        assert remote_store.current == before

    @respx.mock
    def test_refresh_invalid_json(self, remote_store: ConfigStore):
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(200, text="<html>"))
        assert remote_store.refresh() is False

    @respx.mock
    def test_refresh_network_error(self, remote_store: ConfigStore):
        respx.get(REMOTE_URL).mock(side_effect=httpx.ConnectError("unreachable"))
        assert remote_store.refresh() is False

    def test_refresh_without_url(self, config_store: ConfigStore):
        assert config_store.refresh() is False

    @respx.mock
    def test_refresh_async(self, remote_store: ConfigStore):
        respx.get(REMOTE_URL).mock(
            return_value=httpx.Response(200, json={"distribution": {"status": "PAUSED"}})
        )
        assert asyncio.run(remote_store.refresh_async()) is True
        assert remote_store.current.status == RolloutStatus.PAUSED

    @respx.mock
    def test_remote_apply_does_not_write_file(self, remote_store: ConfigStore, settings: Settings):
        respx.get(REMOTE_URL).mock(
            return_value=httpx.Response(200, json={"distribution": {"canaryPercentage": 35}})
        )
        remote_store.refresh()
        assert not settings.config_path.exists()
