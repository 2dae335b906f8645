"""Tests for Prometheus metrics definitions and instrumentation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from canarywatch.assignment import AssignmentEngine, InMemoryAssignmentStore
from canarywatch.clock import FixedClock, SequenceRandomSource
from canarywatch.config_store import ConfigStore
from canarywatch.metrics import (
    assignments_total,
    circuit_breaker_state,
    config_fetches_total,
    evaluation_duration_seconds,
    evaluations_total,
    rollout_status,
)
from canarywatch.models.assignment import Variant
from canarywatch.models.config import RolloutStatus

if TYPE_CHECKING:
    from fastapi import FastAPI


class TestMetricDefinitions:
    """prometheus_client strips '_total' from Counter._name; it is re-added on export."""

    def test_assignments_counter(self):
        assert assignments_total._name == "canarywatch_assignments"
        assert assignments_total._labelnames == ("variant", "source")

    def test_evaluations_counter(self):
        assert evaluations_total._name == "canarywatch_evaluations"
        assert "action" in evaluations_total._labelnames

    def test_evaluation_histogram(self):
        assert evaluation_duration_seconds._name == "canarywatch_evaluation_duration_seconds"

    def test_config_fetches_counter(self):
        assert config_fetches_total._name == "canarywatch_config_fetches"
        assert "outcome" in config_fetches_total._labelnames

    def test_circuit_breaker_gauge(self):
        assert circuit_breaker_state._name == "canarywatch_circuit_breaker_state"


class TestInstrumentation:
    def test_manual_assignment_counted(self):
        engine = AssignmentEngine(
            InMemoryAssignmentStore(),
            random_source=SequenceRandomSource([1.0]),
            clock=FixedClock(datetime(2025, 5, 10, tzinfo=UTC)),
        )
        labels = {"variant": "canary", "source": "manual"}
        before = _get_counter_value("canarywatch_assignments", labels)
        engine.set_variant("metrics-client", Variant.CANARY)
        assert _get_counter_value("canarywatch_assignments", labels) - before == 1

    def test_status_gauge_follows_config(self, config_store: ConfigStore):
        config_store.set_status(RolloutStatus.PAUSED)
        assert _get_gauge_value("canarywatch_rollout_status", {"status": "PAUSED"}) == 1
        assert _get_gauge_value("canarywatch_rollout_status", {"status": "ACTIVE"}) == 0
        assert rollout_status._labelnames == ("status",)

    def test_percentage_gauges(self, config_store: ConfigStore):
        config_store.set_percentage(30)
        assert _get_gauge_value("canarywatch_canary_percentage", {}) == 30


class TestMetricsEndpoint:
    def test_metrics_endpoint(self):
        from canarywatch.api.app import create_app

        app = create_app()
        # Override lifespan to avoid building the context
        app.router.lifespan_context = _noop_lifespan
        client = TestClient(app, raise_server_exceptions=False)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers.get("content-type", "")
        assert "canarywatch_assignments_total" in response.text
        assert "canarywatch_evaluation_duration_seconds" in response.text


# --- Helpers ---


@asynccontextmanager
async def _noop_lifespan(app: FastAPI):
    yield


def _get_counter_value(metric_name: str, labels: dict[str, str]) -> float:
    for metric in REGISTRY.collect():
        if metric.name == metric_name:
            for sample in metric.samples:
                if sample.name == f"{metric_name}_total" and sample.labels == labels:
                    return sample.value
    return 0.0


def _get_gauge_value(metric_name: str, labels: dict[str, str]) -> float:
    for metric in REGISTRY.collect():
        if metric.name == metric_name:
            for sample in metric.samples:
                if sample.name == metric_name and sample.labels == labels:
                    return sample.value
    return 0.0
