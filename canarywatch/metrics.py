"""Prometheus metric definitions for the canary decision engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# --- Assignment ---

assignments_total = Counter(
    "canarywatch_assignments_total",
    "New variant assignments, by variant and source (random or manual)",
    labelnames=["variant", "source"],
)

assignment_errors_total = Counter(
    "canarywatch_assignment_errors_total",
    "Assignment store failures, by kind",
    labelnames=["kind"],
)

# --- Event ingestion ---

events_ingested_total = Counter(
    "canarywatch_events_ingested_total",
    "Events accepted by the metrics aggregator",
    labelnames=["variant", "type"],
)

events_rejected_total = Counter(
    "canarywatch_events_rejected_total",
    "Malformed events skipped during ingestion",
)

# --- Evaluation ---

evaluations_total = Counter(
    "canarywatch_evaluations_total",
    "Completed health evaluations, by resulting action",
    labelnames=["action"],
)

evaluations_skipped_total = Counter(
    "canarywatch_evaluations_skipped_total",
    "Evaluation ticks skipped because a previous run was still in flight",
)

evaluation_duration_seconds = Histogram(
    "canarywatch_evaluation_duration_seconds",
    "Time spent in one evaluate-and-adjust cycle",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30),
)

# --- Rollout state ---

canary_percentage = Gauge(
    "canarywatch_canary_percentage",
    "Configured canary percentage ceiling",
)

effective_percentage = Gauge(
    "canarywatch_effective_percentage",
    "Effective canary exposure after gradual rollout and status",
)

rollout_status = Gauge(
    "canarywatch_rollout_status",
    "Current rollout status (1 for the active state label)",
    labelnames=["status"],
)

# --- Remote config ---

config_fetches_total = Counter(
    "canarywatch_config_fetches_total",
    "Remote config fetch attempts, by outcome (applied, stale, failed)",
    labelnames=["outcome"],
)

# --- Retry ---

retry_attempts_total = Counter(
    "canarywatch_retry_attempts_total",
    "Retry attempts for external calls",
    labelnames=["operation"],
)

retry_exhausted_total = Counter(
    "canarywatch_retry_exhausted_total",
    "Times retries were exhausted for external calls",
    labelnames=["operation"],
)

# --- Circuit breaker ---

circuit_breaker_state = Gauge(
    "canarywatch_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    labelnames=["name"],
)

# --- API ---

api_requests_total = Counter(
    "canarywatch_api_requests_total",
    "API requests, by route template and status class",
    labelnames=["route", "status"],
)

api_request_duration_seconds = Histogram(
    "canarywatch_api_request_duration_seconds",
    "API request latency",
    labelnames=["route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5),
)
