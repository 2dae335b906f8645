"""Client for the PostHog trends API, used as a per-variant metrics source.

Pageviews, errors and unique users come from one trends query per variant;
performance averages come from a second query broken down by metric name.
Events are filtered on the ``version`` property the client SDK attaches.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from canarywatch.models.assignment import Variant
from canarywatch.models.snapshot import EngagementSummary, MetricsSnapshot, PerformanceSummary
from canarywatch.retry import CircuitBreaker, CircuitOpenError, RetryExhaustedError, with_retry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

logger = structlog.get_logger()

# Series order in the counts query; results come back in the same order
_COUNT_EVENTS: list[dict[str, str]] = [
    {"id": "pageview", "name": "pageview", "math": "total"},
    {"id": "$pageview", "name": "$pageview", "math": "total"},
    {"id": "error", "name": "error", "math": "total"},
    {"id": "$pageview", "name": "$pageview", "math": "dau"},
]

_PERFORMANCE_EVENTS: list[dict[str, str]] = [
    {
        "id": "$performance_event",
        "name": "$performance_event",
        "math": "avg",
        "math_property": "value",
    },
]

# Breakdown values, in order of preference, for each performance field
_PERFORMANCE_KEYS: dict[str, tuple[str, ...]] = {
    "page_load_time": ("page_load_time", "load"),
    "lcp": ("LCP", "lcp"),
    "fid": ("FID", "fid"),
    "cls": ("CLS", "cls"),
}


class AnalyticsUnavailableError(Exception):
    """Metrics could not be fetched from the analytics backend."""


def _series_total(item: dict[str, Any]) -> float:
    count = item.get("count")
    if isinstance(count, int | float):
        return float(count)
    data = item.get("data") or []
    return float(sum(v for v in data if isinstance(v, int | float)))


def _series_average(item: dict[str, Any]) -> float | None:
    data = [v for v in item.get("data") or [] if isinstance(v, int | float)]
    if not data:
        aggregated = item.get("aggregated_value")
        return float(aggregated) if isinstance(aggregated, int | float) else None
    return sum(data) / len(data)


class PostHogClient:
    """PostHog trends client. Returns mock snapshots when credentials are not configured."""

    def __init__(
        self,
        api_key: str = "",
        project_id: str = "",
        host: str = "https://app.posthog.com",
        max_retries: int = 3,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.project_id = project_id
        self.base_url = host.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self._sleep = sleep
        self.breaker = CircuitBreaker(name="posthog", failure_threshold=3)

    @property
    def is_available(self) -> bool:
        return bool(self.api_key and self.project_id)

    @property
    def _trends_url(self) -> str:
        return f"{self.base_url}/api/projects/{self.project_id}/insights/trend/"

    def fetch_snapshots(self, start: datetime, end: datetime) -> dict[Variant, MetricsSnapshot]:
        """Per-variant snapshots for the window [start, end].

        Raises AnalyticsUnavailableError when the backend cannot be reached
        after retries or the circuit breaker is open.
        """
        if not self.is_available:
            logger.debug("PostHog not configured, returning mock snapshots")
            return self._mock_snapshots(start, end)

        window_hours = max(0.0, (end - start).total_seconds() / 3600)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                return {
                    variant: self._fetch_variant(client, variant, start, end, window_hours)
                    for variant in Variant
                }
        except (RetryExhaustedError, CircuitOpenError) as exc:
            logger.warning("PostHog metrics unavailable", error=str(exc))
            raise AnalyticsUnavailableError(str(exc)) from exc
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Unexpected PostHog response", error=str(exc))
            raise AnalyticsUnavailableError(f"Unexpected PostHog response: {exc}") from exc

    def _fetch_variant(
        self,
        client: httpx.Client,
        variant: Variant,
        start: datetime,
        end: datetime,
        window_hours: float,
    ) -> MetricsSnapshot:
        counts = self._query(client, variant, start, end, _COUNT_EVENTS)
        performance = self._query(client, variant, start, end, _PERFORMANCE_EVENTS, breakdown="name")

        totals = [_series_total(item) for item in counts[: len(_COUNT_EVENTS)]]
        totals += [0.0] * (len(_COUNT_EVENTS) - len(totals))
        pageviews = int(totals[0] + totals[1])
        errors = int(totals[2])
        unique_users = int(totals[3]) if len(counts) > 3 else None

        return MetricsSnapshot(
            variant=variant,
            pageviews=pageviews,
            errors=errors,
            engagement=EngagementSummary(unique_users=unique_users) if unique_users else None,
            performance=self._parse_performance(performance),
            window_hours=window_hours,
        )

    def _query(
        self,
        client: httpx.Client,
        variant: Variant,
        start: datetime,
        end: datetime,
        events: list[dict[str, str]],
        breakdown: str | None = None,
    ) -> list[dict[str, Any]]:
        body: dict[str, Any] = {
            "date_from": start.isoformat(),
            "date_to": end.isoformat(),
            "events": events,
            "properties": [{"key": "version", "value": variant.value, "operator": "exact"}],
            "display": "ActionsTable",
        }
        if breakdown:
            body["breakdown"] = breakdown

        def _post() -> dict[str, Any]:
            resp = client.post(
                self._trends_url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
            return resp.json()

        data = with_retry(
            lambda: self.breaker.call(_post),
            operation="posthog_trends",
            max_retries=self.max_retries,
            retryable=(httpx.HTTPError,),
            sleep=self._sleep,
        )
        result = data.get("result") or []
        if not isinstance(result, list):
            raise ValueError("trends result is not a list")
        return result

    @staticmethod
    def _parse_performance(series: list[dict[str, Any]]) -> PerformanceSummary | None:
        averages: dict[str, float] = {}
        for item in series:
            name = item.get("breakdown_value")
            value = _series_average(item)
            if name and value is not None:
                averages[str(name)] = value

        fields: dict[str, float | None] = {}
        for field_name, keys in _PERFORMANCE_KEYS.items():
            fields[field_name] = next((averages[k] for k in keys if averages.get(k)), None)
        if all(v is None for v in fields.values()):
            return None
        return PerformanceSummary(**fields)

    # --- Mock data for development without PostHog ---

    @staticmethod
    def _mock_snapshots(start: datetime, end: datetime) -> dict[Variant, MetricsSnapshot]:
        window_hours = max(0.0, (end - start).total_seconds() / 3600)
        return {
            Variant.STABLE: MetricsSnapshot(
                variant=Variant.STABLE,
                pageviews=1200,
                errors=6,
                engagement=EngagementSummary(unique_users=400),
                performance=PerformanceSummary(page_load_time=1200.0, lcp=2100.0, fid=80.0, cls=0.05),
                window_hours=window_hours,
            ),
            Variant.CANARY: MetricsSnapshot(
                variant=Variant.CANARY,
                pageviews=150,
                errors=1,
                engagement=EngagementSummary(unique_users=60),
                performance=PerformanceSummary(page_load_time=1250.0, lcp=2200.0, fid=85.0, cls=0.05),
                window_hours=window_hours,
            ),
        }
