"""Health evaluation: compare canary metrics against stable and pick a rollout action."""

from __future__ import annotations

from typing import TYPE_CHECKING

from canarywatch.models.decision import Decision, RolloutAction

if TYPE_CHECKING:
    from canarywatch.models.config import Thresholds
    from canarywatch.models.snapshot import MetricsSnapshot

# Relative degradation (canary / stable) that counts as an issue
PAGE_LOAD_RATIO = 1.20
LCP_RATIO = 1.25
FID_RATIO = 1.30
CLS_RATIO = 1.50
ERROR_RATE_RATIO = 1.5
ENGAGEMENT_DROP = 0.20


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def _degraded(canary: float | None, stable: float | None, ratio: float) -> bool:
    # A missing or zero baseline means no comparison is possible
    if canary is None or stable is None or stable <= 0:
        return False
    return canary > stable * ratio


def _dropped(canary: float | None, stable: float | None) -> bool:
    if canary is None or stable is None or stable <= 0:
        return False
    return (stable - canary) / stable > ENGAGEMENT_DROP


class HealthEvaluator:
    """Stateless comparison of two metric snapshots.

    ``evaluate`` is pure: the same snapshots and thresholds always give an
    equal ``Decision``.
    """

    def evaluate(
        self,
        stable: MetricsSnapshot | None,
        canary: MetricsSnapshot | None,
        thresholds: Thresholds,
    ) -> Decision:
        if stable is None or canary is None:
            return Decision(
                action=RolloutAction.INCONCLUSIVE,
                confidence=0.0,
                reasons=["Metrics unavailable for one or both variants"],
            )

        shortfall = self._sample_shortfall(stable, canary, thresholds)
        if shortfall:
            return Decision(
                action=RolloutAction.NEED_MORE_DATA,
                confidence=0.3,
                reasons=shortfall,
            )

        issues: list[str] = []
        critical = 0

        # Performance
        if stable.performance and canary.performance:
            s_perf, c_perf = stable.performance, canary.performance
            page_load = thresholds.performance.page_load
            load_time = c_perf.page_load_time
            if load_time is not None and _degraded(load_time, s_perf.page_load_time, PAGE_LOAD_RATIO):
                message = (
                    f"Page load time degraded: {load_time:.0f}ms vs "
                    f"{s_perf.page_load_time:.0f}ms"
                )
                if load_time > page_load.critical_threshold:
                    issues.append(
                        f"Critical: {message} (above {page_load.critical_threshold:.0f}ms)"
                    )
                    critical += 1
                else:
                    issues.append(message)
            if _degraded(c_perf.lcp, s_perf.lcp, LCP_RATIO):
                issues.append(f"LCP degraded: {c_perf.lcp:.0f}ms vs {s_perf.lcp:.0f}ms")
            if _degraded(c_perf.fid, s_perf.fid, FID_RATIO):
                issues.append(f"FID degraded: {c_perf.fid:.0f}ms vs {s_perf.fid:.0f}ms")
            if _degraded(c_perf.cls, s_perf.cls, CLS_RATIO):
                issues.append(f"CLS increased: {c_perf.cls:.3f} vs {s_perf.cls:.3f}")

        # Errors
        ignored = thresholds.errors.ignored_errors
        canary_rate = canary.error_rate(ignored)
        stable_rate = stable.error_rate(ignored)
        if canary_rate is not None:
            # A zero stable rate still counts as a baseline here; only missing pageviews skip
            if stable_rate is not None and canary_rate > stable_rate * ERROR_RATE_RATIO:
                issues.append(
                    f"Error rate increased: {_pct(canary_rate)} vs {_pct(stable_rate)}"
                )
            max_rate = thresholds.errors.max_error_rate
            if canary_rate > max_rate:
                message = f"Error rate {_pct(canary_rate)} exceeds maximum {_pct(max_rate)}"
                if canary_rate > thresholds.errors.critical_errors:
                    issues.append(f"Critical: {message}")
                    critical += 1
                else:
                    issues.append(message)

        # Engagement
        if stable.engagement and canary.engagement:
            s_eng, c_eng = stable.engagement, canary.engagement
            if _dropped(c_eng.scroll_depth, s_eng.scroll_depth):
                issues.append(
                    f"Scroll depth dropped: {c_eng.scroll_depth:.1f}% vs {s_eng.scroll_depth:.1f}%"
                )
            if _dropped(c_eng.duration, s_eng.duration):
                issues.append(
                    f"Session duration dropped: {c_eng.duration:.0f}s vs {s_eng.duration:.0f}s"
                )

        return self._decide(issues, critical)

    @staticmethod
    def _sample_shortfall(
        stable: MetricsSnapshot, canary: MetricsSnapshot, thresholds: Thresholds
    ) -> list[str]:
        minimum = thresholds.min_sample_size
        reasons: list[str] = []
        for label, snap in (("stable", stable), ("canary", canary)):
            if snap.pageviews < minimum.page_views:
                reasons.append(
                    f"Insufficient {label} pageviews: {snap.pageviews} < {minimum.page_views}"
                )

        s_users, c_users = stable.unique_users, canary.unique_users
        if s_users is not None and c_users is not None:
            for label, users in (("stable", s_users), ("canary", c_users)):
                if users < minimum.unique_users:
                    reasons.append(
                        f"Insufficient {label} unique users: {users} < {minimum.unique_users}"
                    )

        if minimum.hours_of_data > 0:
            s_hours, c_hours = stable.window_hours, canary.window_hours
            if s_hours is not None and c_hours is not None:
                for label, hours in (("stable", s_hours), ("canary", c_hours)):
                    if hours < minimum.hours_of_data:
                        reasons.append(
                            f"Insufficient {label} data window: "
                            f"{hours:.1f}h < {minimum.hours_of_data:g}h"
                        )
        return reasons

    @staticmethod
    def _decide(issues: list[str], critical: int) -> Decision:
        if critical > 0:
            action, confidence = RolloutAction.ROLLBACK, 0.9
        elif len(issues) > 2:
            action, confidence = RolloutAction.SLOW_DOWN, 0.7
        elif issues:
            action, confidence = RolloutAction.CAUTION, 0.5
        else:
            action, confidence = RolloutAction.PROCEED, 0.8
            issues = ["All metrics within acceptable range"]
        return Decision(
            action=action,
            confidence=confidence,
            reasons=issues,
            critical_issues=critical,
        )


def evaluate(
    stable: MetricsSnapshot | None,
    canary: MetricsSnapshot | None,
    thresholds: Thresholds,
) -> Decision:
    """Module-level shortcut for ``HealthEvaluator().evaluate``."""
    return HealthEvaluator().evaluate(stable, canary, thresholds)
