"""Markdown summary of an evaluation outcome, for CI step summaries and PR comments."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canarywatch.models.evaluation import EvaluationOutcome
    from canarywatch.models.snapshot import MetricsSnapshot


def _rate(snapshot: MetricsSnapshot | None, ignored: list[str]) -> str:
    if snapshot is None:
        return "n/a"
    rate = snapshot.error_rate(ignored)
    return "n/a" if rate is None else f"{rate * 100:.2f}%"


def _row(label: str, snapshot: MetricsSnapshot | None, ignored: list[str]) -> str:
    if snapshot is None:
        return f"| {label} | n/a | n/a | n/a |"
    errors = len(snapshot.relevant_errors(ignored))
    return f"| {label} | {snapshot.pageviews} | {errors} | {_rate(snapshot, ignored)} |"


def render_markdown(outcome: EvaluationOutcome, ignored_errors: list[str] | None = None) -> str:
    ignored = ignored_errors or []
    decision = outcome.decision
    lines = [
        "# Canary Deployment Analysis",
        "",
        f"Analysis timestamp: {outcome.evaluated_at.isoformat()}",
        "",
        "## Results",
        "",
        "| Version | Pageviews | Errors | Error Rate |",
        "|---------|-----------|--------|------------|",
        _row("Stable", outcome.stable, ignored),
        _row("Canary", outcome.canary, ignored),
        "",
        "## Analysis",
        "",
        f"- **Recommended action**: {decision.action.value}",
        f"- Confidence: {decision.confidence:.0%}",
        f"- Critical issues: {decision.critical_issues}",
    ]
    lines.extend(f"- {reason}" for reason in decision.reasons)
    lines += ["", "## Canary Update", ""]
    if not outcome.applied:
        lines.append("- **Analysis only; configuration was not changed**")
    elif outcome.status_changed or outcome.percentage_before != outcome.percentage_after:
        lines.append(
            f"- **Status {outcome.status_before.value} -> {outcome.status_after.value}, "
            f"exposure {outcome.percentage_before}% -> {outcome.percentage_after}%**"
        )
    else:
        lines.append("- **No changes to canary percentage were needed**")
    return "\n".join(lines) + "\n"
