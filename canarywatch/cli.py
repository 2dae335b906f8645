"""Click CLI entry point for canarywatch."""

from __future__ import annotations

import json
import sys
from datetime import UTC, date, datetime, time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from canarywatch.aggregator import MetricsAggregator
from canarywatch.config import Settings
from canarywatch.logging import configure_logging
from canarywatch.models.assignment import Variant
from canarywatch.models.config import RolloutStatus

if TYPE_CHECKING:
    from canarywatch.context import CanaryContext
    from canarywatch.models.evaluation import EvaluationOutcome


def _get_context(settings: Settings) -> CanaryContext:
    from canarywatch.context import build_context

    return build_context(settings)


def _parse_when(value: str | None) -> datetime | None:
    """Accept a date (midnight UTC) or a full ISO timestamp."""
    if value is None:
        return None
    try:
        if "T" in value or " " in value:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        return datetime.combine(date.fromisoformat(value), time.min, tzinfo=UTC)
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO date or timestamp: {value}") from exc


def parse_threshold_overrides(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Turn ``errors.maxErrorRate=0.05`` style pairs into a nested camelCase dict.

    Values are parsed as JSON when possible (numbers, booleans, lists),
    otherwise kept as strings.
    """
    overrides: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--threshold")
        try:
            value: Any = json.loads(raw)
        except ValueError:
            value = raw
        parts = key.strip().split(".")
        node = overrides
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise click.BadParameter(f"conflicting override for {key!r}", param_hint="--threshold")
            node = child
        node[parts[-1]] = value
    return overrides


def _echo_outcome(outcome: EvaluationOutcome) -> None:
    decision = outcome.decision
    click.echo(f"Action:      {decision.action.value} (confidence {decision.confidence:.0%})")
    for reason in decision.reasons:
        click.echo(f"  - {reason}")
    click.echo(
        f"Status:      {outcome.status_before.value} -> {outcome.status_after.value}"
        + ("" if outcome.applied else " (analysis only)")
    )
    click.echo(f"Exposure:    {outcome.percentage_before}% -> {outcome.percentage_after}%")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """canarywatch: canary rollout decision engine."""
    ctx.ensure_object(dict)
    settings = Settings()
    log_level = "DEBUG" if verbose else settings.log_level
    configure_logging(
        log_level=log_level,
        log_format=settings.log_format,
        environment=settings.environment,
    )
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the current rollout configuration and exposure."""
    canary = _get_context(ctx.obj["settings"])
    try:
        config = canary.config_store.current
        click.echo(f"Version:         {config.canary_version}")
        click.echo(f"Status:          {config.status.value}")
        click.echo(f"Configured:      {config.canary_percentage}%")
        click.echo(f"Effective:       {canary.config_store.effective_percentage()}%")
        click.echo(f"Safety floor:    {config.safety_floor_percentage}%")
        gradual = "on" if config.gradual_rollout else "off"
        click.echo(
            f"Gradual rollout: {gradual} (from {config.start_date.isoformat()}, "
            f"{config.rollout_period_days:g} days)"
        )
        last = config.distribution.last_evaluation_result
        if last is not None and config.distribution.last_evaluation_date is not None:
            click.echo(
                f"Last evaluation: {last.action.value} at "
                f"{config.distribution.last_evaluation_date.isoformat()}"
            )
        else:
            click.echo("Last evaluation: never")
    finally:
        canary.close()


@cli.command()
@click.option("--at", "at", type=str, default=None, help="Date or ISO timestamp (default: now)")
@click.option("--days", type=int, default=None, help="Show a day-by-day schedule for N days")
@click.pass_context
def percentage(ctx: click.Context, at: str | None, days: int | None) -> None:
    """Show the effective canary percentage, or the rollout schedule."""
    from canarywatch.rollout import rollout_schedule

    when = _parse_when(at)
    canary = _get_context(ctx.obj["settings"])
    try:
        config = canary.config_store.current
        if days is not None:
            start = when.date() if when else None
            for day, pct in rollout_schedule(config, days, start=start):
                click.echo(f"  {day.isoformat()}  {pct:3d}%")
            return
        click.echo(f"{canary.config_store.effective_percentage(when)}")
    finally:
        canary.close()


@cli.command()
@click.argument("client_id")
@click.pass_context
def assign(ctx: click.Context, client_id: str) -> None:
    """Assign (or look up) the variant for a client."""
    from canarywatch.assignment import AssignmentError

    canary = _get_context(ctx.obj["settings"])
    try:
        assignment = canary.assignments.assign(client_id, canary.config_store.current)
    except AssignmentError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    finally:
        canary.close()
    click.echo(assignment.model_dump_json(by_alias=True, indent=2))


@cli.command("set-variant")
@click.argument("client_id")
@click.argument("variant", type=click.Choice([v.value for v in Variant]))
@click.pass_context
def set_variant(ctx: click.Context, client_id: str, variant: str) -> None:
    """Manually pin a client to a variant."""
    from canarywatch.assignment import AssignmentError

    canary = _get_context(ctx.obj["settings"])
    try:
        assignment = canary.assignments.set_variant(client_id, Variant(variant))
    except AssignmentError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    finally:
        canary.close()
    click.echo(f"{assignment.client_id} -> {assignment.variant.value} (manual)")


@cli.command()
@click.option(
    "--events",
    "events_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSONL file of events to evaluate instead of the analytics source",
)
@click.option("--lookback-hours", type=float, default=None, help="Analytics window in hours")
@click.option(
    "--threshold",
    "thresholds",
    multiple=True,
    help="Threshold override, e.g. errors.maxErrorRate=0.05 (repeatable)",
)
@click.option("--analyze-only", is_flag=True, help="Evaluate without changing the config")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write a markdown summary to this file",
)
@click.option("--fail-on-rollback", is_flag=True, help="Exit with code 2 on a ROLLBACK decision")
@click.pass_context
def evaluate(
    ctx: click.Context,
    events_file: Path | None,
    lookback_hours: float | None,
    thresholds: tuple[str, ...],
    analyze_only: bool,
    report_path: Path | None,
    fail_on_rollback: bool,
) -> None:
    """Evaluate canary health and adjust the rollout."""
    from canarywatch.models.decision import RolloutAction
    from canarywatch.report import render_markdown

    overrides = parse_threshold_overrides(thresholds)
    canary = _get_context(ctx.obj["settings"])
    try:
        canary.config_store.refresh()
        if events_file is not None:
            # The file is evaluated on its own, outside the shared event window
            canary.orchestrator.snapshot_source = None
            canary.orchestrator.aggregator = MetricsAggregator(
                ignored_errors=canary.config_store.thresholds.errors.ignored_errors,
                clock=canary.clock,
            )
            with events_file.open(encoding="utf-8") as fh:
                records = []
                for line_no, line in enumerate(fh, start=1):
                    if not line.strip():
                        continue
                    try:
                        records.append(json.loads(line))
                    except ValueError:
                        click.echo(f"Skipping invalid JSON on line {line_no}", err=True)
            accepted, rejected = canary.orchestrator.aggregator.ingest(records)
            click.echo(f"Ingested {accepted} events ({rejected} rejected)")

        try:
            outcome = canary.orchestrator.evaluate_and_adjust(
                lookback_hours=lookback_hours,
                threshold_overrides=overrides,
                analyze_only=analyze_only,
            )
        except ValueError as exc:
            click.echo(f"Error: invalid threshold override: {exc}", err=True)
            sys.exit(1)

        if outcome is None:
            click.echo("Evaluation already in progress; skipped.")
            return
        _echo_outcome(outcome)
        if report_path is not None:
            ignored = canary.config_store.thresholds.errors.ignored_errors
            report_path.write_text(render_markdown(outcome, ignored), encoding="utf-8")
            click.echo(f"Report written to {report_path}")
    finally:
        canary.close()

    if fail_on_rollback and outcome.decision.action == RolloutAction.ROLLBACK:
        sys.exit(2)


@cli.command()
@click.argument("new_percentage", metavar="PERCENTAGE", type=float)
@click.option(
    "--reset-status/--keep-status",
    default=None,
    help="Return the status to ACTIVE (default: ADJUST_RESETS_STATUS setting)",
)
@click.pass_context
def adjust(ctx: click.Context, new_percentage: float, reset_status: bool | None) -> None:
    """Manually set the canary percentage."""
    canary = _get_context(ctx.obj["settings"])
    try:
        config = canary.config_store.set_percentage(new_percentage, reset_status=reset_status)
        click.echo(
            f"Canary percentage set to {config.canary_percentage}% "
            f"(status {config.status.value}, effective "
            f"{canary.config_store.effective_percentage()}%)"
        )
    finally:
        canary.close()


@cli.command()
@click.pass_context
def pause(ctx: click.Context) -> None:
    """Pause the rollout at the configured percentage."""
    canary = _get_context(ctx.obj["settings"])
    try:
        canary.config_store.set_status(RolloutStatus.PAUSED)
        click.echo("Rollout paused.")
    finally:
        canary.close()


@cli.command()
@click.pass_context
def resume(ctx: click.Context) -> None:
    """Return the rollout to ACTIVE (also after a rollback)."""
    canary = _get_context(ctx.obj["settings"])
    try:
        canary.config_store.set_status(RolloutStatus.ACTIVE)
        click.echo(f"Rollout active at {canary.config_store.effective_percentage()}%.")
    finally:
        canary.close()


@cli.command()
@click.option("--limit", default=20, type=int, help="Number of evaluations to show")
@click.option("--percentages", is_flag=True, help="Show the percentage history instead")
@click.pass_context
def history(ctx: click.Context, limit: int, percentages: bool) -> None:
    """Show recent evaluations or the percentage history."""
    canary = _get_context(ctx.obj["settings"])
    try:
        if percentages:
            points = canary.db.percentage_history()
            if not points:
                click.echo("No config changes recorded.")
                return
            for point in points[-limit:]:
                click.echo(
                    f"  {point['timestamp']}  {point['percentage']:3d}% "
                    f"(effective {point['effective_percentage']}%, {point['status']}, "
                    f"{point['source']})"
                )
            return

        outcomes = canary.db.list_decisions(limit=limit)
        if not outcomes:
            click.echo("No evaluations recorded.")
            return
        for outcome in outcomes:
            click.echo(
                f"  {outcome.evaluated_at.isoformat()}  {outcome.decision.action.value:15s} "
                f"{outcome.status_after.value:12s} {outcome.percentage_after:3d}%"
            )
    finally:
        canary.close()


@cli.command("refresh-config")
@click.pass_context
def refresh_config(ctx: click.Context) -> None:
    """Fetch the remote config overlay and save it locally."""
    settings = ctx.obj["settings"]
    if not settings.remote_config_url:
        click.echo("Remote config not configured (REMOTE_CONFIG_URL is empty).")
        return
    canary = _get_context(settings)
    try:
        if not canary.config_store.refresh():
            click.echo("Remote config could not be applied; keeping current config.", err=True)
            sys.exit(1)
        canary.config_store.save()
        click.echo(f"Remote config applied (canary {canary.config_store.current.canary_percentage}%).")
    finally:
        canary.close()


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Show which integrations are configured."""
    settings = ctx.obj["settings"]
    integrations = {
        "Remote config": bool(settings.remote_config_url),
        "Redis": bool(settings.redis_url),
        "PostHog": bool(settings.posthog_api_key and settings.posthog_project_id),
    }
    click.echo(f"  {'Environment':16s} {settings.environment}")
    for name, configured in integrations.items():
        state = "OK" if configured else "-- not set"
        click.echo(f"  {name:16s} {state}")


@cli.command()
@click.option("--workers", default=None, type=int, help="Number of worker threads")
@click.pass_context
def worker(ctx: click.Context, workers: int | None) -> None:
    """Start the Huey consumer for scheduled evaluations."""
    from canarywatch.tasks import huey

    count = workers or ctx.obj["settings"].huey_workers
    click.echo(f"Starting Huey consumer with {count} workers...")
    consumer = huey.create_consumer(workers=count)
    consumer.run()


@cli.command()
@click.option("--host", type=str, default=None, help="Bind host")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the FastAPI API server."""
    import uvicorn

    settings = ctx.obj["settings"]
    uvicorn.run(
        "canarywatch.api.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
    )
