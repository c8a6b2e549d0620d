#!/usr/bin/env python3
"""Main CLI entry point for usage-sentinel using Typer.

Commands fetch a usage snapshot through the browser, sum local token
usage from the activity logs, show the recorded usage trend, and keep a
ledger of development sessions against a token limit.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from typing_extensions import Annotated

from .. import __version__
from ..config.loader import SentinelConfig, load_config
from ..errors import ConfigLoadError
from ..extraction.schema import schema_info
from ..history import UsageHistory
from ..models.logs import AggregateUsage
from ..models.usage import UsageSnapshot, usage_level
from ..orchestrator import AcquisitionOrchestrator, FetchOutcome
from ..session_tracker import TrackedSession
from ..utils.reset_time import relative_to_clock_time


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0
    FETCH_FAILED = 1      # No usage snapshot could be acquired
    CONFIG_ERROR = 2      # Configuration could not be loaded


LEVEL_ICONS = {
    "normal": "✅",
    "warning": "⚠️",
    "critical": "🔴",
    "unknown": "❔",
}


app = typer.Typer(
    name="usage-sentinel",
    help="Usage Sentinel - track Claude plan usage from the browser and local logs",
    add_completion=False,
)


@app.callback()
def main():
    """
    Usage Sentinel - track Claude plan usage.

    Reads rate-limit utilization from the claude.ai usage page and token
    totals from the local activity logs.
    """
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_file: Optional[Path]) -> SentinelConfig:
    try:
        return load_config(config_file)
    except ConfigLoadError as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


def _format_tokens(aggregate: AggregateUsage) -> str:
    return (
        f"{aggregate.total_tokens:,} tokens "
        f"(input {aggregate.input_tokens:,}, output {aggregate.output_tokens:,}, "
        f"cache write {aggregate.cache_creation_tokens:,}, "
        f"cache read {aggregate.cache_read_tokens:,}; "
        f"{aggregate.record_count} messages)"
    )


def snapshot_to_dict(snapshot: UsageSnapshot) -> Dict[str, Any]:
    """JSON-ready view of a snapshot including derived fields."""
    data = snapshot.model_dump(mode="json")
    data["usage_percent"] = snapshot.usage_percent
    data["reset_time"] = snapshot.reset_time
    data["usage_level"] = usage_level(snapshot.usage_percent)
    return data


def outcome_to_dict(outcome: FetchOutcome) -> Dict[str, Any]:
    """JSON-ready view of a fetch outcome."""
    return {
        "snapshot": snapshot_to_dict(outcome.snapshot) if outcome.snapshot else None,
        "error": {"kind": outcome.error.kind, "message": str(outcome.error)} if outcome.error else None,
        "aggregate": outcome.aggregate.model_dump(),
        "fetched_at": outcome.fetched_at.isoformat(),
    }


def _print_snapshot(snapshot: UsageSnapshot) -> None:
    level = usage_level(snapshot.usage_percent)
    percent = "n/a" if snapshot.usage_percent is None else f"{snapshot.usage_percent:g}%"
    reset = snapshot.reset_time
    clock = relative_to_clock_time(reset, datetime.now())

    typer.echo(f"{LEVEL_ICONS[level]} Five-hour usage: {percent} (resets in {reset}, at {clock})")

    if snapshot.seven_day.utilization is not None:
        typer.echo(f"   Seven-day usage: {snapshot.seven_day.utilization:g}%")
    for model, window in snapshot.seven_day_per_model.items():
        if window.utilization is not None:
            typer.echo(f"   Seven-day {model}: {window.utilization:g}%")

    credits = snapshot.monthly_credits
    if credits is not None:
        typer.echo(
            f"   Monthly credits: {credits.used:.2f} / {credits.limit:.2f} "
            f"{credits.currency} ({credits.percent}%)"
        )

    typer.echo(f"   Source: {snapshot.source}, schema {snapshot.schema_version}")


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"usage-sentinel v{__version__}")


@app.command()
def fetch(
    visible: Annotated[
        bool,
        typer.Option("--visible", help="Show the browser window")
    ] = False,

    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON")
    ] = False,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging")
    ] = False,
):
    """
    Fetch current plan usage and local token totals.

    Opens (or attaches to) a browser on the usage page; if you are not
    logged in, a window is shown and the command waits for the login.
    """
    _configure_logging(verbose)
    config = _load(config_file)

    orchestrator = AcquisitionOrchestrator(
        browser_config=config.to_browser_config(headless=False if visible else None),
        aggregator=config.to_aggregator(),
        history=config.to_history(),
        on_login_required=lambda message: typer.echo(f"🔐 {message}", err=True),
        api_timeout_ms=config.timeouts.api_ms,
    )

    async def _run() -> FetchOutcome:
        context = orchestrator.new_context()
        try:
            return await orchestrator.fetch(context)
        finally:
            await orchestrator.close(context)

    try:
        outcome = asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("❌ Operation interrupted by user", err=True)
        raise typer.Exit(code=ExitCode.FETCH_FAILED.value)

    if json_output:
        typer.echo(json.dumps(outcome_to_dict(outcome), indent=2))
    else:
        if outcome.snapshot is not None:
            _print_snapshot(outcome.snapshot)
        if outcome.error is not None:
            typer.echo(f"❌ Usage fetch failed ({outcome.error.kind}): {outcome.error}", err=True)
        typer.echo(f"📊 Local usage: {_format_tokens(outcome.aggregate)}")

    if not outcome.ok:
        raise typer.Exit(code=ExitCode.FETCH_FAILED.value)


@app.command()
def tokens(
    since_hours: Annotated[
        Optional[float],
        typer.Option("--since-hours", help="Only count the last N hours")
    ] = None,

    today: Annotated[
        bool,
        typer.Option("--today", help="Only count usage since local midnight")
    ] = False,

    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON")
    ] = False,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging")
    ] = False,
):
    """
    Sum token usage from the local activity logs.
    """
    _configure_logging(verbose)
    config = _load(config_file)
    aggregator = config.to_aggregator()

    if today and since_hours is not None:
        typer.echo("❌ Use either --today or --since-hours, not both", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    if today:
        aggregate = asyncio.run(aggregator.today_usage())
    elif since_hours is not None:
        since = datetime.now(timezone.utc) - timedelta(hours=since_hours)
        aggregate = asyncio.run(aggregator.aggregate(since=since))
    else:
        aggregate = asyncio.run(aggregator.aggregate())

    if json_output:
        typer.echo(json.dumps(aggregate.model_dump(), indent=2))
    else:
        typer.echo(f"📊 {_format_tokens(aggregate)}")


@app.command()
def history(
    count: Annotated[
        int,
        typer.Option("--count", "-n", help="Number of sparkline characters")
    ] = 24,

    clear: Annotated[
        bool,
        typer.Option("--clear", help="Delete the recorded history")
    ] = False,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration file")
    ] = None,
):
    """
    Show the recorded five-hour usage trend.
    """
    config = _load(config_file)
    store = config.to_history() or UsageHistory(
        history_file=config.history.file,
        max_data_points=config.history.max_data_points,
    )

    if clear:
        asyncio.run(store.clear_history())
        typer.echo("🧹 Usage history cleared")
        return

    points = asyncio.run(store.get_recent_data_points(store.max_data_points))
    sparkline = asyncio.run(store.get_five_hour_sparkline(count=count))

    typer.echo(sparkline)
    if points:
        latest = points[-1]
        typer.echo(
            f"{len(points)} readings, latest {latest.five_hour:g}% "
            f"at {latest.timestamp.astimezone().strftime('%Y-%m-%d %H:%M')}"
        )
    else:
        typer.echo("No usage history recorded yet")


session_app = typer.Typer(help="Track development sessions against a token limit")
app.add_typer(session_app, name="session")


def _print_session(session: TrackedSession) -> None:
    usage = session.token_usage
    percent = usage.percent
    icon = LEVEL_ICONS[usage.level]
    status = "active" if session.is_active else "ended"
    typer.echo(f"🗂  {session.session_id} ({status}): {session.description}")
    typer.echo(
        f"{icon} Tokens: {usage.current:,} / {usage.limit:,}"
        + (f" ({percent}%)" if percent is not None else "")
        + f", {usage.remaining:,} remaining"
    )
    if session.activities:
        typer.echo(f"   Activities: {', '.join(session.activities)}")


def _require_session(session: Optional[TrackedSession]) -> TrackedSession:
    if session is None:
        typer.echo("❌ No session recorded. Start one with 'usage-sentinel session start'.", err=True)
        raise typer.Exit(code=ExitCode.FETCH_FAILED.value)
    return session


ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to YAML configuration file")
]


@session_app.command("start")
def session_start(
    description: Annotated[str, typer.Argument(help="What you are working on")] = "Development session",
    config_file: ConfigOption = None,
):
    """Start a new session."""
    tracker = _load(config_file).to_session_tracker()
    _print_session(asyncio.run(tracker.start_session(description)))


@session_app.command("status")
def session_status(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON")
    ] = False,
    config_file: ConfigOption = None,
):
    """Show the current session."""
    tracker = _load(config_file).to_session_tracker()
    session = _require_session(asyncio.run(tracker.current_session()))

    if json_output:
        data = session.model_dump(mode="json")
        data["token_usage"]["percent"] = session.token_usage.percent
        data["token_usage"]["level"] = session.token_usage.level
        typer.echo(json.dumps(data, indent=2))
    else:
        _print_session(session)


@session_app.command("tokens")
def session_tokens(
    count: Annotated[
        Optional[int],
        typer.Argument(min=0, help="Token count; defaults to the last hour of local logs")
    ] = None,
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", min=1, help="Token limit for the session")
    ] = None,
    config_file: ConfigOption = None,
):
    """Record the current session's token count."""
    config = _load(config_file)
    tracker = config.to_session_tracker()

    if count is None:
        count = asyncio.run(config.to_aggregator().current_session_usage()).total_tokens

    session = _require_session(asyncio.run(tracker.update_tokens(count, token_limit=limit)))
    _print_session(session)


@session_app.command("activity")
def session_activity(
    activity: Annotated[str, typer.Argument(help="Activity description")],
    config_file: ConfigOption = None,
):
    """Add an activity to the current session."""
    tracker = _load(config_file).to_session_tracker()
    session = _require_session(asyncio.run(tracker.add_activity(activity)))
    _print_session(session)


@session_app.command("end")
def session_end(config_file: ConfigOption = None):
    """End the current session."""
    tracker = _load(config_file).to_session_tracker()
    session = _require_session(asyncio.run(tracker.end_session()))
    _print_session(session)


@session_app.command("reset")
def session_reset(config_file: ConfigOption = None):
    """Zero the current session's token count."""
    tracker = _load(config_file).to_session_tracker()
    session = _require_session(asyncio.run(tracker.reset_session_tokens()))
    _print_session(session)


@session_app.command("summary")
def session_summary(config_file: ConfigOption = None):
    """Totals across all recorded sessions."""
    tracker = _load(config_file).to_session_tracker()
    summary = asyncio.run(tracker.summary())
    typer.echo(
        f"📚 {summary.total_sessions} sessions, {summary.total_tokens:,} tokens "
        f"(average {summary.average_tokens_per_session:,} per session)"
    )


@app.command()
def schema():
    """Show the extraction schema version and tracked fields."""
    typer.echo(json.dumps(schema_info(), indent=2))


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    app()
