"""
CLI interface for cctray.

Runs the usage monitor in the terminal and exposes the notification actions
(snooze, disable today, reset counters) against the persisted state.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional

import typer
import yaml
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from cctray.config.loader import Preferences, load_preferences
from cctray.core.errors import CommandError
from cctray.core.executor import CommandExecutor, build_ccusage_args
from cctray.core.monitor import UsageMonitor
from cctray.core.thresholds import NotificationAction, ThresholdKind, ThresholdNotifier
from cctray.core.usage import format_detailed_info
from cctray.storage.repository import StateRepository

app = typer.Typer(help="Claude Code usage monitor")
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

# Seconds between screen refreshes in watch mode
WATCH_REFRESH_SECONDS = 0.5


@dataclass
class CLIState:
    config_path: Optional[str] = None
    verbose: bool = False
    debug: bool = False


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _load(ctx: typer.Context) -> Preferences:
    state: CLIState = ctx.obj or CLIState()
    try:
        return load_preferences(state.config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _notifier(preferences: Preferences) -> ThresholdNotifier:
    token_prefs = preferences.notifications.token_limit
    return ThresholdNotifier(
        StateRepository(preferences.storage.db_path),
        max_per_day=token_prefs.max_per_day,
        snooze_minutes=token_prefs.snooze_minutes,
        quiet_hours=token_prefs.quiet_hours,
        priorities=token_prefs.priorities,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log informational messages and enable diagnostic mode"
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log debug messages"
    ),
):
    """Monitor Claude Code usage through ccusage."""
    ctx.obj = CLIState(config_path=config, verbose=verbose, debug=debug)
    _configure_logging(verbose, debug)


@app.command()
def watch(ctx: typer.Context):
    """Poll ccusage and show the rotating title until interrupted."""
    preferences = _load(ctx)
    monitor = UsageMonitor(preferences)
    monitor.diagnostic_mode = ctx.obj.verbose

    try:
        asyncio.run(_watch(monitor))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/]")
    if ctx.obj.verbose:
        console.print(monitor.diagnostic_summary(), markup=False)
    sys.exit(EXIT_CODE_OK)


async def _watch(monitor: UsageMonitor) -> None:
    with Live(_render(monitor), console=console, auto_refresh=False) as live:
        try:
            await monitor.start()
            while True:
                live.update(_render(monitor), refresh=True)
                await asyncio.sleep(WATCH_REFRESH_SECONDS)
        finally:
            monitor.stop()


def _render(monitor: UsageMonitor) -> Group:
    header = Text(monitor.current_title().strip() or "-", style="bold")
    countdown = Text(
        f"next refresh in {monitor.state.seconds_until_next_refresh}s"
        + (" (loading)" if monitor.is_loading else ""),
        style="dim",
    )
    lines = [header, countdown, Text("")]
    lines.extend(Text(line) for line in monitor.detailed_info())
    if monitor.state.in_backoff:
        lines.append(Text(
            f"backing off after {monitor.state.consecutive_error_count} errors "
            f"({monitor.state.current_backoff_delay:.0f}s)",
            style="yellow",
        ))
    return Group(*lines)


@app.command()
def status(ctx: typer.Context):
    """Fetch usage once and print the active block."""
    preferences = _load(ctx)
    executor = CommandExecutor()
    executor.diagnostic_mode = ctx.obj.verbose
    ccusage = preferences.ccusage

    try:
        response = asyncio.run(executor.get_usage_data(
            ccusage.command_path,
            script_path=ccusage.script_path,
            token_limit=preferences.token_limit.effective_limit,
            timeout=ccusage.timeout,
        ))
    except CommandError as e:
        console.print(f"[red]Error fetching usage data:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    block = response.active_block
    if block is None:
        console.print("💤 No active session")
        sys.exit(EXIT_CODE_OK)

    low, high = preferences.display.burn_rate_thresholds
    table = Table(title=f"Claude Code Usage ({preferences.display.plan.title})", show_header=False)
    table.add_column("Metric")
    for line in format_detailed_info(block, preferences.display.plan, low, high):
        table.add_row(line)
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def snooze(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="warning, urgent or critical"),
    minutes: Optional[int] = typer.Option(
        None,
        "--minutes",
        "-m",
        min=1,
        help="Snooze duration (defaults to the configured snooze_minutes)"
    ),
):
    """Snooze token limit notifications of one kind."""
    preferences = _load(ctx)
    try:
        threshold_kind = ThresholdKind(kind.lower())
    except ValueError:
        valid = [k.value for k in ThresholdKind if NotificationAction.SNOOZE in k.actions]
        console.print(f"[red]Unknown notification kind:[/] {kind} (expected one of {valid})")
        sys.exit(EXIT_CODE_FAIL)

    try:
        until = _notifier(preferences).handle_action(NotificationAction.SNOOZE, threshold_kind, minutes)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] {threshold_kind.value} notifications snoozed until {until:%H:%M}")
    sys.exit(EXIT_CODE_OK)


@app.command("disable-today")
def disable_today(ctx: typer.Context):
    """Disable token limit notifications until midnight."""
    preferences = _load(ctx)
    _notifier(preferences).handle_action(NotificationAction.DISABLE_TODAY)
    console.print("[green]✓[/] Token limit notifications disabled for today")
    sys.exit(EXIT_CODE_OK)


@app.command("reset-counters")
def reset_counters(ctx: typer.Context):
    """Clear today's token limit notification counters."""
    preferences = _load(ctx)
    _notifier(preferences).reset_counters()
    console.print("[green]✓[/] Notification counters reset")
    sys.exit(EXIT_CODE_OK)


@app.command()
def diagnostics(ctx: typer.Context):
    """Show the resolved ccusage command and notification tracking state."""
    preferences = _load(ctx)
    ccusage = preferences.ccusage
    executor = CommandExecutor()

    console.print("[bold]=== CCTray Diagnostics ===[/]")
    try:
        path, _ = executor.resolver.resolve(ccusage.command_path)
        console.print(f"Command: {path}")
    except CommandError as e:
        console.print(f"Command: [red]{e}[/]")
    args = build_ccusage_args(ccusage.script_path, preferences.token_limit.effective_limit)
    console.print(f"Arguments: {' '.join(args)}")
    console.print(f"Database: {preferences.storage.db_path}")

    notifier = _notifier(preferences)
    notifier.load()

    table = Table(title="Token Limit Notifications")
    table.add_column("Kind")
    table.add_column("Fired Today", justify="right")
    table.add_column("Last Percent", justify="right")
    table.add_column("Last Fired")
    table.add_column("Snoozed")
    for kind in ThresholdKind:
        entry = notifier.tracking.get(kind)
        snoozed = notifier.is_snoozed(kind)
        table.add_row(
            kind.value,
            str(entry.count_fired_today) if entry else "0",
            f"{entry.last_fired_percent:.1f}%" if entry else "-",
            entry.last_fired_at.strftime("%H:%M:%S") if entry and entry.last_fired_at else "-",
            f"until {notifier.snoozes[kind]:%H:%M}" if snoozed else "no",
        )
    console.print(table)
    console.print(f"Disabled today: {'yes' if notifier.is_disabled_today() else 'no'}")
    console.print(f"Quiet hours active: {'yes' if notifier.in_quiet_hours() else 'no'}")
    sys.exit(EXIT_CODE_OK)


if __name__ == "__main__":
    app()
