"""Command line interface entry point."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console

from .browser import PlaywrightBrowserFactory
from .config import AppConfig, load_config
from .cron import CronExpression
from .daemon import ScheduleDaemon, read_daemon_state, stop_daemon
from .drivers.registry import DriverRegistry
from .errors import ConfigError, ScheduleError
from .logging_config import configure_logging
from .orchestrator import Orchestrator
from .persistence.session_store import SessionStore
from .reporting import render_presets, render_report, render_sessions, render_targets
from .scheduler import RetryPolicy, Scheduler
from .schemas import RunReport

console = Console()

MAIN_SCHEDULE_ID = "main"


class CliError(click.ClickException):
    """User-facing failure; printed without a traceback, exit code 1."""


@dataclass
class CliState:
    config_path: Optional[Path]
    verbose: bool
    _config: Optional[AppConfig] = None

    def config(self) -> AppConfig:
        if self._config is None:
            try:
                self._config = load_config(self.config_path)
            except ConfigError as exc:
                raise CliError(str(exc)) from exc
            configure_logging(
                level=self._config.logging.level,
                log_dir=self._config.logging.log_dir,
                verbose=self.verbose,
            )
        return self._config

    def store(self) -> SessionStore:
        config = self.config()
        return SessionStore(config.sessions.directory, ttl=timedelta(days=config.sessions.ttl_days))

    def orchestrator(self, store: Optional[SessionStore] = None, registry: Optional[DriverRegistry] = None) -> Orchestrator:
        config = self.config()
        return Orchestrator.from_config(
            config,
            store=store or self.store(),
            browser_factory=PlaywrightBrowserFactory(config.browser),
            registry=registry,
        )

    def scheduler(self) -> Scheduler:
        config = self.config()
        store = self.store()
        registry = DriverRegistry.from_targets(config.targets)
        try:
            return Scheduler(
                orchestrator_factory=lambda: self.orchestrator(store=store, registry=registry),
                timezone=config.schedule.timezone,
                retry=RetryPolicy.from_config(config.schedule),
                on_report=_print_report,
            )
        except ScheduleError as exc:
            raise CliError(str(exc)) from exc


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="checkin-agent")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the JSON configuration (defaults to $CHECKIN_CONFIG or config/checkin.json).",
)
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """Session-aware automatic check-in for the configured sites."""
    ctx.obj = CliState(config_path=config_path, verbose=verbose)


@main.command(name="run-all")
@click.option("--parallel", "-p", is_flag=True, default=False, help="Run all targets concurrently.")
@click.pass_obj
def run_all(state: CliState, parallel: bool) -> None:
    """Check into every enabled target (serial by default)."""
    report = asyncio.run(state.orchestrator().run_all(parallel=parallel))
    render_report(report, console)


@main.command(name="run-parallel")
@click.pass_obj
def run_parallel(state: CliState) -> None:
    """Check into every enabled target concurrently."""
    report = asyncio.run(state.orchestrator().run_all(parallel=True))
    render_report(report, console)


@main.command(name="run-single")
@click.argument("target_id")
@click.pass_obj
def run_single(state: CliState, target_id: str) -> None:
    """Check into one target."""
    report = asyncio.run(state.orchestrator().run_single(target_id))
    render_report(report, console, title=f"Check-in: {target_id}")


@main.command(name="list-targets")
@click.pass_obj
def list_targets(state: CliState) -> None:
    """List configured targets."""
    render_targets(state.config().targets, console)


@main.command(name="show-sessions")
@click.pass_obj
def show_sessions(state: CliState) -> None:
    """Show saved login sessions and their age."""
    render_sessions(state.store().list_all(), console)


@main.command(name="clear-sessions")
@click.argument("target_ids", nargs=-1)
@click.pass_obj
def clear_sessions(state: CliState, target_ids: Tuple[str, ...]) -> None:
    """Clear the saved sessions of TARGET_IDS, or of every target."""
    store = state.store()
    if not target_ids:
        count = store.purge_all()
        if count:
            console.print(f"[green]Cleared {count} session(s)[/green]")
        else:
            console.print("[yellow]No saved sessions[/yellow]")
        return

    config = state.config()
    for target_id in target_ids:
        if config.find_target(target_id) is None and not store.path_for(target_id).exists():
            raise CliError(f"Unknown target: {target_id}")
    for target_id in dict.fromkeys(target_ids):
        store.purge(target_id)
        console.print(f"[green]Cleared session for {target_id}[/green]")


@main.command(name="list-presets")
@click.pass_obj
def list_presets(state: CliState) -> None:
    """List named schedule presets."""
    render_presets(state.config().schedule.presets, console)


@main.command(name="start-schedule")
@click.argument("cron_expression", required=False)
@click.option("--preset", type=str, default=None, help="Use a named schedule preset.")
@click.option("--parallel", "-p", is_flag=True, default=False, help="Run targets concurrently on each firing.")
@click.option("--targets", type=str, default=None, help="Comma-separated target ids to run (default: all enabled).")
@click.pass_obj
def start_schedule(
    state: CliState,
    cron_expression: Optional[str],
    preset: Optional[str],
    parallel: bool,
    targets: Optional[str],
) -> None:
    """Run check-ins on a cron schedule until interrupted (default: every day at 08:00)."""
    config = state.config()
    running = read_daemon_state(config.scheduler_state_path)
    if running is not None:
        raise CliError(f"A schedule is already running (pid {running.pid}); stop it first")

    schedule = config.schedule
    expression = cron_expression or schedule.cron_expression
    parallel = parallel or schedule.parallel
    if preset is not None:
        chosen = schedule.preset(preset)
        if chosen is None:
            raise CliError(f"Unknown schedule preset: {preset}")
        expression = chosen.cron_expression
        parallel = parallel or chosen.parallel
    target_filter = _split_targets(targets) if targets else schedule.target_filter

    scheduler = state.scheduler()
    try:
        scheduler.add_schedule(MAIN_SCHEDULE_ID, expression, parallel=parallel, target_filter=target_filter)
    except ScheduleError as exc:
        raise CliError(str(exc)) from exc

    next_run = scheduler.next_run(MAIN_SCHEDULE_ID)
    console.print(f"Schedule started: [cyan]{expression}[/cyan] ({CronExpression.parse(expression).describe()})")
    if next_run is not None:
        console.print(f"Next run: [cyan]{next_run.strftime('%Y-%m-%d %H:%M %Z')}[/cyan]")
    console.print("Press Ctrl+C to stop")
    asyncio.run(ScheduleDaemon(scheduler, config.scheduler_state_path).serve())


@main.command(name="stop-schedule")
@click.pass_obj
def stop_schedule(state: CliState) -> None:
    """Stop the running schedule process."""
    if stop_daemon(state.config().scheduler_state_path):
        console.print("[green]Stop signal sent to the schedule process[/green]")
    else:
        console.print("[yellow]No schedule is running[/yellow]")


@main.command(name="schedule-status")
@click.pass_obj
def schedule_status(state: CliState) -> None:
    """Show whether a schedule process is running and what it runs."""
    running = read_daemon_state(state.config().scheduler_state_path)
    if running is None:
        console.print("Status: [red]stopped[/red]")
        console.print("Schedules: 0")
        return

    console.print(f"Status: [green]running[/green] (pid {running.pid}, since {running.started_at})")
    console.print(f"Schedules: {len(running.schedules)}")
    for entry in running.schedules:
        expression = entry.get("cron_expression", "")
        targets = ", ".join(entry.get("target_filter") or []) or "all enabled"
        console.print(f"  {entry.get('id')}: [cyan]{expression}[/cyan] targets: {targets}")


@main.command(name="run-now")
@click.argument("target_ids", nargs=-1)
@click.option("--parallel", "-p", is_flag=True, default=False, help="Run targets concurrently.")
@click.pass_obj
def run_now(state: CliState, target_ids: Tuple[str, ...], parallel: bool) -> None:
    """Run one pass immediately, optionally limited to TARGET_IDS."""
    asyncio.run(state.scheduler().run_now(parallel=parallel, target_filter=target_ids))


def _split_targets(raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _print_report(schedule_id: str, report: RunReport) -> None:
    render_report(report, console, title=f"Check-in Summary ({schedule_id})")


if __name__ == "__main__":  # pragma: no cover
    main()
