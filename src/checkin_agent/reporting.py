"""Console rendering for run reports, session inventory, and targets."""
from __future__ import annotations

from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from .config import SchedulePreset, TargetConfig
from .cron import CronExpression
from .schemas import RunReport, SessionInfo


def render_report(report: RunReport, console: Optional[Console] = None, title: str = "Check-in Summary") -> None:
    console = console or Console()

    stats = Table(title=title, show_header=False)
    stats.add_column("Metric")
    stats.add_column("Value")
    stats.add_row("Total", f"{len(report.results)} target(s)")
    stats.add_row("Succeeded", str(report.success_count))
    stats.add_row("Failed", str(report.failure_count))
    stats.add_row("Duration", f"{report.duration_seconds:.1f}s")
    stats.add_row("Success rate", f"{report.success_rate:.0%}")
    console.print(stats)

    details = Table(title="Results", show_lines=True)
    details.add_column("Target")
    details.add_column("Status")
    details.add_column("Message")
    details.add_column("Time")
    for result in report.results:
        status = "[green]succeeded[/green]" if result.success else "[red]failed[/red]"
        details.add_row(
            result.display_name,
            status,
            result.message,
            result.timestamp.astimezone().strftime("%H:%M:%S"),
        )
    console.print(details)

    failures = report.failures()
    if failures:
        console.print("[bold red]Failures[/bold red]")
        for result in failures:
            console.print(f"  [bold]{result.display_name}[/bold]: {result.error or result.message}")


def render_sessions(sessions: Iterable[SessionInfo], console: Optional[Console] = None) -> None:
    console = console or Console()
    rows = list(sessions)
    if not rows:
        console.print("[yellow]No saved sessions[/yellow]")
        return

    table = Table(title="Saved Sessions")
    table.add_column("Target")
    table.add_column("Status")
    table.add_column("Age")
    for session in rows:
        status = "[green]valid[/green]" if session.is_valid else "[red]expired[/red]"
        if session.age_days is None:
            age = "unreadable"
        elif session.age_days < 1:
            age = "today"
        else:
            age = f"{round(session.age_days)} day(s) ago"
        table.add_row(session.target_id, status, age)
    console.print(table)


def render_targets(targets: Iterable[TargetConfig], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Targets")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Driver")
    for target in targets:
        table.add_row(target.id, target.display_name, "yes" if target.enabled else "no", target.driver)
    console.print(table)


def render_presets(presets: Iterable[SchedulePreset], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Schedule Presets")
    table.add_column("Name")
    table.add_column("Cron")
    table.add_column("Description")
    table.add_column("Mode")
    for preset in presets:
        description = preset.description
        if not description:
            description = CronExpression.parse(preset.cron_expression).describe() if CronExpression.is_valid(preset.cron_expression) else "invalid"
        table.add_row(preset.name, preset.cron_expression, description, "parallel" if preset.parallel else "serial")
    console.print(table)
