"""Escalation sweep CLI commands.

``run`` performs a single sweep and prints its statistics. ``watch`` keeps
sweeping on an interval until interrupted with Ctrl+C or SIGTERM.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.table import Table

from reviewrouter.clock import as_utc
from reviewrouter.escalation.processor import EscalationStats
from reviewrouter.escalation.scheduler import EscalationScheduler
from reviewrouter.services import Services

app = typer.Typer(help="Escalation sweep commands")
console = Console()


def stats_table(stats: EscalationStats, title: str = "Escalation Sweep") -> Table:
    """Render sweep statistics as a two-column table."""
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Processed", str(stats.processed_count))
    table.add_row("Reminded", str(stats.reminded_count))
    table.add_row("Escalated", str(stats.escalated_count))
    table.add_row("Redelivered", str(stats.redelivered_count))
    error_style = "red" if stats.errors else "green"
    table.add_row("Errors", f"[{error_style}]{len(stats.errors)}[/{error_style}]")
    if stats.stopped:
        table.add_row("Stopped", "[yellow]yes[/yellow]")
    return table


def errors_table(stats: EscalationStats) -> Table:
    table = Table(title="Sweep Errors")
    table.add_column("Assignment", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Error", style="red")
    for error in stats.errors:
        table.add_row(error.assignment_id or "-", error.stage, error.error)
    return table


@app.command()
def run(
    now: Annotated[
        Optional[datetime],
        typer.Option("--now", help="Sweep as of this time (ISO 8601, default: current time)"),
    ] = None,
) -> None:
    """Run a single escalation sweep."""
    from reviewrouter.main import get_app_context

    ctx = get_app_context()

    async def _sweep(services: Services) -> EscalationStats:
        return await services.processor.run(now=as_utc(now) if now else None)

    try:
        stats = ctx.run(_sweep)
    except Exception as e:
        console.print(f"[red]Escalation sweep failed:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(stats_table(stats))
    if stats.errors:
        console.print(errors_table(stats))


@app.command()
def watch(
    interval: Annotated[
        Optional[int],
        typer.Option(
            "--interval",
            "-i",
            help="Seconds between sweeps (default: escalation.sweep_interval_seconds)",
        ),
    ] = None,
) -> None:
    """Sweep periodically until interrupted."""
    from reviewrouter.main import get_app_context

    ctx = get_app_context()
    interval_seconds = interval or ctx.config.escalation.sweep_interval_seconds

    async def _watch(services: Services) -> None:
        scheduler = EscalationScheduler(services.processor, interval_seconds)
        shutdown_event = asyncio.Event()

        def request_shutdown(*_: object) -> None:
            console.print()
            console.print("[yellow]Shutdown signal received. Finishing current sweep...[/yellow]")
            shutdown_event.set()

        signal.signal(signal.SIGINT, request_shutdown)
        signal.signal(signal.SIGTERM, request_shutdown)

        await scheduler.start()
        console.print(
            f"[bold green]Escalation scheduler running[/bold green] every {interval_seconds}s"
        )
        console.print("[dim]Press Ctrl+C to stop[/dim]")
        console.print()

        try:
            with Live(_watch_table(scheduler), refresh_per_second=1) as live:
                while not shutdown_event.is_set():
                    await asyncio.sleep(0.5)
                    live.update(_watch_table(scheduler))
        finally:
            await scheduler.stop()
            console.print("[green]Escalation scheduler stopped[/green]")

    try:
        ctx.run(_watch)
    except Exception as e:
        console.print(f"[red]Fatal error:[/red] {e}")
        raise typer.Exit(code=1)


def _watch_table(scheduler: EscalationScheduler) -> Table:
    if scheduler.last_stats is None:
        table = Table(title="Escalation Scheduler", show_header=False)
        table.add_column("Field", style="bold cyan")
        table.add_column("Value")
        table.add_row("Status", "[dim]waiting for first sweep[/dim]")
        return table
    return stats_table(scheduler.last_stats, title=f"Escalation Sweep #{scheduler.sweeps}")
