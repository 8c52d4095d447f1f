"""
``inspection-spine scheduler``: run the scheduler service.
"""

from __future__ import annotations

from pathlib import Path

import typer

from inspection_spine.cli.utils import console, get_connection, make_runner, output, parse_now
from inspection_spine.core.models.scheduling import PERIODIC_MODES
from inspection_spine.core.settings import get_settings
from inspection_spine.scheduling import ThreadSchedulerBackend, create_scheduler
from inspection_spine.scheduling.repository import EventRepository, ScheduleRepository

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    assets: Path | None = typer.Option(None, "--assets", "-a", help="Assets JSON file used for scope resolution"),
    interval: float | None = typer.Option(None, "--interval", "-i", min=0.1, help="Seconds between ticks"),
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Start the scheduler: run due schedules and drain events every tick.

    Example::

        inspection-spine scheduler start --assets assets.json --interval 60
        inspection-spine scheduler start --assets assets.json --once
    """
    runner, conn = make_runner(database, assets)
    interval_seconds = interval or get_settings().tick_interval_seconds

    if once:
        try:
            results = runner.run_all_due()
            event_results = runner.process_events()
        finally:
            conn.close()
        console.print(
            f"[green]Tick complete[/green]: {len(results)} schedule(s), "
            f"{sum(r.generated_count for r in results + event_results)} occurrence(s) generated"
        )
        return

    backend = ThreadSchedulerBackend()
    service = create_scheduler(runner, backend=backend, interval_seconds=interval_seconds)
    console.print(f"[bold green]Starting inspection scheduler[/bold green] (interval={interval_seconds}s)")
    service.start()
    try:
        while backend.is_running:
            backend.wait(timeout=1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped by user[/yellow]")
    finally:
        service.stop()
        conn.close()


@app.command("status")
def status(
    now: str | None = typer.Option(None, "--now", help="Evaluate as of this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show what the next tick would pick up."""
    at = parse_now(now)
    conn = get_connection(database)
    try:
        schedules = ScheduleRepository(conn)
        active = schedules.list_active()
        info = {
            "now": at,
            "active_schedules": len(active),
            "periodic_schedules": sum(1 for s in active if s.mode in PERIODIC_MODES),
            "due_schedules": len(schedules.get_due(at)),
            "pending_events": len(EventRepository(conn).list_unprocessed()),
            "config_errors": [s.code for s in schedules.list_all() if s.config_error],
        }
    finally:
        conn.close()
    output(info, as_json=json_out, title="Scheduler Status")
