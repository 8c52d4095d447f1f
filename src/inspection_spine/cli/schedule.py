"""
``inspection-spine schedule``: schedule definitions and runs.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import typer

from inspection_spine.cli.utils import (
    fail,
    get_connection,
    make_runner,
    output,
    parse_now,
    schedule_detail,
    schedule_row,
)
from inspection_spine.core.errors import EngineError, ScheduleNotFoundError
from inspection_spine.core.models.scheduling import ScheduleStatus
from inspection_spine.scheduling.definitions import ScheduleSpec
from inspection_spine.scheduling.repository import ScheduleRepository

app = typer.Typer(no_args_is_help=True)

_ASSETS_HELP = "Assets JSON file used for scope resolution"


@app.command("create")
def create_schedule(
    definition: Path = typer.Argument(..., exists=True, dir_okay=False, help="Schedule YAML/JSON file"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a schedule from a definition file."""
    try:
        spec = ScheduleSpec.from_yaml_file(definition)
    except ValueError as e:
        fail(f"Invalid schedule definition: {e}")

    conn = get_connection(database)
    try:
        schedule = ScheduleRepository(conn).create(spec.to_create())
    except EngineError as e:
        fail(e.message)
    finally:
        conn.close()
    output(schedule_detail(schedule), as_json=json_out, title="Schedule Created")


@app.command("list")
def list_schedules(
    site: str | None = typer.Option(None, "--site", help="Only schedules of this site"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List schedules."""
    conn = get_connection(database)
    try:
        repo = ScheduleRepository(conn)
        schedules = repo.list_by_site(site) if site else repo.list_all()
    finally:
        conn.close()
    output([schedule_row(s) for s in schedules], as_json=json_out, title="Schedules")


@app.command("show")
def show_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID or SCH- code"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show schedule details."""
    conn = get_connection(database)
    try:
        schedule = ScheduleRepository(conn).resolve(schedule_id)
    finally:
        conn.close()
    if schedule is None:
        fail(f"Schedule not found: {schedule_id}")
    output(schedule_detail(schedule), as_json=json_out, title=f"Schedule: {schedule.code}")


def _set_status(schedule_id: str, status: ScheduleStatus, database: str | None, json_out: bool) -> None:
    conn = get_connection(database)
    try:
        repo = ScheduleRepository(conn)
        schedule = repo.resolve(schedule_id)
        if schedule is None:
            fail(f"Schedule not found: {schedule_id}")
        schedule = repo.set_status(schedule.id, status, updated_by="cli")
    finally:
        conn.close()
    output(schedule_row(schedule), as_json=json_out, title=f"Schedule {status.value.lower()}")


@app.command("pause")
def pause_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID or SCH- code"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Pause a schedule. Existing occurrences are kept."""
    _set_status(schedule_id, ScheduleStatus.PAUSED, database, json_out)


@app.command("resume")
def resume_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID or SCH- code"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Resume a paused schedule."""
    _set_status(schedule_id, ScheduleStatus.ACTIVE, database, json_out)


@app.command("run")
def run_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID or SCH- code"),
    assets: Path | None = typer.Option(None, "--assets", "-a", help=_ASSETS_HELP),
    now: str | None = typer.Option(None, "--now", help="Run as of this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one schedule now, regardless of its next run time."""
    at = parse_now(now)
    runner, conn = make_runner(database, assets)
    try:
        result = runner.run_schedule(schedule_id, at)
    except ScheduleNotFoundError as e:
        fail(e.message)
    finally:
        conn.close()
    output(result.to_dict(), as_json=json_out, title="Run Result")


@app.command("run-due")
def run_due(
    assets: Path | None = typer.Option(None, "--assets", "-a", help=_ASSETS_HELP),
    now: str | None = typer.Option(None, "--now", help="Run as of this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run every due periodic schedule once, then sweep overdue occurrences."""
    at = parse_now(now)
    runner, conn = make_runner(database, assets)
    try:
        results = runner.run_all_due(at)
    finally:
        conn.close()
    rows = [
        {
            "schedule_id": r.schedule_id,
            "status": r.status,
            "generated": r.generated_count,
            "rejected": r.rejected_count,
            "error": r.error,
        }
        for r in results
    ]
    output(rows, as_json=json_out, title="Due Runs")


@app.command("preview")
def preview(
    schedule_id: str = typer.Argument(..., help="Schedule ID or SCH- code"),
    days: int = typer.Option(7, "--days", min=0, help="Horizon in days"),
    assets: Path | None = typer.Option(None, "--assets", "-a", help=_ASSETS_HELP),
    now: str | None = typer.Option(None, "--now", help="Preview from this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Predict upcoming occurrences without writing anything."""
    at = parse_now(now)
    runner, conn = make_runner(database, assets)
    try:
        entries = runner.preview_next_occurrences(schedule_id, timedelta(days=days), at)
    except EngineError as e:
        fail(e.message)
    finally:
        conn.close()
    rows = [{"scheduled_for": e.scheduled_for, "asset_id": e.asset_id} for e in entries]
    output(rows, as_json=json_out, title="Preview")
