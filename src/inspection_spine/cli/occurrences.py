"""
``inspection-spine occurrences``: generated occurrences.
"""

from __future__ import annotations

import typer

from inspection_spine.cli.utils import fail, get_connection, occurrence_row, output, parse_now
from inspection_spine.core.models.scheduling import OccurrenceStatus
from inspection_spine.scheduling.repository import OccurrenceRepository, ScheduleRepository

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_occurrences(
    schedule_id: str = typer.Argument(..., help="Schedule ID or SCH- code"),
    status: OccurrenceStatus | None = typer.Option(None, "--status", help="Filter by status"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List occurrences generated for a schedule."""
    conn = get_connection(database)
    try:
        schedule = ScheduleRepository(conn).resolve(schedule_id)
        if schedule is None:
            fail(f"Schedule not found: {schedule_id}")
        occurrences = OccurrenceRepository(conn).list_for_schedule(schedule.id, status=status)
    finally:
        conn.close()
    output([occurrence_row(o) for o in occurrences], as_json=json_out, title=f"Occurrences: {schedule.code}")


@app.command("complete")
def complete_occurrence(
    occurrence_id: str = typer.Argument(..., help="Occurrence ID"),
    at: str | None = typer.Option(None, "--at", help="Completion instant (ISO-8601), defaults to now"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Record an occurrence as completed (feeds rolling schedules)."""
    completed_at = parse_now(at)
    conn = get_connection(database)
    try:
        repo = OccurrenceRepository(conn)
        if not repo.mark_completed(occurrence_id, completed_at):
            fail(f"No open occurrence {occurrence_id}")
        occurrence = repo.get(occurrence_id)
    finally:
        conn.close()
    output(occurrence_row(occurrence), as_json=json_out, title="Occurrence Completed")


@app.command("cancel")
def cancel_occurrence(
    occurrence_id: str = typer.Argument(..., help="Occurrence ID"),
    at: str | None = typer.Option(None, "--at", help="Cancellation instant (ISO-8601), defaults to now"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Cancel an open occurrence (a rolling schedule restarts from here)."""
    cancelled_at = parse_now(at)
    conn = get_connection(database)
    try:
        repo = OccurrenceRepository(conn)
        if not repo.mark_cancelled(occurrence_id, cancelled_at):
            fail(f"No open occurrence {occurrence_id}")
        occurrence = repo.get(occurrence_id)
    finally:
        conn.close()
    output(occurrence_row(occurrence), as_json=json_out, title="Occurrence Cancelled")
