"""
``inspection-spine events``: scheduling event queue.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from inspection_spine.cli.utils import event_row, fail, get_connection, make_runner, output, parse_now
from inspection_spine.core.models.scheduling import SchedulingEventType
from inspection_spine.scheduling.repository import EventRepository

app = typer.Typer(no_args_is_help=True)


@app.command("raise")
def raise_event(
    event_type: SchedulingEventType = typer.Argument(..., help="Event type (e.g. DEFECT_MARKED_UNSAFE)"),
    asset_id: str | None = typer.Option(None, "--asset", help="Asset the event is about"),
    site_id: str | None = typer.Option(None, "--site", help="Site the event belongs to"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Queue a scheduling event for event-driven schedules."""
    try:
        payload_dict = json.loads(payload)
    except json.JSONDecodeError as e:
        fail(f"Invalid JSON payload: {e}")
    if not isinstance(payload_dict, dict):
        fail("Payload must be a JSON object")

    conn = get_connection(database)
    try:
        event = EventRepository(conn).create(
            event_type, asset_id=asset_id, site_id=site_id, payload=payload_dict
        )
    finally:
        conn.close()
    output(event_row(event), as_json=json_out, title="Event Raised")


@app.command("list")
def list_events(
    pending: bool = typer.Option(False, "--pending", help="Only unprocessed events"),
    limit: int = typer.Option(50, "--limit", "-n", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recent (or pending) scheduling events."""
    conn = get_connection(database)
    try:
        repo = EventRepository(conn)
        events = repo.list_unprocessed(limit=limit) if pending else repo.list_recent(limit)
    finally:
        conn.close()
    output([event_row(e) for e in events], as_json=json_out, title="Scheduling Events")


@app.command("process")
def process_events(
    assets: Path | None = typer.Option(None, "--assets", "-a", help="Assets JSON file used for scope resolution"),
    now: str | None = typer.Option(None, "--now", help="Process as of this ISO-8601 instant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Drain pending events into event-driven schedules."""
    at = parse_now(now)
    runner, conn = make_runner(database, assets)
    try:
        results = runner.process_events(at)
    finally:
        conn.close()
    rows = [
        {
            "event_id": r.event_id,
            "schedule_id": r.schedule_id,
            "status": r.status,
            "generated": r.generated_count,
            "rejected": r.rejected_count,
            "error": r.error,
        }
        for r in results
    ]
    output(rows, as_json=json_out, title="Processed Events")
