"""
CLI utility helpers: output formatting and store wiring.
"""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from inspection_spine.core.connection import SqliteConnection
from inspection_spine.core.models.scheduling import (
    GeneratedOccurrence,
    Schedule,
    SchedulingEvent,
    assignment_to_dict,
    rule_to_dict,
    scope_to_dict,
)
from inspection_spine.core.schema_loader import apply_schema
from inspection_spine.core.settings import get_settings
from inspection_spine.core.timestamps import from_iso8601, utc_now
from inspection_spine.scheduling import SchedulerRunner, create_runner
from inspection_spine.scheduling.adapters import InMemoryAssetDirectory, load_assets_file
from inspection_spine.scheduling.notifications import LoggingDispatcher

console = Console()
err_console = Console(stderr=True)


# ── Connection helpers ───────────────────────────────────────────────────


def get_connection(database: str | None = None) -> SqliteConnection:
    """Open the store with the schema applied.  Defaults to ``settings.database_path``."""
    settings = get_settings()
    conn = SqliteConnection(
        database or settings.database_path,
        timeout_seconds=settings.persistence_timeout_seconds,
    )
    apply_schema(conn)
    return conn


def make_runner(database: str | None, assets: Path | None) -> tuple[SchedulerRunner, SqliteConnection]:
    """Runner over ``database`` with the asset directory loaded from ``assets``."""
    if assets is not None:
        try:
            directory, meters = load_assets_file(assets)
        except (OSError, ValueError, KeyError) as e:
            fail(f"Cannot load assets file {assets}: {e}")
    else:
        directory, meters = InMemoryAssetDirectory(), None
    conn = get_connection(database)
    runner = create_runner(conn, directory, meters=meters, dispatcher=LoggingDispatcher())
    return runner, conn


def parse_now(value: str | None) -> datetime:
    """``--now`` option: ISO-8601 instant, defaults to the current time."""
    if not value:
        return utc_now()
    try:
        return from_iso8601(value)
    except ValueError as e:
        fail(f"Invalid --now value {value!r}: {e}")


def fail(message: str) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── Row shapes ───────────────────────────────────────────────────────────


def schedule_row(schedule: Schedule) -> dict[str, Any]:
    return {
        "code": schedule.code,
        "name": schedule.name,
        "site_id": schedule.site_id,
        "mode": schedule.mode.value,
        "status": schedule.status.value,
        "next_run_at": schedule.next_run_at,
        "last_run_status": schedule.last_run_status,
        "config_error": schedule.config_error,
    }


def schedule_detail(schedule: Schedule) -> dict[str, Any]:
    return {
        "id": schedule.id,
        **schedule_row(schedule),
        "template_id": schedule.template_id,
        "inspection_type": schedule.inspection_type,
        "scope": scope_to_dict(schedule.scope),
        "rule": rule_to_dict(schedule.rule),
        "start_date": schedule.start_date,
        "timezone": schedule.zone_name,
        "assignment": assignment_to_dict(schedule.assignment),
        "due_rules": schedule.due_rules,
        "constraints": schedule.constraints,
        "notifications": schedule.notifications,
        "generate_ahead_days": schedule.generate_ahead_days,
        "include_new_assets": schedule.include_new_assets,
        "end_date": schedule.end_date,
        "max_occurrences": schedule.max_occurrences,
        "last_run_at": schedule.last_run_at,
        "last_error": schedule.last_error,
    }


def event_row(event: SchedulingEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "type": event.type,
        "asset_id": event.asset_id,
        "site_id": event.site_id,
        "created_at": event.created_at,
        "processed_at": event.processed_at,
    }


def occurrence_row(occurrence: GeneratedOccurrence) -> dict[str, Any]:
    return {
        "id": occurrence.id,
        "schedule_id": occurrence.schedule_id,
        "asset_id": occurrence.asset_id,
        "scheduled_for": occurrence.scheduled_for,
        "due_at": occurrence.due_at,
        "status": occurrence.status,
        "assigned_to": occurrence.assigned_to,
        "origin": occurrence.origin,
        "overdue_flagged_at": occurrence.overdue_flagged_at,
        "cancelled_at": occurrence.cancelled_at,
    }


# ── Output helpers ───────────────────────────────────────────────────────


def plain(value: Any) -> Any:
    """Convert enums, timestamps, sets and dataclasses to JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, frozenset | set):
        return sorted(plain(v) for v in value)
    if isinstance(value, list | tuple):
        return [plain(v) for v in value]
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: plain(getattr(value, f.name)) for f in fields(value)}
    return value


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a row dict or a list of row dicts."""
    data = plain(data)

    if as_json:
        console.print_json(json.dumps(data, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(data, title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list[dict[str, Any]], *, title: str = "") -> None:
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in items[0]:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*("" if v is None else str(v) for v in item.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
