"""
``inspection-spine db``: database management commands.
"""

from __future__ import annotations

import typer

from inspection_spine.cli.utils import console, fail, output
from inspection_spine.core.connection import SqliteConnection
from inspection_spine.core.schema_loader import TABLES, apply_schema, missing_tables
from inspection_spine.core.settings import get_settings

app = typer.Typer(no_args_is_help=True)


def _open(database: str | None) -> SqliteConnection:
    settings = get_settings()
    return SqliteConnection(
        database or settings.database_path,
        timeout_seconds=settings.persistence_timeout_seconds,
    )


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise database schema (create tables)."""
    conn = _open(database)
    try:
        applied = apply_schema(conn)
        missing = missing_tables(conn)
    finally:
        conn.close()
    if missing:
        fail(f"Tables still missing after init: {', '.join(missing)}")
    output({"applied": applied, "tables": list(TABLES)}, as_json=json_out, title="Database Init")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for the engine tables."""
    conn = _open(database)
    try:
        missing = set(missing_tables(conn))
        rows = []
        for table in TABLES:
            if table in missing:
                rows.append({"table": table, "rows": None, "exists": False})
                continue
            conn.execute(f"SELECT COUNT(*) FROM {table}")  # noqa: S608
            rows.append({"table": table, "rows": conn.fetchone()[0], "exists": True})
    finally:
        conn.close()
    if not json_out and missing:
        console.print("[yellow]Run `inspection-spine db init` to create missing tables.[/yellow]")
    output(rows, as_json=json_out, title="Table Counts")
