"""SQL schema loading utilities.

Applies the packaged ``schema/*.sql`` files to a connection, in filename
order, one statement at a time.  Every statement is ``IF NOT EXISTS`` so
applying twice is harmless.
"""

from __future__ import annotations

from pathlib import Path

from inspection_spine.core.dialect import Dialect, SQLiteDialect
from inspection_spine.core.logging import get_logger
from inspection_spine.core.protocols import Connection

logger = get_logger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schema"

TABLES = ("insp_schedules", "insp_scheduling_events", "insp_occurrences")


def _split_sql(sql: str) -> list[str]:
    """Split a SQL script into individual statements.

    Comment-only and blank lines are dropped; a statement ends at a line
    ending with ``;``.
    """
    statements = []
    current = []
    for line in sql.splitlines():
        stripped = line.strip()
        if stripped.startswith("--") or not stripped:
            continue
        current.append(line)
        if stripped.endswith(";"):
            stmt = "\n".join(current).strip()
            if stmt and stmt != ";":
                statements.append(stmt)
            current = []
    if current:
        stmt = "\n".join(current).strip()
        if stmt:
            statements.append(stmt)
    return statements


def get_schema_files(schema_dir: Path | str | None = None) -> list[Path]:
    """Sorted ``.sql`` files in ``schema_dir`` (defaults to the packaged schema)."""
    directory = Path(schema_dir) if schema_dir else SCHEMA_DIR
    if not directory.exists():
        return []
    return sorted(directory.glob("*.sql"))


def apply_schema(conn: Connection, schema_dir: Path | str | None = None) -> list[str]:
    """Apply all schema files to ``conn`` and commit.

    Returns:
        Names of the applied files.
    """
    applied = []
    for sql_file in get_schema_files(schema_dir):
        sql = sql_file.read_text(encoding="utf-8")
        for statement in _split_sql(sql):
            conn.execute(statement)
        applied.append(sql_file.name)
        logger.debug("schema.applied", file=sql_file.name)

    conn.commit()
    logger.info("schema.all_applied", count=len(applied))
    return applied


def missing_tables(conn: Connection, dialect: Dialect | None = None) -> list[str]:
    """Engine tables that do not exist yet on ``conn``."""
    d = dialect or SQLiteDialect()
    missing = []
    for table in TABLES:
        conn.execute(d.table_exists_query(), (table,))
        if conn.fetchone() is None:
            missing.append(table)
    return missing


__all__ = ["SCHEMA_DIR", "TABLES", "apply_schema", "get_schema_files", "missing_tables"]
