"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~inspection_spine.core.protocols.Connection` protocol.

A bare ``sqlite3.Connection`` exposes ``execute()`` (returns a cursor) but
not ``fetchone()`` / ``fetchall()`` at the connection level.  This adapter
bridges the gap, applies a busy timeout, and surfaces "database is locked"
as :class:`~inspection_spine.core.errors.ExternalTimeout` so a run can mark
the affected schedule failed and retry it next time.

Usage::

    from inspection_spine.core.connection import SqliteConnection

    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t (id INTEGER)")
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    conn.execute("SELECT * FROM t")
    row = conn.fetchone()
    conn.commit()
    conn.close()
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

from inspection_spine.core.errors import ExternalTimeout


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set.
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        *,
        timeout_seconds: float = 5.0,
        row_factory: Any = sqlite3.Row,
    ) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout_seconds
        self._conn = sqlite3.connect(str(path), timeout=timeout_seconds, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        try:
            self._cursor.execute(sql, params)
        except sqlite3.OperationalError as exc:
            self._raise_if_locked(exc)
            raise
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        try:
            self._cursor.executemany(sql, params)
        except sqlite3.OperationalError as exc:
            self._raise_if_locked(exc)
            raise
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        try:
            self._conn.commit()
        except sqlite3.OperationalError as exc:
            self._raise_if_locked(exc)
            raise

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- helpers -----------------------------------------------------------

    def _raise_if_locked(self, exc: sqlite3.OperationalError) -> None:
        if "locked" in str(exc).lower() or "busy" in str(exc).lower():
            raise ExternalTimeout(
                "Store did not become available in time",
                operation="sqlite",
                timeout_seconds=self._timeout,
                cause=exc,
            ) from exc

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"
