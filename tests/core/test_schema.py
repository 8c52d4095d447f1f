"""Tests for schema loading, the SQLite adapter and SQL dialects."""

import sqlite3

import pytest

from inspection_spine.core.connection import SqliteConnection
from inspection_spine.core.dialect import PostgreSQLDialect, SQLiteDialect, get_dialect
from inspection_spine.core.errors import ExternalTimeout
from inspection_spine.core.schema_loader import TABLES, apply_schema, get_schema_files, missing_tables


@pytest.fixture
def conn():
    connection = SqliteConnection(":memory:")
    yield connection
    connection.close()


class TestApplySchema:
    def test_packaged_files(self):
        assert [p.name for p in get_schema_files()] == ["01_scheduling.sql"]

    def test_creates_all_tables(self, conn):
        assert missing_tables(conn) == list(TABLES)
        assert apply_schema(conn) == ["01_scheduling.sql"]
        assert missing_tables(conn) == []

    def test_idempotent(self, conn):
        apply_schema(conn)
        apply_schema(conn)
        assert missing_tables(conn) == []

    def test_recurrence_key_is_unique(self, conn):
        apply_schema(conn)
        conn.execute("SELECT sql FROM sqlite_master WHERE name = 'insp_occurrences'")
        assert "recurrence_key TEXT NOT NULL UNIQUE" in conn.fetchone()[0]

    def test_custom_directory(self, conn, tmp_path):
        (tmp_path / "02_extra.sql").write_text(
            "-- extra\nCREATE TABLE IF NOT EXISTS extra (id INTEGER);\n", encoding="utf-8"
        )
        assert apply_schema(conn, tmp_path) == ["02_extra.sql"]
        assert missing_tables(conn) == list(TABLES)

    def test_missing_directory(self, tmp_path):
        assert get_schema_files(tmp_path / "nope") == []


class TestSqliteConnection:
    def test_execute_and_fetch(self, conn):
        conn.execute("CREATE TABLE t (id INTEGER)")
        conn.executemany("INSERT INTO t VALUES (?)", [(1,), (2,)])
        conn.commit()
        conn.execute("SELECT id FROM t ORDER BY id")
        assert [row["id"] for row in conn.fetchall()] == [1, 2]

    def test_file_database_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "store.db"
        connection = SqliteConnection(path)
        try:
            apply_schema(connection)
        finally:
            connection.close()
        assert path.exists()

    def test_locked_database_is_external_timeout(self, tmp_path):
        path = tmp_path / "store.db"
        holder = SqliteConnection(path)
        holder.execute("CREATE TABLE t (id INTEGER)")
        holder.commit()
        holder.raw.execute("BEGIN EXCLUSIVE")

        waiter = SqliteConnection(path, timeout_seconds=0.05)
        try:
            with pytest.raises(ExternalTimeout) as exc_info:
                waiter.execute("INSERT INTO t VALUES (1)")
            assert isinstance(exc_info.value.cause, sqlite3.OperationalError)
            assert exc_info.value.operation == "sqlite"
        finally:
            holder.rollback()
            waiter.close()
            holder.close()

    def test_other_errors_propagate(self, conn):
        with pytest.raises(sqlite3.OperationalError):
            conn.execute("SELECT * FROM missing_table")


class TestDialects:
    def test_sqlite(self):
        d = SQLiteDialect()
        assert d.placeholders(3) == "?, ?, ?"
        assert d.insert_or_ignore("t", ["a", "b"]) == "INSERT OR IGNORE INTO t (a, b) VALUES (?, ?)"

    def test_postgresql(self):
        d = PostgreSQLDialect()
        assert d.placeholders(2) == "%s, %s"
        assert d.insert_or_ignore("t", ["a"]).endswith("ON CONFLICT DO NOTHING")

    def test_get_dialect(self):
        assert get_dialect("SQLite").name == "sqlite"
        assert get_dialect("postgres").name == "postgresql"
        with pytest.raises(ValueError, match="Unknown dialect"):
            get_dialect("oracle")
