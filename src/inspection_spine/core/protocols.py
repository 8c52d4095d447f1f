"""
Protocol definitions for the engine's collaborators.

The engine depends on shape, not implementation: a DB-API style
``Connection`` for the store, and four external collaborators that live
outside this package (asset directory, completion history, meter
telemetry, notification delivery).

Architecture:
    ::

        protocols.py
        ├── Connection            : sync DB protocol (sqlite3 adapter, psycopg2)
        ├── AssetDirectory        : site / type / tag lookups, existence checks
        ├── CompletionSource      : last completion per (schedule, asset)
        ├── MeterSource           : current and last recorded meter readings
        └── NotificationDispatcher: fire-and-forget signal sink

    Implementations:
        SqliteConnection                     (core.connection)
        OccurrenceRepository                 (scheduling.repository, CompletionSource)
        InMemoryAssetDirectory, InMemoryMeterSource,
        LoggingDispatcher, RecordingDispatcher (scheduling.adapters)

Guardrails:
    ❌ DON'T: Call an external collaborator from inside a store transaction
    ✅ DO: Resolve scope and readings first, then admit and persist

Tags:
    protocol, connection, asset-directory, telemetry, notifications,
    inspection-spine, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from inspection_spine.core.models.scheduling import MeterType, NotificationSignal


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for the store.

    Architecture:
        ::

            ┌────────────────────────────────────────────────────────┐
            │ execute(sql, params)   → Execute single statement      │
            │ executemany(sql, list) → Execute for multiple params   │
            │ fetchone()             → Get one result row            │
            │ fetchall()             → Get all result rows           │
            │ commit()               → Commit transaction            │
            │ rollback()             → Rollback transaction          │
            └────────────────────────────────────────────────────────┘
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


@runtime_checkable
class AssetDirectory(Protocol):
    """
    Read-only view of the asset register.

    ``selector`` is one of:
        - ``None``                      every asset at the site
        - ``("type", asset_type_id)``   assets of one type
        - ``("tags", frozenset(tags))`` assets carrying any of the tags

    ``onboarded_before`` restricts the result to assets onboarded at or
    before the given instant.
    """

    def lookup_assets(
        self,
        site_id: str,
        selector: tuple[str, Any] | None,
        *,
        onboarded_before: datetime | None = None,
    ) -> Iterable[str]:
        ...

    def asset_exists(self, asset_id: str) -> bool:
        ...


@runtime_checkable
class CompletionSource(Protocol):
    """Completion history consulted by rolling-after-completion rules."""

    def last_completion(self, schedule_id: str, asset_id: str) -> datetime | None:
        ...


@runtime_checkable
class MeterSource(Protocol):
    """Usage telemetry consulted by usage-threshold rules."""

    def current_reading(self, asset_id: str, meter_type: MeterType) -> float | None:
        ...

    def last_recorded_reading(self, asset_id: str, meter_type: MeterType) -> float | None:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget sink for creation and overdue signals."""

    def notify(self, signal: NotificationSignal) -> None:
        ...


__all__ = [
    "Connection",
    "AssetDirectory",
    "CompletionSource",
    "MeterSource",
    "NotificationDispatcher",
]
