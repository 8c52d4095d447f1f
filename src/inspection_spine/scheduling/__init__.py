"""Inspection scheduling package.

Manifesto:
    An inspection program is only as good as its calendar.  Schedules
    describe WHAT is inspected (scope), WHEN (recurrence rule) and under
    which limits (constraints); the runner reconciles them against the
    store so that every inspection owed exists exactly once, no matter how
    often or how concurrently the runner is invoked.

┌──────────────────────────────────────────────────────────────────────────────┐
│  INSPECTION SCHEDULING                                                       │
│                                                                               │
│   ┌──────────────┐   tick()   ┌───────────────────────────────────────────┐  │
│   │  Backend     │ ─────────► │  SchedulerService                         │  │
│   │  (timing)    │            │    └── SchedulerRunner                    │  │
│   └──────────────┘            │          ├── run_all_due / run_schedule   │  │
│                               │          ├── process_events               │  │
│                               │          └── preview_next_occurrences     │  │
│                               └───────────────────────────────────────────┘  │
│                                                  │                            │
│                                                  ▼                            │
│   OccurrenceGenerator: ScopeResolver ─► recurrence ─► ConstraintGuard        │
│                                                  │                            │
│                                                  ▼                            │
│   Tables (from 01_scheduling.sql):                                            │
│   - insp_schedules          schedule definitions + run bookkeeping           │
│   - insp_scheduling_events  event queue for event-driven schedules           │
│   - insp_occurrences        generated occurrences, unique recurrence_key     │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Constructing runner components individually
    ✅ ``create_runner(conn, directory)`` factory function
    ❌ Inserting occurrences directly
    ✅ ``ConstraintGuard.commit()`` so the recurrence key is enforced

Tags:
    inspection-spine, scheduling, recurrence, idempotency, beat-as-poller

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

from inspection_spine.core.dialect import Dialect
from inspection_spine.core.protocols import (
    AssetDirectory,
    CompletionSource,
    Connection,
    MeterSource,
    NotificationDispatcher,
)
from inspection_spine.core.settings import EngineSettings, get_settings

# Events
from .events import EventProcessor, matches_event

# Generator
from .generator import OccurrenceGenerator, assign, compute_due_at

# Guard
from .guard import Admitted, ConstraintGuard, Rejected, date_bucket

# Notifications
from .notifications import LoggingDispatcher, RecordingDispatcher, send_signal

# Protocol
from .protocol import BackendHealth, SchedulerBackend

# Repository
from .repository import (
    EventRepository,
    OccurrenceRepository,
    ScheduleCreate,
    ScheduleRepository,
    ScheduleUpdate,
)

# Runner
from .runner import PreviewEntry, RunnerState, SchedulerRunner

# Scope
from .scope import ScopeResolver

# Service
from .service import SchedulerHealth, SchedulerService, SchedulerStats

# Backends
from .thread_backend import ThreadSchedulerBackend

__all__ = [
    # Protocol
    "SchedulerBackend",
    "BackendHealth",
    # Backends
    "ThreadSchedulerBackend",
    # Repository
    "ScheduleRepository",
    "EventRepository",
    "OccurrenceRepository",
    "ScheduleCreate",
    "ScheduleUpdate",
    # Engine
    "ScopeResolver",
    "ConstraintGuard",
    "Admitted",
    "Rejected",
    "date_bucket",
    "OccurrenceGenerator",
    "assign",
    "compute_due_at",
    "EventProcessor",
    "matches_event",
    "LoggingDispatcher",
    "RecordingDispatcher",
    "send_signal",
    "SchedulerRunner",
    "RunnerState",
    "PreviewEntry",
    # Service
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    # Factories
    "create_runner",
    "create_scheduler",
]


def create_runner(
    conn: Connection,
    directory: AssetDirectory,
    *,
    meters: MeterSource | None = None,
    completions: CompletionSource | None = None,
    dispatcher: NotificationDispatcher | None = None,
    settings: EngineSettings | None = None,
    dialect: Dialect | None = None,
) -> SchedulerRunner:
    """Factory function to wire a runner against one store.

    Args:
        conn: Database connection with the scheduling schema applied
        directory: Asset directory used for scope resolution
        meters: Telemetry for usage-based schedules (optional)
        completions: Completion history; defaults to the occurrence store
        dispatcher: Notification sink for create/overdue signals (optional)
        settings: Engine settings; defaults to ``get_settings()``
        dialect: SQL dialect; defaults to SQLite

    Example:
        >>> runner = create_runner(conn, directory, dispatcher=LoggingDispatcher())
        >>> runner.run_all_due()
    """
    settings = settings or get_settings()
    schedules = ScheduleRepository(conn, dialect)
    events = EventRepository(conn, dialect)
    occurrences = OccurrenceRepository(conn, dialect)

    generator = OccurrenceGenerator(
        ScopeResolver(directory, timeout_seconds=settings.directory_timeout_seconds),
        ConstraintGuard(occurrences),
        occurrences,
        completions=completions,
        meters=meters,
        dispatcher=dispatcher,
        asset_workers=settings.asset_workers,
        external_timeout_seconds=settings.directory_timeout_seconds,
    )
    return SchedulerRunner(
        schedules,
        events,
        occurrences,
        generator,
        dispatcher=dispatcher,
        usage_poll_minutes=settings.usage_poll_minutes,
    )


def create_scheduler(
    runner: SchedulerRunner,
    *,
    settings: EngineSettings | None = None,
    backend: SchedulerBackend | None = None,
    interval_seconds: float | None = None,
) -> SchedulerService:
    """Factory function to create a scheduler service around ``runner``.

    Example:
        >>> scheduler = create_scheduler(create_runner(conn, directory))
        >>> scheduler.start()
    """
    settings = settings or get_settings()
    return SchedulerService(
        backend=backend or ThreadSchedulerBackend(),
        runner=runner,
        interval_seconds=interval_seconds or settings.tick_interval_seconds,
    )
