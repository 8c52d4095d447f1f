"""Pytest fixtures for scheduling tests."""

from __future__ import annotations

from datetime import UTC, date, datetime, time

import pytest

from inspection_spine.core.connection import SqliteConnection
from inspection_spine.core.models.scheduling import AssetType, FixedTime, IntervalUnit
from inspection_spine.core.schema_loader import apply_schema
from inspection_spine.scheduling import (
    ConstraintGuard,
    OccurrenceGenerator,
    RecordingDispatcher,
    SchedulerRunner,
    ScopeResolver,
)
from inspection_spine.scheduling.adapters import AssetRecord, InMemoryAssetDirectory, InMemoryMeterSource
from inspection_spine.scheduling.repository import (
    EventRepository,
    OccurrenceRepository,
    ScheduleCreate,
    ScheduleRepository,
)

NOW = datetime(2025, 3, 3, 0, 0, tzinfo=UTC)


@pytest.fixture
def conn():
    """In-memory SQLite store with the scheduling schema applied."""
    connection = SqliteConnection(":memory:")
    apply_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def schedules(conn):
    return ScheduleRepository(conn)


@pytest.fixture
def events(conn):
    return EventRepository(conn)


@pytest.fixture
def occurrences(conn):
    return OccurrenceRepository(conn)


@pytest.fixture
def directory():
    """Two sites; FL-002 is onboarded after NOW."""
    return InMemoryAssetDirectory([
        AssetRecord("FL-001", "site-1", "forklift", frozenset({"warehouse"}),
                    datetime(2025, 1, 1, tzinfo=UTC)),
        AssetRecord("FL-002", "site-1", "forklift", frozenset({"yard"}),
                    datetime(2025, 3, 10, tzinfo=UTC)),
        AssetRecord("CR-001", "site-1", "crane", frozenset({"yard", "lifting"}),
                    datetime(2024, 6, 1, tzinfo=UTC)),
        AssetRecord("FL-101", "site-2", "forklift", frozenset(),
                    datetime(2024, 1, 1, tzinfo=UTC)),
    ])


@pytest.fixture
def meters():
    return InMemoryMeterSource()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def guard(occurrences):
    return ConstraintGuard(occurrences)


@pytest.fixture
def generator(directory, guard, occurrences, meters, dispatcher):
    return OccurrenceGenerator(
        ScopeResolver(directory, timeout_seconds=None),
        guard,
        occurrences,
        meters=meters,
        dispatcher=dispatcher,
        asset_workers=2,
    )


@pytest.fixture
def runner(schedules, events, occurrences, generator, dispatcher):
    return SchedulerRunner(
        schedules,
        events,
        occurrences,
        generator,
        dispatcher=dispatcher,
        clock=lambda: NOW,
    )


@pytest.fixture
def make_schedule(schedules):
    """Create a schedule; defaults to daily 09:00 UTC for site-1 forklifts."""

    def _make(**overrides):
        fields = {
            "name": "Daily forklift pre-use",
            "site_id": "site-1",
            "scope": AssetType("forklift"),
            "template_id": "tpl-preuse",
            "rule": FixedTime(date(2025, 3, 3), IntervalUnit.DAY, time_of_day=time(9, 0)),
        }
        fields.update(overrides)
        return schedules.create(ScheduleCreate(**fields))

    return _make
