"""Tests for SchedulerRunner."""

import threading
from datetime import UTC, date, datetime, time, timedelta

import pytest

from inspection_spine.core.errors import ExternalTimeout, InvalidRuleConfiguration, ScheduleNotFoundError
from inspection_spine.core.models.scheduling import (
    AssetIds,
    AssetType,
    Constraints,
    DueRules,
    EventDriven,
    FixedTime,
    IntervalUnit,
    MeterType,
    NotificationKind,
    NotificationRules,
    RollingAfterCompletion,
    RunStatus,
    ScheduleStatus,
    SchedulingEventType,
    UsageBased,
)
from inspection_spine.scheduling import PreviewEntry, RunnerState, ScopeResolver

NOW = datetime(2025, 3, 3, 0, 0, tzinfo=UTC)
NINE = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)


class BrokenDirectory:
    def lookup_assets(self, site_id, selector, *, onboarded_before=None):
        raise ConnectionError("directory offline")

    def asset_exists(self, asset_id):
        raise ConnectionError("directory offline")


class TestRunAllDue:
    def test_runs_due_schedule_and_books_next_run(self, runner, make_schedule, schedules):
        schedule = make_schedule()

        [result] = runner.run_all_due(NOW)

        assert result.status == RunStatus.COMPLETED
        assert result.generated_count == 2
        stored = schedules.get(schedule.id)
        assert stored.last_run_at == NOW
        assert stored.last_run_status == RunStatus.COMPLETED
        assert stored.next_run_at == NINE
        assert runner.state == RunnerState.IDLE

    def test_not_due_before_next_run(self, runner, make_schedule):
        make_schedule()
        runner.run_all_due(NOW)
        assert runner.run_all_due(NOW + timedelta(hours=1)) == []

    def test_due_again_at_next_run(self, runner, make_schedule, occurrences):
        schedule = make_schedule()
        runner.run_all_due(NOW)

        [again] = runner.run_all_due(NINE)

        assert again.status == RunStatus.COMPLETED
        assert again.generated_count == 0
        assert len(occurrences.list_for_schedule(schedule.id)) == 2

    def test_uses_clock_when_now_omitted(self, runner, make_schedule, schedules):
        schedule = make_schedule()
        runner.run_all_due()
        assert schedules.get(schedule.id).last_run_at == NOW

    def test_paused_schedule_is_not_run(self, runner, make_schedule, schedules):
        schedule = make_schedule()
        schedules.set_status(schedule.id, ScheduleStatus.PAUSED)
        assert runner.run_all_due(NOW) == []

    def test_event_driven_schedule_is_not_periodic(self, runner, make_schedule):
        make_schedule(
            rule=EventDriven(frozenset({SchedulingEventType.MANUAL_TRIGGER})), start_date=date(2025, 3, 1)
        )
        assert runner.run_all_due(NOW) == []

    def test_usage_schedule_polls(self, runner, make_schedule, schedules, meters):
        meters.set_reading("FL-001", MeterType.HOURS, 10)
        schedule = make_schedule(rule=UsageBased(MeterType.HOURS, 250), start_date=date(2025, 3, 1))

        runner.run_all_due(NOW)

        assert schedules.get(schedule.id).next_run_at == NOW + timedelta(minutes=60)

    def test_cancellation_stops_between_schedules(self, runner, make_schedule, schedules):
        first = make_schedule(name="first")
        second = make_schedule(name="second", template_id="tpl-other")
        cancel = threading.Event()
        cancel.set()

        assert runner.run_all_due(NOW, cancel_event=cancel) == []
        assert schedules.get(first.id).last_run_at is None
        assert schedules.get(second.id).last_run_at is None


class TestFailureIsolation:
    def test_config_error_is_flagged_and_others_still_run(self, runner, make_schedule, schedules, conn):
        broken = make_schedule(name="broken")
        healthy = make_schedule(name="healthy", template_id="tpl-other")
        conn.execute("UPDATE insp_schedules SET timezone = 'Mars/Olympus' WHERE id = ?", (broken.id,))
        conn.commit()

        results = {r.schedule_id: r for r in runner.run_all_due(NOW)}

        assert results[broken.id].status == RunStatus.FAILED
        assert "timezone" in results[broken.id].error
        assert results[healthy.id].status == RunStatus.COMPLETED
        stored = schedules.get(broken.id)
        assert stored.config_error.startswith("timezone")
        assert stored.status == ScheduleStatus.ACTIVE
        assert stored.next_run_at is None

    def test_config_error_clears_after_fix(self, runner, make_schedule, schedules, conn):
        schedule = make_schedule()
        conn.execute("UPDATE insp_schedules SET timezone = 'Mars/Olympus' WHERE id = ?", (schedule.id,))
        conn.commit()
        runner.run_all_due(NOW)

        conn.execute("UPDATE insp_schedules SET timezone = 'UTC' WHERE id = ?", (schedule.id,))
        conn.commit()
        [result] = runner.run_all_due(NOW)

        assert result.status == RunStatus.COMPLETED
        assert schedules.get(schedule.id).config_error is None

    def test_scope_failure_keeps_schedule_due(self, runner, make_schedule, schedules):
        schedule = make_schedule()
        runner.generator.resolver = ScopeResolver(BrokenDirectory(), timeout_seconds=None)

        [result] = runner.run_all_due(NOW)

        assert result.status == RunStatus.FAILED
        assert "directory offline" in result.error
        stored = schedules.get(schedule.id)
        assert stored.last_run_status == RunStatus.FAILED
        assert stored.next_run_at is None
        assert stored.config_error is None
        assert len(runner.run_all_due(NOW + timedelta(minutes=1))) == 1

    def test_partial_run_keeps_previous_next_run(self, runner, make_schedule, schedules):
        class FlakyMeters:
            def current_reading(self, asset_id, meter_type):
                if asset_id == "FL-002":
                    raise ConnectionError("telemetry offline")
                return 1.0

            def last_recorded_reading(self, asset_id, meter_type):
                return 0.0

        runner.generator.meters = FlakyMeters()
        schedule = make_schedule(rule=UsageBased(MeterType.HOURS, 250), start_date=date(2025, 3, 1))

        [result] = runner.run_all_due(NOW)

        assert result.status == RunStatus.PARTIAL
        stored = schedules.get(schedule.id)
        assert stored.next_run_at is None
        assert stored.last_error == "FL-002: telemetry offline"

    def test_bookkeeping_failure_is_recorded(self, runner, make_schedule, schedules, monkeypatch):
        first = make_schedule(name="first")
        second = make_schedule(name="second", template_id="tpl-other")
        mark_run = schedules.mark_run

        def flaky(schedule_id, **kwargs):
            if schedule_id == first.id:
                raise ExternalTimeout("store did not answer", operation="mark_run", timeout_seconds=1.0)
            return mark_run(schedule_id, **kwargs)

        monkeypatch.setattr(schedules, "mark_run", flaky)

        results = {r.schedule_id: r for r in runner.run_all_due(NOW)}

        assert results[first.id].status == RunStatus.FAILED
        assert results[first.id].error.startswith("finalize failed")
        assert results[first.id].generated_count == 2
        assert results[second.id].status == RunStatus.COMPLETED
        assert schedules.get(first.id).last_run_at is None
        assert schedules.get(second.id).last_run_at == NOW
        assert runner.state == RunnerState.IDLE

    def test_sweep_failure_does_not_lose_results(self, runner, make_schedule, monkeypatch):
        make_schedule()

        def broken_sweep(now=None):
            raise ConnectionError("store offline")

        monkeypatch.setattr(runner, "sweep_overdue", broken_sweep)

        [result] = runner.run_all_due(NOW)

        assert result.status == RunStatus.COMPLETED
        assert runner.state == RunnerState.IDLE


class TestFixedTimeCadence:
    @pytest.fixture
    def month_end(self, make_schedule):
        return make_schedule(
            scope=AssetIds(frozenset({"FL-001"})),
            rule=FixedTime(date(2025, 1, 1), IntervalUnit.MONTH, day_of_month=31, time_of_day=time(9, 0)),
            constraints=Constraints(max_open_per_asset_per_template=10),
        )

    def test_next_run_is_one_window_before_next_instant(self, runner, month_end):
        at = datetime(2025, 1, 1, 0, 1, tzinfo=UTC)
        assert runner.next_run_after(month_end, at) == datetime(2025, 1, 24, 9, 0, tzinfo=UTC)

    def test_offset_ticks_keep_every_month_end(self, runner, month_end, occurrences):
        tick = datetime(2025, 1, 1, 0, 1, tzinfo=UTC)
        while tick < datetime(2025, 4, 1, tzinfo=UTC):
            runner.run_all_due(tick)
            tick += timedelta(minutes=30)

        assert [o.scheduled_for for o in occurrences.list_for_schedule(month_end.id)] == [
            datetime(2025, 1, 31, 9, 0, tzinfo=UTC),
            datetime(2025, 2, 28, 9, 0, tzinfo=UTC),
            datetime(2025, 3, 31, 9, 0, tzinfo=UTC),
        ]

    def test_late_tick_catches_up_from_booked_run(self, runner, make_schedule, schedules, occurrences):
        schedule = make_schedule(
            scope=AssetIds(frozenset({"FL-001"})),
            constraints=Constraints(max_open_per_asset_per_template=20),
        )
        runner.run_all_due(NOW)
        assert schedules.get(schedule.id).next_run_at == NINE

        [late] = runner.run_all_due(datetime(2025, 3, 5, 12, 0, tzinfo=UTC))

        assert [o.scheduled_for.day for o in late.occurrences] == [10, 11, 12]
        days = [o.scheduled_for.day for o in occurrences.list_for_schedule(schedule.id)]
        assert days == list(range(3, 13))

    def test_resume_does_not_backfill(self, runner, make_schedule, schedules):
        schedule = make_schedule(
            scope=AssetIds(frozenset({"FL-001"})),
            constraints=Constraints(max_open_per_asset_per_template=20),
        )
        runner.run_all_due(NOW)
        schedules.set_status(schedule.id, ScheduleStatus.PAUSED)
        schedules.set_status(schedule.id, ScheduleStatus.ACTIVE)

        [resumed] = runner.run_all_due(datetime(2025, 3, 20, tzinfo=UTC))

        assert min(o.scheduled_for for o in resumed.occurrences) == datetime(2025, 3, 20, 9, 0, tzinfo=UTC)


class TestEndConditions:
    def test_ended_schedule_is_skipped_and_polled(self, runner, make_schedule, schedules):
        schedule = make_schedule(end_date=date(2025, 3, 3))
        at = datetime(2025, 3, 4, 9, 0, tzinfo=UTC)

        [result] = runner.run_all_due(at)

        assert result.status == RunStatus.SKIPPED
        stored = schedules.get(schedule.id)
        assert stored.status == ScheduleStatus.ACTIVE
        assert stored.last_run_status == RunStatus.SKIPPED
        assert stored.next_run_at == at + timedelta(minutes=60)

    def test_preview_stops_at_end_date(self, runner, make_schedule):
        schedule = make_schedule(end_date=date(2025, 3, 4))
        entries = runner.preview_next_occurrences(schedule.id, timedelta(days=5), NOW)
        assert entries == [PreviewEntry(NINE), PreviewEntry(NINE + timedelta(days=1))]

    def test_preview_stops_at_max_occurrences(self, runner, make_schedule):
        schedule = make_schedule(max_occurrences=1)
        assert runner.preview_next_occurrences(schedule.id, timedelta(days=5), NOW) == [PreviewEntry(NINE)]


class TestRunSchedule:
    def test_run_by_code_ignores_next_run(self, runner, make_schedule):
        make_schedule()
        runner.run_all_due(NOW)

        result = runner.run_schedule("SCH-000001", NOW + timedelta(hours=1))

        assert result.status == RunStatus.COMPLETED

    def test_unknown_schedule(self, runner):
        with pytest.raises(ScheduleNotFoundError, match="nope"):
            runner.run_schedule("nope")

    def test_paused_schedule_is_skipped(self, runner, make_schedule, schedules, occurrences):
        schedule = make_schedule()
        schedules.set_status(schedule.id, ScheduleStatus.PAUSED)

        result = runner.run_schedule(schedule.id)

        assert result.status == RunStatus.SKIPPED
        assert occurrences.list_for_schedule(schedule.id) == []

    def test_pause_keeps_existing_occurrences(self, runner, make_schedule, schedules, occurrences):
        schedule = make_schedule()
        runner.run_schedule(schedule.id)
        schedules.set_status(schedule.id, ScheduleStatus.PAUSED)
        assert len(occurrences.list_for_schedule(schedule.id)) == 2


class TestPreview:
    def test_fixed_preview_writes_nothing(self, runner, make_schedule, occurrences):
        schedule = make_schedule()

        entries = runner.preview_next_occurrences(schedule.id, timedelta(days=3), NOW)

        assert entries == [
            PreviewEntry(NINE),
            PreviewEntry(NINE + timedelta(days=1)),
            PreviewEntry(NINE + timedelta(days=2)),
        ]
        assert occurrences.list_for_schedule(schedule.id) == []

    def test_rolling_preview_per_asset(self, runner, make_schedule):
        schedule = make_schedule(rule=RollingAfterCompletion(IntervalUnit.DAY, 30), start_date=date(2025, 3, 1))

        entries = runner.preview_next_occurrences(schedule.code, timedelta(days=30), NOW)

        assert entries == [
            PreviewEntry(datetime(2025, 3, 31, tzinfo=UTC), "FL-001"),
            PreviewEntry(datetime(2025, 3, 31, tzinfo=UTC), "FL-002"),
        ]

    def test_usage_preview_is_empty(self, runner, make_schedule):
        schedule = make_schedule(rule=UsageBased(MeterType.KM, 5000), start_date=date(2025, 3, 1))
        assert runner.preview_next_occurrences(schedule.id, timedelta(days=30), NOW) == []

    def test_preview_unknown_schedule(self, runner):
        with pytest.raises(ScheduleNotFoundError):
            runner.preview_next_occurrences("missing", timedelta(days=1), NOW)

    def test_preview_invalid_schedule(self, runner, make_schedule, conn):
        schedule = make_schedule()
        conn.execute("UPDATE insp_schedules SET generate_ahead_days = -1 WHERE id = ?", (schedule.id,))
        conn.commit()
        with pytest.raises(InvalidRuleConfiguration):
            runner.preview_next_occurrences(schedule.id, timedelta(days=1), NOW)


class TestOverdueSweep:
    def test_flags_once_and_signals(self, runner, make_schedule, dispatcher, occurrences):
        schedule = make_schedule(notifications=NotificationRules(on_overdue=True))
        runner.run_schedule(schedule.id, NOW)

        flagged = runner.sweep_overdue(NINE + timedelta(hours=1))

        assert flagged == 2
        assert [s.kind for s in dispatcher.signals] == [NotificationKind.OVERDUE] * 2
        assert all(o.overdue_flagged_at is not None for o in occurrences.list_for_schedule(schedule.id))
        assert runner.sweep_overdue(NINE + timedelta(hours=2)) == 0
        assert len(dispatcher.signals) == 2

    def test_grace_period(self, runner, make_schedule):
        schedule = make_schedule(due_rules=DueRules(overdue_after_days=1))
        runner.run_schedule(schedule.id, NOW)

        assert runner.sweep_overdue(NINE + timedelta(hours=1)) == 0
        assert runner.sweep_overdue(NINE + timedelta(days=1, hours=1)) == 2

    def test_completed_occurrences_are_never_overdue(self, runner, make_schedule, occurrences):
        schedule = make_schedule()
        result = runner.run_schedule(schedule.id, NOW)
        for occurrence in result.occurrences:
            occurrences.mark_completed(occurrence.id, NINE)

        assert runner.sweep_overdue(NINE + timedelta(days=5)) == 0

    def test_run_all_due_sweeps(self, runner, make_schedule, occurrences):
        schedule = make_schedule(constraints=Constraints(max_open_per_asset_per_template=1))
        runner.run_all_due(NOW)

        runner.run_all_due(NINE + timedelta(hours=1))

        assert all(o.overdue_flagged_at is not None for o in occurrences.list_for_schedule(schedule.id))

    def test_site_scope_unaffected_by_other_site(self, runner, make_schedule, occurrences):
        schedule = make_schedule(site_id="site-2", scope=AssetType("forklift"))
        result = runner.run_schedule(schedule.id, NOW)
        assert [o.asset_id for o in result.occurrences] == ["FL-101"]
