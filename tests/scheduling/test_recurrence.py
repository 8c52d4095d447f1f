"""Tests for the recurrence engine."""

from datetime import UTC, date, datetime, time

import pytest

from inspection_spine.core.models.scheduling import (
    EventDriven,
    FixedTime,
    IntervalUnit,
    MeterType,
    RollingAfterCompletion,
    SchedulingEventType,
    UsageBased,
    Weekday,
)
from inspection_spine.core.timestamps import load_zone, local_to_utc
from inspection_spine.scheduling.recurrence import (
    RecurrenceContext,
    add_interval,
    candidates,
    fixed_instants,
    fixed_rrule,
    next_fixed_instant,
    rolling_next_due,
    until_end_date,
)


def utc(*args):
    return datetime(*args, tzinfo=UTC)


NOW = utc(2025, 3, 3, 0, 0)


class TestFixedTime:
    """Calendar rules."""

    def test_weekly_monday(self):
        rule = FixedTime(
            date(2025, 3, 3),
            IntervalUnit.WEEK,
            days_of_week=frozenset({Weekday.MONDAY}),
            time_of_day=time(9, 0),
        )
        result = candidates(rule, NOW, RecurrenceContext(generate_ahead_days=14))
        assert result == [utc(2025, 3, 3, 9, 0), utc(2025, 3, 10, 9, 0)]

    def test_daily_window_excludes_instant_after_horizon(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY)
        result = candidates(rule, NOW, RecurrenceContext(generate_ahead_days=7))
        assert result[0] == utc(2025, 3, 3, 9, 0)
        assert result[-1] == utc(2025, 3, 9, 9, 0)
        assert len(result) == 7

    def test_instants_before_now_are_excluded(self):
        rule = FixedTime(date(2025, 3, 1), IntervalUnit.DAY)
        result = candidates(rule, utc(2025, 3, 3, 10, 0), RecurrenceContext(generate_ahead_days=1))
        assert result == [utc(2025, 3, 4, 9, 0)]

    def test_every_third_day(self):
        rule = FixedTime(date(2025, 3, 1), IntervalUnit.DAY, interval_value=3)
        result = fixed_instants(rule, utc(2025, 3, 1), utc(2025, 3, 10, 23, 59))
        assert result == [
            utc(2025, 3, 1, 9, 0),
            utc(2025, 3, 4, 9, 0),
            utc(2025, 3, 7, 9, 0),
            utc(2025, 3, 10, 9, 0),
        ]

    def test_nothing_before_start_date(self):
        rule = FixedTime(date(2025, 3, 10), IntervalUnit.DAY)
        result = candidates(rule, NOW, RecurrenceContext(generate_ahead_days=9))
        assert result == [utc(2025, 3, 10, 9, 0), utc(2025, 3, 11, 9, 0)]

    def test_fortnightly_on_two_weekdays(self):
        rule = FixedTime(
            date(2025, 3, 3),
            IntervalUnit.WEEK,
            interval_value=2,
            days_of_week=frozenset({Weekday.MONDAY, Weekday.THURSDAY}),
        )
        result = fixed_instants(rule, NOW, utc(2025, 3, 24))
        assert result == [
            utc(2025, 3, 3, 9, 0),
            utc(2025, 3, 6, 9, 0),
            utc(2025, 3, 17, 9, 0),
            utc(2025, 3, 20, 9, 0),
        ]

    def test_weekly_defaults_to_start_weekday(self):
        # 2025-03-05 is a Wednesday
        rule = FixedTime(date(2025, 3, 5), IntervalUnit.WEEK)
        result = fixed_instants(rule, NOW, utc(2025, 3, 20))
        assert result == [utc(2025, 3, 5, 9, 0), utc(2025, 3, 12, 9, 0), utc(2025, 3, 19, 9, 0)]

    @pytest.mark.parametrize(
        ("year", "expected_day"),
        [(2024, 29), (2025, 28)],
    )
    def test_month_end_clamps_to_february(self, year, expected_day):
        rule = FixedTime(date(year, 1, 31), IntervalUnit.MONTH)
        result = fixed_instants(rule, utc(year, 2, 1), utc(year, 3, 1))
        assert result == [utc(year, 2, expected_day, 9, 0)]

    def test_month_end_returns_to_31st(self):
        rule = FixedTime(date(2025, 1, 31), IntervalUnit.MONTH)
        result = fixed_instants(rule, utc(2025, 2, 1), utc(2025, 4, 1))
        assert result == [utc(2025, 2, 28, 9, 0), utc(2025, 3, 31, 9, 0)]

    def test_explicit_day_of_month(self):
        rule = FixedTime(date(2025, 1, 1), IntervalUnit.MONTH, interval_value=2, day_of_month=15)
        result = fixed_instants(rule, utc(2025, 1, 1), utc(2025, 6, 1))
        assert result == [utc(2025, 1, 15, 9, 0), utc(2025, 3, 15, 9, 0), utc(2025, 5, 15, 9, 0)]

    def test_time_of_day_holds_across_dst(self):
        rule = FixedTime(date(2025, 3, 28), IntervalUnit.DAY, timezone="Europe/London")
        result = candidates(rule, utc(2025, 3, 29), RecurrenceContext(generate_ahead_days=3))
        # BST starts 2025-03-30, so 09:00 local moves from 09:00Z to 08:00Z
        assert result == [utc(2025, 3, 29, 9, 0), utc(2025, 3, 30, 8, 0), utc(2025, 3, 31, 8, 0)]

    def test_results_are_utc(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY, timezone="America/New_York")
        result = candidates(rule, NOW, RecurrenceContext(generate_ahead_days=2))
        assert all(t.tzinfo is UTC for t in result)
        assert result[0] == utc(2025, 3, 3, 14, 0)

    def test_empty_window(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY)
        assert fixed_instants(rule, utc(2025, 3, 5), utc(2025, 3, 4)) == []

    def test_zero_lookahead_keeps_instant_at_now(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY)
        at_nine = utc(2025, 3, 3, 9, 0)
        assert candidates(rule, at_nine, RecurrenceContext(generate_ahead_days=0)) == [at_nine]

    def test_window_start_reaches_back_before_now(self):
        rule = FixedTime(date(2025, 1, 1), IntervalUnit.MONTH, day_of_month=31)
        ctx = RecurrenceContext(generate_ahead_days=7, window_start=utc(2025, 1, 24, 9, 0))
        result = candidates(rule, utc(2025, 1, 31, 9, 1), ctx)
        assert result == [utc(2025, 1, 31, 9, 0)]

    def test_window_start_never_moves_past_now(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY)
        ctx = RecurrenceContext(generate_ahead_days=1, window_start=utc(2025, 3, 10))
        assert candidates(rule, NOW, ctx) == [utc(2025, 3, 3, 9, 0)]

    def test_end_date_is_inclusive_in_rule_zone(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY, time_of_day=time(20, 0), timezone="Asia/Tokyo")
        ctx = RecurrenceContext(generate_ahead_days=7, end_date=date(2025, 3, 4))
        # 20:00 in Tokyo is 11:00Z the same day
        assert candidates(rule, NOW, ctx) == [utc(2025, 3, 3, 11, 0), utc(2025, 3, 4, 11, 0)]


class TestNextFixedInstant:
    def test_next_day(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.DAY)
        assert next_fixed_instant(rule, utc(2025, 3, 3, 9, 0)) == utc(2025, 3, 4, 9, 0)

    def test_before_start_date(self):
        rule = FixedTime(date(2025, 3, 10), IntervalUnit.DAY)
        assert next_fixed_instant(rule, NOW) == utc(2025, 3, 10, 9, 0)

    def test_next_month_end(self):
        rule = FixedTime(date(2025, 1, 31), IntervalUnit.MONTH)
        assert next_fixed_instant(rule, utc(2025, 2, 28, 9, 0)) == utc(2025, 3, 31, 9, 0)

    def test_next_fortnight(self):
        rule = FixedTime(date(2025, 3, 3), IntervalUnit.WEEK, interval_value=2)
        assert next_fixed_instant(rule, utc(2025, 3, 3, 9, 0)) == utc(2025, 3, 17, 9, 0)


class TestRolling:
    def test_next_due_from_last_completion(self):
        rule = RollingAfterCompletion(IntervalUnit.DAY, 30)
        due = rolling_next_due(rule, last_completed_at=utc(2025, 2, 10, 14, 30), anchor_date=None)
        assert due == utc(2025, 3, 12, 14, 30)

    def test_outside_lookahead(self):
        rule = RollingAfterCompletion(IntervalUnit.DAY, 30)
        ctx = RecurrenceContext(generate_ahead_days=7, last_completed_at=utc(2025, 2, 10, 14, 30))
        assert candidates(rule, NOW, ctx) == []

    def test_inside_lookahead(self):
        rule = RollingAfterCompletion(IntervalUnit.DAY, 30)
        ctx = RecurrenceContext(generate_ahead_days=10, last_completed_at=utc(2025, 2, 10, 14, 30))
        assert candidates(rule, NOW, ctx) == [utc(2025, 3, 12, 14, 30)]

    def test_overdue_due_date_is_still_a_candidate(self):
        rule = RollingAfterCompletion(IntervalUnit.DAY, 30)
        ctx = RecurrenceContext(last_completed_at=utc(2025, 1, 1, 8, 0))
        assert candidates(rule, NOW, ctx) == [utc(2025, 1, 31, 8, 0)]

    def test_never_completed_counts_from_start_date(self):
        rule = RollingAfterCompletion(IntervalUnit.DAY, 30)
        ctx = RecurrenceContext(generate_ahead_days=30, anchor_date=date(2025, 3, 1))
        assert candidates(rule, NOW, ctx) == [utc(2025, 3, 31, 0, 0)]

    def test_rolling_respects_end_date(self):
        rule = RollingAfterCompletion(IntervalUnit.DAY, 30)
        ctx = RecurrenceContext(generate_ahead_days=30, anchor_date=date(2025, 3, 1), end_date=date(2025, 3, 30))
        assert candidates(rule, NOW, ctx) == []

    def test_no_history_and_no_anchor(self):
        rule = RollingAfterCompletion(IntervalUnit.WEEK, 1)
        assert candidates(rule, NOW, RecurrenceContext()) == []

    def test_month_step_clamps(self):
        rule = RollingAfterCompletion(IntervalUnit.MONTH, 1)
        due = rolling_next_due(rule, last_completed_at=utc(2025, 1, 31, 10, 0), anchor_date=None)
        assert due == utc(2025, 2, 28, 10, 0)

    def test_wall_clock_kept_in_schedule_zone(self):
        rule = RollingAfterCompletion(IntervalUnit.WEEK, 1)
        # 09:00 GMT on 2025-03-27 is 09:00 local; a week later BST applies
        due = rolling_next_due(
            rule,
            last_completed_at=utc(2025, 3, 27, 9, 0),
            anchor_date=None,
            timezone="Europe/London",
        )
        assert due == utc(2025, 4, 3, 8, 0)


class TestUsageBased:
    RULE = UsageBased(MeterType.HOURS, 250)

    def test_below_threshold(self):
        ctx = RecurrenceContext(current_meter=1249.9, last_generated_meter=1000)
        assert candidates(self.RULE, NOW, ctx) == []

    def test_threshold_reached(self):
        ctx = RecurrenceContext(current_meter=1250.0, last_generated_meter=1000)
        assert candidates(self.RULE, NOW, ctx) == [NOW]

    def test_no_reading(self):
        assert candidates(self.RULE, NOW, RecurrenceContext(last_generated_meter=1000)) == []

    def test_no_baseline_counts_from_zero(self):
        assert candidates(self.RULE, NOW, RecurrenceContext(current_meter=300)) == [NOW]


class TestEventDriven:
    RULE = EventDriven(frozenset({SchedulingEventType.DEFECT_MARKED_UNSAFE}))

    def test_trigger_uses_event_time(self):
        at = utc(2025, 3, 2, 16, 45)
        ctx = RecurrenceContext(event_type=SchedulingEventType.DEFECT_MARKED_UNSAFE, event_time=at)
        assert candidates(self.RULE, NOW, ctx) == [at]

    def test_other_event_type(self):
        ctx = RecurrenceContext(event_type=SchedulingEventType.PM_OVERDUE, event_time=NOW)
        assert candidates(self.RULE, NOW, ctx) == []

    def test_no_event(self):
        assert candidates(self.RULE, NOW, RecurrenceContext()) == []


class TestCalendarHelpers:
    @pytest.mark.parametrize(
        ("start", "unit", "value", "expected"),
        [
            (date(2024, 1, 31), IntervalUnit.MONTH, 1, date(2024, 2, 29)),
            (date(2025, 11, 30), IntervalUnit.MONTH, 3, date(2026, 2, 28)),
            (date(2025, 12, 15), IntervalUnit.MONTH, 1, date(2026, 1, 15)),
            (date(2025, 3, 3), IntervalUnit.WEEK, 2, date(2025, 3, 17)),
            (date(2025, 2, 27), IntervalUnit.DAY, 2, date(2025, 3, 1)),
        ],
    )
    def test_add_interval(self, start, unit, value, expected):
        assert add_interval(start, unit, value) == expected

    def test_ambiguous_time_takes_first_occurrence(self):
        london = load_zone("Europe/London")
        assert local_to_utc(date(2025, 10, 26), time(1, 30), london) == utc(2025, 10, 26, 0, 30)

    def test_missing_time_shifts_by_gap(self):
        london = load_zone("Europe/London")
        assert local_to_utc(date(2025, 3, 30), time(1, 30), london) == utc(2025, 3, 30, 1, 30)

    def test_until_end_date(self):
        instants = [utc(2025, 3, 4, 23, 0), utc(2025, 3, 5, 1, 0)]
        assert until_end_date(instants, date(2025, 3, 4)) == [utc(2025, 3, 4, 23, 0)]
        assert until_end_date(instants, date(2025, 3, 4), "America/New_York") == instants
        assert until_end_date(instants, None) == instants

    def test_fixed_rrule_month_end_set(self):
        rule = FixedTime(date(2025, 1, 1), IntervalUnit.MONTH, day_of_month=30)
        days = [d.date() for d in fixed_rrule(rule)[:3]]
        assert days == [date(2025, 1, 30), date(2025, 2, 28), date(2025, 3, 30)]

    def test_unknown_rule_type(self):
        with pytest.raises(TypeError):
            candidates("not a rule", NOW, RecurrenceContext())
