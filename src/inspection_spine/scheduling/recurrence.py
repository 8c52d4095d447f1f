"""
Recurrence engine: rule + instant + context → candidate due instants.

Pure functions only.  No store, no directory, no clock: everything the
engine needs arrives in :class:`RecurrenceContext`, so the same inputs
always produce the same instants and the module is trivially testable.

Architecture:
    ::

        candidates(rule, now, ctx)
              │  match rule
              ├── FixedTime              → calendar instants in [window start, now + ahead]
              ├── RollingAfterCompletion → last completion (or start date) + interval,
              │                            if <= now + ahead
              ├── UsageBased             → [now] if current - last >= threshold
              └── EventDriven            → [event time] if event type ∈ triggers
              │
              └── clipped to ctx.end_date (schedule zone), when set

    All returned instants are aware UTC datetimes.  Calendar rules are
    expanded with ``dateutil.rrule`` over wall-clock midnights in the
    schedule's zone, then ``local_to_utc`` attaches ``time_of_day``, so the
    local time holds across DST.

Weeks are counted from the Monday of the start date's week; a WEEK rule
with interval 2 fires in weeks 0, 2, 4, ... of that count.  A MONTH rule's
``day_of_month`` (default: the start date's day) is clamped to the last day
of shorter months, so Jan 31 continues as Feb 28 (29 in leap years).

Examples:
    >>> from datetime import UTC, date, datetime, time
    >>> rule = FixedTime(date(2025, 3, 3), IntervalUnit.WEEK,
    ...                  days_of_week=frozenset({Weekday.MONDAY}), time_of_day=time(9))
    >>> now = datetime(2025, 3, 3, 0, 0, tzinfo=UTC)
    >>> [t.isoformat() for t in candidates(rule, now, RecurrenceContext(generate_ahead_days=14))]
    ['2025-03-03T09:00:00+00:00', '2025-03-10T09:00:00+00:00']

Tags:
    recurrence, calendar, rrule, zoneinfo, dst, pure-function, inspection-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from datetime import time as dtime
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MO, MONTHLY, WEEKLY, rrule

from inspection_spine.core.models.scheduling import (
    EventDriven,
    FixedTime,
    IntervalUnit,
    RecurrenceRule,
    RollingAfterCompletion,
    SchedulingEventType,
    UsageBased,
)
from inspection_spine.core.timestamps import ensure_utc, load_zone, local_date, local_to_utc


@dataclass(frozen=True, slots=True)
class RecurrenceContext:
    """Everything a rule needs besides ``now``.

    ``timezone`` applies to non-fixed modes; FixedTime carries its own.
    ``window_start`` lets a FixedTime run pick up instants it was due to
    generate before ``now`` (a late tick); it never moves past ``now``.
    """

    generate_ahead_days: int = 7
    anchor_date: date | None = None
    timezone: str = "UTC"
    window_start: datetime | None = None
    end_date: date | None = None
    last_completed_at: datetime | None = None
    current_meter: float | None = None
    last_generated_meter: float | None = None
    event_type: SchedulingEventType | None = None
    event_time: datetime | None = None


def candidates(rule: RecurrenceRule, now: datetime, context: RecurrenceContext) -> list[datetime]:
    """Candidate due instants for ``rule`` as of ``now``, ascending, UTC."""
    now = ensure_utc(now)
    found = _candidates(rule, now, context)
    if context.end_date is None:
        return found
    zone_name = rule.timezone if isinstance(rule, FixedTime) else context.timezone
    return until_end_date(found, context.end_date, zone_name)


def _candidates(rule: RecurrenceRule, now: datetime, context: RecurrenceContext) -> list[datetime]:
    horizon = now + timedelta(days=context.generate_ahead_days)

    match rule:
        case FixedTime():
            start = now
            if context.window_start is not None:
                start = min(now, ensure_utc(context.window_start))
            return fixed_instants(rule, start, horizon)

        case RollingAfterCompletion():
            due = rolling_next_due(
                rule,
                last_completed_at=context.last_completed_at,
                anchor_date=context.anchor_date,
                timezone=context.timezone,
            )
            if due is None or due > horizon:
                return []
            return [due]

        case UsageBased(threshold_value=threshold):
            if context.current_meter is None:
                return []
            last = context.last_generated_meter or 0.0
            if context.current_meter - last >= threshold:
                return [now]
            return []

        case EventDriven(triggers=triggers):
            if context.event_type is None or context.event_type not in triggers:
                return []
            return [ensure_utc(context.event_time) if context.event_time else now]

    raise TypeError(f"Not a recurrence rule: {rule!r}")


def until_end_date(instants: list[datetime], end_date: date | None, timezone: str = "UTC") -> list[datetime]:
    """Drop instants whose local date in ``timezone`` is after ``end_date``."""
    if end_date is None:
        return instants
    zone = load_zone(timezone)
    return [t for t in instants if local_date(t, zone) <= end_date]


# ---------------------------------------------------------------------------
# Fixed calendar rules
# ---------------------------------------------------------------------------


def fixed_rrule(rule: FixedTime) -> rrule:
    """The rule's calendar days as a dateutil rule over naive local midnights."""
    start = datetime.combine(rule.start_date, dtime(0, 0))
    match rule.interval_unit:
        case IntervalUnit.DAY:
            return rrule(DAILY, dtstart=start, interval=rule.interval_value)
        case IntervalUnit.WEEK:
            weekdays = rule.days_of_week if rule.days_of_week is not None else {rule.start_date.weekday()}
            return rrule(
                WEEKLY,
                dtstart=start,
                interval=rule.interval_value,
                wkst=MO,
                byweekday=sorted(int(d) for d in weekdays),
            )
        case IntervalUnit.MONTH:
            wanted = rule.day_of_month or rule.start_date.day
            if wanted <= 28:
                return rrule(MONTHLY, dtstart=start, interval=rule.interval_value, bymonthday=wanted)
            # the wanted day, or the month's last day when it is shorter
            return rrule(
                MONTHLY,
                dtstart=start,
                interval=rule.interval_value,
                bymonthday=(wanted, -1),
                bysetpos=1,
            )
    raise ValueError(f"Unknown interval unit: {rule.interval_unit!r}")


def fixed_instants(rule: FixedTime, window_start: datetime, window_end: datetime) -> list[datetime]:
    """Instants of ``rule`` in ``[window_start, window_end]`` (inclusive), never before the start date."""
    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)
    if window_end < window_start:
        return []

    zone = load_zone(rule.timezone)
    first = datetime.combine(local_date(window_start, zone) - timedelta(days=1), dtime(0, 0))
    last = datetime.combine(local_date(window_end, zone) + timedelta(days=1), dtime(0, 0))

    instants = []
    for day in fixed_rrule(rule).between(first, last, inc=True):
        instant = local_to_utc(day.date(), rule.time_of_day, zone)
        if window_start <= instant <= window_end:
            instants.append(instant)
    return instants


def next_fixed_instant(rule: FixedTime, after: datetime) -> datetime | None:
    """Earliest instant of ``rule`` strictly after ``after``."""
    after = ensure_utc(after)
    zone = load_zone(rule.timezone)
    cursor = datetime.combine(local_date(after, zone) - timedelta(days=1), dtime(0, 0))
    for day in fixed_rrule(rule).xafter(cursor, inc=True):
        instant = local_to_utc(day.date(), rule.time_of_day, zone)
        if instant > after:
            return instant
    return None


# ---------------------------------------------------------------------------
# Rolling rules
# ---------------------------------------------------------------------------


def add_interval(day: date, unit: IntervalUnit, value: int) -> date:
    """Calendar addition; month steps clamp to the target month's last day."""
    match unit:
        case IntervalUnit.DAY:
            return day + relativedelta(days=value)
        case IntervalUnit.WEEK:
            return day + relativedelta(weeks=value)
        case IntervalUnit.MONTH:
            return day + relativedelta(months=value)
    raise ValueError(f"Unknown interval unit: {unit!r}")


def rolling_next_due(
    rule: RollingAfterCompletion,
    *,
    last_completed_at: datetime | None,
    anchor_date: date | None,
    timezone: str = "UTC",
) -> datetime | None:
    """Last completion (else start-date midnight) plus the rule's interval, in UTC."""
    zone: ZoneInfo = load_zone(timezone)
    if last_completed_at is not None:
        local = ensure_utc(last_completed_at).astimezone(zone)
        base_day, wall = local.date(), local.time()
    elif anchor_date is not None:
        base_day, wall = anchor_date, dtime(0, 0)
    else:
        return None
    return local_to_utc(add_interval(base_day, rule.unit, rule.value), wall, zone)


__all__ = [
    "RecurrenceContext",
    "candidates",
    "fixed_rrule",
    "fixed_instants",
    "next_fixed_instant",
    "rolling_next_due",
    "add_interval",
    "until_end_date",
]
