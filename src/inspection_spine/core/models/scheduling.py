"""Scheduling models (01_scheduling.sql).

Manifesto:
    Schedules, scheduling events and generated occurrences need typed
    dataclass representations so the recurrence engine, the guard and
    the runner work with structured objects, never raw rows.

Scope and recurrence rules are tagged variants: one small frozen dataclass
per variant, unioned into ``Scope`` and ``RecurrenceRule`` and dispatched
with a single ``match``.  Closed sets are ``str`` enums so they serialize
to their names in JSON and SQL.

Tags:
    inspection-spine, models, scheduling, dataclasses, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum, IntEnum
from typing import Any, TypeAlias

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ScheduleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class RecurrenceMode(str, Enum):
    FIXED_TIME = "FIXED_TIME"
    ROLLING_AFTER_COMPLETION = "ROLLING_AFTER_COMPLETION"
    USAGE_BASED = "USAGE_BASED"
    EVENT_DRIVEN = "EVENT_DRIVEN"


PERIODIC_MODES = frozenset(
    {RecurrenceMode.FIXED_TIME, RecurrenceMode.ROLLING_AFTER_COMPLETION, RecurrenceMode.USAGE_BASED}
)


class IntervalUnit(str, Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"


class Weekday(IntEnum):
    """ISO-style weekday numbering used by :meth:`datetime.date.weekday`."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class MeterType(str, Enum):
    HOURS = "HOURS"
    KM = "KM"
    CYCLES = "CYCLES"


class SchedulingEventType(str, Enum):
    DEFECT_MARKED_UNSAFE = "DEFECT_MARKED_UNSAFE"
    DEFECT_REOPENED = "DEFECT_REOPENED"
    ASSET_STATUS_CHANGED = "ASSET_STATUS_CHANGED"
    COMPLIANCE_EXPIRING = "COMPLIANCE_EXPIRING"
    PM_OVERDUE = "PM_OVERDUE"
    INSPECTION_FAILED = "INSPECTION_FAILED"
    MANUAL_TRIGGER = "MANUAL_TRIGGER"


class AssignmentMode(str, Enum):
    FIXED_USER = "FIXED_USER"
    ROTATE_TEAM = "ROTATE_TEAM"
    UNASSIGNED = "UNASSIGNED"


class InspectionType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    STATUTORY = "STATUTORY"
    CUSTOM = "CUSTOM"


class OccurrenceOrigin(str, Enum):
    SCHEDULE = "SCHEDULE"
    EVENT = "EVENT"


class OccurrenceStatus(str, Enum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RunStatus(str, Enum):
    COMPLETED = "COMPLETED"  # every asset reached a decision
    PARTIAL = "PARTIAL"      # some assets errored
    FAILED = "FAILED"        # schedule-level failure, nothing decided
    SKIPPED = "SKIPPED"      # paused, ended or not applicable


class RejectionReason(str, Enum):
    DUPLICATE_KEY = "DUPLICATE_KEY"
    DUPLICATE_WINDOW = "DUPLICATE_WINDOW"
    MAX_OPEN_REACHED = "MAX_OPEN_REACHED"
    PERSISTENCE_CONFLICT = "PERSISTENCE_CONFLICT"
    SCHEDULE_ENDED = "SCHEDULE_ENDED"  # max_occurrences used up


class NotificationKind(str, Enum):
    CREATED = "CREATED"
    OVERDUE = "OVERDUE"


# ---------------------------------------------------------------------------
# Scope variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AllAssets:
    """Every asset at the schedule's site."""


@dataclass(frozen=True, slots=True)
class AssetIds:
    asset_ids: frozenset[str]


@dataclass(frozen=True, slots=True)
class AssetType:
    asset_type_id: str


@dataclass(frozen=True, slots=True)
class Tags:
    tags: frozenset[str]


Scope: TypeAlias = AllAssets | AssetIds | AssetType | Tags


# ---------------------------------------------------------------------------
# Recurrence rule variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FixedTime:
    """Calendar recurrence anchored at ``start_date`` in ``timezone``."""

    start_date: date
    interval_unit: IntervalUnit
    interval_value: int = 1
    days_of_week: frozenset[Weekday] | None = None
    day_of_month: int | None = None
    time_of_day: time = time(9, 0)
    timezone: str = "UTC"


@dataclass(frozen=True, slots=True)
class RollingAfterCompletion:
    """Next due date counted from the last completion."""

    unit: IntervalUnit
    value: int = 1


@dataclass(frozen=True, slots=True)
class UsageBased:
    """Generate once the meter advanced ``threshold_value`` since the last occurrence."""

    meter_type: MeterType
    threshold_value: float
    meter_source: str | None = None  # informational, e.g. "asset.runningHours"


@dataclass(frozen=True, slots=True)
class EventDriven:
    triggers: frozenset[SchedulingEventType]


RecurrenceRule: TypeAlias = FixedTime | RollingAfterCompletion | UsageBased | EventDriven


def rule_mode(rule: RecurrenceRule) -> RecurrenceMode:
    """Mode tag of a rule variant."""
    match rule:
        case FixedTime():
            return RecurrenceMode.FIXED_TIME
        case RollingAfterCompletion():
            return RecurrenceMode.ROLLING_AFTER_COMPLETION
        case UsageBased():
            return RecurrenceMode.USAGE_BASED
        case EventDriven():
            return RecurrenceMode.EVENT_DRIVEN
    raise TypeError(f"Not a recurrence rule: {rule!r}")


# ---------------------------------------------------------------------------
# Schedule policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DueRules:
    due_offset_days: int = 0
    overdue_after_days: int = 0


@dataclass(frozen=True, slots=True)
class Constraints:
    avoid_duplicates_window_hours: int = 0
    max_open_per_asset_per_template: int = 1


@dataclass(frozen=True, slots=True)
class NotificationRules:
    on_create: bool = False
    on_overdue: bool = False


@dataclass(frozen=True, slots=True)
class AssignmentPolicy:
    mode: AssignmentMode = AssignmentMode.UNASSIGNED
    user_id: str | None = None
    team_id: str | None = None
    team_members: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# insp_schedules
# ---------------------------------------------------------------------------


@dataclass
class Schedule:
    """Schedule definition row (``insp_schedules``)."""

    id: str
    code: str
    name: str
    site_id: str
    scope: Scope
    template_id: str
    rule: RecurrenceRule
    start_date: date
    assignment: AssignmentPolicy = field(default_factory=AssignmentPolicy)
    due_rules: DueRules = field(default_factory=DueRules)
    constraints: Constraints = field(default_factory=Constraints)
    notifications: NotificationRules = field(default_factory=NotificationRules)
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    inspection_type: InspectionType = InspectionType.CUSTOM
    timezone: str = "UTC"  # used by non-fixed modes; FixedTime carries its own
    generate_ahead_days: int = 7
    include_new_assets: bool = True
    end_date: date | None = None  # last local date that may carry an occurrence
    max_occurrences: int | None = None  # lifetime cap across all assets
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    last_error: str | None = None
    config_error: str | None = None

    @property
    def mode(self) -> RecurrenceMode:
        return rule_mode(self.rule)

    @property
    def zone_name(self) -> str:
        """IANA zone in which this schedule's calendar arithmetic happens."""
        if isinstance(self.rule, FixedTime):
            return self.rule.timezone
        return self.timezone

    @property
    def is_active(self) -> bool:
        return self.status == ScheduleStatus.ACTIVE


# ---------------------------------------------------------------------------
# insp_scheduling_events
# ---------------------------------------------------------------------------


@dataclass
class SchedulingEvent:
    """Scheduling event row (``insp_scheduling_events``)."""

    id: str
    type: SchedulingEventType
    created_at: datetime
    asset_id: str | None = None
    site_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    processed_at: datetime | None = None

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None


# ---------------------------------------------------------------------------
# insp_occurrences
# ---------------------------------------------------------------------------


@dataclass
class GeneratedOccurrence:
    """Generated inspection occurrence row (``insp_occurrences``)."""

    id: str
    schedule_id: str
    asset_id: str
    template_id: str
    scheduled_for: datetime
    due_at: datetime
    recurrence_key: str
    origin: OccurrenceOrigin
    created_at: datetime
    status: OccurrenceStatus = OccurrenceStatus.OPEN
    completed_at: datetime | None = None
    assigned_to: str | None = None
    meter_reading: float | None = None
    event_id: str | None = None
    overdue_flagged_at: datetime | None = None
    cancelled_at: datetime | None = None


# ---------------------------------------------------------------------------
# Run-time values (not persisted as rows)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Candidate:
    """A due instant proposed for one asset, before the guard decides."""

    schedule_id: str
    asset_id: str
    template_id: str
    scheduled_for: datetime
    origin: OccurrenceOrigin = OccurrenceOrigin.SCHEDULE
    meter_reading: float | None = None
    event_id: str | None = None


@dataclass(frozen=True, slots=True)
class Rejection:
    asset_id: str
    scheduled_for: datetime
    reason: RejectionReason


@dataclass(frozen=True, slots=True)
class NotificationSignal:
    kind: NotificationKind
    schedule_id: str
    occurrence_id: str
    asset_id: str
    due_at: datetime


@dataclass
class RunResult:
    """Outcome of generating one schedule (periodic run or one event).

    Every candidate ends up in exactly one of ``occurrences``,
    ``rejections`` or (per asset) ``errors``.
    """

    schedule_id: str
    status: RunStatus = RunStatus.COMPLETED
    event_id: str | None = None
    occurrences: list[GeneratedOccurrence] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def generated_count(self) -> int:
        return len(self.occurrences)

    @property
    def rejected_count(self) -> int:
        return len(self.rejections)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "event_id": self.event_id,
            "status": self.status.value,
            "generated": self.generated_count,
            "rejected": self.rejected_count,
            "rejections": [
                {"asset_id": r.asset_id, "scheduled_for": r.scheduled_for.isoformat(), "reason": r.reason.value}
                for r in self.rejections
            ],
            "errors": [{"asset_id": a, "reason": reason} for a, reason in self.errors],
            "error": self.error,
            "occurrence_ids": [o.id for o in self.occurrences],
        }


# ---------------------------------------------------------------------------
# JSON (de)serialization of tagged variants
# ---------------------------------------------------------------------------


def scope_to_dict(scope: Scope) -> dict[str, Any]:
    match scope:
        case AllAssets():
            return {"kind": "ALL_ASSETS"}
        case AssetIds(asset_ids=ids):
            return {"kind": "ASSET_IDS", "asset_ids": sorted(ids)}
        case AssetType(asset_type_id=type_id):
            return {"kind": "ASSET_TYPE", "asset_type_id": type_id}
        case Tags(tags=tags):
            return {"kind": "TAGS", "tags": sorted(tags)}
    raise TypeError(f"Not a scope: {scope!r}")


def scope_from_dict(data: dict[str, Any]) -> Scope:
    kind = data.get("kind")
    match kind:
        case "ALL_ASSETS":
            return AllAssets()
        case "ASSET_IDS":
            return AssetIds(frozenset(data.get("asset_ids") or ()))
        case "ASSET_TYPE":
            return AssetType(data.get("asset_type_id") or "")
        case "TAGS":
            return Tags(frozenset(data.get("tags") or ()))
    raise ValueError(f"Unknown scope kind: {kind!r}")


def rule_to_dict(rule: RecurrenceRule) -> dict[str, Any]:
    match rule:
        case FixedTime():
            return {
                "mode": RecurrenceMode.FIXED_TIME.value,
                "start_date": rule.start_date.isoformat(),
                "interval_unit": rule.interval_unit.value,
                "interval_value": rule.interval_value,
                "days_of_week": (
                    sorted(int(d) for d in rule.days_of_week)
                    if rule.days_of_week is not None else None
                ),
                "day_of_month": rule.day_of_month,
                "time_of_day": rule.time_of_day.strftime("%H:%M"),
                "timezone": rule.timezone,
            }
        case RollingAfterCompletion():
            return {
                "mode": RecurrenceMode.ROLLING_AFTER_COMPLETION.value,
                "unit": rule.unit.value,
                "value": rule.value,
            }
        case UsageBased():
            return {
                "mode": RecurrenceMode.USAGE_BASED.value,
                "meter_type": rule.meter_type.value,
                "threshold_value": rule.threshold_value,
                "meter_source": rule.meter_source,
            }
        case EventDriven():
            return {
                "mode": RecurrenceMode.EVENT_DRIVEN.value,
                "triggers": sorted(t.value for t in rule.triggers),
            }
    raise TypeError(f"Not a recurrence rule: {rule!r}")


def rule_from_dict(data: dict[str, Any]) -> RecurrenceRule:
    mode = RecurrenceMode(data["mode"])
    match mode:
        case RecurrenceMode.FIXED_TIME:
            days = data.get("days_of_week")
            return FixedTime(
                start_date=date.fromisoformat(data["start_date"]),
                interval_unit=IntervalUnit(data["interval_unit"]),
                interval_value=int(data.get("interval_value", 1)),
                days_of_week=frozenset(Weekday(int(d)) for d in days) if days is not None else None,
                day_of_month=data.get("day_of_month"),
                time_of_day=time.fromisoformat(data.get("time_of_day", "09:00")),
                timezone=data.get("timezone", "UTC"),
            )
        case RecurrenceMode.ROLLING_AFTER_COMPLETION:
            return RollingAfterCompletion(
                unit=IntervalUnit(data["unit"]),
                value=int(data.get("value", 1)),
            )
        case RecurrenceMode.USAGE_BASED:
            return UsageBased(
                meter_type=MeterType(data["meter_type"]),
                threshold_value=float(data["threshold_value"]),
                meter_source=data.get("meter_source"),
            )
        case RecurrenceMode.EVENT_DRIVEN:
            return EventDriven(
                triggers=frozenset(SchedulingEventType(t) for t in data.get("triggers") or ()),
            )
    raise ValueError(f"Unknown recurrence mode: {mode!r}")


def assignment_to_dict(policy: AssignmentPolicy) -> dict[str, Any]:
    return {
        "mode": policy.mode.value,
        "user_id": policy.user_id,
        "team_id": policy.team_id,
        "team_members": list(policy.team_members),
    }


def assignment_from_dict(data: dict[str, Any]) -> AssignmentPolicy:
    return AssignmentPolicy(
        mode=AssignmentMode(data.get("mode", AssignmentMode.UNASSIGNED.value)),
        user_id=data.get("user_id"),
        team_id=data.get("team_id"),
        team_members=tuple(data.get("team_members") or ()),
    )


__all__ = [
    "ScheduleStatus",
    "RecurrenceMode",
    "PERIODIC_MODES",
    "IntervalUnit",
    "Weekday",
    "MeterType",
    "SchedulingEventType",
    "AssignmentMode",
    "InspectionType",
    "OccurrenceOrigin",
    "OccurrenceStatus",
    "RunStatus",
    "RejectionReason",
    "NotificationKind",
    "AllAssets",
    "AssetIds",
    "AssetType",
    "Tags",
    "Scope",
    "FixedTime",
    "RollingAfterCompletion",
    "UsageBased",
    "EventDriven",
    "RecurrenceRule",
    "rule_mode",
    "DueRules",
    "Constraints",
    "NotificationRules",
    "AssignmentPolicy",
    "Schedule",
    "SchedulingEvent",
    "GeneratedOccurrence",
    "Candidate",
    "Rejection",
    "NotificationSignal",
    "RunResult",
    "scope_to_dict",
    "scope_from_dict",
    "rule_to_dict",
    "rule_from_dict",
    "assignment_to_dict",
    "assignment_from_dict",
]
