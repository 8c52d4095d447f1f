"""
Schedule, event and occurrence repositories.

┌──────────────────────────────────────────────────────────────────────────────┐
│  STORE - SQL Persistence For The Generation Engine                           │
│                                                                               │
│  ┌────────────────────────────────────────────────────────────────────┐      │
│  │                     ScheduleRepository                             │      │
│  │   create(ScheduleCreate) → Schedule (code SCH-000001, ...)         │      │
│  │   get / get_by_code / list_all / list_active / list_by_site        │      │
│  │   update(id, ScheduleUpdate) / set_status / delete                 │      │
│  │   get_due(now) → ACTIVE periodic, next_run_at empty or <= now      │      │
│  │   mark_run(...) / flag_config_error(...)                           │      │
│  └────────────────────────────────────────────────────────────────────┘      │
│  ┌────────────────────────────────────────────────────────────────────┐      │
│  │                     EventRepository                                │      │
│  │   create / get / list_unprocessed (oldest first)                   │      │
│  │   list_by_type / list_by_asset / mark_processed (exactly once)     │      │
│  └────────────────────────────────────────────────────────────────────┘      │
│  ┌────────────────────────────────────────────────────────────────────┐      │
│  │                     OccurrenceRepository                           │      │
│  │   insert_if_absent (UNIQUE recurrence_key) / exists_key / get      │      │
│  │   count_open / count_for_schedule / has_within_window              │      │
│  │   last_completion / last_cancellation                              │      │
│  │   last_meter_reading / mark_completed / mark_cancelled             │      │
│  │   list_overdue_candidates / flag_overdue (exactly once)            │      │
│  └────────────────────────────────────────────────────────────────────┘      │
│                                                                               │
│  Instants are stored as ISO 8601 UTC strings, so lexicographic order         │
│  equals chronological order and range filters run in SQL.                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any
from uuid import uuid4

from inspection_spine.core.dialect import Dialect, SQLiteDialect
from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import (
    AssignmentPolicy,
    Constraints,
    DueRules,
    FixedTime,
    GeneratedOccurrence,
    InspectionType,
    NotificationRules,
    OccurrenceOrigin,
    OccurrenceStatus,
    PERIODIC_MODES,
    RecurrenceMode,
    RecurrenceRule,
    RunStatus,
    Schedule,
    ScheduleStatus,
    SchedulingEvent,
    SchedulingEventType,
    Scope,
    assignment_from_dict,
    assignment_to_dict,
    rule_from_dict,
    rule_mode,
    rule_to_dict,
    scope_from_dict,
    scope_to_dict,
)
from inspection_spine.core.protocols import Connection
from inspection_spine.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now
from inspection_spine.scheduling.validation import validate_schedule

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleCreate:
    """DTO for creating a new schedule.

    ``start_date`` defaults to the FixedTime rule's start date; other modes
    must pass it.
    """

    name: str
    site_id: str
    scope: Scope
    template_id: str
    rule: RecurrenceRule
    start_date: date | None = None
    assignment: AssignmentPolicy = field(default_factory=AssignmentPolicy)
    due_rules: DueRules = field(default_factory=DueRules)
    constraints: Constraints = field(default_factory=Constraints)
    notifications: NotificationRules = field(default_factory=NotificationRules)
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    inspection_type: InspectionType = InspectionType.CUSTOM
    timezone: str = "UTC"
    generate_ahead_days: int = 7
    include_new_assets: bool = True
    end_date: date | None = None
    max_occurrences: int | None = None
    created_by: str | None = None


@dataclass
class ScheduleUpdate:
    """DTO for updating a schedule. ``None`` leaves a field unchanged."""

    name: str | None = None
    scope: Scope | None = None
    template_id: str | None = None
    rule: RecurrenceRule | None = None
    start_date: date | None = None
    assignment: AssignmentPolicy | None = None
    due_rules: DueRules | None = None
    constraints: Constraints | None = None
    notifications: NotificationRules | None = None
    inspection_type: InspectionType | None = None
    timezone: str | None = None
    generate_ahead_days: int | None = None
    include_new_assets: bool | None = None
    end_date: date | None = None
    max_occurrences: int | None = None
    updated_by: str | None = None


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

SCHEDULE_COLUMNS = [
    "id",
    "code",
    "name",
    "site_id",
    "template_id",
    "scope",
    "mode",
    "rule",
    "assignment",
    "due_offset_days",
    "overdue_after_days",
    "avoid_duplicates_window_hours",
    "max_open_per_asset_per_template",
    "notify_on_create",
    "notify_on_overdue",
    "status",
    "inspection_type",
    "timezone",
    "start_date",
    "generate_ahead_days",
    "include_new_assets",
    "end_date",
    "max_occurrences",
    "created_by",
    "updated_by",
    "created_at",
    "updated_at",
    "last_run_at",
    "next_run_at",
    "last_run_status",
    "last_error",
    "config_error",
]

EVENT_COLUMNS = ["id", "event_type", "asset_id", "site_id", "payload", "created_at", "processed_at"]

OCCURRENCE_COLUMNS = [
    "id",
    "schedule_id",
    "asset_id",
    "template_id",
    "scheduled_for",
    "due_at",
    "recurrence_key",
    "origin",
    "created_at",
    "status",
    "completed_at",
    "assigned_to",
    "meter_reading",
    "event_id",
    "overdue_flagged_at",
    "cancelled_at",
]

_SCHEDULE_SELECT = f"SELECT {', '.join(SCHEDULE_COLUMNS)} FROM insp_schedules"
_EVENT_SELECT = f"SELECT {', '.join(EVENT_COLUMNS)} FROM insp_scheduling_events"
_OCCURRENCE_SELECT = f"SELECT {', '.join(OCCURRENCE_COLUMNS)} FROM insp_occurrences"


def _row_to_schedule(row: Any) -> Schedule:
    data = dict(zip(SCHEDULE_COLUMNS, tuple(row), strict=False))
    return Schedule(
        id=data["id"],
        code=data["code"],
        name=data["name"],
        site_id=data["site_id"],
        template_id=data["template_id"],
        scope=scope_from_dict(json.loads(data["scope"])),
        rule=rule_from_dict(json.loads(data["rule"])),
        assignment=assignment_from_dict(json.loads(data["assignment"])),
        due_rules=DueRules(data["due_offset_days"], data["overdue_after_days"]),
        constraints=Constraints(
            data["avoid_duplicates_window_hours"], data["max_open_per_asset_per_template"]
        ),
        notifications=NotificationRules(bool(data["notify_on_create"]), bool(data["notify_on_overdue"])),
        status=ScheduleStatus(data["status"]),
        inspection_type=InspectionType(data["inspection_type"]),
        timezone=data["timezone"],
        start_date=date.fromisoformat(data["start_date"]),
        generate_ahead_days=data["generate_ahead_days"],
        include_new_assets=bool(data["include_new_assets"]),
        end_date=date.fromisoformat(data["end_date"]) if data["end_date"] else None,
        max_occurrences=data["max_occurrences"],
        created_by=data["created_by"],
        updated_by=data["updated_by"],
        created_at=from_iso8601(data["created_at"]),
        updated_at=from_iso8601(data["updated_at"]),
        last_run_at=from_iso8601(data["last_run_at"]),
        next_run_at=from_iso8601(data["next_run_at"]),
        last_run_status=RunStatus(data["last_run_status"]) if data["last_run_status"] else None,
        last_error=data["last_error"],
        config_error=data["config_error"],
    )


def _row_to_event(row: Any) -> SchedulingEvent:
    data = dict(zip(EVENT_COLUMNS, tuple(row), strict=False))
    return SchedulingEvent(
        id=data["id"],
        type=SchedulingEventType(data["event_type"]),
        asset_id=data["asset_id"],
        site_id=data["site_id"],
        payload=json.loads(data["payload"]) if data["payload"] else {},
        created_at=from_iso8601(data["created_at"]),  # type: ignore[arg-type]
        processed_at=from_iso8601(data["processed_at"]),
    )


def _row_to_occurrence(row: Any) -> GeneratedOccurrence:
    data = dict(zip(OCCURRENCE_COLUMNS, tuple(row), strict=False))
    return GeneratedOccurrence(
        id=data["id"],
        schedule_id=data["schedule_id"],
        asset_id=data["asset_id"],
        template_id=data["template_id"],
        scheduled_for=from_iso8601(data["scheduled_for"]),  # type: ignore[arg-type]
        due_at=from_iso8601(data["due_at"]),  # type: ignore[arg-type]
        recurrence_key=data["recurrence_key"],
        origin=OccurrenceOrigin(data["origin"]),
        created_at=from_iso8601(data["created_at"]),  # type: ignore[arg-type]
        status=OccurrenceStatus(data["status"]),
        completed_at=from_iso8601(data["completed_at"]),
        assigned_to=data["assigned_to"],
        meter_reading=data["meter_reading"],
        event_id=data["event_id"],
        overdue_flagged_at=from_iso8601(data["overdue_flagged_at"]),
        cancelled_at=from_iso8601(data["cancelled_at"]),
    )


class _SqlRepository:
    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        """Initialize repository with database connection.

        Args:
            conn: Database connection (any backend satisfying Connection protocol)
            dialect: SQL dialect for portable queries. Defaults to SQLiteDialect.
        """
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def _ph(self, count: int = 1) -> str:
        """Generate placeholder string for this dialect."""
        return self.dialect.placeholders(count)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class ScheduleRepository(_SqlRepository):
    """Repository for schedule CRUD and run bookkeeping.

    Example:
        >>> repo = ScheduleRepository(conn)
        >>> schedule = repo.create(ScheduleCreate(
        ...     name="Daily forklift pre-use",
        ...     site_id="site-1",
        ...     scope=AssetType("forklift"),
        ...     template_id="tpl-preuse",
        ...     rule=FixedTime(date(2025, 3, 3), IntervalUnit.DAY),
        ... ))
        >>> schedule.code
        'SCH-000001'
    """

    # === CRUD Operations ===

    def create(self, spec: ScheduleCreate) -> Schedule:
        """Create a new schedule and allocate its ``SCH-`` code.

        Raises:
            InvalidRuleConfiguration: If the definition is not usable.
        """
        start_date = spec.start_date
        if start_date is None:
            if not isinstance(spec.rule, FixedTime):
                raise ValueError("start_date is required for non fixed-time schedules")
            start_date = spec.rule.start_date

        now = to_iso8601(utc_now())
        schedule_id = str(uuid4())
        draft = Schedule(
            id=schedule_id,
            code="",
            name=spec.name,
            site_id=spec.site_id,
            scope=spec.scope,
            template_id=spec.template_id,
            rule=spec.rule,
            start_date=start_date,
            assignment=spec.assignment,
            due_rules=spec.due_rules,
            constraints=spec.constraints,
            notifications=spec.notifications,
            status=spec.status,
            inspection_type=spec.inspection_type,
            timezone=spec.timezone,
            generate_ahead_days=spec.generate_ahead_days,
            include_new_assets=spec.include_new_assets,
            end_date=spec.end_date,
            max_occurrences=spec.max_occurrences,
            created_by=spec.created_by,
        )
        validate_schedule(draft)

        cursor = self.conn.execute("SELECT COALESCE(MAX(code_seq), 0) FROM insp_schedules")
        seq = int(cursor.fetchone()[0]) + 1
        code = f"SCH-{seq:06d}"

        self.conn.execute(
            f"""
            INSERT INTO insp_schedules (
                id, code_seq, code, name, site_id, template_id, scope, mode, rule,
                assignment, due_offset_days, overdue_after_days,
                avoid_duplicates_window_hours, max_open_per_asset_per_template,
                notify_on_create, notify_on_overdue, status, inspection_type,
                timezone, start_date, generate_ahead_days, include_new_assets,
                end_date, max_occurrences, created_by, created_at, updated_at
            ) VALUES ({self._ph(27)})
            """,
            (
                schedule_id,
                seq,
                code,
                spec.name,
                spec.site_id,
                spec.template_id,
                json.dumps(scope_to_dict(spec.scope)),
                rule_mode(spec.rule).value,
                json.dumps(rule_to_dict(spec.rule)),
                json.dumps(assignment_to_dict(spec.assignment)),
                spec.due_rules.due_offset_days,
                spec.due_rules.overdue_after_days,
                spec.constraints.avoid_duplicates_window_hours,
                spec.constraints.max_open_per_asset_per_template,
                1 if spec.notifications.on_create else 0,
                1 if spec.notifications.on_overdue else 0,
                spec.status.value,
                spec.inspection_type.value,
                spec.timezone,
                start_date.isoformat(),
                spec.generate_ahead_days,
                1 if spec.include_new_assets else 0,
                spec.end_date.isoformat() if spec.end_date else None,
                spec.max_occurrences,
                spec.created_by,
                now,
                now,
            ),
        )
        self.conn.commit()
        logger.info("schedule.created", schedule_id=schedule_id, code=code, mode=rule_mode(spec.rule).value)

        return self.get(schedule_id)  # type: ignore[return-value]

    def get(self, schedule_id: str) -> Schedule | None:
        cursor = self.conn.execute(f"{_SCHEDULE_SELECT} WHERE id = {self._ph()}", (schedule_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return _row_to_schedule(row)

    def get_by_code(self, code: str) -> Schedule | None:
        cursor = self.conn.execute(f"{_SCHEDULE_SELECT} WHERE code = {self._ph()}", (code,))
        row = cursor.fetchone()
        if not row:
            return None
        return _row_to_schedule(row)

    def resolve(self, id_or_code: str) -> Schedule | None:
        """Look a schedule up by id, falling back to its ``SCH-`` code."""
        return self.get(id_or_code) or self.get_by_code(id_or_code)

    def list_all(self) -> list[Schedule]:
        cursor = self.conn.execute(f"{_SCHEDULE_SELECT} ORDER BY code_seq")
        return [_row_to_schedule(row) for row in cursor.fetchall()]

    def list_active(self, modes: Iterable[RecurrenceMode] | None = None) -> list[Schedule]:
        """ACTIVE schedules, optionally restricted to some recurrence modes."""
        sql = f"{_SCHEDULE_SELECT} WHERE status = {self._ph()}"
        params: list[Any] = [ScheduleStatus.ACTIVE.value]
        if modes is not None:
            mode_values = sorted(m.value for m in modes)
            if not mode_values:
                return []
            sql += f" AND mode IN ({self._ph(len(mode_values))})"
            params.extend(mode_values)
        cursor = self.conn.execute(sql + " ORDER BY code_seq", tuple(params))
        return [_row_to_schedule(row) for row in cursor.fetchall()]

    def list_by_site(self, site_id: str) -> list[Schedule]:
        cursor = self.conn.execute(
            f"{_SCHEDULE_SELECT} WHERE site_id = {self._ph()} ORDER BY code_seq", (site_id,)
        )
        return [_row_to_schedule(row) for row in cursor.fetchall()]

    def update(self, schedule_id: str, updates: ScheduleUpdate) -> Schedule | None:
        """Apply a partial update.

        Changing the scope, rule, start date or an end condition clears
        ``config_error`` and ``next_run_at`` so the next run re-evaluates the
        schedule.

        Raises:
            InvalidRuleConfiguration: If the updated definition is not usable.
        """
        current = self.get(schedule_id)
        if current is None:
            return None

        set_parts: list[str] = []
        params: list[Any] = []

        def put(column: str, value: Any) -> None:
            set_parts.append(f"{column} = {self._ph()}")
            params.append(value)

        if updates.name is not None:
            current.name = updates.name
            put("name", updates.name)
        if updates.template_id is not None:
            current.template_id = updates.template_id
            put("template_id", updates.template_id)
        if updates.scope is not None:
            current.scope = updates.scope
            put("scope", json.dumps(scope_to_dict(updates.scope)))
        if updates.rule is not None:
            current.rule = updates.rule
            put("rule", json.dumps(rule_to_dict(updates.rule)))
            put("mode", rule_mode(updates.rule).value)
        if updates.start_date is not None:
            current.start_date = updates.start_date
            put("start_date", updates.start_date.isoformat())
        if updates.assignment is not None:
            current.assignment = updates.assignment
            put("assignment", json.dumps(assignment_to_dict(updates.assignment)))
        if updates.due_rules is not None:
            current.due_rules = updates.due_rules
            put("due_offset_days", updates.due_rules.due_offset_days)
            put("overdue_after_days", updates.due_rules.overdue_after_days)
        if updates.constraints is not None:
            current.constraints = updates.constraints
            put("avoid_duplicates_window_hours", updates.constraints.avoid_duplicates_window_hours)
            put("max_open_per_asset_per_template", updates.constraints.max_open_per_asset_per_template)
        if updates.notifications is not None:
            current.notifications = updates.notifications
            put("notify_on_create", 1 if updates.notifications.on_create else 0)
            put("notify_on_overdue", 1 if updates.notifications.on_overdue else 0)
        if updates.inspection_type is not None:
            current.inspection_type = updates.inspection_type
            put("inspection_type", updates.inspection_type.value)
        if updates.timezone is not None:
            current.timezone = updates.timezone
            put("timezone", updates.timezone)
        if updates.generate_ahead_days is not None:
            current.generate_ahead_days = updates.generate_ahead_days
            put("generate_ahead_days", updates.generate_ahead_days)
        if updates.include_new_assets is not None:
            current.include_new_assets = updates.include_new_assets
            put("include_new_assets", 1 if updates.include_new_assets else 0)
        if updates.end_date is not None:
            current.end_date = updates.end_date
            put("end_date", updates.end_date.isoformat())
        if updates.max_occurrences is not None:
            current.max_occurrences = updates.max_occurrences
            put("max_occurrences", updates.max_occurrences)

        if not set_parts:
            return current

        validate_schedule(current)

        reevaluate = (updates.scope, updates.rule, updates.start_date, updates.end_date, updates.max_occurrences)
        if any(value is not None for value in reevaluate):
            set_parts.append("config_error = NULL")
            set_parts.append("next_run_at = NULL")

        put("updated_by", updates.updated_by)
        put("updated_at", to_iso8601(utc_now()))
        params.append(schedule_id)

        self.conn.execute(
            f"UPDATE insp_schedules SET {', '.join(set_parts)} WHERE id = {self._ph()}",
            tuple(params),
        )
        self.conn.commit()
        return self.get(schedule_id)

    def set_status(
        self, schedule_id: str, status: ScheduleStatus, updated_by: str | None = None
    ) -> Schedule | None:
        """Pause or resume. Pausing never deletes generated occurrences.

        Resuming clears ``next_run_at``: the schedule is due at once and does
        not backfill what fell due while it was paused.
        """
        reset = ", next_run_at = NULL" if status == ScheduleStatus.ACTIVE else ""
        cursor = self.conn.execute(
            f"""
            UPDATE insp_schedules
            SET status = {self._ph()}, updated_by = {self._ph()}, updated_at = {self._ph()}{reset}
            WHERE id = {self._ph()}
            """,
            (status.value, updated_by, to_iso8601(utc_now()), schedule_id),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return None
        logger.info("schedule.status_changed", schedule_id=schedule_id, status=status.value)
        return self.get(schedule_id)

    def delete(self, schedule_id: str) -> bool:
        cursor = self.conn.execute(
            f"DELETE FROM insp_schedules WHERE id = {self._ph()}", (schedule_id,)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # === Run bookkeeping ===

    def get_due(self, now: datetime) -> list[Schedule]:
        """ACTIVE periodic schedules whose ``next_run_at`` is empty or <= ``now``."""
        modes = sorted(m.value for m in PERIODIC_MODES)
        cursor = self.conn.execute(
            f"""
            {_SCHEDULE_SELECT}
            WHERE status = {self._ph()}
              AND mode IN ({self._ph(len(modes))})
              AND (next_run_at IS NULL OR next_run_at <= {self._ph()})
            ORDER BY code_seq
            """,
            (ScheduleStatus.ACTIVE.value, *modes, to_iso8601(now)),
        )
        return [_row_to_schedule(row) for row in cursor.fetchall()]

    def mark_run(
        self,
        schedule_id: str,
        *,
        last_run_at: datetime,
        status: RunStatus,
        next_run_at: datetime | None,
        error: str | None = None,
    ) -> None:
        """Record the outcome of a run and the next time it is due.

        A run that got this far had a valid configuration, so any previous
        ``config_error`` is cleared.
        """
        self.conn.execute(
            f"""
            UPDATE insp_schedules
            SET last_run_at = {self._ph()}, last_run_status = {self._ph()},
                next_run_at = {self._ph()}, last_error = {self._ph()},
                config_error = NULL
            WHERE id = {self._ph()}
            """,
            (to_iso8601(last_run_at), status.value, to_iso8601(next_run_at), error, schedule_id),
        )
        self.conn.commit()

    def flag_config_error(self, schedule_id: str, message: str, at: datetime) -> None:
        """Flag an invalid definition for its owner. The status is left alone."""
        self.conn.execute(
            f"""
            UPDATE insp_schedules
            SET config_error = {self._ph()}, last_error = {self._ph()},
                last_run_status = {self._ph()}, last_run_at = {self._ph()}
            WHERE id = {self._ph()}
            """,
            (message, message, RunStatus.FAILED.value, to_iso8601(at), schedule_id),
        )
        self.conn.commit()
        logger.warning("schedule.config_error_flagged", schedule_id=schedule_id, error=message)


# ---------------------------------------------------------------------------
# Scheduling events
# ---------------------------------------------------------------------------


class EventRepository(_SqlRepository):
    """Repository for the scheduling-event queue."""

    def create(
        self,
        event_type: SchedulingEventType,
        *,
        asset_id: str | None = None,
        site_id: str | None = None,
        payload: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> SchedulingEvent:
        event = SchedulingEvent(
            id=generate_ulid(),
            type=event_type,
            asset_id=asset_id,
            site_id=site_id,
            payload=dict(payload or {}),
            created_at=created_at or utc_now(),
        )
        self.conn.execute(
            f"""
            INSERT INTO insp_scheduling_events (id, event_type, asset_id, site_id, payload, created_at)
            VALUES ({self._ph(6)})
            """,
            (
                event.id,
                event.type.value,
                event.asset_id,
                event.site_id,
                json.dumps(event.payload),
                to_iso8601(event.created_at),
            ),
        )
        self.conn.commit()
        logger.info("event.raised", event_id=event.id, event_type=event.type.value, asset_id=asset_id)
        return event

    def get(self, event_id: str) -> SchedulingEvent | None:
        cursor = self.conn.execute(f"{_EVENT_SELECT} WHERE id = {self._ph()}", (event_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return _row_to_event(row)

    def list_unprocessed(self, limit: int | None = None) -> list[SchedulingEvent]:
        """Pending events, oldest first."""
        sql = f"{_EVENT_SELECT} WHERE processed_at IS NULL ORDER BY created_at, id"
        params: tuple = ()
        if limit is not None:
            sql += f" LIMIT {self._ph()}"
            params = (limit,)
        cursor = self.conn.execute(sql, params)
        return [_row_to_event(row) for row in cursor.fetchall()]

    def list_recent(self, limit: int = 50) -> list[SchedulingEvent]:
        cursor = self.conn.execute(
            f"{_EVENT_SELECT} ORDER BY created_at DESC, id DESC LIMIT {self._ph()}", (limit,)
        )
        return [_row_to_event(row) for row in cursor.fetchall()]

    def list_by_type(self, event_type: SchedulingEventType) -> list[SchedulingEvent]:
        cursor = self.conn.execute(
            f"{_EVENT_SELECT} WHERE event_type = {self._ph()} ORDER BY created_at, id",
            (event_type.value,),
        )
        return [_row_to_event(row) for row in cursor.fetchall()]

    def list_by_asset(self, asset_id: str) -> list[SchedulingEvent]:
        cursor = self.conn.execute(
            f"{_EVENT_SELECT} WHERE asset_id = {self._ph()} ORDER BY created_at, id",
            (asset_id,),
        )
        return [_row_to_event(row) for row in cursor.fetchall()]

    def mark_processed(self, event_id: str, at: datetime) -> bool:
        """Set ``processed_at`` once. Returns False if already processed or unknown."""
        cursor = self.conn.execute(
            f"""
            UPDATE insp_scheduling_events SET processed_at = {self._ph()}
            WHERE id = {self._ph()} AND processed_at IS NULL
            """,
            (to_iso8601(at), event_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Generated occurrences
# ---------------------------------------------------------------------------


class OccurrenceRepository(_SqlRepository):
    """Repository for generated occurrences.

    Also satisfies :class:`~inspection_spine.core.protocols.CompletionSource`.
    """

    def insert_if_absent(self, occurrence: GeneratedOccurrence) -> bool:
        """Atomic insert keyed by ``recurrence_key``. Returns False on conflict."""
        sql = self.dialect.insert_or_ignore("insp_occurrences", OCCURRENCE_COLUMNS)
        cursor = self.conn.execute(
            sql,
            (
                occurrence.id,
                occurrence.schedule_id,
                occurrence.asset_id,
                occurrence.template_id,
                to_iso8601(occurrence.scheduled_for),
                to_iso8601(occurrence.due_at),
                occurrence.recurrence_key,
                occurrence.origin.value,
                to_iso8601(occurrence.created_at),
                occurrence.status.value,
                to_iso8601(occurrence.completed_at),
                occurrence.assigned_to,
                occurrence.meter_reading,
                occurrence.event_id,
                to_iso8601(occurrence.overdue_flagged_at),
                to_iso8601(occurrence.cancelled_at),
            ),
        )
        inserted = cursor.rowcount > 0
        self.conn.commit()
        return inserted

    def exists_key(self, recurrence_key: str) -> bool:
        cursor = self.conn.execute(
            f"SELECT 1 FROM insp_occurrences WHERE recurrence_key = {self._ph()}",
            (recurrence_key,),
        )
        return cursor.fetchone() is not None

    def get(self, occurrence_id: str) -> GeneratedOccurrence | None:
        cursor = self.conn.execute(f"{_OCCURRENCE_SELECT} WHERE id = {self._ph()}", (occurrence_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return _row_to_occurrence(row)

    def list_for_schedule(
        self, schedule_id: str, status: OccurrenceStatus | None = None
    ) -> list[GeneratedOccurrence]:
        if status is not None:
            cursor = self.conn.execute(
                f"""
                {_OCCURRENCE_SELECT}
                WHERE schedule_id = {self._ph()} AND status = {self._ph()}
                ORDER BY scheduled_for, asset_id
                """,
                (schedule_id, status.value),
            )
        else:
            cursor = self.conn.execute(
                f"{_OCCURRENCE_SELECT} WHERE schedule_id = {self._ph()} ORDER BY scheduled_for, asset_id",
                (schedule_id,),
            )
        return [_row_to_occurrence(row) for row in cursor.fetchall()]

    def count_open(self, asset_id: str, template_id: str) -> int:
        """Open occurrences for (asset, template), across all schedules."""
        cursor = self.conn.execute(
            f"""
            SELECT COUNT(*) FROM insp_occurrences
            WHERE asset_id = {self._ph()} AND template_id = {self._ph()} AND status = {self._ph()}
            """,
            (asset_id, template_id, OccurrenceStatus.OPEN.value),
        )
        return int(cursor.fetchone()[0])

    def has_within_window(
        self,
        schedule_id: str,
        asset_id: str,
        template_id: str,
        scheduled_for: datetime,
        window_hours: int,
    ) -> bool:
        """Any occurrence of the same triple strictly within ``window_hours`` of ``scheduled_for``."""
        if window_hours <= 0:
            return False
        window = timedelta(hours=window_hours)
        cursor = self.conn.execute(
            f"""
            SELECT 1 FROM insp_occurrences
            WHERE schedule_id = {self._ph()} AND asset_id = {self._ph()} AND template_id = {self._ph()}
              AND scheduled_for > {self._ph()} AND scheduled_for < {self._ph()}
            LIMIT 1
            """,
            (
                schedule_id,
                asset_id,
                template_id,
                to_iso8601(scheduled_for - window),
                to_iso8601(scheduled_for + window),
            ),
        )
        return cursor.fetchone() is not None

    def last_completion(self, schedule_id: str, asset_id: str) -> datetime | None:
        cursor = self.conn.execute(
            f"""
            SELECT MAX(completed_at) FROM insp_occurrences
            WHERE schedule_id = {self._ph()} AND asset_id = {self._ph()} AND status = {self._ph()}
            """,
            (schedule_id, asset_id, OccurrenceStatus.COMPLETED.value),
        )
        row = cursor.fetchone()
        return from_iso8601(row[0]) if row else None

    def last_cancellation(self, schedule_id: str, asset_id: str) -> datetime | None:
        cursor = self.conn.execute(
            f"""
            SELECT MAX(cancelled_at) FROM insp_occurrences
            WHERE schedule_id = {self._ph()} AND asset_id = {self._ph()} AND status = {self._ph()}
            """,
            (schedule_id, asset_id, OccurrenceStatus.CANCELLED.value),
        )
        row = cursor.fetchone()
        return from_iso8601(row[0]) if row else None

    def count_for_schedule(self, schedule_id: str) -> int:
        """Occurrences ever generated for ``schedule_id``, in any status."""
        cursor = self.conn.execute(
            f"SELECT COUNT(*) FROM insp_occurrences WHERE schedule_id = {self._ph()}",
            (schedule_id,),
        )
        return int(cursor.fetchone()[0])

    def last_meter_reading(self, schedule_id: str, asset_id: str) -> float | None:
        """Meter reading stored on the newest occurrence that carries one."""
        cursor = self.conn.execute(
            f"""
            SELECT meter_reading FROM insp_occurrences
            WHERE schedule_id = {self._ph()} AND asset_id = {self._ph()} AND meter_reading IS NOT NULL
            ORDER BY created_at DESC, scheduled_for DESC
            LIMIT 1
            """,
            (schedule_id, asset_id),
        )
        row = cursor.fetchone()
        return float(row[0]) if row else None

    def mark_completed(self, occurrence_id: str, completed_at: datetime) -> bool:
        cursor = self.conn.execute(
            f"""
            UPDATE insp_occurrences SET status = {self._ph()}, completed_at = {self._ph()}
            WHERE id = {self._ph()} AND status = {self._ph()}
            """,
            (OccurrenceStatus.COMPLETED.value, to_iso8601(completed_at), occurrence_id, OccurrenceStatus.OPEN.value),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def mark_cancelled(self, occurrence_id: str, cancelled_at: datetime | None = None) -> bool:
        """Cancel an open occurrence, stamping ``cancelled_at`` (default: now)."""
        cursor = self.conn.execute(
            f"""
            UPDATE insp_occurrences SET status = {self._ph()}, cancelled_at = {self._ph()}
            WHERE id = {self._ph()} AND status = {self._ph()}
            """,
            (
                OccurrenceStatus.CANCELLED.value,
                to_iso8601(cancelled_at or utc_now()),
                occurrence_id,
                OccurrenceStatus.OPEN.value,
            ),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_overdue_candidates(self, due_before: datetime) -> list[GeneratedOccurrence]:
        """Open, not yet flagged occurrences due before ``due_before``."""
        cursor = self.conn.execute(
            f"""
            {_OCCURRENCE_SELECT}
            WHERE status = {self._ph()} AND overdue_flagged_at IS NULL AND due_at < {self._ph()}
            ORDER BY due_at
            """,
            (OccurrenceStatus.OPEN.value, to_iso8601(due_before)),
        )
        return [_row_to_occurrence(row) for row in cursor.fetchall()]

    def flag_overdue(self, occurrence_id: str, at: datetime) -> bool:
        """Set ``overdue_flagged_at`` once. Returns False if already flagged."""
        cursor = self.conn.execute(
            f"""
            UPDATE insp_occurrences SET overdue_flagged_at = {self._ph()}
            WHERE id = {self._ph()} AND overdue_flagged_at IS NULL
            """,
            (to_iso8601(at), occurrence_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0


__all__ = [
    "ScheduleCreate",
    "ScheduleUpdate",
    "ScheduleRepository",
    "EventRepository",
    "OccurrenceRepository",
]
