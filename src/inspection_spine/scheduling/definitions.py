"""Pydantic models for schedule definition files.

Schedules can be authored as YAML (or JSON, which is valid YAML) and loaded
into :class:`~inspection_spine.scheduling.repository.ScheduleCreate`.  The
models validate the document's shape; engine-level rules (interval ≥ 1,
weekday lists only for weekly rules, known time zones...) are enforced by
``validate_schedule`` when the schedule is created.

Usage::

    from inspection_spine.scheduling.definitions import ScheduleSpec

    spec = ScheduleSpec.from_yaml_file("schedules/forklift-preuse.yaml")
    schedule = repo.create(spec.to_create())

Example YAML::

    apiVersion: inspection-spine/v1
    kind: Schedule
    metadata:
      name: Forklift pre-use check
      site_id: site-1
      template_id: tpl-preuse
      inspection_type: DAILY
    spec:
      scope:
        kind: ASSET_TYPE
        asset_type_id: forklift
      rule:
        mode: FIXED_TIME
        start_date: 2025-03-03
        interval_unit: WEEK
        days_of_week: [MONDAY, THURSDAY]
        time_of_day: "07:30"
        timezone: Europe/London
      due:
        due_offset_days: 1
        overdue_after_days: 2
      assignment:
        mode: ROTATE_TEAM
        team_members: [alice, bob]
      end_date: 2025-12-31

Quote ``time_of_day``: YAML 1.1 reads an unquoted ``07:30`` as a base-60
integer.

Tags:
    inspection-spine, scheduling, yaml, declarative, config-driven

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import date, time
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from inspection_spine.core.models.scheduling import (
    AllAssets,
    AssetIds,
    AssetType,
    AssignmentMode,
    AssignmentPolicy,
    Constraints,
    DueRules,
    EventDriven,
    FixedTime,
    InspectionType,
    IntervalUnit,
    MeterType,
    NotificationRules,
    RecurrenceMode,
    RecurrenceRule,
    RollingAfterCompletion,
    Scope,
    ScheduleStatus,
    SchedulingEventType,
    Tags,
    UsageBased,
    Weekday,
)
from inspection_spine.scheduling.repository import ScheduleCreate


class ScopeSpec(BaseModel):
    """Which assets a schedule covers."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["ALL_ASSETS", "ASSET_IDS", "ASSET_TYPE", "TAGS"]
    asset_ids: list[str] = Field(default_factory=list)
    asset_type_id: str | None = None
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_selector(self) -> ScopeSpec:
        if self.kind == "ASSET_TYPE" and not self.asset_type_id:
            raise ValueError("ASSET_TYPE scope requires asset_type_id")
        return self

    def to_scope(self) -> Scope:
        match self.kind:
            case "ASSET_IDS":
                return AssetIds(frozenset(self.asset_ids))
            case "ASSET_TYPE":
                return AssetType(self.asset_type_id or "")
            case "TAGS":
                return Tags(frozenset(self.tags))
        return AllAssets()


class RuleSpec(BaseModel):
    """Recurrence rule; which fields apply depends on ``mode``."""

    model_config = ConfigDict(extra="forbid")

    mode: RecurrenceMode

    # FIXED_TIME
    start_date: date | None = None
    interval_unit: IntervalUnit | None = None
    interval_value: int = 1
    days_of_week: list[Weekday] | None = None
    day_of_month: int | None = None
    time_of_day: time = time(9, 0)
    timezone: str = "UTC"

    # ROLLING_AFTER_COMPLETION
    unit: IntervalUnit | None = None
    value: int = 1

    # USAGE_BASED
    meter_type: MeterType | None = None
    threshold_value: float | None = None
    meter_source: str | None = None

    # EVENT_DRIVEN
    triggers: list[SchedulingEventType] = Field(default_factory=list)

    @field_validator("days_of_week", mode="before")
    @classmethod
    def parse_weekday_names(cls, v: Any) -> Any:
        """Accept ``MONDAY``-style names as well as 0-6 numbers."""
        if v is None:
            return v
        return [Weekday[d.upper()] if isinstance(d, str) else d for d in v]

    @model_validator(mode="after")
    def check_required(self) -> RuleSpec:
        missing: list[str] = []
        match self.mode:
            case RecurrenceMode.FIXED_TIME:
                if self.start_date is None:
                    missing.append("start_date")
                if self.interval_unit is None:
                    missing.append("interval_unit")
            case RecurrenceMode.ROLLING_AFTER_COMPLETION:
                if self.unit is None:
                    missing.append("unit")
            case RecurrenceMode.USAGE_BASED:
                if self.meter_type is None:
                    missing.append("meter_type")
                if self.threshold_value is None:
                    missing.append("threshold_value")
        if missing:
            raise ValueError(f"{self.mode.value} rule requires: {', '.join(missing)}")
        return self

    def to_rule(self) -> RecurrenceRule:
        match self.mode:
            case RecurrenceMode.FIXED_TIME:
                return FixedTime(
                    start_date=self.start_date,
                    interval_unit=self.interval_unit,
                    interval_value=self.interval_value,
                    days_of_week=frozenset(self.days_of_week) if self.days_of_week is not None else None,
                    day_of_month=self.day_of_month,
                    time_of_day=self.time_of_day,
                    timezone=self.timezone,
                )
            case RecurrenceMode.ROLLING_AFTER_COMPLETION:
                return RollingAfterCompletion(unit=self.unit, value=self.value)
            case RecurrenceMode.USAGE_BASED:
                return UsageBased(
                    meter_type=self.meter_type,
                    threshold_value=self.threshold_value,
                    meter_source=self.meter_source,
                )
        return EventDriven(triggers=frozenset(self.triggers))


class AssignmentSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: AssignmentMode = AssignmentMode.UNASSIGNED
    user_id: str | None = None
    team_id: str | None = None
    team_members: list[str] = Field(default_factory=list)

    def to_policy(self) -> AssignmentPolicy:
        return AssignmentPolicy(
            mode=self.mode,
            user_id=self.user_id,
            team_id=self.team_id,
            team_members=tuple(self.team_members),
        )


class DueSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    due_offset_days: int = 0
    overdue_after_days: int = 0


class ConstraintsSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    avoid_duplicates_window_hours: int = 0
    max_open_per_asset_per_template: int = 1


class NotificationsSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    on_create: bool = False
    on_overdue: bool = False


class ScheduleMetadataSpec(BaseModel):
    """Metadata section of a schedule definition."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    site_id: str = Field(..., min_length=1)
    template_id: str = Field(..., min_length=1)
    inspection_type: InspectionType = InspectionType.CUSTOM
    created_by: str | None = None


class ScheduleSpecSection(BaseModel):
    """The 'spec' section: scope, rule and policies."""

    model_config = ConfigDict(extra="forbid")

    scope: ScopeSpec
    rule: RuleSpec
    start_date: date | None = None
    timezone: str = "UTC"
    generate_ahead_days: int = 7
    include_new_assets: bool = True
    end_date: date | None = None
    max_occurrences: int | None = None
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    assignment: AssignmentSpec = Field(default_factory=AssignmentSpec)
    due: DueSpec = Field(default_factory=DueSpec)
    constraints: ConstraintsSpec = Field(default_factory=ConstraintsSpec)
    notifications: NotificationsSpec = Field(default_factory=NotificationsSpec)

    @model_validator(mode="after")
    def check_start_date(self) -> ScheduleSpecSection:
        if self.rule.mode != RecurrenceMode.FIXED_TIME and self.start_date is None:
            raise ValueError(f"start_date is required for {self.rule.mode.value} schedules")
        return self


class ScheduleSpec(BaseModel):
    """Complete schedule definition document."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["inspection-spine/v1"] = "inspection-spine/v1"
    kind: Literal["Schedule"] = "Schedule"
    metadata: ScheduleMetadataSpec
    spec: ScheduleSpecSection

    def to_create(self) -> ScheduleCreate:
        """Convert the validated document to a ``ScheduleCreate`` DTO."""
        section = self.spec
        return ScheduleCreate(
            name=self.metadata.name,
            site_id=self.metadata.site_id,
            template_id=self.metadata.template_id,
            scope=section.scope.to_scope(),
            rule=section.rule.to_rule(),
            start_date=section.start_date,
            assignment=section.assignment.to_policy(),
            due_rules=DueRules(**section.due.model_dump()),
            constraints=Constraints(**section.constraints.model_dump()),
            notifications=NotificationRules(**section.notifications.model_dump()),
            status=section.status,
            inspection_type=self.metadata.inspection_type,
            timezone=section.timezone,
            generate_ahead_days=section.generate_ahead_days,
            include_new_assets=section.include_new_assets,
            end_date=section.end_date,
            max_occurrences=section.max_occurrences,
            created_by=self.metadata.created_by,
        )

    @classmethod
    def from_yaml(cls, content: str) -> ScheduleSpec:
        """Parse and validate a YAML (or JSON) document.

        Raises:
            ValueError: Unparseable YAML or a document that does not match
                the schema (``pydantic.ValidationError`` is a ``ValueError``).
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: Path | str) -> ScheduleSpec:
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))


__all__ = [
    "ScheduleSpec",
    "ScheduleMetadataSpec",
    "ScheduleSpecSection",
    "ScopeSpec",
    "RuleSpec",
    "AssignmentSpec",
]
