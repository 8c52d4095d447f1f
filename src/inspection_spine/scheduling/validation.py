"""Schedule configuration checks.

``validate_schedule`` is called when a schedule is created or updated and
again at the start of every generation, so a schedule stored before a rule
became invalid (or edited directly in the database) is flagged by the
runner instead of generating garbage.
"""

from __future__ import annotations

from inspection_spine.core.errors import InvalidRuleConfiguration
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
    IntervalUnit,
    RecurrenceRule,
    RollingAfterCompletion,
    Schedule,
    Scope,
    Tags,
    UsageBased,
)
from inspection_spine.core.timestamps import load_zone


def validate_scope(scope: Scope) -> None:
    match scope:
        case AllAssets():
            return
        case AssetIds(asset_ids=ids) if not ids:
            raise InvalidRuleConfiguration("scope", "asset id list is empty")
        case AssetType(asset_type_id=type_id) if not type_id:
            raise InvalidRuleConfiguration("scope", "asset type id is empty")
        case Tags(tags=tags) if not tags:
            raise InvalidRuleConfiguration("scope", "tag list is empty")
        case AssetIds() | AssetType() | Tags():
            return
    raise InvalidRuleConfiguration("scope", f"unsupported scope {scope!r}")


def validate_rule(rule: RecurrenceRule) -> None:
    match rule:
        case FixedTime():
            if rule.interval_value < 1:
                raise InvalidRuleConfiguration("interval_value", "must be >= 1")
            if rule.days_of_week is not None:
                if rule.interval_unit != IntervalUnit.WEEK:
                    raise InvalidRuleConfiguration("days_of_week", "only allowed with WEEK interval")
                if not rule.days_of_week:
                    raise InvalidRuleConfiguration("days_of_week", "must name at least one weekday")
            if rule.day_of_month is not None:
                if rule.interval_unit != IntervalUnit.MONTH:
                    raise InvalidRuleConfiguration("day_of_month", "only allowed with MONTH interval")
                if not 1 <= rule.day_of_month <= 31:
                    raise InvalidRuleConfiguration("day_of_month", "must be between 1 and 31")
            _validate_zone("timezone", rule.timezone)
        case RollingAfterCompletion():
            if rule.value < 1:
                raise InvalidRuleConfiguration("value", "must be >= 1")
        case UsageBased():
            if not rule.threshold_value > 0:
                raise InvalidRuleConfiguration("threshold_value", "must be > 0")
        case EventDriven():
            if not rule.triggers:
                raise InvalidRuleConfiguration("triggers", "must name at least one event type")
        case _:
            raise InvalidRuleConfiguration("rule", f"unsupported rule {rule!r}")


def validate_policies(
    due_rules: DueRules,
    constraints: Constraints,
    assignment: AssignmentPolicy,
) -> None:
    if due_rules.due_offset_days < 0:
        raise InvalidRuleConfiguration("due_offset_days", "must be >= 0")
    if due_rules.overdue_after_days < 0:
        raise InvalidRuleConfiguration("overdue_after_days", "must be >= 0")
    if constraints.avoid_duplicates_window_hours < 0:
        raise InvalidRuleConfiguration("avoid_duplicates_window_hours", "must be >= 0")
    if constraints.max_open_per_asset_per_template < 1:
        raise InvalidRuleConfiguration("max_open_per_asset_per_template", "must be >= 1")
    if assignment.mode == AssignmentMode.FIXED_USER and not assignment.user_id:
        raise InvalidRuleConfiguration("assignment", "FIXED_USER requires user_id")
    if assignment.mode == AssignmentMode.ROTATE_TEAM and not assignment.team_members:
        raise InvalidRuleConfiguration("assignment", "ROTATE_TEAM requires team_members")


def validate_schedule(schedule: Schedule) -> None:
    """Raise :class:`InvalidRuleConfiguration` for the first problem found."""
    validate_scope(schedule.scope)
    validate_rule(schedule.rule)
    validate_policies(schedule.due_rules, schedule.constraints, schedule.assignment)
    if schedule.generate_ahead_days < 0:
        raise InvalidRuleConfiguration("generate_ahead_days", "must be >= 0")
    if schedule.end_date is not None and schedule.end_date < schedule.start_date:
        raise InvalidRuleConfiguration("end_date", "must not be before start_date")
    if schedule.max_occurrences is not None and schedule.max_occurrences < 1:
        raise InvalidRuleConfiguration("max_occurrences", "must be >= 1")
    _validate_zone("timezone", schedule.timezone)


def _validate_zone(field_name: str, name: str) -> None:
    try:
        load_zone(name)
    except ValueError as exc:
        raise InvalidRuleConfiguration(field_name, str(exc), cause=exc) from exc


__all__ = ["validate_schedule", "validate_scope", "validate_rule", "validate_policies"]
