"""Tests for inspection_spine.core.errors."""

import pytest

from inspection_spine.core.errors import (
    EngineError,
    ErrorCategory,
    ErrorContext,
    ExternalTimeout,
    InvalidRuleConfiguration,
    PersistenceConflict,
    ScheduleNotFoundError,
    ScopeResolutionError,
    categorize_error,
    is_retryable,
)


class TestErrorContext:
    def test_empty_context(self):
        assert ErrorContext().to_dict() == {}

    def test_only_set_fields_serialized(self):
        ctx = ErrorContext(schedule_id="s-1", run_id="r-1", metadata={"selector": "TAGS"})
        assert ctx.to_dict() == {"schedule_id": "s-1", "run_id": "r-1", "selector": "TAGS"}


class TestEngineError:
    def test_defaults(self):
        error = EngineError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.cause is None

    def test_with_context_sets_known_and_extra_keys(self):
        error = ScopeResolutionError("lookup failed").with_context(schedule_id="s-1", selector="AssetType")
        assert error.context.schedule_id == "s-1"
        assert error.context.metadata == {"selector": "AssetType"}

    def test_cause_is_chained(self):
        cause = ConnectionError("refused")
        error = ScopeResolutionError("lookup failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "refused"

    def test_to_dict(self):
        data = ScopeResolutionError("lookup failed").with_context(asset_id="a-1").to_dict()
        assert data == {
            "error_type": "ScopeResolutionError",
            "message": "lookup failed",
            "category": "SCOPE",
            "retryable": True,
            "context": {"asset_id": "a-1"},
        }

    def test_overrides(self):
        error = ScopeResolutionError("snapshot missing", retryable=False, category=ErrorCategory.CONFIG)
        assert error.retryable is False
        assert error.category == ErrorCategory.CONFIG


class TestSubclasses:
    def test_external_timeout(self):
        error = ExternalTimeout("too slow", operation="asset_directory.lookup_assets", timeout_seconds=2.0)
        assert error.retryable is True
        assert error.category == ErrorCategory.EXTERNAL
        assert error.operation == "asset_directory.lookup_assets"
        assert error.context.metadata == {"operation": "asset_directory.lookup_assets", "timeout_seconds": 2.0}

    def test_persistence_conflict(self):
        error = PersistenceConflict("abc123")
        assert error.recurrence_key == "abc123"
        assert "abc123" in str(error)
        assert error.category == ErrorCategory.PERSISTENCE

    def test_invalid_rule_configuration(self):
        error = InvalidRuleConfiguration("interval_value", "must be >= 1")
        assert str(error) == "interval_value: must be >= 1"
        assert error.field_name == "interval_value"
        assert error.retryable is False
        assert error.category == ErrorCategory.CONFIG

    def test_schedule_not_found(self):
        error = ScheduleNotFoundError("SCH-000042")
        assert "SCH-000042" in str(error)
        assert error.context.schedule_id == "SCH-000042"
        assert error.category == ErrorCategory.NOT_FOUND


class TestHelpers:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ScopeResolutionError("x"), True),
            (InvalidRuleConfiguration("f", "x"), False),
            (ConnectionError("x"), True),
            (TimeoutError("x"), True),
            (ValueError("x"), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ExternalTimeout("x"), ErrorCategory.EXTERNAL),
            (TimeoutError("x"), ErrorCategory.EXTERNAL),
            (ValueError("x"), ErrorCategory.CONFIG),
            (KeyError("x"), ErrorCategory.INTERNAL),
        ],
    )
    def test_categorize_error(self, error, expected):
        assert categorize_error(error) == expected
