"""
Structured error types for the occurrence generation engine.

Provides a small hierarchy of typed errors with metadata for retry decisions,
error categorization and per-schedule failure isolation.

Instead of generic exceptions that lose context, EngineError and its
subclasses carry:
- **Category:** What kind of failure (scope, external, persistence, config)
- **Retryable:** Whether the next run can be expected to succeed
- **Context:** schedule, asset, event and run identifiers
- **Cause:** Chained underlying exception for root cause analysis

Manifesto:
    - **Failures are per schedule:** One broken schedule never aborts a run
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry ids for logging and for RunResult errors
    - **Rejection is not an error:** ConstraintGuard returns ``Rejected``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       EngineError                                │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ScopeResolutionError   ExternalTimeout   PersistenceConflict    │
        │  (SCOPE, retryable)     (EXTERNAL,        (PERSISTENCE,          │
        │                          retryable)        duplicate path)       │
        │                                                                  │
        │  InvalidRuleConfiguration    ScheduleNotFoundError               │
        │  (CONFIG, fatal per schedule) (NOT_FOUND)                        │
        └─────────────────────────────────────────────────────────────────┘

Tags:
    exceptions, error-handling, retry-logic, inspection-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification, logging and retry decisions."""

    SCOPE = "SCOPE"                # Scope could not be expanded into assets
    EXTERNAL = "EXTERNAL"          # Directory / telemetry / store unavailable
    PERSISTENCE = "PERSISTENCE"    # Store conflicts and write failures
    CONFIG = "CONFIG"              # Invalid rule or schedule configuration
    NOT_FOUND = "NOT_FOUND"        # Referenced record does not exist
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an engine error.

    Only non-None fields are serialized, so a context can be built up
    incrementally as an error travels from the asset level to the run level.

    Examples:
        >>> ctx = ErrorContext(schedule_id="s-1", asset_id="a-9")
        >>> ctx.to_dict()
        {'schedule_id': 's-1', 'asset_id': 'a-9'}
    """

    schedule_id: str | None = None
    asset_id: str | None = None
    event_id: str | None = None
    run_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["schedule_id", "asset_id", "event_id", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EngineError(Exception):
    """
    Base exception for all engine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only pass a message and, where available, context.

    Examples:
        >>> error = EngineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(schedule_id="s-1").context.schedule_id
        's-1'
        >>> EngineError("boom").to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EngineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ScopeResolutionError("lookup failed").with_context(
                schedule_id=schedule.id,
                selector="AssetType",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RECOVERABLE ERRORS (schedule skipped this run, retried next run)
# =============================================================================


class ScopeResolutionError(EngineError):
    """Scope declaration could not be expanded (directory failure, missing snapshot)."""

    default_category = ErrorCategory.SCOPE
    default_retryable = True


class ExternalTimeout(EngineError):
    """An external collaborator or the store did not answer in time."""

    default_category = ErrorCategory.EXTERNAL
    default_retryable = True

    def __init__(self, message: str, *, operation: str | None = None,
                 timeout_seconds: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        if operation is not None:
            self.context.metadata["operation"] = operation
        if timeout_seconds is not None:
            self.context.metadata["timeout_seconds"] = timeout_seconds


class PersistenceConflict(EngineError):
    """
    The store refused an insert because the recurrence key already exists.

    This is the normal idempotency path when two runs race: callers treat it
    as a duplicate and skip silently.
    """

    default_category = ErrorCategory.PERSISTENCE
    default_retryable = False

    def __init__(self, recurrence_key: str, message: str | None = None, **kwargs: Any):
        super().__init__(message or f"Recurrence key already exists: {recurrence_key}", **kwargs)
        self.recurrence_key = recurrence_key


# =============================================================================
# FATAL-PER-SCHEDULE ERRORS
# =============================================================================


class InvalidRuleConfiguration(EngineError):
    """
    A schedule's rule, scope or limits are not usable.

    The schedule is flagged for its owner but not auto-paused; it keeps
    failing (and being reported) until corrected.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False

    def __init__(self, field_name: str, message: str, **kwargs: Any):
        super().__init__(f"{field_name}: {message}", **kwargs)
        self.field_name = field_name


class ScheduleNotFoundError(EngineError):
    """Referenced schedule id does not exist."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule not found: {schedule_id}")
        self.with_context(schedule_id=schedule_id)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable on the next run."""
    if isinstance(error, EngineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of any exception."""
    if isinstance(error, EngineError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.EXTERNAL
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "EngineError",
    "ScopeResolutionError",
    "ExternalTimeout",
    "PersistenceConflict",
    "InvalidRuleConfiguration",
    "ScheduleNotFoundError",
    "is_retryable",
    "categorize_error",
]
