"""
Scheduler runner: the idempotent reconcile loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER RUNNER                                                            │
│                                                                               │
│   IDLE ──► SELECTING ──► GENERATING ──► FINALIZING ──► IDLE                  │
│                │              │               │                               │
│                │              │               ├── mark_run(last_run_at,       │
│                │              │               │   status, next_run_at)        │
│                │              │               │   (failure recorded, loop     │
│                │              │               │    carries on)                │
│                │              │               └── overdue sweep               │
│                │              └── OccurrenceGenerator.generate(schedule, now, │
│                │                    window_start=booked next_run_at)          │
│                └── ScheduleRepository.get_due(now)                            │
│                                                                               │
│  Public API:                                                                  │
│  ├── run_all_due(now)                  due periodic schedules                 │
│  ├── run_schedule(schedule_id, now)    manual run-now, bypasses next_run_at   │
│  ├── process_events(now)               EventProcessor.drain                   │
│  └── preview_next_occurrences(id, horizon, now)   read-only                   │
│                                                                               │
│  Failure isolation:                                                           │
│  - InvalidRuleConfiguration → config_error flagged, status unchanged         │
│  - scope / timeout / other  → FAILED, next_run_at kept so the next run       │
│                                retries the schedule                          │
│  - bookkeeping failure      → recorded on the RunResult as FAILED; the       │
│                                next schedule still runs                      │
│  - ended (end_date, cap)    → SKIPPED, next_run_at pushed one poll out       │
│  - cancellation             → checked between schedules; the rest stay       │
│                                untouched and are picked up next run          │
└──────────────────────────────────────────────────────────────────────────────┘

No state survives between runs except what is in the store: schedules,
events and occurrences are re-read on every call, and repeated runs are
harmless because every occurrence carries a unique recurrence key.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from inspection_spine.core.errors import (
    InvalidRuleConfiguration,
    ScheduleNotFoundError,
    categorize_error,
    is_retryable,
)
from inspection_spine.core.logging import LogContext, get_logger
from inspection_spine.core.models.scheduling import (
    EventDriven,
    FixedTime,
    NotificationKind,
    NotificationSignal,
    RollingAfterCompletion,
    RunResult,
    RunStatus,
    Schedule,
)
from inspection_spine.core.protocols import NotificationDispatcher
from inspection_spine.core.timestamps import ensure_utc, generate_ulid, utc_now
from inspection_spine.scheduling.events import EventProcessor
from inspection_spine.scheduling.generator import OccurrenceGenerator
from inspection_spine.scheduling.notifications import send_signal
from inspection_spine.scheduling.recurrence import (
    fixed_instants,
    next_fixed_instant,
    rolling_next_due,
    until_end_date,
)
from inspection_spine.scheduling.repository import (
    EventRepository,
    OccurrenceRepository,
    ScheduleRepository,
)
from inspection_spine.scheduling.validation import validate_schedule

logger = get_logger(__name__)


class RunnerState(str, Enum):
    IDLE = "IDLE"
    SELECTING = "SELECTING"
    GENERATING = "GENERATING"
    FINALIZING = "FINALIZING"


@dataclass(frozen=True, slots=True)
class PreviewEntry:
    """One predicted occurrence; ``asset_id`` is None for calendar rules."""

    scheduled_for: datetime
    asset_id: str | None = None


class SchedulerRunner:
    """Drives generation for all schedules against one store.

    Args:
        schedules: Schedule store.
        events: Scheduling-event store.
        occurrences: Occurrence store.
        generator: Occurrence generator wired to the same store.
        dispatcher: Receives overdue signals.
        usage_poll_minutes: ``next_run_at`` spacing for rolling and usage schedules.
        cancel_event: Default cancellation flag checked between schedules.
        clock: Source of ``now`` when a call does not pass one.
    """

    def __init__(
        self,
        schedules: ScheduleRepository,
        events: EventRepository,
        occurrences: OccurrenceRepository,
        generator: OccurrenceGenerator,
        *,
        dispatcher: NotificationDispatcher | None = None,
        usage_poll_minutes: int = 60,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.schedules = schedules
        self.events = events
        self.occurrences = occurrences
        self.generator = generator
        self.event_processor = EventProcessor(events, schedules, generator)
        self.dispatcher = dispatcher
        self.usage_poll_interval = timedelta(minutes=usage_poll_minutes)
        self.cancel_event = cancel_event
        self.clock = clock
        self._state = RunnerState.IDLE
        self._run_lock = threading.Lock()

    @property
    def state(self) -> RunnerState:
        return self._state

    # === Periodic runs ===

    def run_all_due(
        self,
        now: datetime | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> list[RunResult]:
        """Generate for every due periodic schedule, then sweep overdue occurrences."""
        now = ensure_utc(now or self.clock())
        cancel = cancel_event or self.cancel_event
        run_id = generate_ulid()

        with self._run_lock, LogContext(run_id=run_id):
            results: list[RunResult] = []
            try:
                self._state = RunnerState.SELECTING
                due = self.schedules.get_due(now)
                logger.info("run.started", due=len(due), now=now.isoformat())

                for schedule in due:
                    if cancel is not None and cancel.is_set():
                        logger.warning("run.cancelled", remaining=len(due) - len(results))
                        break
                    results.append(self._run_one(schedule, now))

                self._state = RunnerState.FINALIZING
                flagged = 0
                try:
                    flagged = self.sweep_overdue(now)
                except Exception as exc:
                    logger.warning(
                        "run.sweep_failed",
                        error_type=type(exc).__name__,
                        error=str(exc),
                        retryable=is_retryable(exc),
                    )
                logger.info(
                    "run.completed",
                    schedules=len(results),
                    generated=sum(r.generated_count for r in results),
                    rejected=sum(r.rejected_count for r in results),
                    failed=sum(1 for r in results if r.status == RunStatus.FAILED),
                    overdue_flagged=flagged,
                )
            finally:
                self._state = RunnerState.IDLE
            return results

    def run_schedule(self, schedule_id: str, now: datetime | None = None) -> RunResult:
        """Run one schedule now, regardless of ``next_run_at``.

        Accepts a schedule id or its ``SCH-`` code.

        Raises:
            ScheduleNotFoundError: Unknown schedule.
        """
        now = ensure_utc(now or self.clock())
        schedule = self.schedules.resolve(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        if not schedule.is_active or isinstance(schedule.rule, EventDriven):
            logger.info(
                "schedule.run_skipped",
                schedule_id=schedule.id,
                status=schedule.status.value,
                mode=schedule.mode.value,
            )
            return RunResult(
                schedule_id=schedule.id,
                status=RunStatus.SKIPPED,
                started_at=now,
                finished_at=now,
            )

        with self._run_lock, LogContext(run_id=generate_ulid()):
            try:
                return self._run_one(schedule, now)
            finally:
                self._state = RunnerState.IDLE

    def process_events(self, now: datetime | None = None) -> list[RunResult]:
        """Drain the scheduling-event queue."""
        now = ensure_utc(now or self.clock())
        with LogContext(run_id=generate_ulid()):
            return self.event_processor.drain(now)

    # === Preview ===

    def preview_next_occurrences(
        self,
        schedule_id: str,
        horizon: timedelta,
        now: datetime | None = None,
    ) -> list[PreviewEntry]:
        """Predict occurrences within ``[now, now + horizon]`` without writing anything.

        Calendar rules list their instants; rolling rules list each in-scope
        asset's next due instant (overdue ones included); usage and event
        rules are not time-predictable and return an empty list.

        Raises:
            ScheduleNotFoundError: Unknown schedule.
            InvalidRuleConfiguration: The schedule definition is not usable.
        """
        now = ensure_utc(now or self.clock())
        schedule = self.schedules.resolve(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        validate_schedule(schedule)
        end = now + horizon

        match schedule.rule:
            case FixedTime():
                instants = until_end_date(
                    fixed_instants(schedule.rule, now, end), schedule.end_date, schedule.zone_name
                )
                if schedule.max_occurrences is not None:
                    instants = instants[: self.generator.remaining_budget(schedule)]
                return [PreviewEntry(t) for t in instants]
            case RollingAfterCompletion():
                assets = self.generator.resolver.resolve(
                    schedule.scope,
                    schedule.site_id,
                    include_new_assets=schedule.include_new_assets,
                    snapshot_at=now,
                )
                entries = []
                for asset_id in sorted(assets):
                    due = rolling_next_due(
                        schedule.rule,
                        last_completed_at=self.generator.last_closed_at(schedule.id, asset_id),
                        anchor_date=schedule.start_date,
                        timezone=schedule.zone_name,
                    )
                    if due is None or due > end:
                        continue
                    if until_end_date([due], schedule.end_date, schedule.zone_name):
                        entries.append(PreviewEntry(due, asset_id))
                return sorted(entries, key=lambda e: (e.scheduled_for, e.asset_id or ""))
        return []

    # === Overdue sweep ===

    def sweep_overdue(self, now: datetime | None = None) -> int:
        """Flag open occurrences past ``due_at + overdue_after_days``. Returns the count."""
        now = ensure_utc(now or self.clock())
        cache: dict[str, Schedule | None] = {}
        flagged = 0
        for occurrence in self.occurrences.list_overdue_candidates(now):
            if occurrence.schedule_id not in cache:
                cache[occurrence.schedule_id] = self.schedules.get(occurrence.schedule_id)
            schedule = cache[occurrence.schedule_id]
            if schedule is None:
                continue
            deadline = occurrence.due_at + timedelta(days=schedule.due_rules.overdue_after_days)
            if deadline >= now:
                continue
            if not self.occurrences.flag_overdue(occurrence.id, now):
                continue
            flagged += 1
            logger.info(
                "occurrence.overdue",
                schedule_id=schedule.id,
                occurrence_id=occurrence.id,
                asset_id=occurrence.asset_id,
            )
            if schedule.notifications.on_overdue:
                send_signal(
                    self.dispatcher,
                    NotificationSignal(
                        kind=NotificationKind.OVERDUE,
                        schedule_id=schedule.id,
                        occurrence_id=occurrence.id,
                        asset_id=occurrence.asset_id,
                        due_at=occurrence.due_at,
                    ),
                )
        return flagged

    # === Helpers ===

    def next_run_after(self, schedule: Schedule, now: datetime) -> datetime | None:
        """When a schedule that just completed should run again.

        A fixed-time run covered instants up to ``now + generate_ahead_days``;
        the next run is due when the first instant beyond that comes into the
        window.  Late ticks are caught up through ``window_start``.
        """
        if isinstance(schedule.rule, FixedTime):
            ahead = timedelta(days=schedule.generate_ahead_days)
            upcoming = next_fixed_instant(schedule.rule, now + ahead)
            if upcoming is not None:
                return upcoming - ahead
        return now + self.usage_poll_interval

    def _run_one(self, schedule: Schedule, now: datetime) -> RunResult:
        with LogContext(schedule_id=schedule.id):
            self._state = RunnerState.GENERATING
            try:
                result = self.generator.generate(schedule, now, window_start=self._window_start(schedule, now))
            except InvalidRuleConfiguration as exc:
                self._state = RunnerState.FINALIZING
                result = RunResult(
                    schedule_id=schedule.id,
                    status=RunStatus.FAILED,
                    error=exc.message,
                    started_at=now,
                    finished_at=now,
                )
                try:
                    self.schedules.flag_config_error(schedule.id, exc.message, now)
                except Exception as flag_exc:
                    self._record_finalize_failure(result, flag_exc)
                return result
            except Exception as exc:
                logger.warning(
                    "schedule.run_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                    category=categorize_error(exc).value,
                    retryable=is_retryable(exc),
                )
                result = RunResult(
                    schedule_id=schedule.id,
                    status=RunStatus.FAILED,
                    error=str(exc),
                    started_at=now,
                    finished_at=now,
                )

            self._state = RunnerState.FINALIZING
            try:
                self._finalize(schedule, result, now)
            except Exception as exc:
                self._record_finalize_failure(result, exc)
            return result

    def _window_start(self, schedule: Schedule, now: datetime) -> datetime:
        if schedule.next_run_at is None:
            return now
        return min(now, ensure_utc(schedule.next_run_at))

    def _record_finalize_failure(self, result: RunResult, exc: Exception) -> None:
        logger.warning(
            "schedule.finalize_failed",
            error_type=type(exc).__name__,
            error=str(exc),
            category=categorize_error(exc).value,
            retryable=is_retryable(exc),
        )
        result.status = RunStatus.FAILED
        result.error = f"finalize failed: {exc}"

    def _finalize(self, schedule: Schedule, result: RunResult, now: datetime) -> None:
        if result.status == RunStatus.COMPLETED:
            next_run_at = self.next_run_after(schedule, now)
        elif result.status == RunStatus.SKIPPED:
            next_run_at = now + self.usage_poll_interval
        else:
            next_run_at = schedule.next_run_at

        error = result.error
        if error is None and result.errors:
            error = "; ".join(f"{asset_id}: {reason}" for asset_id, reason in result.errors)

        self.schedules.mark_run(
            schedule.id,
            last_run_at=now,
            status=result.status,
            next_run_at=next_run_at,
            error=error,
        )
        logger.info(
            "schedule.run_completed",
            status=result.status.value,
            generated=result.generated_count,
            rejected=result.rejected_count,
            errors=len(result.errors),
            next_run_at=next_run_at.isoformat() if next_run_at else None,
        )


__all__ = ["SchedulerRunner", "RunnerState", "PreviewEntry"]
