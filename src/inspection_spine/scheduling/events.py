"""Scheduling-event processing.

``EventProcessor.drain`` turns queued scheduling events into occurrences
for event-driven schedules:

    for event in unprocessed events (oldest first):
        matches = ACTIVE EventDriven schedules
                  with event.type ∈ triggers
                  and (event has no site or schedule.site_id == event.site_id)
        for schedule in matches:
            generator.generate_for_event(schedule, event, now)
        mark processed unless a schedule failed recoverably

An event that matches nothing is still marked processed.  An event whose
processing failed for any schedule stays queued and is retried on the next
drain; schedules that already generated for it reject the retry by
recurrence key.  A schedule whose definition is invalid is flagged and does
not hold the event back, since retrying cannot succeed until it is edited.
A failure to record the outcome (marking the event processed, flagging a
schedule) is logged and leaves the event queued; the drain carries on.
"""

from __future__ import annotations

from datetime import datetime

from inspection_spine.core.errors import InvalidRuleConfiguration, is_retryable
from inspection_spine.core.logging import LogContext, get_logger
from inspection_spine.core.models.scheduling import (
    EventDriven,
    RecurrenceMode,
    RunResult,
    RunStatus,
    Schedule,
    SchedulingEvent,
)
from inspection_spine.core.timestamps import ensure_utc
from inspection_spine.scheduling.generator import OccurrenceGenerator
from inspection_spine.scheduling.repository import EventRepository, ScheduleRepository

logger = get_logger(__name__)


def matches_event(schedule: Schedule, event: SchedulingEvent) -> bool:
    """Whether ``event`` is routed to ``schedule`` (scope is checked later)."""
    if not schedule.is_active or not isinstance(schedule.rule, EventDriven):
        return False
    if event.type not in schedule.rule.triggers:
        return False
    return event.site_id is None or event.site_id == schedule.site_id


class EventProcessor:
    """Drains the scheduling-event queue into event-driven schedules."""

    def __init__(
        self,
        events: EventRepository,
        schedules: ScheduleRepository,
        generator: OccurrenceGenerator,
    ) -> None:
        self.events = events
        self.schedules = schedules
        self.generator = generator

    def drain(self, now: datetime, *, limit: int | None = None) -> list[RunResult]:
        """Process pending events. Returns one result per (event, matched schedule)."""
        now = ensure_utc(now)
        pending = self.events.list_unprocessed(limit=limit)
        if not pending:
            return []

        schedules = self.schedules.list_active([RecurrenceMode.EVENT_DRIVEN])
        results: list[RunResult] = []
        processed = 0

        for event in pending:
            with LogContext(event_id=event.id):
                event_results, retry = self._process(event, schedules, now)
                results.extend(event_results)
                if retry:
                    logger.warning("event.retry_pending", event_type=event.type.value)
                    continue
                try:
                    marked = self.events.mark_processed(event.id, now)
                except Exception as exc:
                    logger.warning(
                        "event.mark_failed",
                        event_type=event.type.value,
                        error_type=type(exc).__name__,
                        error=str(exc),
                        retryable=is_retryable(exc),
                    )
                    continue
                if marked:
                    processed += 1
                    logger.info(
                        "event.processed",
                        event_type=event.type.value,
                        matched=len(event_results),
                        generated=sum(r.generated_count for r in event_results),
                    )

        logger.info("events.drained", pending=len(pending), processed=processed)
        return results

    def _process(
        self,
        event: SchedulingEvent,
        schedules: list[Schedule],
        now: datetime,
    ) -> tuple[list[RunResult], bool]:
        results: list[RunResult] = []
        retry = False
        for schedule in schedules:
            if not matches_event(schedule, event):
                continue
            try:
                result = self.generator.generate_for_event(schedule, event, now)
            except InvalidRuleConfiguration as exc:
                result = RunResult(
                    schedule_id=schedule.id,
                    event_id=event.id,
                    status=RunStatus.FAILED,
                    error=exc.message,
                    started_at=now,
                    finished_at=now,
                )
                try:
                    self.schedules.flag_config_error(schedule.id, exc.message, now)
                except Exception as flag_exc:
                    logger.warning(
                        "event.flag_failed",
                        schedule_id=schedule.id,
                        error_type=type(flag_exc).__name__,
                        error=str(flag_exc),
                        retryable=is_retryable(flag_exc),
                    )
                    retry = True
            except Exception as exc:
                logger.warning(
                    "event.schedule_failed",
                    schedule_id=schedule.id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    retryable=is_retryable(exc),
                )
                result = RunResult(
                    schedule_id=schedule.id,
                    event_id=event.id,
                    status=RunStatus.FAILED,
                    error=str(exc),
                    started_at=now,
                    finished_at=now,
                )
                retry = True
            else:
                if result.errors:
                    retry = True
            results.append(result)
        return results, retry


__all__ = ["EventProcessor", "matches_event"]
