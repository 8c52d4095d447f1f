"""Scheduler service - the long-running driver of the runner.

Manifesto:
    The runner knows how to reconcile schedules and events into
    occurrences; something has to call it on a cadence.  The service
    combines a backend (timing) with a runner (work) and keeps statistics
    and a health view.  The beat-as-poller pattern keeps timing out of the
    generation logic, so tests drive ``_tick`` directly.

Tags:
    inspection-spine, scheduling, orchestrator, beat-as-poller, service

Doc-Types:
    api-reference, architecture-diagram

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                           │
│                                                                               │
│   ┌─────────────────┐  tick()  ┌─────────────────────────────────────────┐   │
│   │  Backend        │ ───────► │  _tick()                                │   │
│   │  (timing)       │          │   1. runner.run_all_due(now)            │   │
│   └─────────────────┘          │   2. runner.process_events(now)         │   │
│                                │   3. update SchedulerStats              │   │
│                                └─────────────────────────────────────────┘   │
│                                                                               │
│   Public API:                                                                 │
│   ├── start() / stop()       stop() also cancels an in-flight run between    │
│   │                          schedules                                        │
│   ├── trigger(schedule_id)   manual run-now                                  │
│   ├── pause(id) / resume(id)                                                  │
│   └── health() / get_stats()                                                  │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import RunResult, RunStatus, ScheduleStatus
from inspection_spine.core.timestamps import utc_now
from inspection_spine.scheduling.protocol import SchedulerBackend
from inspection_spine.scheduling.runner import SchedulerRunner

logger = get_logger(__name__)


@dataclass
class SchedulerStats:
    """Statistics for scheduler service."""

    tick_count: int = 0
    schedules_processed: int = 0
    schedules_failed: int = 0
    occurrences_generated: int = 0
    candidates_rejected: int = 0
    event_results: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def record(self, results: list[RunResult]) -> None:
        for result in results:
            self.schedules_processed += 1
            if result.status == RunStatus.FAILED:
                self.schedules_failed += 1
            self.occurrences_generated += result.generated_count
            self.candidates_rejected += result.rejected_count


@dataclass
class SchedulerHealth:
    """Health status for scheduler service."""

    healthy: bool
    backend: dict[str, Any]
    runner_state: str
    schedules_active: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "runner_state": self.runner_state,
            "schedules_active": self.schedules_active,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": {
                "tick_count": self.stats.tick_count,
                "schedules_processed": self.stats.schedules_processed,
                "schedules_failed": self.stats.schedules_failed,
                "occurrences_generated": self.stats.occurrences_generated,
                "candidates_rejected": self.stats.candidates_rejected,
                "event_results": self.stats.event_results,
                "last_error": self.stats.last_error,
            },
        }


class SchedulerService:
    """Beat-as-poller driver for :class:`SchedulerRunner`.

    Example:
        >>> runner = create_runner(conn, directory)
        >>> service = SchedulerService(ThreadSchedulerBackend(), runner, interval_seconds=60)
        >>> service.start()
        >>> # Later...
        >>> service.stop()
    """

    def __init__(
        self,
        backend: SchedulerBackend,
        runner: SchedulerRunner,
        interval_seconds: float = 60.0,
    ) -> None:
        self.backend = backend
        self.runner = runner
        self.interval = interval_seconds
        self._stats = SchedulerStats()
        self._running = False
        self._cancel = threading.Event()

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("scheduler.already_running")
            return
        logger.info("scheduler.starting", backend=self.backend.name, interval_seconds=self.interval)
        self._cancel.clear()
        self.backend.start(self._tick, self.interval)
        self._running = True

    def stop(self) -> None:
        """Stop ticking; a run in progress stops after its current schedule."""
        if not self._running:
            return
        logger.info("scheduler.stopping")
        self._cancel.set()
        self.backend.stop()
        self._running = False
        logger.info("scheduler.stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick Processing ===

    async def _tick(self) -> None:
        """One reconcile pass: due schedules, then the event queue."""
        self._stats.tick_count += 1
        now = utc_now()
        self._stats.last_tick = now
        try:
            results = self.runner.run_all_due(now, cancel_event=self._cancel)
            self._stats.record(results)
            if self._cancel.is_set():
                return
            event_results = self.runner.process_events(now)
            self._stats.event_results += len(event_results)
            self._stats.occurrences_generated += sum(r.generated_count for r in event_results)
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("scheduler.tick_failed", error=str(e))

    # === Manual Operations ===

    def trigger(self, schedule_id: str) -> RunResult:
        """Run one schedule now (see :meth:`SchedulerRunner.run_schedule`)."""
        result = self.runner.run_schedule(schedule_id)
        self._stats.record([result])
        return result

    def pause(self, schedule_id: str) -> bool:
        """Pause a schedule. Returns False if not found."""
        return self._set_status(schedule_id, ScheduleStatus.PAUSED)

    def resume(self, schedule_id: str) -> bool:
        """Resume a paused schedule. Returns False if not found."""
        return self._set_status(schedule_id, ScheduleStatus.ACTIVE)

    def _set_status(self, schedule_id: str, status: ScheduleStatus) -> bool:
        schedule = self.runner.schedules.resolve(schedule_id)
        if schedule is None:
            return False
        self.runner.schedules.set_status(schedule.id, status)
        return True

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        return SchedulerHealth(
            healthy=self._running and bool(backend_health.get("healthy", False)),
            backend=backend_health,
            runner_state=self.runner.state.value,
            schedules_active=len(self.runner.schedules.list_active()),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


__all__ = ["SchedulerService", "SchedulerStats", "SchedulerHealth"]
