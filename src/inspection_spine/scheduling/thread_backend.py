"""Threading-based scheduler backend (the default)."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime
from typing import Any

from inspection_spine.core.logging import get_logger
from inspection_spine.core.timestamps import utc_now
from inspection_spine.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Runs the tick callback on a daemon thread.

    Each tick runs the async callback with ``asyncio.run`` so the service's
    tick stays an ordinary coroutine regardless of backend.

    Args:
        run_immediately: Tick once as soon as the loop starts instead of
            waiting a full interval first.
        join_timeout: How long ``stop`` waits for an in-flight tick.
    """

    name = "thread"

    def __init__(self, *, run_immediately: bool = True, join_timeout: float = 30.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0
        self._started = False
        self._lock = threading.Lock()
        self._run_immediately = run_immediately
        self._join_timeout = join_timeout

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self._started:
            logger.warning("scheduler.backend_already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _tick() -> None:
            with self._lock:
                self._tick_count += 1
                self._last_tick = utc_now()
            try:
                asyncio.run(tick_callback())
            except Exception as e:
                logger.exception("scheduler.tick_failed", error=str(e))

        def _loop() -> None:
            logger.info("scheduler.backend_started", backend=self.name, interval_seconds=interval_seconds)
            if self._run_immediately and not self._stop_event.is_set():
                _tick()
            while not self._stop_event.wait(interval_seconds):
                _tick()
            logger.info("scheduler.backend_stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="inspection-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the loop, waiting up to ``join_timeout`` for the current tick."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("scheduler.backend_stop_timeout", backend=self.name)

        self._started = False

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop thread exits. Returns True if it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick


__all__ = ["ThreadSchedulerBackend"]
