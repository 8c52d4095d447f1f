"""Notification signals.

The engine only raises signals; delivery belongs to an external
dispatcher.  ``send_signal`` is fire-and-forget: a failing dispatcher is
logged and never fails generation or the overdue sweep.
"""

from __future__ import annotations

import threading

from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import NotificationSignal
from inspection_spine.core.protocols import NotificationDispatcher

logger = get_logger(__name__)


def send_signal(dispatcher: NotificationDispatcher | None, signal: NotificationSignal) -> bool:
    """Hand ``signal`` to ``dispatcher``. Returns False if it raised."""
    if dispatcher is None:
        return False
    try:
        dispatcher.notify(signal)
    except Exception as exc:
        logger.warning(
            "notification.dispatch_failed",
            kind=signal.kind.value,
            schedule_id=signal.schedule_id,
            occurrence_id=signal.occurrence_id,
            error=str(exc),
        )
        return False
    return True


class LoggingDispatcher:
    """Writes each signal to the structured log."""

    def notify(self, signal: NotificationSignal) -> None:
        logger.info(
            "notification.signal",
            kind=signal.kind.value,
            schedule_id=signal.schedule_id,
            occurrence_id=signal.occurrence_id,
            asset_id=signal.asset_id,
            due_at=signal.due_at.isoformat(),
        )


class RecordingDispatcher:
    """Keeps every signal in memory, in arrival order."""

    def __init__(self) -> None:
        self.signals: list[NotificationSignal] = []
        self._lock = threading.Lock()

    def notify(self, signal: NotificationSignal) -> None:
        with self._lock:
            self.signals.append(signal)


__all__ = ["send_signal", "LoggingDispatcher", "RecordingDispatcher"]
