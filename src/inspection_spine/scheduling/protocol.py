"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  Beat-as-poller: backends control WHEN ticks happen, SchedulerService        │
│  controls WHAT happens on each tick (run_all_due + process_events).          │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌──────────────────────────┐        │
│   │  Thread Backend │ ─────────────────► │  SchedulerService        │        │
│   │  (default)      │                    │  - run due schedules     │        │
│   └─────────────────┘                    │  - drain event queue     │        │
│                                          └──────────────────────────┘        │
│                                                                               │
│  Responsibility Split:                                                        │
│  - Backend: timing only (thread sleep, external beat)                         │
│  - Service: generation, event draining, statistics                           │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback at
    the specified interval.

    Example (custom backend):
        >>> class MyBackend:
        ...     name = "custom"
        ...
        ...     def start(self, tick_callback, interval_seconds=60.0):
        ...         my_beat.every(interval_seconds, lambda: asyncio.run(tick_callback()))
        ...
        ...     def stop(self):
        ...         my_beat.stop()
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "custom"}
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        """Start calling ``tick_callback`` every ``interval_seconds``."""
        ...

    def stop(self) -> None:
        """Stop the loop; should wait for the current tick to complete."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


__all__ = ["SchedulerBackend", "BackendHealth", "TickCallback"]
