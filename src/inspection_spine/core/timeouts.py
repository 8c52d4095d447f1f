"""Bounded waits on external collaborators.

Directory lookups and meter reads are blocking calls into systems the engine
does not own.  ``run_with_timeout`` submits the call to a small shared
thread pool and waits at most ``timeout_seconds``; a call that does not
finish in time raises :class:`ExternalTimeout` and is abandoned (its
result, if it ever arrives, is discarded).
"""

from __future__ import annotations

import atexit
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

from inspection_spine.core.errors import ExternalTimeout

T = TypeVar("T")

_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="insp-external")
atexit.register(_EXECUTOR.shutdown, wait=False)


def run_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout_seconds: float | None,
    operation: str,
    **kwargs: Any,
) -> T:
    """Call ``fn(*args, **kwargs)`` with an upper bound on the wait.

    ``timeout_seconds=None`` calls ``fn`` inline without a bound.

    Raises:
        ExternalTimeout: If the call did not finish in time.
    """
    if timeout_seconds is None:
        return fn(*args, **kwargs)
    future = _EXECUTOR.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeout as exc:
        future.cancel()
        raise ExternalTimeout(
            f"{operation} did not complete within {timeout_seconds}s",
            operation=operation,
            timeout_seconds=timeout_seconds,
        ) from exc


__all__ = ["run_with_timeout"]
