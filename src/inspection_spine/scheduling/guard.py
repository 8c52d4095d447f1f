"""
Constraint guard: deduplication, recurrence-key uniqueness and open caps.

Every candidate passes through ``admit`` (cheap read-only checks) and, if
admitted, through ``commit`` (the same checks again plus the atomic
insert-if-absent, serialized under one lock).  The outcome is a value, not
an exception:

    ┌─────────────────────────────────────────────────────────────┐
    │                   Decision                                   │
    ├──────────────────────────────┬──────────────────────────────┤
    │  Admitted(recurrence_key,    │  Rejected(reason,            │
    │           occurrence)        │           recurrence_key)    │
    ├──────────────────────────────┴──────────────────────────────┤
    │  reasons: DUPLICATE_KEY, DUPLICATE_WINDOW,                   │
    │           MAX_OPEN_REACHED, PERSISTENCE_CONFLICT             │
    └─────────────────────────────────────────────────────────────┘

Manifesto:
    Rejection is the normal, silent outcome of re-running a schedule. It
    never fails a run and never raises.  Uniqueness across processes comes
    from the store's UNIQUE ``recurrence_key`` index, not from locks held
    between runs; the in-process lock only keeps the re-check and the insert
    of one process together.

Examples:
    >>> guard = ConstraintGuard(OccurrenceRepository(conn))
    >>> match guard.admit(candidate, schedule.constraints):
    ...     case Admitted(key):
    ...         ...
    ...     case Rejected(reason):
    ...         print(reason)

Tags:
    deduplication, idempotency, recurrence-key, constraints, inspection-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeAlias

from inspection_spine.core.errors import PersistenceConflict
from inspection_spine.core.hashing import compute_recurrence_key
from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import (
    Candidate,
    Constraints,
    GeneratedOccurrence,
    RejectionReason,
)
from inspection_spine.core.timestamps import ensure_utc
from inspection_spine.scheduling.repository import OccurrenceRepository

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class Admitted:
    recurrence_key: str
    occurrence: GeneratedOccurrence | None = None

    def is_admitted(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: RejectionReason
    recurrence_key: str

    def is_admitted(self) -> bool:
        return False


Decision: TypeAlias = Admitted | Rejected


def date_bucket(instant: datetime, window_hours: int) -> datetime:
    """Floor ``instant`` to the start of its epoch-aligned UTC window.

    A window of 0 leaves the instant unchanged (exact-instant dedup).
    """
    instant = ensure_utc(instant)
    if window_hours <= 0:
        return instant
    width = int(window_hours) * 3600
    seconds = int((instant - _EPOCH).total_seconds())
    return _EPOCH + timedelta(seconds=seconds - seconds % width)


class ConstraintGuard:
    """Admit-or-reject decisions plus the serialized persist step.

    Args:
        occurrences: Store of generated occurrences.
        lock: Lock shared by everything persisting into the same store from
            this process. A private lock is created when omitted.
    """

    def __init__(self, occurrences: OccurrenceRepository, lock: threading.Lock | None = None) -> None:
        self.occurrences = occurrences
        self._lock = lock or threading.Lock()

    def recurrence_key(self, candidate: Candidate, window_hours: int) -> str:
        return compute_recurrence_key(
            candidate.schedule_id,
            candidate.asset_id,
            candidate.template_id,
            date_bucket(candidate.scheduled_for, window_hours),
        )

    def admit(self, candidate: Candidate, constraints: Constraints) -> Decision:
        """Read-only checks for one candidate."""
        key = self.recurrence_key(candidate, constraints.avoid_duplicates_window_hours)
        return self._check(
            key,
            candidate.schedule_id,
            candidate.asset_id,
            candidate.template_id,
            candidate.scheduled_for,
            constraints,
        )

    def commit(self, occurrence: GeneratedOccurrence, constraints: Constraints) -> Decision:
        """Re-check and insert ``occurrence`` atomically with respect to this process.

        A concurrent writer that got there first surfaces as
        ``Rejected(PERSISTENCE_CONFLICT)``.
        """
        with self._lock:
            decision = self._check(
                occurrence.recurrence_key,
                occurrence.schedule_id,
                occurrence.asset_id,
                occurrence.template_id,
                occurrence.scheduled_for,
                constraints,
            )
            if isinstance(decision, Rejected):
                return decision
            try:
                self._insert(occurrence)
            except PersistenceConflict as exc:
                logger.debug(
                    "guard.persistence_conflict",
                    recurrence_key=exc.recurrence_key,
                    schedule_id=occurrence.schedule_id,
                    asset_id=occurrence.asset_id,
                )
                return Rejected(RejectionReason.PERSISTENCE_CONFLICT, occurrence.recurrence_key)
        return Admitted(occurrence.recurrence_key, occurrence)

    def _insert(self, occurrence: GeneratedOccurrence) -> None:
        if not self.occurrences.insert_if_absent(occurrence):
            raise PersistenceConflict(occurrence.recurrence_key).with_context(
                schedule_id=occurrence.schedule_id,
                asset_id=occurrence.asset_id,
            )

    def _check(
        self,
        key: str,
        schedule_id: str,
        asset_id: str,
        template_id: str,
        scheduled_for: datetime,
        constraints: Constraints,
    ) -> Decision:
        if self.occurrences.exists_key(key):
            return Rejected(RejectionReason.DUPLICATE_KEY, key)
        if self.occurrences.has_within_window(
            schedule_id, asset_id, template_id, scheduled_for, constraints.avoid_duplicates_window_hours
        ):
            return Rejected(RejectionReason.DUPLICATE_WINDOW, key)
        if self.occurrences.count_open(asset_id, template_id) >= constraints.max_open_per_asset_per_template:
            return Rejected(RejectionReason.MAX_OPEN_REACHED, key)
        return Admitted(key)


__all__ = ["Admitted", "Rejected", "Decision", "ConstraintGuard", "date_bucket"]
