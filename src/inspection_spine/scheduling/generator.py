"""
Occurrence generator: one schedule → admitted, persisted occurrences.

┌──────────────────────────────────────────────────────────────────────────────┐
│  generate(schedule, now)                                                     │
│                                                                               │
│   validate_schedule ──► ScopeResolver.resolve ──► sorted asset ids           │
│                                                     │                         │
│                  ┌──────────────────────────────────┘                         │
│                  ▼                                                            │
│   end conditions (end_date, max_occurrences) ──► SKIPPED when ended        │
│   store reads (last close, last generated meter)        [caller thread]      │
│                  │                                                            │
│                  ▼                                                            │
│   ThreadPoolExecutor(asset_workers):                                         │
│     meter readings + recurrence.candidates(rule, now, ctx) per asset         │
│                  │                                                            │
│                  ▼                                                            │
│   per candidate, in asset order:  budget ──► guard.admit ──► guard.commit    │
│     Admitted → occurrence (+ on_create signal)                               │
│     Rejected → RunResult.rejections                                          │
│     per-asset exception → RunResult.errors (asset_id, reason)                │
└──────────────────────────────────────────────────────────────────────────────┘

Only pure computation and external reads run on the worker pool; every store
access happens on the calling thread, and persistence is serialized through
the guard.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any

from inspection_spine.core.logging import get_logger
from inspection_spine.core.models.scheduling import (
    AssignmentMode,
    AssignmentPolicy,
    Candidate,
    EventDriven,
    GeneratedOccurrence,
    NotificationKind,
    NotificationSignal,
    OccurrenceOrigin,
    Rejection,
    RejectionReason,
    RollingAfterCompletion,
    RunResult,
    RunStatus,
    Schedule,
    SchedulingEvent,
    UsageBased,
)
from inspection_spine.core.protocols import CompletionSource, MeterSource, NotificationDispatcher
from inspection_spine.core.timeouts import run_with_timeout
from inspection_spine.core.timestamps import ensure_utc, generate_ulid, load_zone, local_date, local_to_utc
from inspection_spine.scheduling.guard import Admitted, ConstraintGuard, Rejected
from inspection_spine.scheduling.notifications import send_signal
from inspection_spine.scheduling.recurrence import RecurrenceContext, candidates
from inspection_spine.scheduling.repository import OccurrenceRepository
from inspection_spine.scheduling.scope import ScopeResolver
from inspection_spine.scheduling.validation import validate_schedule

logger = get_logger(__name__)


def assign(policy: AssignmentPolicy, asset_index: int) -> str | None:
    """Assignee for the asset at ``asset_index`` of the sorted resolved scope."""
    match policy.mode:
        case AssignmentMode.FIXED_USER:
            return policy.user_id
        case AssignmentMode.ROTATE_TEAM:
            if not policy.team_members:
                return None
            return policy.team_members[asset_index % len(policy.team_members)]
    return None


def compute_due_at(scheduled_for: datetime, due_offset_days: int, timezone: str) -> datetime:
    """``scheduled_for`` plus whole days on the wall clock of ``timezone``."""
    if due_offset_days == 0:
        return ensure_utc(scheduled_for)
    zone = load_zone(timezone)
    local = ensure_utc(scheduled_for).astimezone(zone)
    return local_to_utc(local.date() + timedelta(days=due_offset_days), local.time(), zone)


class OccurrenceGenerator:
    """Composes scope, recurrence and guard for one schedule.

    Args:
        resolver: Scope resolver (owns the directory timeout).
        guard: Constraint guard over the occurrence store.
        occurrences: Occurrence store, also the default completion source.
        meters: Telemetry for usage rules; usage schedules generate nothing without it.
        dispatcher: Receives ``on_create`` signals.
        asset_workers: Size of the per-asset worker pool.
        external_timeout_seconds: Upper bound for one meter read.
    """

    def __init__(
        self,
        resolver: ScopeResolver,
        guard: ConstraintGuard,
        occurrences: OccurrenceRepository,
        *,
        completions: CompletionSource | None = None,
        meters: MeterSource | None = None,
        dispatcher: NotificationDispatcher | None = None,
        asset_workers: int = 4,
        external_timeout_seconds: float | None = None,
    ) -> None:
        self.resolver = resolver
        self.guard = guard
        self.occurrences = occurrences
        self.completions: CompletionSource = completions or occurrences
        self.meters = meters
        self.dispatcher = dispatcher
        self.asset_workers = max(1, asset_workers)
        self.external_timeout_seconds = external_timeout_seconds

    # === Periodic generation ===

    def generate(
        self,
        schedule: Schedule,
        now: datetime,
        *,
        snapshot_at: datetime | None = None,
        window_start: datetime | None = None,
    ) -> RunResult:
        """Generate the occurrences ``schedule`` owes as of ``now``.

        ``window_start`` (never later than ``now``) widens a fixed-time window
        back to the instant the previous run booked, so a late tick still
        generates what it was due to. A schedule past its ``end_date`` or out
        of ``max_occurrences`` is SKIPPED.

        Raises:
            InvalidRuleConfiguration: The schedule definition is not usable.
            ScopeResolutionError: The scope could not be expanded.
            ExternalTimeout: The directory did not answer in time.
        """
        now = ensure_utc(now)
        result = RunResult(schedule_id=schedule.id, started_at=now)
        validate_schedule(schedule)

        if isinstance(schedule.rule, EventDriven):
            result.status = RunStatus.SKIPPED
            result.finished_at = now
            return result

        budget = self.remaining_budget(schedule)
        as_of = min(now, ensure_utc(window_start)) if window_start is not None else now
        if self.has_ended(schedule, as_of, budget):
            logger.info("schedule.ended", schedule_id=schedule.id, remaining=budget)
            result.status = RunStatus.SKIPPED
            result.finished_at = now
            return result

        assets = sorted(
            self.resolver.resolve(
                schedule.scope,
                schedule.site_id,
                include_new_assets=schedule.include_new_assets,
                snapshot_at=snapshot_at or now,
            )
        )

        history = self._history(schedule, assets)
        proposals = self._compute_candidates(schedule, assets, history, now, window_start)

        for index, asset_id in enumerate(assets):
            outcome = proposals[asset_id]
            if isinstance(outcome, Exception):
                result.errors.append((asset_id, str(outcome)))
                logger.warning(
                    "generator.asset_failed",
                    schedule_id=schedule.id,
                    asset_id=asset_id,
                    error=str(outcome),
                )
                continue
            instants, meter = outcome
            for instant in instants:
                candidate = Candidate(
                    schedule_id=schedule.id,
                    asset_id=asset_id,
                    template_id=schedule.template_id,
                    scheduled_for=instant,
                    origin=OccurrenceOrigin.SCHEDULE,
                    meter_reading=meter,
                )
                self._decide(schedule, candidate, index, now, result, budget)

        return self._close(result, assets, now)

    # === Event generation ===

    def generate_for_event(self, schedule: Schedule, event: SchedulingEvent, now: datetime) -> RunResult:
        """One candidate per targeted asset, due at the event's receipt time.

        An event naming an asset targets that asset only, and only when the
        schedule's scope contains it; otherwise every asset in scope is targeted.
        """
        now = ensure_utc(now)
        result = RunResult(schedule_id=schedule.id, event_id=event.id, started_at=now)
        validate_schedule(schedule)

        budget = self.remaining_budget(schedule)
        if self.has_ended(schedule, now, budget):
            logger.info("schedule.ended", schedule_id=schedule.id, event_id=event.id, remaining=budget)
            result.status = RunStatus.SKIPPED
            result.finished_at = now
            return result

        scope_assets = sorted(
            self.resolver.resolve(
                schedule.scope,
                schedule.site_id,
                include_new_assets=schedule.include_new_assets,
                snapshot_at=now,
            )
        )
        if event.asset_id is not None:
            if event.asset_id not in scope_assets:
                logger.debug(
                    "generator.event_asset_out_of_scope",
                    schedule_id=schedule.id,
                    event_id=event.id,
                    asset_id=event.asset_id,
                )
                result.finished_at = now
                return result
            targets = [event.asset_id]
        else:
            targets = scope_assets

        context = RecurrenceContext(
            timezone=schedule.zone_name,
            end_date=schedule.end_date,
            event_type=event.type,
            event_time=event.created_at,
        )
        for asset_id in targets:
            index = scope_assets.index(asset_id)
            try:
                instants = candidates(schedule.rule, now, context)
                for instant in instants:
                    candidate = Candidate(
                        schedule_id=schedule.id,
                        asset_id=asset_id,
                        template_id=schedule.template_id,
                        scheduled_for=instant,
                        origin=OccurrenceOrigin.EVENT,
                        event_id=event.id,
                    )
                    self._decide(schedule, candidate, index, now, result, budget)
            except Exception as exc:
                logger.warning(
                    "generator.asset_failed",
                    schedule_id=schedule.id,
                    event_id=event.id,
                    asset_id=asset_id,
                    error=str(exc),
                )
                result.errors.append((asset_id, str(exc)))

        return self._close(result, targets, now)

    # === End conditions ===

    def remaining_budget(self, schedule: Schedule) -> int | None:
        """Occurrences ``schedule`` may still generate; None when uncapped."""
        if schedule.max_occurrences is None:
            return None
        return max(0, schedule.max_occurrences - self.occurrences.count_for_schedule(schedule.id))

    def has_ended(self, schedule: Schedule, as_of: datetime, budget: int | None) -> bool:
        if budget == 0:
            return True
        if schedule.end_date is None:
            return False
        return local_date(ensure_utc(as_of), load_zone(schedule.zone_name)) > schedule.end_date

    def last_closed_at(self, schedule_id: str, asset_id: str) -> datetime | None:
        """Latest completion or cancellation; a rolling chain restarts from either."""
        closed = [
            ensure_utc(at)
            for at in (
                self.completions.last_completion(schedule_id, asset_id),
                self.occurrences.last_cancellation(schedule_id, asset_id),
            )
            if at is not None
        ]
        return max(closed, default=None)

    # === Helpers ===

    def _history(self, schedule: Schedule, assets: list[str]) -> dict[str, dict[str, Any]]:
        history: dict[str, dict[str, Any]] = {}
        for asset_id in assets:
            entry: dict[str, Any] = {}
            try:
                if isinstance(schedule.rule, RollingAfterCompletion):
                    entry["last_completed_at"] = self.last_closed_at(schedule.id, asset_id)
                elif isinstance(schedule.rule, UsageBased):
                    entry["last_generated_meter"] = self.occurrences.last_meter_reading(schedule.id, asset_id)
            except Exception as exc:
                entry["error"] = exc
            history[asset_id] = entry
        return history

    def _compute_candidates(
        self,
        schedule: Schedule,
        assets: list[str],
        history: dict[str, dict[str, Any]],
        now: datetime,
        window_start: datetime | None = None,
    ) -> dict[str, tuple[list[datetime], float | None] | Exception]:
        def compute(asset_id: str) -> tuple[list[datetime], float | None]:
            entry = history[asset_id]
            if "error" in entry:
                raise entry["error"]
            current_meter = None
            last_generated = entry.get("last_generated_meter")
            if isinstance(schedule.rule, UsageBased):
                current_meter, last_generated = self._meter_readings(schedule.rule, asset_id, last_generated)
            context = RecurrenceContext(
                generate_ahead_days=schedule.generate_ahead_days,
                anchor_date=schedule.start_date,
                timezone=schedule.zone_name,
                window_start=window_start,
                end_date=schedule.end_date,
                last_completed_at=entry.get("last_completed_at"),
                current_meter=current_meter,
                last_generated_meter=last_generated,
            )
            return candidates(schedule.rule, now, context), current_meter

        outcomes: dict[str, tuple[list[datetime], float | None] | Exception] = {}
        if not assets:
            return outcomes
        with ThreadPoolExecutor(
            max_workers=min(self.asset_workers, len(assets)),
            thread_name_prefix="insp-assets",
        ) as pool:
            futures = {asset_id: pool.submit(compute, asset_id) for asset_id in assets}
            for asset_id, future in futures.items():
                try:
                    outcomes[asset_id] = future.result()
                except Exception as exc:
                    outcomes[asset_id] = exc
        return outcomes

    def _meter_readings(
        self, rule: UsageBased, asset_id: str, last_generated: float | None
    ) -> tuple[float | None, float | None]:
        if self.meters is None:
            return None, last_generated
        current = run_with_timeout(
            self.meters.current_reading,
            asset_id,
            rule.meter_type,
            timeout_seconds=self.external_timeout_seconds,
            operation="meter_source.current_reading",
        )
        if last_generated is None:
            last_generated = run_with_timeout(
                self.meters.last_recorded_reading,
                asset_id,
                rule.meter_type,
                timeout_seconds=self.external_timeout_seconds,
                operation="meter_source.last_recorded_reading",
            )
        return current, last_generated

    def _decide(
        self,
        schedule: Schedule,
        candidate: Candidate,
        asset_index: int,
        now: datetime,
        result: RunResult,
        budget: int | None = None,
    ) -> None:
        if budget is not None and result.generated_count >= budget:
            result.rejections.append(
                Rejection(candidate.asset_id, candidate.scheduled_for, RejectionReason.SCHEDULE_ENDED)
            )
            return
        decision = self.guard.admit(candidate, schedule.constraints)
        if isinstance(decision, Admitted):
            occurrence = GeneratedOccurrence(
                id=generate_ulid(),
                schedule_id=schedule.id,
                asset_id=candidate.asset_id,
                template_id=candidate.template_id,
                scheduled_for=candidate.scheduled_for,
                due_at=compute_due_at(
                    candidate.scheduled_for, schedule.due_rules.due_offset_days, schedule.zone_name
                ),
                recurrence_key=decision.recurrence_key,
                origin=candidate.origin,
                created_at=now,
                assigned_to=assign(schedule.assignment, asset_index),
                meter_reading=candidate.meter_reading,
                event_id=candidate.event_id,
            )
            decision = self.guard.commit(occurrence, schedule.constraints)

        match decision:
            case Admitted(occurrence=occurrence) if occurrence is not None:
                result.occurrences.append(occurrence)
                logger.debug(
                    "occurrence.created",
                    schedule_id=schedule.id,
                    asset_id=occurrence.asset_id,
                    scheduled_for=occurrence.scheduled_for.isoformat(),
                    occurrence_id=occurrence.id,
                )
                if schedule.notifications.on_create:
                    send_signal(
                        self.dispatcher,
                        NotificationSignal(
                            kind=NotificationKind.CREATED,
                            schedule_id=schedule.id,
                            occurrence_id=occurrence.id,
                            asset_id=occurrence.asset_id,
                            due_at=occurrence.due_at,
                        ),
                    )
            case Rejected(reason=reason):
                result.rejections.append(Rejection(candidate.asset_id, candidate.scheduled_for, reason))
                logger.debug(
                    "occurrence.rejected",
                    schedule_id=schedule.id,
                    asset_id=candidate.asset_id,
                    reason=reason.value,
                )

    def _close(self, result: RunResult, assets: list[str], now: datetime) -> RunResult:
        if result.errors:
            failed_assets = {asset_id for asset_id, _ in result.errors}
            result.status = RunStatus.FAILED if failed_assets >= set(assets) else RunStatus.PARTIAL
        else:
            result.status = RunStatus.COMPLETED
        result.finished_at = now
        return result


__all__ = ["OccurrenceGenerator", "assign", "compute_due_at"]
