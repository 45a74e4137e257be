"""
Trigger dispatch: apply every configured progression for a training event.

For one TriggerEvent the dispatcher

1. finds the user's enrolled program,
2. lists the enabled program progressions for the trigger type
   (priority ascending),
3. pairs each progression with the lifts it covers: lift-specific links
   first, then the program-wide link for every remaining lift in scope,
4. applies each (progression, lift) pair in its own ledger transaction.

Inside a transaction: deadline check → idempotency check → read current
max → Progression.apply → record new max → insert audit entry → deadline
check → commit.  The audit log's unique key is the final guard: a duplicate
that slips past the read check is rejected at commit and reported as
SKIPPED_IDEMPOTENT.  A failing pair rolls back alone; the rest of the
dispatch continues.

record_set_result feeds ON_FAILURE progressions from logged sets, keeping a
consecutive-failure streak per (user, lift, progression) in the ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .errors import (
    DeadlineExceeded,
    DuplicateLogEntry,
    NotEnrolled,
    TransactionFailed,
    UnknownProgression,
    ValidationFailed,
)
from .models import FailureCounter, ProgramProgression, ProgressionLogEntry, ProgressionOutcome, as_utc, utc_now
from .ports import Ledger, ProgramConfig
from .progressions import Progression
from .triggers import CycleContext, FailureContext, SessionContext, SetContext, TriggerEvent, WeekContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Assignment:
    """One (progression, lift) pair chosen for a dispatch."""

    link: ProgramProgression
    progression: Progression | None  # None when the link points at a missing progression
    lift_id: str


def _check_deadline(deadline: datetime | None) -> None:
    if deadline is not None and utc_now() >= deadline:
        raise DeadlineExceeded(f"deadline {deadline.isoformat()} passed")


def _unconfigured(assignment: _Assignment) -> ProgressionOutcome:
    return ProgressionOutcome(
        progression_id=assignment.link.progression_id,
        lift_id=assignment.lift_id,
        status="FAILED",
        reason=f"progression '{assignment.link.progression_id}' is not configured",
        program_progression_id=assignment.link.id,
        retryable=False,
    )


def lifts_in_scope(event: TriggerEvent, program_lifts: list[str]) -> list[str]:
    """
    Lifts a program-wide progression link covers for this event.

    AFTER_SESSION → lifts performed in the session
    AFTER_SET / ON_FAILURE   → the set's lift
    AFTER_WEEK / AFTER_CYCLE → every lift of the program
    """
    ctx = event.context
    if isinstance(ctx, SessionContext):
        return list(dict.fromkeys(ctx.lifts_performed))
    if isinstance(ctx, (SetContext, FailureContext)):
        return [ctx.lift_id]
    return list(program_lifts)


class TriggerDispatcher:
    """
    Applies progressions for trigger events against a ledger.

    Args:
        config: Program enrollment and progression configuration
        ledger: Reference max store and audit log with transactions
    """

    def __init__(self, config: ProgramConfig, ledger: Ledger):
        self.config = config
        self.ledger = ledger

    # -----------------------------------------------------------------------
    # Progression resolution
    # -----------------------------------------------------------------------

    def _assignments(self, program_id: str, trigger_type: str, scope: list[str]) -> list[_Assignment]:
        links = self.config.get_program_progressions(program_id, trigger_type)
        links = sorted((l for l in links if l.enabled), key=lambda l: l.priority)

        progressions: dict[str, Progression | None] = {}
        for link in links:
            if link.progression_id not in progressions:
                progressions[link.progression_id] = self.config.get_progression(link.progression_id)

        # Pass 1: lift-specific links claim their (progression, lift) pair
        claimed: set[tuple[str, str]] = set()
        specific: dict[str, _Assignment] = {}
        for link in links:
            if link.lift_id is None or link.lift_id not in scope:
                continue
            pair = (link.progression_id, link.lift_id)
            if pair in claimed:
                continue
            claimed.add(pair)
            specific[link.id] = _Assignment(link, progressions[link.progression_id], link.lift_id)

        # Pass 2: walk links in priority order, program-wide links fill the gaps
        assignments: list[_Assignment] = []
        for link in links:
            if link.lift_id is not None:
                if link.id in specific:
                    assignments.append(specific[link.id])
                continue
            for lift_id in scope:
                pair = (link.progression_id, lift_id)
                if pair in claimed:
                    continue
                claimed.add(pair)
                assignments.append(_Assignment(link, progressions[link.progression_id], lift_id))
        return assignments

    # -----------------------------------------------------------------------
    # Transactional apply
    # -----------------------------------------------------------------------

    def _apply_one(
        self,
        assignment: _Assignment,
        event: TriggerEvent,
        deadline: datetime | None,
    ) -> ProgressionOutcome:
        progression = assignment.progression
        lift_id = assignment.lift_id
        if progression is None:
            return _unconfigured(assignment)
        base = dict(
            progression_id=progression.id,
            lift_id=lift_id,
            max_kind=progression.max_kind,
            program_progression_id=assignment.link.id,
        )

        try:
            with self.ledger.transaction(event.user_id, lift_id, progression.max_kind) as uow:
                _check_deadline(deadline)
                if uow.exists(event.user_id, progression.id, event.trigger_type, event.timestamp, lift_id=lift_id):
                    return ProgressionOutcome(status="SKIPPED_IDEMPOTENT", reason="already applied", **base)

                current = uow.get_current(event.user_id, lift_id, progression.max_kind)
                if current is None:
                    return ProgressionOutcome(
                        status="SKIPPED_NOT_APPLICABLE",
                        reason=f"no current {progression.max_kind}",
                        **base,
                    )

                result = progression.apply(
                    current.value, event, lift_id, override_increment=assignment.link.override_increment
                )
                if not result.applied:
                    return ProgressionOutcome(
                        status="SKIPPED_NOT_APPLICABLE", reason=result.reason, result=result, **base
                    )

                uow.record_new(event.user_id, lift_id, progression.max_kind, result.new_value, event.timestamp)
                entry = ProgressionLogEntry(
                    user_id=event.user_id,
                    progression_id=progression.id,
                    lift_id=lift_id,
                    max_kind=progression.max_kind,
                    previous_value=result.previous_value,
                    new_value=result.new_value,
                    delta=result.delta,
                    trigger_type=event.trigger_type,
                    applied_at=event.timestamp,
                    trigger_context=event.context_dict(),
                )
                uow.insert(entry)
                _check_deadline(deadline)
        except DuplicateLogEntry:
            return ProgressionOutcome(status="SKIPPED_IDEMPOTENT", reason="already applied (concurrent)", **base)
        except TransactionFailed as exc:
            return ProgressionOutcome(status="FAILED", reason=str(exc), retryable=True, **base)
        except ValidationFailed as exc:
            return ProgressionOutcome(status="FAILED", reason=str(exc), retryable=False, **base)

        return ProgressionOutcome(status="APPLIED", reason=result.reason, result=result, log_entry=entry, **base)

    def _log_outcome(self, trigger_type: str, user_id: str, outcome: ProgressionOutcome) -> None:
        if outcome.status == "APPLIED" and outcome.result is not None:
            logger.info(
                "%s %s/%s: %s %g → %g (%s)",
                trigger_type, user_id, outcome.lift_id, outcome.progression_id,
                outcome.result.previous_value, outcome.result.new_value, outcome.reason,
            )
        elif outcome.status == "FAILED":
            logger.warning(
                "%s %s/%s: %s failed (retryable=%s): %s",
                trigger_type, user_id, outcome.lift_id, outcome.progression_id,
                outcome.retryable, outcome.reason,
            )
        else:
            logger.debug(
                "%s %s/%s: %s %s: %s",
                trigger_type, user_id, outcome.lift_id, outcome.progression_id,
                outcome.status, outcome.reason,
            )

    def dispatch(self, event: TriggerEvent, deadline: datetime | None = None) -> list[ProgressionOutcome]:
        """
        Apply all progressions configured for event.

        Args:
            event: Training event; its timestamp becomes applied_at
            deadline: Absolute time after which remaining transactions abort

        Returns:
            One ProgressionOutcome per evaluated (progression, lift) pair,
            including skips and failures

        Raises:
            NotEnrolled: The user has no enrolled program
        """
        program_id = self.config.get_enrolled_program(event.user_id)
        if program_id is None:
            raise NotEnrolled(f"user '{event.user_id}' is not enrolled in a program")
        if deadline is not None:
            deadline = as_utc(deadline, "deadline")

        scope = lifts_in_scope(event, self.config.get_program_lifts(program_id))
        outcomes = []
        for assignment in self._assignments(program_id, event.trigger_type, scope):
            outcome = self._apply_one(assignment, event, deadline)
            self._log_outcome(event.trigger_type, event.user_id, outcome)
            outcomes.append(outcome)
        return outcomes

    # -----------------------------------------------------------------------
    # Failure tracking
    # -----------------------------------------------------------------------

    def record_set_result(
        self,
        user_id: str,
        lift_id: str,
        target_reps: int,
        reps_performed: int,
        timestamp: datetime,
        weight: float = 0.0,
        set_id: str = "",
        deadline: datetime | None = None,
    ) -> list[ProgressionOutcome]:
        """
        Track a logged set against the ON_FAILURE progressions of its lift.

        A set meeting target_reps resets each failure streak.  A failed set
        extends each streak and dispatches ON_FAILURE with the streak length;
        a deload that applies resets the streak when the progression asks
        for it.  A failure redelivered with the same set_id is not counted
        twice, and the audit log key on timestamp keeps the deload from
        applying twice.

        Returns:
            One ProgressionOutcome per (progression, lift) pair; a success
            yields SKIPPED_NOT_APPLICABLE outcomes

        Raises:
            NotEnrolled: The user has no enrolled program
            ValidationFailed: target_reps or reps_performed out of range
        """
        program_id = self.config.get_enrolled_program(user_id)
        if program_id is None:
            raise NotEnrolled(f"user '{user_id}' is not enrolled in a program")
        if target_reps < 1 or reps_performed < 0:
            raise ValidationFailed("target_reps must be at least 1 and reps_performed non-negative")
        timestamp = as_utc(timestamp, "timestamp")
        if deadline is not None:
            deadline = as_utc(deadline, "deadline")
        failed = reps_performed < target_reps

        outcomes = []
        for assignment in self._assignments(program_id, "ON_FAILURE", [lift_id]):
            progression = assignment.progression
            if progression is None:
                outcome = _unconfigured(assignment)
            elif not failed:
                self._reset_counter(user_id, lift_id, progression.id)
                outcome = ProgressionOutcome(
                    progression_id=progression.id,
                    lift_id=lift_id,
                    status="SKIPPED_NOT_APPLICABLE",
                    reason=f"{reps_performed} of {target_reps} reps: set succeeded",
                    max_kind=progression.max_kind,
                    program_progression_id=assignment.link.id,
                )
            else:
                counter = self._count_failure(user_id, lift_id, progression.id, set_id, timestamp)
                if counter.consecutive_failures == 0:
                    # set_id was counted before and its streak already ended in a deload
                    outcome = ProgressionOutcome(
                        progression_id=progression.id,
                        lift_id=lift_id,
                        status="SKIPPED_IDEMPOTENT",
                        reason=f"set '{set_id}' already counted",
                        max_kind=progression.max_kind,
                        program_progression_id=assignment.link.id,
                    )
                    self._log_outcome("ON_FAILURE", user_id, outcome)
                    outcomes.append(outcome)
                    continue
                event = TriggerEvent(
                    trigger_type="ON_FAILURE",
                    user_id=user_id,
                    timestamp=timestamp,
                    context=FailureContext(
                        lift_id=lift_id,
                        target_reps=target_reps,
                        reps_performed=reps_performed,
                        consecutive_failures=counter.consecutive_failures,
                        weight=weight,
                        set_id=set_id,
                        progression_id=progression.id,
                    ),
                )
                outcome = self._apply_one(assignment, event, deadline)
                # SKIPPED_IDEMPOTENT here means the deload for this set already landed
                deloaded = outcome.status in ("APPLIED", "SKIPPED_IDEMPOTENT")
                if deloaded and getattr(progression, "reset_on_deload", False):
                    self._reset_counter(user_id, lift_id, progression.id)
            self._log_outcome("ON_FAILURE", user_id, outcome)
            outcomes.append(outcome)
        return outcomes

    def _count_failure(
        self, user_id: str, lift_id: str, progression_id: str, set_id: str, at: datetime
    ) -> FailureCounter:
        counter = self.ledger.get_failure_counter(user_id, lift_id, progression_id)
        if counter is None:
            counter = FailureCounter(user_id, lift_id, progression_id)
        if counter.seen(set_id):
            return counter
        counter = counter.record_failure(set_id, at)
        self.ledger.save_failure_counter(counter)
        return counter

    def _reset_counter(self, user_id: str, lift_id: str, progression_id: str) -> None:
        counter = self.ledger.get_failure_counter(user_id, lift_id, progression_id)
        if counter is not None and counter.consecutive_failures:
            self.ledger.save_failure_counter(counter.reset())

    # -----------------------------------------------------------------------
    # Manual application
    # -----------------------------------------------------------------------

    def apply_manually(
        self,
        user_id: str,
        progression_id: str,
        lift_id: str,
        force: bool = False,
        reps_performed: int | None = None,
        override_increment: float | None = None,
        now: datetime | None = None,
    ) -> ProgressionOutcome:
        """
        Apply one progression to one lift outside any training event.

        The applied_at key is the start of the current UTC day, so a second
        manual apply on the same day is skipped as a duplicate.  force=True
        keys on the exact current time instead and always applies.

        Args:
            user_id: Lifter
            progression_id: Progression to apply
            lift_id: Lift to progress
            force: Bypass the once-per-day idempotency key
            reps_performed: AMRAP reps; required for AFTER_SET progressions
            override_increment: Increment replacing the progression's own
            now: Clock override for tests

        Returns:
            ProgressionOutcome

        Raises:
            UnknownProgression: progression_id is not configured
            ValidationFailed: AFTER_SET progression without reps_performed
        """
        progression = self.config.get_progression(progression_id)
        if progression is None:
            raise UnknownProgression(f"progression '{progression_id}' is not configured")

        now = as_utc(now or utc_now(), "now")
        applied_at = now if force else now.replace(hour=0, minute=0, second=0, microsecond=0)

        event = TriggerEvent(
            trigger_type=progression.trigger_type,
            user_id=user_id,
            timestamp=applied_at,
            context=_manual_context(progression, lift_id, reps_performed),
            metadata={"manual": True, "forced": force},
        )
        link = ProgramProgression(
            id=f"manual:{progression_id}",
            program_id="manual",
            progression_id=progression_id,
            lift_id=lift_id,
            override_increment=override_increment,
        )
        outcome = self._apply_one(_Assignment(link, progression, lift_id), event, deadline=None)
        self._log_outcome(event.trigger_type, event.user_id, outcome)
        return outcome


def _manual_context(progression: Progression, lift_id: str, reps_performed: int | None):
    trigger = progression.trigger_type
    if trigger == "AFTER_SESSION":
        return SessionContext(session_id="manual", lifts_performed=(lift_id,))
    if trigger == "AFTER_WEEK":
        return WeekContext(previous_week=1, new_week=2)
    if trigger == "AFTER_CYCLE":
        return CycleContext(completed_cycle=1, new_cycle=2)
    if trigger == "ON_FAILURE":
        # A manual deload counts as reaching the threshold
        return FailureContext(
            lift_id=lift_id,
            target_reps=1,
            reps_performed=0,
            consecutive_failures=getattr(progression, "failure_threshold", 1),
            set_id="manual",
            progression_id=progression.id,
        )
    if reps_performed is None:
        raise ValidationFailed(f"{progression.type_name} progression needs reps_performed")
    # Manual reps count as hitting a rep ceiling
    return SetContext(
        lift_id=lift_id, reps_performed=reps_performed, is_amrap=True, set_id="manual", max_reps=reps_performed
    )


def dispatch_trigger(
    event: TriggerEvent,
    config: ProgramConfig,
    ledger: Ledger,
    deadline: datetime | None = None,
) -> list[ProgressionOutcome]:
    """Functional form of TriggerDispatcher.dispatch."""
    return TriggerDispatcher(config, ledger).dispatch(event, deadline=deadline)


def apply_progression_manually(
    config: ProgramConfig,
    ledger: Ledger,
    user_id: str,
    progression_id: str,
    lift_id: str,
    force: bool = False,
    reps_performed: int | None = None,
) -> ProgressionOutcome:
    """Functional form of TriggerDispatcher.apply_manually."""
    return TriggerDispatcher(config, ledger).apply_manually(
        user_id, progression_id, lift_id, force=force, reps_performed=reps_performed
    )

