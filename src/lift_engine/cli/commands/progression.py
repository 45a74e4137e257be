"""Progression commands: trigger session|week|cycle|set|set-result, apply."""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer

from ...core.dispatcher import TriggerDispatcher
from ...core.errors import LiftEngineError
from ...core.models import ProgressionOutcome, utc_now
from ...core.triggers import CycleContext, SessionContext, SetContext, TriggerContext, TriggerEvent, WeekContext
from ...io.serializers import format_timestamp, log_entry_to_dict, parse_timestamp
from .. import views
from ..app import (
    DEFAULT_USER,
    JsonOption,
    LedgerPathOption,
    ProgramFileOption,
    ProgramOption,
    UserOption,
    app,
    enroll,
    get_ledger,
    trigger_app,
)

AtOption = Annotated[
    Optional[str],
    typer.Option("--at", help="Event time, ISO 8601 (default: now). Re-sending the same time is a no-op"),
]

TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", help="Abort remaining progressions after this many seconds"),
]


def _outcome_to_dict(o: ProgressionOutcome) -> dict:
    return {
        "progression_id": o.progression_id,
        "lift_id": o.lift_id,
        "status": o.status,
        "reason": o.reason,
        "retryable": o.retryable,
        "previous_value": o.result.previous_value if o.result else None,
        "new_value": o.result.new_value if o.result else None,
        "delta": o.result.delta if o.result else None,
        "log_entry": log_entry_to_dict(o.log_entry) if o.log_entry else None,
    }


def _event_time(at: str | None) -> datetime:
    return parse_timestamp(at) if at else utc_now()


def _dispatch(
    trigger_type: str,
    context: TriggerContext,
    user_id: str,
    program_id: str,
    at: str | None,
    timeout: float | None,
    ledger_path: Path | None,
    program_files: list[Path] | None,
    json_out: bool,
) -> None:
    """Build the event, dispatch it and print outcomes; exits 1 on errors or failed progressions."""
    try:
        catalog, _ = enroll(user_id, program_id, program_files)
        event = TriggerEvent(
            trigger_type=trigger_type,  # type: ignore[arg-type]
            user_id=user_id,
            timestamp=_event_time(at),
            context=context,
        )
        outcomes = TriggerDispatcher(catalog, get_ledger(ledger_path)).dispatch(event, deadline=_deadline(timeout))
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    _report(event.trigger_type, event.timestamp, outcomes, json_out)


def _deadline(timeout: float | None) -> datetime | None:
    return utc_now() + timedelta(seconds=timeout) if timeout is not None else None


def _report(trigger_type: str, applied_at: datetime, outcomes: list[ProgressionOutcome], json_out: bool) -> None:
    """Print outcomes; exits 1 if any progression failed."""
    if json_out:
        print(json.dumps({
            "trigger_type": trigger_type,
            "applied_at": format_timestamp(applied_at),
            "outcomes": [_outcome_to_dict(o) for o in outcomes],
        }, indent=2))
    else:
        views.print_outcomes(outcomes)

    if any(o.status == "FAILED" for o in outcomes):
        raise typer.Exit(1)


@trigger_app.command("session")
def trigger_session(
    program_id: ProgramOption,
    lifts: Annotated[
        Optional[str],
        typer.Option("--lifts", help="Comma-separated lifts performed (default: all lifts of --day)"),
    ] = None,
    day: Annotated[
        Optional[str],
        typer.Option("--day", "-d", help="Training day slug that was performed"),
    ] = None,
    week: Annotated[int, typer.Option("--week", "-w", help="Week number of the session")] = 1,
    session_id: Annotated[
        Optional[str],
        typer.Option("--session-id", help="Session identifier (default: derived from --at)"),
    ] = None,
    at: AtOption = None,
    timeout: TimeoutOption = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    A session was completed: apply AFTER_SESSION progressions to the lifts performed.
    """
    try:
        _, program = enroll(user_id, program_id, program_files)
        if lifts:
            performed = tuple(s.strip() for s in lifts.split(",") if s.strip())
        elif day:
            performed = tuple(dict.fromkeys(p.lift_id for p in program.get_day(day).prescriptions))
        else:
            views.print_error("Give --lifts or --day so the session's lifts are known")
            raise typer.Exit(1)
        context = SessionContext(
            session_id=session_id or f"cli-{at or format_timestamp(utc_now())}",
            lifts_performed=performed,
            day_slug=(day or "").lower(),
            week_number=week,
        )
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    _dispatch("AFTER_SESSION", context, user_id, program_id, at, timeout, ledger_path, program_files, json_out)


@trigger_app.command("week")
def trigger_week(
    program_id: ProgramOption,
    previous_week: Annotated[int, typer.Option("--previous-week", help="Week just finished")],
    new_week: Annotated[
        Optional[int],
        typer.Option("--new-week", help="Week starting (default: previous + 1)"),
    ] = None,
    cycle: Annotated[int, typer.Option("--cycle", help="Cycle iteration")] = 1,
    at: AtOption = None,
    timeout: TimeoutOption = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    A program week ended: apply AFTER_WEEK progressions to every program lift.
    """
    try:
        context = WeekContext(
            previous_week=previous_week,
            new_week=new_week if new_week is not None else previous_week + 1,
            cycle_iteration=cycle,
        )
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    _dispatch("AFTER_WEEK", context, user_id, program_id, at, timeout, ledger_path, program_files, json_out)


@trigger_app.command("cycle")
def trigger_cycle(
    program_id: ProgramOption,
    completed_cycle: Annotated[int, typer.Option("--completed-cycle", help="Cycle just finished")],
    total_weeks: Annotated[
        Optional[int],
        typer.Option("--total-weeks", help="Weeks in the finished cycle (default: program cycle length)"),
    ] = None,
    at: AtOption = None,
    timeout: TimeoutOption = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    A cycle ended: apply AFTER_CYCLE progressions to every program lift.
    """
    try:
        _, program = enroll(user_id, program_id, program_files)
        context = CycleContext(
            completed_cycle=completed_cycle,
            new_cycle=completed_cycle + 1,
            total_weeks=total_weeks if total_weeks is not None else program.cycle_weeks,
        )
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    _dispatch("AFTER_CYCLE", context, user_id, program_id, at, timeout, ledger_path, program_files, json_out)


@trigger_app.command("set")
def trigger_set(
    program_id: ProgramOption,
    lift_id: Annotated[str, typer.Option("--lift", "-l", help="Lift of the logged set")],
    reps: Annotated[int, typer.Option("--reps", "-r", help="Reps performed")],
    weight: Annotated[float, typer.Option("--weight", help="Weight used")] = 0.0,
    not_amrap: Annotated[
        bool,
        typer.Option("--not-amrap", help="The set was not an AMRAP set (no progression fires)"),
    ] = False,
    max_reps: Annotated[
        Optional[int],
        typer.Option("--max-reps", help="Top of the set's rep range (double progression)"),
    ] = None,
    set_id: Annotated[str, typer.Option("--set-id", help="Set identifier")] = "",
    at: AtOption = None,
    timeout: TimeoutOption = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    A set was logged: apply AFTER_SET (AMRAP or rep-range) progressions for its lift.
    """
    try:
        context = SetContext(
            lift_id=lift_id,
            reps_performed=reps,
            weight=weight,
            is_amrap=not not_amrap,
            set_id=set_id,
            max_reps=max_reps,
        )
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    _dispatch("AFTER_SET", context, user_id, program_id, at, timeout, ledger_path, program_files, json_out)


@trigger_app.command("set-result")
def trigger_set_result(
    program_id: ProgramOption,
    lift_id: Annotated[str, typer.Option("--lift", "-l", help="Lift of the logged set")],
    target_reps: Annotated[int, typer.Option("--target-reps", "-t", help="Reps prescribed")],
    reps: Annotated[int, typer.Option("--reps", "-r", help="Reps performed")],
    weight: Annotated[float, typer.Option("--weight", help="Weight used")] = 0.0,
    set_id: Annotated[
        str,
        typer.Option("--set-id", help="Set identifier; a repeated id is not counted twice"),
    ] = "",
    at: AtOption = None,
    timeout: TimeoutOption = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    Log a set against its target: count failures and apply ON_FAILURE deloads.

    Reaching --target-reps resets the failure streak.
    """
    try:
        catalog, _ = enroll(user_id, program_id, program_files)
        applied_at = _event_time(at)
        outcomes = TriggerDispatcher(catalog, get_ledger(ledger_path)).record_set_result(
            user_id,
            lift_id,
            target_reps,
            reps,
            applied_at,
            weight=weight,
            set_id=set_id,
            deadline=_deadline(timeout),
        )
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if not outcomes and not json_out:
        views.print_info(f"No ON_FAILURE progression covers {lift_id}.")
        return
    _report("ON_FAILURE", applied_at, outcomes, json_out)


@app.command()
def apply(
    program_id: ProgramOption,
    progression_id: Annotated[str, typer.Argument(help="Progression to apply")],
    lift_id: Annotated[str, typer.Argument(help="Lift to progress")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Apply even if already applied today"),
    ] = False,
    reps: Annotated[
        Optional[int],
        typer.Option("--reps", "-r", help="AMRAP reps (needed for set-driven progressions)"),
    ] = None,
    increment: Annotated[
        Optional[float],
        typer.Option("--increment", help="Use this increment instead of the progression's"),
    ] = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    Apply one progression to one lift by hand.

    Without --force this is limited to once per lift and progression per
    UTC day.
    """
    try:
        catalog, _ = enroll(user_id, program_id, program_files)
        dispatcher = TriggerDispatcher(catalog, get_ledger(ledger_path))
        outcome = dispatcher.apply_manually(
            user_id,
            progression_id,
            lift_id,
            force=force,
            reps_performed=reps,
            override_increment=increment,
        )
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if json_out:
        print(json.dumps(_outcome_to_dict(outcome), indent=2))
    else:
        views.print_outcomes([outcome])
        if outcome.status == "SKIPPED_IDEMPOTENT":
            views.print_info("Already applied today; use --force to apply again.")

    if outcome.status == "FAILED":
        raise typer.Exit(1)
