"""Reference max commands: set-max, show-maxes, history."""

import json
from typing import Annotated, Optional

import typer

from ...core.errors import LiftEngineError
from ...core.maxes import check_training_max, training_max_from_one_rm
from ...core.models import utc_now, validate_max_kind
from ...io.serializers import log_entry_to_dict, parse_timestamp, reference_max_to_dict
from .. import views
from ..app import DEFAULT_USER, JsonOption, LedgerPathOption, UserOption, app, get_ledger, get_settings


@app.command("set-max")
def set_max(
    lift_id: Annotated[str, typer.Argument(help="Lift ID, e.g. squat")],
    value: Annotated[float, typer.Argument(help="Max value in your working unit")],
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help="ONE_REP_MAX or TRAINING_MAX"),
    ] = "TRAINING_MAX",
    from_one_rm: Annotated[
        bool,
        typer.Option("--from-one-rm", help="VALUE is a 1RM: also store the derived training max"),
    ] = False,
    effective_at: Annotated[
        Optional[str],
        typer.Option("--at", help="Effective time, ISO 8601 (default: now)"),
    ] = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
) -> None:
    """
    Record a new reference max.  Earlier values are kept as history.
    """
    try:
        when = parse_timestamp(effective_at) if effective_at else utc_now()
        ledger = get_ledger(ledger_path)

        if from_one_rm:
            settings = get_settings()
            tm = training_max_from_one_rm(value, settings.tm_percentage, settings.rounding_increment)
            ledger.record_new(user_id, lift_id, "ONE_REP_MAX", value, when)
            ledger.record_new(user_id, lift_id, "TRAINING_MAX", tm, when)
            views.print_success(
                f"{lift_id}: 1RM {value:g}, training max {tm:g} ({settings.tm_percentage:g}%)"
            )
            return

        kind = validate_max_kind(kind.upper())
        ledger.record_new(user_id, lift_id, kind, value, when)
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if kind == "TRAINING_MAX":
        one_rm = ledger.get_current(user_id, lift_id, "ONE_REP_MAX")
        if one_rm is not None:
            warning = check_training_max(value, one_rm.value)
            if warning:
                views.print_warning(warning)
    views.print_success(f"{lift_id} {kind} set to {value:g}")


@app.command("show-maxes")
def show_maxes(
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    Show the current reference max for every lift.
    """
    maxes = get_ledger(ledger_path).current_maxes(user_id)
    if json_out:
        print(json.dumps([reference_max_to_dict(m) for m in maxes], indent=2))
        return
    views.print_maxes(maxes)


@app.command()
def history(
    lift_id: Annotated[
        Optional[str],
        typer.Option("--lift", "-l", help="Only show this lift"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of entries to show (0 = all)"),
    ] = 20,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    Show applied progressions, newest first.
    """
    entries = get_ledger(ledger_path).list_entries(user_id, lift_id)
    if limit > 0:
        entries = entries[:limit]
    if json_out:
        print(json.dumps([log_entry_to_dict(e) for e in entries], indent=2))
        return
    views.print_history(entries)
