"""Program commands: programs, resolve."""

import json
from typing import Annotated, Optional

import typer

from ...core.errors import LiftEngineError
from ...core.resolution import PrescriptionResolver
from ...io.serializers import resolved_prescription_to_dict
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
    get_catalog,
    get_ledger,
    get_settings,
)


@app.command()
def programs(
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    List available programs (bundled, ~/.lift-engine/programs and --program-file).
    """
    try:
        catalog = get_catalog(program_files)
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    if json_out:
        print(json.dumps([
            {
                "id": p.id,
                "name": p.name,
                "description": p.description,
                "lifts": p.lifts,
                "days": list(p.days),
                "cycle_weeks": p.cycle_weeks,
            }
            for p in sorted(catalog.programs, key=lambda p: p.id)
        ], indent=2))
        return
    views.print_programs(catalog.programs)


@app.command()
def resolve(
    program_id: ProgramOption,
    day: Annotated[str, typer.Option("--day", "-d", help="Training day slug, e.g. a, volume")],
    week: Annotated[
        Optional[int],
        typer.Option("--week", "-w", help="Week number within the cycle (drives weekly lookups)"),
    ] = None,
    rotation: Annotated[
        Optional[int],
        typer.Option("--rotation", "-r", help="Rotation position (drives rotation lookups)"),
    ] = None,
    user_id: UserOption = DEFAULT_USER,
    ledger_path: LedgerPathOption = None,
    program_files: ProgramFileOption = None,
    json_out: JsonOption = False,
) -> None:
    """
    Show the concrete sets for one training day.

    Lifts without a recorded max are reported individually; the rest of
    the day still resolves.
    """
    try:
        catalog, program = enroll(user_id, program_id, program_files)
        training_day = program.get_day(day)
    except LiftEngineError as e:
        views.print_error(str(e))
        raise typer.Exit(1)

    ctx = program.lookup_context(week_number=week, day_identifier=training_day.slug, rotation_position=rotation)
    resolver = PrescriptionResolver(get_ledger(ledger_path), catalog, get_settings())
    results = resolver.resolve_batch(training_day.prescriptions, user_id, ctx)

    if json_out:
        print(json.dumps({
            "program": program.id,
            "day": training_day.slug,
            "week": week,
            "rotation": rotation,
            "results": [
                {
                    "prescription_id": r.prescription_id,
                    "status": r.status,
                    "result": resolved_prescription_to_dict(r.result) if r.result else None,
                    "error": r.error,
                    "error_kind": r.error_kind,
                }
                for r in results
            ],
        }, indent=2))
        return

    title = f"{program.name}: {training_day.name}"
    if week is not None:
        title += f" (week {week})"
    views.print_resolved(title, results)
    if any(r.error_kind == "MaxNotFound" for r in results):
        views.print_info("Record missing maxes with 'lift-engine set-max LIFT VALUE'.")
