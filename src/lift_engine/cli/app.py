"""Shared Typer app object, shared option types, and store utilities."""

from pathlib import Path
from typing import Annotated, Optional

import typer

from ..core.config import EngineSettings, load_engine_settings
from ..io.ledger_store import JsonlLedger, get_default_ledger_path
from ..io.program_catalog import ProgramCatalog, ProgramDefinition
from ..io.program_loader import load_catalog

DEFAULT_USER = "me"

UserOption = Annotated[
    str,
    typer.Option("--user", "-u", help="Lifter ID (default: me)"),
]

ProgramOption = Annotated[
    str,
    typer.Option("--program", "-p", help="Program ID, e.g. starting_strength, wendler_531"),
]

LedgerPathOption = Annotated[
    Optional[Path],
    typer.Option("--ledger", help="Ledger file (default: ~/.lift-engine/ledger.jsonl)"),
]

ProgramFileOption = Annotated[
    Optional[list[Path]],
    typer.Option("--program-file", help="Extra program YAML file; may be repeated"),
]

JsonOption = Annotated[
    bool,
    typer.Option("--json", "-j", help="Output as JSON for machine processing"),
]

app = typer.Typer(
    name="lift-engine",
    help="Strength program engine: resolve prescribed workouts and progress reference maxes.",
    no_args_is_help=True,
)

trigger_app = typer.Typer(
    help="Report a completed training event and apply its progressions.",
    no_args_is_help=True,
)
app.add_typer(trigger_app, name="trigger")


def get_settings() -> EngineSettings:
    """Engine settings from bundled and user settings.yaml."""
    return load_engine_settings()


def get_ledger(ledger_path: Path | None) -> JsonlLedger:
    """Open the ledger at ledger_path or the default location, creating it if needed."""
    ledger = JsonlLedger(ledger_path if ledger_path is not None else get_default_ledger_path())
    ledger.init()
    return ledger


def get_catalog(program_files: list[Path] | None = None, settings: EngineSettings | None = None) -> ProgramCatalog:
    """Bundled and user programs plus any --program-file additions."""
    return load_catalog(extra_files=program_files, settings=settings or get_settings())


def enroll(user_id: str, program_id: str, program_files: list[Path] | None = None) -> tuple[ProgramCatalog, ProgramDefinition]:
    """
    Load the catalog and enroll user_id in program_id for this invocation.

    Raises:
        ValidationFailed: Unknown program or invalid program file
    """
    catalog = get_catalog(program_files)
    catalog.enroll(user_id, program_id)
    return catalog, catalog.get_program(program_id)
