"""
YAML → ProgramDefinition loader.

Loads program definitions from individual YAML files in the bundled
``src/lift_engine/programs/`` directory.  Each file (e.g. wendler_531.yaml)
holds one program: lifts, days with prescriptions, optional lookup tables,
progressions and the links tying progressions to the program.

User programs: place files in ``~/.lift-engine/programs/``.  A user file
with the same stem as a bundled one is deep-merged over it, so only
changed keys need to be listed; other user files are added as new programs.

Usage:
    from lift_engine.io.program_loader import load_catalog
    catalog = load_catalog()
    program = catalog.get_program("starting_strength")
"""

from __future__ import annotations

import importlib.resources
import warnings
from pathlib import Path
from typing import Any

import yaml

from ..core.config import EngineSettings
from ..core.engine.config_loader import deep_merge, get_user_dir
from ..core.errors import ValidationFailed
from ..core.progressions import progression_from_dict
from .program_catalog import ProgramCatalog, ProgramDefinition, TrainingDay
from .serializers import (
    dict_to_daily_lookup,
    dict_to_prescription,
    dict_to_program_progression,
    dict_to_rotation_lookup,
    dict_to_weekly_lookup,
)

_REQUIRED_PROGRAM_FIELDS: frozenset[str] = frozenset({"id", "name", "lifts", "days"})


def program_from_dict(d: dict[str, Any], settings: EngineSettings | None = None) -> ProgramDefinition:
    """Convert a raw dict (from YAML) to a ProgramDefinition.

    Raises ValidationFailed if any required field is absent or invalid.
    """
    if not isinstance(d, dict):
        raise ValidationFailed("program definition must be a mapping")
    missing = _REQUIRED_PROGRAM_FIELDS - set(d)
    if missing:
        raise ValidationFailed(f"ProgramDefinition missing fields: {sorted(missing)}")
    if not isinstance(d["lifts"], list):
        raise ValidationFailed("program 'lifts' must be a list")
    if d["days"] is not None and not isinstance(d["days"], dict):
        raise ValidationFailed("program 'days' must be a mapping of day slug to day")
    if not isinstance(d.get("lookups") or {}, dict):
        raise ValidationFailed("program 'lookups' must be a mapping")
    if not isinstance(d.get("progressions") or [], list) or not isinstance(d.get("links") or [], list):
        raise ValidationFailed("program 'progressions' and 'links' must be lists")

    try:
        return _build_program(d, settings)
    except ValidationFailed:
        raise
    except (AttributeError, TypeError, ValueError, KeyError) as exc:
        raise ValidationFailed(f"malformed program '{d.get('id')}': {exc}") from exc


def _build_program(d: dict[str, Any], settings: EngineSettings | None) -> ProgramDefinition:
    program_id = str(d["id"])
    days: dict[str, TrainingDay] = {}
    for slug, raw_day in (d.get("days") or {}).items():
        raw_day = raw_day or {}
        days[str(slug).lower()] = TrainingDay(
            slug=str(slug).lower(),
            name=str(raw_day.get("name", slug)),
            prescriptions=[dict_to_prescription(p, settings) for p in raw_day.get("prescriptions", [])],
        )

    progressions = {}
    for raw in d.get("progressions") or []:
        progression = progression_from_dict(raw)
        if progression.id in progressions:
            raise ValidationFailed(f"duplicate progression id '{progression.id}'")
        progressions[progression.id] = progression

    lookups = d.get("lookups") or {}
    return ProgramDefinition(
        id=program_id,
        name=str(d["name"]),
        description=str(d.get("description") or "").strip(),
        lifts=[str(lift) for lift in d["lifts"]],
        cycle_weeks=int(d.get("cycle_weeks", 1)),
        days=days,
        progressions=progressions,
        links=[dict_to_program_progression(link, program_id) for link in d.get("links") or []],
        weekly_lookup=dict_to_weekly_lookup(lookups["weekly"]) if lookups.get("weekly") else None,
        daily_lookup=dict_to_daily_lookup(lookups["daily"]) if lookups.get("daily") else None,
        rotation_lookup=dict_to_rotation_lookup(lookups["rotation"]) if lookups.get("rotation") else None,
    )


def _load_yaml_file(path: Path) -> dict:
    """Load a YAML mapping; warn and return {} if it is unusable."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        warnings.warn(f"lift-engine: cannot read program file {path} ({exc})", stacklevel=3)
        return {}
    return data if isinstance(data, dict) else {}


def _get_bundled_programs_dir() -> Path | None:
    """Return path to the bundled programs/ data directory, or None if not found."""
    candidate = Path(str(importlib.resources.files("lift_engine").joinpath("programs")))
    return candidate if candidate.is_dir() else None


def _get_user_programs_dir() -> Path | None:
    """Return ~/.lift-engine/programs/ if it exists, else None."""
    p = get_user_dir() / "programs"
    return p if p.is_dir() else None


def load_program_file(path: str | Path, settings: EngineSettings | None = None) -> ProgramDefinition:
    """
    Load a single program file.

    Raises:
        ValidationFailed: If the file is unreadable or the program is invalid
    """
    path = Path(path)
    raw = _load_yaml_file(path)
    if not raw:
        raise ValidationFailed(f"{path} does not contain a program definition")
    return program_from_dict(raw, settings)


def load_programs_from_yaml(settings: EngineSettings | None = None) -> dict[str, ProgramDefinition]:
    """Return {program_id: ProgramDefinition} from bundled and user YAML files.

    Invalid files are skipped with a warning rather than aborting the load.
    """
    bundled_dir = _get_bundled_programs_dir()
    user_dir = _get_user_programs_dir()

    stems: dict[str, Path] = {}
    if bundled_dir is not None:
        for p in sorted(bundled_dir.glob("*.yaml")):
            stems[p.stem] = p

    user_only: list[Path] = []
    if user_dir is not None:
        for p in sorted(user_dir.glob("*.yaml")):
            if p.stem not in stems:
                user_only.append(p)

    raws: list[tuple[str, dict]] = []
    for stem, bundled_path in stems.items():
        raw = _load_yaml_file(bundled_path)
        if not raw:
            continue
        if user_dir is not None:
            user_path = user_dir / f"{stem}.yaml"
            if user_path.exists():
                user_raw = _load_yaml_file(user_path)
                if user_raw:
                    raw = deep_merge(raw, user_raw)
        raws.append((stem, raw))
    for p in user_only:
        raw = _load_yaml_file(p)
        if raw:
            raws.append((p.stem, raw))

    result: dict[str, ProgramDefinition] = {}
    for stem, raw in raws:
        try:
            program = program_from_dict(raw, settings)
        except ValidationFailed as exc:
            warnings.warn(f"lift-engine: skipping program '{stem}' ({exc})", stacklevel=2)
            continue
        result[program.id] = program
    return result


def load_catalog(
    extra_files: list[Path] | None = None,
    settings: EngineSettings | None = None,
) -> ProgramCatalog:
    """
    Build a ProgramCatalog from bundled, user and explicitly named programs.

    Args:
        extra_files: Additional program files (e.g. from --program-file)
        settings: Engine defaults for strategies and schemes

    Returns:
        ProgramCatalog
    """
    catalog = ProgramCatalog()
    for program in load_programs_from_yaml(settings).values():
        catalog.add_program(program)
    for path in extra_files or []:
        catalog.add_program(load_program_file(path, settings))
    return catalog
