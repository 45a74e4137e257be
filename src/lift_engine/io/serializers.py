"""
JSON serialization for lift-engine models.

Handles conversion between dataclasses and JSON-compatible dicts.
Timestamps are ISO-8601 strings; naive timestamps are read as UTC.
"""

import json
from datetime import datetime, timezone
from typing import Any

from ..core.config import EngineSettings
from ..core.errors import ValidationFailed
from ..core.load_strategies import load_strategy_from_dict
from ..core.lookups import DailyEntry, DailyLookup, RotationEntry, RotationLookup, WeeklyEntry, WeeklyLookup
from ..core.models import (
    FailureCounter,
    GeneratedSet,
    Prescription,
    ProgramProgression,
    ProgressionLogEntry,
    ReferenceMax,
    ResolvedPrescription,
)
from ..core.set_schemes import set_scheme_from_dict
from ..core.triggers import CONTEXT_TYPES, TriggerEvent, validate_trigger_type


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Args:
        value: ISO string or datetime

    Returns:
        Timezone-aware datetime (UTC if no offset was given)

    Raises:
        ValidationFailed: If the string is not ISO-8601
    """
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError as e:
            raise ValidationFailed(f"Invalid timestamp: {value!r}. Expected ISO-8601") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as ISO-8601."""
    return dt.isoformat()


def _require(d: dict, fields: tuple[str, ...], what: str) -> None:
    if not isinstance(d, dict):
        raise ValidationFailed(f"{what} must be a mapping")
    missing = [f for f in fields if f not in d]
    if missing:
        raise ValidationFailed(f"{what} missing fields: {missing}")


# ---------------------------------------------------------------------------
# Reference maxes and audit log
# ---------------------------------------------------------------------------


def reference_max_to_dict(m: ReferenceMax) -> dict[str, Any]:
    return {
        "user_id": m.user_id,
        "lift_id": m.lift_id,
        "max_kind": m.max_kind,
        "value": m.value,
        "effective_at": format_timestamp(m.effective_at),
    }


def dict_to_reference_max(d: dict[str, Any]) -> ReferenceMax:
    _require(d, ("user_id", "lift_id", "max_kind", "value", "effective_at"), "reference max")
    return ReferenceMax(
        user_id=str(d["user_id"]),
        lift_id=str(d["lift_id"]),
        max_kind=d["max_kind"],
        value=float(d["value"]),
        effective_at=parse_timestamp(d["effective_at"]),
    )


def log_entry_to_dict(e: ProgressionLogEntry) -> dict[str, Any]:
    return {
        "user_id": e.user_id,
        "progression_id": e.progression_id,
        "lift_id": e.lift_id,
        "max_kind": e.max_kind,
        "previous_value": e.previous_value,
        "new_value": e.new_value,
        "delta": e.delta,
        "trigger_type": e.trigger_type,
        "trigger_context": e.trigger_context,
        "applied_at": format_timestamp(e.applied_at),
    }


def dict_to_log_entry(d: dict[str, Any]) -> ProgressionLogEntry:
    _require(
        d,
        ("user_id", "progression_id", "lift_id", "max_kind", "previous_value", "new_value", "trigger_type", "applied_at"),
        "log entry",
    )
    previous = float(d["previous_value"])
    new = float(d["new_value"])
    return ProgressionLogEntry(
        user_id=str(d["user_id"]),
        progression_id=str(d["progression_id"]),
        lift_id=str(d["lift_id"]),
        max_kind=d["max_kind"],
        previous_value=previous,
        new_value=new,
        delta=float(d.get("delta", new - previous)),
        trigger_type=validate_trigger_type(d["trigger_type"]),
        applied_at=parse_timestamp(d["applied_at"]),
        trigger_context=dict(d.get("trigger_context") or {}),
    )

def failure_counter_to_dict(c: FailureCounter) -> dict[str, Any]:
    return {
        "user_id": c.user_id,
        "lift_id": c.lift_id,
        "progression_id": c.progression_id,
        "consecutive_failures": c.consecutive_failures,
        "total_failures": c.total_failures,
        "last_set_id": c.last_set_id,
        "last_failure_at": format_timestamp(c.last_failure_at) if c.last_failure_at else None,
    }


def dict_to_failure_counter(d: dict[str, Any]) -> FailureCounter:
    _require(d, ("user_id", "lift_id", "progression_id"), "failure counter")
    last = d.get("last_failure_at")
    return FailureCounter(
        user_id=str(d["user_id"]),
        lift_id=str(d["lift_id"]),
        progression_id=str(d["progression_id"]),
        consecutive_failures=int(d.get("consecutive_failures", 0)),
        total_failures=int(d.get("total_failures", 0)),
        last_set_id=str(d.get("last_set_id") or ""),
        last_failure_at=parse_timestamp(last) if last else None,
    )



# ---------------------------------------------------------------------------
# Trigger events
# ---------------------------------------------------------------------------


def trigger_event_to_dict(event: TriggerEvent) -> dict[str, Any]:
    return {
        "trigger_type": event.trigger_type,
        "user_id": event.user_id,
        "timestamp": format_timestamp(event.timestamp),
        "context": event.context_dict(),
    }


def dict_to_trigger_event(d: dict[str, Any]) -> TriggerEvent:
    """
    Parse a trigger event; the context dict is read according to trigger_type.

    Raises:
        ValidationFailed: If the trigger type is unknown or the context is malformed
    """
    _require(d, ("trigger_type", "user_id", "timestamp", "context"), "trigger event")
    trigger_type = validate_trigger_type(str(d["trigger_type"]).upper())
    context_cls = CONTEXT_TYPES[trigger_type]
    raw_ctx = dict(d["context"] or {})
    if "lifts_performed" in raw_ctx:
        raw_ctx["lifts_performed"] = tuple(raw_ctx["lifts_performed"])
    try:
        context = context_cls(**raw_ctx)
    except TypeError as e:
        raise ValidationFailed(f"Invalid {trigger_type} context: {e}") from e
    return TriggerEvent(
        trigger_type=trigger_type,
        user_id=str(d["user_id"]),
        timestamp=parse_timestamp(d["timestamp"]),
        context=context,
    )


# ---------------------------------------------------------------------------
# Prescriptions
# ---------------------------------------------------------------------------


def prescription_to_dict(p: Prescription) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": p.id,
        "lift_id": p.lift_id,
        "load_strategy": p.load_strategy.to_dict(),
        "set_scheme": p.set_scheme.to_dict(),
        "order": p.order,
    }
    if p.notes:
        d["notes"] = p.notes
    if p.rest_seconds is not None:
        d["rest_seconds"] = p.rest_seconds
    return d


def dict_to_prescription(d: dict[str, Any], settings: EngineSettings | None = None) -> Prescription:
    _require(d, ("id", "lift_id", "load_strategy", "set_scheme"), "prescription")
    rest = d.get("rest_seconds")
    return Prescription(
        id=str(d["id"]),
        lift_id=str(d["lift_id"]),
        load_strategy=load_strategy_from_dict(d["load_strategy"], settings),
        set_scheme=set_scheme_from_dict(d["set_scheme"], settings),
        order=int(d.get("order", 0)),
        notes=str(d.get("notes") or ""),
        rest_seconds=int(rest) if rest is not None else None,
    )


def generated_set_to_dict(s: GeneratedSet) -> dict[str, Any]:
    return {
        "set_number": s.set_number,
        "weight": s.weight,
        "target_reps": s.target_reps,
        "is_work_set": s.is_work_set,
        "is_amrap": s.is_amrap,
    }


def resolved_prescription_to_dict(r: ResolvedPrescription) -> dict[str, Any]:
    return {
        "prescription_id": r.prescription_id,
        "lift_id": r.lift_id,
        "percentage": r.percentage,
        "reference_max": r.reference_max,
        "intensity_level": r.intensity_level,
        "sets": [generated_set_to_dict(s) for s in r.sets],
        "notes": r.notes,
        "rest_seconds": r.rest_seconds,
    }


# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------


def _overrides(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if d.get("percentage") is not None:
        out["percentage"] = float(d["percentage"])
    if d.get("percentage_modifier") is not None:
        out["percentage_modifier"] = float(d["percentage_modifier"])
    if d.get("reps") is not None:
        out["reps"] = tuple(int(r) for r in d["reps"])
    if d.get("intensity_level") is not None:
        out["intensity_level"] = str(d["intensity_level"]).upper()
    return out


def dict_to_weekly_lookup(d: dict[str, Any]) -> WeeklyLookup:
    _require(d, ("id", "name", "entries"), "weekly lookup")
    entries = []
    for e in d["entries"]:
        _require(e, ("week_number",), "weekly entry")
        percentages = e.get("percentages")
        entries.append(
            WeeklyEntry(
                week_number=int(e["week_number"]),
                percentages=tuple(float(p) for p in percentages) if percentages is not None else None,
                **_overrides(e),
            )
        )
    return WeeklyLookup(id=str(d["id"]), name=str(d["name"]), entries=tuple(entries))


def dict_to_daily_lookup(d: dict[str, Any]) -> DailyLookup:
    _require(d, ("id", "name", "entries"), "daily lookup")
    entries = []
    for e in d["entries"]:
        _require(e, ("day_identifier",), "daily entry")
        entries.append(DailyEntry(day_identifier=str(e["day_identifier"]), **_overrides(e)))
    return DailyLookup(id=str(d["id"]), name=str(d["name"]), entries=tuple(entries))


def dict_to_rotation_lookup(d: dict[str, Any]) -> RotationLookup:
    _require(d, ("id", "name", "entries"), "rotation lookup")
    entries = []
    for e in d["entries"]:
        _require(e, ("position",), "rotation entry")
        entries.append(
            RotationEntry(
                position=int(e["position"]),
                lift_id=e.get("lift_id"),
                description=str(e.get("description") or ""),
                **_overrides(e),
            )
        )
    return RotationLookup(id=str(d["id"]), name=str(d["name"]), entries=tuple(entries))


# ---------------------------------------------------------------------------
# Program progressions
# ---------------------------------------------------------------------------


def dict_to_program_progression(d: dict[str, Any], program_id: str) -> ProgramProgression:
    _require(d, ("id", "progression_id"), "program progression")
    override = d.get("override_increment")
    return ProgramProgression(
        id=str(d["id"]),
        program_id=program_id,
        progression_id=str(d["progression_id"]),
        lift_id=d.get("lift_id"),
        priority=int(d.get("priority", 0)),
        enabled=bool(d.get("enabled", True)),
        override_increment=float(override) if override is not None else None,
    )


def program_progression_to_dict(pp: ProgramProgression) -> dict[str, Any]:
    return {
        "id": pp.id,
        "progression_id": pp.progression_id,
        "lift_id": pp.lift_id,
        "priority": pp.priority,
        "enabled": pp.enabled,
        "override_increment": pp.override_increment,
    }


def to_json_line(d: dict[str, Any]) -> str:
    """Serialize a dict to a single compact JSON line."""
    return json.dumps(d, separators=(",", ":"), sort_keys=True)
