"""
Lookup tables and the modifier overlay.

A program can attach three lookup tables to its prescriptions:

- Weekly:   keyed by week number (1-based), e.g. 5/3/1 wave percentages
- Daily:    keyed by day identifier (case-insensitive), e.g. heavy/light days
- Rotation: keyed by rotation position (0-based), e.g. lift focus rotation

Resolution threads a Modifiers value through the layers in a fixed order,
Weekly → Daily → Rotation.  Each layer is a pure transform; a layer with no
configured table or no matching entry returns its input unchanged, so later
layers win whenever they set something.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable

from .config import INTENSITY_LEVELS, MAX_LOOKUP_NAME_LENGTH
from .errors import ValidationFailed

if TYPE_CHECKING:
    from .ports import LookupStore


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


def _validate_overrides(
    percentage: float | None,
    percentage_modifier: float | None,
    reps: tuple[int, ...] | None,
    intensity_level: str | None,
) -> None:
    if percentage is not None and percentage <= 0:
        raise ValidationFailed("percentage must be positive")
    if percentage_modifier is not None and percentage_modifier <= 0:
        raise ValidationFailed("percentage_modifier must be positive")
    if reps is not None:
        if not reps:
            raise ValidationFailed("reps override must not be empty")
        if any(r < 1 for r in reps):
            raise ValidationFailed("reps overrides must be at least 1")
    if intensity_level is not None and intensity_level not in INTENSITY_LEVELS:
        raise ValidationFailed(
            f"Invalid intensity level: {intensity_level!r}. Must be one of {', '.join(INTENSITY_LEVELS)}"
        )


def _as_tuple(values) -> tuple | None:
    return tuple(values) if values is not None else None


@dataclass(frozen=True)
class WeeklyEntry:
    """
    Modifiers for one program week.

    percentages/reps are per-set arrays (5/3/1 style waves); percentage is
    a single value for every set.  percentage_modifier scales whatever
    percentage is current (90 means 90%).
    """

    week_number: int
    percentages: tuple[float, ...] | None = None
    reps: tuple[int, ...] | None = None
    percentage: float | None = None
    percentage_modifier: float | None = None
    intensity_level: str | None = None

    def __post_init__(self) -> None:
        """Validate weekly entry."""
        object.__setattr__(self, "percentages", _as_tuple(self.percentages))
        object.__setattr__(self, "reps", _as_tuple(self.reps))
        if self.week_number < 1:
            raise ValidationFailed("week_number must be at least 1")
        if self.percentages is not None:
            if not self.percentages:
                raise ValidationFailed("percentages must not be empty")
            if any(p <= 0 for p in self.percentages):
                raise ValidationFailed("percentages must be positive")
            if self.reps is not None and len(self.reps) != len(self.percentages):
                raise ValidationFailed("percentages and reps arrays must have the same length")
        _validate_overrides(self.percentage, self.percentage_modifier, self.reps, self.intensity_level)


@dataclass(frozen=True)
class DailyEntry:
    """Modifiers for a named training day (heavy, light, ...)."""

    day_identifier: str
    percentage: float | None = None
    percentage_modifier: float | None = None
    reps: tuple[int, ...] | None = None
    intensity_level: str | None = None

    def __post_init__(self) -> None:
        """Validate daily entry and normalise the identifier."""
        if not self.day_identifier or not self.day_identifier.strip():
            raise ValidationFailed("day_identifier is required")
        object.__setattr__(self, "day_identifier", self.day_identifier.strip().lower())
        object.__setattr__(self, "reps", _as_tuple(self.reps))
        _validate_overrides(self.percentage, self.percentage_modifier, self.reps, self.intensity_level)


@dataclass(frozen=True)
class RotationEntry:
    """
    Modifiers for one rotation position.

    When lift_id is set the entry marks that lift as the focus of the
    position and only applies to prescriptions for it.
    """

    position: int
    lift_id: str | None = None
    description: str = ""
    percentage: float | None = None
    percentage_modifier: float | None = None
    reps: tuple[int, ...] | None = None
    intensity_level: str | None = None

    def __post_init__(self) -> None:
        """Validate rotation entry."""
        object.__setattr__(self, "reps", _as_tuple(self.reps))
        if self.position < 0:
            raise ValidationFailed("position must be non-negative")
        _validate_overrides(self.percentage, self.percentage_modifier, self.reps, self.intensity_level)

    def applies_to(self, lift_id: str) -> bool:
        return self.lift_id is None or self.lift_id == lift_id


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def _validate_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationFailed("lookup name is required")
    if len(name) > MAX_LOOKUP_NAME_LENGTH:
        raise ValidationFailed(f"lookup name must be at most {MAX_LOOKUP_NAME_LENGTH} characters")


def _check_unique(keys: list, what: str) -> None:
    seen = set()
    for k in keys:
        if k in seen:
            raise ValidationFailed(f"duplicate {what}: {k!r}")
        seen.add(k)


@dataclass(frozen=True)
class WeeklyLookup:
    """Week-number → WeeklyEntry table."""

    id: str
    name: str
    entries: tuple[WeeklyEntry, ...] = ()

    def __post_init__(self) -> None:
        """Validate table and key uniqueness."""
        _validate_name(self.name)
        object.__setattr__(self, "entries", tuple(self.entries))
        _check_unique([e.week_number for e in self.entries], "week_number")

    def get(self, week_number: int) -> WeeklyEntry | None:
        for entry in self.entries:
            if entry.week_number == week_number:
                return entry
        return None


@dataclass(frozen=True)
class DailyLookup:
    """Day-identifier → DailyEntry table (identifiers are case-insensitive)."""

    id: str
    name: str
    entries: tuple[DailyEntry, ...] = ()

    def __post_init__(self) -> None:
        """Validate table and key uniqueness."""
        _validate_name(self.name)
        object.__setattr__(self, "entries", tuple(self.entries))
        _check_unique([e.day_identifier for e in self.entries], "day_identifier")

    def get(self, day_identifier: str) -> DailyEntry | None:
        wanted = day_identifier.strip().lower()
        for entry in self.entries:
            if entry.day_identifier == wanted:
                return entry
        return None


@dataclass(frozen=True)
class RotationLookup:
    """Position → RotationEntry table."""

    id: str
    name: str
    entries: tuple[RotationEntry, ...] = ()

    def __post_init__(self) -> None:
        """Validate table and key uniqueness."""
        _validate_name(self.name)
        object.__setattr__(self, "entries", tuple(self.entries))
        _check_unique([e.position for e in self.entries], "position")

    def get(self, position: int) -> RotationEntry | None:
        for entry in self.entries:
            if entry.position == position:
                return entry
        return None


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LookupContext:
    """Where in the program a prescription is being resolved."""

    week_number: int | None = None
    day_identifier: str | None = None
    rotation_position: int | None = None
    weekly_lookup_id: str | None = None
    daily_lookup_id: str | None = None
    rotation_lookup_id: str | None = None


@dataclass(frozen=True)
class Modifiers:
    """
    Current percentage/rep state threaded through the overlay layers.

    set_percentages, when present, gives one percentage per set and takes
    precedence over percentage for weight calculation.
    """

    percentage: float | None = None
    set_percentages: tuple[float, ...] | None = None
    reps: tuple[int, ...] | None = None
    intensity_level: str | None = None


OverlayLayer = Callable[[Modifiers, LookupContext, "LookupStore", str], Modifiers]


def _overlay_entry(mods: Modifiers, entry, set_percentages: tuple[float, ...] | None = None) -> Modifiers:
    percentage = mods.percentage
    per_set = mods.set_percentages

    if set_percentages is not None:
        per_set = set_percentages
        percentage = max(set_percentages)
    if entry.percentage is not None:
        percentage = entry.percentage
        per_set = None
    if entry.percentage_modifier is not None:
        factor = entry.percentage_modifier / 100.0
        if percentage is not None:
            percentage = percentage * factor
        if per_set is not None:
            per_set = tuple(p * factor for p in per_set)

    return replace(
        mods,
        percentage=percentage,
        set_percentages=per_set,
        reps=entry.reps if entry.reps is not None else mods.reps,
        intensity_level=entry.intensity_level or mods.intensity_level,
    )


def weekly_layer(mods: Modifiers, ctx: LookupContext, store: LookupStore, lift_id: str) -> Modifiers:
    if ctx.weekly_lookup_id is None or ctx.week_number is None:
        return mods
    entry = store.get_weekly_entry(ctx.weekly_lookup_id, ctx.week_number)
    if entry is None:
        return mods
    return _overlay_entry(mods, entry, set_percentages=entry.percentages)


def daily_layer(mods: Modifiers, ctx: LookupContext, store: LookupStore, lift_id: str) -> Modifiers:
    if ctx.daily_lookup_id is None or not ctx.day_identifier:
        return mods
    entry = store.get_daily_entry(ctx.daily_lookup_id, ctx.day_identifier)
    if entry is None:
        return mods
    return _overlay_entry(mods, entry)


def rotation_layer(mods: Modifiers, ctx: LookupContext, store: LookupStore, lift_id: str) -> Modifiers:
    if ctx.rotation_lookup_id is None or ctx.rotation_position is None:
        return mods
    entry = store.get_rotation_entry(ctx.rotation_lookup_id, ctx.rotation_position)
    if entry is None or not entry.applies_to(lift_id):
        return mods
    return _overlay_entry(mods, entry)


OVERLAY_LAYERS: tuple[OverlayLayer, ...] = (weekly_layer, daily_layer, rotation_layer)


def apply_overlay(
    base: Modifiers,
    ctx: LookupContext,
    store: LookupStore | None,
    lift_id: str,
    layers: tuple[OverlayLayer, ...] = OVERLAY_LAYERS,
) -> Modifiers:
    """
    Run the lookup layers over base modifiers.

    Args:
        base: Modifiers taken from the prescription itself
        ctx: Week/day/rotation position and the lookup table ids
        store: Lookup source; None skips every layer
        lift_id: Lift being resolved (rotation entries may target one lift)
        layers: Ordered transforms, Weekly → Daily → Rotation by default

    Returns:
        Modifiers after every layer has been applied
    """
    if store is None:
        return base
    mods = base
    for layer in layers:
        mods = layer(mods, ctx, store, lift_id)
    return mods
