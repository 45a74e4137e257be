"""
In-process program configuration.

ProgramCatalog holds program definitions (lifts, training days, lookup
tables, progressions and their program links) plus user enrollments, and
serves them through the ProgramConfig and LookupStore interfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..core.errors import ValidationFailed
from ..core.lookups import (
    DailyEntry,
    DailyLookup,
    LookupContext,
    RotationEntry,
    RotationLookup,
    WeeklyEntry,
    WeeklyLookup,
)
from ..core.models import Prescription, ProgramProgression
from ..core.progressions import Progression


@dataclass
class TrainingDay:
    """A named day of a program and its ordered prescriptions."""

    slug: str
    name: str
    prescriptions: list[Prescription] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate day and sort prescriptions by order."""
        if not self.slug:
            raise ValidationFailed("day slug is required")
        ids = [p.id for p in self.prescriptions]
        if len(set(ids)) != len(ids):
            raise ValidationFailed(f"day '{self.slug}' has duplicate prescription ids")
        self.prescriptions = sorted(self.prescriptions, key=lambda p: p.order)


@dataclass
class ProgramDefinition:
    """
    A complete training program.

    progressions maps progression id → Progression; links ties them to the
    program (optionally per lift) with priority and override increments.
    """

    id: str
    name: str
    lifts: list[str]
    days: dict[str, TrainingDay] = field(default_factory=dict)
    progressions: dict[str, Progression] = field(default_factory=dict)
    links: list[ProgramProgression] = field(default_factory=list)
    weekly_lookup: WeeklyLookup | None = None
    daily_lookup: DailyLookup | None = None
    rotation_lookup: RotationLookup | None = None
    cycle_weeks: int = 1
    description: str = ""

    def __post_init__(self) -> None:
        """Validate cross-references inside the program."""
        if not self.id:
            raise ValidationFailed("program id is required")
        if not self.lifts:
            raise ValidationFailed(f"program '{self.id}' must list at least one lift")
        if self.cycle_weeks < 1:
            raise ValidationFailed("cycle_weeks must be at least 1")
        for day in self.days.values():
            for p in day.prescriptions:
                if p.lift_id not in self.lifts:
                    raise ValidationFailed(f"prescription '{p.id}' uses unknown lift '{p.lift_id}'")
        link_ids = [link.id for link in self.links]
        if len(set(link_ids)) != len(link_ids):
            raise ValidationFailed(f"program '{self.id}' has duplicate progression link ids")
        scoped = [(link.progression_id, link.lift_id) for link in self.links]
        if len(set(scoped)) != len(scoped):
            raise ValidationFailed(f"program '{self.id}' links a progression twice for the same lift")
        for link in self.links:
            if link.progression_id not in self.progressions:
                raise ValidationFailed(f"link '{link.id}' references unknown progression '{link.progression_id}'")
            if link.lift_id is not None and link.lift_id not in self.lifts:
                raise ValidationFailed(f"link '{link.id}' references unknown lift '{link.lift_id}'")

    def get_day(self, slug: str) -> TrainingDay:
        day = self.days.get(slug.lower())
        if day is None:
            valid = ", ".join(self.days)
            raise ValidationFailed(f"Unknown day '{slug}' in program '{self.id}'. Valid days: {valid}")
        return day

    def lookup_context(
        self,
        week_number: int | None = None,
        day_identifier: str | None = None,
        rotation_position: int | None = None,
    ) -> LookupContext:
        """LookupContext wired to this program's lookup tables."""
        return LookupContext(
            week_number=week_number,
            day_identifier=day_identifier,
            rotation_position=rotation_position,
            weekly_lookup_id=self.weekly_lookup.id if self.weekly_lookup else None,
            daily_lookup_id=self.daily_lookup.id if self.daily_lookup else None,
            rotation_lookup_id=self.rotation_lookup.id if self.rotation_lookup else None,
        )


class ProgramCatalog:
    """Programs, lookups, progressions and enrollments held in memory."""

    def __init__(self, programs: list[ProgramDefinition] | None = None):
        self._programs: dict[str, ProgramDefinition] = {}
        self._progressions: dict[str, Progression] = {}
        self._weekly: dict[str, WeeklyLookup] = {}
        self._daily: dict[str, DailyLookup] = {}
        self._rotation: dict[str, RotationLookup] = {}
        self._enrollments: dict[str, str] = {}
        for program in programs or []:
            self.add_program(program)

    def _register(self, registry: dict, item, what: str) -> None:
        existing = registry.get(item.id)
        if existing is not None and existing != item:
            raise ValidationFailed(f"{what} id '{item.id}' is already defined differently")
        registry[item.id] = item

    def add_program(self, program: ProgramDefinition) -> None:
        """Register a program and everything it defines."""
        for progression in program.progressions.values():
            self._register(self._progressions, progression, "progression")
        if program.weekly_lookup:
            self._register(self._weekly, program.weekly_lookup, "weekly lookup")
        if program.daily_lookup:
            self._register(self._daily, program.daily_lookup, "daily lookup")
        if program.rotation_lookup:
            self._register(self._rotation, program.rotation_lookup, "rotation lookup")
        self._programs[program.id] = program

    @property
    def programs(self) -> list[ProgramDefinition]:
        return list(self._programs.values())

    def get_program(self, program_id: str) -> ProgramDefinition:
        """
        Return a program by id.

        Raises:
            ValidationFailed: If program_id is not in the catalog
        """
        if program_id not in self._programs:
            valid = ", ".join(self._programs) or "(none)"
            raise ValidationFailed(f"Unknown program '{program_id}'. Valid IDs: {valid}")
        return self._programs[program_id]

    def enroll(self, user_id: str, program_id: str) -> None:
        self.get_program(program_id)
        self._enrollments[user_id] = program_id

    # -----------------------------------------------------------------------
    # ProgramConfig
    # -----------------------------------------------------------------------

    def get_enrolled_program(self, user_id: str) -> str | None:
        return self._enrollments.get(user_id)

    def get_program_lifts(self, program_id: str) -> list[str]:
        return list(self.get_program(program_id).lifts)

    def get_program_progressions(self, program_id: str, trigger_type: str) -> list[ProgramProgression]:
        program = self.get_program(program_id)
        links = [
            link
            for link in program.links
            if link.enabled and self._progressions[link.progression_id].trigger_type == trigger_type
        ]
        return sorted(links, key=lambda link: link.priority)

    def get_progression(self, progression_id: str) -> Progression | None:
        return self._progressions.get(progression_id)

    # -----------------------------------------------------------------------
    # LookupStore
    # -----------------------------------------------------------------------

    def get_weekly_entry(self, lookup_id: str, week_number: int) -> WeeklyEntry | None:
        table = self._weekly.get(lookup_id)
        return table.get(week_number) if table else None

    def get_daily_entry(self, lookup_id: str, day_identifier: str) -> DailyEntry | None:
        table = self._daily.get(lookup_id)
        return table.get(day_identifier) if table else None

    def get_rotation_entry(self, lookup_id: str, position: int) -> RotationEntry | None:
        table = self._rotation.get(lookup_id)
        return table.get(position) if table else None
