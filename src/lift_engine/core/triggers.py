"""
Trigger events: the training occurrences that may fire a progression.

Events are transient.  Each carries a context payload specific to its
trigger type; the payload is also copied into the audit log entry.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Final, Literal, Union

from .errors import ValidationFailed
from .models import as_utc

TriggerType = Literal["AFTER_SESSION", "AFTER_WEEK", "AFTER_CYCLE", "AFTER_SET", "ON_FAILURE"]
TRIGGER_TYPES: Final[tuple[str, ...]] = ("AFTER_SESSION", "AFTER_WEEK", "AFTER_CYCLE", "AFTER_SET", "ON_FAILURE")


def validate_trigger_type(trigger_type: str) -> TriggerType:
    """Raise ValidationFailed unless trigger_type is a known trigger."""
    if trigger_type not in TRIGGER_TYPES:
        raise ValidationFailed(
            f"Invalid trigger type: {trigger_type!r}. Must be one of {', '.join(TRIGGER_TYPES)}"
        )
    return trigger_type  # type: ignore[return-value]


@dataclass(frozen=True)
class SessionContext:
    """A workout session was completed."""

    session_id: str
    lifts_performed: tuple[str, ...] = ()
    day_slug: str = ""
    week_number: int = 1

    def __post_init__(self) -> None:
        """Validate session context."""
        if not self.session_id:
            raise ValidationFailed("session_id is required")
        if self.week_number < 1:
            raise ValidationFailed("week_number must be at least 1")
        object.__setattr__(self, "lifts_performed", tuple(self.lifts_performed))


@dataclass(frozen=True)
class WeekContext:
    """The user advanced from one program week to the next."""

    previous_week: int
    new_week: int
    cycle_iteration: int = 1

    def __post_init__(self) -> None:
        """Validate week context."""
        if self.previous_week < 1:
            raise ValidationFailed("previous_week must be at least 1")
        if self.new_week <= self.previous_week:
            raise ValidationFailed("new_week must be greater than previous_week")
        if self.cycle_iteration < 1:
            raise ValidationFailed("cycle_iteration must be at least 1")


@dataclass(frozen=True)
class CycleContext:
    """The user completed a full program cycle."""

    completed_cycle: int
    new_cycle: int
    total_weeks: int = 1

    def __post_init__(self) -> None:
        """Validate cycle context."""
        if self.completed_cycle < 1:
            raise ValidationFailed("completed_cycle must be at least 1")
        if self.new_cycle != self.completed_cycle + 1:
            raise ValidationFailed("new_cycle must equal completed_cycle + 1")
        if self.total_weeks < 1:
            raise ValidationFailed("total_weeks must be at least 1")


@dataclass(frozen=True)
class SetContext:
    """A single set was logged; AMRAP sets drive performance-based progressions."""

    lift_id: str
    reps_performed: int
    weight: float = 0.0
    is_amrap: bool = True
    set_id: str = ""
    max_reps: int | None = None  # rep ceiling of a rep range, read by DOUBLE

    def __post_init__(self) -> None:
        """Validate set context."""
        if not self.lift_id:
            raise ValidationFailed("lift_id is required")
        if self.reps_performed < 0:
            raise ValidationFailed("reps_performed must be non-negative")
        if self.weight < 0:
            raise ValidationFailed("weight must be non-negative")
        if self.max_reps is not None and self.max_reps < 1:
            raise ValidationFailed("max_reps must be at least 1")


@dataclass(frozen=True)
class FailureContext:
    """
    A set fell short of its target reps.

    consecutive_failures counts this failure and the failed sets before it
    since the last success or deload, per (user, lift, progression).
    progression_id names the progression the count belongs to.
    """

    lift_id: str
    target_reps: int
    reps_performed: int
    consecutive_failures: int
    weight: float = 0.0
    set_id: str = ""
    progression_id: str = ""

    def __post_init__(self) -> None:
        """Validate failure context."""
        if not self.lift_id:
            raise ValidationFailed("lift_id is required")
        if self.target_reps < 1:
            raise ValidationFailed("target_reps must be at least 1")
        if not 0 <= self.reps_performed < self.target_reps:
            raise ValidationFailed("reps_performed must be below target_reps for a failure")
        if self.consecutive_failures < 1:
            raise ValidationFailed("consecutive_failures must be at least 1")
        if self.weight < 0:
            raise ValidationFailed("weight must be non-negative")


TriggerContext = Union[SessionContext, WeekContext, CycleContext, SetContext, FailureContext]

CONTEXT_TYPES: Final[dict[str, type]] = {
    "AFTER_SESSION": SessionContext,
    "AFTER_WEEK": WeekContext,
    "AFTER_CYCLE": CycleContext,
    "AFTER_SET": SetContext,
    "ON_FAILURE": FailureContext,
}


@dataclass(frozen=True)
class TriggerEvent:
    """
    A discrete training occurrence delivered to the dispatcher.

    timestamp becomes the applied_at of every log entry written for this
    event, so redelivering the same event is recognised as a duplicate.
    """

    trigger_type: TriggerType
    user_id: str
    timestamp: datetime
    context: TriggerContext
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate that the context matches the trigger type."""
        validate_trigger_type(self.trigger_type)
        if not self.user_id:
            raise ValidationFailed("user_id is required")
        object.__setattr__(self, "timestamp", as_utc(self.timestamp, "timestamp"))
        expected = CONTEXT_TYPES[self.trigger_type]
        if not isinstance(self.context, expected):
            raise ValidationFailed(
                f"{self.trigger_type} requires {expected.__name__}, got {type(self.context).__name__}"
            )

    def context_dict(self) -> dict[str, Any]:
        """Context payload as plain data for the audit log."""
        data = asdict(self.context)
        if isinstance(self.context, SessionContext):
            data["lifts_performed"] = list(self.context.lifts_performed)
        if self.metadata:
            data.update(self.metadata)
        return data
