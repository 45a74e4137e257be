"""
Data models for lift-engine.

Dataclasses for reference maxes, prescriptions and their resolved output,
program progression configuration, the progression audit log and failure
counters.
Validation happens in ``__post_init__`` and raises ValidationFailed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal

from .config import MAX_KINDS, MAX_NOTES_LENGTH
from .errors import ValidationFailed

if TYPE_CHECKING:
    from .load_strategies import LoadStrategy
    from .set_schemes import SetScheme

MaxKind = Literal["ONE_REP_MAX", "TRAINING_MAX"]
OutcomeStatus = Literal["APPLIED", "SKIPPED_IDEMPOTENT", "SKIPPED_NOT_APPLICABLE", "FAILED"]
BatchStatus = Literal["success", "error"]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime, name: str) -> datetime:
    """
    Normalise a timestamp to aware UTC.

    Naive values are taken to be UTC, matching how stored timestamps are
    parsed back, so one instant always compares and hashes the same way.
    """
    if not isinstance(value, datetime):
        raise ValidationFailed(f"{name} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_max_kind(max_kind: str) -> MaxKind:
    """Raise ValidationFailed unless max_kind is ONE_REP_MAX or TRAINING_MAX."""
    if max_kind not in MAX_KINDS:
        raise ValidationFailed(f"Invalid max kind: {max_kind!r}. Must be one of {', '.join(MAX_KINDS)}")
    return max_kind  # type: ignore[return-value]


def _require_id(value: str, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(f"{name} must be a non-empty string")


# ---------------------------------------------------------------------------
# Reference maxes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReferenceMax:
    """
    A stored strength number for one lift.

    Several values may exist per (user, lift, max_kind); the one with the
    latest effective_at is current.  Values are superseded, never deleted.
    """

    user_id: str
    lift_id: str
    max_kind: MaxKind
    value: float
    effective_at: datetime

    def __post_init__(self) -> None:
        """Validate max data."""
        _require_id(self.user_id, "user_id")
        _require_id(self.lift_id, "lift_id")
        validate_max_kind(self.max_kind)
        if self.value <= 0:
            raise ValidationFailed("max value must be positive")
        object.__setattr__(self, "effective_at", as_utc(self.effective_at, "effective_at"))

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.user_id, self.lift_id, self.max_kind)


# ---------------------------------------------------------------------------
# Prescriptions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeneratedSet:
    """One concrete set produced by a SetScheme.  Never persisted here."""

    set_number: int
    weight: float
    target_reps: int
    is_work_set: bool
    is_amrap: bool = False  # target_reps is a minimum; take the set to failure

    def __post_init__(self) -> None:
        """Validate set data."""
        if self.set_number < 1:
            raise ValidationFailed("set_number must be at least 1")
        if self.weight < 0:
            raise ValidationFailed("weight must be non-negative")
        if self.target_reps < 1:
            raise ValidationFailed("target_reps must be at least 1")


@dataclass(frozen=True)
class Prescription:
    """
    Abstract instruction: this lift, this load strategy, this set scheme.

    Resolved into concrete GeneratedSets at request time.
    """

    id: str
    lift_id: str
    load_strategy: LoadStrategy
    set_scheme: SetScheme
    order: int = 0
    notes: str = ""
    rest_seconds: int | None = None

    def __post_init__(self) -> None:
        """Validate prescription data."""
        _require_id(self.id, "prescription id")
        _require_id(self.lift_id, "lift_id")
        if self.order < 0:
            raise ValidationFailed("order must be non-negative")
        if len(self.notes) > MAX_NOTES_LENGTH:
            raise ValidationFailed(f"notes must be at most {MAX_NOTES_LENGTH} characters")
        if self.rest_seconds is not None and self.rest_seconds < 0:
            raise ValidationFailed("rest_seconds must be non-negative")


@dataclass(frozen=True)
class ResolvedPrescription:
    """A prescription turned into concrete sets for one user and day."""

    prescription_id: str
    lift_id: str
    sets: list[GeneratedSet]
    percentage: float | None = None  # effective percentage after lookups
    reference_max: float | None = None
    intensity_level: str | None = None
    notes: str = ""
    rest_seconds: int | None = None

    @property
    def work_sets(self) -> list[GeneratedSet]:
        return [s for s in self.sets if s.is_work_set]


@dataclass(frozen=True)
class BatchItemResult:
    """Per-prescription outcome of batch resolution."""

    prescription_id: str
    status: BatchStatus
    result: ResolvedPrescription | None = None
    error: str | None = None
    error_kind: str | None = None  # exception class name, e.g. "MaxNotFound"

    @property
    def ok(self) -> bool:
        return self.status == "success"


# ---------------------------------------------------------------------------
# Progression configuration and audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgramProgression:
    """
    Link between a program and a progression.

    lift_id=None makes this the program-wide default; a lift-specific row
    for the same progression takes precedence for that lift.
    """

    id: str
    program_id: str
    progression_id: str
    lift_id: str | None = None
    priority: int = 0
    enabled: bool = True
    override_increment: float | None = None

    def __post_init__(self) -> None:
        """Validate link data."""
        _require_id(self.id, "program progression id")
        _require_id(self.program_id, "program_id")
        _require_id(self.progression_id, "progression_id")
        if self.lift_id is not None:
            _require_id(self.lift_id, "lift_id")
        if self.override_increment is not None and self.override_increment <= 0:
            raise ValidationFailed("override_increment must be positive")


@dataclass(frozen=True)
class ProgressionLogEntry:
    """Immutable audit record of one applied progression."""

    user_id: str
    progression_id: str
    lift_id: str
    max_kind: MaxKind
    previous_value: float
    new_value: float
    delta: float
    trigger_type: str
    applied_at: datetime
    trigger_context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate log entry."""
        _require_id(self.user_id, "user_id")
        _require_id(self.progression_id, "progression_id")
        _require_id(self.lift_id, "lift_id")
        validate_max_kind(self.max_kind)
        if self.new_value < 0:
            raise ValidationFailed("new_value must be non-negative")
        object.__setattr__(self, "applied_at", as_utc(self.applied_at, "applied_at"))

    @property
    def key(self) -> tuple[str, str, str, str, datetime]:
        """Idempotency key; unique across the audit log."""
        return (self.user_id, self.progression_id, self.lift_id, self.trigger_type, self.applied_at)


@dataclass(frozen=True)
class ProgressionResult:
    """Outcome of Progression.apply for one lift."""

    applied: bool
    previous_value: float
    new_value: float
    delta: float = 0.0
    reason: str = ""

    @classmethod
    def skipped(cls, current_max: float, reason: str) -> ProgressionResult:
        return cls(applied=False, previous_value=current_max, new_value=current_max, delta=0.0, reason=reason)


@dataclass(frozen=True)
class ProgressionOutcome:
    """
    What the dispatcher did with one (progression, lift) pair.

    status is terminal: APPLIED, SKIPPED_IDEMPOTENT, SKIPPED_NOT_APPLICABLE
    or FAILED.  retryable is only meaningful for FAILED.
    """

    progression_id: str
    lift_id: str
    status: OutcomeStatus
    reason: str = ""
    max_kind: MaxKind | None = None
    program_progression_id: str | None = None
    result: ProgressionResult | None = None
    log_entry: ProgressionLogEntry | None = None
    retryable: bool = False

    @property
    def applied(self) -> bool:
        return self.status == "APPLIED"


# ---------------------------------------------------------------------------
# Failure tracking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FailureCounter:
    """
    Consecutive failed sets for one (user, lift, progression).

    A success or an applied deload (with reset_on_deload) zeroes the streak;
    total_failures keeps counting.  last_set_id lets a redelivered failure
    be recognised so it does not count twice.
    """

    user_id: str
    lift_id: str
    progression_id: str
    consecutive_failures: int = 0
    total_failures: int = 0
    last_set_id: str = ""
    last_failure_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate counter."""
        _require_id(self.user_id, "user_id")
        _require_id(self.lift_id, "lift_id")
        _require_id(self.progression_id, "progression_id")
        if self.consecutive_failures < 0 or self.total_failures < 0:
            raise ValidationFailed("failure counts must be non-negative")
        if self.last_failure_at is not None:
            object.__setattr__(self, "last_failure_at", as_utc(self.last_failure_at, "last_failure_at"))

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.user_id, self.lift_id, self.progression_id)

    def seen(self, set_id: str) -> bool:
        """True if set_id is the failure already counted last."""
        return bool(set_id) and set_id == self.last_set_id

    def record_failure(self, set_id: str, at: datetime) -> FailureCounter:
        return replace(
            self,
            consecutive_failures=self.consecutive_failures + 1,
            total_failures=self.total_failures + 1,
            last_set_id=set_id,
            last_failure_at=at,
        )

    def reset(self) -> FailureCounter:
        return replace(self, consecutive_failures=0)
