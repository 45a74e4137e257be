"""
Progression strategies: how a trigger event changes a reference max.

Every variant implements

    apply(current_max, event, lift_id, override_increment=None) -> ProgressionResult

and never touches storage; the dispatcher owns reads, writes and the audit
log.  A strategy that does not fire for the event returns applied=False
with a human-readable reason.

Variants (type discriminator → class):
    LINEAR    - fixed increment after a session (lift performed) or week
    CYCLE     - fixed increment at cycle rollover
    GREYSKULL - AMRAP reps band: deload / +increment / +2×increment
    AMRAP     - AMRAP reps thresholds, highest threshold met wins (nSuns)
    DOUBLE    - fixed increment once a set reaches the top of its rep range
    DELOAD_ON_FAILURE - cut the max after N consecutive failed sets
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from .config import (
    GREYSKULL_MAIN_DELOAD_PERCENT,
    GREYSKULL_MAIN_DOUBLE_THRESHOLD,
    GREYSKULL_MAIN_MIN_REPS,
    ROUNDING_DECIMALS,
)
from .errors import InvalidParameter, ValidationFailed
from .models import MaxKind, ProgressionResult, validate_max_kind
from .triggers import FailureContext, SessionContext, SetContext, TriggerEvent, TriggerType

LINEAR_TRIGGERS: tuple[str, ...] = ("AFTER_SESSION", "AFTER_WEEK")


def _validate_identity(id: str, name: str) -> None:
    if not id or not str(id).strip():
        raise ValidationFailed("progression id is required")
    if not name or not str(name).strip():
        raise ValidationFailed("progression name is required")


def _applied(current_max: float, new_value: float, reason: str) -> ProgressionResult:
    new_value = round(max(new_value, 0.0), ROUNDING_DECIMALS)
    return ProgressionResult(
        applied=True,
        previous_value=current_max,
        new_value=new_value,
        delta=round(new_value - current_max, ROUNDING_DECIMALS),
        reason=reason,
    )


class Progression(ABC):
    """Base class for progression variants."""

    type_name: ClassVar[str]

    id: str
    name: str
    max_kind: MaxKind
    trigger_type: TriggerType

    def apply(
        self,
        current_max: float,
        event: TriggerEvent,
        lift_id: str,
        override_increment: float | None = None,
    ) -> ProgressionResult:
        """
        Compute the new max for lift_id in response to event.

        Args:
            current_max: Current value of the max this progression updates
            event: Trigger event being processed
            lift_id: Lift being progressed
            override_increment: Per-lift increment from the program link

        Returns:
            ProgressionResult; applied=False when the event does not qualify
        """
        if event.trigger_type != self.trigger_type:
            return ProgressionResult.skipped(
                current_max, f"{self.type_name} fires on {self.trigger_type}, not {event.trigger_type}"
            )
        return self._apply(current_max, event, lift_id, override_increment)

    @abstractmethod
    def _apply(
        self,
        current_max: float,
        event: TriggerEvent,
        lift_id: str,
        override_increment: float | None,
    ) -> ProgressionResult:
        """Variant-specific logic; the trigger type already matches."""

    @abstractmethod
    def params(self) -> dict[str, Any]:
        """Type-specific parameters for serialization."""

    @classmethod
    @abstractmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> Progression:
        """Build the variant from its parameter dict."""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type_name, **self.params()}


PROGRESSION_REGISTRY: dict[str, type[Progression]] = {}


def register_progression(cls: type[Progression]) -> type[Progression]:
    """Class decorator adding a variant to the registry under cls.type_name."""
    PROGRESSION_REGISTRY[cls.type_name] = cls
    return cls


def _effective_increment(increment: float, override_increment: float | None) -> float:
    return override_increment if override_increment is not None else increment


@register_progression
@dataclass(frozen=True)
class LinearProgression(Progression):
    """Add a fixed increment after every session (lift performed) or every week."""

    type_name: ClassVar[str] = "LINEAR"

    id: str
    name: str
    increment: float
    trigger_type: TriggerType = "AFTER_SESSION"
    max_kind: MaxKind = "TRAINING_MAX"

    def __post_init__(self) -> None:
        """Validate progression parameters."""
        _validate_identity(self.id, self.name)
        validate_max_kind(self.max_kind)
        if self.increment <= 0:
            raise InvalidParameter("increment must be positive")
        if self.trigger_type not in LINEAR_TRIGGERS:
            raise InvalidParameter(f"LINEAR trigger_type must be one of {', '.join(LINEAR_TRIGGERS)}")

    def _apply(self, current_max, event, lift_id, override_increment):
        if isinstance(event.context, SessionContext) and lift_id not in event.context.lifts_performed:
            return ProgressionResult.skipped(current_max, f"{lift_id} not performed in session")
        step = _effective_increment(self.increment, override_increment)
        return _applied(current_max, current_max + step, f"+{step:g} linear")

    def params(self) -> dict[str, Any]:
        return {"increment": self.increment, "trigger_type": self.trigger_type, "max_kind": self.max_kind}

    @classmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> LinearProgression:
        if "increment" not in params:
            raise ValidationFailed("LINEAR requires 'increment'")
        return cls(
            id=id,
            name=name,
            increment=float(params["increment"]),
            trigger_type=str(params.get("trigger_type", "AFTER_SESSION")).upper(),  # type: ignore[arg-type]
            max_kind=params.get("max_kind", "TRAINING_MAX"),
        )


@register_progression
@dataclass(frozen=True)
class CycleProgression(Progression):
    """Add a fixed increment when a program cycle completes (5/3/1 style)."""

    type_name: ClassVar[str] = "CYCLE"
    trigger_type: ClassVar[TriggerType] = "AFTER_CYCLE"

    id: str
    name: str
    increment: float
    max_kind: MaxKind = "TRAINING_MAX"

    def __post_init__(self) -> None:
        """Validate progression parameters."""
        _validate_identity(self.id, self.name)
        validate_max_kind(self.max_kind)
        if self.increment <= 0:
            raise InvalidParameter("increment must be positive")

    def _apply(self, current_max, event, lift_id, override_increment):
        step = _effective_increment(self.increment, override_increment)
        return _applied(current_max, current_max + step, f"+{step:g} cycle")

    def params(self) -> dict[str, Any]:
        return {"increment": self.increment, "max_kind": self.max_kind}

    @classmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> CycleProgression:
        if "increment" not in params:
            raise ValidationFailed("CYCLE requires 'increment'")
        return cls(id=id, name=name, increment=float(params["increment"]), max_kind=params.get("max_kind", "TRAINING_MAX"))


def _amrap_context(event: TriggerEvent, lift_id: str) -> SetContext | str:
    """Return the set context, or the reason it does not qualify."""
    ctx = event.context
    if not isinstance(ctx, SetContext):
        return "no set context"
    if ctx.lift_id != lift_id:
        return f"set was for {ctx.lift_id}, not {lift_id}"
    if not ctx.is_amrap:
        return "set was not AMRAP"
    return ctx


@register_progression
@dataclass(frozen=True)
class GreySkullProgression(Progression):
    """
    Three-band AMRAP progression.

    reps < min_reps            → max × (1 − deload_percent)
    reps ≥ double_threshold    → max + 2 × increment
    otherwise                  → max + increment

    min_reps itself earns the standard increment and double_threshold itself
    earns the double increment.
    """

    type_name: ClassVar[str] = "GREYSKULL"
    trigger_type: ClassVar[TriggerType] = "AFTER_SET"

    id: str
    name: str
    increment: float
    min_reps: int = GREYSKULL_MAIN_MIN_REPS
    double_threshold: int = GREYSKULL_MAIN_DOUBLE_THRESHOLD
    deload_percent: float = GREYSKULL_MAIN_DELOAD_PERCENT
    max_kind: MaxKind = "TRAINING_MAX"

    def __post_init__(self) -> None:
        """Validate progression parameters."""
        _validate_identity(self.id, self.name)
        validate_max_kind(self.max_kind)
        if self.increment <= 0:
            raise InvalidParameter("increment must be positive")
        if self.min_reps < 1:
            raise InvalidParameter("min_reps must be at least 1")
        if self.double_threshold <= self.min_reps:
            raise InvalidParameter("double_threshold must be greater than min_reps")
        if not 0 < self.deload_percent <= 1:
            raise InvalidParameter("deload_percent must be in (0, 1]")

    def band(self, reps_performed: int) -> str:
        """Name of the band reps_performed falls in: deload, double or standard."""
        if reps_performed < self.min_reps:
            return "deload"
        if reps_performed >= self.double_threshold:
            return "double"
        return "standard"

    def _apply(self, current_max, event, lift_id, override_increment):
        ctx = _amrap_context(event, lift_id)
        if isinstance(ctx, str):
            return ProgressionResult.skipped(current_max, ctx)
        step = _effective_increment(self.increment, override_increment)
        band = self.band(ctx.reps_performed)
        if band == "deload":
            new_value = current_max - current_max * self.deload_percent
            return _applied(current_max, new_value, f"{ctx.reps_performed} < {self.min_reps} reps: deload {self.deload_percent:.0%}")
        if band == "double":
            return _applied(current_max, current_max + 2 * step, f"{ctx.reps_performed} reps: double increment")
        return _applied(current_max, current_max + step, f"{ctx.reps_performed} reps: standard increment")

    def params(self) -> dict[str, Any]:
        return {
            "increment": self.increment,
            "min_reps": self.min_reps,
            "double_threshold": self.double_threshold,
            "deload_percent": self.deload_percent,
            "max_kind": self.max_kind,
        }

    @classmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> GreySkullProgression:
        if "increment" not in params:
            raise ValidationFailed("GREYSKULL requires 'increment'")
        return cls(
            id=id,
            name=name,
            increment=float(params["increment"]),
            min_reps=int(params.get("min_reps", GREYSKULL_MAIN_MIN_REPS)),
            double_threshold=int(params.get("double_threshold", GREYSKULL_MAIN_DOUBLE_THRESHOLD)),
            deload_percent=float(params.get("deload_percent", GREYSKULL_MAIN_DELOAD_PERCENT)),
            max_kind=params.get("max_kind", "TRAINING_MAX"),
        )


@dataclass(frozen=True)
class RepThreshold:
    """AMRAP reps at or above min_reps earn increment."""

    min_reps: int
    increment: float

    def __post_init__(self) -> None:
        """Validate threshold."""
        if self.min_reps < 0:
            raise InvalidParameter("threshold min_reps must be non-negative")
        if self.increment < 0:
            raise InvalidParameter("threshold increment must be non-negative")


@register_progression
@dataclass(frozen=True)
class AmrapProgression(Progression):
    """
    Threshold table on AMRAP reps (nSuns style).

    The highest threshold whose min_reps is met decides the increment.
    Below the lowest threshold nothing is applied.  An override increment
    replaces the matched threshold's increment.
    """

    type_name: ClassVar[str] = "AMRAP"
    trigger_type: ClassVar[TriggerType] = "AFTER_SET"

    id: str
    name: str
    thresholds: tuple[RepThreshold, ...]
    max_kind: MaxKind = "TRAINING_MAX"

    def __post_init__(self) -> None:
        """Validate and sort thresholds."""
        _validate_identity(self.id, self.name)
        validate_max_kind(self.max_kind)
        thresholds = tuple(sorted(self.thresholds, key=lambda t: t.min_reps))
        if not thresholds:
            raise InvalidParameter("AMRAP requires at least one threshold")
        reps = [t.min_reps for t in thresholds]
        if len(set(reps)) != len(reps):
            raise InvalidParameter("threshold min_reps values must be unique")
        object.__setattr__(self, "thresholds", thresholds)

    def matching_threshold(self, reps_performed: int) -> RepThreshold | None:
        matched = None
        for threshold in self.thresholds:
            if reps_performed >= threshold.min_reps:
                matched = threshold
        return matched

    def _apply(self, current_max, event, lift_id, override_increment):
        ctx = _amrap_context(event, lift_id)
        if isinstance(ctx, str):
            return ProgressionResult.skipped(current_max, ctx)
        threshold = self.matching_threshold(ctx.reps_performed)
        if threshold is None:
            return ProgressionResult.skipped(current_max, f"{ctx.reps_performed} reps below every threshold")
        step = _effective_increment(threshold.increment, override_increment)
        if step == 0:
            return ProgressionResult.skipped(current_max, f"{ctx.reps_performed} reps: hold")
        return _applied(current_max, current_max + step, f"{ctx.reps_performed} reps ≥ {threshold.min_reps}: +{step:g}")

    def params(self) -> dict[str, Any]:
        return {
            "thresholds": [{"min_reps": t.min_reps, "increment": t.increment} for t in self.thresholds],
            "max_kind": self.max_kind,
        }

    @classmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> AmrapProgression:
        raw = params.get("thresholds")
        if not isinstance(raw, list):
            raise ValidationFailed("AMRAP requires a 'thresholds' list")
        thresholds = []
        for t in raw:
            if not isinstance(t, dict) or {"min_reps", "increment"} - set(t):
                raise ValidationFailed("each threshold needs 'min_reps' and 'increment'")
            thresholds.append(RepThreshold(min_reps=int(t["min_reps"]), increment=float(t["increment"])))
        return cls(id=id, name=name, thresholds=tuple(thresholds), max_kind=params.get("max_kind", "TRAINING_MAX"))

@register_progression
@dataclass(frozen=True)
class DoubleProgression(Progression):
    """
    Double progression over a rep range.

    Reps climb at a fixed weight; once a set reaches the range's ceiling
    (SetContext.max_reps) the max gains increment and reps start over.
    """

    type_name: ClassVar[str] = "DOUBLE"
    trigger_type: ClassVar[TriggerType] = "AFTER_SET"

    id: str
    name: str
    increment: float
    max_kind: MaxKind = "TRAINING_MAX"

    def __post_init__(self) -> None:
        """Validate progression parameters."""
        _validate_identity(self.id, self.name)
        validate_max_kind(self.max_kind)
        if self.increment <= 0:
            raise InvalidParameter("increment must be positive")

    def _apply(self, current_max, event, lift_id, override_increment):
        ctx = event.context
        if not isinstance(ctx, SetContext):
            return ProgressionResult.skipped(current_max, "no set context")
        if ctx.lift_id != lift_id:
            return ProgressionResult.skipped(current_max, f"set was for {ctx.lift_id}, not {lift_id}")
        if ctx.max_reps is None:
            return ProgressionResult.skipped(current_max, "set has no rep ceiling")
        if ctx.reps_performed < ctx.max_reps:
            return ProgressionResult.skipped(
                current_max, f"rep ceiling not reached: {ctx.reps_performed} of {ctx.max_reps}"
            )
        step = _effective_increment(self.increment, override_increment)
        return _applied(current_max, current_max + step, f"{ctx.reps_performed} reps hit ceiling: +{step:g}")

    def params(self) -> dict[str, Any]:
        return {"increment": self.increment, "max_kind": self.max_kind}

    @classmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> DoubleProgression:
        if "increment" not in params:
            raise ValidationFailed("DOUBLE requires 'increment'")
        return cls(id=id, name=name, increment=float(params["increment"]), max_kind=params.get("max_kind", "TRAINING_MAX"))


DELOAD_TYPES: tuple[str, ...] = ("percent", "fixed")


@register_progression
@dataclass(frozen=True)
class DeloadOnFailureProgression(Progression):
    """
    Cut the max after repeated failed sets.

    Fires on ON_FAILURE once consecutive_failures reaches failure_threshold.
    deload_type "percent" removes deload_percent of the max, "fixed" removes
    deload_amount.  With reset_on_deload the dispatcher clears the failure
    streak after a deload is applied.
    """

    type_name: ClassVar[str] = "DELOAD_ON_FAILURE"
    trigger_type: ClassVar[TriggerType] = "ON_FAILURE"

    id: str
    name: str
    failure_threshold: int = 3
    deload_type: str = "percent"
    deload_percent: float = 0.1
    deload_amount: float = 0.0
    reset_on_deload: bool = True
    max_kind: MaxKind = "TRAINING_MAX"

    def __post_init__(self) -> None:
        """Validate progression parameters."""
        _validate_identity(self.id, self.name)
        validate_max_kind(self.max_kind)
        if self.failure_threshold < 1:
            raise InvalidParameter("failure_threshold must be at least 1")
        if self.deload_type not in DELOAD_TYPES:
            raise InvalidParameter(f"deload_type must be one of {', '.join(DELOAD_TYPES)}")
        if self.deload_type == "percent" and not 0 < self.deload_percent <= 1:
            raise InvalidParameter("deload_percent must be in (0, 1]")
        if self.deload_type == "fixed" and self.deload_amount <= 0:
            raise InvalidParameter("deload_amount must be positive for a fixed deload")

    def deload(self, current_max: float) -> float:
        """Amount taken off current_max when the threshold is met."""
        if self.deload_type == "percent":
            return current_max * self.deload_percent
        return self.deload_amount

    def _apply(self, current_max, event, lift_id, override_increment):
        ctx = event.context
        if not isinstance(ctx, FailureContext):
            return ProgressionResult.skipped(current_max, "no failure context")
        if ctx.lift_id != lift_id:
            return ProgressionResult.skipped(current_max, f"failure was for {ctx.lift_id}, not {lift_id}")
        if ctx.progression_id and ctx.progression_id != self.id:
            return ProgressionResult.skipped(current_max, f"failure count belongs to {ctx.progression_id}")
        if ctx.consecutive_failures < self.failure_threshold:
            return ProgressionResult.skipped(
                current_max, f"{ctx.consecutive_failures} of {self.failure_threshold} consecutive failures"
            )
        amount = self.deload(current_max)
        label = f"{self.deload_percent:.0%}" if self.deload_type == "percent" else f"{amount:g}"
        return _applied(
            current_max, current_max - amount, f"{ctx.consecutive_failures} consecutive failures: deload {label}"
        )

    def params(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "failure_threshold": self.failure_threshold,
            "deload_type": self.deload_type,
            "reset_on_deload": self.reset_on_deload,
            "max_kind": self.max_kind,
        }
        if self.deload_type == "percent":
            d["deload_percent"] = self.deload_percent
        else:
            d["deload_amount"] = self.deload_amount
        return d

    @classmethod
    def from_params(cls, id: str, name: str, params: dict[str, Any]) -> DeloadOnFailureProgression:
        return cls(
            id=id,
            name=name,
            failure_threshold=int(params.get("failure_threshold", 3)),
            deload_type=str(params.get("deload_type", "percent")).lower(),
            deload_percent=float(params.get("deload_percent", 0.1)),
            deload_amount=float(params.get("deload_amount", 0.0)),
            reset_on_deload=bool(params.get("reset_on_deload", True)),
            max_kind=params.get("max_kind", "TRAINING_MAX"),
        )



def progression_from_dict(d: dict[str, Any]) -> Progression:
    """
    Build a Progression from its serialized form.

    Args:
        d: Dict with "id", "name", "type" plus that variant's parameters

    Returns:
        Progression instance

    Raises:
        ValidationFailed: If the type is unknown or parameters are invalid
    """
    if not isinstance(d, dict):
        raise ValidationFailed("progression must be a mapping")
    type_name = str(d.get("type", "")).upper()
    cls = PROGRESSION_REGISTRY.get(type_name)
    if cls is None:
        valid = ", ".join(PROGRESSION_REGISTRY)
        raise ValidationFailed(f"Unknown progression type {d.get('type')!r}. Valid types: {valid}")
    params = {k: v for k, v in d.items() if k not in ("id", "name", "type")}
    try:
        return cls.from_params(str(d.get("id", "")), str(d.get("name", "")), params)
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ValidationFailed):
            raise
        raise ValidationFailed(f"{type_name}: {exc}") from exc
