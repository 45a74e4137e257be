"""
Set schemes: how a working weight expands into an ordered list of sets.

Variants register under a ``type`` string (FIXED, RAMP, AMRAP); set_scheme_from_dict
dispatches on it.  Lookup overlays reach the scheme as keyword arguments:

    set_weights   - one pre-computed weight per set (weekly per-set waves)
    rep_overrides - reps by set index; sets past the end keep scheme reps
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from .config import DEFAULT_ROUNDING_DIRECTION, DEFAULT_ROUNDING_INCREMENT, DEFAULT_WORK_SET_THRESHOLD, EngineSettings
from .errors import InvalidParameter, ValidationFailed
from .models import GeneratedSet
from .rounding import round_weight


def _reps_at(index: int, rep_overrides: Sequence[int] | None, default: int) -> int:
    if rep_overrides is not None and index < len(rep_overrides):
        return int(rep_overrides[index])
    return default


class SetScheme(ABC):
    """Base class for set scheme variants."""

    type_name: ClassVar[str]

    @abstractmethod
    def generate_sets(
        self,
        base_weight: float,
        *,
        increment: float = DEFAULT_ROUNDING_INCREMENT,
        direction: str = DEFAULT_ROUNDING_DIRECTION,
        set_weights: Sequence[float] | None = None,
        rep_overrides: Sequence[int] | None = None,
    ) -> list[GeneratedSet]:
        """Expand base_weight into concrete sets numbered from 1."""

    @abstractmethod
    def params(self) -> dict[str, Any]:
        """Type-specific parameters for serialization."""

    @classmethod
    @abstractmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> SetScheme:
        """Build the variant from its parameter dict."""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type_name, **self.params()}


SET_SCHEME_REGISTRY: dict[str, type[SetScheme]] = {}


def register_set_scheme(cls: type[SetScheme]) -> type[SetScheme]:
    """Class decorator adding a variant to the registry under cls.type_name."""
    SET_SCHEME_REGISTRY[cls.type_name] = cls
    return cls


@register_set_scheme
@dataclass(frozen=True)
class Fixed(SetScheme):
    """N identical work sets (5x5, 3x5, ...)."""

    type_name: ClassVar[str] = "FIXED"

    sets: int
    reps: int

    def __post_init__(self) -> None:
        """Validate scheme parameters."""
        if self.sets < 1:
            raise InvalidParameter("sets must be at least 1")
        if self.reps < 1:
            raise InvalidParameter("reps must be at least 1")

    def generate_sets(
        self,
        base_weight: float,
        *,
        increment: float = DEFAULT_ROUNDING_INCREMENT,
        direction: str = DEFAULT_ROUNDING_DIRECTION,
        set_weights: Sequence[float] | None = None,
        rep_overrides: Sequence[int] | None = None,
    ) -> list[GeneratedSet]:
        # A per-set wave replaces the uniform shape: one set per wave entry
        if set_weights:
            return [
                GeneratedSet(
                    set_number=i + 1,
                    weight=float(w),
                    target_reps=_reps_at(i, rep_overrides, self.reps),
                    is_work_set=True,
                )
                for i, w in enumerate(set_weights)
            ]
        return [
            GeneratedSet(
                set_number=i + 1,
                weight=base_weight,
                target_reps=_reps_at(i, rep_overrides, self.reps),
                is_work_set=True,
            )
            for i in range(self.sets)
        ]

    def params(self) -> dict[str, Any]:
        return {"sets": self.sets, "reps": self.reps}

    @classmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> Fixed:
        missing = {"sets", "reps"} - set(params)
        if missing:
            raise ValidationFailed(f"FIXED missing fields: {sorted(missing)}")
        return cls(sets=int(params["sets"]), reps=int(params["reps"]))


@register_set_scheme
@dataclass(frozen=True)
class Amrap(SetScheme):
    """
    Straight sets at the working weight, the last one taken to failure.

    Every set targets min_reps.  The final set is flagged is_amrap; the reps
    logged for it are what AFTER_SET progressions (GREYSKULL, AMRAP) read.
    """

    type_name: ClassVar[str] = "AMRAP"

    sets: int
    min_reps: int

    def __post_init__(self) -> None:
        """Validate scheme parameters."""
        if self.sets < 1:
            raise InvalidParameter("sets must be at least 1")
        if self.min_reps < 1:
            raise InvalidParameter("min_reps must be at least 1")

    def generate_sets(
        self,
        base_weight: float,
        *,
        increment: float = DEFAULT_ROUNDING_INCREMENT,
        direction: str = DEFAULT_ROUNDING_DIRECTION,
        set_weights: Sequence[float] | None = None,
        rep_overrides: Sequence[int] | None = None,
    ) -> list[GeneratedSet]:
        weights = [float(w) for w in set_weights] if set_weights else [base_weight] * self.sets
        last = len(weights) - 1
        return [
            GeneratedSet(
                set_number=i + 1,
                weight=w,
                target_reps=_reps_at(i, rep_overrides, self.min_reps),
                is_work_set=True,
                is_amrap=i == last,
            )
            for i, w in enumerate(weights)
        ]

    def params(self) -> dict[str, Any]:
        return {"sets": self.sets, "min_reps": self.min_reps}

    @classmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> Amrap:
        missing = {"sets", "min_reps"} - set(params)
        if missing:
            raise ValidationFailed(f"AMRAP missing fields: {sorted(missing)}")
        return cls(sets=int(params["sets"]), min_reps=int(params["min_reps"]))

@dataclass(frozen=True)
class RampStep:
    """One step of a ramp: percentage of the working weight and reps."""

    percentage: float
    reps: int

    def __post_init__(self) -> None:
        """Validate step."""
        if self.percentage <= 0:
            raise InvalidParameter("ramp step percentage must be positive")
        if self.reps < 1:
            raise InvalidParameter("ramp step reps must be at least 1")


@register_set_scheme
@dataclass(frozen=True)
class Ramp(SetScheme):
    """
    Sets at increasing percentages of the working weight.

    Steps at or above work_set_threshold percent are work sets; the rest
    are warm-ups.
    """

    type_name: ClassVar[str] = "RAMP"

    steps: tuple[RampStep, ...]
    work_set_threshold: float = DEFAULT_WORK_SET_THRESHOLD

    def __post_init__(self) -> None:
        """Validate scheme parameters."""
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.steps:
            raise InvalidParameter("ramp requires at least one step")
        if not 0 < self.work_set_threshold <= 100:
            raise InvalidParameter("work_set_threshold must be in (0, 100]")

    def generate_sets(
        self,
        base_weight: float,
        *,
        increment: float = DEFAULT_ROUNDING_INCREMENT,
        direction: str = DEFAULT_ROUNDING_DIRECTION,
        set_weights: Sequence[float] | None = None,
        rep_overrides: Sequence[int] | None = None,
    ) -> list[GeneratedSet]:
        return [
            GeneratedSet(
                set_number=i + 1,
                weight=round_weight(base_weight * step.percentage / 100.0, increment, direction),
                target_reps=_reps_at(i, rep_overrides, step.reps),
                is_work_set=step.percentage >= self.work_set_threshold,
            )
            for i, step in enumerate(self.steps)
        ]

    def params(self) -> dict[str, Any]:
        return {
            "steps": [{"percentage": s.percentage, "reps": s.reps} for s in self.steps],
            "work_set_threshold": self.work_set_threshold,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> Ramp:
        raw_steps = params.get("steps")
        if not isinstance(raw_steps, list):
            raise ValidationFailed("RAMP requires a 'steps' list")
        steps = []
        for raw in raw_steps:
            if not isinstance(raw, dict) or {"percentage", "reps"} - set(raw):
                raise ValidationFailed("each ramp step needs 'percentage' and 'reps'")
            steps.append(RampStep(percentage=float(raw["percentage"]), reps=int(raw["reps"])))
        threshold = params.get("work_set_threshold")
        if threshold is None:
            threshold = settings.work_set_threshold if settings else DEFAULT_WORK_SET_THRESHOLD
        return cls(steps=tuple(steps), work_set_threshold=float(threshold))


def set_scheme_from_dict(d: dict[str, Any], settings: EngineSettings | None = None) -> SetScheme:
    """
    Build a SetScheme from its serialized form.

    Args:
        d: Dict with a "type" discriminator plus that variant's parameters
        settings: Source of the default work-set threshold

    Returns:
        SetScheme instance

    Raises:
        ValidationFailed: If the type is unknown or parameters are invalid
    """
    if not isinstance(d, dict):
        raise ValidationFailed("set scheme must be a mapping")
    type_name = str(d.get("type", "")).upper()
    cls = SET_SCHEME_REGISTRY.get(type_name)
    if cls is None:
        valid = ", ".join(SET_SCHEME_REGISTRY)
        raise ValidationFailed(f"Unknown set scheme type {d.get('type')!r}. Valid types: {valid}")
    params = {k: v for k, v in d.items() if k != "type"}
    try:
        return cls.from_params(params, settings)
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ValidationFailed):
            raise
        raise ValidationFailed(f"{type_name}: {exc}") from exc
