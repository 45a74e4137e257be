"""
Load strategies: how a prescription turns a reference max into a weight.

Strategies are a closed set of type-discriminated variants.  Each variant
registers itself under its ``type`` string, and load_strategy_from_dict()
dispatches on that string, so adding a variant never touches callers.

Variants:
    PERCENT_OF   - percentage of a ONE_REP_MAX or TRAINING_MAX, rounded
    FIXED_WEIGHT - a constant weight, rounded; needs no reference max
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from .config import DEFAULT_ROUNDING_DIRECTION, DEFAULT_ROUNDING_INCREMENT, EngineSettings
from .errors import InvalidParameter, ValidationFailed
from .models import MaxKind, validate_max_kind
from .rounding import round_weight, validate_direction


def percent_of(
    reference_max: float,
    percentage: float,
    increment: float = DEFAULT_ROUNDING_INCREMENT,
    direction: str = DEFAULT_ROUNDING_DIRECTION,
) -> float:
    """
    Weight at a percentage of a reference max.

    weight = round(reference_max × percentage / 100, increment, direction)

    Percentages above 100 are allowed (overload work).

    Args:
        reference_max: 1RM or training max, must be positive
        percentage: Percent of the max, must be positive
        increment: Rounding step
        direction: NEAREST, UP or DOWN

    Returns:
        Rounded weight
    """
    if reference_max <= 0:
        raise InvalidParameter(f"reference max must be positive, got {reference_max}")
    if percentage <= 0:
        raise InvalidParameter(f"percentage must be positive, got {percentage}")
    return round_weight(reference_max * percentage / 100.0, increment, direction)


class LoadStrategy(ABC):
    """Base class for load strategy variants."""

    type_name: ClassVar[str]

    # Max kind to look up before calculate_load; None means no max needed
    max_kind: MaxKind | None
    rounding_increment: float
    rounding_direction: str

    @property
    def base_percentage(self) -> float | None:
        """Percentage before lookup modifiers, or None for non-percentage strategies."""
        return None

    @abstractmethod
    def calculate_load(self, reference_max: float | None, percentage: float | None = None) -> float:
        """Return the rounded working weight."""

    @abstractmethod
    def params(self) -> dict[str, Any]:
        """Type-specific parameters for serialization."""

    @classmethod
    @abstractmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> LoadStrategy:
        """Build the variant from its parameter dict."""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type_name, **self.params()}


LOAD_STRATEGY_REGISTRY: dict[str, type[LoadStrategy]] = {}


def register_load_strategy(cls: type[LoadStrategy]) -> type[LoadStrategy]:
    """Class decorator adding a variant to the registry under cls.type_name."""
    LOAD_STRATEGY_REGISTRY[cls.type_name] = cls
    return cls


def _rounding_defaults(params: dict[str, Any], settings: EngineSettings | None) -> tuple[float, str]:
    default_inc = settings.rounding_increment if settings else DEFAULT_ROUNDING_INCREMENT
    default_dir = settings.rounding_direction if settings else DEFAULT_ROUNDING_DIRECTION
    increment = params.get("rounding_increment")
    direction = params.get("rounding_direction")
    return (
        float(increment) if increment is not None else default_inc,
        str(direction) if direction is not None else default_dir,
    )


@register_load_strategy
@dataclass(frozen=True)
class PercentOf(LoadStrategy):
    """Percentage of a reference max."""

    type_name: ClassVar[str] = "PERCENT_OF"

    percentage: float
    max_kind: MaxKind = "TRAINING_MAX"
    rounding_increment: float = DEFAULT_ROUNDING_INCREMENT
    rounding_direction: str = DEFAULT_ROUNDING_DIRECTION

    def __post_init__(self) -> None:
        """Validate strategy parameters."""
        validate_max_kind(self.max_kind)
        if self.percentage <= 0:
            raise InvalidParameter("percentage must be positive")
        if self.rounding_increment <= 0:
            raise InvalidParameter("rounding_increment must be positive")
        object.__setattr__(self, "rounding_direction", validate_direction(self.rounding_direction))

    @property
    def base_percentage(self) -> float | None:
        return self.percentage

    def calculate_load(self, reference_max: float | None, percentage: float | None = None) -> float:
        if reference_max is None:
            raise ValidationFailed("PERCENT_OF requires a reference max")
        pct = self.percentage if percentage is None else percentage
        return percent_of(reference_max, pct, self.rounding_increment, self.rounding_direction)

    def params(self) -> dict[str, Any]:
        return {
            "percentage": self.percentage,
            "max_kind": self.max_kind,
            "rounding_increment": self.rounding_increment,
            "rounding_direction": self.rounding_direction,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> PercentOf:
        if "percentage" not in params:
            raise ValidationFailed("PERCENT_OF requires 'percentage'")
        increment, direction = _rounding_defaults(params, settings)
        return cls(
            percentage=float(params["percentage"]),
            max_kind=params.get("max_kind", params.get("reference_type", "TRAINING_MAX")),
            rounding_increment=increment,
            rounding_direction=direction,
        )


@register_load_strategy
@dataclass(frozen=True)
class FixedWeight(LoadStrategy):
    """A constant weight independent of any max (accessories, technique work)."""

    type_name: ClassVar[str] = "FIXED_WEIGHT"

    weight: float
    rounding_increment: float = DEFAULT_ROUNDING_INCREMENT
    rounding_direction: str = DEFAULT_ROUNDING_DIRECTION
    max_kind: MaxKind | None = None

    def __post_init__(self) -> None:
        """Validate strategy parameters."""
        if self.weight < 0:
            raise InvalidParameter("weight must be non-negative")
        if self.rounding_increment <= 0:
            raise InvalidParameter("rounding_increment must be positive")
        if self.max_kind is not None:
            raise InvalidParameter("FIXED_WEIGHT does not use a reference max")
        object.__setattr__(self, "rounding_direction", validate_direction(self.rounding_direction))

    def calculate_load(self, reference_max: float | None, percentage: float | None = None) -> float:
        # Lookup percentages do not apply to a fixed load
        return round_weight(self.weight, self.rounding_increment, self.rounding_direction)

    def params(self) -> dict[str, Any]:
        return {
            "weight": self.weight,
            "rounding_increment": self.rounding_increment,
            "rounding_direction": self.rounding_direction,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any], settings: EngineSettings | None = None) -> FixedWeight:
        if "weight" not in params:
            raise ValidationFailed("FIXED_WEIGHT requires 'weight'")
        increment, direction = _rounding_defaults(params, settings)
        return cls(weight=float(params["weight"]), rounding_increment=increment, rounding_direction=direction)


def load_strategy_from_dict(d: dict[str, Any], settings: EngineSettings | None = None) -> LoadStrategy:
    """
    Build a LoadStrategy from its serialized form.

    Args:
        d: Dict with a "type" discriminator plus that variant's parameters
        settings: Source of default rounding when the dict omits it

    Returns:
        LoadStrategy instance

    Raises:
        ValidationFailed: If the type is unknown or parameters are invalid
    """
    if not isinstance(d, dict):
        raise ValidationFailed("load strategy must be a mapping")
    type_name = str(d.get("type", "")).upper()
    cls = LOAD_STRATEGY_REGISTRY.get(type_name)
    if cls is None:
        valid = ", ".join(LOAD_STRATEGY_REGISTRY)
        raise ValidationFailed(f"Unknown load strategy type {d.get('type')!r}. Valid types: {valid}")
    params = {k: v for k, v in d.items() if k != "type"}
    try:
        return cls.from_params(params, settings)
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ValidationFailed):
            raise
        raise ValidationFailed(f"{type_name}: {exc}") from exc
