"""
Weight rounding to loadable increments.

A barbell can only be loaded in steps of the smallest plate pair, so every
computed weight passes through round_weight before it reaches a set.
"""

import math
from typing import Literal

from .config import DEFAULT_ROUNDING_DIRECTION, DEFAULT_ROUNDING_INCREMENT, ROUNDING_DECIMALS, ROUNDING_DIRECTIONS
from .errors import InvalidParameter

RoundingDirection = Literal["NEAREST", "UP", "DOWN"]

# Tolerance for float quotients such as 170.00000000000003 / 5
_EPS = 1e-9


def validate_direction(direction: str) -> RoundingDirection:
    """
    Normalise and validate a rounding direction.

    Args:
        direction: NEAREST, UP or DOWN (case-insensitive)

    Returns:
        Upper-case direction

    Raises:
        InvalidParameter: If the direction is unknown
    """
    normalised = str(direction).upper()
    if normalised not in ROUNDING_DIRECTIONS:
        raise InvalidParameter(
            f"Invalid rounding direction: {direction!r}. Must be one of {', '.join(ROUNDING_DIRECTIONS)}"
        )
    return normalised  # type: ignore[return-value]


def round_weight(
    raw_weight: float,
    increment: float = DEFAULT_ROUNDING_INCREMENT,
    direction: str = DEFAULT_ROUNDING_DIRECTION,
) -> float:
    """
    Round a weight to a multiple of increment.

    NEAREST rounds halves away from zero (172.5 → 175 at increment 5).

    Args:
        raw_weight: Unrounded weight, must be non-negative
        increment: Loadable step, must be positive
        direction: NEAREST, UP or DOWN

    Returns:
        Rounded weight (a multiple of increment)

    Raises:
        InvalidParameter: If increment <= 0, weight < 0 or direction unknown
    """
    if increment <= 0:
        raise InvalidParameter(f"rounding increment must be positive, got {increment}")
    if raw_weight < 0:
        raise InvalidParameter(f"weight must be non-negative, got {raw_weight}")
    direction = validate_direction(direction)
    if raw_weight == 0:
        return 0.0

    steps = raw_weight / increment
    if direction == "UP":
        n = math.ceil(steps - _EPS)
    elif direction == "DOWN":
        n = math.floor(steps + _EPS)
    else:
        n = math.floor(steps + 0.5 + _EPS)
    return round(n * increment, ROUNDING_DECIMALS)
