"""
Reference max helpers: 1RM → training max conversion and sanity checks.
"""

from .config import DEFAULT_ROUNDING_INCREMENT, DEFAULT_TM_PERCENTAGE, TM_RATIO_MAX, TM_RATIO_MIN
from .errors import InvalidParameter
from .rounding import round_weight


def training_max_from_one_rm(
    one_rm: float,
    percentage: float = DEFAULT_TM_PERCENTAGE,
    increment: float = DEFAULT_ROUNDING_INCREMENT,
) -> float:
    """
    Training max as a percentage of a one-rep max, rounded down.

    Rounding down keeps the TM at or below the requested percentage.

    Args:
        one_rm: One-rep max, must be positive
        percentage: TM percentage in (0, 100]
        increment: Rounding step

    Returns:
        Training max

    Raises:
        InvalidParameter: If one_rm or percentage is out of range
    """
    if one_rm <= 0:
        raise InvalidParameter("one-rep max must be positive")
    if not 0 < percentage <= 100:
        raise InvalidParameter("training max percentage must be in (0, 100]")
    return round_weight(one_rm * percentage / 100.0, increment, "DOWN")


def check_training_max(training_max: float, one_rm: float) -> str | None:
    """
    Return a warning if the TM/1RM ratio is outside the usual 80–95% band.

    Args:
        training_max: Training max
        one_rm: One-rep max for the same lift

    Returns:
        Warning message, or None if the ratio looks sensible
    """
    if training_max <= 0 or one_rm <= 0:
        return None
    ratio = training_max / one_rm
    if ratio > 1:
        return f"training max {training_max:g} is above the one-rep max {one_rm:g}"
    if ratio > TM_RATIO_MAX:
        return f"training max is {ratio:.0%} of the one-rep max; most programs use {TM_RATIO_MIN:.0%}-{TM_RATIO_MAX:.0%}"
    if ratio < TM_RATIO_MIN:
        return f"training max is only {ratio:.0%} of the one-rep max; most programs use {TM_RATIO_MIN:.0%}-{TM_RATIO_MAX:.0%}"
    return None
