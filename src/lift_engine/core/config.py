"""
Configuration constants for the resolution and progression engines.

All adjustable defaults are centralized here.  Values can be overridden per
installation through ~/.lift-engine/settings.yaml (see load_engine_settings).
"""

import warnings
from dataclasses import dataclass
from typing import Any, Final

from .engine.config_loader import load_model_config

# =============================================================================
# ROUNDING
# =============================================================================

DEFAULT_ROUNDING_INCREMENT: Final[float] = 5.0  # Smallest plate pair in lb
DEFAULT_ROUNDING_DIRECTION: Final[str] = "NEAREST"
ROUNDING_DIRECTIONS: Final[tuple[str, ...]] = ("NEAREST", "UP", "DOWN")
ROUNDING_DECIMALS: Final[int] = 6  # Strips float noise from multiples

# =============================================================================
# SET SCHEMES
# =============================================================================

DEFAULT_WORK_SET_THRESHOLD: Final[float] = 80.0  # Ramp steps >= this are work sets

# =============================================================================
# PRESCRIPTIONS AND LOOKUPS
# =============================================================================

MAX_NOTES_LENGTH: Final[int] = 500
MAX_LOOKUP_NAME_LENGTH: Final[int] = 100
INTENSITY_LEVELS: Final[tuple[str, ...]] = ("HEAVY", "MEDIUM", "LIGHT")

# =============================================================================
# REFERENCE MAXES
# =============================================================================

MAX_KINDS: Final[tuple[str, ...]] = ("ONE_REP_MAX", "TRAINING_MAX")
DEFAULT_TM_PERCENTAGE: Final[float] = 90.0  # Wendler-style TM = 90% of 1RM
TM_RATIO_MIN: Final[float] = 0.80  # Warn below this TM/1RM ratio
TM_RATIO_MAX: Final[float] = 0.95  # Warn above this TM/1RM ratio

# =============================================================================
# GREYSKULL BANDS
# =============================================================================

GREYSKULL_MAIN_MIN_REPS: Final[int] = 5
GREYSKULL_MAIN_DOUBLE_THRESHOLD: Final[int] = 10
GREYSKULL_MAIN_DELOAD_PERCENT: Final[float] = 0.10

# =============================================================================
# BATCH RESOLUTION
# =============================================================================

BATCH_MAX_WORKERS: Final[int] = 4  # 1 = resolve sequentially


@dataclass(frozen=True)
class EngineSettings:
    """Effective engine defaults after user overrides are applied."""

    rounding_increment: float = DEFAULT_ROUNDING_INCREMENT
    rounding_direction: str = DEFAULT_ROUNDING_DIRECTION
    work_set_threshold: float = DEFAULT_WORK_SET_THRESHOLD
    tm_percentage: float = DEFAULT_TM_PERCENTAGE
    batch_max_workers: int = BATCH_MAX_WORKERS

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.rounding_increment <= 0:
            raise ValueError("rounding_increment must be positive")
        if self.rounding_direction not in ROUNDING_DIRECTIONS:
            raise ValueError(f"rounding_direction must be one of {ROUNDING_DIRECTIONS}")
        if not 0 < self.work_set_threshold <= 100:
            raise ValueError("work_set_threshold must be in (0, 100]")
        if not 0 < self.tm_percentage <= 100:
            raise ValueError("tm_percentage must be in (0, 100]")
        if self.batch_max_workers < 1:
            raise ValueError("batch_max_workers must be at least 1")


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    value = cfg.get(name, {})
    return value if isinstance(value, dict) else {}


def load_engine_settings() -> EngineSettings:
    """
    Build EngineSettings from bundled and user YAML.

    Unknown keys are ignored; an override that fails validation falls back
    to the compiled-in defaults.

    Returns:
        EngineSettings
    """
    cfg = load_model_config()
    rounding = _section(cfg, "rounding")
    schemes = _section(cfg, "set_schemes")
    maxes = _section(cfg, "maxes")
    batch = _section(cfg, "batch")
    try:
        return EngineSettings(
            rounding_increment=float(rounding.get("increment", DEFAULT_ROUNDING_INCREMENT)),
            rounding_direction=str(rounding.get("direction", DEFAULT_ROUNDING_DIRECTION)).upper(),
            work_set_threshold=float(schemes.get("work_set_threshold", DEFAULT_WORK_SET_THRESHOLD)),
            tm_percentage=float(maxes.get("tm_percentage", DEFAULT_TM_PERCENTAGE)),
            batch_max_workers=int(batch.get("max_workers", BATCH_MAX_WORKERS)),
        )
    except (TypeError, ValueError) as exc:
        warnings.warn(f"lift-engine: ignoring invalid settings ({exc})", stacklevel=2)
        return EngineSettings()
