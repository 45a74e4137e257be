"""
YAML → dict config loader.

Loads engine defaults from settings.yaml (bundled with the package) and
optionally merges user overrides from ~/.lift-engine/settings.yaml.

Usage:
    from lift_engine.core.engine.config_loader import load_model_config
    cfg = load_model_config()
    increment = cfg.get("rounding", {}).get("increment", 5.0)

If a YAML file cannot be read or parsed, a warning is emitted and the file
is ignored; callers then fall back to the Python defaults in config.py.
"""

from __future__ import annotations

import importlib.resources
import os
import warnings
from pathlib import Path
from typing import Any

import yaml

SETTINGS_FILENAME = "settings.yaml"
USER_DIR_NAME = ".lift-engine"

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML mapping; warn and return {} if it is unusable."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        warnings.warn(f"lift-engine: ignoring {path} ({exc})", stacklevel=3)
        return {}
    return data if isinstance(data, dict) else {}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (non-destructive to base)."""
    result = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = v
    return result


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_user_dir() -> Path:
    """Return ~/.lift-engine (not guaranteed to exist)."""
    home = Path(os.environ.get("HOME", "~")).expanduser()
    return home / USER_DIR_NAME


def get_bundled_yaml_path() -> Path | None:
    """Return the path to the bundled settings.yaml, or None if not found."""
    candidate = Path(str(importlib.resources.files("lift_engine").joinpath(SETTINGS_FILENAME)))
    return candidate if candidate.is_file() else None


def get_user_yaml_path() -> Path | None:
    """Return ~/.lift-engine/settings.yaml if it exists, else None."""
    p = get_user_dir() / SETTINGS_FILENAME
    return p if p.exists() else None


def load_model_config() -> dict[str, Any]:
    """
    Load and merge engine configuration from YAML sources.

    Load order (later overrides earlier):
    1. Bundled src/lift_engine/settings.yaml
    2. User override at ~/.lift-engine/settings.yaml

    Returns:
        Merged dict of config sections.  Empty dict if no YAML available.
    """
    config: dict[str, Any] = {}

    bundled = get_bundled_yaml_path()
    if bundled is not None:
        config = deep_merge(config, _load_yaml_file(bundled))

    user = get_user_yaml_path()
    if user is not None:
        user_cfg = _load_yaml_file(user)
        if user_cfg:
            config = deep_merge(config, user_cfg)

    return config
