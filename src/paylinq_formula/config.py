"""Engine configuration loaded from ``paylinq_formula.yaml``."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from paylinq_formula.formulas.parser import MAX_DEPTH_LIMIT

CONFIG_FILENAME = "paylinq_formula.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "max_formula_length": 4096,
    "max_depth": 64,
    "equality_rel_tol": 0.0,
    "equality_abs_tol": 1e-9,
    "logging_enabled": True,
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}

_POSITIVE_INT_KEYS = ("max_formula_length", "max_depth", "logging_tail_bytes")
_TOLERANCE_KEYS = ("equality_rel_tol", "equality_abs_tol")
_BOOL_KEYS = ("logging_enabled", "logging_fsync")


def _flatten_equality_block(user_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten a nested ``equality:`` block into flat config keys.

    Supports::

        equality:
          rel_tol: 1.0e-9
          abs_tol: 0.005

    Maps to ``equality_rel_tol`` and ``equality_abs_tol``.
    """
    block = user_config.pop("equality", None)
    if block is None:
        return user_config
    if not isinstance(block, dict):
        raise ValueError("'equality' must be a mapping")

    mapping = {"rel_tol": "equality_rel_tol", "abs_tol": "equality_abs_tol"}
    unknown = set(block) - set(mapping)
    if unknown:
        raise ValueError(f"Unknown key(s) in 'equality': {', '.join(sorted(unknown))}")
    for short_key, flat_key in mapping.items():
        if short_key in block:
            user_config[flat_key] = block[short_key]
    return user_config


def _validate(config: dict[str, Any]) -> dict[str, Any]:
    unknown = set(config) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(
            f"Unknown config key(s): {', '.join(sorted(unknown))}. "
            f"Known: {', '.join(sorted(DEFAULT_CONFIG))}"
        )
    for key in _POSITIVE_INT_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key!r} must be a positive integer, got {value!r}")
    if config["max_depth"] > MAX_DEPTH_LIMIT:
        raise ValueError(
            f"'max_depth' must be at most {MAX_DEPTH_LIMIT}, got {config['max_depth']!r}"
        )
    for key in _TOLERANCE_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"{key!r} must be a non-negative number, got {value!r}")
        config[key] = float(value)
    for key in _BOOL_KEYS:
        if not isinstance(config[key], bool):
            raise ValueError(f"{key!r} must be true or false, got {config[key]!r}")
    return config


def load_config(config_dir: Path | None = None, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Load engine configuration, with defaults.

    Args:
        config_dir: Directory containing ``paylinq_formula.yaml``.  A
            missing file means all defaults.
        overrides: Values applied on top of the file (same keys).

    Returns:
        Merged and validated configuration dict.

    Raises:
        ValueError: On unknown keys or values of the wrong type.
    """
    config = dict(DEFAULT_CONFIG)
    if config_dir is not None:
        config_path = Path(config_dir) / CONFIG_FILENAME
        if config_path.exists():
            user_config = yaml.safe_load(config_path.read_text()) or {}
            if not isinstance(user_config, dict):
                raise ValueError(f"{config_path}: config must be a YAML mapping")
            config.update(_flatten_equality_block(user_config))
    if overrides:
        config.update(_flatten_equality_block(dict(overrides)))
    return _validate(config)
