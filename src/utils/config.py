"""Configuration loading utilities for YAML-based pipeline settings."""

from pathlib import Path
from typing import Any

import yaml

ANTIGENS: tuple[str, ...] = ("DTP1", "DTP3", "MCV1")
MAX_HORIZON = 2


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override dict into base dict.

    Args:
        base: Base configuration dictionary.
        override: Override dictionary whose values take precedence.

    Returns:
        Merged dictionary with override values taking precedence.
    """
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_paths: list[str | Path]) -> dict[str, Any]:
    """Load and merge multiple YAML config files.

    Later files override earlier ones for duplicate keys. Nested
    dictionaries are merged recursively.

    Args:
        config_paths: List of paths to YAML config files.

    Returns:
        Merged configuration dictionary.

    Raises:
        FileNotFoundError: If a config file does not exist.
    """
    merged: dict[str, Any] = {}
    for path in config_paths:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        merged = _deep_merge(merged, config)
    return merged


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Check the values the forecasting pipeline depends on.

    Args:
        config: Merged configuration dictionary with 'data' and 'model' keys.

    Returns:
        The same config, for chaining.

    Raises:
        ValueError: If the antigen, year window, horizon, confidence level
            or coverage cap is out of range.
    """
    data_cfg = config["data"]
    model_cfg = config["model"]

    antigen = str(data_cfg["antigen"]).upper()
    if antigen not in ANTIGENS:
        raise ValueError(f"Unknown antigen '{data_cfg['antigen']}'. Supported: {list(ANTIGENS)}")

    if data_cfg["year_start"] >= data_cfg["train_end"]:
        raise ValueError(
            f"year_start ({data_cfg['year_start']}) must precede "
            f"train_end ({data_cfg['train_end']})"
        )

    horizon = data_cfg["horizon"]
    if not 1 <= horizon <= MAX_HORIZON:
        raise ValueError(f"horizon must be 1 or {MAX_HORIZON}, got {horizon}")

    cap = data_cfg.get("coverage_cap", 0.99)
    if not 0 < cap <= 1:
        raise ValueError(f"coverage_cap must be in (0, 1], got {cap}")

    levels = [model_cfg["confidence_level"]]
    levels += list(config.get("sensitivity", {}).get("confidence_levels", []))
    for level in levels:
        if not 0 < level < 1:
            raise ValueError(f"confidence levels must be in (0, 1), got {level}")

    return config


def training_window(config: dict[str, Any]) -> tuple[int, int]:
    """Return the inclusive (year_start, train_end) window."""
    data_cfg = config["data"]
    return int(data_cfg["year_start"]), int(data_cfg["train_end"])


def forecast_years(config: dict[str, Any]) -> list[int]:
    """Years predicted by the configured horizon, one per forecast step."""
    _, train_end = training_window(config)
    return [train_end + step for step in range(1, config["data"]["horizon"] + 1)]


def run_name(config: dict[str, Any], confidence_level: float | None = None) -> str:
    """Build a run label such as ``DTP3_2000-2019_h2_ci95``."""
    year_start, train_end = training_window(config)
    level = config["model"]["confidence_level"] if confidence_level is None else confidence_level
    antigen = str(config["data"]["antigen"]).upper()
    horizon = config["data"]["horizon"]
    return f"{antigen}_{year_start}-{train_end}_h{horizon}_ci{round(level * 100):d}"
