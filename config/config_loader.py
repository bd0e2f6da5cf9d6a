"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this; no hardcoded values.

The cached dictionary is treated as read-only. Detectors never read it
directly at call time; they receive a frozen DetectionConfig built from it
(see config.detection_config.DetectionConfig).
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}

DETECTOR_NAMES = ("small_recurring", "stress_spending", "end_of_month")


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        loaded = yaml.safe_load(f)

    if not isinstance(loaded, dict) or "detection" not in loaded:
        raise ValueError(f"Configuration file has no 'detection' block: {config_path}")

    _CONFIG_CACHE = loaded
    return _CONFIG_CACHE


def get_detection_defaults() -> Dict[str, Any]:
    """Returns the detection block (shared settings plus per-detector blocks)."""
    return load_config()["detection"]


def get_detector_config(detector_name: str) -> Dict[str, Any]:
    """
    Returns the config block for a single detector.

    Raises:
        KeyError: If detector_name is not configured.
    """
    detection = get_detection_defaults()
    if detector_name not in DETECTOR_NAMES or detector_name not in detection:
        raise KeyError(
            f"No detector config for '{detector_name}'. "
            f"Available: {[n for n in DETECTOR_NAMES if n in detection]}"
        )
    return detection[detector_name]


def get_seasonal_defaults() -> Dict[str, Any]:
    """Returns the seasonality block."""
    return load_config()["seasonality"]


def get_insight_config(insight_name: str) -> Dict[str, Any]:
    """
    Returns the config block for an insight (saving_habit, trends).

    Raises:
        KeyError: If insight_name is not configured.
    """
    insights = load_config()["insights"]
    if insight_name not in insights:
        raise KeyError(
            f"No insight config for '{insight_name}'. "
            f"Available: {list(insights.keys())}"
        )
    return insights[insight_name]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
