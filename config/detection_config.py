"""
detection_config.py
--------------------
Typed, immutable view of the detection block in config.yaml.

Detectors never read the YAML cache at call time. They receive a frozen
DetectionConfig, so the same detector can run concurrently with different
tunings and tests can vary a single threshold without touching the file.

Usage:
    config = load_detection_config()
    strict = config.with_overrides(small_recurring={"min_transaction_gate": 25})
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping

from config.config_loader import get_detection_defaults
from core.primitives import normalize_label


@dataclass(frozen=True)
class SmallRecurringConfig:
    algorithm_version: str = "2.0.0"
    lookback_days: int = 30
    small_purchase_threshold: float = 15.0
    min_transaction_gate: int = 15
    min_group_count: int = 3
    count_saturation_multiple: float = 2.0
    regularity_max_spread_hours: float = 6.0
    max_signals: int = 10
    weights: Mapping[str, float] = field(
        default_factory=lambda: {"count": 0.40, "regularity": 0.30, "concentration": 0.30}
    )


@dataclass(frozen=True)
class StressSpendingConfig:
    algorithm_version: str = "2.0.0"
    lookback_days: int = 30
    min_occurrences: int = 6
    min_cluster_size: int = 4
    comfort_signal_strength: float = 0.90
    other_signal_strength: float = 0.50
    cluster_signal_bonus: float = 0.10
    weights: Mapping[str, float] = field(
        default_factory=lambda: {"count": 0.35, "clustering": 0.35, "comfort": 0.30}
    )


@dataclass(frozen=True)
class EndOfMonthConfig:
    algorithm_version: str = "2.0.0"
    months_back: int = 3
    min_months: int = 2
    history_start_tolerance_days: int = 3
    early_month_cutoff_day: int = 20
    spike_ratio: float = 1.5
    max_spike_ratio: float = 5.0
    min_spike_months: int = 2
    weights: Mapping[str, float] = field(
        default_factory=lambda: {"recurrence": 0.50, "magnitude": 0.30, "depth": 0.20}
    )


DEFAULT_COMFORT_CATEGORIES = frozenset({
    "food_dining", "food_delivery", "delivery", "takeout", "fast_food", "snacks",
    "coffee", "coffee_drinks", "alcohol", "entertainment", "streaming", "gaming",
    "shopping",
})


_SECTION_TYPES = {
    "small_recurring": SmallRecurringConfig,
    "stress_spending": StressSpendingConfig,
    "end_of_month": EndOfMonthConfig,
}


@dataclass(frozen=True)
class DetectionConfig:
    """
    All tunable settings for the three detectors and their shared primitives.

    Top-level fields are shared; per-detector settings live in the
    small_recurring / stress_spending / end_of_month sections.
    """

    local_timezone: str | None = None

    confidence_ceiling: float = 0.95
    smoothing_factor: float = 0.70
    end_of_month_smoothing_factor: float = 0.60
    confidence_decay: float = 0.02
    activation_threshold: float = 0.75
    intervention_threshold: float = 0.80

    # Signal primitives
    late_night_start_hour: float = 22
    late_night_end_hour: float = 2
    cluster_gap_minutes: float = 120
    comfort_categories: frozenset = DEFAULT_COMFORT_CATEGORIES

    small_recurring: SmallRecurringConfig = field(default_factory=SmallRecurringConfig)
    stress_spending: StressSpendingConfig = field(default_factory=StressSpendingConfig)
    end_of_month: EndOfMonthConfig = field(default_factory=EndOfMonthConfig)

    def __post_init__(self):
        for name in ("late_night_start_hour", "late_night_end_hour"):
            value = getattr(self, name)
            if not 0 <= value < 24:
                raise ValueError(f"{name} must be within [0, 24), got {value}")
        if self.cluster_gap_minutes <= 0:
            raise ValueError(f"cluster_gap_minutes must be positive, got {self.cluster_gap_minutes}")
        if not 0.0 < self.confidence_ceiling <= 1.0:
            raise ValueError(f"confidence_ceiling must be within (0, 1], got {self.confidence_ceiling}")
        cutoff = self.end_of_month.early_month_cutoff_day
        if not 1 <= cutoff < 28:
            raise ValueError(f"early_month_cutoff_day must be within [1, 28), got {cutoff}")

    @property
    def late_night_window(self) -> tuple[float, float]:
        return (self.late_night_start_hour, self.late_night_end_hour)

    # -------------------------------------------------------------------------
    # CONSTRUCTION
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, detection: Mapping[str, Any]) -> "DetectionConfig":
        """Builds a config from the `detection` block of config.yaml."""
        kwargs: Dict[str, Any] = {}
        top_level = {f.name for f in fields(cls)} - set(_SECTION_TYPES)

        for key, value in detection.items():
            if key in top_level:
                kwargs[key] = value

        primitives = detection.get("primitives") or {}
        for key, value in primitives.items():
            if key in top_level:
                kwargs[key] = value

        if "comfort_categories" in kwargs:
            kwargs["comfort_categories"] = _normalize_categories(kwargs["comfort_categories"])

        for section, section_type in _SECTION_TYPES.items():
            kwargs[section] = _build_section(section_type, detection.get(section) or {})

        return cls(**kwargs)

    def with_overrides(self, **changes: Any) -> "DetectionConfig":
        """
        Returns a copy with the given settings replaced.

        Section names accept a dict of section fields, e.g.
        with_overrides(end_of_month={"spike_ratio": 2.0}).
        """
        updates: Dict[str, Any] = {}
        for key, value in changes.items():
            if key in _SECTION_TYPES and isinstance(value, Mapping):
                updates[key] = replace(getattr(self, key), **dict(value))
            elif key == "comfort_categories":
                updates[key] = _normalize_categories(value)
            elif key == "late_night_window":
                updates["late_night_start_hour"], updates["late_night_end_hour"] = value
            else:
                updates[key] = value
        return replace(self, **updates)


def _build_section(section_type, raw: Mapping[str, Any]):
    allowed = {f.name for f in fields(section_type)}
    unknown = set(raw) - allowed
    if unknown:
        raise ValueError(f"Unknown keys for {section_type.__name__}: {sorted(unknown)}")
    values = dict(raw)
    if "weights" in values:
        values["weights"] = dict(values["weights"])
    return section_type(**values)


def _normalize_categories(categories) -> frozenset:
    return frozenset(normalize_label(c) for c in categories or () if normalize_label(c))


def load_detection_config() -> DetectionConfig:
    """Builds a DetectionConfig from the cached config.yaml detection block."""
    return DetectionConfig.from_dict(get_detection_defaults())
