"""
primitives.py
--------------
Signal primitives shared by every detector.

    - Time-of-day classification (late-night window with midnight wrap-around)
    - Burst clustering over sorted timestamps
    - Comfort-category classification
    - Label normalization for merchant/category grouping

All functions are pure. Thresholds are passed in explicitly so the same
primitive can serve detectors configured differently.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from core.models import TimeContext

if TYPE_CHECKING:
    from config.detection_config import DetectionConfig


_SEPARATORS = re.compile(r"[\s\-/&]+")


def normalize_label(text: Optional[str]) -> str:
    """Lowercases and collapses separators: 'Food Delivery' -> 'food_delivery'."""
    if text is None:
        return ""
    if isinstance(text, float) and pd.isna(text):
        return ""
    return _SEPARATORS.sub("_", str(text).strip().lower()).strip("_")


# =============================================================================
# TIME OF DAY
# =============================================================================

def is_late_night(hour: float, start_hour: float, end_hour: float) -> bool:
    """
    True when a fractional hour (e.g. 23.5 = 23:30) falls in [start, end).

    A window with start > end wraps past midnight: (22, 2) covers
    22:00-23:59 and 00:00-01:59.
    """
    if start_hour == end_hour:
        return False
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def fractional_hour(timestamp: datetime) -> float:
    return timestamp.hour + timestamp.minute / 60.0 + timestamp.second / 3600.0


def classify_time_of_day(
    timestamp: Optional[datetime], hour_known: bool, config: "DetectionConfig"
) -> TimeContext:
    """Classifies a timestamp as late_night, daytime or unknown."""
    if timestamp is None or not hour_known:
        return TimeContext.UNKNOWN
    if is_late_night(fractional_hour(timestamp), config.late_night_start_hour, config.late_night_end_hour):
        return TimeContext.LATE_NIGHT
    return TimeContext.DAYTIME


def classify_time_of_day_series(
    timestamps: pd.Series, hour_known: pd.Series, config: "DetectionConfig"
) -> pd.Series:
    """Vectorized classify_time_of_day over aligned Series."""
    hours = timestamps.dt.hour + timestamps.dt.minute / 60.0 + timestamps.dt.second / 3600.0
    start, end = config.late_night_window
    if start == end:
        late = pd.Series(False, index=timestamps.index)
    elif start < end:
        late = (hours >= start) & (hours < end)
    else:
        late = (hours >= start) | (hours < end)

    contexts = np.where(
        ~hour_known.astype(bool),
        TimeContext.UNKNOWN.value,
        np.where(late, TimeContext.LATE_NIGHT.value, TimeContext.DAYTIME.value),
    )
    return pd.Series(contexts, index=timestamps.index)


# =============================================================================
# CLUSTERING
# =============================================================================

@dataclass
class Cluster:
    """A run of events whose consecutive gaps are all within the threshold."""

    start: datetime
    end: datetime
    positions: list[int] = field(default_factory=list)   # Indices into the input sequence
    gaps_minutes: list[float] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.positions)

    @property
    def span_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def mean_gap_minutes(self) -> float:
        return float(np.mean(self.gaps_minutes)) if self.gaps_minutes else 0.0


def find_clusters(timestamps: Sequence[datetime], max_gap_minutes: float) -> list[Cluster]:
    """
    Groups sorted timestamps into clusters.

    Consecutive events at most max_gap_minutes apart share a cluster, so a
    cluster is a chain: its total span may exceed the gap threshold. Isolated
    events come back as clusters of size 1.

    Raises:
        ValueError: If timestamps are not sorted ascending.
    """
    if len(timestamps) == 0:
        return []

    stamps = pd.to_datetime(pd.Series(list(timestamps)))
    gaps = stamps.diff().dt.total_seconds().div(60.0).to_numpy()[1:]
    if np.any(gaps < 0):
        raise ValueError("find_clusters expects timestamps sorted ascending")

    clusters: list[Cluster] = []
    current = Cluster(start=stamps.iloc[0].to_pydatetime(), end=stamps.iloc[0].to_pydatetime(), positions=[0])

    for i, gap in enumerate(gaps, start=1):
        stamp = stamps.iloc[i].to_pydatetime()
        if gap <= max_gap_minutes:
            current.positions.append(i)
            current.gaps_minutes.append(float(gap))
            current.end = stamp
        else:
            clusters.append(current)
            current = Cluster(start=stamp, end=stamp, positions=[i])

    clusters.append(current)
    return clusters


# =============================================================================
# CATEGORIES
# =============================================================================

def is_comfort_category(category: Optional[str], comfort_categories: Iterable[str]) -> bool:
    """Case- and separator-insensitive membership in the comfort set."""
    label = normalize_label(category)
    if not label:
        return False
    if isinstance(comfort_categories, frozenset):
        return label in comfort_categories
    return label in {normalize_label(c) for c in comfort_categories}
