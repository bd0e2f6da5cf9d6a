"""
scoring.py
-----------
Confidence factor functions.

Each factor maps one dimension of evidence onto [0, 1] and is independently
testable. Detectors combine them with weighted_confidence(); the weights come
from config.yaml, so tuning never touches detection-gate logic.

    count_factor          how much evidence relative to a gate
    regularity_factor     how tightly purchase hours concentrate (circular)
    concentration_factor  how few groups account for the activity (Herfindahl)
    clustering_factor     how bursty late-night activity is
    recurrence_factor     how many examined months show the pattern
    magnitude_factor      how far a ratio exceeds its neutral level
"""

from typing import Iterable, Mapping, Sequence

import numpy as np
from scipy import stats


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def count_factor(count: int, gate: int, saturation_multiple: float = 2.0) -> float:
    """
    Linear in count, reaching 1.0 at gate * saturation_multiple.

    Non-decreasing in count. A gate of 0 means any evidence saturates.
    """
    if count <= 0:
        return 0.0
    full = gate * saturation_multiple
    if full <= 0:
        return 1.0
    return clamp(count / full)


def regularity_factor(hours: Sequence[float], max_spread_hours: float = 6.0) -> float:
    """
    Scores how consistently events happen at the same time of day.

    Uses the circular standard deviation of the hours so 23:30 and 00:30 count
    as one hour apart. 1.0 = identical times, 0.0 = spread of max_spread_hours
    or more. Fewer than two observations carry no regularity evidence.
    """
    values = np.asarray([h for h in hours if h is not None and not np.isnan(h)], dtype=float)
    if len(values) < 2:
        return 0.0
    spread = float(stats.circstd(values, high=24.0, low=0.0))
    if np.isnan(spread):
        # Resultant length rounds above 1.0 for identical angles.
        spread = 0.0
    return clamp(1.0 - spread / max_spread_hours)


def concentration_factor(counts: Iterable[float]) -> float:
    """
    Herfindahl index of group shares: 1.0 when one group holds everything,
    1/n for n equal groups.
    """
    arr = np.asarray([c for c in counts if c > 0], dtype=float)
    if arr.size == 0:
        return 0.0
    shares = arr / arr.sum()
    return clamp(float(np.sum(shares ** 2)))


def clustering_factor(
    largest_cluster: int,
    clustered_events: int,
    total_events: int,
    mean_gap_minutes: float,
    min_cluster_size: int,
    max_gap_minutes: float,
) -> float:
    """
    Blends cluster size, the share of events inside clusters, and tightness.

        size       (largest - 1) / (min_cluster_size - 1), capped at 1
        share      clustered_events / total_events
        tightness  1 - mean_gap / max_gap (only when some cluster exists)
    """
    if total_events <= 0 or largest_cluster < 2:
        return 0.0
    size_score = clamp((largest_cluster - 1) / max(min_cluster_size - 1, 1))
    share_score = clamp(clustered_events / total_events)
    tightness = clamp(1.0 - mean_gap_minutes / max_gap_minutes) if max_gap_minutes > 0 else 0.0
    return clamp(0.50 * size_score + 0.25 * share_score + 0.25 * tightness)


def recurrence_factor(hits: int, observed: int) -> float:
    """Share of examined periods that show the pattern."""
    if observed <= 0:
        return 0.0
    return clamp(hits / observed)


def magnitude_factor(ratio: float, neutral: float = 1.0, full_scale: float = 2.0) -> float:
    """0 at the neutral ratio, 1.0 at neutral + full_scale."""
    if full_scale <= 0:
        return 0.0
    return clamp((ratio - neutral) / full_scale)


def weighted_confidence(factors: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """
    Weighted sum of factors, normalized by total weight.

    Raises:
        KeyError: If a weight names a factor that was not computed.
    """
    total_weight = float(sum(weights.values()))
    if total_weight <= 0:
        return 0.0
    score = sum(w * factors[name] for name, w in weights.items())
    return clamp(score / total_weight)


def smooth_confidence(raw: float, prior: float, smoothing_factor: float) -> float:
    """Exponential smoothing against a previous confidence; no prior = raw."""
    if prior <= 0:
        return raw
    return clamp(prior * smoothing_factor + raw * (1.0 - smoothing_factor))
