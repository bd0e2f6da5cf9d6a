"""
stress_spending.py
-------------------
Detects late-night spending, weighted towards comfort categories and bursts.

Logic:
    1. Keep expenses in the lookback window classified late_night. Unknown
       hours are treated as daytime and never qualify.
    2. Gate: enough late-night purchases overall, OR one burst (cluster) of
       at least min_cluster_size purchases chained within cluster_gap_minutes.
    3. One signal per qualifying purchase, carrying its transaction id.
       Comfort categories get a stronger signal; clustered purchases get a bonus.
    4. Confidence = weighted blend of count, clustering and comfort overlap.
"""

import logging

import pandas as pd

from core.models import DetectionResult, Signal, TimeContext
from core.primitives import find_clusters, is_comfort_category
from core.scoring import clustering_factor, count_factor, weighted_confidence
from detectors.base_detector import BaseDetector

logger = logging.getLogger(__name__)


REASON_CLUSTER = "late_night_cluster"
REASON_COMFORT = "late_night_comfort"
REASON_OTHER = "late_night_purchase"


class StressSpendingDetector(BaseDetector):
    """
    Usage:
        detector = StressSpendingDetector()
        result = detector.detect(transactions)
    """

    name = "stress_spending"

    def detect(self, transactions, prior_confidence: float = 0.0) -> DetectionResult:
        cfg = self.config.stress_spending
        df, skipped = self._prepare(transactions)

        window = self._with_time_context(self._expenses_in_window(df, cfg.lookback_days))
        analyzed = len(window)
        late = window[window["time_context"] == TimeContext.LATE_NIGHT.value].reset_index(drop=True)

        details = {
            "records_skipped": skipped,
            "late_night_count": len(late),
            "unknown_time_count": int((window["time_context"] == TimeContext.UNKNOWN.value).sum())
            if not window.empty else 0,
        }

        if late.empty:
            return self._no_detection(
                "no_late_night_spending", analyzed, cfg.lookback_days, prior_confidence, **details
            )

        clusters = find_clusters(late["occurred_at"].tolist(), self.config.cluster_gap_minutes)
        cluster_size = pd.Series(0, index=late.index)
        for cluster in clusters:
            cluster_size.iloc[cluster.positions] = cluster.size

        bursts = [c for c in clusters if c.size >= 2]
        largest = max((c.size for c in clusters), default=0)
        details.update({
            "cluster_count": len(bursts),
            "largest_cluster": largest,
        })

        count_gate = len(late) >= cfg.min_occurrences
        cluster_gate = largest >= cfg.min_cluster_size
        if not (count_gate or cluster_gate):
            return self._no_detection(
                "insufficient_late_night_evidence", analyzed, cfg.lookback_days, prior_confidence, **details
            )

        comfort = late["category_id"].map(lambda c: is_comfort_category(c, self.config.comfort_categories))
        signals = [
            self._build_signal(row, bool(is_comfort), int(size))
            for row, is_comfort, size in zip(late.itertuples(index=False), comfort, cluster_size)
        ]

        clustered_events = sum(c.size for c in bursts)
        gaps = [g for c in bursts for g in c.gaps_minutes]
        mean_gap = float(sum(gaps) / len(gaps)) if gaps else 0.0

        factors = {
            "count": count_factor(len(late), cfg.min_occurrences),
            "clustering": clustering_factor(
                largest_cluster=largest,
                clustered_events=clustered_events,
                total_events=len(late),
                mean_gap_minutes=mean_gap,
                min_cluster_size=cfg.min_cluster_size,
                max_gap_minutes=self.config.cluster_gap_minutes,
            ),
            "comfort": float(comfort.mean()),
        }
        raw_confidence = weighted_confidence(factors, cfg.weights)

        details.update({
            "factors": {k: round(v, 4) for k, v in factors.items()},
            "comfort_count": int(comfort.sum()),
            "gate": "count" if count_gate else "cluster",
            "late_night_total": round(float(late["amount"].abs().sum()), 2),
        })

        return self._detection(
            raw_confidence, signals, analyzed, cfg.lookback_days, prior_confidence, **details
        )

    def _build_signal(self, row, is_comfort: bool, cluster_size: int) -> Signal:
        cfg = self.config.stress_spending
        strength = cfg.comfort_signal_strength if is_comfort else cfg.other_signal_strength
        if cluster_size >= 2:
            strength += cfg.cluster_signal_bonus
            reason = REASON_CLUSTER
        else:
            reason = REASON_COMFORT if is_comfort else REASON_OTHER

        return Signal(
            detection_reason=reason,
            signal_strength=strength,
            time_context=TimeContext.LATE_NIGHT,
            category_id=row.category_id,
            transaction_id=row.id,
            merchant_name=row.merchant_name,
        )


def detect_stress_spending(transactions, config=None, prior_confidence: float = 0.0) -> DetectionResult:
    """Functional entry point: detect_stress_spending(transactions) -> DetectionResult."""
    return StressSpendingDetector(config=config).detect(transactions, prior_confidence=prior_confidence)
