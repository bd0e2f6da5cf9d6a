"""
small_recurring.py
-------------------
Detects habitual low-value spending: many small purchases, concentrated on a
few merchants, made at consistent times of day.

Logic:
    1. Keep expenses in the lookback window with |amount| <= the small
       purchase threshold.
    2. Hard gate: fewer than min_transaction_gate qualifying purchases means
       no detection, whatever else the data shows.
    3. Group by merchant (falling back to category, then "uncategorized").
       Every group with at least min_group_count purchases is a recurring
       group and yields one pattern-level signal.
    4. Confidence = weighted blend of count, regularity and concentration.
"""

import logging

import pandas as pd

from core.models import DetectionResult, Signal, TimeContext
from core.scoring import (
    concentration_factor,
    count_factor,
    regularity_factor,
    weighted_confidence,
)
from detectors.base_detector import BaseDetector

logger = logging.getLogger(__name__)


class SmallRecurringDetector(BaseDetector):
    """
    Usage:
        detector = SmallRecurringDetector()
        result = detector.detect(transactions)
    """

    name = "small_recurring"
    reason = "frequent_small_purchase"

    def detect(self, transactions, prior_confidence: float = 0.0) -> DetectionResult:
        cfg = self.config.small_recurring
        df, skipped = self._prepare(transactions)

        window = self._expenses_in_window(df, cfg.lookback_days)
        analyzed = len(window)
        small = window[window["amount"].abs() <= cfg.small_purchase_threshold]

        details = {
            "records_skipped": skipped,
            "qualifying_count": len(small),
            "small_purchase_threshold": cfg.small_purchase_threshold,
        }

        # Sample size is a hard gate, not a soft penalty.
        if len(small) < cfg.min_transaction_gate:
            return self._no_detection(
                "insufficient_small_transactions", analyzed, cfg.lookback_days, prior_confidence, **details
            )

        small = self._with_time_context(small)
        groups = self._summarize_groups(small)
        recurring = groups[groups["count"] >= cfg.min_group_count]

        if recurring.empty:
            return self._no_detection(
                "no_recurring_merchant", analyzed, cfg.lookback_days, prior_confidence, **details
            )

        signals = [self._build_signal(row) for row in recurring.head(cfg.max_signals).itertuples(index=False)]

        weights = recurring["count"].astype(float)
        regularity = float((recurring["regularity"] * weights).sum() / weights.sum())
        factors = {
            "count": count_factor(len(small), cfg.min_transaction_gate, cfg.count_saturation_multiple),
            "regularity": regularity,
            "concentration": concentration_factor(groups["count"].tolist()),
        }
        raw_confidence = weighted_confidence(factors, cfg.weights)

        top = recurring.iloc[0]
        details.update({
            "factors": {k: round(v, 4) for k, v in factors.items()},
            "recurring_groups": len(recurring),
            "dominant_group": top["group_key"],
            "dominant_count": int(top["count"]),
            "dominant_total": round(float(top["total"]), 2),
            "small_spend_total": round(float(small["amount"].abs().sum()), 2),
        })

        return self._detection(
            raw_confidence, signals, analyzed, cfg.lookback_days, prior_confidence, **details
        )

    # -------------------------------------------------------------------------
    # INTERNAL: GROUPING
    # -------------------------------------------------------------------------

    def _summarize_groups(self, small: pd.DataFrame) -> pd.DataFrame:
        """
        One row per merchant group, sorted by count desc, total desc, key asc
        so signal order is stable for a given input.
        """
        cfg = self.config.small_recurring
        total_count = len(small)
        total_amount = float(small["amount"].abs().sum())

        rows = []
        for key, group in small.groupby("group_key", sort=True):
            amounts = group["amount"].abs()
            known = group[group["hour_known"]]
            hours = (
                known["occurred_at"].dt.hour
                + known["occurred_at"].dt.minute / 60.0
            ).tolist()

            categories = group["category_id"].dropna()
            merchants = group["merchant_name"].dropna()
            contexts = group["time_context"].value_counts()

            rows.append({
                "group_key": key,
                "count": len(group),
                "total": float(amounts.sum()),
                "share_count": len(group) / total_count,
                "share_amount": float(amounts.sum()) / total_amount if total_amount > 0 else 0.0,
                "regularity": regularity_factor(hours, cfg.regularity_max_spread_hours),
                "category_id": categories.mode().iloc[0] if not categories.empty else None,
                "merchant_name": merchants.iloc[0] if not merchants.empty else None,
                "time_context": contexts.index[0] if not contexts.empty else TimeContext.UNKNOWN.value,
            })

        summary = pd.DataFrame(rows)
        return summary.sort_values(
            ["count", "total", "group_key"], ascending=[False, False, True], kind="mergesort"
        ).reset_index(drop=True)

    def _build_signal(self, row) -> Signal:
        # Share of the small-spend pattern this group explains, lifted by habit.
        share = max(row.share_count, row.share_amount)
        strength = 0.6 * share + 0.4 * row.regularity
        return Signal(
            detection_reason=self.reason,
            signal_strength=strength,
            time_context=TimeContext(row.time_context),
            category_id=row.category_id,
            transaction_id=None,
            merchant_name=row.merchant_name,
        )


def detect_small_recurring(transactions, config=None, prior_confidence: float = 0.0) -> DetectionResult:
    """Functional entry point: detect_small_recurring(transactions) -> DetectionResult."""
    return SmallRecurringDetector(config=config).detect(transactions, prior_confidence=prior_confidence)
