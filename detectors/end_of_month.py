"""
end_of_month.py
----------------
Detects a recurring late-month spending spike ("end-of-month collapse").

Logic:
    1. Take the months_back most recent calendar months whose late window
       has started relative to the anchor date. Months with no expenses at
       all, or that begin before the snapshot does, are not counted as
       observed history.
    2. Fewer than min_months observed months -> no detection.
    3. Split each month at early_month_cutoff_day and compare daily spending
       rates (late / early). The anchor month, if included, only counts the
       late days observed so far.
    4. A spike month has a rate ratio >= spike_ratio. Detection requires at
       least min_spike_months spike months: one outlier month never detects.
    5. Confidence = weighted blend of recurrence share, spike magnitude and
       history depth.
"""

import calendar
import logging
from typing import Iterable, Optional

import pandas as pd

from core.models import DetectionResult, Signal, TimeContext
from core.primitives import normalize_label
from core.scoring import magnitude_factor, recurrence_factor, weighted_confidence
from detectors.base_detector import BaseDetector

logger = logging.getLogger(__name__)


class EndOfMonthDetector(BaseDetector):
    """
    Usage:
        detector = EndOfMonthDetector()
        result = detector.detect(transactions, months_back=3)
    """

    name = "end_of_month"
    reason = "late_month_spike"

    def detect(
        self,
        transactions,
        months_back: Optional[int] = None,
        budget_categories: Optional[Iterable[str]] = None,
        prior_confidence: float = 0.0,
    ) -> DetectionResult:
        """
        Args:
            transactions: Transaction snapshot.
            months_back: How many months to compare. Defaults to config.
            budget_categories: Optional active budget categories, used only
                to annotate which recurring late-month categories are budgeted.
            prior_confidence: Previous confidence for smoothing.
        """
        cfg = self.config.end_of_month
        months_back = cfg.months_back if months_back is None else int(months_back)
        if months_back < 1:
            raise ValueError(f"months_back must be at least 1, got {months_back}")

        df, skipped = self._prepare(transactions)
        expenses = df[df["amount"] < 0] if not df.empty else df

        periods = self._candidate_months(self._anchor(df), months_back)
        time_range_days = self._time_range_days(periods, self._anchor(df))
        details = {"records_skipped": skipped, "months_back": months_back}

        if expenses.empty:
            return self._no_detection("insufficient_history", 0, time_range_days, prior_confidence, **details)

        history_start = df["occurred_at"].min().normalize()
        tolerance = pd.Timedelta(days=cfg.history_start_tolerance_days)

        month_rows = []
        partial_months = []
        analyzed = 0
        for period in periods:
            month_df = expenses[expenses["occurred_at"].dt.to_period("M") == period]
            month_df = month_df[month_df["occurred_at"] <= self._anchor(df)]
            if month_df.empty:
                continue
            # History starting mid-month leaves the early window empty, not quiet.
            if history_start > period.start_time + tolerance:
                partial_months.append(str(period))
                continue
            analyzed += len(month_df)
            month_rows.append(self._summarize_month(period, month_df, self._anchor(df)))

        details["months"] = [
            {k: v for k, v in row.items() if k != "late_categories"} for row in month_rows
        ]
        details["partial_months"] = partial_months

        if len(month_rows) < cfg.min_months:
            return self._no_detection(
                "insufficient_history", analyzed, time_range_days, prior_confidence,
                months_observed=len(month_rows), **details,
            )

        spikes = [row for row in month_rows if row["ratio"] >= cfg.spike_ratio]
        details.update({"months_observed": len(month_rows), "spike_months": len(spikes)})

        if len(spikes) < cfg.min_spike_months:
            return self._no_detection(
                "no_recurring_spike", analyzed, time_range_days, prior_confidence, **details
            )

        signals = [
            Signal(
                detection_reason=self.reason,
                signal_strength=magnitude_factor(row["ratio"]),
                time_context=TimeContext.END_OF_MONTH,
                category_id=row["top_late_category"],
            )
            for row in spikes
        ]

        mean_spike = sum(row["ratio"] for row in spikes) / len(spikes)
        factors = {
            "recurrence": recurrence_factor(len(spikes), len(month_rows)),
            "magnitude": magnitude_factor(mean_spike),
            "depth": recurrence_factor(len(month_rows), months_back),
        }
        raw_confidence = weighted_confidence(factors, cfg.weights)

        recurring_categories = self._recurring_late_categories(spikes)
        details.update({
            "factors": {k: round(v, 4) for k, v in factors.items()},
            "mean_spike_ratio": round(mean_spike, 4),
            "recurring_late_categories": recurring_categories,
        })
        if budget_categories is not None:
            budgeted = {normalize_label(c) for c in budget_categories}
            details["budgeted_late_categories"] = [
                c for c in recurring_categories if normalize_label(c) in budgeted
            ]

        return self._detection(
            raw_confidence, signals, analyzed, time_range_days, prior_confidence,
            smoothing_factor=self.config.end_of_month_smoothing_factor, **details,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: MONTH WINDOWS
    # -------------------------------------------------------------------------

    def _candidate_months(self, anchor: pd.Timestamp, months_back: int) -> list[pd.Period]:
        """
        The months_back most recent months whose late window has begun,
        oldest first. The anchor month qualifies once its day passes the cutoff.
        """
        cutoff_day = self.config.end_of_month.early_month_cutoff_day
        last = anchor.to_period("M")
        if anchor.day <= cutoff_day:
            last = last - 1
        return [last - offset for offset in range(months_back - 1, -1, -1)]

    @staticmethod
    def _time_range_days(periods: list[pd.Period], anchor: pd.Timestamp) -> int:
        if not periods:
            return 0
        start = periods[0].start_time
        end = min(periods[-1].end_time, anchor)
        return max((end - start).days + 1, 0)

    def _summarize_month(self, period: pd.Period, month_df: pd.DataFrame, anchor: pd.Timestamp) -> dict:
        cfg = self.config.end_of_month
        days_in_month = calendar.monthrange(period.year, period.month)[1]
        last_day = days_in_month
        if period == anchor.to_period("M"):
            last_day = min(anchor.day, days_in_month)

        day = month_df["occurred_at"].dt.day
        early = month_df[day <= cfg.early_month_cutoff_day]
        late = month_df[day > cfg.early_month_cutoff_day]

        early_total = float(early["amount"].abs().sum())
        late_total = float(late["amount"].abs().sum())
        early_rate = early_total / cfg.early_month_cutoff_day
        late_days = max(last_day - cfg.early_month_cutoff_day, 1)
        late_rate = late_total / late_days

        if early_rate > 0:
            ratio = min(late_rate / early_rate, cfg.max_spike_ratio)
        else:
            ratio = cfg.max_spike_ratio if late_rate > 0 else 0.0

        late_categories = (
            late.dropna(subset=["category_id"])
            .assign(abs_amount=lambda f: f["amount"].abs())
            .groupby("category_id")["abs_amount"].sum()
            .sort_values(ascending=False, kind="mergesort")
        )

        return {
            "month": str(period),
            "early_total": round(early_total, 2),
            "late_total": round(late_total, 2),
            "early_daily_rate": round(early_rate, 2),
            "late_daily_rate": round(late_rate, 2),
            "ratio": round(ratio, 4),
            "transactions": len(month_df),
            "top_late_category": late_categories.index[0] if not late_categories.empty else None,
            "late_categories": list(late_categories.index),
        }

    def _recurring_late_categories(self, spikes: list[dict]) -> list[str]:
        """Categories with late-window spend in at least min_spike_months spike months."""
        counts: dict[str, int] = {}
        for row in spikes:
            for category in row["late_categories"]:
                counts[category] = counts.get(category, 0) + 1
        threshold = self.config.end_of_month.min_spike_months
        return sorted(c for c, n in counts.items() if n >= threshold)


def detect_end_of_month_collapse(
    transactions, months_back: Optional[int] = None, config=None, prior_confidence: float = 0.0
) -> DetectionResult:
    """Functional entry point: detect_end_of_month_collapse(transactions, months_back) -> DetectionResult."""
    return EndOfMonthDetector(config=config).detect(
        transactions, months_back=months_back, prior_confidence=prior_confidence
    )
