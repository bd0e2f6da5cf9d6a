"""
seasonality.py
---------------
Seasonal adjustment for detection confidence.

Spending is expected to run higher in some months (December) and on some
weekdays (Saturday). A detection made during an expensive season is less
surprising, so its confidence is divided by the seasonal factor:

    adjusted = clamp(confidence / (month_factor * weekday_factor * holiday_boost))

Factors start from config.yaml and can be recalibrated from a user's own
history with calibrate_seasonal_factors().
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, Optional

import pandas as pd

from config.config_loader import get_seasonal_defaults
from core.models import Transaction
from core.scoring import clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeasonalFactors:
    monthly_factors: Dict[int, float] = field(default_factory=dict)       # 1 = January
    day_of_week_factors: Dict[int, float] = field(default_factory=dict)   # 0 = Monday
    is_holiday_period: bool = False
    last_calibrated_at: Optional[str] = None


def default_seasonal_factors() -> SeasonalFactors:
    cfg = get_seasonal_defaults()
    return SeasonalFactors(
        monthly_factors={int(k): float(v) for k, v in cfg["monthly_factors"].items()},
        day_of_week_factors={int(k): float(v) for k, v in cfg["day_of_week_factors"].items()},
    )


def is_holiday_period(when: date) -> bool:
    """Nov 15 through Jan 5."""
    return (when.month == 11 and when.day >= 15) or when.month == 12 or (when.month == 1 and when.day <= 5)


def seasonal_factor(factors: SeasonalFactors, when: date) -> float:
    month = factors.monthly_factors.get(when.month, 1.0)
    weekday = factors.day_of_week_factors.get(when.weekday(), 1.0)
    boost = get_seasonal_defaults()["holiday_boost"] if factors.is_holiday_period else 1.0
    return month * weekday * boost


def apply_seasonal_adjustment(
    confidence: float, factors: SeasonalFactors, when: date, ceiling: float = 1.0
) -> float:
    """Divides confidence by the seasonal factor; zero stays zero."""
    if confidence <= 0:
        return 0.0
    factor = seasonal_factor(factors, when)
    if factor <= 0:
        return clamp(confidence, 0.0, ceiling)
    return round(clamp(confidence / factor, 0.0, ceiling), 4)


def calibrate_seasonal_factors(
    transactions: Iterable[Transaction],
    existing: Optional[SeasonalFactors] = None,
    as_of: Optional[datetime] = None,
) -> SeasonalFactors:
    """
    Re-derives monthly and weekday factors from the user's own expenses.

    Each factor is the average expense in that month (weekday) relative to the
    average across months (weekdays), clamped to the configured bounds.
    Periods with no data keep their existing factor. With fewer than
    min_transactions dated expenses the existing factors are returned unchanged.
    """
    cfg = get_seasonal_defaults()
    existing = existing or default_seasonal_factors()

    rows = []
    for t in transactions:
        if not t.is_expense:
            continue
        stamp, _ = t.occurred_at()
        if stamp is not None:
            rows.append({"occurred_at": stamp.replace(tzinfo=None), "amount": abs(t.amount)})

    if len(rows) < cfg["min_transactions"]:
        logger.debug(f"Seasonal calibration skipped: {len(rows)} dated expenses < {cfg['min_transactions']}.")
        return existing

    df = pd.DataFrame(rows)
    df["occurred_at"] = pd.to_datetime(df["occurred_at"])

    by_month = df.groupby(df["occurred_at"].dt.month)["amount"].mean()
    by_weekday = df.groupby(df["occurred_at"].dt.weekday)["amount"].mean()

    month_lo, month_hi = cfg["monthly_bounds"]
    day_lo, day_hi = cfg["day_of_week_bounds"]

    monthly = {}
    for m in range(1, 13):
        if m in by_month.index:
            monthly[m] = clamp(float(by_month[m] / by_month.mean()), month_lo, month_hi)
        else:
            monthly[m] = existing.monthly_factors.get(m, 1.0)

    weekdays = {}
    for d in range(7):
        if d in by_weekday.index:
            weekdays[d] = clamp(float(by_weekday[d] / by_weekday.mean()), day_lo, day_hi)
        else:
            weekdays[d] = existing.day_of_week_factors.get(d, 1.0)

    now = as_of or datetime.now()
    return SeasonalFactors(
        monthly_factors={m: round(v, 4) for m, v in monthly.items()},
        day_of_week_factors={d: round(v, 4) for d, v in weekdays.items()},
        is_holiday_period=is_holiday_period(now),
        last_calibrated_at=now.isoformat(),
    )
