"""
saving_habit.py
----------------
Positive-pattern insight: does the user consistently keep income above
spending week over week?

Looks at the last N weeks (default 4) before the anchor date and reports
consistency, savings rate, current streak and trend. This is an insight, not
a detector: it has no confidence score and no gate beyond a minimum sample.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import pandas as pd

from config.config_loader import get_insight_config
from core.models import Transaction
from insights.frame import transactions_frame


@dataclass
class SavingHabitResult:
    has_saving_habit: bool
    consistency: float               # Share of weeks with positive net savings.
    average_savings_rate: float      # Percent of income saved across the window.
    trend: str                       # "improving" | "stable" | "declining" | "none"
    streak_weeks: int                # Consecutive saving weeks, most recent first.
    message: str = ""


def detect_saving_habit(
    transactions: Iterable[Transaction], as_of: Optional[datetime] = None
) -> SavingHabitResult:
    cfg = get_insight_config("saving_habit")
    records = list(transactions)
    empty = SavingHabitResult(False, 0.0, 0.0, "none", 0, "")

    if len(records) < cfg["min_transactions"]:
        return empty

    df = transactions_frame(records)
    if df.empty:
        return empty

    anchor = pd.Timestamp(as_of) if as_of is not None else df["occurred_at"].max()
    weeks = cfg["weeks"]

    # weekly[0] is the most recent week.
    weekly = []
    for i in range(weeks):
        end = anchor - pd.Timedelta(days=7 * i)
        start = end - pd.Timedelta(days=7)
        week = df[(df["occurred_at"] > start) & (df["occurred_at"] <= end)]
        income = float(week.loc[week["amount"] > 0, "amount"].sum())
        expenses = float(week.loc[week["amount"] < 0, "amount"].abs().sum())
        weekly.append({"income": income, "expenses": expenses, "net": income - expenses})

    saving_weeks = sum(1 for w in weekly if w["net"] > 0)
    consistency = saving_weeks / weeks

    total_income = sum(w["income"] for w in weekly)
    total_expenses = sum(w["expenses"] for w in weekly)
    savings_rate = (total_income - total_expenses) / total_income * 100 if total_income > 0 else 0.0

    streak = 0
    for w in weekly:
        if w["net"] <= 0:
            break
        streak += 1

    half = weeks // 2
    recent_avg = sum(w["net"] for w in weekly[:half]) / max(half, 1)
    older_avg = sum(w["net"] for w in weekly[half:]) / max(weeks - half, 1)
    trend = _trend(recent_avg, older_avg, cfg["trend_tolerance"])

    has_habit = consistency >= cfg["min_consistency"] and savings_rate > 0

    return SavingHabitResult(
        has_saving_habit=has_habit,
        consistency=round(consistency, 4),
        average_savings_rate=round(savings_rate, 1),
        trend=trend,
        streak_weeks=streak,
        message=_message(has_habit, streak, consistency, savings_rate),
    )


def _trend(recent: float, older: float, tolerance: float) -> str:
    if recent == 0 and older == 0:
        return "none"
    # Compare against a band around the older average, sign-aware.
    band = abs(older) * tolerance
    if recent > older + band:
        return "improving"
    if recent < older - band:
        return "declining"
    return "stable"


def _message(has_habit: bool, streak: int, consistency: float, savings_rate: float) -> str:
    if has_habit:
        if streak >= 4:
            return f"You've saved money for {streak} weeks straight."
        if streak >= 2:
            return f"{streak} weeks of saving in a row."
        if consistency >= 0.75:
            return "You have a strong saving habit."
        return "You're building a saving habit."
    if savings_rate > 0:
        return "You saved overall, but consistency could improve."
    return ""
