"""
trends.py
----------
Spending trend analysis: week over week, month over month and per category.

Expense totals are reported as positive amounts. Directions use percentage
thresholds from config.yaml:
    weekly / monthly:  change beyond ±threshold% -> "up" / "down"
    category:          last two weeks vs the two weeks before
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

import pandas as pd

from config.config_loader import get_insight_config
from core.models import Transaction
from insights.frame import transactions_frame


@dataclass
class PeriodTrend:
    direction: str                   # "up" | "down" | "stable"
    percent_change: int
    totals: list[dict] = field(default_factory=list)   # [{"period": label, "total": float}], oldest first


@dataclass
class CategoryTrend:
    category: str
    direction: str
    percent_change: int


@dataclass
class TrendAnalysis:
    weekly: PeriodTrend
    monthly: PeriodTrend
    categories: list[CategoryTrend] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)


def _neutral() -> TrendAnalysis:
    return TrendAnalysis(weekly=PeriodTrend("stable", 0), monthly=PeriodTrend("stable", 0))


def percent_change(recent: float, previous: float) -> int:
    if previous <= 0:
        return 0
    return int(round((recent - previous) / previous * 100))


def direction_for(change: int, threshold: float) -> str:
    if change > threshold:
        return "up"
    if change < -threshold:
        return "down"
    return "stable"


def analyze_trends(transactions: Iterable[Transaction], as_of: Optional[datetime] = None) -> TrendAnalysis:
    cfg = get_insight_config("trends")
    records = list(transactions)
    if len(records) < cfg["min_transactions"]:
        return _neutral()

    df = transactions_frame(records)
    expenses = df[df["amount"] < 0].copy()
    if expenses.empty:
        return _neutral()
    expenses["spend"] = expenses["amount"].abs()

    anchor = pd.Timestamp(as_of) if as_of is not None else df["occurred_at"].max()

    weekly = _weekly_trend(expenses, anchor, cfg)
    monthly = _monthly_trend(expenses, anchor, cfg)
    categories = _category_trends(expenses, anchor, cfg)

    return TrendAnalysis(
        weekly=weekly,
        monthly=monthly,
        categories=categories,
        insights=_insights(weekly, monthly, categories),
    )


def _weekly_trend(expenses: pd.DataFrame, anchor: pd.Timestamp, cfg: dict) -> PeriodTrend:
    weeks = cfg["weeks"]
    totals = []
    for i in range(weeks - 1, -1, -1):
        end = anchor - pd.Timedelta(days=7 * i)
        start = end - pd.Timedelta(days=7)
        mask = (expenses["occurred_at"] > start) & (expenses["occurred_at"] <= end)
        totals.append({"period": f"Week {weeks - i}", "total": round(float(expenses.loc[mask, "spend"].sum()), 2)})

    change = percent_change(totals[-1]["total"], totals[-2]["total"]) if len(totals) >= 2 else 0
    return PeriodTrend(direction_for(change, cfg["weekly_change_threshold"]), change, totals)


def _monthly_trend(expenses: pd.DataFrame, anchor: pd.Timestamp, cfg: dict) -> PeriodTrend:
    months = cfg["months"]
    current = anchor.to_period("M")
    by_month = expenses.groupby(expenses["occurred_at"].dt.to_period("M"))["spend"].sum()

    totals = []
    for offset in range(months - 1, -1, -1):
        period = current - offset
        totals.append({
            "period": period.strftime("%b %Y"),
            "total": round(float(by_month.get(period, 0.0)), 2),
        })

    change = percent_change(totals[-1]["total"], totals[-2]["total"]) if len(totals) >= 2 else 0
    return PeriodTrend(direction_for(change, cfg["monthly_change_threshold"]), change, totals)


def _category_trends(expenses: pd.DataFrame, anchor: pd.Timestamp, cfg: dict) -> list[CategoryTrend]:
    two_weeks = anchor - pd.Timedelta(days=14)
    four_weeks = anchor - pd.Timedelta(days=28)

    recent = expenses[(expenses["occurred_at"] > two_weeks) & (expenses["occurred_at"] <= anchor)]
    older = expenses[(expenses["occurred_at"] > four_weeks) & (expenses["occurred_at"] <= two_weeks)]
    recent_by = recent.groupby("category")["spend"].sum()
    older_by = older.groupby("category")["spend"].sum()

    trends = []
    for category in sorted(set(recent_by.index) | set(older_by.index)):
        r = float(recent_by.get(category, 0.0))
        o = float(older_by.get(category, 0.0))
        if o > 0:
            change = percent_change(r, o)
        else:
            change = 100 if r > 0 else 0
        if abs(change) <= cfg["category_min_change"]:
            continue
        trends.append(CategoryTrend(category, direction_for(change, cfg["category_change_threshold"]), change))

    trends.sort(key=lambda t: -abs(t.percent_change))
    return trends[: cfg["max_category_trends"]]


def _insights(weekly: PeriodTrend, monthly: PeriodTrend, categories: list[CategoryTrend]) -> list[str]:
    lines = []
    if weekly.direction == "down" and weekly.percent_change <= -20:
        lines.append(f"Spending down {abs(weekly.percent_change)}% this week.")
    elif weekly.direction == "up" and weekly.percent_change >= 30:
        lines.append(f"Spending up {weekly.percent_change}% this week.")

    if monthly.direction == "down" and monthly.percent_change <= -15:
        lines.append(f"{abs(monthly.percent_change)}% less than last month.")
    elif monthly.direction == "up" and monthly.percent_change >= 25:
        lines.append(f"This month's spending is {monthly.percent_change}% higher than last month.")

    for trend in categories[:2]:
        if trend.direction == "up":
            lines.append(f"{trend.category} spending up {trend.percent_change}%.")
        elif trend.direction == "down":
            lines.append(f"{trend.category} spending down {abs(trend.percent_change)}%.")
    return lines
