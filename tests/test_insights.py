"""
test_insights.py
-----------------
Tests for the insight calculators (saving habit, spending trends), the CSV
Transaction Supply and the command-line entry point.

Run from the project root:
    python -m pytest tests/test_insights.py -v
"""

import sys
import os
import json
import pytest
import pandas as pd
from datetime import datetime, timedelta

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
from core.models import Transaction
from core.transaction_supply import CsvTransactionSupply, InMemoryTransactionSupply
from insights.saving_habit import detect_saving_habit
from insights.trends import analyze_trends, direction_for, percent_change
from main import main


ANCHOR = datetime(2024, 3, 28, 12, 0)


@pytest.fixture(autouse=True)
def reset_config_cache():
    reset_config()
    yield
    reset_config()


def _expense(txn_id, amount, when, category="dining") -> Transaction:
    return Transaction(id=str(txn_id), amount=-abs(amount), transaction_date=when, category_id=category)


def _income(txn_id, amount, when) -> Transaction:
    return Transaction(id=str(txn_id), amount=abs(amount), transaction_date=when, category_id="salary")


def _four_weeks(daily_spend: float = 20.0, weekly_income=(500.0, 500.0, 500.0, 500.0)) -> list[Transaction]:
    """Daily spend for 28 days ending at ANCHOR; weekly_income[0] is the most recent week."""
    rows = [_expense(f"e{d}", daily_spend, ANCHOR - timedelta(days=d)) for d in range(28)]
    for week, income in enumerate(weekly_income):
        if income:
            rows.append(_income(f"i{week}", income, ANCHOR - timedelta(days=7 * week + 3)))
    return rows


# =============================================================================
# SAVING HABIT TESTS
# =============================================================================

class TestSavingHabit:
    def test_consistent_saver(self):
        result = detect_saving_habit(_four_weeks())
        assert result.has_saving_habit is True
        assert result.consistency == 1.0
        assert result.streak_weeks == 4
        assert result.average_savings_rate == pytest.approx(72.0)
        assert result.trend == "stable"
        assert result.message == "You've saved money for 4 weeks straight."

    def test_declining_savings(self):
        result = detect_saving_habit(_four_weeks(weekly_income=(150.0, 150.0, 500.0, 500.0)))
        assert result.has_saving_habit is True
        assert result.trend == "declining"

    def test_improving_savings(self):
        result = detect_saving_habit(_four_weeks(weekly_income=(500.0, 500.0, 150.0, 150.0)))
        assert result.trend == "improving"

    def test_no_income_means_no_habit(self):
        result = detect_saving_habit(_four_weeks(weekly_income=(0, 0, 0, 0)))
        assert result.has_saving_habit is False
        assert result.consistency == 0.0
        assert result.streak_weeks == 0
        assert result.message == ""

    def test_broken_streak(self):
        result = detect_saving_habit(_four_weeks(weekly_income=(0, 500.0, 500.0, 500.0)))
        assert result.streak_weeks == 0
        assert result.consistency == 0.75

    def test_too_few_transactions(self):
        result = detect_saving_habit(_four_weeks()[:5])
        assert result.has_saving_habit is False
        assert result.trend == "none"


# =============================================================================
# TREND TESTS
# =============================================================================

class TestTrends:
    def test_percent_change(self):
        assert percent_change(150, 100) == 50
        assert percent_change(50, 100) == -50
        assert percent_change(10, 0) == 0

    def test_direction_for(self):
        assert direction_for(15, 10) == "up"
        assert direction_for(-15, 10) == "down"
        assert direction_for(10, 10) == "stable"

    def test_weekly_spike(self):
        rows = [_expense(d, 200.0 if d < 7 else 100.0, ANCHOR - timedelta(days=d)) for d in range(28)]
        result = analyze_trends(rows)
        assert result.weekly.direction == "up"
        assert result.weekly.percent_change == 100
        assert [t["period"] for t in result.weekly.totals] == ["Week 1", "Week 2", "Week 3", "Week 4"]
        assert result.weekly.totals[-1]["total"] == pytest.approx(1400.0)
        assert "Spending up 100% this week." in result.insights

    def test_monthly_totals_labelled_oldest_first(self):
        rows = [_expense(d, 100.0, ANCHOR - timedelta(days=d)) for d in range(28)]
        result = analyze_trends(rows)
        assert [t["period"] for t in result.monthly.totals] == ["Jan 2024", "Feb 2024", "Mar 2024"]
        # No February spend to compare against.
        assert result.monthly.direction == "stable"

    def test_category_trends(self):
        rows = [_expense(d, 200.0 if d < 14 else 100.0, ANCHOR - timedelta(days=d), "dining") for d in range(28)]
        rows += [_expense(f"g{d}", 50.0, ANCHOR - timedelta(days=d), "groceries") for d in range(28)]
        result = analyze_trends(rows)
        categories = {t.category: t for t in result.categories}
        assert categories["dining"].direction == "up"
        assert categories["dining"].percent_change == 100
        # Flat categories are filtered out.
        assert "groceries" not in categories

    def test_new_category_counts_as_full_increase(self):
        rows = [_expense(d, 100.0, ANCHOR - timedelta(days=d), "dining") for d in range(28)]
        rows += [_expense("new", 40.0, ANCHOR - timedelta(days=1), "gaming")]
        result = analyze_trends(rows)
        gaming = next(t for t in result.categories if t.category == "gaming")
        assert gaming.percent_change == 100

    def test_too_few_transactions_is_neutral(self):
        result = analyze_trends([_expense(i, 10.0, ANCHOR - timedelta(days=i)) for i in range(3)])
        assert result.weekly.direction == "stable"
        assert result.monthly.direction == "stable"
        assert result.categories == []
        assert result.insights == []


# =============================================================================
# TRANSACTION SUPPLY TESTS
# =============================================================================

def _write_csv(path, rows: list[dict]) -> str:
    pd.DataFrame(rows).to_csv(path, index=False)
    return str(path)


def _coffee_rows(n: int = 20) -> list[dict]:
    return [
        {
            "id": f"t{i}",
            "amount": -5.5,
            "transaction_date": (datetime(2024, 3, 1, 8, 0) + timedelta(days=i)).isoformat(sep=" "),
            "merchant_name": "Blue Bottle Coffee",
            "category": "coffee",
        }
        for i in range(n)
    ]


class TestTransactionSupply:
    def test_csv_supply_reads_rows(self, tmp_path):
        path = _write_csv(tmp_path / "txns.csv", _coffee_rows(3))
        transactions = CsvTransactionSupply(path).fetch()
        assert [t.id for t in transactions] == ["t0", "t1", "t2"]
        assert transactions[0].category_id == "coffee"
        stamp, hour_known = transactions[0].occurred_at()
        assert stamp == datetime(2024, 3, 1, 8, 0)
        assert hour_known is True

    def test_csv_supply_skips_unreadable_rows(self, tmp_path):
        rows = _coffee_rows(3)
        rows[1]["amount"] = "n/a"
        path = _write_csv(tmp_path / "txns.csv", rows)
        assert [t.id for t in CsvTransactionSupply(path).fetch()] == ["t0", "t2"]

    def test_csv_supply_missing_columns(self, tmp_path):
        path = _write_csv(tmp_path / "txns.csv", [{"id": "1", "amount": -3.0}])
        with pytest.raises(ValueError, match="Missing required columns"):
            CsvTransactionSupply(path).fetch()

    def test_csv_supply_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CsvTransactionSupply(str(tmp_path / "nope.csv")).fetch()

    def test_lookback_measured_from_newest_record(self):
        rows = [_expense(d, 10.0, ANCHOR - timedelta(days=d)) for d in range(60)]
        rows.append(Transaction(id="undated", amount=-1.0, transaction_date=None))
        fetched = InMemoryTransactionSupply(rows).fetch(lookback_days=30)
        assert len(fetched) == 31 + 1
        assert len(InMemoryTransactionSupply(rows).fetch()) == 61


# =============================================================================
# CLI TESTS
# =============================================================================

class TestCli:
    def test_writes_behavioral_context_json(self, tmp_path):
        path = _write_csv(tmp_path / "txns.csv", _coffee_rows(20))
        out = tmp_path / "context.json"

        assert main(["--input", path, "--output", str(out)]) == 0

        payload = json.loads(out.read_text())
        context = payload["behavioral_context"]
        assert context["small_recurring"]["detected"] is True
        assert context["stress_spending"]["detected"] is False
        assert context["end_of_month"]["detected"] is False
        assert context["unavailable"] == {}
        assert "saving_habit" not in payload

    def test_with_insights(self, tmp_path):
        path = _write_csv(tmp_path / "txns.csv", _coffee_rows(20))
        out = tmp_path / "context.json"

        assert main(["--input", path, "--output", str(out), "--with-insights", "--seasonal"]) == 0

        payload = json.loads(out.read_text())
        assert set(payload) == {"behavioral_context", "saving_habit", "trends"}
        assert payload["saving_habit"]["has_saving_habit"] is False
        assert payload["trends"]["weekly"]["direction"] in {"up", "down", "stable"}

    def test_summary_lists_detection_reasons(self, tmp_path, capsys):
        path = _write_csv(tmp_path / "txns.csv", _coffee_rows(20))
        assert main(["--input", path, "--output", str(tmp_path / "context.json")]) == 0
        assert "reasons: frequent_small_purchase" in capsys.readouterr().err

    def test_missing_input_returns_error(self, tmp_path):
        assert main(["--input", str(tmp_path / "missing.csv")]) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
