"""Flat DataFrame view of transactions for the insight calculators."""

from typing import Iterable

import pandas as pd

from core.models import Transaction


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """
    Columns: id, amount, category, occurred_at. Undated records are dropped;
    timezones are stripped (wall-clock time kept).
    """
    rows = []
    for t in transactions:
        if not isinstance(t, Transaction):
            t = Transaction.from_dict(t)
        stamp, _ = t.occurred_at()
        if stamp is None:
            continue
        rows.append({
            "id": t.id,
            "amount": t.amount,
            "category": t.category_id or "uncategorized",
            "occurred_at": stamp.replace(tzinfo=None),
        })

    if not rows:
        return pd.DataFrame(columns=["id", "amount", "category", "occurred_at"])

    df = pd.DataFrame(rows)
    df["occurred_at"] = pd.to_datetime(df["occurred_at"])
    return df.sort_values("occurred_at", kind="mergesort").reset_index(drop=True)
