"""
transaction_supply.py
----------------------
The Transaction Supply boundary.

The engine never fetches or caches data itself. A TransactionSupply hands
over an already-materialized snapshot; storage-backed implementations live
with the application. Two adapters ship here: an in-memory one (tests,
callers that already hold the rows) and a CSV one (the CLI).
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Iterable, Mapping

import pandas as pd

from core.models import Transaction

logger = logging.getLogger(__name__)


class TransactionSupply(ABC):
    """Source of a user's transactions over a lookback window."""

    @abstractmethod
    def fetch(self, lookback_days: int | None = None) -> list[Transaction]:
        """
        Returns the user's transactions.

        Args:
            lookback_days: Trailing window to cover. None = everything available.
        """
        ...


class InMemoryTransactionSupply(TransactionSupply):
    def __init__(self, transactions: Iterable[Transaction | Mapping]):
        self._transactions = [
            t if isinstance(t, Transaction) else Transaction.from_dict(t) for t in transactions
        ]

    def fetch(self, lookback_days: int | None = None) -> list[Transaction]:
        return _within_lookback(list(self._transactions), lookback_days)


class CsvTransactionSupply(TransactionSupply):
    """
    Reads transactions from a CSV export.

    Expected columns: id (or transaction_id), amount, transaction_date, and
    optionally merchant_name, category_id (or category), transaction_time,
    transaction_type, source. Rows that cannot be parsed are skipped.
    """

    def __init__(self, path: str):
        self.path = path

    def fetch(self, lookback_days: int | None = None) -> list[Transaction]:
        if not os.path.exists(self.path):
            raise FileNotFoundError(f"Transactions file not found: {self.path}")

        df = pd.read_csv(self.path, dtype={"id": str, "transaction_id": str, "transaction_time": str})
        missing = [c for c in ("amount", "transaction_date") if c not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        transactions: list[Transaction] = []
        skipped = 0
        for row in df.to_dict("records"):
            try:
                transactions.append(Transaction.from_dict(row))
            except ValueError as exc:
                skipped += 1
                logger.warning(f"Skipping unreadable row: {exc}")

        logger.info(f"Loaded {len(transactions):,} transactions from {self.path} ({skipped} skipped).")
        return _within_lookback(transactions, lookback_days)


def _within_lookback(transactions: list[Transaction], lookback_days: int | None) -> list[Transaction]:
    """Keeps records within lookback_days of the newest dated record. Undated records pass through."""
    if lookback_days is None:
        return transactions

    stamps = [t.occurred_at()[0] for t in transactions]
    dated = [s.replace(tzinfo=None) for s in stamps if s is not None]
    if not dated:
        return transactions

    cutoff = max(dated) - pd.Timedelta(days=lookback_days)
    return [
        t for t, s in zip(transactions, stamps)
        if s is None or s.replace(tzinfo=None) >= cutoff
    ]
