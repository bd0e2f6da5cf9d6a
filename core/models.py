"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: Read-only input record supplied by the Transaction Supply.
  Optional fields carry documented fallbacks so detectors never probe
  for attribute presence.

- Signal: One piece of evidence behind a detected behavior.

- DetectionMetadata / DetectionResult: Output of every detector. Transient,
  recomputed on each call, never persisted by the engine.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import pandas as pd


_CLOCK = re.compile(r"\d{1,2}:\d{2}")


class TimeContext(str, Enum):
    """When, relative to the day or the month, a signal happened."""

    DAYTIME = "daytime"
    LATE_NIGHT = "late_night"
    END_OF_MONTH = "end_of_month"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Transaction:
    """
    A single ledger entry as supplied by storage.

    Field fallbacks:
        merchant_name    None -> grouping falls back to category_id, then "uncategorized".
        category_id      None -> no category evidence; never comfort.
        transaction_date None/unparseable -> record is skipped by every detector.
        transaction_time None -> hour taken from transaction_date when it carries
                         a time component, otherwise unknown (treated as daytime).
    """

    id: str
    amount: float                    # Negative = expense, non-negative = income/refund.
    transaction_date: Any            # date | datetime | ISO-8601 string
    merchant_name: Optional[str] = None
    category_id: Optional[str] = None
    transaction_time: Optional[str] = None   # "HH:MM" or "HH:MM:SS"
    transaction_type: Optional[str] = None
    source: Optional[str] = None

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    def occurred_at(self) -> tuple[Optional[datetime], bool]:
        """
        Resolves the transaction timestamp.

        Returns:
            (timestamp, hour_known). timestamp is None when the date is
            missing or unparseable.
        """
        value = self.transaction_date
        if value is None or (isinstance(value, str) and not value.strip()):
            return None, False

        hour_known = False
        if isinstance(value, datetime):
            stamp = value
            hour_known = True
        elif isinstance(value, date):
            stamp = datetime.combine(value, time())
        else:
            text = str(value).strip()
            try:
                parsed = pd.Timestamp(text)
            except (ValueError, TypeError):
                return None, False
            if pd.isna(parsed):
                return None, False
            stamp = parsed.to_pydatetime()
            # "March 5, 2024" parses to midnight but names no time of day.
            hour_known = _CLOCK.search(text) is not None

        if self.transaction_time:
            try:
                clock = time.fromisoformat(str(self.transaction_time).strip())
            except ValueError:
                clock = None
            if clock is not None:
                stamp = stamp.replace(hour=clock.hour, minute=clock.minute, second=clock.second)
                hour_known = True

        return stamp, hour_known

    @classmethod
    def from_dict(cls, row: Mapping[str, Any]) -> "Transaction":
        """
        Builds a Transaction from a loose mapping (storage row, CSV row).

        `category` is accepted as an alias of `category_id`. Empty strings and
        NaN are treated as absent.

        Raises:
            ValueError: If id or amount is missing or amount is not numeric.
        """
        def _clean(key: str) -> Optional[str]:
            value = row.get(key)
            if value is None:
                return None
            if isinstance(value, float) and pd.isna(value):
                return None
            text = str(value).strip()
            return text or None

        txn_id = _clean("id") or _clean("transaction_id")
        if txn_id is None:
            raise ValueError(f"Transaction row has no id: {dict(row)}")

        raw_amount = row.get("amount")
        try:
            amount = float(raw_amount)
        except (TypeError, ValueError):
            raise ValueError(f"Transaction {txn_id} has non-numeric amount: {raw_amount!r}")
        if pd.isna(amount):
            raise ValueError(f"Transaction {txn_id} has no amount")

        txn_date = row.get("transaction_date")
        if txn_date is not None and not isinstance(txn_date, str) and pd.isna(txn_date):
            txn_date = None
        if isinstance(txn_date, pd.Timestamp):
            txn_date = txn_date.to_pydatetime()

        return cls(
            id=txn_id,
            amount=amount,
            transaction_date=txn_date,
            merchant_name=_clean("merchant_name"),
            category_id=_clean("category_id") or _clean("category"),
            transaction_time=_clean("transaction_time"),
            transaction_type=_clean("transaction_type"),
            source=_clean("source"),
        )


@dataclass
class Signal:
    """One discrete piece of evidence supporting a detected pattern."""

    detection_reason: str            # e.g. "frequent_small_purchase", "late_night_cluster"
    signal_strength: float           # 0.0 to 1.0
    time_context: TimeContext = TimeContext.UNKNOWN
    category_id: Optional[str] = None
    transaction_id: Optional[str] = None
    merchant_name: Optional[str] = None

    def __post_init__(self):
        self.signal_strength = round(min(max(float(self.signal_strength), 0.0), 1.0), 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detection_reason": self.detection_reason,
            "signal_strength": self.signal_strength,
            "time_context": self.time_context.value,
            "category_id": self.category_id,
            "transaction_id": self.transaction_id,
            "merchant_name": self.merchant_name,
        }


@dataclass
class DetectionMetadata:
    algorithm_version: str
    transactions_analyzed: int
    time_range_days: int
    run_timestamp: str               # ISO-8601
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm_version": self.algorithm_version,
            "transactions_analyzed": self.transactions_analyzed,
            "time_range_days": self.time_range_days,
            "run_timestamp": self.run_timestamp,
            "details": dict(self.details),
        }


@dataclass
class DetectionResult:
    """
    Detector output. confidence is 0.0 whenever detected is False;
    sub-threshold diagnostics go into metadata.details instead.
    """

    detected: bool
    confidence: float                # 0.0 to 1.0
    signals: list[Signal] = field(default_factory=list)
    metadata: DetectionMetadata | None = None

    @property
    def detection_reasons(self) -> list[str]:
        """Distinct reason tags in evidence order."""
        seen: list[str] = []
        for s in self.signals:
            if s.detection_reason not in seen:
                seen.append(s.detection_reason)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "confidence": self.confidence,
            "signals": [s.to_dict() for s in self.signals],
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }
