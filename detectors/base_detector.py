"""
base_detector.py
-----------------
Abstract base class for all behavioral detectors.

Each concrete detector (small recurring, stress spending, end of month)
inherits from this. Shared logic (input validation, timestamp resolution,
lookback windowing, confidence smoothing/ceiling and DetectionResult
construction) lives here so it's never duplicated.

Concrete detectors only need to implement:
    - detect(): gate checks, signal construction and factor scoring
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from config.detection_config import DetectionConfig, load_detection_config
from core.models import DetectionMetadata, DetectionResult, Signal, Transaction
from core.primitives import classify_time_of_day_series, normalize_label
from core.scoring import clamp, smooth_confidence

logger = logging.getLogger(__name__)


FRAME_COLUMNS = [
    "id", "amount", "merchant_name", "category_id",
    "occurred_at", "hour_known", "merchant_key", "category_key", "group_key",
]

REQUIRED_FRAME_COLUMNS = ["amount", "transaction_date"]


class BaseDetector(ABC):
    """
    Abstract base for behavioral detectors.

    Detectors hold only immutable settings, so one instance can be shared
    across threads and called repeatedly with identical results.
    """

    name: str = ""

    def __init__(self, config: DetectionConfig | None = None, as_of: datetime | None = None):
        """
        Args:
            config: Detection settings. Defaults to config.yaml.
            as_of: Anchor for lookback windows. Defaults to the newest
                transaction in each input.
        """
        self.config = config or load_detection_config()
        self.as_of = as_of

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    @abstractmethod
    def detect(self, transactions, **kwargs) -> DetectionResult:
        """Run detection over an already-fetched transaction snapshot."""
        ...

    @property
    def algorithm_version(self) -> str:
        return getattr(self.config, self.name).algorithm_version

    # -------------------------------------------------------------------------
    # INTERNAL: DATA PREPARATION
    # -------------------------------------------------------------------------

    def _prepare(self, transactions) -> tuple[pd.DataFrame, int]:
        """
        Validates input and resolves it into a frame sorted by time.

        Accepts a sequence of Transaction objects or mappings, or a DataFrame
        with at least amount and transaction_date columns (plus id or
        transaction_id). Records without a usable date or amount are dropped.

        Returns:
            (frame, records_skipped)

        Raises:
            ValueError: If the input is not a transaction collection or a
                DataFrame is missing required columns.
        """
        records = self._coerce_records(transactions)

        rows = []
        skipped = 0
        for record in records:
            stamp, hour_known = record.occurred_at()
            if stamp is None:
                skipped += 1
                continue
            rows.append({
                "id": record.id,
                "amount": record.amount,
                "merchant_name": record.merchant_name,
                "category_id": record.category_id,
                "occurred_at": self._to_local(stamp),
                "hour_known": hour_known,
            })

        if skipped:
            logger.debug(f"{self.name}: skipped {skipped} records without a usable date.")

        if not rows:
            return pd.DataFrame(columns=FRAME_COLUMNS), skipped

        df = pd.DataFrame(rows)
        df["occurred_at"] = pd.to_datetime(df["occurred_at"])
        df["hour_known"] = df["hour_known"].astype(bool)
        df["merchant_key"] = df["merchant_name"].map(normalize_label)
        df["category_key"] = df["category_id"].map(normalize_label)
        df["group_key"] = df["merchant_key"].where(df["merchant_key"] != "", df["category_key"])
        df["group_key"] = df["group_key"].where(df["group_key"] != "", "uncategorized")

        df = df.sort_values(["occurred_at", "id"], kind="mergesort").reset_index(drop=True)
        return df, skipped

    def _coerce_records(self, transactions) -> list[Transaction]:
        if transactions is None:
            return []

        if isinstance(transactions, pd.DataFrame):
            missing = [c for c in REQUIRED_FRAME_COLUMNS if c not in transactions.columns]
            if "id" not in transactions.columns and "transaction_id" not in transactions.columns:
                missing.append("id")
            if missing:
                raise ValueError(f"Missing required columns: {missing}")
            transactions = _frame_records(transactions)

        if isinstance(transactions, (str, bytes, Mapping)) or not isinstance(transactions, Iterable):
            raise ValueError(
                f"Expected a sequence of transactions or a DataFrame, got {type(transactions).__name__}"
            )

        records: list[Transaction] = []
        for item in transactions:
            if isinstance(item, Transaction):
                records.append(item)
            elif isinstance(item, Mapping):
                try:
                    records.append(Transaction.from_dict(item))
                except ValueError as exc:
                    logger.debug(f"{self.name}: dropping malformed record ({exc}).")
            else:
                raise ValueError(f"Unsupported transaction record type: {type(item).__name__}")
        return records

    def _to_local(self, stamp: datetime) -> datetime:
        """Drops timezone info, converting to local_timezone first when configured."""
        if stamp.tzinfo is None:
            return stamp
        if self.config.local_timezone:
            return pd.Timestamp(stamp).tz_convert(self.config.local_timezone).tz_localize(None).to_pydatetime()
        return stamp.replace(tzinfo=None)

    def _anchor(self, df: pd.DataFrame) -> pd.Timestamp:
        if self.as_of is not None:
            anchor = pd.Timestamp(self.as_of)
            if anchor.tzinfo is not None:
                anchor = pd.Timestamp(self._to_local(anchor.to_pydatetime()))
            return anchor
        if df.empty:
            return pd.Timestamp(datetime.now())
        return df["occurred_at"].max()

    def _expenses_in_window(self, df: pd.DataFrame, lookback_days: int) -> pd.DataFrame:
        """Expense rows with anchor - lookback_days < occurred_at <= anchor."""
        if df.empty:
            return df
        anchor = self._anchor(df)
        cutoff = anchor - pd.Timedelta(days=lookback_days)
        mask = (df["amount"] < 0) & (df["occurred_at"] > cutoff) & (df["occurred_at"] <= anchor)
        return df[mask].copy()

    def _with_time_context(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        if df.empty:
            df["time_context"] = pd.Series(dtype=object)
            return df
        df["time_context"] = classify_time_of_day_series(df["occurred_at"], df["hour_known"], self.config)
        return df

    # -------------------------------------------------------------------------
    # INTERNAL: RESULT CONSTRUCTION
    # -------------------------------------------------------------------------

    def _no_detection(
        self,
        reason: str,
        transactions_analyzed: int,
        time_range_days: int,
        prior_confidence: float = 0.0,
        **details: Any,
    ) -> DetectionResult:
        """
        Builds a detected=False result. Confidence is always 0.0; a decayed
        prior, if any, is reported in metadata.details for trending.
        """
        logger.debug(f"{self.name}: not detected ({reason}).")
        details["reason"] = reason
        if prior_confidence > 0:
            details["decayed_prior_confidence"] = round(
                max(0.0, prior_confidence - self.config.confidence_decay), 4
            )
        return DetectionResult(
            detected=False,
            confidence=0.0,
            signals=[],
            metadata=self._metadata(transactions_analyzed, time_range_days, details),
        )

    def _detection(
        self,
        raw_confidence: float,
        signals: Sequence[Signal],
        transactions_analyzed: int,
        time_range_days: int,
        prior_confidence: float = 0.0,
        smoothing_factor: float | None = None,
        **details: Any,
    ) -> DetectionResult:
        """Builds a detected=True result, applying smoothing and the ceiling."""
        if smoothing_factor is None:
            smoothing_factor = self.config.smoothing_factor
        smoothed = smooth_confidence(clamp(raw_confidence), prior_confidence, smoothing_factor)
        confidence = round(min(smoothed, self.config.confidence_ceiling), 4)

        details["raw_confidence"] = round(raw_confidence, 4)
        logger.debug(f"{self.name}: detected (confidence={confidence:.3f}, signals={len(signals)}).")

        return DetectionResult(
            detected=True,
            confidence=confidence,
            signals=list(signals),
            metadata=self._metadata(transactions_analyzed, time_range_days, details),
        )

    def _metadata(self, transactions_analyzed: int, time_range_days: int, details: dict) -> DetectionMetadata:
        return DetectionMetadata(
            algorithm_version=self.algorithm_version,
            transactions_analyzed=int(transactions_analyzed),
            time_range_days=int(time_range_days),
            run_timestamp=datetime.now().isoformat(),
            details=details,
        )


def _frame_records(frame: pd.DataFrame) -> list[dict]:
    """
    DataFrame rows as mappings. A datetime column whose values all sit at
    midnight carries dates only, so it is handed over as dates and the hour
    stays unknown unless transaction_time supplies one.
    """
    dates = frame["transaction_date"]
    if pd.api.types.is_datetime64_any_dtype(dates):
        stamps = dates.dropna()
        if not stamps.empty and (stamps == stamps.dt.normalize()).all():
            frame = frame.assign(transaction_date=dates.dt.date)
    return frame.to_dict("records")
