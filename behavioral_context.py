"""
behavioral_context.py
----------------------
Main orchestration layer. Wires together:
    1. Transaction Supply       →  materializes the user's transaction snapshot
    2. Detectors                →  small recurring, stress spending, end of month
    3. Behavioral context       →  composite consumed by the advisory and
                                   intervention layers

Detectors run independently (concurrently by default). A detector that
raises is logged and reported as unavailable; it never takes the other two
down with it.

Usage:
    from behavioral_context import BehavioralContextBuilder

    builder = BehavioralContextBuilder(supply=CsvTransactionSupply("txns.csv"))
    context = builder.get_behavioral_context()
    context.to_dict()
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

import pandas as pd

from config.detection_config import DetectionConfig, load_detection_config
from core.models import DetectionMetadata, DetectionResult
from core.seasonality import SeasonalFactors, apply_seasonal_adjustment, seasonal_factor
from core.transaction_supply import TransactionSupply
from detectors.base_detector import BaseDetector
from detectors.end_of_month import EndOfMonthDetector
from detectors.small_recurring import SmallRecurringDetector
from detectors.stress_spending import StressSpendingDetector

logger = logging.getLogger(__name__)


DETECTOR_KEYS = ("small_recurring", "stress_spending", "end_of_month")


@dataclass
class DetectorFailure:
    """Why a detector is missing from the context."""
    detector: str
    error_type: str
    message: str


@dataclass
class BehavioralContext:
    """
    Composite output of all detectors, keyed by detector name.

    Downstream consumers read detected / confidence / reason tags from here
    and never re-derive detection logic.
    """

    small_recurring: DetectionResult
    stress_spending: DetectionResult
    end_of_month: DetectionResult
    failures: Dict[str, DetectorFailure] = field(default_factory=dict)
    generated_at: str = ""
    activation_threshold: float = 0.75
    intervention_threshold: float = 0.80

    def __getitem__(self, name: str) -> DetectionResult:
        if name not in DETECTOR_KEYS:
            raise KeyError(f"Unknown detector '{name}'. Available: {list(DETECTOR_KEYS)}")
        return getattr(self, name)

    def results(self) -> Dict[str, DetectionResult]:
        return {name: self[name] for name in DETECTOR_KEYS}

    def is_available(self, name: str) -> bool:
        return name not in self.failures

    def confidence_scores(self) -> Dict[str, float]:
        return {name: result.confidence for name, result in self.results().items()}

    def active_behavior(self) -> Optional[str]:
        """Highest-confidence detected behavior at or above the activation threshold."""
        candidates = [
            (result.confidence, name)
            for name, result in self.results().items()
            if result.detected and result.confidence >= self.activation_threshold
        ]
        if not candidates:
            return None
        # Ties resolve to detector order.
        best = max(c for c, _ in candidates)
        return next(name for c, name in candidates if c == best)

    def intervention_candidates(self) -> list[str]:
        """Detected behaviors confident enough for an in-app nudge, strongest first."""
        ranked = [
            (name, result.confidence)
            for name, result in self.results().items()
            if result.detected and result.confidence >= self.intervention_threshold
        ]
        return [name for name, _ in sorted(ranked, key=lambda x: -x[1])]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: result.to_dict() for name, result in self.results().items()}
        payload["unavailable"] = {
            name: {"error_type": f.error_type, "message": f.message} for name, f in self.failures.items()
        }
        payload["active_behavior"] = self.active_behavior()
        payload["generated_at"] = self.generated_at
        return payload


class BehavioralContextBuilder:
    """
    Runs the three detectors over one snapshot and assembles a BehavioralContext.

    Holds no state between calls beyond its immutable settings.
    """

    def __init__(
        self,
        supply: TransactionSupply | None = None,
        config: DetectionConfig | None = None,
        as_of: datetime | None = None,
        detectors: Mapping[str, BaseDetector] | None = None,
        seasonal_factors: SeasonalFactors | None = None,
        parallel: bool = True,
    ):
        """
        Args:
            supply: Transaction source for get_behavioral_context().
            config: Detection settings. Defaults to config.yaml.
            as_of: Anchor date for all detectors. Defaults to the newest transaction.
            detectors: Replacement detectors by name (tuning, testing).
            seasonal_factors: When given, confidences are seasonally adjusted.
            parallel: Run detectors on a thread pool instead of sequentially.
        """
        self.supply = supply
        self.config = config or load_detection_config()
        self.as_of = as_of
        self.seasonal_factors = seasonal_factors
        self.parallel = parallel

        self.detectors: Dict[str, BaseDetector] = {
            "small_recurring": SmallRecurringDetector(self.config, as_of=as_of),
            "stress_spending": StressSpendingDetector(self.config, as_of=as_of),
            "end_of_month": EndOfMonthDetector(self.config, as_of=as_of),
        }
        for name, detector in (detectors or {}).items():
            if name not in DETECTOR_KEYS:
                raise KeyError(f"Unknown detector '{name}'. Available: {list(DETECTOR_KEYS)}")
            self.detectors[name] = detector

        logger.info(
            f"Behavioral context builder initialized. "
            f"Detectors: {list(self.detectors)}. Parallel: {parallel}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def get_behavioral_context(
        self,
        months_back: int | None = None,
        budget_categories: Iterable[str] | None = None,
        prior_confidences: Mapping[str, float] | None = None,
    ) -> BehavioralContext:
        """Fetches the snapshot from the Transaction Supply, then builds the context."""
        if self.supply is None:
            raise ValueError("No TransactionSupply configured; call build() with transactions instead.")

        months = months_back or self.config.end_of_month.months_back
        lookback = max(
            self.config.small_recurring.lookback_days,
            self.config.stress_spending.lookback_days,
            (months + 1) * 31,
        )
        transactions = self.supply.fetch(lookback_days=lookback)
        logger.info(f"Fetched {len(transactions):,} transactions (lookback {lookback} days).")
        return self.build(transactions, months_back, budget_categories, prior_confidences)

    def build(
        self,
        transactions,
        months_back: int | None = None,
        budget_categories: Iterable[str] | None = None,
        prior_confidences: Mapping[str, float] | None = None,
    ) -> BehavioralContext:
        """
        Runs all detectors over an in-memory snapshot.

        Args:
            transactions: Sequence of Transaction (or mappings) or a DataFrame.
            months_back: Months compared by the end-of-month detector.
            budget_categories: Active budget categories for end-of-month annotation.
            prior_confidences: Previous confidence per detector, for smoothing.
        """
        snapshot = _materialize(transactions)
        priors = dict(prior_confidences or {})
        budgets = list(budget_categories) if budget_categories is not None else None

        calls = {
            "small_recurring": {"prior_confidence": priors.get("small_recurring", 0.0)},
            "stress_spending": {"prior_confidence": priors.get("stress_spending", 0.0)},
            "end_of_month": {
                "months_back": months_back,
                "budget_categories": budgets,
                "prior_confidence": priors.get("end_of_month", 0.0),
            },
        }

        logger.info(f"Building behavioral context over {_describe(snapshot)}.")

        results: Dict[str, DetectionResult] = {}
        failures: Dict[str, DetectorFailure] = {}

        if self.parallel:
            with ThreadPoolExecutor(max_workers=len(DETECTOR_KEYS), thread_name_prefix="detector") as pool:
                futures = {
                    name: pool.submit(self.detectors[name].detect, snapshot, **calls[name])
                    for name in DETECTOR_KEYS
                }
                for name, future in futures.items():
                    self._collect(name, future.result, results, failures)
        else:
            for name in DETECTOR_KEYS:
                self._collect(
                    name, lambda n=name: self.detectors[n].detect(snapshot, **calls[n]), results, failures
                )

        if self.seasonal_factors is not None:
            results = self._apply_seasonality(results)

        logger.info(
            f"Behavioral context complete. "
            f"Detected: {[n for n in DETECTOR_KEYS if results[n].detected]}. "
            f"Unavailable: {list(failures)}."
        )

        return BehavioralContext(
            small_recurring=results["small_recurring"],
            stress_spending=results["stress_spending"],
            end_of_month=results["end_of_month"],
            failures=failures,
            generated_at=datetime.now().isoformat(),
            activation_threshold=self.config.activation_threshold,
            intervention_threshold=self.config.intervention_threshold,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: FAILURE ISOLATION
    # -------------------------------------------------------------------------

    def _collect(self, name, run, results, failures) -> None:
        try:
            results[name] = run()
        except Exception as exc:
            logger.exception(f"Detector '{name}' failed; reporting it as unavailable.")
            failures[name] = DetectorFailure(
                detector=name, error_type=type(exc).__name__, message=str(exc)
            )
            results[name] = self._unavailable_result(name, exc)

    def _unavailable_result(self, name: str, exc: Exception) -> DetectionResult:
        section = getattr(self.config, name)
        return DetectionResult(
            detected=False,
            confidence=0.0,
            signals=[],
            metadata=DetectionMetadata(
                algorithm_version=section.algorithm_version,
                transactions_analyzed=0,
                time_range_days=0,
                run_timestamp=datetime.now().isoformat(),
                details={"status": "unavailable", "error": f"{type(exc).__name__}: {exc}"},
            ),
        )

    # -------------------------------------------------------------------------
    # INTERNAL: SEASONALITY
    # -------------------------------------------------------------------------

    def _apply_seasonality(self, results: Dict[str, DetectionResult]) -> Dict[str, DetectionResult]:
        # Seasonality describes the period the user is in now, not the data's span.
        when = self.as_of or datetime.now()
        factor = seasonal_factor(self.seasonal_factors, when)
        adjusted = {}
        for name, result in results.items():
            confidence = apply_seasonal_adjustment(
                result.confidence, self.seasonal_factors, when, ceiling=self.config.confidence_ceiling
            )
            metadata = result.metadata
            if metadata is not None:
                metadata = replace(metadata, details={**metadata.details, "seasonal_factor": round(factor, 4)})
            adjusted[name] = replace(result, confidence=confidence, metadata=metadata)
        return adjusted


def get_behavioral_context(supply: TransactionSupply, **kwargs) -> BehavioralContext:
    """
    Functional entry point.

    Keyword args split between the builder (config, as_of, detectors,
    seasonal_factors, parallel) and the call (months_back,
    budget_categories, prior_confidences).
    """
    call_keys = {"months_back", "budget_categories", "prior_confidences"}
    call_kwargs = {k: v for k, v in kwargs.items() if k in call_keys}
    builder_kwargs = {k: v for k, v in kwargs.items() if k not in call_keys}
    return BehavioralContextBuilder(supply=supply, **builder_kwargs).get_behavioral_context(**call_kwargs)


def _materialize(transactions):
    """
    Turns one-shot iterables into a list so every detector sees the same
    snapshot. Anything that is not a plain iterable of records is passed
    through untouched and rejected by the detectors themselves.
    """
    if transactions is None:
        return []
    if isinstance(transactions, (pd.DataFrame, str, bytes, Mapping)):
        return transactions
    if not isinstance(transactions, Iterable):
        return transactions
    return list(transactions)


def _describe(snapshot) -> str:
    try:
        return f"{len(snapshot):,} transactions"
    except TypeError:
        return f"unsized input ({type(snapshot).__name__})"
