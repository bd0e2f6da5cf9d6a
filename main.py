"""
main.py
--------
Entry point for the behavioral spending pattern engine.

Reads a transaction export, builds the behavioral context (small recurring,
stress spending, end of month) and writes it as JSON.

Usage (from the project root):
    python main.py --input transactions.csv

    # With optional arguments:
    python main.py --input transactions.csv --months-back 6
    python main.py --input transactions.csv --as-of 2024-03-31 --output context.json
    python main.py --input transactions.csv --with-insights --seasonal
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict

import pandas as pd

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from behavioral_context import BehavioralContextBuilder
from config.config_loader import load_config, reset_config
from config.detection_config import load_detection_config
from core.seasonality import calibrate_seasonal_factors, default_seasonal_factors
from core.transaction_supply import CsvTransactionSupply
from insights.saving_habit import detect_saving_habit
from insights.trends import analyze_trends


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Behavioral spending pattern engine: detect latent spending habits."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to the transactions CSV."
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to an alternative config.yaml."
    )
    parser.add_argument(
        "--months-back", type=int, default=None,
        help="Months compared by the end-of-month detector. Defaults to config value (3)."
    )
    parser.add_argument(
        "--as-of", type=str, default=None,
        help="Anchor date (YYYY-MM-DD[THH:MM]). Defaults to the newest transaction."
    )
    parser.add_argument(
        "--budget-category", action="append", default=None,
        help="Active budget category (repeatable). Annotates end-of-month results."
    )
    parser.add_argument(
        "--seasonal", action="store_true", default=False,
        help="Apply seasonal adjustment calibrated from the input history."
    )
    parser.add_argument(
        "--with-insights", action="store_true", default=False,
        help="Also compute saving habit and trend insights."
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Write JSON here instead of stdout."
    )
    parser.add_argument(
        "--verbose", action="store_true", default=False,
        help="Enable debug logging."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.config:
        reset_config()
        load_config(args.config)

    as_of = pd.Timestamp(args.as_of).to_pydatetime() if args.as_of else None

    # --- Load transactions ---
    logger.info(f"Loading transactions from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        return 1

    supply = CsvTransactionSupply(args.input)
    transactions = supply.fetch()

    # --- Optional: seasonal factors ---
    seasonal = None
    if args.seasonal:
        seasonal = calibrate_seasonal_factors(transactions, default_seasonal_factors(), as_of=as_of)

    # --- Build context ---
    builder = BehavioralContextBuilder(
        config=load_detection_config(), as_of=as_of, seasonal_factors=seasonal
    )
    context = builder.build(
        transactions, months_back=args.months_back, budget_categories=args.budget_category
    )
    payload = {"behavioral_context": context.to_dict()}

    # --- Optional: insights ---
    if args.with_insights:
        payload["saving_habit"] = asdict(detect_saving_habit(transactions, as_of=as_of))
        payload["trends"] = asdict(analyze_trends(transactions, as_of=as_of))

    output = json.dumps(payload, indent=2, default=str)
    if args.output:
        with open(args.output, "w") as f:
            f.write(output)
        logger.info(f"Behavioral context saved to: {args.output}")
    else:
        print(output)

    _print_summary(context)
    return 0


def _print_summary(context) -> None:
    """Prints a short summary table to stderr."""
    lines = ["", "=" * 60, "  BEHAVIORAL CONTEXT SUMMARY", "=" * 60]
    for name, result in context.results().items():
        status = "unavailable" if not context.is_available(name) else (
            "detected" if result.detected else "not detected"
        )
        lines.append(f"    {name:18s}  {status:14s}  confidence={result.confidence:.2f}  signals={len(result.signals)}")
        if result.detection_reasons:
            lines.append(f"    {'':18s}  reasons: {', '.join(result.detection_reasons)}")
    lines.append(f"\n  Active behavior: {context.active_behavior() or 'none'}")
    lines.append("=" * 60)
    print("\n".join(lines), file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
