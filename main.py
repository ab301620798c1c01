"""
main.py
--------
Batch entry point for recurring transaction detection.

Reads one user's transaction export, runs the detection pipeline against a
single reference day, and writes the accepted patterns to the outputs/
folder. With --trace it also writes the stage-by-stage report used to
investigate why a merchant was (or was not) detected.

Usage (from the project root):
    python main.py --input transactions.csv

    # With optional arguments:
    python main.py --input transactions.csv --now 2025-06-30
    python main.py --input transactions.csv --trace --merchant 7468 7515
    python main.py --input transactions.csv --expected expected.csv
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import date, datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import RecurringDetectionPipeline, outcomes_to_dataframe
from diagnostics.evaluation import evaluate, expectations_from_dataframe
from diagnostics.stage_trace import filter_trace, log_trace, stage_summary, trace_to_dataframe


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

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recurring transaction detection: find active subscriptions, bills and paychecks."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to input transactions CSV (id, date, amount, merchant_group_id, ...)."
    )
    parser.add_argument(
        "--now", type=date.fromisoformat, default=None,
        help="Reference day (YYYY-MM-DD) for the lookback window and recency. Defaults to today."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--trace", action="store_true", default=False,
        help="Also write and log the stage-by-stage trace."
    )
    parser.add_argument(
        "--merchant", type=str, nargs="*", default=None,
        help="Restrict the trace to these merchant group ids."
    )
    parser.add_argument(
        "--expected", type=str, default=None,
        help="CSV of labelled merchants (merchant_group_id, should_detect, expected_amounts) to evaluate against."
    )
    parser.add_argument(
        "--verbose", action="store_true", default=False,
        help="Log every rejection as it happens."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # --- Capture "now" once for the whole run ---
    now = args.now or date.today()

    # --- Resolve paths ---
    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load transactions ---
    logger.info(f"Loading transactions from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        return 1

    transactions = pd.read_csv(args.input)
    logger.info(f"Loaded {len(transactions):,} rows.")

    # --- Run pipeline ---
    pipeline = RecurringDetectionPipeline()
    trace = pipeline.trace(transactions, now)
    outcomes = trace.outcomes

    # --- Output: outcomes ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    outcomes_df = outcomes_to_dataframe(outcomes)
    outcomes_path = os.path.join(output_dir, f"outcomes_{timestamp}.csv")
    outcomes_df.to_csv(outcomes_path, index=False)
    logger.info(f"Outcomes saved to: {outcomes_path}")

    # --- Optional: stage trace ---
    if args.trace:
        scoped = filter_trace(trace, args.merchant)
        log_trace(scoped)
        logger.info(f"Stage summary: {stage_summary(scoped)}")
        trace_path = os.path.join(output_dir, f"trace_{timestamp}.csv")
        trace_to_dataframe(scoped).to_csv(trace_path, index=False)
        logger.info(f"Trace saved to: {trace_path}")

    # --- Optional: evaluation against labelled merchants ---
    if args.expected:
        expectations = expectations_from_dataframe(pd.read_csv(args.expected))
        report = evaluate(outcomes, expectations)
        logger.info(f"Evaluation: {report.summary}")
        for detail in report.details:
            if detail.status != "matched":
                amounts = ", ".join(str(o.representative_amount) for o in detail.detected) or "-"
                logger.warning(f"[{detail.status.upper()}] merchant {detail.merchant_group_id}: detected amounts {amounts}")

    _print_summary(outcomes_df)
    return 0


def _print_summary(df: pd.DataFrame):
    """Prints a clean summary table to the console."""
    if df.empty:
        print("\n  No recurring patterns detected.\n")
        return

    print("\n" + "=" * 80)
    print("  RECURRING TRANSACTION DETECTION SUMMARY")
    print("=" * 80)

    print("\n  Patterns by Frequency:")
    print("  " + "-" * 60)
    for frequency in ["weekly", "biweekly", "monthly", "quarterly", "yearly"]:
        subset = df[df["frequency"] == frequency]
        if subset.empty:
            continue
        print(f"    {frequency:12s}  {len(subset):>5,} patterns  (mean confidence {subset['confidence_score'].mean():.2f})")

    print(f"\n  Direction Mix:")
    print("  " + "-" * 60)
    for direction in ["income", "expense"]:
        count = (df["direction"] == direction).sum()
        pct = (count / len(df) * 100) if len(df) > 0 else 0
        print(f"    {direction:10s}  {count:>5,}  ({pct:.1f}%)")

    print(f"\n  Merchants with active recurring patterns: {df['merchant_group_id'].nunique():,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
