"""
main.py
--------
Entry point for the Bill Clearing Engine.

Reads transactions, bills and (optionally) recurring templates from CSV,
runs one clearing pass and writes the per-transaction results to the
outputs/ folder.

List-valued bill/template columns (merchantNames, skippedPeriods) are
pipe-separated in the CSV, e.g. "CH 13|TRUSTEE".

Usage (from the project root):
    python main.py --transactions tx.csv --bills bills.csv

    # With optional arguments:
    python main.py --transactions tx.csv --bills bills.csv --templates templates.csv
    python main.py --transactions tx.csv --bills bills.csv --categorize --run-monitor
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import BillClearingPipeline
from core.bill_store import InMemoryBillStore
from core.categorizer import CategoryLookup
from monitoring.clearing_monitor import ClearingMonitor


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
        description="Bill Clearing Engine: Match bank transactions to unpaid bills."
    )
    parser.add_argument(
        "--transactions", type=str, required=True,
        help="Path to transactions CSV (id, name, amount, date)."
    )
    parser.add_argument(
        "--bills", type=str, required=True,
        help="Path to bills CSV (id, name, amount, dueDate, merchantNames, isPaid, recurringTemplateId)."
    )
    parser.add_argument(
        "--templates", type=str, default=None,
        help="Path to recurring templates CSV. Enables advancement and catch-up generation."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--user-id", type=str, default="default",
        help="User the bills belong to (generation lock key)."
    )
    parser.add_argument(
        "--as-of", type=str, default=None,
        help="Reference date (YYYY-MM-DD) for catch-up generation and the monitor. Defaults to today."
    )
    parser.add_argument(
        "--categorize", action="store_true", default=False,
        help="Add a keyword category column to the transactions output."
    )
    parser.add_argument(
        "--run-monitor", action="store_true", default=False,
        help="Also run the clearing monitor and output an alert report."
    )
    return parser.parse_args(argv)


def _read_csv(path: str, label: str) -> pd.DataFrame:
    logger.info(f"Loading {label} from: {path}")
    if not os.path.exists(path):
        logger.error(f"Input file not found: {path}")
        sys.exit(1)
    # Ids and dates stay strings; amounts are parsed by the models.
    return pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None) -> str:
    args = parse_args(argv)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load inputs ---
    transactions = _read_csv(args.transactions, "transactions")
    bills = _read_csv(args.bills, "bills")
    templates = _read_csv(args.templates, "templates") if args.templates else None
    logger.info(
        f"Loaded {len(transactions):,} transactions, {len(bills):,} bills, "
        f"{0 if templates is None else len(templates):,} templates."
    )

    # --- Build store and pipeline ---
    store = InMemoryBillStore(
        bills=bills.to_dict("records"),
        templates=templates.to_dict("records") if templates is not None else None,
    )
    if store.load_errors:
        logger.warning(f"Skipped {len(store.load_errors)} invalid bill/template row(s); see warnings above.")
    pipeline = BillClearingPipeline(store, user_id=args.user_id)

    # --- Run clearing ---
    logger.info("Running clearing pipeline...")
    results = pipeline.run(transactions)

    # --- Optional: catch-up generation ---
    if templates is not None:
        pipeline.generate_upcoming(as_of=args.as_of)

    # --- Optional: categorization ---
    if args.categorize:
        id_col = "id" if "id" in transactions.columns else "transaction_id"
        name_col = "name" if "name" in transactions.columns else "description"
        categorized = CategoryLookup().categorize_frame(transactions, description_col=name_col)
        categories = categorized.drop_duplicates(id_col).set_index(id_col)["category"]
        results["category"] = results["transaction_id"].map(categories).fillna("")

    # --- Output: Clearing Results ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results_path = os.path.join(output_dir, f"cleared_{timestamp}.csv")
    results.to_csv(results_path, index=False)
    logger.info(f"Clearing results saved to: {results_path}")

    # --- Print summary ---
    _print_summary(results, store)

    # --- Optional: Clearing Monitor ---
    if args.run_monitor:
        logger.info("Running clearing monitor...")
        report = ClearingMonitor().run(results, store.unpaid_bills(), as_of=args.as_of)

        logger.info(f"Monitor Report: {report.summary}")
        for alert in report.alerts:
            level = {"CRITICAL": logging.ERROR, "WARNING": logging.WARNING}.get(alert.severity, logging.INFO)
            logger.log(level, f"[{alert.alert_type}] {alert.severity}: {alert.message}")

        if report.alerts:
            monitor_path = os.path.join(output_dir, f"monitor_report_{timestamp}.csv")
            pd.DataFrame([
                {
                    "alert_type": a.alert_type,
                    "severity": a.severity,
                    "metric_name": a.metric_name,
                    "metric_value": a.metric_value,
                    "threshold": a.threshold,
                    "message": a.message,
                    "detected_at": a.detected_at,
                }
                for a in report.alerts
            ]).to_csv(monitor_path, index=False)
            logger.info(f"Monitor report saved to: {monitor_path}")
        else:
            logger.info("No monitor alerts raised.")

    return results_path


def _print_summary(df: pd.DataFrame, store: InMemoryBillStore):
    """Prints a clean summary table to the console."""
    if df.empty:
        print("\n  No transactions processed.\n")
        return

    cleared = df[df["bill_id"].notna()]
    errors = (df["error"] != "").sum()

    print("\n" + "=" * 80)
    print("  BILL CLEARING SUMMARY")
    print("=" * 80)
    print(f"\n  Transactions: {len(df):,}   Cleared: {len(cleared):,}   Errors: {errors:,}")

    if not cleared.empty:
        print("\n  Cleared Bills:")
        print("  " + "-" * 60)
        for _, row in cleared.iterrows():
            print(f"    {str(row['bill_name']):30s}  tx {str(row['transaction_id']):>12s}  ({row['confidence']:.2f})")

    print(f"\n  Unpaid bills remaining: {len(store.unpaid_bills()):,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
