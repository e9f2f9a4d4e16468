"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. GenerationLock  →  one clearing / generation run per user at a time
    2. BillClearer     →  matches transactions to unpaid bills and commits
    3. BillGenerator   →  catch-up generation for recurring templates
    4. Output serialization → one row per transaction

This is the single entry point for running the engine. Everything else
is internal machinery.

Usage:
    from pipeline import BillClearingPipeline

    pipeline = BillClearingPipeline(store, user_id="user-1")
    results_df = pipeline.run(transactions_df)
"""

import logging
from typing import Iterable, List, Optional

import pandas as pd

from config.config_loader import load_config
from core.bill_clearer import BillClearer
from core.bill_store import InMemoryBillStore
from core.errors import ConcurrentGenerationBlocked
from core.generation_lock import GenerationLock, get_shared_lock
from core.merchant_aliases import MerchantAliasBook
from core.models import ClearingReport, GenerationOutcome

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "transaction_id", "bill_id", "bill_name", "confidence",
    "name_match", "amount_match", "date_match", "error",
]


class BillClearingPipeline:
    """
    End-to-end bill clearing pipeline for one user.

    Orchestrates lock → clear → generate → output without exposing
    internal objects to callers.
    """

    def __init__(
        self,
        store: Optional[InMemoryBillStore] = None,
        user_id: str = "default",
        lock: Optional[GenerationLock] = None,
        alias_book: Optional[MerchantAliasBook] = None,
    ):
        """
        Args:
            store: The user's bill store. A fresh empty store if omitted.
            user_id: Key for the generation lock.
            lock: Lock registry. Defaults to the process-wide shared one, so two
                pipelines for the same user never run concurrently.
            alias_book: Merchant aliases. Defaults to the config alias table.
        """
        self.config = load_config()
        self.store = store if store is not None else InMemoryBillStore()
        self.user_id = user_id
        self.lock = lock or get_shared_lock()
        self.alias_book = alias_book if alias_book is not None else MerchantAliasBook()
        self.clearer = BillClearer(self.store, alias_book=self.alias_book)
        self.generator = self.clearer.generator

        logger.info(
            f"Pipeline initialized for user '{user_id}'. "
            f"Store: {self.store!r}. Alias book: {self.alias_book!r}. "
            f"Match threshold: {self.config['matching']['match_threshold']}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, transactions, unpaid_bills: Optional[Iterable] = None) -> pd.DataFrame:
        """
        Run a clearing pass and return one row per transaction.

        Args:
            transactions: DataFrame or iterable of transaction records.
            unpaid_bills: Optional bills to match against instead of the
                store's unpaid bills.

        Returns:
            DataFrame with RESULT_COLUMNS. Empty when the run was blocked.
        """
        report = self.run_report(transactions, unpaid_bills)
        return self._serialize_results(report)

    def run_report(self, transactions, unpaid_bills: Optional[Iterable] = None) -> ClearingReport:
        """
        Run a clearing pass under the user's generation lock.

        A blocked run returns an empty report with blocked=True; the caller
        retries on its next cycle.
        """
        records = self._to_records(transactions)
        logger.info(f"Pipeline starting. Input: {len(records):,} transactions.")

        try:
            with self.lock.hold(self.user_id):
                report = self.clearer.clear(records, unpaid_bills)
        except ConcurrentGenerationBlocked as exc:
            logger.warning(f"{exc}. Skipping this clearing run.")
            return ClearingReport(blocked=True)

        logger.info(
            f"Pipeline complete. Cleared: {report.cleared:,}. Advanced: {report.advanced:,}. "
            f"Generated: {report.generated:,}. Errors: {len(report.errors):,}."
        )
        return report

    def generate_upcoming(self, as_of=None) -> List[GenerationOutcome]:
        """
        Catch-up generation for every template in the store, under the lock.

        Returns:
            All generation outcomes, or an empty list when blocked.
        """
        try:
            with self.lock.hold(self.user_id):
                outcomes: List[GenerationOutcome] = []
                for template in self.store.all_templates():
                    outcomes.extend(self.generator.generate_upcoming(template, as_of))
        except ConcurrentGenerationBlocked as exc:
            logger.warning(f"{exc}. Skipping catch-up generation.")
            return []

        generated = sum(1 for o in outcomes if o.generated)
        logger.info(f"Catch-up generation complete. Generated: {generated:,} of {len(outcomes):,} attempts.")
        return outcomes

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_records(transactions) -> list:
        if isinstance(transactions, pd.DataFrame):
            return transactions.to_dict("records")
        return list(transactions)

    def _serialize_results(self, report: ClearingReport) -> pd.DataFrame:
        """Converts ClearResult objects to a flat DataFrame, in input order."""
        if not report.results:
            return pd.DataFrame(columns=RESULT_COLUMNS)

        rows = []
        for r in report.results:
            rows.append({
                "transaction_id": r.transaction_id,
                "bill_id": r.bill_id,
                "bill_name": r.bill_name,
                "confidence": r.confidence,
                "name_match": r.checks.get("name"),
                "amount_match": r.checks.get("amount"),
                "date_match": r.checks.get("date"),
                "error": r.error or "",
            })
        return pd.DataFrame(rows, columns=RESULT_COLUMNS)
