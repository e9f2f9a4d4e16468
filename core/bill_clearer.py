"""
bill_clearer.py
----------------
Batch bill clearing.

For each transaction, in input order:
    1. Score it against every bill still in the unpaid pool.
    2. Keep candidates whose confidence reaches the match threshold and pick
       the highest. Ties go to the earliest due date, then to pool order.
    3. Inside one store unit of work: mark the bill paid, write the payment
       record, advance its recurring template and generate the next instance.
    4. Drop the bill from the pool so no later transaction can clear it.

A record that fails validation, or a commit that raises, is reported and
skipped. It never aborts the batch, and a failed commit leaves the bill unpaid
with the template untouched.
"""

import logging
from typing import Iterable, Optional

from core.bill_generator import BillGenerator
from core.bill_matcher import BillMatcher
from core.bill_store import InMemoryBillStore
from core.errors import InvalidRecord
from core.merchant_aliases import MerchantAliasBook
from core.models import (
    Bill,
    ClearingReport,
    ClearResult,
    GenerationOutcome,
    MatchScore,
    PaymentRecord,
    RecordError,
    Transaction,
)

logger = logging.getLogger(__name__)


class BillClearer:
    """
    Matches transactions to unpaid bills and commits each match.

    Usage:
        clearer = BillClearer(store)
        report = clearer.clear(transactions)
        for result in report.results: ...
    """

    def __init__(
        self,
        store: Optional[InMemoryBillStore] = None,
        matcher: Optional[BillMatcher] = None,
        generator: Optional[BillGenerator] = None,
        alias_book: Optional[MerchantAliasBook] = None,
    ):
        self.store = store if store is not None else InMemoryBillStore()
        self.matcher = matcher or BillMatcher(alias_book=alias_book)
        self.generator = generator or BillGenerator(self.store)

    def clear(self, transactions: Iterable, unpaid_bills: Optional[Iterable] = None) -> ClearingReport:
        """
        Clear a batch of transactions.

        Args:
            transactions: Transaction objects or transaction record dicts.
            unpaid_bills: Bill objects or records to match against. Defaults to
                the store's unpaid bills. Bills passed here are written to the
                store when they clear.

        Returns:
            ClearingReport with one ClearResult per transaction, in input order.
        """
        report = ClearingReport()
        report.errors.extend(self.store.drain_load_errors())
        pool = self._build_pool(unpaid_bills, report)
        records = list(transactions)
        logger.info(f"Clearing {len(records)} transactions against {len(pool)} unpaid bills.")

        for record in records:
            try:
                transaction = Transaction.from_record(record)
            except InvalidRecord as exc:
                logger.warning(f"Skipping transaction: {exc}")
                report.errors.append(RecordError("transaction", exc.record_id, str(exc)))
                report.results.append(
                    ClearResult(transaction_id=exc.record_id, bill_id=None, confidence=0.0, error=str(exc))
                )
                continue

            selected = self._select_bill(transaction, pool)
            if selected is None:
                report.results.append(ClearResult(transaction_id=transaction.id, bill_id=None, confidence=0.0))
                continue

            bill, score = selected
            try:
                advanced, outcome = self._commit(transaction, bill)
            except Exception as exc:
                logger.exception(f"Commit failed for transaction {transaction.id} -> bill {bill.id}; rolled back.")
                report.errors.append(RecordError("commit", transaction.id, f"{type(exc).__name__}: {exc}"))
                report.results.append(
                    ClearResult(
                        transaction_id=transaction.id,
                        bill_id=None,
                        confidence=score.score,
                        bill_name=bill.name,
                        checks=dict(score.checks),
                        error=str(exc),
                    )
                )
                continue

            pool.remove(bill)
            report.cleared += 1
            report.advanced += int(advanced)
            if outcome is not None:
                report.generation.append(outcome)
                report.generated += int(outcome.generated)
            report.results.append(
                ClearResult(
                    transaction_id=transaction.id,
                    bill_id=bill.id,
                    confidence=score.score,
                    bill_name=bill.name,
                    checks=dict(score.checks),
                )
            )
            logger.info(
                f"Cleared '{bill.name}' (due {bill.due_date}) with tx {transaction.id} "
                f"at confidence {score.score:.2f}."
            )

        logger.info(f"Clearing complete: {report.summary}")
        return report

    # -------------------------------------------------------------------------
    # POOL
    # -------------------------------------------------------------------------

    def _build_pool(self, unpaid_bills: Optional[Iterable], report: ClearingReport) -> list[Bill]:
        source = self.store.unpaid_bills() if unpaid_bills is None else unpaid_bills
        pool: list[Bill] = []
        seen: set[str] = set()

        for record in source:
            try:
                bill = Bill.from_record(record)
            except InvalidRecord as exc:
                logger.warning(f"Skipping bill: {exc}")
                report.errors.append(RecordError("bill", exc.record_id, str(exc)))
                continue

            stored = self.store.find_bill(bill.id)
            if stored is not None:
                bill = stored
            if bill.is_paid or bill.id in seen:
                continue
            seen.add(bill.id)
            pool.append(bill)

        return pool

    def _select_bill(self, transaction: Transaction, pool: list[Bill]) -> Optional[tuple[Bill, MatchScore]]:
        best = None
        for index, bill in enumerate(pool):
            score = self.matcher.match_confidence(transaction, bill)
            if not score.is_match:
                continue
            key = (-score.raw_score, bill.due_date, index)
            if best is None or key < best[0]:
                best = (key, bill, score)
        if best is None:
            return None
        return best[1], best[2]

    # -------------------------------------------------------------------------
    # COMMIT
    # -------------------------------------------------------------------------

    def _commit(self, transaction: Transaction, bill: Bill) -> tuple[bool, Optional[GenerationOutcome]]:
        # Registered before the unit of work so a rollback restores it in place.
        self.store.save_bill(bill)

        with self.store.atomic():
            bill.mark_paid(transaction)
            self.store.save_bill(bill)
            self.store.add_payment(PaymentRecord.from_clearing(bill, transaction))

            if bill.recurring_template_id is None:
                return False, None

            template = self.store.find_template(bill.recurring_template_id)
            if template is None:
                logger.warning(
                    f"Bill {bill.id} references missing template {bill.recurring_template_id}; not advancing."
                )
                return False, None

            new_occurrence = self.generator.advance_template(template, bill)
            if new_occurrence is None:
                return False, None
            outcome = self.generator.generate_next(template, new_occurrence, source_bill=bill)
            return True, outcome


def clear_bills(transactions: Iterable, unpaid_bills: Iterable, store: Optional[InMemoryBillStore] = None) -> list[ClearResult]:
    """
    Clear transactions against unpaid bills with default settings.

    Returns:
        One ClearResult per transaction, in input order.
    """
    return BillClearer(store=store).clear(transactions, unpaid_bills).results
