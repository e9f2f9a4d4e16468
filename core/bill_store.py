"""
bill_store.py
--------------
In-memory bill / template / payment store.

Stands in for the persistence layer: it hands the clearer the current unpaid
bills and templates, and accepts paid-state and template mutations. One store
holds one user's data. It is not thread-safe on its own; the per-user
GenerationLock serializes every run that writes to it.

atomic() groups a sequence of writes into one unit. On exception every bill,
template and payment is restored in place (existing object references stay
valid) and the exception propagates.

Records that fail to parse at load time are skipped and kept in load_errors.
"""

import copy
import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Iterator, Optional

from core.errors import InvalidRecord
from core.models import Bill, PaymentRecord, RecordError, RecurringTemplate

logger = logging.getLogger(__name__)


class InMemoryBillStore:
    """
    Dict-backed store keyed on bill / template id.

    Usage:
        store = InMemoryBillStore(bills=bill_records, templates=template_records)
        with store.atomic():
            ...
    """

    def __init__(
        self,
        bills: Optional[Iterable] = None,
        templates: Optional[Iterable] = None,
    ):
        self._bills: dict[str, Bill] = {}
        self._templates: dict[str, RecurringTemplate] = {}
        self._payments: list[PaymentRecord] = []
        # Rows rejected at load time. The clearer drains these into its report.
        self.load_errors: list[RecordError] = []

        for record in templates or []:
            self._load(RecurringTemplate, "template", record)
        for record in bills or []:
            self._load(Bill, "bill", record)

    def _load(self, model, record_type: str, record) -> None:
        try:
            item = model.from_record(record)
        except InvalidRecord as exc:
            logger.warning(f"Skipping invalid {record_type} record {exc.record_id!r}: {exc}")
            self.load_errors.append(RecordError(record_type, exc.record_id, str(exc)))
            return
        if isinstance(item, Bill):
            self.save_bill(item)
        else:
            self.save_template(item)

    def drain_load_errors(self) -> list[RecordError]:
        """Return and clear the rows rejected when the store was loaded."""
        errors, self.load_errors = self.load_errors, []
        return errors

    # -------------------------------------------------------------------------
    # BILLS
    # -------------------------------------------------------------------------

    def save_bill(self, bill: Bill) -> Bill:
        self._bills[bill.id] = bill
        return bill

    def get_bill(self, bill_id: str) -> Bill:
        """Raises KeyError if the bill does not exist."""
        if bill_id not in self._bills:
            raise KeyError(f"Bill not found: {bill_id}")
        return self._bills[bill_id]

    def find_bill(self, bill_id: str) -> Optional[Bill]:
        return self._bills.get(bill_id)

    def remove_bill(self, bill_id: str) -> Bill:
        """Raises KeyError if the bill does not exist."""
        bill = self.get_bill(bill_id)
        del self._bills[bill_id]
        return bill

    def all_bills(self) -> list[Bill]:
        return list(self._bills.values())

    def unpaid_bills(self) -> list[Bill]:
        """Unpaid bills, oldest due date first."""
        return sorted((b for b in self._bills.values() if not b.is_paid), key=lambda b: b.due_date)

    def bills_for_template(self, template_id: str) -> list[Bill]:
        return [b for b in self._bills.values() if b.recurring_template_id == template_id]

    def unpaid_count(self, template_id: str) -> int:
        return sum(1 for b in self.bills_for_template(template_id) if not b.is_paid)

    def has_bill_for(self, template_id: str, due_date: date) -> bool:
        """True if any bill (paid or not) exists for this template and due date."""
        return any(b.due_date == due_date for b in self.bills_for_template(template_id))

    def find_bill_for(self, template_id: str, due_date: date) -> Optional[Bill]:
        for bill in self.bills_for_template(template_id):
            if bill.due_date == due_date:
                return bill
        return None

    # -------------------------------------------------------------------------
    # TEMPLATES
    # -------------------------------------------------------------------------

    def save_template(self, template: RecurringTemplate) -> RecurringTemplate:
        self._templates[template.id] = template
        return template

    def get_template(self, template_id: str) -> RecurringTemplate:
        """Raises KeyError if the template does not exist."""
        if template_id not in self._templates:
            raise KeyError(f"Recurring template not found: {template_id}")
        return self._templates[template_id]

    def find_template(self, template_id: str) -> Optional[RecurringTemplate]:
        return self._templates.get(template_id)

    def remove_template(self, template_id: str) -> RecurringTemplate:
        template = self.get_template(template_id)
        del self._templates[template_id]
        return template

    def all_templates(self) -> list[RecurringTemplate]:
        return list(self._templates.values())

    # -------------------------------------------------------------------------
    # PAYMENTS
    # -------------------------------------------------------------------------

    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        self._payments.append(payment)
        return payment

    def payments(self) -> list[PaymentRecord]:
        return list(self._payments)

    # -------------------------------------------------------------------------
    # UNIT OF WORK
    # -------------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator["InMemoryBillStore"]:
        """All writes inside the block succeed together or are rolled back together."""
        snapshot = self._snapshot()
        try:
            yield self
        except Exception:
            self._restore(snapshot)
            logger.warning("Store unit of work failed; changes rolled back.")
            raise

    def _snapshot(self) -> tuple:
        return (
            dict(self._bills),
            {k: copy.deepcopy(v) for k, v in self._bills.items()},
            dict(self._templates),
            {k: copy.deepcopy(v) for k, v in self._templates.items()},
            list(self._payments),
        )

    def _restore(self, snapshot: tuple) -> None:
        bills, bill_state, templates, template_state, payments = snapshot
        for bill_id, bill in bills.items():
            bill.__dict__.update(bill_state[bill_id].__dict__)
        for template_id, template in templates.items():
            template.__dict__.update(template_state[template_id].__dict__)
        self._bills = bills
        self._templates = templates
        self._payments = payments

    def __repr__(self) -> str:
        return (
            f"InMemoryBillStore(bills={len(self._bills)}, templates={len(self._templates)}, "
            f"payments={len(self._payments)})"
        )
