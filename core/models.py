"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: One bank transaction. Immutable once ingested.
- Bill: One bill instance. The clearer flips is_paid from False to True.
- RecurringTemplate: Owns generation of future Bill instances and the set
  of skipped periods that must never be regenerated.
- PaymentRecord: Ledger entry written for every cleared bill.

Plus the result types produced by the matcher, clearer and generator.

Records arrive from collaborators as dicts with camelCase keys (dueDate,
merchantNames, isPaid, ...) or snake_case keys. from_record() accepts both.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from core.errors import InvalidRecord
from core.recurrence import parse_date, period_key


# =============================================================================
# RECORD PARSING HELPERS
# =============================================================================

def _get(record: dict, *keys, default=None):
    """Return the first present, non-null value among keys."""
    for key in keys:
        if key not in record:
            continue
        value = record[key]
        if value is None or (isinstance(value, float) and math.isnan(value)):
            continue
        return value
    return default


def _require(record: dict, record_id, field_name: str, *keys):
    value = _get(record, *keys)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidRecord(
            f"Missing required field '{field_name}' on record {record_id!r}",
            record_id=record_id,
            field=field_name,
        )
    return value


def _parse_amount(value, record_id, field_name: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidRecord(
            f"Invalid amount in '{field_name}' on record {record_id!r}: {value!r}",
            record_id=record_id,
            field=field_name,
        ) from None
    if math.isnan(amount):
        raise InvalidRecord(
            f"Invalid amount in '{field_name}' on record {record_id!r}",
            record_id=record_id,
            field=field_name,
        )
    return amount


def _parse_required_date(value, record_id, field_name: str) -> date:
    parsed = parse_date(value)
    if parsed is None:
        raise InvalidRecord(
            f"Invalid date in '{field_name}' on record {record_id!r}: {value!r}",
            record_id=record_id,
            field=field_name,
        )
    return parsed


def _parse_day_of_month(value, record_id) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        day = int(float(value))
    except (TypeError, ValueError, OverflowError):
        raise InvalidRecord(
            f"Invalid dayOfMonth on record {record_id!r}: {value!r}",
            record_id=record_id,
            field="dayOfMonth",
        ) from None
    if not 1 <= day <= 31:
        raise InvalidRecord(
            f"dayOfMonth out of range on record {record_id!r}: {day}",
            record_id=record_id,
            field="dayOfMonth",
        )
    return day


def _parse_names(value) -> set[str]:
    """Alias and period lists. CSV cells carry them pipe-separated."""
    if value is None:
        return set()
    if isinstance(value, str):
        parts = value.split("|")
    else:
        parts = list(value)
    return {str(p).strip() for p in parts if p is not None and str(p).strip()}


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y", "paid")
    return bool(value)


def _record_id(record, kind: str, *keys):
    if not isinstance(record, dict):
        raise InvalidRecord(f"{kind} record must be a mapping, got {type(record).__name__}")
    record_id = _get(record, *keys)
    if record_id is None or (isinstance(record_id, str) and not record_id.strip()):
        raise InvalidRecord(f"{kind} record is missing required field 'id'", field="id")
    return str(record_id)


# =============================================================================
# INPUT RECORDS
# =============================================================================

@dataclass(frozen=True)
class Transaction:
    """A bank transaction as produced by the transaction feed."""

    id: str
    name: str
    amount: float                    # Signed. Expenses are negative.
    date: date

    @classmethod
    def from_record(cls, record) -> "Transaction":
        """
        Build a Transaction from a feed record.

        Raises:
            InvalidRecord: If id, amount or date is missing or unparseable.
        """
        if isinstance(record, cls):
            return record
        record_id = _record_id(record, "Transaction", "id", "transaction_id")
        amount = _parse_amount(_require(record, record_id, "amount", "amount"), record_id, "amount")
        tx_date = _parse_required_date(_require(record, record_id, "date", "date"), record_id, "date")
        name = _get(record, "name", "description", default="")
        return cls(id=record_id, name=str(name), amount=amount, date=tx_date)


@dataclass
class Bill:
    """
    One bill instance, either user-created or generated from a template.

    Required: id, name, amount, due_date. Everything else has a default.
    """

    id: str
    name: str
    amount: float                    # Unsigned
    due_date: date
    merchant_names: set[str] = field(default_factory=set)
    is_paid: bool = False
    recurring_template_id: Optional[str] = None

    # Clearing details
    status: str = "pending"          # "pending" | "paid"
    category: str = ""
    paid_date: Optional[date] = None
    paid_amount: Optional[float] = None
    linked_transaction_id: Optional[str] = None
    created_from: str = "user"

    @property
    def period(self) -> str:
        return period_key(self.due_date)

    @classmethod
    def from_record(cls, record) -> "Bill":
        """
        Build a Bill from a store record.

        Raises:
            InvalidRecord: If id, name, amount or due date is missing or unparseable.
        """
        if isinstance(record, cls):
            return record
        record_id = _record_id(record, "Bill", "id", "bill_id")
        name = str(_require(record, record_id, "name", "name"))
        amount = abs(_parse_amount(_require(record, record_id, "amount", "amount"), record_id, "amount"))
        due_date = _parse_required_date(
            _require(record, record_id, "dueDate", "dueDate", "due_date"), record_id, "dueDate"
        )
        status = str(_get(record, "status", default="pending")).lower()
        is_paid = _parse_bool(_get(record, "isPaid", "is_paid", default=False)) or status == "paid"
        template_id = _get(record, "recurringTemplateId", "recurring_template_id")

        return cls(
            id=record_id,
            name=name,
            amount=amount,
            due_date=due_date,
            merchant_names=_parse_names(_get(record, "merchantNames", "merchant_names")),
            is_paid=is_paid,
            recurring_template_id=str(template_id) if template_id is not None else None,
            status="paid" if is_paid else status,
            category=str(_get(record, "category", default="")),
            paid_date=parse_date(_get(record, "paidDate", "paid_date")),
            created_from=str(_get(record, "createdFrom", "created_from", default="user")),
        )

    def mark_paid(self, transaction: Transaction) -> None:
        """
        Flip the bill to paid using the clearing transaction's details.

        Raises:
            ValueError: If the bill is already paid. Un-paying is not supported,
                so a second clearing is always a caller bug.
        """
        if self.is_paid:
            raise ValueError(f"Bill {self.id} is already paid")
        self.is_paid = True
        self.status = "paid"
        self.paid_date = transaction.date
        self.paid_amount = round(abs(transaction.amount), 2)
        self.linked_transaction_id = transaction.id


@dataclass
class RecurringTemplate:
    """
    Recurring bill template. Generates one Bill per occurrence.

    skipped_periods holds YYYY-MM keys of instances the user deleted. The
    generator never recreates a bill for a period in this set.
    """

    id: str
    name: str
    amount: float
    recurrence_rule: str             # "weekly" | "biweekly" | "monthly" | "quarterly" | "yearly"
    next_occurrence: date
    skipped_periods: set[str] = field(default_factory=set)
    day_of_month: Optional[int] = None   # Anchor day for month-based rules
    merchant_names: set[str] = field(default_factory=set)
    category: str = ""
    last_paid_date: Optional[date] = None

    @classmethod
    def from_record(cls, record) -> "RecurringTemplate":
        if isinstance(record, cls):
            return record
        record_id = _record_id(record, "Template", "id", "template_id")
        name = str(_require(record, record_id, "name", "name"))
        amount = abs(_parse_amount(_require(record, record_id, "amount", "amount"), record_id, "amount"))
        next_occ = _parse_required_date(
            _require(record, record_id, "nextOccurrence", "nextOccurrence", "next_occurrence"),
            record_id,
            "nextOccurrence",
        )
        day_of_month = _parse_day_of_month(_get(record, "dayOfMonth", "day_of_month"), record_id)

        return cls(
            id=record_id,
            name=name,
            amount=amount,
            recurrence_rule=str(
                _get(record, "recurrenceRule", "recurrence_rule", "frequency", default="monthly")
            ),
            next_occurrence=next_occ,
            skipped_periods=_parse_names(_get(record, "skippedPeriods", "skipped_periods")),
            day_of_month=day_of_month,
            merchant_names=_parse_names(_get(record, "merchantNames", "merchant_names")),
            category=str(_get(record, "category", default="")),
            last_paid_date=parse_date(_get(record, "lastPaidDate", "last_paid_date")),
        )

    def is_period_skipped(self, period: str) -> bool:
        return period in self.skipped_periods

    def skip_period(self, period: str) -> bool:
        """Append a period to skipped_periods if absent. Returns True if it was added."""
        if period in self.skipped_periods:
            return False
        self.skipped_periods.add(period)
        return True


@dataclass
class PaymentRecord:
    """Ledger entry for one cleared bill."""

    bill_id: str
    bill_name: str
    amount: float
    due_date: date
    paid_date: date
    payment_month: str               # YYYY-MM of paid_date
    year: int
    quarter: str                     # "Q1" .. "Q4"
    linked_transaction_id: str
    recurring_template_id: Optional[str]
    category: str
    is_overdue: bool
    days_past_due: int

    @classmethod
    def from_clearing(cls, bill: Bill, transaction: Transaction) -> "PaymentRecord":
        days_past_due = max(0, (transaction.date - bill.due_date).days)
        return cls(
            bill_id=bill.id,
            bill_name=bill.name,
            amount=round(abs(transaction.amount), 2),
            due_date=bill.due_date,
            paid_date=transaction.date,
            payment_month=period_key(transaction.date),
            year=transaction.date.year,
            quarter=f"Q{(transaction.date.month - 1) // 3 + 1}",
            linked_transaction_id=transaction.id,
            recurring_template_id=bill.recurring_template_id,
            category=bill.category,
            is_overdue=days_past_due > 0,
            days_past_due=days_past_due,
        )


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class MatchScore:
    """Matcher output for one (transaction, bill) pair."""

    score: float                     # Rounded to two decimals for reporting
    raw_score: float                 # Unrounded weighted share of passed checks
    is_match: bool
    checks: dict = field(default_factory=dict)   # {"name": bool, "amount": bool, "date": bool}
    reasons: list[str] = field(default_factory=list)

    @property
    def checks_passed(self) -> int:
        return sum(1 for passed in self.checks.values() if passed)


@dataclass
class ClearResult:
    """
    Clearing outcome for one transaction.

    bill_id is None when no bill cleared the threshold (or the record was
    invalid, in which case error is set).
    """

    transaction_id: Optional[str]
    bill_id: Optional[str]
    confidence: float
    bill_name: Optional[str] = None
    checks: dict = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class RecordError:
    """A record skipped during a clearing run."""

    record_type: str                 # "transaction" | "bill" | "template" | "commit"
    record_id: Optional[str]
    message: str


@dataclass
class GenerationOutcome:
    """Result of one guarded generation attempt."""

    template_id: str
    due_date: date
    status: str                      # "generated" | "skipped_period" | "duplicate" | "unpaid_cap"
    bill: Optional[Bill] = None

    @property
    def generated(self) -> bool:
        return self.status == "generated"


@dataclass
class ClearingReport:
    """Full clearing report: one per run."""

    results: list[ClearResult] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)
    generation: list[GenerationOutcome] = field(default_factory=list)
    cleared: int = 0
    advanced: int = 0
    generated: int = 0
    blocked: bool = False

    @property
    def summary(self) -> dict:
        return {
            "transactions": len(self.results),
            "cleared": self.cleared,
            "advanced": self.advanced,
            "generated": self.generated,
            "errors": len(self.errors),
            "blocked": self.blocked,
        }
