"""
bill_generator.py
------------------
Recurrence advancement and guarded bill generation.

A template's next_occurrence is the due date of its latest scheduled
instance. Clearing that instance advances next_occurrence one step and asks
for the following bill. Every generation attempt passes three guards, in
order:

    1. Skip guard      : the period (YYYY-MM) is in template.skipped_periods.
                         Permanent: a skipped period is never retried.
    2. Duplicate guard : a bill already exists for (template id, due date).
    3. Unpaid-cap guard: the template already has max_unpaid_per_template
                         unpaid instances (2). Generation resumes once one
                         of them clears or is deleted.

Deleting a bill instance records its period as skipped. Deleting a template
cascades to its unpaid instances only; paid instances are history and stay.
"""

import logging
import uuid
from datetime import date, timedelta

from config.config_loader import get_generation_config
from core.bill_store import InMemoryBillStore
from core.models import Bill, GenerationOutcome, RecurringTemplate
from core.recurrence import next_occurrence, parse_date, period_key

logger = logging.getLogger(__name__)


def generate_bill_id() -> str:
    return f"bill_{uuid.uuid4().hex[:16]}"


class BillGenerator:
    """
    Advances recurring templates and generates their bill instances.

    Usage:
        generator = BillGenerator(store)
        outcome = generator.generate_next(template)
    """

    def __init__(self, store: InMemoryBillStore):
        self.store = store
        self.config = get_generation_config()
        self.max_unpaid = int(self.config["max_unpaid_per_template"])
        self.lookahead_days = int(self.config["lookahead_days"])
        self.max_catchup_periods = int(self.config["max_catchup_periods"])

    # -------------------------------------------------------------------------
    # ADVANCEMENT
    # -------------------------------------------------------------------------

    def advance_template(self, template: RecurringTemplate, cleared_bill: Bill) -> date | None:
        """
        Move template.next_occurrence one step past a cleared bill's due date.

        Returns:
            The new next_occurrence, or None when the template is already
            scheduled past the cleared bill (an older instance was paid).
        """
        if template.next_occurrence > cleared_bill.due_date:
            logger.info(
                f"Template '{template.name}' already scheduled for {template.next_occurrence}; "
                f"clearing the {cleared_bill.due_date} instance does not advance it."
            )
            return None

        previous = template.next_occurrence
        template.next_occurrence = next_occurrence(
            cleared_bill.due_date, template.recurrence_rule, template.day_of_month
        )
        template.last_paid_date = cleared_bill.paid_date
        self.store.save_template(template)

        logger.info(f"Advanced template '{template.name}': {previous} -> {template.next_occurrence}")
        return template.next_occurrence

    # -------------------------------------------------------------------------
    # GUARDED GENERATION
    # -------------------------------------------------------------------------

    def generate_next(
        self,
        template: RecurringTemplate,
        due_date: date | None = None,
        source_bill: Bill | None = None,
    ) -> GenerationOutcome:
        """
        Try to create the bill instance due on `due_date` (default: template.next_occurrence).

        Args:
            template: Template owning the instance.
            due_date: Due date of the instance to create.
            source_bill: The instance just cleared, if any. Its merchant aliases
                and category carry over to the new bill.

        Returns:
            GenerationOutcome with status "generated", "skipped_period",
            "duplicate" or "unpaid_cap".
        """
        due = parse_date(due_date) or template.next_occurrence
        period = period_key(due)

        if template.is_period_skipped(period):
            logger.info(f"Skip guard: '{template.name}' period {period} was deleted by the user.")
            return GenerationOutcome(template.id, due, "skipped_period")

        if self.store.has_bill_for(template.id, due):
            logger.info(f"Duplicate guard: '{template.name}' already has a bill due {due}.")
            return GenerationOutcome(template.id, due, "duplicate")

        unpaid = self.store.unpaid_count(template.id)
        if unpaid >= self.max_unpaid:
            logger.info(
                f"Unpaid-cap guard: '{template.name}' has {unpaid} unpaid instances "
                f"(max {self.max_unpaid}); not generating {due}."
            )
            return GenerationOutcome(template.id, due, "unpaid_cap")

        bill = self._build_bill(template, due, source_bill)
        self.store.save_bill(bill)
        logger.info(f"Generated bill '{bill.name}' due {due} (${bill.amount:,.2f}).")
        return GenerationOutcome(template.id, due, "generated", bill)

    def generate_upcoming(self, template: RecurringTemplate, as_of=None) -> list[GenerationOutcome]:
        """
        Catch-up generation: schedule every occurrence up to as_of + lookahead_days.

        Starts at template.next_occurrence and walks forward one occurrence at
        a time. A template whose next occurrence is already past the horizon
        generates nothing. Skipped periods and existing bills are stepped over.
        The walk stops at the unpaid cap, past the horizon, or after
        max_catchup_periods attempts. next_occurrence ends on the latest
        occurrence that has been accounted for.
        """
        reference = parse_date(as_of) or date.today()
        horizon = reference + timedelta(days=self.lookahead_days)
        outcomes: list[GenerationOutcome] = []

        due = template.next_occurrence
        if due > horizon:
            logger.info(f"Catch-up for '{template.name}': next occurrence {due} is past the horizon {horizon}.")
            return outcomes

        for _ in range(self.max_catchup_periods):
            outcome = self.generate_next(template, due)
            outcomes.append(outcome)
            if outcome.status == "unpaid_cap":
                break
            template.next_occurrence = due
            following = next_occurrence(due, template.recurrence_rule, template.day_of_month)
            if following > horizon:
                break
            due = following

        self.store.save_template(template)
        generated = sum(1 for o in outcomes if o.generated)
        logger.info(
            f"Catch-up for '{template.name}': {generated} generated, "
            f"{len(outcomes) - generated} guarded. Next occurrence {template.next_occurrence}."
        )
        return outcomes

    def _build_bill(self, template: RecurringTemplate, due: date, source_bill: Bill | None) -> Bill:
        merchant_names = set(template.merchant_names)
        category = template.category
        if source_bill is not None:
            merchant_names |= source_bill.merchant_names
            category = category or source_bill.category

        return Bill(
            id=generate_bill_id(),
            name=template.name,
            amount=template.amount,
            due_date=due,
            merchant_names=merchant_names,
            recurring_template_id=template.id,
            category=category,
            created_from="auto-bill-clearing" if source_bill is not None else "recurring-template",
        )

    # -------------------------------------------------------------------------
    # DELETION
    # -------------------------------------------------------------------------

    def delete_bill(self, bill_id: str) -> Bill:
        """
        Delete one bill instance and mark its period as skipped on its template.

        Other instances of the template, paid or not, are left alone.

        Raises:
            KeyError: If the bill does not exist.
        """
        bill = self.store.remove_bill(bill_id)
        if bill.recurring_template_id is None:
            return bill

        template = self.store.find_template(bill.recurring_template_id)
        if template is None:
            logger.warning(f"Deleted bill {bill_id} points at missing template {bill.recurring_template_id}.")
            return bill

        if template.skip_period(bill.period):
            logger.info(f"Template '{template.name}': period {bill.period} marked as skipped.")
        self.store.save_template(template)
        return bill

    def delete_template(self, template_id: str) -> list[Bill]:
        """
        Delete a template and cascade to its unpaid instances.

        Returns:
            The unpaid bills removed. Paid instances are preserved.

        Raises:
            KeyError: If the template does not exist.
        """
        template = self.store.remove_template(template_id)
        removed = []
        for bill in self.store.bills_for_template(template_id):
            if not bill.is_paid:
                removed.append(self.store.remove_bill(bill.id))

        logger.info(f"Deleted template '{template.name}' and {len(removed)} unpaid instance(s).")
        return removed
