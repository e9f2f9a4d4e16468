"""
match_checks.py
----------------
Concrete match checks. One class per dimension of a (transaction, bill) pair.

    - NameCheck:   normalized equality, fuzzy similarity, or merchant alias
    - AmountCheck: absolute difference within max(floor, ratio * bill amount)
    - DateCheck:   transaction date within N days of the due date

Thresholds come from config.yaml; only the check logic lives in code.
"""

from rapidfuzz import fuzz

from core.merchant_aliases import MerchantAliasBook
from core.models import Bill, Transaction
from core.text_utils import normalize_text, significant_tokens
from matchers.base_check import BaseMatchCheck


# =============================================================================
# NAME
# =============================================================================
class NameCheck(BaseMatchCheck):
    """
    Passes when the transaction name identifies the bill.

    Three routes, any one is enough:
        1. Normalized names are equal.
        2. Fuzzy similarity >= min_name_similarity. Similarity is the larger of
           a token-set ratio over significant tokens and a plain edit-distance
           ratio over the full normalized strings.
        3. The normalized transaction name contains a normalized alias from the
           bill's merchant_names or the alias book.
    """

    def __init__(self, alias_book: MerchantAliasBook | None = None):
        super().__init__("name")
        self.alias_book = alias_book
        self.min_similarity = int(self.config["min_name_similarity"])
        self.ignored_tokens = frozenset(self.config.get("ignored_name_tokens", []))

    def similarity(self, a: str, b: str) -> int:
        """0–100 similarity between two names."""
        norm_a, norm_b = normalize_text(a), normalize_text(b)
        if not norm_a or not norm_b:
            return 0
        if norm_a == norm_b:
            return 100
        # Fall back to the full string when every token is filler ("Bill Payment").
        tokens_a = " ".join(significant_tokens(a, self.ignored_tokens)) or norm_a
        tokens_b = " ".join(significant_tokens(b, self.ignored_tokens)) or norm_b
        score = max(fuzz.token_set_ratio(tokens_a, tokens_b), fuzz.ratio(norm_a, norm_b))
        return int(round(score))

    def aliases(self, bill: Bill) -> set[str]:
        names = set(bill.merchant_names or ())
        if self.alias_book is not None:
            names |= self.alias_book.aliases_for(bill.name)
        return names

    def matched_alias(self, transaction: Transaction, bill: Bill) -> str | None:
        tx_name = normalize_text(transaction.name)
        if not tx_name:
            return None
        for alias in sorted(self.aliases(bill)):
            norm_alias = normalize_text(alias)
            if norm_alias and norm_alias in tx_name:
                return alias
        return None

    def _passes(self, transaction: Transaction, bill: Bill) -> bool:
        tx_name = normalize_text(transaction.name)
        if not tx_name:
            return False
        if tx_name == normalize_text(bill.name):
            return True
        if self.similarity(transaction.name, bill.name) >= self.min_similarity:
            return True
        return self.matched_alias(transaction, bill) is not None

    def _reason_code(self, transaction, bill, passed) -> str:
        if not normalize_text(transaction.name):
            return "NAME_MISSING"
        alias = self.matched_alias(transaction, bill)
        if alias is not None:
            return f"NAME_ALIAS ({alias})"
        similarity = self.similarity(transaction.name, bill.name)
        label = "NAME_MATCH" if passed else "NAME_MISMATCH"
        return f"{label} (similarity={similarity})"


# =============================================================================
# AMOUNT
# =============================================================================
class AmountCheck(BaseMatchCheck):
    """
    Passes when |abs(tx amount) - bill amount| is within tolerance.

    Tolerance = max(absolute floor, bill amount * ratio). A bill amount of 0
    has zero tolerance, so only an exact 0.00 transaction matches it.
    """

    def __init__(self):
        super().__init__("amount")
        self.absolute = float(self.config["amount_tolerance_absolute"])
        self.ratio = float(self.config["amount_tolerance_ratio"])

    def tolerance(self, bill_amount: float) -> float:
        bill_amount = abs(bill_amount)
        if bill_amount == 0:
            return 0.0
        return max(self.absolute, bill_amount * self.ratio)

    @staticmethod
    def difference(transaction: Transaction, bill: Bill) -> float:
        # Rounded to cents so 75.99 - 75.49 compares as exactly 0.50.
        return round(abs(abs(transaction.amount) - abs(bill.amount)), 2)

    def _passes(self, transaction, bill) -> bool:
        return self.difference(transaction, bill) <= round(self.tolerance(bill.amount), 2)

    def _reason_code(self, transaction, bill, passed) -> str:
        label = "AMOUNT_MATCH" if passed else "AMOUNT_MISMATCH"
        return (
            f"{label} (diff=${self.difference(transaction, bill):,.2f}, "
            f"tolerance=${self.tolerance(bill.amount):,.2f})"
        )


# =============================================================================
# DATE
# =============================================================================
class DateCheck(BaseMatchCheck):
    """Passes when the transaction posts within date_window_days of the due date."""

    def __init__(self):
        super().__init__("date")
        self.window_days = int(self.config["date_window_days"])

    @staticmethod
    def days_apart(transaction: Transaction, bill: Bill) -> int:
        return abs((transaction.date - bill.due_date).days)

    def _passes(self, transaction, bill) -> bool:
        return self.days_apart(transaction, bill) <= self.window_days

    def _reason_code(self, transaction, bill, passed) -> str:
        label = "DATE_MATCH" if passed else "DATE_MISMATCH"
        return f"{label} ({self.days_apart(transaction, bill)}d from due, window={self.window_days}d)"


# =============================================================================
# CHECK REGISTRY
# =============================================================================
# Single source of truth for all active checks.
# To add a new check: create the class above, add it here and give it a
# weight under matching.check_weights in config.yaml.

CHECK_REGISTRY: dict[str, type[BaseMatchCheck]] = {
    "name": NameCheck,
    "amount": AmountCheck,
    "date": DateCheck,
}


def get_all_checks(alias_book: MerchantAliasBook | None = None) -> list[BaseMatchCheck]:
    """Instantiates and returns all registered checks."""
    checks = []
    for key, cls in CHECK_REGISTRY.items():
        checks.append(cls(alias_book) if key == "name" else cls())
    return checks
