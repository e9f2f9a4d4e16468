"""
base_check.py
--------------
Abstract base class for all match checks.

A match check answers one yes/no question about a (transaction, bill) pair:
"do the names agree?", "do the amounts agree?", "are the dates close?". The
matcher combines the answers into a weighted confidence.

Concrete checks only need to implement:
    - _passes(): the check itself
    - _reason_code(): explainability string for the outcome
"""

from abc import ABC, abstractmethod

from core.models import Bill, Transaction
from config.config_loader import get_matching_config


class BaseMatchCheck(ABC):
    """
    Abstract base for match checks.

    Subclasses implement _passes() and _reason_code(). This class handles
    weight lookup and outcome packaging.
    """

    def __init__(self, check_name: str):
        self.check_name = check_name
        self.config = get_matching_config()
        self.weight = float(self.config["check_weights"].get(check_name, 1.0))

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def evaluate(self, transaction: Transaction, bill: Bill) -> tuple[bool, str]:
        """
        Run the check against one pair.

        Returns:
            Tuple of (passed, reason_code).
        """
        passed = bool(self._passes(transaction, bill))
        return passed, self._reason_code(transaction, bill, passed)

    # -------------------------------------------------------------------------
    # ABSTRACT METHODS: Implement in each check
    # -------------------------------------------------------------------------

    @abstractmethod
    def _passes(self, transaction: Transaction, bill: Bill) -> bool:
        ...

    @abstractmethod
    def _reason_code(self, transaction: Transaction, bill: Bill, passed: bool) -> str:
        """Human-readable explanation string, surfaced in debug logs and reports."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(weight={self.weight})"
