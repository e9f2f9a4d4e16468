"""
bill_matcher.py
----------------
Transaction-to-bill matcher.

Scores one (transaction, bill) pair by running every registered match check
and taking the weighted share of checks that pass:

    confidence = sum(weight of passed checks) / sum(all weights)

With the default equal weights this is passed / 3. The pair is a match when
the unrounded confidence reaches matching.match_threshold (0.67). Two of three
checks gives 0.666..., which stays below the threshold, so a true match needs
name, amount and date to agree.

Pure: no I/O, no mutation of the records it scores.
"""

import logging

from config.config_loader import get_matching_config
from core.merchant_aliases import MerchantAliasBook
from core.models import Bill, MatchScore, Transaction
from matchers.match_checks import get_all_checks

logger = logging.getLogger(__name__)


class BillMatcher:
    """
    Computes match confidence between a transaction and a bill.

    Usage:
        matcher = BillMatcher()
        score = matcher.match_confidence(transaction, bill)
        if score.is_match: ...
    """

    def __init__(self, alias_book: MerchantAliasBook | None = None):
        self.config = get_matching_config()
        self.threshold = float(self.config["match_threshold"])
        self.checks = get_all_checks(alias_book)
        self.total_weight = sum(c.weight for c in self.checks)

    def match_confidence(self, transaction, bill) -> MatchScore:
        """
        Score one pair.

        Args:
            transaction: Transaction or transaction record dict.
            bill: Bill or bill record dict.

        Returns:
            MatchScore with the rounded score, match decision and per-check outcome.

        Raises:
            InvalidRecord: If either record is missing a required field.
        """
        transaction = Transaction.from_record(transaction)
        bill = Bill.from_record(bill)

        checks: dict[str, bool] = {}
        reasons: list[str] = []
        passed_weight = 0.0
        for check in self.checks:
            passed, reason = check.evaluate(transaction, bill)
            checks[check.check_name] = passed
            reasons.append(reason)
            if passed:
                passed_weight += check.weight

        raw = passed_weight / self.total_weight if self.total_weight > 0 else 0.0
        raw = min(max(raw, 0.0), 1.0)

        logger.debug(f"Scored tx {transaction.id} vs bill {bill.id}: {raw:.4f} | {' | '.join(reasons)}")

        return MatchScore(
            score=round(raw, 2),
            raw_score=raw,
            is_match=raw >= self.threshold,
            checks=checks,
            reasons=reasons,
        )


_DEFAULT_MATCHER: BillMatcher | None = None


def match_confidence(transaction, bill) -> MatchScore:
    """Score one pair with a default matcher (bill aliases only, no alias book)."""
    global _DEFAULT_MATCHER
    if _DEFAULT_MATCHER is None:
        _DEFAULT_MATCHER = BillMatcher()
    return _DEFAULT_MATCHER.match_confidence(transaction, bill)


def reset_default_matcher() -> None:
    """Drops the cached default matcher. Call after reset_config() in tests."""
    global _DEFAULT_MATCHER
    _DEFAULT_MATCHER = None
