"""
merchant_aliases.py
--------------------
Merchant alias lookup layer.

Banks rarely print a bill's name the way the user typed it ("CH 13 TRUSTEE"
for "Bankruptcy Payment"). This book maps a normalized bill name to extra
aliases that the name check also accepts. Built once from the
merchant_aliases block of config.yaml, or from an explicit mapping (e.g. a
per-user alias document loaded by the store).
"""

from typing import Dict, Iterable, Optional

from config.config_loader import get_merchant_aliases
from core.text_utils import normalize_text


class MerchantAliasBook:
    """
    Lookup from normalized bill name → set of merchant aliases.

    Thread-safe for reads.
    """

    def __init__(self, aliases: Optional[Dict[str, Iterable[str]]] = None):
        self._index: Dict[str, set[str]] = {}
        self._load(get_merchant_aliases() if aliases is None else aliases)

    def _load(self, aliases: Dict[str, Iterable[str]]) -> None:
        """Builds the lookup index. Duplicate keys after normalization are merged."""
        for bill_name, names in aliases.items():
            key = normalize_text(bill_name)
            if not key:
                continue
            bucket = self._index.setdefault(key, set())
            bucket.update(str(n).strip() for n in (names or []) if n and str(n).strip())

    def aliases_for(self, bill_name: str) -> set[str]:
        """Returns aliases for a bill name, or an empty set if none are known."""
        return set(self._index.get(normalize_text(bill_name), set()))

    def add(self, bill_name: str, alias: str) -> None:
        """Registers one more alias for a bill name."""
        key = normalize_text(bill_name)
        if key and alias and alias.strip():
            self._index.setdefault(key, set()).add(alias.strip())

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"MerchantAliasBook(bills={len(self)})"
