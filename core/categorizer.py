"""
categorizer.py
---------------
Keyword category lookup for transaction descriptions.

The keyword table lives under category_keywords in config.yaml. Categories
are tried in declaration order and the first one with a keyword found in the
description wins, so specific categories (Bills & Utilities) must be declared
before broad ones (Shopping).
"""

import logging
from typing import Dict, Iterable, Optional

import pandas as pd

from config.config_loader import get_category_keywords

logger = logging.getLogger(__name__)


class CategoryLookup:
    """
    Maps a free-text description to a spending category.

    Usage:
        lookup = CategoryLookup()
        lookup.categorize("NETFLIX.COM 866-579-7172")   # "Entertainment"
    """

    def __init__(self, keywords: Optional[Dict[str, Iterable[str]]] = None):
        table = get_category_keywords() if keywords is None else keywords
        self._table: list[tuple[str, list[str]]] = []
        for category, words in table.items():
            cleaned = [str(w).lower().strip() for w in (words or []) if w and str(w).strip()]
            if cleaned:
                self._table.append((category, cleaned))
        logger.debug(f"Category lookup loaded {len(self._table)} categories.")

    @property
    def categories(self) -> list[str]:
        return [category for category, _ in self._table]

    def categorize(self, description) -> str:
        """
        Returns the first category whose keyword appears in the description.

        A keyword hits when it equals the description, appears as a
        space-delimited phrase, or is a substring of it (case-insensitive).
        Substring containment covers the first two, so one test is enough.

        Returns:
            Category name, or "" for an empty description or no hit.
        """
        if description is None or (not isinstance(description, str) and pd.isna(description)):
            return ""
        text = str(description).lower().strip()
        if not text:
            return ""

        for category, words in self._table:
            for word in words:
                if word in text:
                    return category
        return ""

    def categorize_frame(
        self, df: pd.DataFrame, description_col: str = "name", output_col: str = "category"
    ) -> pd.DataFrame:
        """
        Adds a category column to a copy of df.

        Raises:
            KeyError: If description_col is not a column of df.
        """
        if description_col not in df.columns:
            raise KeyError(f"Column '{description_col}' not found in frame")
        out = df.copy()
        out[output_col] = out[description_col].map(self.categorize)
        hits = int((out[output_col] != "").sum())
        logger.info(f"Categorized {hits}/{len(out)} rows.")
        return out
