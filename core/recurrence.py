"""
recurrence.py
--------------
Pure date arithmetic for recurring bills: parsing, period keys and
next-occurrence calculation.

Frequencies and their aliases come from the recurrence block of config.yaml.
Month-based rules clamp to the last day of the target month, and an explicit
anchor day keeps a 31st-of-month bill from drifting to the 28th forever.
"""

import calendar
from datetime import date, datetime, timedelta

from config.config_loader import get_recurrence_config


DATE_FORMAT = "%Y-%m-%d"


def parse_date(value) -> date | None:
    """Parse a date, datetime or YYYY-MM-DD string. Returns None on failure."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # Timestamps such as "2024-01-15T00:00:00" keep only their date part.
    text = text[:10]
    for fmt in (DATE_FORMAT, "%Y/%m/%d", "%Y.%m.%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_date(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def period_key(value) -> str:
    """Return the YYYY-MM period key of a date or ISO date string."""
    d = parse_date(value)
    if d is None:
        raise ValueError(f"Invalid date for period key: {value!r}")
    return format_date(d)[:7]


def clamp_day_to_month(year: int, month: int, day: int) -> int:
    """Clamp day to valid range for the given year/month."""
    max_day = calendar.monthrange(year, month)[1]
    return min(day, max_day)


def add_months(d: date, n: int, anchor_day: int | None = None) -> date:
    """Add n months to date d, clamping day to month end."""
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = clamp_day_to_month(year, month, anchor_day or d.day)
    return date(year, month, day)


def normalize_frequency(frequency: str | None) -> str:
    """
    Map a recurrence rule string to a configured frequency name.

    Unknown or empty rules fall back to the configured default (monthly).
    """
    config = get_recurrence_config()
    if not frequency:
        return config["default_frequency"]
    key = str(frequency).strip().lower()
    key = config.get("frequency_aliases", {}).get(key, key)
    if key not in config["frequencies"]:
        return config["default_frequency"]
    return key


def next_occurrence(current, frequency: str | None, anchor_day: int | None = None) -> date:
    """
    Return the occurrence following `current` for the given rule.

    Args:
        current: Current occurrence (date or ISO string).
        frequency: Recurrence rule, e.g. "monthly", "bi-weekly", "annually".
        anchor_day: Preferred day of month for month-based rules.

    Raises:
        ValueError: If `current` is not a valid date.
    """
    d = parse_date(current)
    if d is None:
        raise ValueError(f"Invalid occurrence date: {current!r}")

    step = get_recurrence_config()["frequencies"][normalize_frequency(frequency)]
    if "days" in step:
        return d + timedelta(days=int(step["days"]))
    return add_months(d, int(step["months"]), anchor_day)
