"""Date-key helpers for happenings_engine.

A date key is a civil calendar date with no time or zone attached. Stored rows
carry them as ``YYYY-MM-DD`` strings; inside the engine they are plain
``datetime.date`` values. Everything here is pure.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta
from enum import Enum
from typing import Optional

DATE_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class Weekday(str, Enum):
    """Canonical day names, Monday first to match ``date.weekday()``."""

    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @property
    def day_index(self) -> int:
        """Return the ``date.weekday()`` index (Monday == 0)."""
        return _WEEKDAY_ORDER.index(self)

    @property
    def abbreviation(self) -> str:
        """Return the two-letter iCalendar abbreviation (MO, TU, ...)."""
        return self.value[:2].upper()

    @classmethod
    def from_index(cls, index: int) -> Weekday:
        return _WEEKDAY_ORDER[index % 7]

    @classmethod
    def parse(cls, text: str) -> Weekday:
        """Parse a day name in any case.

        Accepts full names ("saturday"), three-letter abbreviations ("Sat")
        and two-letter iCalendar abbreviations ("SA").

        Raises:
            ValueError: if the text names no weekday.
        """
        key = (text or "").strip().lower().rstrip(".")
        if not key:
            raise ValueError("empty weekday")
        for day in _WEEKDAY_ORDER:
            name = day.value.lower()
            if key == name[:2] or (len(key) >= 3 and name.startswith(key)):
                return day
        # Plural form used by some legacy listings ("Saturdays")
        if key.endswith("s") and key[:-1] in [d.value.lower() for d in _WEEKDAY_ORDER]:
            return cls(key[:-1].title())
        raise ValueError(f"unknown weekday: {text!r}")


_WEEKDAY_ORDER: tuple[Weekday, ...] = (
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
)


def is_valid_date_key(value: object) -> bool:
    """Return True if value is a ``YYYY-MM-DD`` string naming a real date."""
    if not isinstance(value, str) or not DATE_KEY_PATTERN.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_date_key(value: object) -> date:
    """Parse a strict ``YYYY-MM-DD`` date key.

    ``date`` instances pass through unchanged (``datetime`` is rejected since
    a date key carries no time).

    Raises:
        ValueError: if the value is not a valid date key.
    """
    if isinstance(value, date) and not hasattr(value, "hour"):
        return value
    if not isinstance(value, str) or not DATE_KEY_PATTERN.match(value):
        raise ValueError(f"invalid date key: {value!r}")
    return date.fromisoformat(value)


def parse_optional_date_key(value: object) -> Optional[date]:
    """Like parse_date_key but maps None and blank strings to None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_date_key(value.strip() if isinstance(value, str) else value)


def format_date_key(value: date) -> str:
    return value.isoformat()


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    """Return the signed number of days from start to end."""
    return (end - start).days


def weekday_of(value: date) -> Weekday:
    return Weekday.from_index(value.weekday())


def nth_weekday_of_month(year: int, month: int, weekday: Weekday, ordinal: int) -> Optional[date]:
    """Return the Nth ``weekday`` of a month, or None when it does not exist.

    Args:
        year: Calendar year
        month: Calendar month (1-12)
        weekday: Target day of the week
        ordinal: 1..5 counts forward from the first of the month, -1 is the
            last such weekday of the month

    Returns:
        The matching date, or None (e.g. a 5th Saturday in a month with four)
    """
    days_in_month = calendar.monthrange(year, month)[1]
    if ordinal == -1:
        last = date(year, month, days_in_month)
        offset = (last.weekday() - weekday.day_index) % 7
        return last - timedelta(days=offset)
    if not 1 <= ordinal <= 5:
        raise ValueError(f"ordinal must be 1..5 or -1, got {ordinal}")
    first = date(year, month, 1)
    offset = (weekday.day_index - first.weekday()) % 7
    day = 1 + offset + (ordinal - 1) * 7
    if day > days_in_month:
        return None
    return date(year, month, day)


def weekday_ordinal_in_month(value: date) -> int:
    """Return which occurrence of its weekday a date is within its month (1-5)."""
    return (value.day - 1) // 7 + 1

