"""Human-readable recurrence labels and date/time display helpers.

Labels are always derived from a RecurrenceSpec; no surface builds its own
label from stored rule text.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from .interpreter import CustomSpec, MonthlySpec, NoneSpec, RecurrenceSpec, WeeklySpec

_ORDINAL_TEXT = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", -1: "Last"}
_CUSTOM_LABEL_DATES = 3


def _short_date(value: date, *, with_year: bool = False) -> str:
    text = f"{value.strftime('%b')} {value.day}"
    return f"{text}, {value.year}" if with_year else text


def _join(parts: list[str]) -> str:
    if len(parts) <= 1:
        return "".join(parts)
    return f"{', '.join(parts[:-1])} & {parts[-1]}"


def label(spec: RecurrenceSpec) -> str:
    """Return the display label for a recurrence.

    Examples: "Every Monday", "Every Other Monday", "4th Saturday monthly",
    "1st & 3rd Thursday monthly", "Feb 1 & Feb 8".
    """
    if isinstance(spec, WeeklySpec):
        day = spec.weekday.value
        if spec.every_n_weeks == 1:
            return f"Every {day}"
        if spec.every_n_weeks == 2:
            return f"Every Other {day}"
        return f"Every {spec.every_n_weeks} Weeks on {day}"

    if isinstance(spec, MonthlySpec):
        ordinals = sorted(spec.ordinals, key=lambda n: (n == -1, n))
        parts = [_ORDINAL_TEXT[n] for n in ordinals]
        if parts and ordinals[0] != -1 and parts[-1] == "Last":
            parts[-1] = "last"
        return f"{_join(parts)} {spec.weekday.value} monthly"

    if isinstance(spec, CustomSpec):
        if not spec.dates:
            return "Schedule TBD"
        with_year = len({d.year for d in spec.dates}) > 1
        shown = [_short_date(d, with_year=with_year) for d in spec.dates[:_CUSTOM_LABEL_DATES]]
        remaining = len(spec.dates) - len(shown)
        if remaining > 0:
            return f"{', '.join(shown)} + {remaining} more"
        return _join(shown)

    if isinstance(spec, NoneSpec):
        if spec.date is None:
            return "Schedule TBD"
        return f"One-time ({format_short_weekday_date(spec.date)})"

    raise TypeError(f"unsupported recurrence spec {type(spec).__name__}")


def format_short_weekday_date(value: date) -> str:
    """Format as "Sat, Feb 7"."""
    return f"{value.strftime('%a')}, {value.strftime('%b')} {value.day}"


def format_date_group_header(value: date, today: date) -> str:
    """Return the timeline day header: "Today", "Tomorrow" or "Fri, Jan 3"."""
    delta = (value - today).days
    if delta == 0:
        return "Today"
    if delta == 1:
        return "Tomorrow"
    return format_short_weekday_date(value)


def format_day_header(value: date) -> str:
    """Format a digest day header such as "MONDAY, JANUARY 27"."""
    return f"{value.strftime('%A')}, {value.strftime('%B')} {value.day}".upper()


def format_time_display(value: Optional[str]) -> str:
    """Format an "HH:MM[:SS]" wall time as "7:00 PM"; blank for no time."""
    if not value:
        return ""
    hours_text, _, rest = value.partition(":")
    try:
        hour = int(hours_text)
    except ValueError:
        return value
    minutes = (rest.split(":")[0] or "00").zfill(2)
    suffix = "PM" if hour >= 12 else "AM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minutes} {suffix}"
