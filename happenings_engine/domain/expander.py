"""Bounded occurrence expansion for happenings_engine.

Turns a RecurrenceSpec into the ordered date keys that fall inside a query
window. Recurring patterns are generated with ``dateutil.rrule``; the window
is always finite and series bounds (end date, max occurrences counted from
the anchor) are applied before the window filter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Optional

from dateutil.rrule import FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, rrule

from ..core.date_keys import add_days, days_between
from .exceptions import ExpansionBoundsError
from .interpreter import CustomSpec, ExpansionBounds, MonthlySpec, NoneSpec, RecurrenceSpec, WeeklySpec

logger = logging.getLogger(__name__)

# Indexed by Weekday.day_index (Monday == 0)
_RRULE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)

# Date keys are civil dates; generate at noon so no DST shift can move a day
_NOON = time(12, 0)


@dataclass
class ExpansionCaps:
    """Caps applied while materializing occurrences.

    Consolidates all expansion limits with explicit defaults.
    """

    max_events: int = 200
    max_total_occurrences: int = 500
    max_per_event: int = 40
    default_window_days: int = 90
    max_window_days: int = 400

    @classmethod
    def from_settings(cls, settings: Any) -> ExpansionCaps:
        """Extract expansion caps from a settings object or dict.

        Args:
            settings: Configuration object with cap settings

        Returns:
            ExpansionCaps with values from settings or defaults
        """
        from ..core.config_manager import get_config_value

        return cls(
            max_events=get_config_value(settings, "max_events", 200),
            max_total_occurrences=get_config_value(settings, "max_total_occurrences", 500),
            max_per_event=get_config_value(settings, "max_per_event", 40),
            default_window_days=get_config_value(settings, "default_window_days", 90),
            max_window_days=get_config_value(settings, "max_window_days", 400),
        )


def _at_noon(value: date) -> datetime:
    return datetime.combine(value, _NOON)


def validate_window(
    window_start: date,
    window_end: date,
    bounds: Optional[ExpansionBounds] = None,
    *,
    limit: Optional[int] = None,
    max_window_days: Optional[int] = None,
) -> None:
    """Reject malformed windows and bounds.

    Raises:
        ExpansionBoundsError: if the window is inverted or too wide, or a
            count bound is negative
    """
    if window_end < window_start:
        raise ExpansionBoundsError(
            f"window end {window_end.isoformat()} precedes window start {window_start.isoformat()}"
        )
    if max_window_days is not None and days_between(window_start, window_end) > max_window_days:
        raise ExpansionBoundsError(
            f"window of {days_between(window_start, window_end)} days exceeds maximum of {max_window_days}"
        )
    if bounds is not None and bounds.max_occurrences is not None and bounds.max_occurrences < 0:
        raise ExpansionBoundsError("max_occurrences must not be negative")
    if limit is not None and limit < 0:
        raise ExpansionBoundsError("limit must not be negative")


def expand(
    spec: RecurrenceSpec,
    window_start: date,
    window_end: date,
    bounds: Optional[ExpansionBounds] = None,
    *,
    limit: Optional[int] = None,
    max_window_days: Optional[int] = None,
) -> list[date]:
    """Expand a recurrence into the date keys inside ``[window_start, window_end]``.

    Args:
        spec: Interpreted recurrence
        window_start: First date of the window (inclusive)
        window_end: Last date of the window (inclusive)
        bounds: Series bounds (end date, max occurrences from the anchor)
        limit: Optional cap on the number of dates returned for display
        max_window_days: Optional maximum window span

    Returns:
        Strictly increasing, de-duplicated dates

    Raises:
        ExpansionBoundsError: if the window or bounds are malformed
    """
    validate_window(window_start, window_end, bounds, limit=limit, max_window_days=max_window_days)
    bounds = bounds or ExpansionBounds()

    if bounds.max_occurrences == 0 or limit == 0:
        return []

    # Series end date tightens the window; never produce anything after it
    effective_end = window_end
    if bounds.end_date is not None and bounds.end_date < effective_end:
        effective_end = bounds.end_date
    if effective_end < window_start:
        return []

    if isinstance(spec, NoneSpec):
        dates = _expand_single(spec, bounds)
    elif isinstance(spec, WeeklySpec):
        dates = _expand_weekly(spec, window_start, effective_end, bounds)
    elif isinstance(spec, MonthlySpec):
        dates = _expand_monthly(spec, window_start, effective_end, bounds)
    elif isinstance(spec, CustomSpec):
        dates = _expand_custom(spec, bounds)
    else:
        raise TypeError(f"unsupported recurrence spec {type(spec).__name__}")

    result = sorted({d for d in dates if window_start <= d <= effective_end})
    if limit is not None and len(result) > limit:
        logger.debug("Capped %s expansion at %d of %d dates", type(spec).__name__, limit, len(result))
        result = result[:limit]
    return result


def _bounded_rule(freq: int, start: date, window_end: date, count: Optional[int], **kwargs: Any) -> rrule:
    # dateutil rejects COUNT combined with UNTIL; a counted rule is cut at
    # the window end while iterating instead
    if count is not None:
        return rrule(freq, dtstart=_at_noon(start), count=count, cache=False, **kwargs)
    return rrule(freq, dtstart=_at_noon(start), until=_at_noon(window_end), cache=False, **kwargs)


def _collect(rule: rrule, window_end: date) -> list[date]:
    dates: list[date] = []
    for dt in rule:
        if dt.date() > window_end:
            break
        dates.append(dt.date())
    return dates


def _expand_single(spec: NoneSpec, bounds: ExpansionBounds) -> list[date]:
    if spec.date is None:
        return []
    return [spec.date]


def _expand_weekly(
    spec: WeeklySpec, window_start: date, window_end: date, bounds: ExpansionBounds
) -> list[date]:
    step_days = 7 * spec.every_n_weeks
    series_start = bounds.series_start or spec.anchor

    if series_start is not None:
        # First on-weekday date on or after the series start fixes the phase
        first = add_days(series_start, (spec.weekday.day_index - series_start.weekday()) % 7)
    else:
        first = add_days(window_start, (spec.weekday.day_index - window_start.weekday()) % 7)

    # Skip whole steps before the window arithmetically, tracking how many
    # series occurrences that consumed
    skipped = 0
    if first < window_start:
        skipped = -(-days_between(first, window_start) // step_days)
        first = add_days(first, skipped * step_days)

    count: Optional[int] = None
    if bounds.max_occurrences is not None:
        count = bounds.max_occurrences - skipped
        if count <= 0:
            return []

    rule = _bounded_rule(
        WEEKLY,
        first,
        window_end,
        count,
        interval=spec.every_n_weeks,
        byweekday=_RRULE_WEEKDAYS[spec.weekday.day_index],
    )
    return _collect(rule, window_end)


def _expand_monthly(
    spec: MonthlySpec, window_start: date, window_end: date, bounds: ExpansionBounds
) -> list[date]:
    if not spec.ordinals:
        return []
    rrule_day = _RRULE_WEEKDAYS[spec.weekday.day_index]
    byweekday = [rrule_day(n) for n in sorted(spec.ordinals)]

    if bounds.series_start is not None:
        # Counting from the anchor requires generating from the anchor
        dtstart = bounds.series_start
    else:
        dtstart = window_start.replace(day=1)

    rule = _bounded_rule(MONTHLY, dtstart, window_end, bounds.max_occurrences, byweekday=byweekday)
    return [d for d in _collect(rule, window_end) if d >= window_start]


def _expand_custom(spec: CustomSpec, bounds: ExpansionBounds) -> list[date]:
    dates = sorted(set(spec.dates))
    if bounds.series_start is not None:
        dates = [d for d in dates if d >= bounds.series_start]
    if bounds.max_occurrences is not None:
        dates = dates[: bounds.max_occurrences]
    return dates


def is_occurrence_date(
    spec: RecurrenceSpec, candidate: date, bounds: Optional[ExpansionBounds] = None
) -> bool:
    """Return True if the recurrence produces ``candidate``."""
    return candidate in expand(spec, candidate, candidate, bounds)
