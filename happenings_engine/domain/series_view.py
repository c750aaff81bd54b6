"""Timeline and series projections over resolved occurrences.

Both projections read the same ResolvedOccurrence objects; labels and
verification states are taken from them, never recomputed here.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from ..core.date_keys import Weekday, format_date_key
from .humanizer import format_date_group_header, format_short_weekday_date
from .models import ResolvedOccurrence, VerificationState

# Untimed occurrences sort after timed ones within a day
_UNTIMED_SORT_KEY = "99:99"

OTHER_DATES_SECTION = "Other dates"


@dataclass(frozen=True)
class TimelineDay:
    """All occurrences displayed on one date."""

    date_key: date
    occurrences: tuple[ResolvedOccurrence, ...]
    heading: str = ""

    def to_api(self) -> dict[str, Any]:
        return {
            "date_key": format_date_key(self.date_key),
            "heading": self.heading,
            "occurrences": [occ.to_api() for occ in self.occurrences],
        }


@dataclass(frozen=True)
class SeriesEntry:
    """One recurring definition with its next occurrences in the window."""

    definition_id: str
    title: str
    label: str
    verification_state: VerificationState
    next_occurrences: tuple[ResolvedOccurrence, ...]
    weekday: Optional[Weekday] = None

    @property
    def next_date(self) -> Optional[date]:
        return self.next_occurrences[0].display_date_key if self.next_occurrences else None

    def to_api(self) -> dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "title": self.title,
            "label": self.label,
            "verification_state": self.verification_state.value,
            "weekday": self.weekday.value if self.weekday else None,
            "next_occurrences": [occ.to_api() for occ in self.next_occurrences],
        }


@dataclass(frozen=True)
class SeriesDaySection:
    """Series grouped under a weekday heading (or "Other dates")."""

    heading: str
    series: tuple[SeriesEntry, ...] = field(default_factory=tuple)


def occurrence_sort_key(occurrence: ResolvedOccurrence) -> tuple[date, str, str, date]:
    """Order by display date, then start time (untimed last), then title."""
    return (
        occurrence.display_date_key,
        occurrence.effective.start_time or _UNTIMED_SORT_KEY,
        occurrence.effective.title.lower(),
        occurrence.date_key,
    )


def upcoming(occurrences: Iterable[ResolvedOccurrence], *, include_cancelled: bool = False) -> list[ResolvedOccurrence]:
    """Return occurrences in display order, cancelled ones dropped unless requested."""
    return sorted(
        (occ for occ in occurrences if include_cancelled or not occ.is_cancelled),
        key=occurrence_sort_key,
    )


def cancelled_occurrences(occurrences: Iterable[ResolvedOccurrence]) -> list[ResolvedOccurrence]:
    """Return only cancelled occurrences, for audit and host dashboards."""
    return sorted((occ for occ in occurrences if occ.is_cancelled), key=occurrence_sort_key)


def build_timeline(
    occurrences: Iterable[ResolvedOccurrence],
    *,
    include_cancelled: bool = False,
    today: Optional[date] = None,
) -> list[TimelineDay]:
    """Group occurrences by display date.

    A rescheduled occurrence appears under its new date while keeping its
    original ``date_key``. With ``today`` given, day headings read "Today"
    and "Tomorrow" where they apply.
    """
    days: dict[date, list[ResolvedOccurrence]] = defaultdict(list)
    for occ in upcoming(occurrences, include_cancelled=include_cancelled):
        days[occ.display_date_key].append(occ)
    return [
        TimelineDay(
            date_key=day,
            occurrences=tuple(days[day]),
            heading=format_date_group_header(day, today) if today else format_short_weekday_date(day),
        )
        for day in sorted(days)
    ]


def build_series(
    occurrences: Iterable[ResolvedOccurrence],
    *,
    per_series_limit: Optional[int] = None,
    include_cancelled: bool = False,
) -> list[SeriesEntry]:
    """Group occurrences by definition.

    Args:
        occurrences: Resolved occurrences for the window
        per_series_limit: Maximum next occurrences kept per series
        include_cancelled: Keep cancelled occurrences in ``next_occurrences``

    Returns:
        Series ordered by their next display date, then title
    """
    grouped: dict[str, list[ResolvedOccurrence]] = defaultdict(list)
    for occ in upcoming(occurrences, include_cancelled=include_cancelled):
        grouped[occ.definition_id].append(occ)

    entries = []
    for definition_id, items in grouped.items():
        head = items[0]
        shown = items if per_series_limit is None else items[:per_series_limit]
        entries.append(
            SeriesEntry(
                definition_id=definition_id,
                title=head.effective.title,
                label=head.recurrence_label,
                verification_state=head.verification_state,
                next_occurrences=tuple(shown),
                weekday=head.recurrence_weekday,
            )
        )
    entries.sort(key=lambda entry: (entry.next_date or date.max, entry.title.lower(), entry.definition_id))
    return entries


def group_series_by_weekday(series: Iterable[SeriesEntry], today: date) -> list[SeriesDaySection]:
    """Group series under weekday headings, starting from today's weekday.

    Series without a recurrence weekday (one-time, custom dates) go to a
    trailing "Other dates" section.
    """
    by_day: dict[Weekday, list[SeriesEntry]] = defaultdict(list)
    other: list[SeriesEntry] = []
    for entry in series:
        if entry.weekday is None:
            other.append(entry)
        else:
            by_day[Weekday(entry.weekday)].append(entry)

    start = today.weekday()
    ordered_days = [Weekday.from_index(start + offset) for offset in range(7)]
    sections = [
        SeriesDaySection(heading=day.value, series=tuple(by_day[day])) for day in ordered_days if by_day.get(day)
    ]
    if other:
        sections.append(SeriesDaySection(heading=OTHER_DATES_SECTION, series=tuple(other)))
    return sections
