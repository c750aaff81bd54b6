"""Weekly digest projection built from the shared timeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from ..core.date_keys import format_date_key
from .humanizer import format_day_header, format_time_display
from .pipeline import ResolutionResult


@dataclass(frozen=True)
class DigestItem:
    definition_id: str
    date_key: date
    title: str
    time_display: str
    venue_name: Optional[str]
    label: str
    verification_state: str
    is_rescheduled: bool

    def to_api(self) -> dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "date_key": format_date_key(self.date_key),
            "title": self.title,
            "time_display": self.time_display,
            "venue_name": self.venue_name,
            "label": self.label,
            "verification_state": self.verification_state,
            "is_rescheduled": self.is_rescheduled,
        }


@dataclass(frozen=True)
class DigestDay:
    date_key: date
    header: str
    items: tuple[DigestItem, ...]

    def to_api(self) -> dict[str, Any]:
        return {
            "date_key": format_date_key(self.date_key),
            "header": self.header,
            "items": [item.to_api() for item in self.items],
        }


def build_weekly_digest(result: ResolutionResult) -> list[DigestDay]:
    """Render the digest sections for a resolved digest window.

    Cancelled occurrences are left out; rescheduled ones appear on their new
    date.
    """
    days = []
    for day in result.timeline():
        items = tuple(
            DigestItem(
                definition_id=occ.definition_id,
                date_key=occ.date_key,
                title=occ.effective.title,
                time_display=format_time_display(occ.effective.start_time),
                venue_name=occ.effective.venue_name or occ.effective.custom_location_name,
                label=occ.recurrence_label,
                verification_state=occ.verification_state.value,
                is_rescheduled=occ.is_rescheduled,
            )
            for occ in day.occurrences
        )
        days.append(DigestDay(date_key=day.date_key, header=format_day_header(day.date_key), items=items))
    return days
