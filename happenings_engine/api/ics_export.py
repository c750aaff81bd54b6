"""iCalendar export of resolved occurrences."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from typing import Optional

from icalendar import Calendar, Event as ICalEvent

from ..core.date_keys import add_days, format_date_key
from ..core.timezone_utils import combine_local, now_utc
from ..domain.models import ResolvedOccurrence

logger = logging.getLogger(__name__)

PRODID = "-//happenings_engine//Occurrence Export//EN"


def _parse_wall_time(value: Optional[str]) -> Optional[datetime.time]:
    if not value:
        return None
    try:
        return datetime.time.fromisoformat(value)
    except ValueError:
        logger.debug("Ignoring unparseable wall time %r", value)
        return None


def occurrence_uid(occurrence: ResolvedOccurrence) -> str:
    """Stable UID: the slot identity, unchanged by a reschedule."""
    return f"{occurrence.definition_id}-{format_date_key(occurrence.date_key)}"


def _location(occurrence: ResolvedOccurrence) -> Optional[str]:
    fields = occurrence.effective
    parts = [
        fields.venue_name or fields.custom_location_name,
        fields.custom_address,
        fields.custom_city,
        fields.custom_state,
    ]
    text = ", ".join(p for p in parts if p)
    return text or None


def occurrence_to_vevent(occurrence: ResolvedOccurrence, dtstamp: datetime.datetime) -> ICalEvent:
    """Build a VEVENT at the occurrence's display date and effective times.

    Untimed occurrences become all-day events.
    """
    fields = occurrence.effective
    event = ICalEvent()
    event.add("uid", occurrence_uid(occurrence))
    event.add("dtstamp", dtstamp)
    event.add("summary", fields.title or "Untitled event")

    start_time = _parse_wall_time(fields.start_time)
    if start_time is None:
        event.add("dtstart", occurrence.display_date_key)
        event.add("dtend", add_days(occurrence.display_date_key, 1))
    else:
        start = combine_local(occurrence.display_date_key, start_time)
        event.add("dtstart", start)
        end_time = _parse_wall_time(fields.end_time)
        if end_time is not None:
            end = combine_local(occurrence.display_date_key, end_time)
            if end <= start:
                # Ends after midnight
                end = combine_local(add_days(occurrence.display_date_key, 1), end_time)
            event.add("dtend", end)

    location = _location(occurrence)
    if location:
        event.add("location", location)
    if fields.description:
        event.add("description", fields.description)
    url = fields.external_url or fields.online_url
    if url:
        event.add("url", url)
    if fields.categories:
        event.add("categories", list(fields.categories))
    if occurrence.is_cancelled:
        event.add("status", "CANCELLED")
    else:
        event.add("status", "CONFIRMED")
    return event


def build_calendar(
    occurrences: Iterable[ResolvedOccurrence],
    *,
    name: Optional[str] = None,
    dtstamp: Optional[datetime.datetime] = None,
) -> bytes:
    """Serialize occurrences to an iCalendar document.

    Args:
        occurrences: Resolved occurrences, cancelled ones included
        name: Optional calendar display name (X-WR-CALNAME)
        dtstamp: Timestamp stamped on every VEVENT (defaults to now_utc())

    Returns:
        The encoded VCALENDAR
    """
    stamp = dtstamp or now_utc()
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    if name:
        cal.add("x-wr-calname", name)

    count = 0
    for occurrence in occurrences:
        cal.add_component(occurrence_to_vevent(occurrence, stamp))
        count += 1
    logger.debug("Built calendar export with %d events", count)
    return cal.to_ical()
