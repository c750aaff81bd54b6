"""Override merging for expanded occurrences.

This module layers per-occurrence override rows onto expanded date keys:
cancellation, reschedule (display relocation) and field-by-field patches.
It is the one place an occurrence's effective values are computed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from ..core.date_keys import Weekday, format_date_key, is_valid_date_key, parse_date_key
from .models import (
    ALLOWED_OVERRIDE_FIELDS,
    EventDefinition,
    OccurrenceFields,
    OccurrenceOverride,
    ResolvedOccurrence,
)
from .verification import verify

logger = logging.getLogger(__name__)

OverrideKey = tuple[str, date]

RESCHEDULE_FIELD = "event_date"

# Legacy single-purpose override columns -> the display field they replace
LEGACY_OVERRIDE_COLUMNS: dict[str, str] = {
    "override_start_time": "start_time",
    "override_cover_image_url": "cover_image_url",
    "override_notes": "host_notes",
}


@dataclass(frozen=True)
class DisplayDate:
    """Where an occurrence is shown after applying its override."""

    display_date: date
    is_rescheduled: bool
    original_date_key: date


@dataclass(frozen=True)
class OverrideJoinMiss:
    """An override whose date the definition no longer produces.

    Not an error: the override has no effect. Reported to host-facing audit
    tooling as a data-hygiene signal.
    """

    definition_id: str
    date_key: date
    status: str
    patched_fields: tuple[str, ...]

    def to_api(self) -> dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "date_key": format_date_key(self.date_key),
            "status": self.status,
            "patched_fields": list(self.patched_fields),
        }


def build_override_map(overrides: Iterable[OccurrenceOverride]) -> dict[OverrideKey, OccurrenceOverride]:
    """Index override rows by (definition_id, date_key).

    Later rows replace earlier ones for the same key (last writer wins).
    """
    override_map: dict[OverrideKey, OccurrenceOverride] = {}
    for override in overrides:
        if override.key in override_map:
            logger.debug(
                "Duplicate override for %s on %s; keeping the later row",
                override.definition_id,
                override.date_key,
            )
        override_map[override.key] = override
    return override_map


def display_date_for_occurrence(date_key: date, override: Optional[OccurrenceOverride]) -> DisplayDate:
    """Return the display date for a slot, honouring a reschedule patch.

    An unparseable or same-day ``event_date`` leaves the occurrence in place.
    """
    if override is not None:
        raw = override.patch.get(RESCHEDULE_FIELD)
        if raw and not is_valid_date_key(raw):
            logger.warning("Ignoring malformed reschedule %r on %s/%s", raw, override.definition_id, date_key)
        elif raw:
            target = parse_date_key(raw)
            if target != date_key:
                return DisplayDate(display_date=target, is_rescheduled=True, original_date_key=date_key)
    return DisplayDate(display_date=date_key, is_rescheduled=False, original_date_key=date_key)


@lru_cache(maxsize=None)
def _display_field_adapter(field_name: str) -> TypeAdapter:
    return TypeAdapter(OccurrenceFields.model_fields[field_name].annotation)


def _checked_value(field_name: str, value: Any, override: OccurrenceOverride) -> tuple[bool, Any]:
    try:
        return True, _display_field_adapter(field_name).validate_python(value)
    except ValidationError:
        logger.warning(
            "Ignoring invalid %s=%r on %s/%s; keeping the base value",
            field_name,
            value,
            override.definition_id,
            format_date_key(override.date_key),
        )
        return False, None


def apply_override_fields(base: Mapping[str, Any], override: Optional[OccurrenceOverride]) -> dict[str, Any]:
    """Apply an override to base field values, field by field.

    Precedence: patch > legacy override columns > base. A patch value of
    None clears an optional field for the date; fields the patch does not
    mention keep their base values. Stored values that do not fit the
    field's type (None for the title, text for a count) are skipped with a
    warning and the base value stays.
    """
    effective = dict(base)
    if override is None:
        return effective

    for column, field_name in LEGACY_OVERRIDE_COLUMNS.items():
        value = getattr(override, column)
        if value is None:
            continue
        accepted, checked = _checked_value(field_name, value, override)
        if accepted:
            effective[field_name] = checked

    for field_name, value in override.patch.items():
        if field_name == RESCHEDULE_FIELD:
            continue
        if field_name not in ALLOWED_OVERRIDE_FIELDS or field_name not in effective:
            # Rows written before the allow-list existed may carry stray keys
            logger.debug("Ignoring non-display patch field %r on %s", field_name, override.definition_id)
            continue
        accepted, checked = _checked_value(field_name, value, override)
        if accepted:
            effective[field_name] = checked
    return effective


def merge(
    definition: EventDefinition,
    occurrence_date_keys: Iterable[date],
    overrides: Iterable[OccurrenceOverride] | Mapping[OverrideKey, OccurrenceOverride],
    *,
    label: str = "",
    weekday: Optional[Weekday] = None,
) -> list[ResolvedOccurrence]:
    """Resolve expanded date keys against override rows.

    Args:
        definition: Full stored row the dates were expanded from
        occurrence_date_keys: Expander output for this definition
        overrides: Override rows (or a prebuilt override map)
        label: Humanized recurrence label attached to every occurrence
        weekday: Recurrence weekday for weekly and monthly series

    Returns:
        One ResolvedOccurrence per date key, cancelled ones included with
        ``is_cancelled=True``, in date-key order
    """
    override_map = overrides if isinstance(overrides, Mapping) else build_override_map(overrides)
    base_fields = definition.base_fields()

    resolved: list[ResolvedOccurrence] = []
    for date_key in sorted(set(occurrence_date_keys)):
        override = override_map.get((definition.id, date_key))
        display = display_date_for_occurrence(date_key, override)
        fields = apply_override_fields(base_fields, override)
        resolved.append(
            ResolvedOccurrence(
                definition_id=definition.id,
                date_key=date_key,
                display_date_key=display.display_date,
                is_rescheduled=display.is_rescheduled,
                is_cancelled=bool(override and override.is_cancelled),
                effective=OccurrenceFields(**fields),
                verification_state=verify(definition, override),
                recurrence_label=label,
                recurrence_weekday=weekday,
                override=override,
            )
        )
    return resolved


def find_orphaned_overrides(
    definition_id: str,
    produced_date_keys: Iterable[date],
    overrides: Iterable[OccurrenceOverride],
    window_start: date,
    window_end: date,
) -> list[OverrideJoinMiss]:
    """Report overrides inside the window that match no expanded date.

    Overrides outside the window are not judged: the expander was not asked
    about those dates.
    """
    produced = set(produced_date_keys)
    misses = [
        OverrideJoinMiss(
            definition_id=override.definition_id,
            date_key=override.date_key,
            status=override.status.value,
            patched_fields=tuple(sorted(override.patch)),
        )
        for override in overrides
        if override.definition_id == definition_id
        and window_start <= override.date_key <= window_end
        and override.date_key not in produced
    ]
    if misses:
        logger.info(
            "Override join miss: %d orphaned override(s) for definition %s", len(misses), definition_id
        )
    return misses
