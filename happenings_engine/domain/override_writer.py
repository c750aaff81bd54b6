"""Validated override writes: the seam between hosts and the override table.

A patch is checked against the ``OverridePatch`` allow-list before it is
stored. Unknown fields are rejected with ``OverridePatchError`` (never
silently dropped), so nothing unvalidated ever reaches the merger.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from ..core.date_keys import parse_date_key
from ..core.timezone_utils import now_utc
from .canonicalizer import canonicalize
from .exceptions import CanonicalizationError, OverridePatchError
from .expander import is_occurrence_date
from .interpreter import bounds_for, interpret
from .models import EventDefinition, OccurrenceOverride, OverridePatch, OverrideStatus
from .override_merger import LEGACY_OVERRIDE_COLUMNS, RESCHEDULE_FIELD

logger = logging.getLogger(__name__)


class WriteAction(str, Enum):
    UPSERT = "upsert"
    REVERT = "revert"


@dataclass(frozen=True)
class OverrideWrite:
    """A validated override write ready for the store.

    ``REVERT`` means the override carries nothing and the row is deleted so
    the occurrence falls back to its base values.
    """

    action: WriteAction
    definition_id: str
    date_key: date
    override: Optional[OccurrenceOverride] = None


def validate_patch(patch: Any) -> dict[str, Any]:
    """Validate a raw patch against the allow-list.

    Returns:
        Only the keys the caller actually set (explicit None clears a field)

    Raises:
        OverridePatchError: for non-mapping patches, unknown fields, or
            malformed values
    """
    if patch is None:
        return {}
    if not isinstance(patch, Mapping):
        raise OverridePatchError("patch must be an object")
    try:
        validated = OverridePatch.model_validate(dict(patch))
    except ValidationError as exc:
        errors = exc.errors()
        unknown = {str(err["loc"][0]) for err in errors if err["type"] == "extra_forbidden" and err["loc"]}
        if unknown:
            raise OverridePatchError(
                f"fields not allowed in an override patch: {', '.join(sorted(unknown))}",
                rejected_fields=unknown,
            ) from exc
        invalid = {str(err["loc"][0]) for err in errors if err["loc"]}
        details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors)
        raise OverridePatchError(f"invalid override patch values: {details}", rejected_fields=invalid) from exc
    return validated.model_dump(exclude_unset=True)


def _normalize_reschedule(patch: dict[str, Any], date_key: date, today: date) -> dict[str, Any]:
    if RESCHEDULE_FIELD not in patch:
        return patch
    raw = patch[RESCHEDULE_FIELD]
    if raw is None:
        patch = dict(patch)
        del patch[RESCHEDULE_FIELD]
        return patch
    target = parse_date_key(raw)
    if target == date_key:
        # Rescheduling to the slot's own date is no reschedule
        patch = dict(patch)
        del patch[RESCHEDULE_FIELD]
        return patch
    if target < today:
        raise OverridePatchError(
            f"cannot reschedule to {raw}: date is in the past", rejected_fields=[RESCHEDULE_FIELD]
        )
    return patch


def _ensure_slot_exists(definition: EventDefinition, date_key: date) -> None:
    try:
        canonical = canonicalize(definition)
    except CanonicalizationError as exc:
        raise OverridePatchError(f"definition schedule is invalid: {exc.reason}") from exc
    if not is_occurrence_date(interpret(canonical), date_key, bounds_for(canonical)):
        raise OverridePatchError(
            f"definition {definition.id} has no occurrence on {date_key.isoformat()}"
        )


def validate_override_write(
    definition: EventDefinition,
    date_key: Any,
    *,
    today: date,
    status: Any = OverrideStatus.NORMAL.value,
    patch: Any = None,
    override_start_time: Optional[str] = None,
    override_cover_image_url: Optional[str] = None,
    override_notes: Optional[str] = None,
    existing: Optional[OccurrenceOverride] = None,
    now: Optional[datetime] = None,
) -> OverrideWrite:
    """Validate a host's edit of a single occurrence.

    Args:
        definition: Full stored row the occurrence belongs to
        date_key: Slot date being overridden (YYYY-MM-DD)
        today: Site-timezone today; reschedules before it are rejected
        status: "normal" or "cancelled"
        patch: Mapping of allow-listed field overrides
        override_start_time: Legacy start time column
        override_cover_image_url: Legacy cover image column
        override_notes: Legacy host notes column
        existing: Current override row, to keep its created_at
        now: Timestamp for created_at/updated_at (defaults to now_utc())

    Returns:
        OverrideWrite with an UPSERT row, or a REVERT when nothing is
        overridden

    Raises:
        OverridePatchError: if any part of the write is invalid
    """
    try:
        slot = parse_date_key(date_key)
    except ValueError as exc:
        raise OverridePatchError(f"date_key {date_key!r} must be YYYY-MM-DD", rejected_fields=["date_key"]) from exc

    try:
        override_status = OverrideStatus(status)
    except ValueError as exc:
        raise OverridePatchError(
            f"status must be 'normal' or 'cancelled', got {status!r}", rejected_fields=["status"]
        ) from exc

    cleaned = _normalize_reschedule(validate_patch(patch), slot, today)

    legacy = {
        "override_start_time": override_start_time,
        "override_cover_image_url": override_cover_image_url,
        "override_notes": override_notes,
    }
    if override_start_time is not None:
        validate_patch({LEGACY_OVERRIDE_COLUMNS["override_start_time"]: override_start_time})

    _ensure_slot_exists(definition, slot)

    if override_status == OverrideStatus.NORMAL and not cleaned and all(v is None for v in legacy.values()):
        logger.info("Override for %s on %s reverted to base values", definition.id, slot)
        return OverrideWrite(action=WriteAction.REVERT, definition_id=definition.id, date_key=slot)

    timestamp = now or now_utc()
    override = OccurrenceOverride(
        definition_id=definition.id,
        date_key=slot,
        status=override_status,
        patch=cleaned,
        created_at=existing.created_at if existing and existing.created_at else timestamp,
        updated_at=timestamp,
        **legacy,
    )
    logger.info(
        "Validated override for %s on %s: status=%s fields=%s",
        definition.id,
        slot,
        override_status.value,
        ",".join(sorted(cleaned)) or "-",
    )
    return OverrideWrite(action=WriteAction.UPSERT, definition_id=definition.id, date_key=slot, override=override)
