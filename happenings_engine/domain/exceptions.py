"""Exception hierarchy for the occurrence engine.

Only true invariant violations raise. Expected conditions (no override for a
date, an empty window, an orphaned override) are reported through return
values instead.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional


class HappeningsError(Exception):
    """Base exception for all happenings_engine errors.

    All custom exceptions in the engine inherit from this base class so API
    handlers can map them to error responses in one place.
    """


class CanonicalizationError(HappeningsError):
    """A stored definition is inconsistent or structurally invalid.

    Raised when:
    - weekday and anchor date name different days (write-time validation)
    - a custom rule lists strings that are not date keys
    - the recurrence rule text matches no known pattern
    - a biweekly rule has no anchor date to fix its phase
    - no weekday can be determined for a weekly or ordinal-monthly rule

    Should result in HTTP 400 Bad Request at write time. At read time the
    pipeline records it against the definition and skips expansion.
    """

    def __init__(
        self,
        reason: str,
        *,
        definition_id: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.definition_id = definition_id
        self.field = field
        prefix = f"definition {definition_id}: " if definition_id else ""
        super().__init__(f"{prefix}{reason}")


class ExpansionBoundsError(HappeningsError):
    """Window or bounds handed to the expander are malformed.

    Raised when:
    - window end precedes window start
    - max occurrences or the display limit is negative
    - the window is wider than the configured maximum span

    Always a programmer error at the call site; never clamped silently.
    """


class OverridePatchError(HappeningsError):
    """An override write failed validation.

    Raised when:
    - the patch names fields outside the allow-list
    - the date key, status or a field value is malformed
    - a reschedule targets a date in the past
    - the definition does not produce the targeted occurrence

    Should result in HTTP 400 Bad Request response.
    """

    def __init__(self, message: str, rejected_fields: Iterable[str] = ()) -> None:
        self.rejected_fields = sorted(rejected_fields)
        super().__init__(message)


class StoreError(HappeningsError):
    """The persistence boundary could not read or write its document.

    Raised when:
    - the JSON document is unreadable or has the wrong shape
    - an atomic write fails

    Should result in HTTP 500 Internal Server Error response.
    """
