"""Verification badge resolution.

Verification is a base-definition signal; overrides do not carry their own
timestamp. Every surface resolves the badge here from the full stored row.
"""

from __future__ import annotations

from typing import Optional

from .models import DefinitionStatus, EventDefinition, OccurrenceOverride, VerificationState


def verify(base: EventDefinition, override: Optional[OccurrenceOverride] = None) -> VerificationState:
    """Derive the verification tri-state for one occurrence.

    Args:
        base: The full stored definition row. Partial projections (dicts,
            API models) are rejected so a dropped ``verified_at`` cannot turn
            into a silent "unconfirmed".
        override: The occurrence's override row, if any

    Returns:
        CONFIRMED when the base row is verified and the occurrence is not
        cancelled; NEEDS_VERIFICATION when the row is flagged for review;
        UNCONFIRMED otherwise

    Raises:
        TypeError: if ``base`` is not an EventDefinition
    """
    if not isinstance(base, EventDefinition):
        raise TypeError(f"verify() needs the full EventDefinition row, got {type(base).__name__}")

    if override is not None and override.is_cancelled:
        return VerificationState.UNCONFIRMED
    if base.status == DefinitionStatus.CANCELLED.value:
        return VerificationState.UNCONFIRMED
    if base.verified_at is not None:
        return VerificationState.CONFIRMED
    if base.status == DefinitionStatus.NEEDS_VERIFICATION.value:
        return VerificationState.NEEDS_VERIFICATION
    return VerificationState.UNCONFIRMED
