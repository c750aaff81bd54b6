"""Recurrence interpretation: canonical definition -> RecurrenceSpec."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from ..core.date_keys import Weekday
from .canonicalizer import CanonicalDefinition, RuleKind


@dataclass(frozen=True)
class NoneSpec:
    """One-time event; ``date`` is None when there is nothing to show."""

    date: Optional[date]


@dataclass(frozen=True)
class WeeklySpec:
    """Every ``every_n_weeks`` weeks on ``weekday``, phased by ``anchor``."""

    weekday: Weekday
    every_n_weeks: int = 1
    anchor: Optional[date] = None


@dataclass(frozen=True)
class MonthlySpec:
    """Nth weekday of the month; ordinal -1 is the last such weekday."""

    weekday: Weekday
    ordinals: frozenset[int]


@dataclass(frozen=True)
class CustomSpec:
    """Explicit dates, sorted and unique."""

    dates: tuple[date, ...]


RecurrenceSpec = Union[NoneSpec, WeeklySpec, MonthlySpec, CustomSpec]


@dataclass(frozen=True)
class ExpansionBounds:
    """Series-level bounds applied on top of the query window.

    Attributes:
        end_date: Last date the series may produce
        max_occurrences: Series length counted from ``series_start``
        series_start: First date of the series (the anchor date); no
            occurrence before it is ever produced
    """

    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    series_start: Optional[date] = None


def interpret(canonical: CanonicalDefinition) -> RecurrenceSpec:
    """Map a canonical definition to exactly one RecurrenceSpec variant.

    Args:
        canonical: Output of ``canonicalize``

    Returns:
        The immutable spec the expander consumes

    Raises:
        ValueError: if the canonical definition is missing the weekday its
            kind requires (canonicalize never produces one)
    """
    kind = canonical.kind
    if kind == RuleKind.NONE:
        return NoneSpec(canonical.anchor_date)
    if kind == RuleKind.CUSTOM:
        return CustomSpec(tuple(sorted(set(canonical.custom_dates))))
    if canonical.weekday is None:
        raise ValueError(f"{kind.value} definition {canonical.definition_id} has no weekday")
    if kind == RuleKind.WEEKLY:
        return WeeklySpec(canonical.weekday, canonical.every_n_weeks, canonical.anchor_date)
    if kind == RuleKind.MONTHLY:
        return MonthlySpec(canonical.weekday, frozenset(canonical.ordinals))
    raise ValueError(f"unknown rule kind {kind!r}")


def bounds_for(canonical: CanonicalDefinition) -> ExpansionBounds:
    """Return the series bounds carried by a canonical definition."""
    series_start = canonical.anchor_date
    if canonical.kind == RuleKind.CUSTOM and canonical.custom_dates:
        series_start = min(canonical.custom_dates)
    return ExpansionBounds(
        end_date=canonical.end_date,
        max_occurrences=canonical.max_occurrences,
        series_start=series_start,
    )
