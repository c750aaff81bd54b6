"""Occurrence resolution pipeline for happenings_engine.

Every discovery surface (timeline, series cards, digest, detail page,
calendar export) reads occurrences through ``OccurrencePipeline.resolve``.
The stages run in a fixed order for each definition:

    canonicalize -> interpret -> expand (bounded window) -> merge overrides
    (verification + label attached) -> caps

Usage:
    pipeline = OccurrencePipeline(ExpansionCaps.from_settings(config))
    context = ResolutionContext.for_window(today_key(), days=90)
    result = pipeline.resolve(definitions, overrides, context)
    days = result.timeline()
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from ..core.date_keys import add_days, format_date_key
from ..core.timezone_utils import today_key
from .canonicalizer import CanonicalIssue, canonicalize
from .exceptions import CanonicalizationError
from .expander import ExpansionCaps, expand, validate_window
from .humanizer import label as humanize
from .interpreter import MonthlySpec, WeeklySpec, bounds_for, interpret
from .models import DefinitionStatus, EventDefinition, OccurrenceOverride, ResolvedOccurrence
from .override_merger import OverrideJoinMiss, build_override_map, find_orphaned_overrides, merge
from .series_view import SeriesEntry, TimelineDay, build_series, build_timeline, cancelled_occurrences, upcoming

logger = logging.getLogger(__name__)

# Definitions in these states never reach discovery surfaces
HIDDEN_STATUSES = frozenset({DefinitionStatus.CANCELLED.value, DefinitionStatus.DRAFT.value})


def window_for(start: date, days: int) -> tuple[date, date]:
    """Return an inclusive window of ``days`` days beginning at ``start``."""
    if days < 1:
        raise ValueError("window must cover at least one day")
    return start, add_days(start, days - 1)


def digest_window(today: date) -> tuple[date, date]:
    """Return the weekly digest window: today through six days later."""
    return window_for(today, 7)


@dataclass
class ResolutionContext:
    """Inputs for one resolution request.

    ``today`` comes from the shared site-timezone resolver; surfaces never
    compute their own.
    """

    window_start: date
    window_end: date
    today: date
    include_unpublished: bool = False
    definition_ids: Optional[frozenset[str]] = None

    @classmethod
    def for_window(
        cls,
        start: Optional[date] = None,
        days: int = 90,
        *,
        today: Optional[date] = None,
        include_unpublished: bool = False,
        definition_ids: Optional[Iterable[str]] = None,
    ) -> ResolutionContext:
        resolved_today = today or today_key()
        window_start, window_end = window_for(start or resolved_today, days)
        return cls(
            window_start=window_start,
            window_end=window_end,
            today=resolved_today,
            include_unpublished=include_unpublished,
            definition_ids=frozenset(definition_ids) if definition_ids is not None else None,
        )


@dataclass
class ResolutionMetrics:
    events_processed: int = 0
    events_skipped: int = 0
    total_occurrences: int = 0
    cancelled_count: int = 0
    was_capped: bool = False

    def to_api(self) -> dict[str, Any]:
        return {
            "events_processed": self.events_processed,
            "events_skipped": self.events_skipped,
            "total_occurrences": self.total_occurrences,
            "cancelled_count": self.cancelled_count,
            "was_capped": self.was_capped,
        }


@dataclass(frozen=True)
class UnknownDefinition:
    """A definition whose schedule could not be canonicalized."""

    definition_id: str
    title: str
    reason: str
    field: Optional[str] = None

    def to_api(self) -> dict[str, Any]:
        return {"definition_id": self.definition_id, "title": self.title, "reason": self.reason, "field": self.field}


@dataclass
class ResolutionResult:
    """Output of one resolution request.

    ``occurrences`` includes cancelled occurrences; the projections drop
    them unless asked. ``labels`` holds the recurrence label of every
    resolved definition, including those with no dates in the window.
    """

    context: ResolutionContext
    occurrences: list[ResolvedOccurrence] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    issues: dict[str, tuple[CanonicalIssue, ...]] = field(default_factory=dict)
    unknown_definitions: list[UnknownDefinition] = field(default_factory=list)
    orphaned_overrides: list[OverrideJoinMiss] = field(default_factory=list)
    metrics: ResolutionMetrics = field(default_factory=ResolutionMetrics)
    warnings: list[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning("[resolve] %s", message)

    def upcoming(self, *, include_cancelled: bool = False) -> list[ResolvedOccurrence]:
        return upcoming(self.occurrences, include_cancelled=include_cancelled)

    def timeline(self, *, include_cancelled: bool = False) -> list[TimelineDay]:
        return build_timeline(self.occurrences, include_cancelled=include_cancelled, today=self.context.today)

    def series(self, *, per_series_limit: Optional[int] = None) -> list[SeriesEntry]:
        return build_series(self.occurrences, per_series_limit=per_series_limit)

    def cancelled(self) -> list[ResolvedOccurrence]:
        return cancelled_occurrences(self.occurrences)

    def find(self, definition_id: str, date_key: date) -> Optional[ResolvedOccurrence]:
        """Look up one occurrence by its slot identity (not its display date)."""
        for occurrence in self.occurrences:
            if occurrence.definition_id == definition_id and occurrence.date_key == date_key:
                return occurrence
        return None

    def for_definition(self, definition_id: str) -> list[ResolvedOccurrence]:
        return [occ for occ in self.occurrences if occ.definition_id == definition_id]


class OccurrencePipeline:
    """Resolves definitions and overrides into occurrences for a window."""

    def __init__(self, caps: Optional[ExpansionCaps] = None) -> None:
        self.caps = caps or ExpansionCaps()

    def _is_visible(self, definition: EventDefinition, context: ResolutionContext) -> bool:
        if definition.status in HIDDEN_STATUSES:
            return False
        if definition.is_published is False and not context.include_unpublished:
            return False
        return context.definition_ids is None or definition.id in context.definition_ids

    def resolve(
        self,
        definitions: Iterable[EventDefinition],
        overrides: Iterable[OccurrenceOverride],
        context: ResolutionContext,
    ) -> ResolutionResult:
        """Resolve every visible definition inside the context window.

        Args:
            definitions: Stored definition rows (one consistent snapshot)
            overrides: Override rows for the same snapshot
            context: Window and request options

        Returns:
            ResolutionResult with occurrences, issues, orphans and metrics

        Raises:
            ExpansionBoundsError: if the context window is malformed
        """
        validate_window(context.window_start, context.window_end, max_window_days=self.caps.max_window_days)
        result = ResolutionResult(context=context)

        override_list = list(overrides)
        override_map = build_override_map(override_list)
        overrides_by_definition: dict[str, list[OccurrenceOverride]] = defaultdict(list)
        for override in override_list:
            overrides_by_definition[override.definition_id].append(override)

        for definition in definitions:
            if not self._is_visible(definition, context):
                result.metrics.events_skipped += 1
                continue
            if result.metrics.events_processed >= self.caps.max_events:
                result.metrics.was_capped = True
                result.metrics.events_skipped += 1
                continue
            if result.metrics.total_occurrences >= self.caps.max_total_occurrences:
                result.metrics.was_capped = True
                result.metrics.events_skipped += 1
                continue

            resolved = self._resolve_definition(
                definition, override_map, overrides_by_definition.get(definition.id, []), context, result
            )
            if resolved is None:
                result.metrics.events_skipped += 1
                continue

            result.metrics.events_processed += 1
            room = self.caps.max_total_occurrences - result.metrics.total_occurrences
            if len(resolved) > room:
                result.metrics.was_capped = True
                resolved = resolved[:room]
            result.occurrences.extend(resolved)
            result.metrics.total_occurrences += len(resolved)
            result.metrics.cancelled_count += sum(1 for occ in resolved if occ.is_cancelled)

        if result.metrics.was_capped:
            result.add_warning(
                f"expansion capped at {result.metrics.total_occurrences} occurrences "
                f"({result.metrics.events_processed} definitions)"
            )
        logger.debug(
            "Resolved %s..%s: %d definitions, %d occurrences, %d cancelled, %d orphaned overrides",
            format_date_key(context.window_start),
            format_date_key(context.window_end),
            result.metrics.events_processed,
            result.metrics.total_occurrences,
            result.metrics.cancelled_count,
            len(result.orphaned_overrides),
        )
        return result

    def _resolve_definition(
        self,
        definition: EventDefinition,
        override_map: dict[Any, OccurrenceOverride],
        definition_overrides: list[OccurrenceOverride],
        context: ResolutionContext,
        result: ResolutionResult,
    ) -> Optional[list[ResolvedOccurrence]]:
        try:
            canonical = canonicalize(definition)
        except CanonicalizationError as exc:
            logger.info("Skipping definition %s with unknown schedule: %s", definition.id, exc.reason)
            result.unknown_definitions.append(
                UnknownDefinition(definition.id, definition.title, exc.reason, exc.field)
            )
            return None

        if canonical.issues:
            result.issues[definition.id] = canonical.issues

        spec = interpret(canonical)
        label_text = humanize(spec)
        result.labels[definition.id] = label_text
        dates = expand(spec, context.window_start, context.window_end, bounds_for(canonical))

        result.orphaned_overrides.extend(
            find_orphaned_overrides(
                definition.id, dates, definition_overrides, context.window_start, context.window_end
            )
        )

        if len(dates) > self.caps.max_per_event:
            result.metrics.was_capped = True
            dates = dates[: self.caps.max_per_event]

        weekday = spec.weekday if isinstance(spec, (WeeklySpec, MonthlySpec)) else None
        return merge(definition, dates, override_map, label=label_text, weekday=weekday)
