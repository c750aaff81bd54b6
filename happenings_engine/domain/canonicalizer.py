"""Recurrence canonicalization for stored event definitions.

Stored recurrence columns are free text accumulated over several product
iterations ("weekly", "4th", "1st & 3rd", "Every other week", RRULE
fragments...). This module validates them and reduces every definition to
one of four shapes before anything is expanded:

- ``RuleKind.NONE``: one-time (or no dates at all)
- ``RuleKind.WEEKLY``: every N weeks on a weekday
- ``RuleKind.MONTHLY``: Nth/last weekday of the month
- ``RuleKind.CUSTOM``: explicit list of dates

Write paths call ``canonicalize(definition, strict=True)`` and surface any
``CanonicalizationError`` to the editor. Read paths use the default
non-strict mode: a weekday that disagrees with the anchor date is kept
visible as a ``WEEKDAY_ANCHOR_MISMATCH`` issue instead of failing the whole
listing, and the anchor's weekday is used for display.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Union

from ..core.date_keys import (
    Weekday,
    format_date_key,
    parse_date_key,
    parse_optional_date_key,
    weekday_of,
    weekday_ordinal_in_month,
)
from .exceptions import CanonicalizationError
from .models import EventDefinition

logger = logging.getLogger(__name__)

LAST_ORDINAL = -1

ORDINAL_WORDS: dict[str, int] = {
    "1st": 1,
    "first": 1,
    "2nd": 2,
    "second": 2,
    "3rd": 3,
    "third": 3,
    "4th": 4,
    "fourth": 4,
    "5th": 5,
    "fifth": 5,
    "last": LAST_ORDINAL,
}

ORDINAL_LABELS: dict[int, str] = {1: "1st", 2: "2nd", 3: "3rd", 4: "4th", 5: "5th", LAST_ORDINAL: "last"}

_ORDINAL_SEPARATORS = re.compile(r"\s*(?:/|&|,|\band\b)\s*", re.IGNORECASE)

_ONE_TIME_RULES = frozenset({"", "none", "one-time", "one time", "onetime", "single"})
_WEEKLY_RULES = frozenset({"weekly", "every week"})
_BIWEEKLY_RULES = frozenset({"biweekly", "bi-weekly", "every other week", "every 2 weeks"})

_RRULE_DAYS = {day.abbreviation: day for day in Weekday}
_RRULE_BYDAY = re.compile(r"^([+-]?\d)?(MO|TU|WE|TH|FR|SA|SU)$")


class RuleKind(str, Enum):
    """The four canonical recurrence shapes."""

    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class IssueCode(str, Enum):
    """Non-fatal findings recorded during read-time canonicalization."""

    WEEKDAY_ANCHOR_MISMATCH = "weekday_anchor_mismatch"
    WEEKDAY_DERIVED = "weekday_derived"
    LEGACY_DAY_ONLY = "legacy_day_only"
    CUSTOM_DATES_EMPTY = "custom_dates_empty"
    ORDINAL_DERIVED = "ordinal_derived"


@dataclass(frozen=True)
class CanonicalIssue:
    """A data-hygiene finding attached to a canonical definition."""

    code: IssueCode
    message: str

    @property
    def blocks_write(self) -> bool:
        return self.code == IssueCode.WEEKDAY_ANCHOR_MISMATCH


@dataclass(frozen=True)
class CanonicalDefinition:
    """Unambiguous recurrence descriptor for one definition."""

    definition_id: str
    kind: RuleKind
    anchor_date: Optional[date] = None
    weekday: Optional[Weekday] = None
    every_n_weeks: int = 1
    ordinals: tuple[int, ...] = ()
    custom_dates: tuple[date, ...] = ()
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    issues: tuple[CanonicalIssue, ...] = field(default=(), compare=False)

    @property
    def has_conflict(self) -> bool:
        return any(issue.blocks_write for issue in self.issues)

    def rule_text(self) -> str:
        """Return the canonical stored rule string for this shape."""
        if self.kind == RuleKind.WEEKLY:
            if self.every_n_weeks == 1:
                return "weekly"
            if self.every_n_weeks == 2:
                return "biweekly"
            return f"FREQ=WEEKLY;INTERVAL={self.every_n_weeks};BYDAY={self.weekday.abbreviation}"  # type: ignore[union-attr]
        if self.kind == RuleKind.MONTHLY:
            return format_ordinals(self.ordinals)
        if self.kind == RuleKind.CUSTOM:
            return "custom"
        return "none"

    def to_row(self) -> dict[str, object]:
        """Render the canonical stored column values.

        Persisting these values and canonicalizing them again yields an
        equal ``CanonicalDefinition``.
        """
        return {
            "anchor_date": format_date_key(self.anchor_date) if self.anchor_date else None,
            "weekday": self.weekday.value if self.weekday else None,
            "recurrence_rule": self.rule_text(),
            "custom_dates": [format_date_key(d) for d in self.custom_dates] or None,
            "recurrence_end_date": format_date_key(self.end_date) if self.end_date else None,
            "max_occurrences": self.max_occurrences,
        }


# ---------------------------------------------------------------------------
# Ordinal helpers
# ---------------------------------------------------------------------------


def parse_ordinals(rule: Optional[str]) -> Optional[tuple[int, ...]]:
    """Parse ordinal-monthly rule text into sorted ordinals.

    "1st/3rd" -> (1, 3); "2nd & last" -> (2, -1). "last" always sorts after
    positive ordinals.

    Returns:
        The ordinals, or None when the text is not purely ordinal
    """
    if not rule:
        return None
    parts = [p.strip().lower() for p in _ORDINAL_SEPARATORS.split(rule.strip()) if p.strip()]
    if not parts:
        return None
    values: set[int] = set()
    for part in parts:
        if part not in ORDINAL_WORDS:
            return None
        values.add(ORDINAL_WORDS[part])
    return _sort_ordinals(values)


def _sort_ordinals(values: set[int] | tuple[int, ...] | list[int]) -> tuple[int, ...]:
    return tuple(sorted(set(values), key=lambda n: (n == LAST_ORDINAL, n)))


def format_ordinals(ordinals: tuple[int, ...]) -> str:
    """Render ordinals back to stored rule text ("1st/3rd/last")."""
    return "/".join(ORDINAL_LABELS[n] for n in _sort_ordinals(ordinals))


# ---------------------------------------------------------------------------
# RRULE subset
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _ParsedRule:
    kind: RuleKind
    every_n_weeks: int = 1
    ordinals: tuple[int, ...] = ()
    weekday: Optional[Weekday] = None
    count: Optional[int] = None
    until: Optional[date] = None
    derive_ordinal: bool = False


def _parse_rrule(text: str, definition_id: str) -> _ParsedRule:
    """Parse the narrow RRULE subset accepted in the rule column.

    Supported: FREQ=WEEKLY with optional INTERVAL and a single BYDAY day,
    and FREQ=MONTHLY with BYDAY ordinal days for one weekday. COUNT and
    UNTIL are carried as bounds.
    """
    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[6:]

    components: dict[str, str] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        if "=" not in part:
            raise CanonicalizationError(
                f"malformed RRULE component {part!r}", definition_id=definition_id, field="recurrence_rule"
            )
        key, value = part.split("=", 1)
        components[key.strip().upper()] = value.strip().upper()

    def fail(reason: str) -> CanonicalizationError:
        return CanonicalizationError(reason, definition_id=definition_id, field="recurrence_rule")

    unsupported = set(components) - {"FREQ", "INTERVAL", "BYDAY", "COUNT", "UNTIL", "WKST"}
    if unsupported:
        raise fail(f"unsupported RRULE parts: {', '.join(sorted(unsupported))}")

    count: Optional[int] = None
    until: Optional[date] = None
    try:
        if "COUNT" in components:
            count = int(components["COUNT"])
        if "INTERVAL" in components:
            interval = int(components["INTERVAL"])
        else:
            interval = 1
        if "UNTIL" in components:
            raw_until = components["UNTIL"][:8]
            until = date(int(raw_until[:4]), int(raw_until[4:6]), int(raw_until[6:8]))
    except ValueError as exc:
        raise fail(f"invalid RRULE value: {exc}") from exc
    if interval < 1:
        raise fail("RRULE INTERVAL must be positive")

    byday = [d for d in components.get("BYDAY", "").split(",") if d]
    matches = [_RRULE_BYDAY.match(d) for d in byday]
    if any(m is None for m in matches):
        raise fail(f"invalid RRULE BYDAY {components.get('BYDAY')!r}")
    days = {_RRULE_DAYS[m.group(2)] for m in matches if m}
    if len(days) > 1:
        raise fail("RRULE BYDAY must name a single weekday")
    weekday = next(iter(days), None)

    freq = components.get("FREQ")
    if freq == "WEEKLY":
        if any(m and m.group(1) for m in matches):
            raise fail("ordinal BYDAY is not valid for FREQ=WEEKLY")
        return _ParsedRule(RuleKind.WEEKLY, every_n_weeks=interval, weekday=weekday, count=count, until=until)
    if freq == "MONTHLY":
        if interval != 1:
            raise fail("monthly RRULE with INTERVAL is not supported")
        ordinals: list[int] = []
        for m in matches:
            if m is None or m.group(1) is None:
                raise fail("monthly RRULE needs ordinal BYDAY values such as 2TH")
            n = int(m.group(1))
            if n not in (1, 2, 3, 4, 5, LAST_ORDINAL):
                raise fail(f"unsupported monthly ordinal {n}")
            ordinals.append(n)
        return _ParsedRule(
            RuleKind.MONTHLY,
            ordinals=_sort_ordinals(ordinals),
            weekday=weekday,
            count=count,
            until=until,
            derive_ordinal=not ordinals,
        )
    raise fail(f"unsupported RRULE frequency {freq!r}")


def _parse_rule_text(rule: Optional[str], definition_id: str) -> _ParsedRule:
    text = (rule or "").strip().lower()
    if text in _ONE_TIME_RULES:
        return _ParsedRule(RuleKind.NONE)
    if text in _WEEKLY_RULES:
        return _ParsedRule(RuleKind.WEEKLY)
    if text in _BIWEEKLY_RULES:
        return _ParsedRule(RuleKind.WEEKLY, every_n_weeks=2)
    if text == "custom":
        return _ParsedRule(RuleKind.CUSTOM)
    if text == "monthly":
        return _ParsedRule(RuleKind.MONTHLY, derive_ordinal=True)
    if text.startswith(("freq=", "rrule:")):
        return _parse_rrule(rule or "", definition_id)
    ordinals = parse_ordinals(text)
    if ordinals is not None:
        return _ParsedRule(RuleKind.MONTHLY, ordinals=ordinals)
    raise CanonicalizationError(
        f"unrecognized recurrence rule {rule!r}", definition_id=definition_id, field="recurrence_rule"
    )


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


def _parse_date_field(value: Optional[str], field_name: str, definition_id: str) -> Optional[date]:
    try:
        return parse_optional_date_key(value)
    except ValueError as exc:
        raise CanonicalizationError(
            f"{field_name} {value!r} is not a YYYY-MM-DD date", definition_id=definition_id, field=field_name
        ) from exc


def _parse_weekday_field(value: Optional[str], definition_id: str) -> Optional[Weekday]:
    if value is None or not value.strip():
        return None
    try:
        return Weekday.parse(value)
    except ValueError as exc:
        raise CanonicalizationError(
            f"weekday {value!r} is not a day name", definition_id=definition_id, field="weekday"
        ) from exc


def canonicalize(
    definition: Union[EventDefinition, CanonicalDefinition], *, strict: bool = False
) -> CanonicalDefinition:
    """Reduce a stored definition to one canonical recurrence shape.

    Args:
        definition: Stored row, or an already canonical definition (returned
            unchanged, so canonicalization is idempotent)
        strict: Write-time mode. A weekday/anchor disagreement raises instead
            of being recorded as an issue.

    Returns:
        CanonicalDefinition ready for interpretation

    Raises:
        CanonicalizationError: if the row is structurally invalid, or
            inconsistent in strict mode
    """
    if isinstance(definition, CanonicalDefinition):
        if strict and definition.has_conflict:
            raise CanonicalizationError(
                "weekday and anchor date disagree", definition_id=definition.definition_id, field="weekday"
            )
        return definition

    def_id = definition.id
    issues: list[CanonicalIssue] = []

    anchor = _parse_date_field(definition.anchor_date, "anchor_date", def_id)
    end_date = _parse_date_field(definition.recurrence_end_date, "recurrence_end_date", def_id)
    stored_weekday = _parse_weekday_field(definition.weekday, def_id)

    max_occurrences = definition.max_occurrences
    if max_occurrences is not None and max_occurrences < 0:
        raise CanonicalizationError(
            "max_occurrences must not be negative", definition_id=def_id, field="max_occurrences"
        )

    parsed = _parse_rule_text(definition.recurrence_rule, def_id)
    if parsed.count is not None and max_occurrences is None:
        max_occurrences = parsed.count
    if parsed.until is not None and end_date is None:
        end_date = parsed.until
    if parsed.weekday is not None:
        if stored_weekday is not None and stored_weekday != parsed.weekday:
            raise CanonicalizationError(
                f"rule BYDAY {parsed.weekday.value} disagrees with weekday {stored_weekday.value}",
                definition_id=def_id,
                field="weekday",
            )
        stored_weekday = parsed.weekday

    if parsed.kind == RuleKind.CUSTOM:
        return _canonicalize_custom(definition, anchor, stored_weekday, end_date, max_occurrences, issues)

    kind = parsed.kind
    every_n_weeks = parsed.every_n_weeks

    if kind == RuleKind.NONE:
        if anchor is None and stored_weekday is not None:
            # Day-only listings predate anchor dates and mean "every week"
            issues.append(
                CanonicalIssue(IssueCode.LEGACY_DAY_ONLY, "no anchor date; treating weekday listing as weekly")
            )
            kind = RuleKind.WEEKLY
        else:
            if anchor is not None and stored_weekday is not None and weekday_of(anchor) != stored_weekday:
                issues.append(_mismatch_issue(anchor, stored_weekday, def_id, strict))
            return CanonicalDefinition(
                definition_id=def_id,
                kind=RuleKind.NONE,
                anchor_date=anchor,
                weekday=weekday_of(anchor) if anchor else None,
                end_date=end_date,
                max_occurrences=max_occurrences,
                issues=tuple(issues),
            )

    weekday = _resolve_weekday(anchor, stored_weekday, def_id, strict, issues)

    if kind == RuleKind.WEEKLY and every_n_weeks > 1 and anchor is None:
        raise CanonicalizationError(
            f"every-{every_n_weeks}-weeks rule needs an anchor date to fix its phase",
            definition_id=def_id,
            field="anchor_date",
        )

    ordinals = parsed.ordinals
    if kind == RuleKind.MONTHLY and parsed.derive_ordinal:
        if anchor is None:
            raise CanonicalizationError(
                "monthly rule without ordinals needs an anchor date", definition_id=def_id, field="anchor_date"
            )
        position = weekday_ordinal_in_month(anchor)
        # A 5th weekday only recurs in some months; "last" keeps it monthly
        ordinals = (LAST_ORDINAL,) if position == 5 else (position,)
        issues.append(
            CanonicalIssue(IssueCode.ORDINAL_DERIVED, f"ordinal {format_ordinals(ordinals)} derived from anchor date")
        )

    canonical = CanonicalDefinition(
        definition_id=def_id,
        kind=kind,
        anchor_date=anchor,
        weekday=weekday,
        every_n_weeks=every_n_weeks if kind == RuleKind.WEEKLY else 1,
        ordinals=ordinals if kind == RuleKind.MONTHLY else (),
        end_date=end_date,
        max_occurrences=max_occurrences,
        issues=tuple(issues),
    )
    if issues:
        logger.debug(
            "Canonicalized %s with issues: %s", def_id, ", ".join(issue.code.value for issue in issues)
        )
    return canonical


def _mismatch_issue(anchor: date, weekday: Weekday, definition_id: str, strict: bool) -> CanonicalIssue:
    message = f"weekday {weekday.value} disagrees with anchor date {anchor.isoformat()} ({weekday_of(anchor).value})"
    if strict:
        raise CanonicalizationError(message, definition_id=definition_id, field="weekday")
    logger.warning("Definition %s: %s", definition_id, message)
    return CanonicalIssue(IssueCode.WEEKDAY_ANCHOR_MISMATCH, message)


def _resolve_weekday(
    anchor: Optional[date],
    stored: Optional[Weekday],
    definition_id: str,
    strict: bool,
    issues: list[CanonicalIssue],
) -> Weekday:
    if anchor is not None:
        derived = weekday_of(anchor)
        if stored is None:
            issues.append(CanonicalIssue(IssueCode.WEEKDAY_DERIVED, f"weekday {derived.value} derived from anchor date"))
        elif stored != derived:
            issues.append(_mismatch_issue(anchor, stored, definition_id, strict))
        # Anchor date wins for display; the mismatch issue keeps the conflict visible
        return derived
    if stored is None:
        raise CanonicalizationError(
            "recurring rule needs a weekday or an anchor date", definition_id=definition_id, field="weekday"
        )
    return stored


def _canonicalize_custom(
    definition: EventDefinition,
    anchor: Optional[date],
    weekday: Optional[Weekday],
    end_date: Optional[date],
    max_occurrences: Optional[int],
    issues: list[CanonicalIssue],
) -> CanonicalDefinition:
    dates: set[date] = set()
    for raw in definition.custom_dates or []:
        try:
            dates.add(parse_date_key(raw.strip() if isinstance(raw, str) else raw))
        except ValueError as exc:
            raise CanonicalizationError(
                f"custom date {raw!r} is not a YYYY-MM-DD date", definition_id=definition.id, field="custom_dates"
            ) from exc

    if not dates:
        issues.append(CanonicalIssue(IssueCode.CUSTOM_DATES_EMPTY, "custom rule has no dates"))
        return CanonicalDefinition(
            definition_id=definition.id,
            kind=RuleKind.NONE,
            end_date=end_date,
            max_occurrences=max_occurrences,
            issues=tuple(issues),
        )

    # weekday and anchor are ignored for expansion of custom dates
    return CanonicalDefinition(
        definition_id=definition.id,
        kind=RuleKind.CUSTOM,
        anchor_date=anchor,
        weekday=weekday if anchor is None else weekday_of(anchor),
        custom_dates=tuple(sorted(dates)),
        end_date=end_date,
        max_occurrences=max_occurrences,
        issues=tuple(issues),
    )


def canonical_definition_row(definition: EventDefinition, canonical: CanonicalDefinition) -> EventDefinition:
    """Return a copy of the stored row with canonical recurrence columns."""
    return definition.model_copy(update=canonical.to_row())

