"""Unit tests for the occurrence resolution pipeline."""

from datetime import date

import pytest

from happenings_engine.domain.canonicalizer import IssueCode
from happenings_engine.domain.exceptions import ExpansionBoundsError
from happenings_engine.domain.expander import ExpansionCaps
from happenings_engine.domain.models import OverrideStatus, VerificationState
from happenings_engine.domain.pipeline import (
    OccurrencePipeline,
    ResolutionContext,
    digest_window,
    window_for,
)

pytestmark = pytest.mark.unit

FEB_2 = date(2026, 2, 2)


@pytest.fixture
def two_week_context(fixed_today):
    """Window covering Feb 2 through Feb 15, 2026."""
    return ResolutionContext.for_window(fixed_today, days=14, today=fixed_today)


class TestWindows:
    """Tests for window helpers."""

    def test_window_for_is_inclusive(self):
        """Test a 7-day window ends six days after its start."""
        assert window_for(FEB_2, 7) == (FEB_2, date(2026, 2, 8))
        assert window_for(FEB_2, 1) == (FEB_2, FEB_2)

    def test_window_for_rejects_empty(self):
        """Test zero-day windows are rejected."""
        with pytest.raises(ValueError):
            window_for(FEB_2, 0)

    def test_digest_window(self):
        """Test the digest covers today plus six days."""
        assert digest_window(FEB_2) == (FEB_2, date(2026, 2, 8))

    def test_context_defaults_to_today(self, fixed_today):
        """Test the window starts on the supplied today."""
        context = ResolutionContext.for_window(days=3, today=fixed_today)
        assert (context.window_start, context.window_end) == (FEB_2, date(2026, 2, 4))

    def test_context_uses_test_time(self, monkeypatch):
        """Test today comes from the shared site-timezone resolver."""
        monkeypatch.setenv("HAPPENINGS_TEST_TIME", "2026-02-03T01:00:00Z")
        # 01:00 UTC on Feb 3 is still Feb 2 in Denver
        assert ResolutionContext.for_window(days=1).today == FEB_2


class TestResolve:
    """Tests for OccurrencePipeline.resolve()."""

    def test_basic_resolution(self, definition_factory, two_week_context):
        """Test a weekly definition resolves with label and verification."""
        result = OccurrencePipeline().resolve([definition_factory()], [], two_week_context)
        assert [occ.date_key for occ in result.occurrences] == [FEB_2, date(2026, 2, 9)]
        assert all(occ.recurrence_label == "Every Monday" for occ in result.occurrences)
        assert all(occ.verification_state == VerificationState.CONFIRMED for occ in result.occurrences)
        assert result.metrics.events_processed == 1
        assert result.warnings == []

    def test_labels_recorded_without_occurrences(self, definition_factory, fixed_today):
        """Test every resolved definition gets a label, even with no dates in the window."""
        tuesday = date(2026, 2, 3)
        context = ResolutionContext.for_window(tuesday, days=1, today=fixed_today)
        definitions = [definition_factory(), definition_factory(id="broken", recurrence_rule="FREQ=DAILY")]
        result = OccurrencePipeline().resolve(definitions, [], context)
        assert result.occurrences == []
        assert result.labels == {"open-mic": "Every Monday"}

    def test_cancelled_occurrences_counted_and_kept(self, definition_factory, override_factory, two_week_context):
        """Test cancellations stay in the result and are dropped by projections."""
        overrides = [override_factory(date(2026, 2, 9), status=OverrideStatus.CANCELLED)]
        result = OccurrencePipeline().resolve([definition_factory()], overrides, two_week_context)
        assert result.metrics.cancelled_count == 1
        assert len(result.occurrences) == 2
        assert [occ.date_key for occ in result.upcoming()] == [FEB_2]
        assert [occ.date_key for occ in result.cancelled()] == [date(2026, 2, 9)]

    def test_hidden_statuses_skipped(self, definition_factory, two_week_context):
        """Test draft and cancelled definitions never reach surfaces."""
        definitions = [
            definition_factory(id="draft", status="draft"),
            definition_factory(id="gone", status="cancelled"),
            definition_factory(),
        ]
        result = OccurrencePipeline().resolve(definitions, [], two_week_context)
        assert {occ.definition_id for occ in result.occurrences} == {"open-mic"}
        assert result.metrics.events_skipped == 2

    def test_unpublished_filtering(self, definition_factory, fixed_today):
        """Test unpublished definitions are only resolved when asked."""
        definitions = [definition_factory(is_published=False)]
        public = ResolutionContext.for_window(fixed_today, days=7, today=fixed_today)
        host = ResolutionContext.for_window(fixed_today, days=7, today=fixed_today, include_unpublished=True)
        assert OccurrencePipeline().resolve(definitions, [], public).occurrences == []
        assert len(OccurrencePipeline().resolve(definitions, [], host).occurrences) == 1

    def test_definition_id_filter(self, definition_factory, fixed_today):
        """Test restricting a resolution to named definitions."""
        definitions = [definition_factory(), definition_factory(id="other")]
        context = ResolutionContext.for_window(fixed_today, days=7, today=fixed_today, definition_ids=["other"])
        result = OccurrencePipeline().resolve(definitions, [], context)
        assert {occ.definition_id for occ in result.occurrences} == {"other"}

    def test_unknown_schedule_reported_not_raised(self, definition_factory, two_week_context):
        """Test a malformed definition is skipped and reported."""
        definitions = [definition_factory(id="broken", recurrence_rule="FREQ=DAILY"), definition_factory()]
        result = OccurrencePipeline().resolve(definitions, [], two_week_context)
        assert [u.definition_id for u in result.unknown_definitions] == ["broken"]
        assert result.unknown_definitions[0].field == "recurrence_rule"
        assert {occ.definition_id for occ in result.occurrences} == {"open-mic"}

    def test_canonical_issues_recorded(self, definition_factory, two_week_context):
        """Test read-time canonicalization notes are surfaced."""
        result = OccurrencePipeline().resolve([definition_factory(weekday=None)], [], two_week_context)
        assert [issue.code for issue in result.issues["open-mic"]] == [IssueCode.WEEKDAY_DERIVED]

    def test_orphaned_overrides_reported(self, definition_factory, override_factory, two_week_context):
        """Test an override on a Tuesday of a Monday series is reported."""
        overrides = [override_factory(date(2026, 2, 10), patch={"title": "Orphan"})]
        result = OccurrencePipeline().resolve([definition_factory()], overrides, two_week_context)
        assert [miss.date_key for miss in result.orphaned_overrides] == [date(2026, 2, 10)]

    def test_orphans_judged_before_per_event_cap(self, definition_factory, override_factory, two_week_context):
        """Test an override on a capped-away date is not an orphan."""
        overrides = [override_factory(date(2026, 2, 9), patch={"title": "Second week"})]
        pipeline = OccurrencePipeline(ExpansionCaps(max_per_event=1))
        result = pipeline.resolve([definition_factory()], overrides, two_week_context)
        assert result.orphaned_overrides == []
        assert [occ.date_key for occ in result.occurrences] == [FEB_2]

    def test_malformed_window_raises(self, definition_factory, fixed_today):
        """Test windows beyond the maximum span raise."""
        context = ResolutionContext.for_window(fixed_today, days=500, today=fixed_today)
        with pytest.raises(ExpansionBoundsError):
            OccurrencePipeline().resolve([definition_factory()], [], context)


class TestCaps:
    """Tests for expansion caps."""

    def test_max_per_event(self, definition_factory, fixed_today):
        """Test per-definition capping warns and keeps the earliest dates."""
        context = ResolutionContext.for_window(fixed_today, days=90, today=fixed_today)
        result = OccurrencePipeline(ExpansionCaps(max_per_event=3)).resolve([definition_factory()], [], context)
        assert [occ.date_key for occ in result.occurrences] == [FEB_2, date(2026, 2, 9), date(2026, 2, 16)]
        assert result.metrics.was_capped is True
        assert result.warnings

    def test_max_events(self, definition_factory, two_week_context):
        """Test definitions beyond max_events are skipped."""
        definitions = [definition_factory(id=f"event-{i}") for i in range(3)]
        result = OccurrencePipeline(ExpansionCaps(max_events=2)).resolve(definitions, [], two_week_context)
        assert result.metrics.events_processed == 2
        assert result.metrics.events_skipped == 1
        assert result.metrics.was_capped is True

    def test_max_total_occurrences(self, definition_factory, two_week_context):
        """Test the total occurrence cap truncates across definitions."""
        definitions = [definition_factory(id=f"event-{i}") for i in range(3)]
        result = OccurrencePipeline(ExpansionCaps(max_total_occurrences=3)).resolve(definitions, [], two_week_context)
        assert result.metrics.total_occurrences == 3
        assert len(result.occurrences) == 3
        assert result.metrics.was_capped is True
