"""Unit tests for the verification badge."""

from datetime import date

import pytest

from happenings_engine.domain.models import OverrideStatus, VerificationState
from happenings_engine.domain.pipeline import OccurrencePipeline, ResolutionContext
from happenings_engine.domain.verification import verify

pytestmark = pytest.mark.unit


class TestVerify:
    """Tests for verify()."""

    def test_verified_definition_is_confirmed(self, definition_factory):
        """Test verified_at on the base row confirms every occurrence."""
        assert verify(definition_factory()) == VerificationState.CONFIRMED

    def test_unverified_definition_is_unconfirmed(self, definition_factory):
        """Test no verification timestamp means unconfirmed."""
        assert verify(definition_factory(verified_at=None)) == VerificationState.UNCONFIRMED

    def test_flagged_definition_needs_verification(self, definition_factory):
        """Test a row flagged for review."""
        definition = definition_factory(verified_at=None, status="needs_verification")
        assert verify(definition) == VerificationState.NEEDS_VERIFICATION

    def test_cancelled_override_is_unconfirmed(self, definition_factory, override_factory):
        """Test a cancelled occurrence is never shown as confirmed."""
        override = override_factory(date(2026, 2, 9), status=OverrideStatus.CANCELLED)
        assert verify(definition_factory(), override) == VerificationState.UNCONFIRMED

    def test_patch_override_keeps_base_verification(self, definition_factory, override_factory):
        """Test overrides do not carry their own verification."""
        override = override_factory(date(2026, 2, 9), patch={"title": "Special"})
        assert verify(definition_factory(), override) == VerificationState.CONFIRMED

    def test_partial_projection_rejected(self, definition_factory):
        """Test a dict projection of the row cannot be verified."""
        projection = definition_factory().model_dump(exclude={"verified_at"})
        with pytest.raises(TypeError):
            verify(projection)  # type: ignore[arg-type]


class TestVerificationParity:
    """Every surface shows the same badge for the same occurrence."""

    def test_timeline_series_and_detail_agree(self, definition_factory, fixed_today):
        """Test the badge is identical across projections."""
        definitions = [
            definition_factory(),
            definition_factory(id="poetry", title="Poetry Night", verified_at=None, weekday="Tuesday",
                               anchor_date="2026-01-06", status="needs_verification"),
        ]
        result = OccurrencePipeline().resolve(
            definitions, [], ResolutionContext.for_window(fixed_today, days=14, today=fixed_today)
        )

        timeline_states = {
            (occ.definition_id, occ.date_key): occ.verification_state
            for day in result.timeline()
            for occ in day.occurrences
        }
        series_states = {entry.definition_id: entry.verification_state for entry in result.series()}

        assert timeline_states
        for (definition_id, date_key), state in timeline_states.items():
            assert result.find(definition_id, date_key).verification_state == state
            assert series_states[definition_id] == state
        assert series_states == {
            "open-mic": VerificationState.CONFIRMED,
            "poetry": VerificationState.NEEDS_VERIFICATION,
        }
