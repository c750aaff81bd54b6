"""Unit tests for validated override writes."""

from datetime import date, datetime, timezone

import pytest

from happenings_engine.domain.exceptions import OverridePatchError
from happenings_engine.domain.models import ALLOWED_OVERRIDE_FIELDS, OverrideStatus
from happenings_engine.domain.override_writer import WriteAction, validate_override_write, validate_patch

pytestmark = pytest.mark.unit

FEB_9 = date(2026, 2, 9)
NOW = datetime(2026, 2, 2, 19, 0, tzinfo=timezone.utc)


class TestValidatePatch:
    """Tests for the allow-list check."""

    def test_allowed_fields_pass(self):
        """Test known fields are returned as set."""
        assert validate_patch({"title": "Covers Night", "capacity": 20}) == {"title": "Covers Night", "capacity": 20}

    def test_explicit_none_kept(self):
        """Test explicit None survives so it can clear a field."""
        assert validate_patch({"description": None}) == {"description": None}

    def test_empty_and_missing(self):
        """Test an absent patch is empty."""
        assert validate_patch(None) == {}
        assert validate_patch({}) == {}

    def test_unknown_field_rejected(self):
        """Test unknown keys raise instead of being dropped."""
        with pytest.raises(OverridePatchError) as exc_info:
            validate_patch({"title": "Ok", "bogus": 1})
        assert exc_info.value.rejected_fields == ["bogus"]

    def test_identity_fields_rejected(self):
        """Test recurrence and identity columns are not patchable."""
        with pytest.raises(OverridePatchError) as exc_info:
            validate_patch({"recurrence_rule": "weekly", "verified_at": "2026-01-01"})
        assert exc_info.value.rejected_fields == ["recurrence_rule", "verified_at"]
        assert "verified_at" not in ALLOWED_OVERRIDE_FIELDS

    @pytest.mark.parametrize(
        "patch,field",
        [
            ({"start_time": "7pm"}, "start_time"),
            ({"capacity": "10"}, "capacity"),
            ({"capacity": -1}, "capacity"),
            ({"title": ""}, "title"),
            ({"title": None}, "title"),
            ({"event_date": "02/11/2026"}, "event_date"),
        ],
    )
    def test_malformed_values_rejected(self, patch, field):
        """Test allowed fields with bad values."""
        with pytest.raises(OverridePatchError) as exc_info:
            validate_patch(patch)
        assert exc_info.value.rejected_fields == [field]

    def test_non_mapping_rejected(self):
        """Test a patch that is not an object."""
        with pytest.raises(OverridePatchError):
            validate_patch(["title"])


class TestValidateOverrideWrite:
    """Tests for validate_override_write()."""

    def test_patch_write_is_upsert(self, definition_factory, fixed_today):
        """Test a normal patch produces an upsert row."""
        write = validate_override_write(
            definition_factory(), "2026-02-09", today=fixed_today, patch={"title": "Covers Night"}, now=NOW
        )
        assert write.action == WriteAction.UPSERT
        assert write.date_key == FEB_9
        assert write.override.patch == {"title": "Covers Night"}
        assert write.override.created_at == NOW
        assert write.override.updated_at == NOW

    def test_cancel_with_empty_patch_is_upsert(self, definition_factory, fixed_today):
        """Test cancellation alone is stored."""
        write = validate_override_write(definition_factory(), FEB_9, today=fixed_today, status="cancelled", now=NOW)
        assert write.action == WriteAction.UPSERT
        assert write.override.status == OverrideStatus.CANCELLED

    def test_empty_normal_write_reverts(self, definition_factory, fixed_today):
        """Test a write that overrides nothing deletes the row."""
        write = validate_override_write(definition_factory(), FEB_9, today=fixed_today, patch={})
        assert write.action == WriteAction.REVERT
        assert write.override is None

    def test_same_date_reschedule_dropped(self, definition_factory, fixed_today):
        """Test rescheduling onto the slot's own date is no reschedule."""
        write = validate_override_write(
            definition_factory(), FEB_9, today=fixed_today, patch={"event_date": "2026-02-09"}
        )
        assert write.action == WriteAction.REVERT

    def test_future_reschedule_kept(self, definition_factory, fixed_today):
        """Test a reschedule to a later day is stored in the patch."""
        write = validate_override_write(
            definition_factory(), FEB_9, today=fixed_today, patch={"event_date": "2026-02-11"}, now=NOW
        )
        assert write.override.patch == {"event_date": "2026-02-11"}

    def test_past_reschedule_rejected(self, definition_factory, fixed_today):
        """Test reschedules to a date before today."""
        with pytest.raises(OverridePatchError) as exc_info:
            validate_override_write(definition_factory(), FEB_9, today=fixed_today, patch={"event_date": "2026-01-30"})
        assert exc_info.value.rejected_fields == ["event_date"]

    def test_nonexistent_slot_rejected(self, definition_factory, fixed_today):
        """Test overriding a Tuesday of a Monday series."""
        with pytest.raises(OverridePatchError, match="no occurrence"):
            validate_override_write(definition_factory(), "2026-02-10", today=fixed_today, patch={"title": "x"})

    def test_slot_before_anchor_rejected(self, definition_factory, fixed_today):
        """Test overriding a Monday before the series began."""
        with pytest.raises(OverridePatchError):
            validate_override_write(definition_factory(), "2025-12-29", today=fixed_today, status="cancelled")

    def test_bad_date_key(self, definition_factory, fixed_today):
        """Test malformed date keys."""
        with pytest.raises(OverridePatchError) as exc_info:
            validate_override_write(definition_factory(), "Feb 9", today=fixed_today)
        assert exc_info.value.rejected_fields == ["date_key"]

    def test_bad_status(self, definition_factory, fixed_today):
        """Test unknown statuses."""
        with pytest.raises(OverridePatchError) as exc_info:
            validate_override_write(definition_factory(), FEB_9, today=fixed_today, status="postponed")
        assert exc_info.value.rejected_fields == ["status"]

    def test_invalid_legacy_start_time(self, definition_factory, fixed_today):
        """Test the legacy start time column is validated like the patch field."""
        with pytest.raises(OverridePatchError):
            validate_override_write(definition_factory(), FEB_9, today=fixed_today, override_start_time="7pm")

    def test_legacy_columns_only_is_upsert(self, definition_factory, fixed_today):
        """Test legacy columns alone are worth storing."""
        write = validate_override_write(
            definition_factory(), FEB_9, today=fixed_today, override_notes="Doors at 6", now=NOW
        )
        assert write.action == WriteAction.UPSERT
        assert write.override.override_notes == "Doors at 6"

    def test_created_at_preserved(self, definition_factory, override_factory, fixed_today):
        """Test editing an existing override keeps its creation time."""
        created = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)
        existing = override_factory(FEB_9, patch={"title": "Old"}, created_at=created)
        write = validate_override_write(
            definition_factory(), FEB_9, today=fixed_today, patch={"title": "New"}, existing=existing, now=NOW
        )
        assert write.override.created_at == created
        assert write.override.updated_at == NOW

    def test_invalid_definition_schedule(self, definition_factory, fixed_today):
        """Test writes against a definition whose schedule cannot be read."""
        with pytest.raises(OverridePatchError):
            validate_override_write(
                definition_factory(recurrence_rule="FREQ=DAILY"), FEB_9, today=fixed_today, status="cancelled"
            )
