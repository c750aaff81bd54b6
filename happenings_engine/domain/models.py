"""Data models for the occurrence engine."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..core.date_keys import Weekday, format_date_key


class DefinitionStatus(str, Enum):
    """Lifecycle status of an event definition row."""

    ACTIVE = "active"
    NEEDS_VERIFICATION = "needs_verification"
    CANCELLED = "cancelled"
    DRAFT = "draft"


class OverrideStatus(str, Enum):
    """Status carried by a per-occurrence override."""

    NORMAL = "normal"
    CANCELLED = "cancelled"


class VerificationState(str, Enum):
    """Tri-state trust badge shown for an occurrence."""

    CONFIRMED = "confirmed"
    NEEDS_VERIFICATION = "needs_verification"
    UNCONFIRMED = "unconfirmed"


TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$"
DATE_KEY_FIELD_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class OverridePatch(BaseModel):
    """Allow-listed fields a host may override for a single occurrence.

    Unknown keys are rejected rather than dropped. ``event_date`` is the
    reschedule field: it moves the occurrence's display date.
    """

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    event_date: Optional[str] = Field(default=None, pattern=DATE_KEY_FIELD_PATTERN)
    start_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    venue_id: Optional[str] = None
    venue_name: Optional[str] = None
    location_mode: Optional[str] = None
    custom_location_name: Optional[str] = None
    custom_address: Optional[str] = None
    custom_city: Optional[str] = None
    custom_state: Optional[str] = None
    online_url: Optional[str] = None
    location_notes: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=0)
    has_timeslots: Optional[bool] = None
    total_slots: Optional[int] = Field(default=None, ge=0)
    slot_duration_minutes: Optional[int] = Field(default=None, ge=0)
    is_free: Optional[bool] = None
    cost_label: Optional[str] = None
    signup_url: Optional[str] = None
    signup_deadline: Optional[str] = None
    signup_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    age_policy: Optional[str] = None
    external_url: Optional[str] = None
    categories: Optional[list[str]] = None
    cover_image_url: Optional[str] = None
    host_notes: Optional[str] = None
    is_published: Optional[bool] = None

    model_config = ConfigDict(extra="forbid", strict=True)

    @field_validator("title")
    @classmethod
    def _title_not_null(cls, value: Optional[str]) -> str:
        # An occurrence always has a title; omit the key to keep the base one
        if value is None:
            raise ValueError("title cannot be null")
        return value


ALLOWED_OVERRIDE_FIELDS: frozenset[str] = frozenset(OverridePatch.model_fields)


class OccurrenceFields(BaseModel):
    """Effective displayable values for one occurrence."""

    title: str = ""
    description: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    venue_id: Optional[str] = None
    venue_name: Optional[str] = None
    location_mode: Optional[str] = None
    custom_location_name: Optional[str] = None
    custom_address: Optional[str] = None
    custom_city: Optional[str] = None
    custom_state: Optional[str] = None
    online_url: Optional[str] = None
    location_notes: Optional[str] = None
    capacity: Optional[int] = None
    has_timeslots: Optional[bool] = None
    total_slots: Optional[int] = None
    slot_duration_minutes: Optional[int] = None
    is_free: Optional[bool] = None
    cost_label: Optional[str] = None
    signup_url: Optional[str] = None
    signup_deadline: Optional[str] = None
    signup_time: Optional[str] = None
    age_policy: Optional[str] = None
    external_url: Optional[str] = None
    categories: Optional[list[str]] = None
    cover_image_url: Optional[str] = None
    host_notes: Optional[str] = None
    is_published: Optional[bool] = None

    model_config = ConfigDict(frozen=True)


DISPLAY_FIELDS: tuple[str, ...] = tuple(OccurrenceFields.model_fields)


class EventDefinition(OccurrenceFields):
    """A stored event row as read from persistence.

    Recurrence columns stay raw strings: stored data may be malformed and is
    only trusted after canonicalization.
    """

    id: str = Field(..., description="Stable definition identifier")
    anchor_date: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("anchor_date", "event_date"),
        description="First/reference occurrence date (YYYY-MM-DD)",
    )
    weekday: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("weekday", "day_of_week"),
        description="Stored day name",
    )
    recurrence_rule: Optional[str] = Field(default=None, description="Raw stored rule text")
    custom_dates: Optional[list[str]] = Field(default=None, description="Explicit dates for custom rules")
    recurrence_end_date: Optional[str] = None
    max_occurrences: Optional[int] = None
    verified_at: Optional[datetime] = Field(default=None, description="Base-level trust signal")
    status: str = DefinitionStatus.ACTIVE.value
    source: Optional[str] = None
    host_id: Optional[str] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def base_fields(self) -> dict[str, Any]:
        """Return the displayable field values of the base row."""
        return {name: getattr(self, name) for name in DISPLAY_FIELDS}

    @field_serializer("verified_at")
    def _serialize_verified_at(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None


class OccurrenceOverride(BaseModel):
    """Per-occurrence exception row keyed by (definition_id, date_key)."""

    definition_id: str = Field(
        ...,
        validation_alias=AliasChoices("definition_id", "event_id"),
    )
    date_key: date
    status: OverrideStatus = OverrideStatus.NORMAL
    patch: dict[str, Any] = Field(default_factory=dict)

    # Legacy single-purpose columns; patch values take precedence
    override_start_time: Optional[str] = None
    override_cover_image_url: Optional[str] = None
    override_notes: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @property
    def key(self) -> tuple[str, date]:
        return (self.definition_id, self.date_key)

    @property
    def is_cancelled(self) -> bool:
        return self.status == OverrideStatus.CANCELLED

    @field_serializer("date_key")
    def _serialize_date_key(self, value: date) -> str:
        return format_date_key(value)

    @field_serializer("created_at", "updated_at")
    def _serialize_timestamps(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None


class ResolvedOccurrence(BaseModel):
    """One concrete occurrence after override merge.

    Ephemeral: rebuilt for every window query, identified by
    (definition_id, date_key).
    """

    definition_id: str
    date_key: date = Field(..., description="Canonical slot identity and override join key")
    display_date_key: date = Field(..., description="Date the occurrence is shown under")
    is_rescheduled: bool = False
    is_cancelled: bool = False
    effective: OccurrenceFields = Field(..., description="Field values after override merge")
    verification_state: VerificationState
    recurrence_label: str = ""
    recurrence_weekday: Optional[Weekday] = Field(
        default=None, description="Weekday a weekly or monthly series recurs on"
    )
    override: Optional[OccurrenceOverride] = None

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, date]:
        return (self.definition_id, self.date_key)

    @field_serializer("date_key", "display_date_key")
    def _serialize_dates(self, value: date) -> str:
        return format_date_key(value)

    def to_api(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        data = self.model_dump(mode="json", exclude={"override"})
        data["has_override"] = self.override is not None
        return data
