"""Shared fixtures for happenings_engine tests."""

from collections.abc import Generator
from datetime import date, datetime, timezone
from typing import Any, Callable

import pytest

from happenings_engine.domain.models import EventDefinition, OccurrenceOverride

_ENGINE_ENV_VARS = (
    "HAPPENINGS_TEST_TIME",
    "HAPPENINGS_SITE_TIMEZONE",
    "HAPPENINGS_DEBUG",
    "HAPPENINGS_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure engine environment variables are cleaned between tests.

    Some tests set HAPPENINGS_TEST_TIME to freeze "today" or
    HAPPENINGS_SITE_TIMEZONE to move the site. Clearing them before and
    after each test keeps date-sensitive tests independent.
    """
    for name in _ENGINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    for name in _ENGINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_timezone() -> str:
    """Return the site timezone the tests assume (the engine default)."""
    return "America/Denver"


@pytest.fixture
def fixed_today() -> date:
    """Monday 2026-02-02, the "today" most scenario tests are written against."""
    return date(2026, 2, 2)


@pytest.fixture
def fixed_now() -> datetime:
    """Noon on 2026-02-02 in Denver, as an aware UTC instant."""
    return datetime(2026, 2, 2, 19, 0, tzinfo=timezone.utc)


@pytest.fixture
def definition_factory() -> Callable[..., EventDefinition]:
    """Factory for EventDefinition rows with sensible defaults.

    Defaults describe a weekly Monday open mic anchored on 2026-01-05 that
    has been verified. Any field can be overridden by keyword.
    """

    def _make(**overrides: Any) -> EventDefinition:
        row: dict[str, Any] = {
            "id": "open-mic",
            "title": "Open Mic",
            "anchor_date": "2026-01-05",
            "weekday": "Monday",
            "recurrence_rule": "weekly",
            "start_time": "19:00",
            "venue_name": "The Lantern",
            "verified_at": datetime(2026, 1, 2, 17, 0, tzinfo=timezone.utc),
        }
        row.update(overrides)
        return EventDefinition(**row)

    return _make


@pytest.fixture
def override_factory() -> Callable[..., OccurrenceOverride]:
    """Factory for OccurrenceOverride rows on the default definition."""

    def _make(date_key: date, **overrides: Any) -> OccurrenceOverride:
        row: dict[str, Any] = {"definition_id": "open-mic", "date_key": date_key}
        row.update(overrides)
        return OccurrenceOverride(**row)

    return _make
