"""Site timezone and "today" resolution for happenings_engine.

The whole system shares one civil timezone. Every window, "tonight" listing
and digest range is computed from ``today_key()`` in that zone; surfaces
never compute their own today.
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

# Default civil timezone for all date-key operations
DEFAULT_SITE_TIMEZONE = "America/Denver"

SITE_TIMEZONE_ENV = "HAPPENINGS_SITE_TIMEZONE"
TEST_TIME_ENV = "HAPPENINGS_TEST_TIME"


class TimeProvider:
    """Provides current time with test time override support."""

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via HAPPENINGS_TEST_TIME environment variable.
        Format: ISO 8601 datetime string (e.g., "2026-02-01T19:30:00-07:00")

        Returns:
            Current time in UTC with timezone info
        """
        test_time = os.environ.get(TEST_TIME_ENV)
        if test_time:
            try:
                from dateutil import parser as date_parser

                dt = date_parser.isoparse(test_time)

                if dt.tzinfo is not None:
                    return dt.astimezone(datetime.timezone.utc)
                # Naive test times are read as site-local wall clock
                return dt.replace(tzinfo=get_site_zone()).astimezone(datetime.timezone.utc)

            except Exception as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)
                # Fall through to real time

        return datetime.datetime.now(datetime.timezone.utc)


# Singleton instance for global use
_time_provider = TimeProvider()


def get_site_timezone(fallback: str = DEFAULT_SITE_TIMEZONE) -> str:
    """Get the configured site timezone with validation.

    Checks HAPPENINGS_SITE_TIMEZONE first, then falls back to the provided
    fallback timezone.

    Args:
        fallback: Fallback timezone if not configured or invalid
                  (default: America/Denver)

    Returns:
        Valid IANA timezone string
    """
    timezone = os.environ.get(SITE_TIMEZONE_ENV, fallback)

    try:
        zoneinfo.ZoneInfo(timezone)
        return timezone
    except Exception:
        logger.warning(
            "Invalid timezone %r, falling back to %r", timezone, fallback, exc_info=True
        )
        return fallback


@lru_cache(maxsize=16)
def _zone(tz_name: str) -> zoneinfo.ZoneInfo:
    return zoneinfo.ZoneInfo(tz_name)


def get_site_zone() -> zoneinfo.ZoneInfo:
    """Return the ZoneInfo for the configured site timezone."""
    return _zone(get_site_timezone())


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function).

    Returns:
        Current time in UTC
    """
    return _time_provider.now_utc()


def today_key(now: Optional[datetime.datetime] = None, tz: Optional[str] = None) -> datetime.date:
    """Return today's date in the site's civil timezone.

    This is the single shared "today" resolver. Late-evening UTC instants
    that are still "today" locally resolve to the local date.

    Args:
        now: Optional aware instant to evaluate (defaults to now_utc())
        tz: Optional IANA timezone overriding the configured site timezone

    Returns:
        Civil date in the site timezone

    Raises:
        ValueError: if ``now`` is a naive datetime
    """
    instant = now if now is not None else now_utc()
    if instant.tzinfo is None:
        raise ValueError("today_key requires an aware datetime")
    zone = _zone(tz) if tz else get_site_zone()
    return instant.astimezone(zone).date()


def combine_local(day: datetime.date, wall_time: Optional[datetime.time]) -> datetime.datetime:
    """Attach a wall-clock time on ``day`` to the site timezone.

    Untimed occurrences resolve to local midnight.
    """
    return datetime.datetime.combine(day, wall_time or datetime.time(0, 0), tzinfo=get_site_zone())
