"""Unit tests for bounded occurrence expansion."""

from datetime import date

import pytest

from happenings_engine.core.date_keys import Weekday, weekday_of
from happenings_engine.domain.canonicalizer import canonicalize
from happenings_engine.domain.exceptions import ExpansionBoundsError
from happenings_engine.domain.expander import ExpansionCaps, expand, is_occurrence_date, validate_window
from happenings_engine.domain.interpreter import (
    CustomSpec,
    ExpansionBounds,
    MonthlySpec,
    NoneSpec,
    WeeklySpec,
    bounds_for,
    interpret,
)

pytestmark = pytest.mark.unit

JAN_5 = date(2026, 1, 5)


class TestWeeklyExpansion:
    """Tests for WeeklySpec expansion."""

    def test_weekly_in_window(self):
        """Test every Monday in February 2026."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        dates = expand(spec, date(2026, 2, 1), date(2026, 2, 28), ExpansionBounds(series_start=JAN_5))
        assert dates == [date(2026, 2, 2), date(2026, 2, 9), date(2026, 2, 16), date(2026, 2, 23)]

    def test_biweekly_phase_follows_anchor(self):
        """Test every-other-week dates stay in phase with the anchor."""
        spec = WeeklySpec(Weekday.MONDAY, every_n_weeks=2, anchor=JAN_5)
        bounds = ExpansionBounds(series_start=JAN_5)
        assert expand(spec, date(2026, 2, 1), date(2026, 2, 28), bounds) == [date(2026, 2, 2), date(2026, 2, 16)]
        # Starting the window on an off week does not shift the phase
        assert expand(spec, date(2026, 1, 12), date(2026, 1, 31), bounds) == [date(2026, 1, 19)]

    def test_nothing_before_anchor(self):
        """Test that a series never produces dates before its anchor."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        dates = expand(spec, date(2025, 12, 1), date(2026, 1, 20), ExpansionBounds(series_start=JAN_5))
        assert dates == [JAN_5, date(2026, 1, 12), date(2026, 1, 19)]

    def test_without_anchor_starts_at_window(self):
        """Test a legacy weekday-only series expands from the window start."""
        spec = WeeklySpec(Weekday.SATURDAY)
        assert expand(spec, date(2026, 2, 1), date(2026, 2, 14)) == [date(2026, 2, 7), date(2026, 2, 14)]

    def test_end_date_tightens_window(self):
        """Test the recurrence end date is inclusive and cuts the series."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        bounds = ExpansionBounds(end_date=date(2026, 1, 19), series_start=JAN_5)
        assert expand(spec, date(2026, 1, 1), date(2026, 1, 31), bounds) == [
            JAN_5,
            date(2026, 1, 12),
            date(2026, 1, 19),
        ]

    def test_end_date_before_window_yields_nothing(self):
        """Test a series that ended before the window."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        bounds = ExpansionBounds(end_date=date(2026, 1, 19), series_start=JAN_5)
        assert expand(spec, date(2026, 2, 1), date(2026, 2, 28), bounds) == []

    def test_max_occurrences_counted_from_anchor(self):
        """Test a 4-occurrence series seen through a later window."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        bounds = ExpansionBounds(max_occurrences=4, series_start=JAN_5)
        # Series is Jan 5, 12, 19, 26
        assert expand(spec, date(2026, 1, 20), date(2026, 2, 28), bounds) == [date(2026, 1, 26)]
        assert expand(spec, date(2026, 2, 1), date(2026, 2, 28), bounds) == []
        assert len(expand(spec, date(2026, 1, 1), date(2026, 3, 31), bounds)) == 4

    def test_max_occurrences_with_interval(self):
        """Test counting a biweekly series from its anchor."""
        spec = WeeklySpec(Weekday.MONDAY, every_n_weeks=2, anchor=JAN_5)
        bounds = ExpansionBounds(max_occurrences=3, series_start=JAN_5)
        # Series is Jan 5, Jan 19, Feb 2
        assert expand(spec, date(2026, 1, 10), date(2026, 3, 31), bounds) == [date(2026, 1, 19), date(2026, 2, 2)]


class TestMonthlyExpansion:
    """Tests for MonthlySpec expansion."""

    def test_nth_weekday(self):
        """Test the 4th Saturday of each month."""
        spec = MonthlySpec(Weekday.SATURDAY, frozenset({4}))
        dates = expand(spec, date(2026, 2, 1), date(2026, 4, 30))
        assert dates == [date(2026, 2, 28), date(2026, 3, 28), date(2026, 4, 25)]

    def test_multiple_ordinals(self):
        """Test 1st and 3rd Thursdays."""
        spec = MonthlySpec(Weekday.THURSDAY, frozenset({1, 3}))
        dates = expand(spec, date(2026, 2, 1), date(2026, 3, 31))
        assert dates == [date(2026, 2, 5), date(2026, 2, 19), date(2026, 3, 5), date(2026, 3, 19)]

    def test_fifth_weekday_skips_short_months(self):
        """Test a 5th-weekday rule produces nothing in months without one."""
        spec = MonthlySpec(Weekday.SATURDAY, frozenset({5}))
        assert expand(spec, date(2026, 2, 1), date(2026, 4, 30)) == []
        assert expand(spec, date(2026, 1, 1), date(2026, 5, 31)) == [date(2026, 1, 31), date(2026, 5, 30)]

    def test_last_thursday_in_february(self):
        """Test "last" resolves correctly in leap and common years."""
        spec = MonthlySpec(Weekday.THURSDAY, frozenset({-1}))
        assert expand(spec, date(2024, 2, 1), date(2024, 2, 29)) == [date(2024, 2, 29)]
        assert expand(spec, date(2026, 2, 1), date(2026, 2, 28)) == [date(2026, 2, 26)]

    def test_last_matches_fourth_only_in_four_week_months(self):
        """Test "last" equals "4th" with four Thursdays and differs with five."""
        last = MonthlySpec(Weekday.THURSDAY, frozenset({-1}))
        fourth = MonthlySpec(Weekday.THURSDAY, frozenset({4}))
        # February 2026 has four Thursdays
        assert expand(last, date(2026, 2, 1), date(2026, 2, 28)) == expand(fourth, date(2026, 2, 1), date(2026, 2, 28))
        # February 2024 has five
        assert expand(last, date(2024, 2, 1), date(2024, 2, 29)) == [date(2024, 2, 29)]
        assert expand(fourth, date(2024, 2, 1), date(2024, 2, 29)) == [date(2024, 2, 22)]

    def test_first_and_last_do_not_collide(self):
        """Test 1st & last stay distinct and ordered."""
        spec = MonthlySpec(Weekday.THURSDAY, frozenset({1, -1}))
        assert expand(spec, date(2026, 1, 1), date(2026, 1, 31)) == [date(2026, 1, 1), date(2026, 1, 29)]

    def test_max_occurrences_counted_from_anchor(self):
        """Test a 3-occurrence monthly series seen through a later window."""
        spec = MonthlySpec(Weekday.SATURDAY, frozenset({4}))
        bounds = ExpansionBounds(max_occurrences=3, series_start=date(2026, 1, 24))
        # Series is Jan 24, Feb 28, Mar 28
        assert expand(spec, date(2026, 3, 1), date(2026, 4, 30), bounds) == [date(2026, 3, 28)]


class TestOtherSpecs:
    """Tests for one-time and custom expansion."""

    def test_one_time_inside_and_outside_window(self):
        """Test a single date is produced only inside the window."""
        spec = NoneSpec(date(2026, 2, 7))
        assert expand(spec, date(2026, 2, 1), date(2026, 2, 28)) == [date(2026, 2, 7)]
        assert expand(spec, date(2026, 3, 1), date(2026, 3, 31)) == []

    def test_one_time_without_date(self):
        """Test a NoneSpec with no date expands to nothing."""
        assert expand(NoneSpec(None), date(2026, 2, 1), date(2026, 2, 28)) == []

    def test_custom_dates_window_and_max(self):
        """Test custom dates are clipped to the window and counted from the first date."""
        spec = CustomSpec((date(2026, 2, 1), date(2026, 2, 8), date(2026, 2, 15), date(2026, 3, 1)))
        bounds = ExpansionBounds(max_occurrences=3, series_start=date(2026, 2, 1))
        assert expand(spec, date(2026, 2, 5), date(2026, 3, 31), bounds) == [date(2026, 2, 8), date(2026, 2, 15)]

    def test_limit_applied_after_sorting(self):
        """Test the display limit keeps the earliest dates."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        dates = expand(spec, date(2026, 1, 1), date(2026, 3, 31), ExpansionBounds(series_start=JAN_5), limit=2)
        assert dates == [JAN_5, date(2026, 1, 12)]


class TestBoundsValidation:
    """Tests for window and bounds validation."""

    def test_inverted_window_raises(self):
        """Test a window whose end precedes its start."""
        with pytest.raises(ExpansionBoundsError):
            expand(WeeklySpec(Weekday.MONDAY), date(2026, 2, 28), date(2026, 2, 1))

    def test_window_too_wide_raises(self):
        """Test the maximum window span."""
        with pytest.raises(ExpansionBoundsError):
            validate_window(date(2026, 1, 1), date(2027, 6, 1), max_window_days=400)

    def test_negative_bounds_raise(self):
        """Test negative max occurrences and limits."""
        with pytest.raises(ExpansionBoundsError):
            expand(WeeklySpec(Weekday.MONDAY), date(2026, 2, 1), date(2026, 2, 28), ExpansionBounds(max_occurrences=-1))
        with pytest.raises(ExpansionBoundsError):
            expand(WeeklySpec(Weekday.MONDAY), date(2026, 2, 1), date(2026, 2, 28), limit=-1)

    def test_zero_max_occurrences_is_empty(self):
        """Test zero is a valid, empty bound."""
        assert expand(WeeklySpec(Weekday.MONDAY), date(2026, 2, 1), date(2026, 2, 28), ExpansionBounds(max_occurrences=0)) == []

    def test_single_day_window(self):
        """Test a one-day window is valid."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        assert expand(spec, date(2026, 2, 2), date(2026, 2, 2), ExpansionBounds(series_start=JAN_5)) == [date(2026, 2, 2)]


class TestExpansionProperties:
    """Properties that hold for every definition shape."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {},
            {"recurrence_rule": "biweekly"},
            {"recurrence_rule": "FREQ=WEEKLY;INTERVAL=3;BYDAY=MO"},
            {"recurrence_rule": "2nd/4th", "anchor_date": "2026-01-10", "weekday": "Saturday"},
            {"recurrence_rule": "last", "anchor_date": "2026-01-29", "weekday": "Thursday"},
            {"recurrence_rule": "monthly", "anchor_date": "2026-01-31", "weekday": "Saturday"},
            # Mismatched row: the anchor (a Wednesday) wins
            {"anchor_date": "2026-01-07", "weekday": "Monday"},
        ],
    )
    def test_weekday_consistency_and_window_containment(self, definition_factory, overrides):
        """Test every produced date is in the window and on the canonical weekday."""
        canonical = canonicalize(definition_factory(**overrides))
        window_start, window_end = date(2026, 2, 10), date(2026, 6, 30)
        dates = expand(interpret(canonical), window_start, window_end, bounds_for(canonical))

        assert dates, "expected at least one occurrence"
        assert dates == sorted(set(dates))
        assert all(window_start <= d <= window_end for d in dates)
        assert {weekday_of(d) for d in dates} == {canonical.weekday}

    def test_is_occurrence_date(self):
        """Test membership checks for single dates."""
        spec = WeeklySpec(Weekday.MONDAY, anchor=JAN_5)
        bounds = ExpansionBounds(series_start=JAN_5)
        assert is_occurrence_date(spec, date(2026, 2, 9), bounds) is True
        assert is_occurrence_date(spec, date(2026, 2, 10), bounds) is False
        assert is_occurrence_date(spec, date(2025, 12, 29), bounds) is False

    def test_caps_defaults(self):
        """Test the default expansion caps."""
        caps = ExpansionCaps()
        assert (caps.max_events, caps.max_total_occurrences, caps.max_per_event) == (200, 500, 40)
