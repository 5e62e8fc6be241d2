"""
Unit tests for weekday occurrence counting.

2026-01-12 is a Monday; most cases are built around it so the expected
dates can be checked against a wall calendar.
"""

import pytest

from src.core.billing.dates import add_days
from src.core.billing.models import AssignedTemplate, HolidayRange
from src.core.billing.schedule import (
    build_holiday_day_keys,
    build_weekday_counts,
    count_holiday_occurrences,
    count_scheduled_sessions,
    holiday_weekdays,
    next_scheduled_day,
)

MONDAY = AssignedTemplate(day_of_week=0)
TUESDAY = AssignedTemplate(day_of_week=1)
WEDNESDAY = AssignedTemplate(day_of_week=2)


class TestBuildWeekdayCounts:
    """Tests for the weekday multiplicity map."""

    def test_counts_slots_per_weekday(self):
        """Two Monday slots count twice."""
        counts = build_weekday_counts([MONDAY, MONDAY, WEDNESDAY])
        assert counts == {0: 2, 2: 1}

    def test_ignores_slots_without_weekday(self):
        """A template with no weekday contributes nothing and is not an error."""
        counts = build_weekday_counts([AssignedTemplate(day_of_week=None), None, TUESDAY])
        assert counts == {1: 1}

    def test_accepts_plain_integers(self):
        assert build_weekday_counts([0, 3]) == {0: 1, 3: 1}

    def test_wraps_out_of_range_indexes(self):
        assert build_weekday_counts([-1, 7]) == {6: 1, 0: 1}


class TestBuildHolidayDayKeys:
    """Tests for materializing holiday ranges."""

    def test_expands_inclusive_range(self):
        keys = build_holiday_day_keys([HolidayRange.of("2026-01-30", "2026-02-01")])
        assert keys == {"2026-01-30", "2026-01-31", "2026-02-01"}

    def test_overlapping_ranges_merge(self):
        keys = build_holiday_day_keys([
            HolidayRange.of("2026-01-20", "2026-01-21"),
            HolidayRange.of("2026-01-20"),
        ])
        assert keys == {"2026-01-20", "2026-01-21"}


class TestCountScheduledSessions:
    """Tests for count_scheduled_sessions."""

    def test_counts_mondays_inclusive(self):
        """12, 19, 26 January and 2 February."""
        assert count_scheduled_sessions("2026-01-12", "2026-02-02", [MONDAY]) == 4

    def test_holiday_excludes_day(self):
        """26 January is closed, 9 February takes its place in the count."""
        holidays = [HolidayRange.of("2026-01-26")]
        assert count_scheduled_sessions("2026-01-12", "2026-02-09", [MONDAY], holidays) == 4

    def test_multiplicity_counts_each_slot(self):
        assert count_scheduled_sessions("2026-01-12", "2026-01-19", [MONDAY, MONDAY]) == 4

    def test_holiday_removes_every_slot_on_the_day(self):
        holidays = [HolidayRange.of("2026-01-12")]
        assert count_scheduled_sessions("2026-01-12", "2026-01-19", [MONDAY, MONDAY], holidays) == 2

    def test_inverted_range_is_zero(self):
        assert count_scheduled_sessions("2026-02-02", "2026-01-12", [MONDAY]) == 0

    def test_no_weekdays_is_zero(self):
        assert count_scheduled_sessions("2026-01-12", "2026-02-02", []) == 0

    def test_fully_closed_range_is_zero(self):
        holidays = [HolidayRange.of("2026-01-01", "2026-03-31")]
        count = count_scheduled_sessions("2026-01-12", "2026-03-01", [MONDAY, TUESDAY], holidays)
        assert count == 0

    def test_accepts_materialized_holiday_set(self):
        assert count_scheduled_sessions("2026-01-12", "2026-02-02", [MONDAY], {"2026-01-19"}) == 3

    def test_monotonic_in_end_day(self):
        """Extending the range can never reduce the count."""
        holidays = [HolidayRange.of("2026-01-20", "2026-01-28")]
        templates = [MONDAY, WEDNESDAY]
        previous = 0
        for offset in range(60):
            end = add_days("2026-01-12", offset)
            current = count_scheduled_sessions("2026-01-12", end, templates, holidays)
            assert current >= previous
            previous = current

    def test_counts_across_timezone_encoded_bounds(self):
        """A UTC-encoded start normalizes to the Brisbane day."""
        count = count_scheduled_sessions("2026-01-11T14:00:00Z", "2026-01-12", [MONDAY])
        assert count == 1


class TestNextScheduledDay:
    """Tests for next_scheduled_day."""

    def test_start_day_itself_counts(self):
        assert next_scheduled_day("2026-01-12", [MONDAY]) == "2026-01-12"

    def test_moves_forward_to_weekday(self):
        assert next_scheduled_day("2026-01-13", [MONDAY]) == "2026-01-19"

    def test_skips_holiday(self):
        holidays = [HolidayRange.of("2026-01-26")]
        assert next_scheduled_day("2026-01-26", [MONDAY], holidays) == "2026-02-02"

    def test_skips_long_closure(self):
        holidays = [HolidayRange.of("2026-01-12", "2026-03-01")]
        assert next_scheduled_day("2026-01-12", [MONDAY], holidays) == "2026-03-02"

    def test_no_weekdays_returns_none(self):
        assert next_scheduled_day("2026-01-12", [AssignedTemplate(day_of_week=None)]) is None

    def test_respects_horizon(self):
        assert next_scheduled_day("2026-01-13", [MONDAY], horizon_day="2026-01-18") is None


class TestCountHolidayOccurrences:
    """Tests for counting holiday-cancelled occurrences of one weekday."""

    START = "2025-01-06"  # Monday
    END = "2025-01-27"

    def test_single_holiday(self):
        holidays = [HolidayRange.of("2025-01-13")]
        assert count_holiday_occurrences(self.START, self.END, 0, holidays) == 1

    def test_two_holidays(self):
        holidays = [HolidayRange.of("2025-01-13"), HolidayRange.of("2025-01-20")]
        assert count_holiday_occurrences(self.START, self.END, 0, holidays) == 2

    def test_overlapping_ranges_count_once(self):
        holidays = [
            HolidayRange.of("2025-01-20", "2025-01-21"),
            HolidayRange.of("2025-01-20"),
        ]
        assert count_holiday_occurrences(self.START, self.END, 0, holidays) == 1

    def test_holiday_on_other_weekday_ignored(self):
        """19 January 2025 is a Sunday."""
        holidays = [HolidayRange.of("2025-01-19")]
        assert count_holiday_occurrences(self.START, self.END, 0, holidays) == 0

    def test_no_holidays(self):
        assert count_holiday_occurrences(self.START, self.END, 0, []) == 0

    @pytest.mark.parametrize("day_of_week,expected", [(0, 1), (1, 1), (2, 0)])
    def test_range_spanning_weekdays(self, day_of_week, expected):
        holidays = [HolidayRange.of("2025-01-13", "2025-01-14")]
        assert count_holiday_occurrences(self.START, self.END, day_of_week, holidays) == expected


class TestHolidayWeekdays:
    """Tests for holiday_weekdays."""

    def test_short_range(self):
        assert holiday_weekdays([HolidayRange.of("2026-01-12", "2026-01-13")]) == {0, 1}

    def test_long_range_touches_every_weekday(self):
        assert holiday_weekdays([HolidayRange.of("2026-01-01", "2026-01-31")]) == set(range(7))

    def test_empty(self):
        assert holiday_weekdays([]) == set()
