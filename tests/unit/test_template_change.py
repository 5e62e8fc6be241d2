"""
Unit tests for mapping a paid-through date across a class change.

A family pays for lessons, not dates. Moving from Monday to Tuesday must
keep the same number of lessons, re-expressed on the new weekday.
"""

from src.core.billing.models import AssignedTemplate, HolidayRange
from src.core.billing.schedule import count_scheduled_sessions
from src.core.billing.template_change import compute_paid_through_after_template_change

MONDAY = AssignedTemplate(day_of_week=0, template_id="tpl-mon")
TUESDAY = AssignedTemplate(day_of_week=1, template_id="tpl-tue")
WEDNESDAY = AssignedTemplate(day_of_week=2, template_id="tpl-wed")
THURSDAY = AssignedTemplate(day_of_week=3, template_id="tpl-thu")


class TestWeekdaySwaps:
    """Known class moves and where their coverage must land."""

    def test_monday_to_tuesday(self):
        """Eleven Mondays from 2 March become eleven Tuesdays."""
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-05-11",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
        )
        assert result.new_paid_through == "2026-05-12"
        assert result.debug.entitlement_sessions == 11

    def test_tuesday_to_monday(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-05-12",
            old_templates=[TUESDAY],
            new_templates=[MONDAY],
        )
        assert result.new_paid_through == "2026-05-11"

    def test_holiday_on_new_weekday_pushes_coverage(self):
        """Tuesday 27 January is closed, so the fourth Tuesday lesson is 10 February."""
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-01-12",
            old_paid_through="2026-02-02",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
            new_holidays=[HolidayRange.of("2026-01-27")],
        )
        assert result.new_paid_through == "2026-02-10"
        assert result.debug.entitlement_sessions == 4
        assert result.debug.new_holiday_count == 1

    def test_year_of_mondays_to_wednesday(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-01-05",
            old_paid_through="2026-12-28",
            old_templates=[MONDAY],
            new_templates=[WEDNESDAY],
        )
        assert result.new_paid_through == "2026-12-30"
        assert result.debug.entitlement_sessions == 52

    def test_past_dates_remap(self):
        """A move recorded long after the fact still maps by lesson count."""
        result = compute_paid_through_after_template_change(
            enrolment_start="2024-02-05",
            old_paid_through="2024-03-04",
            old_templates=[MONDAY],
            new_templates=[THURSDAY],
        )
        assert result.new_paid_through == "2024-03-07"

    def test_old_holidays_reduce_entitlement(self):
        """A closed Monday under the old schedule wasn't a lesson paid for."""
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-01-12",
            old_paid_through="2026-02-09",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
            old_holidays=[HolidayRange.of("2026-01-26")],
        )
        assert result.debug.entitlement_sessions == 4
        assert result.new_paid_through == "2026-02-03"

    def test_long_closure_on_new_weekday_keeps_every_lesson(self):
        """
        Eight Mondays move to Tuesdays while the Tuesday class is closed
        until March, so all eight land from 3 March onwards.
        """
        new_holidays = [HolidayRange.of("2026-01-06", "2026-02-28")]
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-01-05",
            old_paid_through="2026-02-23",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
            new_holidays=new_holidays,
        )

        assert result.debug.entitlement_sessions == 8
        assert result.new_paid_through == "2026-04-21"
        covered = count_scheduled_sessions("2026-01-05", result.new_paid_through, [TUESDAY], new_holidays)
        assert covered == 8

    def test_one_class_to_two(self):
        """Four Monday lessons become two weeks of Monday and Thursday."""
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-01-12",
            old_paid_through="2026-02-02",
            old_templates=[MONDAY],
            new_templates=[MONDAY, THURSDAY],
        )
        assert result.new_paid_through == "2026-01-22"
        assert result.debug.sessions_per_week == 2

    def test_enrolment_end_caps_coverage(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-05-11",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
            enrolment_end="2026-04-01",
        )
        assert result.new_paid_through == "2026-03-31"
        assert result.debug.horizon_day == "2026-04-01"

    def test_debug_records_template_ids(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-05-11",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
        )
        assert result.debug.old_template_ids == ["tpl-mon"]
        assert result.debug.new_template_ids == ["tpl-tue"]
        assert result.debug.new_paid_through == result.new_paid_through


class TestNothingToMap:
    """Inputs that leave no paid-through date."""

    def test_missing_old_paid_through(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through=None,
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
        )
        assert result.new_paid_through is None

    def test_empty_new_schedule(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-05-11",
            old_templates=[MONDAY],
            new_templates=[],
        )
        assert result.new_paid_through is None

    def test_paid_through_before_start(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-02-23",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
        )
        assert result.new_paid_through is None

    def test_no_lessons_covered(self):
        """Paid through a Sunday before any Monday lesson happened."""
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-03",
            old_paid_through="2026-03-08",
            old_templates=[MONDAY],
            new_templates=[TUESDAY],
        )
        assert result.new_paid_through is None
        assert result.debug.entitlement_sessions == 0

    def test_new_schedule_without_weekdays(self):
        result = compute_paid_through_after_template_change(
            enrolment_start="2026-03-02",
            old_paid_through="2026-05-11",
            old_templates=[MONDAY],
            new_templates=[AssignedTemplate(day_of_week=None)],
        )
        assert result.new_paid_through is None
        assert result.debug.sessions_per_week == 0
