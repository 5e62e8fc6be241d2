"""
Weekday occurrence counting.

An enrolment's schedule is reduced to a weekday multiplicity map: how
many assigned class slots fall on each weekday. Two slots on Monday mean
Monday counts twice. Counting "how many classes between A and B" is then
a walk over calendar days, skipping holidays.

The walk is per day rather than a closed-form week calculation on purpose:
holiday ranges can start and end anywhere and the day walk is obviously
correct, which matters more than speed for ranges measured in months.
"""

from datetime import timedelta
from typing import Iterable, Optional, Union

from .dates import DateLike, DayKey, to_date, to_day_key
from .models import AssignedTemplate, HolidayRange

TemplateLike = Union[AssignedTemplate, int, None]
HolidaysLike = Union[Iterable[HolidayRange], set, frozenset, None]


def _day_of_week(template: TemplateLike) -> Optional[int]:
    if template is None:
        return None
    if isinstance(template, int):
        return template
    return template.day_of_week


def build_weekday_counts(templates: Iterable[TemplateLike]) -> dict[int, int]:
    """
    Map weekday index to the number of slots on that weekday.

    Slots without a weekday are ignored. Indexes outside 0..6 wrap
    (-1 is Sunday) rather than being rejected.
    """
    counts: dict[int, int] = {}
    for template in templates:
        day = _day_of_week(template)
        if day is None:
            continue
        normalized = day % 7
        counts[normalized] = counts.get(normalized, 0) + 1
    return counts


def build_holiday_day_keys(holidays: Iterable[HolidayRange]) -> set[DayKey]:
    """Expand holiday ranges into the set of closed DayKeys."""
    closed: set[DayKey] = set()
    for holiday in holidays:
        cursor = to_date(holiday.start_date)
        end = to_date(holiday.end_date)
        while cursor <= end:
            closed.add(cursor.isoformat())
            cursor += timedelta(days=1)
    return closed


def resolve_holiday_set(holidays: HolidaysLike) -> frozenset:
    """Accept either holiday ranges or an already materialized DayKey set."""
    if not holidays:
        return frozenset()
    if isinstance(holidays, (set, frozenset)):
        return frozenset(holidays)
    return frozenset(build_holiday_day_keys(holidays))


def count_scheduled_sessions(
    start_day: DateLike,
    end_day: DateLike,
    templates: Iterable[TemplateLike],
    holidays: HolidaysLike = None,
) -> int:
    """
    Count scheduled class occurrences in the inclusive range [start_day, end_day].

    Each non-holiday day contributes the number of slots on its weekday.
    Returns 0 for an inverted range or an empty schedule.
    """
    start = to_date(start_day)
    end = to_date(end_day)
    if end < start:
        return 0

    weekday_counts = build_weekday_counts(templates)
    if not weekday_counts:
        return 0

    closed = resolve_holiday_set(holidays)

    total = 0
    cursor = start
    while cursor <= end:
        if cursor.isoformat() not in closed:
            total += weekday_counts.get(cursor.weekday(), 0)
        cursor += timedelta(days=1)
    return total


def next_scheduled_day(
    start_day: DateLike,
    templates: Iterable[TemplateLike],
    holidays: HolidaysLike = None,
    horizon_day: Optional[DateLike] = None,
) -> Optional[DayKey]:
    """
    First day on or after start_day that has a class and is not a holiday.

    Without a horizon the search stops a week past the later of start_day
    and the last holiday: beyond that every weekday is open, so a mapped
    weekday must already have been found.
    """
    weekday_counts = build_weekday_counts(templates)
    if not weekday_counts:
        return None

    closed = resolve_holiday_set(holidays)
    cursor = to_date(start_day)

    if horizon_day is not None:
        limit = to_date(horizon_day)
    else:
        latest = max([cursor, *(to_date(key) for key in closed)])
        limit = latest + timedelta(days=7)

    while cursor <= limit:
        key = cursor.isoformat()
        if weekday_counts.get(cursor.weekday(), 0) > 0 and key not in closed:
            return key
        cursor += timedelta(days=1)
    return None


def count_holiday_occurrences(
    start_day: DateLike,
    end_day: DateLike,
    day_of_week: int,
    holidays: HolidaysLike,
) -> int:
    """
    Count occurrences of one weekday inside [start_day, end_day] that land on a holiday.

    Overlapping holiday ranges count a day once. This is the "missed
    sessions" input for weekly holiday extensions.
    """
    start = to_date(start_day)
    end = to_date(end_day)
    if end < start:
        return 0

    closed = resolve_holiday_set(holidays)
    if not closed:
        return 0

    delta = (day_of_week % 7 - start.weekday()) % 7
    cursor = start + timedelta(days=delta)

    count = 0
    while cursor <= end:
        if cursor.isoformat() in closed:
            count += 1
        cursor += timedelta(days=7)
    return count


def holiday_weekdays(holidays: Iterable[HolidayRange]) -> set[int]:
    """Weekday indexes touched by any of the given ranges."""
    weekdays: set[int] = set()
    for key in build_holiday_day_keys(holidays):
        weekdays.add(to_date(key).weekday())
        if len(weekdays) == 7:
            break
    return weekdays
