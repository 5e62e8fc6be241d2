"""
Coverage walker: turn a number of paid sessions into a paid-through day.

The walker starts at the enrolment's first day and consumes entitlement
one calendar day at a time. A day with two classes consumes two units in
a single step, so both classes that day are covered together. The last
day that consumed anything is the paid-through day.

Every walk is bounded. A sparse schedule against a large entitlement
(one class a week, years of credit) would otherwise spin for a very long
time, and a schedule made entirely of holidays would never end at all.
"""

from datetime import date, timedelta
from typing import Iterable, Optional

from .dates import DateLike, DayKey, to_date
from .schedule import HolidaysLike, TemplateLike, build_weekday_counts, resolve_holiday_set

HORIZON_FALLBACK_DAYS = 365


def resolve_horizon_day(
    start_day: DateLike,
    end_day: Optional[DateLike],
    entitlement_sessions: int,
    fallback_days: int = HORIZON_FALLBACK_DAYS,
) -> DayKey:
    """
    Last day a walk may reach.

    An explicit enrolment end wins. Otherwise allow a week per session
    with a floor of fallback_days, which covers one class a week with
    room to spare for holiday closures. The result never passes the last
    representable day.
    """
    if end_day is not None:
        return to_date(end_day).isoformat()
    start = to_date(start_day)
    span = max(entitlement_sessions * 7, fallback_days)
    if span >= (date.max - start).days:
        return date.max.isoformat()
    return (start + timedelta(days=span)).isoformat()


def compute_coverage_end_day(
    start_day: DateLike,
    templates: Iterable[TemplateLike],
    holidays: HolidaysLike,
    entitlement_sessions: int,
    end_day: Optional[DateLike] = None,
    horizon_day: Optional[DateLike] = None,
) -> Optional[DayKey]:
    """
    Walk forward from start_day until entitlement_sessions are used up.

    Returns the last day that consumed entitlement, or None when there is
    nothing to consume or no scheduled day was reached. The walk also
    stops after end_day (enrolment end) and after horizon_day. When
    neither is given the horizon defaults via resolve_horizon_day().
    """
    if entitlement_sessions <= 0:
        return None

    weekday_counts = build_weekday_counts(templates)
    if not weekday_counts:
        return None

    closed = resolve_holiday_set(holidays)

    limits = [to_date(day) for day in (end_day, horizon_day) if day is not None]
    if not limits:
        limits.append(to_date(resolve_horizon_day(start_day, None, entitlement_sessions)))
    limit = min(limits)

    remaining = entitlement_sessions
    cursor = to_date(start_day)
    last_covered: Optional[DayKey] = None

    while remaining > 0 and cursor <= limit:
        count = weekday_counts.get(cursor.weekday(), 0)
        key = cursor.isoformat()
        if count > 0 and key not in closed:
            remaining -= count
            last_covered = key
        if cursor == limit:
            break
        cursor += timedelta(days=1)

    return last_covered
