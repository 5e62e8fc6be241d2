"""
Timezone-fixed calendar day arithmetic.

Billing due-dates are calendar days, not instants. A payment that covers
"Monday 12 January" must mean the same Monday whether the timestamp arrived
as 00:00 Brisbane time or 14:00 UTC the previous day. Everything in the
billing engine therefore works on DayKeys: ISO "YYYY-MM-DD" strings in a
single reference timezone.

DayKeys sort lexicographically in calendar order, which keeps comparisons
and set membership cheap and obvious.

Weekdays use Monday=0 ... Sunday=6, which is what date.weekday() returns.
Anything arriving in a Sunday=0 convention (JavaScript getDay(), cron) must
go through weekday_from_sunday_based() first.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional, Union
from zoneinfo import ZoneInfo

from .errors import InvalidDateError

# Brisbane has no daylight saving, so midnight is always +10:00.
REFERENCE_TIMEZONE_NAME = "Australia/Brisbane"
REFERENCE_TIMEZONE = ZoneInfo(REFERENCE_TIMEZONE_NAME)

DayKey = str
DateLike = Union[str, date, datetime]


def _parse_string(value: str, tz: ZoneInfo) -> date:
    text = value.strip()
    if not text:
        raise InvalidDateError(value, "empty string")

    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError as e:
            raise InvalidDateError(value, str(e)) from e

    # fromisoformat only learned to read a trailing "Z" in 3.11
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidDateError(value, str(e)) from e
    return _datetime_to_local_date(parsed, tz)


def _datetime_to_local_date(value: datetime, tz: ZoneInfo) -> date:
    if value.tzinfo is None:
        # Naive datetimes are taken to already be reference-local wall time
        return value.date()
    return value.astimezone(tz).date()


def to_date(value: DateLike, tz: ZoneInfo = REFERENCE_TIMEZONE) -> date:
    """
    Normalize any supported input to a calendar date in the reference timezone.

    Accepts DayKey strings, ISO datetime strings (with or without offset),
    date and datetime objects. Raises InvalidDateError for anything else;
    it never falls back to "today" or another default.
    """
    if isinstance(value, datetime):
        return _datetime_to_local_date(value, tz)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return _parse_string(value, tz)
    raise InvalidDateError(value, f"unsupported type {type(value).__name__}")


def to_day_key(value: DateLike, tz: ZoneInfo = REFERENCE_TIMEZONE) -> DayKey:
    """Convert an instant or day into its DayKey in the reference timezone."""
    return to_date(value, tz).isoformat()


def start_of_day(value: DateLike, tz: ZoneInfo = REFERENCE_TIMEZONE) -> datetime:
    """Midnight of the value's reference-local day, as an aware datetime."""
    return datetime.combine(to_date(value, tz), time.min, tzinfo=tz)


def add_days(day_key: DateLike, amount: int) -> DayKey:
    """Shift a day by a whole number of calendar days."""
    return (to_date(day_key) + timedelta(days=amount)).isoformat()


def compare(a: DateLike, b: DateLike) -> int:
    """Three-way comparison of two days: -1, 0 or 1."""
    left = to_day_key(a)
    right = to_day_key(b)
    return (left > right) - (left < right)


def weekday_index(day_key: DateLike) -> int:
    """Monday=0 ... Sunday=6."""
    return to_date(day_key).weekday()


def weekday_from_sunday_based(value: int) -> int:
    """Remap a Sunday=0 weekday to the canonical Monday=0 index."""
    return (value + 6) % 7


def days_between(start: DateLike, end: DateLike) -> int:
    """Signed number of calendar days from start to end."""
    return (to_date(end) - to_date(start)).days


def is_same_day(a: DateLike, b: DateLike) -> bool:
    return to_day_key(a) == to_day_key(b)


def iter_days(start: DateLike, end: DateLike) -> Iterator[DayKey]:
    """Yield every DayKey in the inclusive range [start, end]."""
    cursor = to_date(start)
    last = to_date(end)
    while cursor <= last:
        yield cursor.isoformat()
        cursor += timedelta(days=1)


def optional_day_key(value: Optional[DateLike]) -> Optional[DayKey]:
    if value is None:
        return None
    return to_day_key(value)
