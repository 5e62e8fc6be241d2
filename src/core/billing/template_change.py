"""
Map a paid-through date across a class schedule change.

When a student moves from a Monday class to a Tuesday class, what they
paid for is a number of lessons, not a date. So the old schedule (with
its own holidays) is used to count how many lessons the old paid-through
date represents, and that count is then walked forward on the new
schedule (with the new schedule's holidays).

The old and new schedules are both explicit inputs. Nothing here reads
"the current assignment", so it doesn't matter whether the caller runs
it before or after the move is saved.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .coverage import compute_coverage_end_day, resolve_horizon_day
from .dates import DateLike, DayKey, compare, optional_day_key, to_day_key
from .models import AssignedTemplate, HolidayRange
from .schedule import count_scheduled_sessions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateChangeDebugInfo:
    """What the mapping saw, for support staff and logs."""
    start_day: Optional[DayKey]
    old_paid_through: Optional[DayKey]
    new_paid_through: Optional[DayKey]
    old_template_ids: list[Optional[str]] = field(default_factory=list)
    new_template_ids: list[Optional[str]] = field(default_factory=list)
    entitlement_sessions: int = 0
    sessions_per_week: int = 0
    horizon_day: Optional[DayKey] = None
    old_holiday_count: int = 0
    new_holiday_count: int = 0


@dataclass(frozen=True)
class TemplateChangeResult:
    new_paid_through: Optional[DayKey]
    debug: TemplateChangeDebugInfo


def compute_paid_through_after_template_change(
    enrolment_start: DateLike,
    old_paid_through: Optional[DateLike],
    old_templates: Sequence[AssignedTemplate],
    new_templates: Sequence[AssignedTemplate],
    old_holidays: Sequence[HolidayRange] = (),
    new_holidays: Sequence[HolidayRange] = (),
    enrolment_end: Optional[DateLike] = None,
) -> TemplateChangeResult:
    """
    Preserve the number of lessons covered, re-expressed on the new schedule.

    Returns a result whose new_paid_through is None when there is nothing
    to map: no old paid-through date, an empty schedule on either side,
    a paid-through date before the enrolment started, or zero lessons.
    """
    start_day = to_day_key(enrolment_start)
    old_day = optional_day_key(old_paid_through)
    end_day = optional_day_key(enrolment_end)
    old_ids = [t.template_id for t in old_templates]
    new_ids = [t.template_id for t in new_templates]

    def empty(entitlement: int = 0, per_week: int = 0) -> TemplateChangeResult:
        return TemplateChangeResult(
            new_paid_through=None,
            debug=TemplateChangeDebugInfo(
                start_day=start_day,
                old_paid_through=old_day,
                new_paid_through=None,
                old_template_ids=old_ids,
                new_template_ids=new_ids,
                entitlement_sessions=entitlement,
                sessions_per_week=per_week,
            ),
        )

    if old_day is None or not old_templates or not new_templates:
        return empty()

    if compare(old_day, start_day) < 0:
        return empty()

    entitlement = count_scheduled_sessions(start_day, old_day, old_templates, old_holidays)
    sessions_per_week = sum(1 for t in new_templates if t.day_of_week is not None)

    if entitlement <= 0 or sessions_per_week <= 0:
        return empty(entitlement, sessions_per_week)

    # Same walk bound as recompute
    horizon = resolve_horizon_day(start_day, end_day, entitlement)

    new_day = compute_coverage_end_day(
        start_day,
        new_templates,
        new_holidays,
        entitlement,
        end_day=end_day,
        horizon_day=horizon,
    )

    logger.debug(
        "Mapped paid-through across template change",
        extra={
            "start_day": start_day,
            "old_paid_through": old_day,
            "new_paid_through": new_day,
            "entitlement_sessions": entitlement,
            "sessions_per_week": sessions_per_week,
            "horizon_day": horizon,
        }
    )

    return TemplateChangeResult(
        new_paid_through=new_day,
        debug=TemplateChangeDebugInfo(
            start_day=start_day,
            old_paid_through=old_day,
            new_paid_through=new_day,
            old_template_ids=old_ids,
            new_template_ids=new_ids,
            entitlement_sessions=entitlement,
            sessions_per_week=sessions_per_week,
            horizon_day=horizon,
            old_holiday_count=len(old_holidays),
            new_holiday_count=len(new_holidays),
        ),
    )
