"""
Enrolment billing coverage.

Turns "paid for N lessons" into an exact paid-through day, keeps that day
correct as schedules and holidays change, and converts coverage between
plans.
"""

from .coverage import HORIZON_FALLBACK_DAYS, compute_coverage_end_day, resolve_horizon_day
from .dates import (
    REFERENCE_TIMEZONE,
    DayKey,
    add_days,
    compare,
    days_between,
    start_of_day,
    to_day_key,
    weekday_index,
)
from .errors import (
    CoverageError,
    EnrolmentNotFoundError,
    InvalidDateError,
    RecomputeBatchError,
)
from .models import (
    AssignedTemplate,
    BillingType,
    CoverageAudit,
    CoverageReason,
    EnrolmentCoverageState,
    EnrolmentPlan,
    EnrolmentStatus,
    HolidayRange,
)
from .proration import (
    BlockPricing,
    calculate_block_pricing,
    compute_prorated_paid_through,
    compute_weekly_holiday_extension_weeks,
    get_plan_unit_price_cents,
)
from .recompute import CoverageRecomputer, CoverageRepository, recompute_enrolment_coverage
from .schedule import count_holiday_occurrences, count_scheduled_sessions, next_scheduled_day
from .template_change import TemplateChangeResult, compute_paid_through_after_template_change

__all__ = [
    "HORIZON_FALLBACK_DAYS",
    "REFERENCE_TIMEZONE",
    "AssignedTemplate",
    "BillingType",
    "BlockPricing",
    "CoverageAudit",
    "CoverageError",
    "CoverageReason",
    "CoverageRecomputer",
    "CoverageRepository",
    "DayKey",
    "EnrolmentCoverageState",
    "EnrolmentNotFoundError",
    "EnrolmentPlan",
    "EnrolmentStatus",
    "HolidayRange",
    "InvalidDateError",
    "RecomputeBatchError",
    "TemplateChangeResult",
    "add_days",
    "calculate_block_pricing",
    "compare",
    "compute_coverage_end_day",
    "compute_paid_through_after_template_change",
    "compute_prorated_paid_through",
    "compute_weekly_holiday_extension_weeks",
    "count_holiday_occurrences",
    "count_scheduled_sessions",
    "days_between",
    "get_plan_unit_price_cents",
    "next_scheduled_day",
    "recompute_enrolment_coverage",
    "resolve_horizon_day",
    "start_of_day",
    "to_day_key",
    "weekday_index",
]
