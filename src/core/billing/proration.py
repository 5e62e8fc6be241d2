"""
Price-based coverage conversions.

Three small calculators live here:

- Plan-change proration: a family moving to a cheaper or dearer plan
  keeps the *value* of their remaining coverage, so the remaining days
  stretch or shrink by the ratio of per-lesson prices.
- Weekly holiday extensions: weekly plans buy a fixed number of lessons
  per week, so lessons lost to holidays are paid back in whole weeks.
- Block pricing: what a block of classes costs, including staff-chosen
  longer blocks.

All amounts are integer cents. Unit prices may be fractional.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Sequence

from .dates import DateLike, DayKey, days_between, optional_day_key, to_date
from .models import AssignedTemplate, BillingType, EnrolmentPlan
from .schedule import next_scheduled_day

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_LENGTH = 1


def _positive_or_one(value: Optional[int]) -> int:
    return value if value and value > 0 else 1


def get_plan_unit_price_cents(plan: EnrolmentPlan) -> float:
    """
    Price of one lesson under a plan.

    Weekly plans divide by lessons per week; per-class and block plans by
    the block size. A missing or non-positive divisor counts as 1.
    """
    if plan.billing_type == BillingType.PER_WEEK:
        return plan.price_cents / _positive_or_one(plan.sessions_per_week)
    return plan.price_cents / _positive_or_one(plan.block_class_count)


def compute_prorated_paid_through(
    effective_date: DateLike,
    old_paid_through: Optional[DateLike],
    old_plan: EnrolmentPlan,
    new_plan: EnrolmentPlan,
    destination_templates: Sequence[AssignedTemplate] = (),
) -> Optional[DayKey]:
    """
    Convert remaining coverage into the equivalent date under a new plan.

    remaining days * (old unit price / new unit price) are added to the
    effective date; fractional days are truncated. Per-class destinations
    then snap forward to the next actual class day so coverage always ends
    on a lesson. Weekly destinations keep the raw date.
    """
    old_day = optional_day_key(old_paid_through)
    if old_day is None:
        return None

    effective = to_date(effective_date)
    remaining_days = max(0, days_between(effective, old_day))
    if remaining_days <= 0:
        return old_day

    old_unit = get_plan_unit_price_cents(old_plan)
    new_unit = get_plan_unit_price_cents(new_plan)
    if old_unit <= 0 or new_unit <= 0:
        logger.info(
            "Skipping proration for non-positive unit price",
            extra={"old_unit_price": old_unit, "new_unit_price": new_unit}
        )
        return old_day

    ratio = old_unit / new_unit
    prorated = (effective + timedelta(days=int(remaining_days * ratio))).isoformat()

    if new_plan.billing_type == BillingType.PER_CLASS and destination_templates:
        snapped = next_scheduled_day(prorated, destination_templates)
        return snapped or prorated

    return prorated


def compute_weekly_holiday_extension_weeks(
    missed_sessions: int,
    sessions_per_week: Optional[int],
) -> int:
    """
    Whole weeks to add to a weekly enrolment for lessons lost to holidays.

    Always rounds up: one missed lesson on a twice-weekly plan is still a
    full extra week, because weekly billing never sells part weeks.
    """
    if missed_sessions < 0:
        raise ValueError("missed_sessions cannot be negative")
    if missed_sessions == 0:
        return 0
    per_week = _positive_or_one(sessions_per_week)
    return -(-missed_sessions // per_week)


# ---------------------------------------------------------------------------
# Block pricing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BlockPricing:
    total_cents: int
    per_class_price_cents: int
    effective_block_length: int


def resolve_block_length(block_class_count: Optional[int]) -> int:
    return block_class_count if block_class_count and block_class_count > 0 else DEFAULT_BLOCK_LENGTH


def calculate_block_pricing(
    price_cents: int,
    block_length: Optional[int],
    custom_block_length: Optional[int] = None,
) -> BlockPricing:
    """
    Price a block purchase, optionally extended to a longer custom block.

    The per-class price always comes from the plan's own block; a custom
    block buys more classes at that same per-class price and may never be
    shorter than the plan block.
    """
    plan_length = resolve_block_length(block_length)

    if custom_block_length is not None:
        if isinstance(custom_block_length, bool) or not isinstance(custom_block_length, int):
            raise ValueError("Custom block length must be an integer.")
        if custom_block_length < plan_length:
            raise ValueError("Custom block length must be at least the plan block length.")

    # Round half up, matching how prices are shown to families
    per_class = (2 * price_cents + plan_length) // (2 * plan_length)
    effective = custom_block_length if custom_block_length is not None else plan_length
    total = price_cents if effective == plan_length else per_class * effective

    return BlockPricing(
        total_cents=total,
        per_class_price_cents=per_class,
        effective_block_length=effective,
    )
