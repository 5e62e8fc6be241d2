"""
Billing calculator endpoints.

Stateless wrappers around the pure coverage functions. Nothing here reads
or writes the database; callers send the schedule, holidays and plans
they want evaluated. Useful for previews ("what would the paid-through
date be if we moved this student to Tuesday?") before anything is saved.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field, field_validator

from ...core.billing.coverage import compute_coverage_end_day
from ...core.billing.dates import optional_day_key, to_day_key
from ...core.billing.models import AssignedTemplate, BillingType, EnrolmentPlan
from ...core.billing.proration import (
    calculate_block_pricing,
    compute_prorated_paid_through,
    compute_weekly_holiday_extension_weeks,
)
from ...core.billing.schedule import count_holiday_occurrences, count_scheduled_sessions
from ...core.billing.template_change import compute_paid_through_after_template_change
from ..dependencies import AuthenticatedUser
from .coverage import HolidayRangeModel

logger = logging.getLogger(__name__)

router = APIRouter()

# A century of weekly lessons
MAX_ENTITLEMENT_SESSIONS = 5200


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class TemplateModel(BaseModel):
    """A weekly class slot. day_of_week is Monday=0 ... Sunday=6."""
    day_of_week: Optional[int] = Field(None, description="Monday=0 ... Sunday=6")
    template_id: Optional[str] = None

    def to_domain(self) -> AssignedTemplate:
        return AssignedTemplate(day_of_week=self.day_of_week, template_id=self.template_id)


class PlanModel(BaseModel):
    billing_type: BillingType
    price_cents: int = Field(ge=0)
    sessions_per_week: Optional[int] = None
    block_class_count: Optional[int] = None
    duration_weeks: Optional[int] = None

    def to_domain(self) -> EnrolmentPlan:
        return EnrolmentPlan(
            billing_type=self.billing_type,
            price_cents=self.price_cents,
            sessions_per_week=self.sessions_per_week,
            block_class_count=self.block_class_count,
            duration_weeks=self.duration_weeks,
        )


class CoverageEndRequest(BaseModel):
    start_date: str
    templates: list[TemplateModel]
    holidays: list[HolidayRangeModel] = Field(default_factory=list)
    entitlement_sessions: int = Field(
        le=MAX_ENTITLEMENT_SESSIONS,
        description="Sessions paid for; zero or less means nothing is covered"
    )
    end_date: Optional[str] = None
    horizon_date: Optional[str] = None

    @field_validator("start_date")
    @classmethod
    def normalize_start(cls, value: str) -> str:
        return to_day_key(value)

    @field_validator("end_date", "horizon_date")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return optional_day_key(value)


class PaidThroughResponse(BaseModel):
    paid_through_date: Optional[str] = Field(description="DayKey, or null when nothing is covered")


class ScheduledCountRequest(BaseModel):
    start_date: str
    end_date: str
    templates: list[TemplateModel]
    holidays: list[HolidayRangeModel] = Field(default_factory=list)
    day_of_week: Optional[int] = Field(
        None,
        description="When set, count only holiday-cancelled occurrences of this weekday"
    )

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_day(cls, value: str) -> str:
        return to_day_key(value)


class ScheduledCountResponse(BaseModel):
    scheduled_sessions: int
    holiday_occurrences: Optional[int] = None


class TemplateChangeRequest(BaseModel):
    enrolment_start: str
    old_paid_through: Optional[str]
    old_templates: list[TemplateModel]
    new_templates: list[TemplateModel]
    old_holidays: list[HolidayRangeModel] = Field(default_factory=list)
    new_holidays: list[HolidayRangeModel] = Field(default_factory=list)
    enrolment_end: Optional[str] = None

    @field_validator("enrolment_start")
    @classmethod
    def normalize_start(cls, value: str) -> str:
        return to_day_key(value)

    @field_validator("old_paid_through", "enrolment_end")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return optional_day_key(value)


class TemplateChangeResponse(BaseModel):
    new_paid_through: Optional[str]
    entitlement_sessions: int
    sessions_per_week: int
    horizon_date: Optional[str]


class ProrationRequest(BaseModel):
    effective_date: str
    old_paid_through: Optional[str]
    old_plan: PlanModel
    new_plan: PlanModel
    destination_templates: list[TemplateModel] = Field(default_factory=list)

    @field_validator("effective_date")
    @classmethod
    def normalize_effective(cls, value: str) -> str:
        return to_day_key(value)

    @field_validator("old_paid_through")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return optional_day_key(value)


class HolidayExtensionResponse(BaseModel):
    missed_sessions: int
    sessions_per_week: Optional[int]
    extension_weeks: int


class BlockPricingRequest(BaseModel):
    price_cents: int = Field(ge=0)
    block_length: Optional[int] = None
    custom_block_length: Optional[int] = None


class BlockPricingResponse(BaseModel):
    total_cents: int
    per_class_price_cents: int
    effective_block_length: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/coverage-end",
    response_model=PaidThroughResponse,
    status_code=status.HTTP_200_OK,
    summary="Walk entitlement to a paid-through date",
)
async def coverage_end(
    request: CoverageEndRequest,
    api_key: AuthenticatedUser = None,
) -> PaidThroughResponse:
    paid_through = compute_coverage_end_day(
        request.start_date,
        [t.to_domain() for t in request.templates],
        [h.to_domain() for h in request.holidays],
        request.entitlement_sessions,
        end_day=request.end_date,
        horizon_day=request.horizon_date,
    )
    return PaidThroughResponse(paid_through_date=paid_through)


@router.post(
    "/scheduled-count",
    response_model=ScheduledCountResponse,
    status_code=status.HTTP_200_OK,
    summary="Count scheduled sessions in a date range",
)
async def scheduled_count(
    request: ScheduledCountRequest,
    api_key: AuthenticatedUser = None,
) -> ScheduledCountResponse:
    holidays = [h.to_domain() for h in request.holidays]

    scheduled = count_scheduled_sessions(
        request.start_date,
        request.end_date,
        [t.to_domain() for t in request.templates],
        holidays,
    )

    occurrences = None
    if request.day_of_week is not None:
        occurrences = count_holiday_occurrences(
            request.start_date,
            request.end_date,
            request.day_of_week,
            holidays,
        )

    return ScheduledCountResponse(
        scheduled_sessions=scheduled,
        holiday_occurrences=occurrences,
    )


@router.post(
    "/template-change",
    response_model=TemplateChangeResponse,
    status_code=status.HTTP_200_OK,
    summary="Map a paid-through date across a class change",
)
async def template_change(
    request: TemplateChangeRequest,
    api_key: AuthenticatedUser = None,
) -> TemplateChangeResponse:
    result = compute_paid_through_after_template_change(
        enrolment_start=request.enrolment_start,
        old_paid_through=request.old_paid_through,
        old_templates=[t.to_domain() for t in request.old_templates],
        new_templates=[t.to_domain() for t in request.new_templates],
        old_holidays=[h.to_domain() for h in request.old_holidays],
        new_holidays=[h.to_domain() for h in request.new_holidays],
        enrolment_end=request.enrolment_end,
    )

    logger.info(
        "Template change preview",
        extra={
            "old_paid_through": request.old_paid_through,
            "new_paid_through": result.new_paid_through,
            "entitlement_sessions": result.debug.entitlement_sessions,
        }
    )

    return TemplateChangeResponse(
        new_paid_through=result.new_paid_through,
        entitlement_sessions=result.debug.entitlement_sessions,
        sessions_per_week=result.debug.sessions_per_week,
        horizon_date=result.debug.horizon_day,
    )


@router.post(
    "/proration",
    response_model=PaidThroughResponse,
    status_code=status.HTTP_200_OK,
    summary="Prorate coverage across a plan change",
)
async def proration(
    request: ProrationRequest,
    api_key: AuthenticatedUser = None,
) -> PaidThroughResponse:
    paid_through = compute_prorated_paid_through(
        request.effective_date,
        request.old_paid_through,
        request.old_plan.to_domain(),
        request.new_plan.to_domain(),
        destination_templates=[t.to_domain() for t in request.destination_templates],
    )
    return PaidThroughResponse(paid_through_date=paid_through)


@router.get(
    "/holiday-extension",
    response_model=HolidayExtensionResponse,
    status_code=status.HTTP_200_OK,
    summary="Weeks to extend a weekly enrolment for missed sessions",
)
async def holiday_extension(
    missed_sessions: int = Query(ge=0),
    sessions_per_week: Optional[int] = Query(None),
    api_key: AuthenticatedUser = None,
) -> HolidayExtensionResponse:
    weeks = compute_weekly_holiday_extension_weeks(missed_sessions, sessions_per_week)
    return HolidayExtensionResponse(
        missed_sessions=missed_sessions,
        sessions_per_week=sessions_per_week,
        extension_weeks=weeks,
    )


@router.post(
    "/block-pricing",
    response_model=BlockPricingResponse,
    status_code=status.HTTP_200_OK,
    summary="Price a block purchase",
)
async def block_pricing(
    request: BlockPricingRequest,
    api_key: AuthenticatedUser = None,
) -> BlockPricingResponse:
    """Custom block lengths shorter than the plan block are rejected with 422."""
    pricing = calculate_block_pricing(
        request.price_cents,
        request.block_length,
        custom_block_length=request.custom_block_length,
    )
    return BlockPricingResponse(
        total_cents=pricing.total_cents,
        per_class_price_cents=pricing.per_class_price_cents,
        effective_block_length=pricing.effective_block_length,
    )
