"""
Enrolment coverage endpoints.

These are the write side of the billing engine: they re-derive and
persist paid-through dates and expose the audit trail.

- POST /enrolments/{id}/recompute: re-derive one enrolment
- PUT /enrolments/{id}/paid-through: staff override
- GET /enrolments/{id}/audits: coverage trigger history
- POST /holidays/recompute: fan out after a holiday edit
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from ...core.billing.dates import optional_day_key, to_day_key
from ...core.billing.errors import RecomputeBatchError
from ...core.billing.models import CoverageReason, HolidayRange
from ..dependencies import (
    ActorId,
    AuthenticatedUser,
    CoverageRecomputerDep,
    CoverageRepositoryDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class RecomputeRequest(BaseModel):
    """Request to re-derive one enrolment's paid-through date."""
    reason: CoverageReason = Field(
        default=CoverageReason.INVOICE_APPLIED,
        description="Why the recompute is running (recorded on the audit row)"
    )


class RecomputeResponse(BaseModel):
    enrolment_id: str
    recomputed: bool = Field(description="False when the enrolment was not eligible and left untouched")
    paid_through_date: Optional[str] = Field(None, description="New paid-through DayKey")


class ManualPaidThroughRequest(BaseModel):
    """Staff-entered paid-through date. Null clears it."""
    paid_through_date: Optional[str] = Field(description="Date or instant; stored as a DayKey")

    @field_validator("paid_through_date")
    @classmethod
    def normalize_day(cls, value: Optional[str]) -> Optional[str]:
        return optional_day_key(value)


class AuditItem(BaseModel):
    audit_id: str
    reason: str
    previous_paid_through_date: Optional[str]
    next_paid_through_date: Optional[str]
    actor_id: Optional[str]
    created_at: str


class AuditListResponse(BaseModel):
    enrolment_id: str
    audits: list[AuditItem]


class HolidayRangeModel(BaseModel):
    """Inclusive holiday range. end_date defaults to start_date."""
    start_date: str
    end_date: Optional[str] = None

    @field_validator("start_date")
    @classmethod
    def normalize_start(cls, value: str) -> str:
        return to_day_key(value)

    @field_validator("end_date")
    @classmethod
    def normalize_end(cls, value: Optional[str]) -> Optional[str]:
        return optional_day_key(value)

    def to_domain(self) -> HolidayRange:
        return HolidayRange.of(self.start_date, self.end_date)


class HolidayRecomputeRequest(BaseModel):
    ranges: list[HolidayRangeModel] = Field(min_length=1)
    reason: CoverageReason = CoverageReason.HOLIDAY_UPDATED


class HolidayRecomputeResponse(BaseModel):
    enrolment_count: int
    paid_through_dates: dict[str, Optional[str]]
    failed_enrolment_ids: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/enrolments/{enrolment_id}/recompute",
    response_model=RecomputeResponse,
    status_code=status.HTTP_200_OK,
    summary="Recompute paid-through date",
    description="Re-derive an enrolment's paid-through date from its schedule and holidays",
)
async def recompute_enrolment(
    enrolment_id: str,
    request: RecomputeRequest,
    actor_id: ActorId = None,
    api_key: AuthenticatedUser = None,
    recomputer: CoverageRecomputerDep = None,
) -> RecomputeResponse:
    """
    Recompute one enrolment inside a single transaction.

    Ineligible enrolments (inactive, not weekly, no schedule, no basis
    date) return recomputed=false rather than an error. Storage failures
    roll back and surface as 500.
    """
    logger.info(
        "Recompute requested",
        extra={"enrolment_id": enrolment_id, "reason": request.reason.value, "actor_id": actor_id}
    )

    paid_through = recomputer.recompute(enrolment_id, request.reason, actor_id)

    return RecomputeResponse(
        enrolment_id=enrolment_id,
        recomputed=paid_through is not None,
        paid_through_date=paid_through,
    )


@router.put(
    "/enrolments/{enrolment_id}/paid-through",
    response_model=RecomputeResponse,
    status_code=status.HTTP_200_OK,
    summary="Set paid-through date manually",
)
async def set_paid_through(
    enrolment_id: str,
    request: ManualPaidThroughRequest,
    actor_id: ActorId = None,
    api_key: AuthenticatedUser = None,
    recomputer: CoverageRecomputerDep = None,
) -> RecomputeResponse:
    """
    Staff override. The value also becomes the computed basis, so later
    recomputes start from it.
    """
    paid_through = recomputer.set_paid_through_manually(
        enrolment_id,
        request.paid_through_date,
        actor_id=actor_id,
    )

    return RecomputeResponse(
        enrolment_id=enrolment_id,
        recomputed=True,
        paid_through_date=paid_through,
    )


@router.get(
    "/enrolments/{enrolment_id}/audits",
    response_model=AuditListResponse,
    status_code=status.HTTP_200_OK,
    summary="List coverage audits",
)
async def list_audits(
    enrolment_id: str,
    limit: int = 100,
    api_key: AuthenticatedUser = None,
    repository: CoverageRepositoryDep = None,
) -> AuditListResponse:
    if repository.get_enrolment(enrolment_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Enrolment not found"
        )

    audits = repository.list_audits(enrolment_id, limit=limit)

    return AuditListResponse(
        enrolment_id=enrolment_id,
        audits=[
            AuditItem(
                audit_id=audit.audit_id,
                reason=audit.reason.value,
                previous_paid_through_date=audit.previous_paid_through,
                next_paid_through_date=audit.next_paid_through,
                actor_id=audit.actor_id,
                created_at=audit.created_at.isoformat(),
            )
            for audit in audits
        ],
    )


@router.post(
    "/holidays/recompute",
    response_model=HolidayRecomputeResponse,
    status_code=status.HTTP_200_OK,
    summary="Recompute enrolments affected by a holiday edit",
    description="Call after holidays are added, removed or moved, with every range the edit touched",
)
async def recompute_for_holidays(
    request: HolidayRecomputeRequest,
    actor_id: ActorId = None,
    api_key: AuthenticatedUser = None,
    recomputer: CoverageRecomputerDep = None,
) -> HolidayRecomputeResponse:
    """
    Fan out recompute to every active enrolment the ranges touch.

    Each enrolment commits on its own. If some fail, the rest are still
    saved and the failed ids come back in failed_enrolment_ids.
    """
    ranges = [holiday.to_domain() for holiday in request.ranges]

    try:
        results = recomputer.recompute_for_holidays(ranges, request.reason, actor_id)
        failed: list[str] = []
    except RecomputeBatchError as e:
        logger.error(
            "Holiday fan-out partially failed",
            extra={"failed": sorted(e.failures), "succeeded": len(e.results)}
        )
        results = e.results
        failed = sorted(e.failures)

    return HolidayRecomputeResponse(
        enrolment_count=len(results) + len(failed),
        paid_through_dates=results,
        failed_enrolment_ids=failed,
    )
