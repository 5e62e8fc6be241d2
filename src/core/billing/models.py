"""
Domain models for enrolment billing coverage.

These are plain values handed over by the persistence layer. Dates are
stored as DayKeys (see dates.py) so that nothing downstream has to think
about timezones again.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from .dates import DateLike, DayKey, to_day_key


class BillingType(Enum):
    """How a plan defines one unit of coverage."""
    PER_WEEK = "PER_WEEK"
    PER_CLASS = "PER_CLASS"
    BLOCK = "BLOCK"


class EnrolmentStatus(Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    CHANGEOVER = "CHANGEOVER"


class CoverageReason(Enum):
    """
    Why a coverage recompute ran.

    Informational only: the algorithm behaves identically for every
    reason. The audit log keeps them so staff can tell a holiday shift
    from a class move when a family asks why their date changed.
    """
    HOLIDAY_ADDED = "HOLIDAY_ADDED"
    HOLIDAY_REMOVED = "HOLIDAY_REMOVED"
    HOLIDAY_UPDATED = "HOLIDAY_UPDATED"
    CLASS_CHANGED = "CLASS_CHANGED"
    PLAN_CHANGED = "PLAN_CHANGED"
    INVOICE_APPLIED = "INVOICE_APPLIED"
    PAIDTHROUGH_MANUAL_EDIT = "PAIDTHROUGH_MANUAL_EDIT"


@dataclass(frozen=True)
class AssignedTemplate:
    """
    A recurring weekly class slot, reduced to what billing needs.

    day_of_week is Monday=0 ... Sunday=6. A slot without a weekday is
    valid and simply never schedules anything.
    """
    day_of_week: Optional[int]
    template_id: Optional[str] = None


@dataclass(frozen=True)
class HolidayRange:
    """An inclusive range of closed days."""
    start_date: DayKey
    end_date: DayKey

    @classmethod
    def of(cls, start: DateLike, end: Optional[DateLike] = None) -> "HolidayRange":
        """Build a range from any date-like bounds; a single day if end is omitted."""
        start_key = to_day_key(start)
        end_key = to_day_key(end) if end is not None else start_key
        return cls(start_date=start_key, end_date=end_key)


@dataclass(frozen=True)
class EnrolmentPlan:
    """Pricing for an enrolment. Amounts are integer cents."""
    billing_type: BillingType
    price_cents: int
    sessions_per_week: Optional[int] = None
    block_class_count: Optional[int] = None
    duration_weeks: Optional[int] = None

    @property
    def is_weekly(self) -> bool:
        return self.billing_type == BillingType.PER_WEEK


@dataclass
class EnrolmentCoverageState:
    """
    The persisted coverage fields of one enrolment.

    paid_through_date is authoritative and may be edited by staff.
    paid_through_date_computed is the last value the system derived and is
    the preferred basis for re-deriving entitlement.
    """
    enrolment_id: str
    status: EnrolmentStatus
    start_date: DayKey
    end_date: Optional[DayKey] = None
    paid_through_date: Optional[DayKey] = None
    paid_through_date_computed: Optional[DayKey] = None
    plan: Optional[EnrolmentPlan] = None
    assigned_templates: list[AssignedTemplate] = field(default_factory=list)
    legacy_template: Optional[AssignedTemplate] = None

    @property
    def is_active(self) -> bool:
        return self.status == EnrolmentStatus.ACTIVE

    def resolve_templates(self) -> list[AssignedTemplate]:
        """Multi-class assignments win; otherwise fall back to the single legacy slot."""
        if self.assigned_templates:
            return list(self.assigned_templates)
        return [self.legacy_template] if self.legacy_template else []

    @property
    def basis_paid_through(self) -> Optional[DayKey]:
        return self.paid_through_date_computed or self.paid_through_date


@dataclass(frozen=True)
class CoverageAudit:
    """One row of the append-only coverage trigger history."""
    enrolment_id: str
    reason: CoverageReason
    previous_paid_through: Optional[DayKey]
    next_paid_through: Optional[DayKey]
    actor_id: Optional[str] = None
    audit_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
