"""
Coverage recompute orchestration.

Whenever something under an active weekly enrolment changes (a holiday
is added, the class moves, an invoice is applied) the paid-through date
is re-derived rather than nudged:

1. Count how many lessons the current basis date represents.
2. Walk that many lessons forward again with today's schedule and
   holidays.

Re-deriving keeps the date idempotent: running recompute twice with
nothing changed in between produces the same date, and an audit row for
each pass.

The lesson count is taken from paid_through_date_computed, which recompute
never moves. When it is missing, the first pass fills it from
paid_through_date so that the next pass counts from the same day.

The orchestrator owns no storage. It talks to a CoverageRepository, so
the same logic runs against Snowflake in production and the in-memory
mock in tests.
"""

import logging
from typing import ContextManager, Iterable, Optional, Protocol, Sequence

from .coverage import HORIZON_FALLBACK_DAYS, compute_coverage_end_day, resolve_horizon_day
from .dates import DateLike, DayKey, compare, optional_day_key, to_day_key
from .errors import EnrolmentNotFoundError, RecomputeBatchError
from .models import (
    CoverageAudit,
    CoverageReason,
    EnrolmentCoverageState,
    HolidayRange,
)
from .schedule import count_scheduled_sessions, holiday_weekdays

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class CoverageRepository(Protocol):
    """
    Persistence needed by the recompute orchestrator.

    transaction() must give all-or-nothing semantics: everything written
    inside the block commits together or not at all, and the exception
    that aborted it propagates.

    Once paid_through_date_computed is set, recompute counts entitlement
    from it and ignores paid_through_date. Anything outside this module
    that extends coverage (applying an invoice, say) must write both
    fields, or the next recompute puts the date back.
    """

    def transaction(self) -> ContextManager[None]: ...

    def get_enrolment(self, enrolment_id: str) -> Optional[EnrolmentCoverageState]: ...

    def list_holidays_overlapping(self, start_day: DayKey, end_day: DayKey) -> list[HolidayRange]: ...

    def update_paid_through(
        self,
        enrolment_id: str,
        paid_through: Optional[DayKey],
        computed_basis: Optional[DayKey] = None,
    ) -> None:
        """
        Persist a derived date. computed_basis, when given, also becomes
        paid_through_date_computed, which later recomputes count from.
        """
        ...

    def set_paid_through_manual(self, enrolment_id: str, paid_through: Optional[DayKey]) -> None: ...

    def append_audit(self, audit: CoverageAudit) -> None: ...

    def find_active_enrolments_for_weekdays(
        self,
        weekdays: Iterable[int],
        window_start: DayKey,
        window_end: DayKey,
    ) -> list[str]: ...


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class CoverageRecomputer:
    """
    Re-derives and persists enrolment paid-through dates.

    Each enrolment is recomputed in its own transaction. Different
    enrolments are independent, so a fan-out may process them in any
    order.
    """

    def __init__(
        self,
        repository: CoverageRepository,
        horizon_fallback_days: int = HORIZON_FALLBACK_DAYS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._repository = repository
        self._horizon_fallback_days = horizon_fallback_days
        self._batch_size = max(1, batch_size)

    def recompute(
        self,
        enrolment_id: str,
        reason: CoverageReason,
        actor_id: Optional[str] = None,
    ) -> Optional[DayKey]:
        """
        Recompute one enrolment's paid-through date.

        Returns the new date, or None when the enrolment isn't eligible
        (inactive, not weekly-billed, no schedule, no basis date, or a
        basis before the start). Ineligible enrolments are left untouched
        and get no audit row. Storage errors propagate after rollback.
        """
        with self._repository.transaction():
            return self._recompute_locked(enrolment_id, reason, actor_id)

    def _recompute_locked(
        self,
        enrolment_id: str,
        reason: CoverageReason,
        actor_id: Optional[str],
    ) -> Optional[DayKey]:
        enrolment = self._repository.get_enrolment(enrolment_id)
        skip = _skip_reason(enrolment)
        if skip:
            logger.info(
                "Skipping coverage recompute",
                extra={"enrolment_id": enrolment_id, "reason": reason.value, "skip": skip}
            )
            return None

        templates = enrolment.resolve_templates()
        start_day = enrolment.start_date
        basis_day = enrolment.basis_paid_through

        # Entitlement is counted against the schedule as it is now
        entitlement = count_scheduled_sessions(start_day, basis_day, templates)

        horizon_day = resolve_horizon_day(
            start_day,
            enrolment.end_date,
            entitlement,
            fallback_days=self._horizon_fallback_days,
        )
        holidays = self._repository.list_holidays_overlapping(start_day, horizon_day)

        next_paid_through = compute_coverage_end_day(
            start_day,
            templates,
            holidays,
            entitlement,
            end_day=enrolment.end_date,
            horizon_day=horizon_day,
        )
        previous_paid_through = enrolment.paid_through_date

        # Anchor the basis on first pass so later passes count the same entitlement
        computed_basis = None if enrolment.paid_through_date_computed else basis_day
        self._repository.update_paid_through(
            enrolment.enrolment_id,
            next_paid_through,
            computed_basis=computed_basis,
        )
        self._repository.append_audit(CoverageAudit(
            enrolment_id=enrolment.enrolment_id,
            reason=reason,
            previous_paid_through=previous_paid_through,
            next_paid_through=next_paid_through,
            actor_id=actor_id,
        ))

        logger.info(
            "Coverage recomputed",
            extra={
                "enrolment_id": enrolment.enrolment_id,
                "reason": reason.value,
                "entitlement_sessions": entitlement,
                "holiday_count": len(holidays),
                "previous_paid_through": previous_paid_through,
                "next_paid_through": next_paid_through,
            }
        )
        return next_paid_through

    def recompute_for_holidays(
        self,
        ranges: Sequence[HolidayRange],
        reason: CoverageReason = CoverageReason.HOLIDAY_UPDATED,
        actor_id: Optional[str] = None,
    ) -> dict[str, Optional[DayKey]]:
        """
        Recompute every active enrolment whose schedule a holiday edit touches.

        Candidates are enrolments with a class on one of the weekdays the
        ranges cover and a life-span overlapping the ranges. Each runs in
        its own transaction; one failure doesn't stop the rest. If any
        failed, RecomputeBatchError is raised once all have been tried.
        """
        if not ranges:
            return {}

        weekdays = holiday_weekdays(ranges)
        if not weekdays:
            return {}

        window_start = min(to_day_key(r.start_date) for r in ranges)
        window_end = max(to_day_key(r.end_date) for r in ranges)

        enrolment_ids = self._repository.find_active_enrolments_for_weekdays(
            sorted(weekdays), window_start, window_end
        )

        logger.info(
            "Holiday fan-out recompute",
            extra={
                "reason": reason.value,
                "window_start": window_start,
                "window_end": window_end,
                "weekdays": sorted(weekdays),
                "enrolment_count": len(enrolment_ids),
            }
        )

        results: dict[str, Optional[DayKey]] = {}
        failures: dict[str, Exception] = {}

        for offset in range(0, len(enrolment_ids), self._batch_size):
            batch = enrolment_ids[offset:offset + self._batch_size]
            for enrolment_id in batch:
                try:
                    results[enrolment_id] = self.recompute(enrolment_id, reason, actor_id)
                except Exception as e:
                    logger.error(
                        "Coverage recompute failed",
                        extra={"enrolment_id": enrolment_id, "error": str(e)},
                        exc_info=e,
                    )
                    failures[enrolment_id] = e
            logger.debug(
                "Holiday fan-out batch complete",
                extra={"offset": offset, "size": len(batch)}
            )

        if failures:
            raise RecomputeBatchError(failures, results)

        return results

    def set_paid_through_manually(
        self,
        enrolment_id: str,
        paid_through: Optional[DateLike],
        actor_id: Optional[str] = None,
    ) -> Optional[DayKey]:
        """
        Staff override of the paid-through date.

        The override becomes the computed basis too, so later recomputes
        start from what staff entered rather than reverting it.
        """
        next_paid_through = optional_day_key(paid_through)

        with self._repository.transaction():
            enrolment = self._repository.get_enrolment(enrolment_id)
            if enrolment is None:
                raise EnrolmentNotFoundError(f"Enrolment {enrolment_id} not found")

            self._repository.set_paid_through_manual(enrolment_id, next_paid_through)
            self._repository.append_audit(CoverageAudit(
                enrolment_id=enrolment_id,
                reason=CoverageReason.PAIDTHROUGH_MANUAL_EDIT,
                previous_paid_through=enrolment.paid_through_date,
                next_paid_through=next_paid_through,
                actor_id=actor_id,
            ))

        logger.info(
            "Paid-through date set manually",
            extra={
                "enrolment_id": enrolment_id,
                "previous_paid_through": enrolment.paid_through_date,
                "next_paid_through": next_paid_through,
                "actor_id": actor_id,
            }
        )
        return next_paid_through


def _skip_reason(enrolment: Optional[EnrolmentCoverageState]) -> Optional[str]:
    if enrolment is None:
        return "not_found"
    if not enrolment.is_active:
        return "inactive"
    if enrolment.plan is None or not enrolment.plan.is_weekly:
        return "not_weekly"
    if not any(t.day_of_week is not None for t in enrolment.resolve_templates()):
        return "no_weekdays"
    basis = enrolment.basis_paid_through
    if basis is None:
        return "no_basis"
    if compare(basis, enrolment.start_date) < 0:
        return "basis_before_start"
    return None


def recompute_enrolment_coverage(
    repository: CoverageRepository,
    enrolment_id: str,
    reason: CoverageReason,
    actor_id: Optional[str] = None,
) -> Optional[DayKey]:
    """Convenience wrapper for a single recompute with default settings."""
    return CoverageRecomputer(repository).recompute(enrolment_id, reason, actor_id)
