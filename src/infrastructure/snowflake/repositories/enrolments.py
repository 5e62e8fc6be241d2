"""
Snowflake repository for enrolment billing coverage.

This module implements the repository pattern for coverage data access.
The repository:
1. Translates between domain models and database rows
2. Encapsulates all SQL queries
3. Owns transaction boundaries (BEGIN / COMMIT / ROLLBACK)

The recompute orchestrator never writes SQL directly. It asks for an
enrolment, the holidays in a window, and to persist a date and an audit
row, all inside one transaction.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Iterable, Optional, Protocol

from src.core.billing.dates import DayKey, optional_day_key
from src.core.billing.models import (
    AssignedTemplate,
    BillingType,
    CoverageAudit,
    CoverageReason,
    EnrolmentCoverageState,
    EnrolmentPlan,
    EnrolmentStatus,
    HolidayRange,
)

logger = logging.getLogger(__name__)


class SnowflakeConnection(Protocol):
    """
    Protocol for Snowflake connections.

    Using a protocol means tests can provide a mock without
    importing the actual snowflake-connector-python.
    """

    def cursor(self): ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


@dataclass
class SnowflakeConfig:
    """Configuration for Snowflake connection."""
    account: str
    user: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_base64: Optional[str] = None
    database: str = "SWIMSCHOOL"
    schema: str = "BILLING"
    warehouse: str = "COMPUTE_WH"
    role: Optional[str] = None


class EnrolmentCoverageRepository:
    """
    Repository for enrolment coverage persistence.

    Each method corresponds to something the coverage engine needs:
    - get_enrolment: coverage fields, plan and schedule for one enrolment
    - list_holidays_overlapping: closures inside a date window
    - update_paid_through / set_paid_through_manual: persist a new date
    - append_audit / list_audits: coverage trigger history
    - find_active_enrolments_for_weekdays: holiday fan-out candidates

    Writes made inside transaction() commit together. Writes made outside
    a transaction commit immediately.
    """

    def __init__(self, connection: SnowflakeConnection) -> None:
        self._conn = connection
        self._in_transaction = False

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Run a block of repository calls atomically.

        Nested use joins the outer transaction. On any exception the whole
        transaction is rolled back and the exception re-raised; there are
        no retries here.
        """
        if self._in_transaction:
            yield
            return

        cursor = self._conn.cursor()
        try:
            cursor.execute("BEGIN")
        finally:
            cursor.close()

        self._in_transaction = True
        try:
            yield
            self._conn.commit()
        except Exception as e:
            logger.error(
                "Rolling back coverage transaction",
                extra={"error": str(e)}
            )
            self._conn.rollback()
            raise
        finally:
            self._in_transaction = False

    def get_enrolment(self, enrolment_id: str) -> Optional[EnrolmentCoverageState]:
        """
        Load one enrolment's coverage state, or None if it doesn't exist.

        The plan and legacy template come from LEFT JOINs so enrolments
        without either still load (and are then skipped by recompute).
        """
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    e.enrolment_id,
                    e.status,
                    e.start_date,
                    e.end_date,
                    e.paid_through_date,
                    e.paid_through_date_computed,
                    p.billing_type,
                    p.price_cents,
                    p.sessions_per_week,
                    p.block_class_count,
                    p.duration_weeks,
                    t.template_id,
                    t.day_of_week
                FROM enrolments e
                LEFT JOIN enrolment_plans p ON e.plan_id = p.plan_id
                LEFT JOIN class_templates t ON e.template_id = t.template_id
                WHERE e.enrolment_id = %s
            """, (enrolment_id,))

            row = cursor.fetchone()
            if not row:
                return None

            cursor.execute("""
                SELECT t.template_id, t.day_of_week
                FROM enrolment_class_assignments a
                JOIN class_templates t ON a.template_id = t.template_id
                WHERE a.enrolment_id = %s
                ORDER BY t.day_of_week, t.template_id
            """, (enrolment_id,))

            assignment_rows = cursor.fetchall()

            return self._build_enrolment(row, assignment_rows)

        finally:
            cursor.close()

    def list_holidays_overlapping(self, start_day: DayKey, end_day: DayKey) -> list[HolidayRange]:
        """Holidays with at least one day inside [start_day, end_day]."""
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT start_date, end_date
                FROM holidays
                WHERE start_date <= %s
                  AND end_date >= %s
                ORDER BY start_date
            """, (end_day, start_day))

            return [
                HolidayRange.of(start, end)
                for start, end in cursor.fetchall()
            ]

        finally:
            cursor.close()

    def update_paid_through(
        self,
        enrolment_id: str,
        paid_through: Optional[DayKey],
        computed_basis: Optional[DayKey] = None,
    ) -> None:
        """
        Persist a system-derived paid-through date.

        computed_basis, when given, is also stored as
        paid_through_date_computed. Recompute counts from that column once
        it is set, so a caller extending coverage (an applied invoice) must
        pass computed_basis too; a bare paid_through write is undone by the
        next recompute.
        """
        cursor = self._conn.cursor()

        try:
            if computed_basis is None:
                cursor.execute("""
                    UPDATE enrolments
                    SET paid_through_date = %s,
                        updated_at = CURRENT_TIMESTAMP()
                    WHERE enrolment_id = %s
                """, (paid_through, enrolment_id))
            else:
                cursor.execute("""
                    UPDATE enrolments
                    SET paid_through_date = %s,
                        paid_through_date_computed = %s,
                        updated_at = CURRENT_TIMESTAMP()
                    WHERE enrolment_id = %s
                """, (paid_through, computed_basis, enrolment_id))

            self._commit_unless_in_transaction()

        finally:
            cursor.close()

    def set_paid_through_manual(self, enrolment_id: str, paid_through: Optional[DayKey]) -> None:
        """Persist a staff-entered date as both the authoritative and computed value."""
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                UPDATE enrolments
                SET paid_through_date = %s,
                    paid_through_date_computed = %s,
                    updated_at = CURRENT_TIMESTAMP()
                WHERE enrolment_id = %s
            """, (paid_through, paid_through, enrolment_id))

            self._commit_unless_in_transaction()

        finally:
            cursor.close()

    def append_audit(self, audit: CoverageAudit) -> None:
        """Append one coverage audit row. Rows are never updated."""
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO enrolment_coverage_audits (
                    audit_id,
                    enrolment_id,
                    reason,
                    previous_paid_through_date,
                    next_paid_through_date,
                    actor_id,
                    created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            """, (
                audit.audit_id,
                audit.enrolment_id,
                audit.reason.value,
                audit.previous_paid_through,
                audit.next_paid_through,
                audit.actor_id,
                audit.created_at,
            ))

            self._commit_unless_in_transaction()

        finally:
            cursor.close()

    def list_audits(self, enrolment_id: str, limit: int = 100) -> list[CoverageAudit]:
        """The latest `limit` audit rows for an enrolment, returned oldest first."""
        cursor = self._conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    audit_id,
                    enrolment_id,
                    reason,
                    previous_paid_through_date,
                    next_paid_through_date,
                    actor_id,
                    created_at
                FROM enrolment_coverage_audits
                WHERE enrolment_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """, (enrolment_id, limit))

            rows = list(reversed(cursor.fetchall()))

            return [
                CoverageAudit(
                    audit_id=row[0],
                    enrolment_id=row[1],
                    reason=CoverageReason(row[2]),
                    previous_paid_through=optional_day_key(row[3]),
                    next_paid_through=optional_day_key(row[4]),
                    actor_id=row[5],
                    created_at=row[6],
                )
                for row in rows
            ]

        finally:
            cursor.close()

    def find_active_enrolments_for_weekdays(
        self,
        weekdays: Iterable[int],
        window_start: DayKey,
        window_end: DayKey,
    ) -> list[str]:
        """
        Active enrolments with a class on one of the weekdays whose
        start..end span overlaps the window.
        """
        weekday_list = sorted(set(weekdays))
        if not weekday_list:
            return []

        placeholders = ", ".join(["%s"] * len(weekday_list))
        cursor = self._conn.cursor()

        try:
            cursor.execute(f"""
                SELECT DISTINCT e.enrolment_id
                FROM enrolments e
                LEFT JOIN class_templates t ON e.template_id = t.template_id
                LEFT JOIN enrolment_class_assignments a ON a.enrolment_id = e.enrolment_id
                LEFT JOIN class_templates ct ON a.template_id = ct.template_id
                WHERE e.status = 'ACTIVE'
                  AND e.start_date <= %s
                  AND (e.end_date IS NULL OR e.end_date >= %s)
                  AND (t.day_of_week IN ({placeholders}) OR ct.day_of_week IN ({placeholders}))
                ORDER BY e.enrolment_id
            """, (window_end, window_start, *weekday_list, *weekday_list))

            return [row[0] for row in cursor.fetchall()]

        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _commit_unless_in_transaction(self) -> None:
        if not self._in_transaction:
            self._conn.commit()

    def _build_enrolment(self, row: tuple, assignment_rows: list) -> EnrolmentCoverageState:
        """Reconstruct coverage state from the enrolment row and its assignments."""
        (
            enrolment_id,
            status,
            start_date,
            end_date,
            paid_through_date,
            paid_through_date_computed,
            billing_type,
            price_cents,
            sessions_per_week,
            block_class_count,
            duration_weeks,
            template_id,
            template_day_of_week,
        ) = row

        plan = None
        if billing_type:
            plan = EnrolmentPlan(
                billing_type=BillingType(billing_type),
                price_cents=int(price_cents or 0),
                sessions_per_week=sessions_per_week,
                block_class_count=block_class_count,
                duration_weeks=duration_weeks,
            )

        legacy_template = None
        if template_id:
            legacy_template = AssignedTemplate(
                day_of_week=template_day_of_week,
                template_id=template_id,
            )

        return EnrolmentCoverageState(
            enrolment_id=enrolment_id,
            status=EnrolmentStatus(status),
            start_date=optional_day_key(start_date),
            end_date=optional_day_key(end_date),
            paid_through_date=optional_day_key(paid_through_date),
            paid_through_date_computed=optional_day_key(paid_through_date_computed),
            plan=plan,
            assigned_templates=[
                AssignedTemplate(day_of_week=day_of_week, template_id=assigned_id)
                for assigned_id, day_of_week in assignment_rows
            ],
            legacy_template=legacy_template,
        )
