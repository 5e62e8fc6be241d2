"""
Snowflake database connection management.

Provides connection factory and context manager for Snowflake operations.
Includes mock mode with in-memory storage for local development.

Using the repository pattern means most code never touches this module
directly - it goes through EnrolmentCoverageRepository which handles the
translation between domain models and database rows.
"""

import base64
import copy
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from src.core.billing.models import EnrolmentCoverageState, EnrolmentPlan, HolidayRange

from .repositories.enrolments import SnowflakeConfig, SnowflakeConnection

logger = logging.getLogger(__name__)


class SnowflakeConnectionError(Exception):
    """Raised when Snowflake connection fails."""
    pass


class MockDatabaseError(Exception):
    """Raised by the mock connection when a query has been set up to fail."""
    pass


def _load_private_key(key_path: Optional[str] = None, key_base64: Optional[str] = None) -> bytes:
    """
    Load private key for key-pair authentication.

    Snowflake requires the private key as DER bytes, not a file path.
    The PEM can come from a file (local) or a base64 environment
    variable (deployment, where mounting files is awkward).
    """
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    if key_path:
        with open(key_path, 'rb') as key_file:
            pem = key_file.read()
    elif key_base64:
        pem = base64.b64decode(key_base64)
    else:
        raise SnowflakeConnectionError("No private key source configured")

    private_key = serialization.load_pem_private_key(
        pem,
        password=None,  # No password on the key
        backend=default_backend()
    )

    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


@contextmanager
def get_snowflake_connection(config: SnowflakeConfig) -> Generator[SnowflakeConnection, None, None]:
    """
    Provide Snowflake connection with automatic cleanup.

    Supports both password and key-pair authentication:
    - If a private key (path or base64) is set, uses key-pair auth
    - Otherwise, uses password auth

    Errors raised by the code using the connection propagate unchanged;
    only failures to connect are wrapped in SnowflakeConnectionError.

    Usage:
        with get_snowflake_connection(config) as conn:
            repo = EnrolmentCoverageRepository(conn)
            # do work
    """
    try:
        import snowflake.connector
    except ImportError:
        raise ImportError(
            "snowflake-connector-python is required. "
            "Install with: pip install snowflake-connector-python"
        )

    connect_params = {
        'account': config.account,
        'user': config.user,
        'database': config.database,
        'schema': config.schema,
        'warehouse': config.warehouse,
        'role': config.role,
        'client_session_keep_alive': True,
    }

    if config.private_key_path or config.private_key_base64:
        logger.info("Using key-pair authentication for Snowflake")
        connect_params['private_key'] = _load_private_key(
            config.private_key_path, config.private_key_base64
        )
    elif config.password:
        logger.info("Using password authentication for Snowflake")
        connect_params['password'] = config.password
    else:
        raise SnowflakeConnectionError(
            "Either password or a private key must be provided"
        )

    try:
        conn = snowflake.connector.connect(**connect_params)
    except snowflake.connector.errors.DatabaseError as e:
        logger.error(
            "Snowflake connection failed",
            extra={"error": str(e), "account": config.account}
        )
        raise SnowflakeConnectionError(f"Database connection failed: {e}") from e

    logger.debug(
        "Established Snowflake connection",
        extra={
            "account": config.account,
            "database": config.database,
            "schema": config.schema,
        }
    )

    try:
        yield conn
    finally:
        try:
            conn.close()
            logger.debug("Closed Snowflake connection")
        except Exception as e:
            logger.warning(
                "Error closing Snowflake connection",
                extra={"error": str(e)}
            )


# ---------------------------------------------------------------------------
# Mock Connection for Local Development
# ---------------------------------------------------------------------------

class MockSnowflakeCursor:
    """
    Mock Snowflake cursor for testing.

    Implements just enough of the cursor interface to support
    EnrolmentCoverageRepository without a real database. Queries are
    routed by pattern matching on the table they touch, which is crude
    but keeps the repository's real SQL under test.
    """

    def __init__(self, connection: 'MockSnowflakeConnection') -> None:
        self._connection = connection
        self._results: list = []
        self._rowcount: int = 0

    @property
    def _storage(self) -> dict:
        return self._connection._storage

    def execute(self, query: str, params: Optional[tuple] = None) -> 'MockSnowflakeCursor':
        """Execute a query against mock storage."""
        normalized = " ".join(query.upper().split())
        params = tuple(params or ())

        logger.debug(
            "Mock cursor execute",
            extra={"query": normalized[:100], "params": params}
        )

        for keyword in self._connection._fail_keywords:
            if keyword in normalized:
                raise MockDatabaseError(f"Mock failure for query containing {keyword}")

        self._results = []
        self._rowcount = 0

        if normalized in ('BEGIN', 'BEGIN TRANSACTION'):
            self._connection.begin()
        elif normalized.startswith('SELECT DISTINCT E.ENROLMENT_ID'):
            self._select_active_for_weekdays(params)
        elif normalized.startswith('SELECT'):
            if 'FROM ENROLMENT_CLASS_ASSIGNMENTS' in normalized:
                self._select_assignments(params)
            elif 'FROM ENROLMENT_COVERAGE_AUDITS' in normalized:
                self._select_audits(normalized, params)
            elif 'FROM HOLIDAYS' in normalized:
                self._select_holidays(params)
            elif 'FROM ENROLMENTS' in normalized:
                self._select_enrolment(params)
        elif normalized.startswith('UPDATE ENROLMENTS'):
            self._update_enrolment(normalized, params)
        elif normalized.startswith('INSERT INTO ENROLMENT_COVERAGE_AUDITS'):
            self._insert_audit(params)
        elif normalized.startswith('INSERT INTO HOLIDAYS'):
            self._insert_holiday(params)

        return self

    def _select_enrolment(self, params: tuple) -> None:
        enrolment = self._storage['enrolments'].get(params[0])
        if not enrolment:
            return

        plan = self._storage['enrolment_plans'].get(enrolment.get('plan_id')) or {}
        template = self._storage['class_templates'].get(enrolment.get('template_id')) or {}

        self._results = [(
            enrolment['enrolment_id'],
            enrolment['status'],
            enrolment['start_date'],
            enrolment.get('end_date'),
            enrolment.get('paid_through_date'),
            enrolment.get('paid_through_date_computed'),
            plan.get('billing_type'),
            plan.get('price_cents'),
            plan.get('sessions_per_week'),
            plan.get('block_class_count'),
            plan.get('duration_weeks'),
            template.get('template_id'),
            template.get('day_of_week'),
        )]

    def _select_assignments(self, params: tuple) -> None:
        templates = self._storage['class_templates']
        rows = [
            (template_id, templates[template_id]['day_of_week'])
            for template_id in self._storage['enrolment_class_assignments'].get(params[0], [])
            if template_id in templates
        ]
        # Snowflake sorts NULLs last in ascending order
        rows.sort(key=lambda r: (r[1] is None, r[1] or 0, r[0]))
        self._results = rows

    def _select_holidays(self, params: tuple) -> None:
        end_day, start_day = params
        rows = [
            (h['start_date'], h['end_date'])
            for h in self._storage['holidays'].values()
            if h['start_date'] <= end_day and h['end_date'] >= start_day
        ]
        self._results = sorted(rows)

    def _select_audits(self, query: str, params: tuple) -> None:
        enrolment_id, limit = params
        rows = [
            a for a in self._storage['enrolment_coverage_audits'].values()
            if a['enrolment_id'] == enrolment_id
        ]
        rows.sort(key=lambda a: a['sequence'], reverse='CREATED_AT DESC' in query)
        self._results = [
            (
                a['audit_id'],
                a['enrolment_id'],
                a['reason'],
                a['previous_paid_through_date'],
                a['next_paid_through_date'],
                a['actor_id'],
                a['created_at'],
            )
            for a in rows[:limit]
        ]

    def _select_active_for_weekdays(self, params: tuple) -> None:
        window_end, window_start, *weekday_params = params
        weekdays = set(weekday_params[:len(weekday_params) // 2])
        templates = self._storage['class_templates']
        assignments = self._storage['enrolment_class_assignments']

        matches = []
        for enrolment in self._storage['enrolments'].values():
            if enrolment['status'] != 'ACTIVE':
                continue
            if enrolment['start_date'] > window_end:
                continue
            if enrolment.get('end_date') and enrolment['end_date'] < window_start:
                continue

            template_ids = [enrolment.get('template_id')]
            template_ids.extend(assignments.get(enrolment['enrolment_id'], []))
            days = {
                templates[tid]['day_of_week']
                for tid in template_ids
                if tid in templates
            }
            if days & weekdays:
                matches.append((enrolment['enrolment_id'],))

        self._results = sorted(matches)

    def _update_enrolment(self, query: str, params: tuple) -> None:
        if 'PAID_THROUGH_DATE_COMPUTED' in query:
            paid_through, computed, enrolment_id = params
            changes = {'paid_through_date': paid_through, 'paid_through_date_computed': computed}
        else:
            paid_through, enrolment_id = params
            changes = {'paid_through_date': paid_through}

        enrolment = self._storage['enrolments'].get(enrolment_id)
        if enrolment:
            enrolment.update(changes)
            self._rowcount = 1

    def _insert_audit(self, params: tuple) -> None:
        audits = self._storage['enrolment_coverage_audits']
        (
            audit_id,
            enrolment_id,
            reason,
            previous_paid_through,
            next_paid_through,
            actor_id,
            created_at,
        ) = params
        audits[audit_id] = {
            'audit_id': audit_id,
            'enrolment_id': enrolment_id,
            'reason': reason,
            'previous_paid_through_date': previous_paid_through,
            'next_paid_through_date': next_paid_through,
            'actor_id': actor_id,
            'created_at': created_at,
            'sequence': len(audits),
        }
        self._rowcount = 1

    def _insert_holiday(self, params: tuple) -> None:
        holiday_id, name, start_date, end_date, note = params
        self._storage['holidays'][holiday_id] = {
            'holiday_id': holiday_id,
            'name': name,
            'start_date': start_date,
            'end_date': end_date,
            'note': note,
        }
        self._rowcount = 1

    def fetchone(self):
        """Fetch one row from results."""
        if not self._results:
            return None
        return self._results[0]

    def fetchall(self) -> list:
        """Fetch all rows from results."""
        return self._results

    def close(self) -> None:
        """Close cursor (no-op for mock)."""
        pass

    @property
    def rowcount(self) -> int:
        """Return number of rows affected."""
        return self._rowcount


class MockSnowflakeConnection:
    """
    Mock Snowflake connection for local development.

    Stores data in memory using a simple dictionary structure. BEGIN
    takes a snapshot and rollback restores it, so transaction atomicity
    can be tested without a real database.

    Not suitable for production, but perfect for:
    - Local development
    - Unit tests
    - CI/CD environments
    """

    def __init__(self) -> None:
        # In-memory storage: {table_name: {id: row_dict}}
        self._storage: dict[str, dict] = {
            'enrolments': {},
            'enrolment_plans': {},
            'class_templates': {},
            'enrolment_class_assignments': {},
            'holidays': {},
            'enrolment_coverage_audits': {},
        }
        self._snapshot: Optional[dict] = None
        self._fail_keywords: set[str] = set()

        logger.info("Initialized mock Snowflake connection (in-memory)")

    def cursor(self) -> MockSnowflakeCursor:
        """Create a mock cursor."""
        return MockSnowflakeCursor(self)

    def begin(self) -> None:
        """Start a transaction by snapshotting storage."""
        self._snapshot = copy.deepcopy(self._storage)
        logger.debug("Mock connection begin")

    def commit(self) -> None:
        """Commit transaction by discarding the snapshot."""
        self._snapshot = None
        logger.debug("Mock connection commit")

    def rollback(self) -> None:
        """Rollback transaction by restoring the snapshot."""
        if self._snapshot is not None:
            for table, rows in self._snapshot.items():
                self._storage[table] = rows
            self._snapshot = None
        logger.debug("Mock connection rollback")

    def close(self) -> None:
        """Close connection (no-op for mock)."""
        logger.debug("Mock connection close")

    # Helper methods for testing
    def _add_plan(self, plan_id: str, plan: EnrolmentPlan) -> None:
        """Add an enrolment plan to mock storage (for test setup)."""
        self._storage['enrolment_plans'][plan_id] = {
            'plan_id': plan_id,
            'billing_type': plan.billing_type.value,
            'price_cents': plan.price_cents,
            'sessions_per_week': plan.sessions_per_week,
            'block_class_count': plan.block_class_count,
            'duration_weeks': plan.duration_weeks,
        }

    def _add_template(self, template_id: str, day_of_week: Optional[int]) -> None:
        """Add a class template to mock storage (for test setup)."""
        self._storage['class_templates'][template_id] = {
            'template_id': template_id,
            'day_of_week': day_of_week,
        }

    def _add_enrolment(self, state: EnrolmentCoverageState) -> None:
        """
        Add an enrolment with its plan and templates (for test setup).

        Templates without an id get one derived from the enrolment id.
        """
        plan_id = None
        if state.plan is not None:
            plan_id = f"plan-{state.enrolment_id}"
            self._add_plan(plan_id, state.plan)

        legacy_id = None
        if state.legacy_template is not None:
            legacy_id = state.legacy_template.template_id or f"tpl-{state.enrolment_id}-legacy"
            self._add_template(legacy_id, state.legacy_template.day_of_week)

        assigned_ids = []
        for index, template in enumerate(state.assigned_templates):
            template_id = template.template_id or f"tpl-{state.enrolment_id}-{index}"
            self._add_template(template_id, template.day_of_week)
            assigned_ids.append(template_id)
        self._storage['enrolment_class_assignments'][state.enrolment_id] = assigned_ids

        self._storage['enrolments'][state.enrolment_id] = {
            'enrolment_id': state.enrolment_id,
            'status': state.status.value,
            'start_date': state.start_date,
            'end_date': state.end_date,
            'paid_through_date': state.paid_through_date,
            'paid_through_date_computed': state.paid_through_date_computed,
            'plan_id': plan_id,
            'template_id': legacy_id,
        }

    def _add_holiday(self, holiday: HolidayRange, holiday_id: Optional[str] = None) -> None:
        """Add a holiday range to mock storage (for test setup)."""
        holidays = self._storage['holidays']
        holiday_id = holiday_id or f"holiday-{len(holidays) + 1}"
        holidays[holiday_id] = {
            'holiday_id': holiday_id,
            'start_date': holiday.start_date,
            'end_date': holiday.end_date,
        }

    def _get_enrolment(self, enrolment_id: str) -> Optional[dict]:
        """Get an enrolment row from mock storage (for test assertions)."""
        return self._storage['enrolments'].get(enrolment_id)

    def _audit_rows(self) -> list[dict]:
        """All audit rows in insertion order (for test assertions)."""
        return sorted(
            self._storage['enrolment_coverage_audits'].values(),
            key=lambda a: a['sequence'],
        )

    def _fail_on_query(self, keyword: str) -> None:
        """Make any query containing keyword raise (for failure tests)."""
        self._fail_keywords.add(keyword.upper())

    def _clear(self) -> None:
        """Clear all mock storage (for test cleanup)."""
        for table in self._storage.values():
            table.clear()
        self._fail_keywords.clear()
        self._snapshot = None


@contextmanager
def get_mock_snowflake_connection() -> Generator[MockSnowflakeConnection, None, None]:
    """
    Provide mock Snowflake connection for local development.

    Returns a connection that stores data in memory. Perfect for
    testing and local development without provisioning Snowflake.
    """
    conn = MockSnowflakeConnection()
    try:
        yield conn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

@contextmanager
def create_snowflake_connection(
    config: Optional[SnowflakeConfig] = None,
    mock_mode: bool = False,
) -> Generator[SnowflakeConnection, None, None]:
    """
    Create Snowflake connection based on configuration.

    Factory function that returns either a real or mock connection
    depending on mock_mode flag.

    Args:
        config: Snowflake configuration (required if not mock_mode)
        mock_mode: If True, return mock connection for testing

    Yields:
        SnowflakeConnection implementation (real or mock)
    """
    if mock_mode:
        with get_mock_snowflake_connection() as conn:
            yield conn
    else:
        if config is None:
            raise ValueError("config is required when not in mock mode")

        with get_snowflake_connection(config) as conn:
            yield conn
