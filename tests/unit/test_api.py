"""
API tests for the billing coverage service.

The app runs in Snowflake mock mode, so every request goes through the
real routes, dependencies and repository SQL against in-memory storage.
"""

import pytest
from fastapi.testclient import TestClient

from src.api import dependencies
from src.api.dependencies import get_coverage_recomputer
from src.config.settings import get_settings
from src.core.billing.errors import RecomputeBatchError
from src.core.billing.models import (
    AssignedTemplate,
    BillingType,
    EnrolmentCoverageState,
    EnrolmentPlan,
    EnrolmentStatus,
    HolidayRange,
)
from src.main import create_app

API_KEY = "test-key"
HEADERS = {"X-API-Key": API_KEY}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("SNOWFLAKE_MOCK_MODE", "true")
    monkeypatch.setenv("API_KEYS", API_KEY)
    get_settings.cache_clear()
    dependencies._mock_snowflake_connection = None

    with TestClient(create_app()) as test_client:
        yield test_client

    get_settings.cache_clear()
    dependencies._mock_snowflake_connection = None


@pytest.fixture
def mock_conn(client):
    return dependencies.get_mock_connection()


def seed_monday_enrolment(conn, enrolment_id: str = "enr-1", **overrides) -> None:
    fields = {
        "enrolment_id": enrolment_id,
        "status": EnrolmentStatus.ACTIVE,
        "start_date": "2026-01-12",
        "paid_through_date": "2026-02-02",
        "plan": EnrolmentPlan(BillingType.PER_WEEK, price_cents=2500, sessions_per_week=1),
        "legacy_template": AssignedTemplate(day_of_week=0),
    }
    fields.update(overrides)
    conn._add_enrolment(EnrolmentCoverageState(**fields))


class StubRecomputer:
    """Stands in for CoverageRecomputer to drive error paths."""

    def __init__(self, error: Exception) -> None:
        self._error = error

    def recompute(self, enrolment_id, reason, actor_id=None):
        raise self._error

    def recompute_for_holidays(self, ranges, reason, actor_id=None):
        raise self._error


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------

class TestHealth:
    """Tests for the health endpoints."""

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["details"]["mock_mode"]["snowflake"] is True
        assert body["details"]["timezone"] == "Australia/Brisbane"

    def test_readiness_in_mock_mode(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert {c["name"] for c in body["checks"]} == {"configuration", "database"}

    def test_root_points_at_docs(self, client):
        assert client.get("/").json()["docs"] == "/docs"


class TestAuthentication:
    """API key enforcement."""

    def test_missing_key_rejected(self, client):
        response = client.get("/api/v1/billing/holiday-extension", params={"missed_sessions": 1})
        assert response.status_code == 403

    def test_wrong_key_rejected(self, client):
        response = client.get(
            "/api/v1/billing/holiday-extension",
            params={"missed_sessions": 1},
            headers={"X-API-Key": "nope"},
        )
        assert response.status_code == 403


# ---------------------------------------------------------------------------
# Calculators
# ---------------------------------------------------------------------------

class TestBillingCalculators:
    """Tests for the stateless /api/v1/billing endpoints."""

    def test_coverage_end(self, client):
        response = client.post(
            "/api/v1/billing/coverage-end",
            headers=HEADERS,
            json={
                "start_date": "2026-01-12",
                "templates": [{"day_of_week": 0}],
                "holidays": [{"start_date": "2026-01-26"}],
                "entitlement_sessions": 8,
            },
        )

        assert response.status_code == 200
        assert response.json() == {"paid_through_date": "2026-03-09"}

    def test_coverage_end_invalid_date(self, client):
        response = client.post(
            "/api/v1/billing/coverage-end",
            headers=HEADERS,
            json={
                "start_date": "2026-02-30",
                "templates": [{"day_of_week": 0}],
                "entitlement_sessions": 4,
            },
        )

        assert response.status_code == 422

    def test_coverage_end_rejects_absurd_entitlement(self, client):
        response = client.post(
            "/api/v1/billing/coverage-end",
            headers=HEADERS,
            json={
                "start_date": "2026-01-05",
                "templates": [{"day_of_week": 0}],
                "entitlement_sessions": 500_000,
            },
        )

        assert response.status_code == 422

    def test_scheduled_count_with_holiday_occurrences(self, client):
        response = client.post(
            "/api/v1/billing/scheduled-count",
            headers=HEADERS,
            json={
                "start_date": "2025-01-06",
                "end_date": "2025-01-27",
                "templates": [{"day_of_week": 0}],
                "holidays": [{"start_date": "2025-01-13"}],
                "day_of_week": 0,
            },
        )

        assert response.status_code == 200
        assert response.json() == {"scheduled_sessions": 3, "holiday_occurrences": 1}

    def test_template_change(self, client):
        response = client.post(
            "/api/v1/billing/template-change",
            headers=HEADERS,
            json={
                "enrolment_start": "2026-03-02",
                "old_paid_through": "2026-05-11",
                "old_templates": [{"day_of_week": 0}],
                "new_templates": [{"day_of_week": 1}],
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["new_paid_through"] == "2026-05-12"
        assert body["entitlement_sessions"] == 11
        assert body["sessions_per_week"] == 1

    def test_proration(self, client):
        response = client.post(
            "/api/v1/billing/proration",
            headers=HEADERS,
            json={
                "effective_date": "2026-01-01",
                "old_paid_through": "2026-01-15",
                "old_plan": {"billing_type": "PER_WEEK", "price_cents": 200, "sessions_per_week": 1},
                "new_plan": {"billing_type": "PER_WEEK", "price_cents": 100, "sessions_per_week": 1},
            },
        )

        assert response.status_code == 200
        assert response.json() == {"paid_through_date": "2026-01-29"}

    def test_holiday_extension(self, client):
        response = client.get(
            "/api/v1/billing/holiday-extension",
            headers=HEADERS,
            params={"missed_sessions": 3, "sessions_per_week": 2},
        )

        assert response.status_code == 200
        assert response.json()["extension_weeks"] == 2

    def test_holiday_extension_negative_rejected(self, client):
        response = client.get(
            "/api/v1/billing/holiday-extension",
            headers=HEADERS,
            params={"missed_sessions": -1},
        )

        assert response.status_code == 422

    def test_block_pricing(self, client):
        response = client.post(
            "/api/v1/billing/block-pricing",
            headers=HEADERS,
            json={"price_cents": 4000, "block_length": 4, "custom_block_length": 6},
        )

        assert response.status_code == 200
        assert response.json() == {
            "total_cents": 6000,
            "per_class_price_cents": 1000,
            "effective_block_length": 6,
        }

    def test_block_pricing_short_custom_block_rejected(self, client):
        response = client.post(
            "/api/v1/billing/block-pricing",
            headers=HEADERS,
            json={"price_cents": 4000, "block_length": 4, "custom_block_length": 3},
        )

        assert response.status_code == 422
        assert "at least the plan block length" in response.json()["detail"]


# ---------------------------------------------------------------------------
# Coverage writes
# ---------------------------------------------------------------------------

class TestCoverageEndpoints:
    """Tests for the /api/v1/coverage endpoints."""

    def test_recompute_enrolment(self, client, mock_conn):
        seed_monday_enrolment(mock_conn)
        mock_conn._add_holiday(HolidayRange.of("2026-01-26"))

        response = client.post(
            "/api/v1/coverage/enrolments/enr-1/recompute",
            headers={**HEADERS, "X-Actor-Id": "staff-1"},
            json={"reason": "HOLIDAY_ADDED"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "enrolment_id": "enr-1",
            "recomputed": True,
            "paid_through_date": "2026-02-09",
        }
        assert mock_conn._audit_rows()[0]["actor_id"] == "staff-1"

    def test_recompute_ineligible_enrolment(self, client, mock_conn):
        seed_monday_enrolment(mock_conn, status=EnrolmentStatus.PAUSED)

        response = client.post(
            "/api/v1/coverage/enrolments/enr-1/recompute",
            headers=HEADERS,
            json={},
        )

        assert response.status_code == 200
        assert response.json()["recomputed"] is False
        assert response.json()["paid_through_date"] is None

    def test_recompute_unknown_reason_rejected(self, client, mock_conn):
        seed_monday_enrolment(mock_conn)

        response = client.post(
            "/api/v1/coverage/enrolments/enr-1/recompute",
            headers=HEADERS,
            json={"reason": "BECAUSE"},
        )

        assert response.status_code == 422

    def test_manual_paid_through(self, client, mock_conn):
        seed_monday_enrolment(mock_conn)

        response = client.put(
            "/api/v1/coverage/enrolments/enr-1/paid-through",
            headers=HEADERS,
            json={"paid_through_date": "2026-03-02"},
        )

        assert response.status_code == 200
        assert response.json()["paid_through_date"] == "2026-03-02"
        assert mock_conn._get_enrolment("enr-1")["paid_through_date_computed"] == "2026-03-02"

    def test_manual_paid_through_unknown_enrolment(self, client):
        response = client.put(
            "/api/v1/coverage/enrolments/missing/paid-through",
            headers=HEADERS,
            json={"paid_through_date": "2026-03-02"},
        )

        assert response.status_code == 404

    def test_manual_paid_through_invalid_date(self, client, mock_conn):
        seed_monday_enrolment(mock_conn)

        response = client.put(
            "/api/v1/coverage/enrolments/enr-1/paid-through",
            headers=HEADERS,
            json={"paid_through_date": "not-a-date"},
        )

        assert response.status_code == 422
        assert mock_conn._get_enrolment("enr-1")["paid_through_date"] == "2026-02-02"

    def test_audits(self, client, mock_conn):
        seed_monday_enrolment(mock_conn)
        client.post("/api/v1/coverage/enrolments/enr-1/recompute", headers=HEADERS, json={})
        client.put(
            "/api/v1/coverage/enrolments/enr-1/paid-through",
            headers=HEADERS,
            json={"paid_through_date": "2026-02-16"},
        )

        response = client.get("/api/v1/coverage/enrolments/enr-1/audits", headers=HEADERS)

        assert response.status_code == 200
        reasons = [a["reason"] for a in response.json()["audits"]]
        assert reasons == ["INVOICE_APPLIED", "PAIDTHROUGH_MANUAL_EDIT"]

    def test_audits_unknown_enrolment(self, client):
        response = client.get("/api/v1/coverage/enrolments/missing/audits", headers=HEADERS)
        assert response.status_code == 404

    def test_holiday_recompute(self, client, mock_conn):
        seed_monday_enrolment(mock_conn, "enr-mon")
        seed_monday_enrolment(mock_conn, "enr-tue", legacy_template=AssignedTemplate(day_of_week=1))
        mock_conn._add_holiday(HolidayRange.of("2026-01-26"))

        response = client.post(
            "/api/v1/coverage/holidays/recompute",
            headers=HEADERS,
            json={"ranges": [{"start_date": "2026-01-26"}], "reason": "HOLIDAY_ADDED"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "enrolment_count": 1,
            "paid_through_dates": {"enr-mon": "2026-02-09"},
            "failed_enrolment_ids": [],
        }

    def test_holiday_recompute_requires_ranges(self, client):
        response = client.post(
            "/api/v1/coverage/holidays/recompute",
            headers=HEADERS,
            json={"ranges": []},
        )

        assert response.status_code == 422

    def test_holiday_recompute_partial_failure(self, client):
        error = RecomputeBatchError({"enr-b": RuntimeError("boom")}, {"enr-a": "2026-02-09"})
        client.app.dependency_overrides[get_coverage_recomputer] = lambda: StubRecomputer(error)

        response = client.post(
            "/api/v1/coverage/holidays/recompute",
            headers=HEADERS,
            json={"ranges": [{"start_date": "2026-01-26"}]},
        )

        client.app.dependency_overrides.clear()
        assert response.status_code == 200
        assert response.json() == {
            "enrolment_count": 2,
            "paid_through_dates": {"enr-a": "2026-02-09"},
            "failed_enrolment_ids": ["enr-b"],
        }

    def test_storage_error_is_500(self, monkeypatch):
        monkeypatch.setenv("SNOWFLAKE_MOCK_MODE", "true")
        monkeypatch.setenv("API_KEYS", API_KEY)
        get_settings.cache_clear()
        app = create_app()
        app.dependency_overrides[get_coverage_recomputer] = lambda: StubRecomputer(RuntimeError("db down"))

        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.post(
                "/api/v1/coverage/enrolments/enr-1/recompute",
                headers=HEADERS,
                json={},
            )

        get_settings.cache_clear()
        assert response.status_code == 500
        assert "db down" not in response.text
