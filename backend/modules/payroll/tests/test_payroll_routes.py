# backend/modules/payroll/tests/test_payroll_routes.py

"""
API tests for payroll routes.

Dependencies are overridden with the in-memory session, the fake-gateway
ledger and a fixed employer actor.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.auth import Actor, get_current_actor
from core.database import get_db
from core.exceptions import ErrorCodes, register_exception_handlers
from ..enums.payroll_enums import PaymentStatus
from ..routes.payroll_routes import get_payment_ledger, router


@pytest.fixture
def client(db_session, ledger, employer):
    _company, actor = employer

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router)

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_payment_ledger] = lambda: ledger
    app.dependency_overrides[get_current_actor] = lambda: actor

    return TestClient(app)


class TestCalculateRoute:
    def test_calculate_creates_pending_payments(
        self, client, employer, employee_factory, time_entry_factory
    ):
        company, _actor = employer
        employee = employee_factory(company)
        time_entry_factory(employee, datetime(2024, 3, 4, 9, 0), hours=10)

        response = client.post(
            f"/api/payroll/companies/{company.id}/calculate",
            json={"period_start": "2024-03-01T00:00:00", "period_end": "2024-03-31T23:59:59"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["employees_with_payments"] == 1
        assert Decimal(data["results"][0]["total_pay"]) == Decimal("110.00")
        assert data["results"][0]["outcome"] == "created"

    def test_inverted_period_is_rejected(self, client, employer):
        company, _actor = employer

        response = client.post(
            f"/api/payroll/companies/{company.id}/calculate",
            json={"period_start": "2024-03-31T00:00:00", "period_end": "2024-03-01T00:00:00"},
        )

        assert response.status_code == 422

    def test_other_company_is_forbidden(self, client, employer):
        company, _actor = employer

        response = client.post(
            f"/api/payroll/companies/{company.id + 1}/calculate",
            json={"period_start": "2024-03-01T00:00:00", "period_end": "2024-03-31T23:59:59"},
        )

        assert response.status_code == 403
        assert response.json()["code"] == ErrorCodes.FORBIDDEN


class TestPaymentRoutes:
    def test_get_payment(self, client, employer, employee_factory, payment_factory):
        company, _actor = employer
        payment = payment_factory(employee_factory(company))

        response = client.get(f"/api/payroll/payments/{payment.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["time_entry_ids"] == []

    def test_get_missing_payment_is_404(self, client):
        response = client.get("/api/payroll/payments/999")

        assert response.status_code == 404
        assert response.json()["code"] == ErrorCodes.RECORD_NOT_FOUND

    def test_approve_moves_to_processing(self, client, employer, employee_factory, payment_factory):
        company, _actor = employer
        payment = payment_factory(employee_factory(company))

        response = client.post(f"/api/payroll/payments/{payment.id}/approve")

        assert response.status_code == 200
        assert response.json()["status"] == "processing"
        assert response.json()["approved_by"] == "employer-1"

    def test_approve_completed_is_409(
        self, client, employer, employee_factory, payment_factory, db_session
    ):
        company, _actor = employer
        payment = payment_factory(employee_factory(company), status=PaymentStatus.COMPLETED)

        response = client.post(f"/api/payroll/payments/{payment.id}/approve")

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == ErrorCodes.PAYMENT_NOT_PENDING
        assert body["error"] == "NotPendingError"
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.COMPLETED

    def test_cancel_with_reason(self, client, employer, employee_factory, payment_factory):
        company, _actor = employer
        payment = payment_factory(employee_factory(company))

        response = client.post(
            f"/api/payroll/payments/{payment.id}/cancel", json={"reason": "Wrong period"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["failure_reason"] == "Wrong period"

    def test_bulk_approve(self, client, employer, employee_factory, payment_factory):
        company, _actor = employer
        payment_factory(employee_factory(company))
        payment_factory(employee_factory(company))

        response = client.post(f"/api/payroll/companies/{company.id}/payments/approve", json={})

        assert response.status_code == 200
        assert response.json()["succeeded"] == 2
        assert response.json()["failed"] == 0

    def test_pending_and_summary(self, client, employer, employee_factory, payment_factory):
        company, _actor = employer
        payment = payment_factory(employee_factory(company))

        pending = client.get(f"/api/payroll/companies/{company.id}/payments/pending")
        summary = client.get(
            f"/api/payroll/companies/{company.id}/summary",
            params={"period_start": "2024-03-01T00:00:00", "period_end": "2024-03-31T23:59:59"},
        )

        assert [p["id"] for p in pending.json()] == [payment.id]
        assert summary.status_code == 200
        assert summary.json()["pending_payments"] == 1

    def test_list_payments_paginates_and_filters(
        self, client, employer, employee_factory, payment_factory
    ):
        company, _actor = employer
        employee = employee_factory(company)
        older = payment_factory(employee, created_at=datetime(2024, 4, 1))
        newer = payment_factory(
            employee,
            status=PaymentStatus.FAILED,
            period_start=datetime(2024, 4, 1),
            period_end=datetime(2024, 4, 30, 23, 59, 59),
            created_at=datetime(2024, 5, 1),
        )

        first_page = client.get(
            f"/api/payroll/companies/{company.id}/payments", params={"page": 1, "page_size": 1}
        )
        failed = client.get(
            f"/api/payroll/companies/{company.id}/payments", params={"status": "failed"}
        )

        assert first_page.status_code == 200
        body = first_page.json()
        assert [p["id"] for p in body["payments"]] == [newer.id]
        assert body["total"] == 2
        assert body["total_pages"] == 2
        assert body["has_next"] is True
        assert body["has_previous"] is False
        assert [p["id"] for p in failed.json()["payments"]] == [newer.id]
        assert older.id not in [p["id"] for p in failed.json()["payments"]]

    def test_list_payments_rejects_bad_paging_and_other_company(self, client, employer):
        company, _actor = employer

        zero_page = client.get(f"/api/payroll/companies/{company.id}/payments", params={"page": 0})
        huge_page = client.get(
            f"/api/payroll/companies/{company.id}/payments", params={"page_size": 101}
        )
        foreign = client.get(f"/api/payroll/companies/{company.id + 1}/payments")

        assert zero_page.status_code == 422
        assert huge_page.status_code == 422
        assert foreign.status_code == 403
        assert foreign.json()["code"] == ErrorCodes.FORBIDDEN


class TestAuthorization:
    def test_missing_actor_is_401(self, db_session, ledger):
        app = FastAPI()
        app.include_router(router)
        app.dependency_overrides[get_db] = lambda: db_session
        app.dependency_overrides[get_payment_ledger] = lambda: ledger

        response = TestClient(app).get("/api/payroll/payments/1")

        assert response.status_code == 401

    def test_employee_role_is_403(self, db_session, ledger, employer):
        company, _actor = employer
        app = FastAPI()
        app.include_router(router)
        app.dependency_overrides[get_db] = lambda: db_session
        app.dependency_overrides[get_payment_ledger] = lambda: ledger
        app.dependency_overrides[get_current_actor] = lambda: Actor(
            user_id="worker-1", company_id=company.id, role="employee"
        )

        response = TestClient(app).get("/api/payroll/payments/1")

        assert response.status_code == 403
