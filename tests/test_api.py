from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from auth import issue_access_token, verify_access_token
from main import app, get_db, get_report_service
from periods import WeekStart
from services import NotificationService, ReportService
from store import AggregationFailure, SqlEntryStore


@pytest.fixture
def client(session_factory):
    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_report_service] = lambda: ReportService(
        SqlEntryStore(session_factory), week_start=WeekStart.sunday, max_workers=2
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_access_token(user_id)}"}


def test_monthly_report_endpoint(client, make_user, spend, income) -> None:
    user_id = make_user()
    income(user_id, date(2024, 3, 1), 5_000_000)
    spend(user_id, date(2024, 3, 4), {"Food": 700_000, "Transport": 500_000})

    response = client.get("/api/reports/monthly?date=2024-03-15", headers=_auth(user_id))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Monthly report generated successfully"
    data = body["data"]
    assert data["totalIncome"] == 50000
    assert data["totalExpense"] == 12000
    assert data["savings"] == 38000
    assert data["savingsRate"] == 76
    assert data["period"]["start"] == "2024-03-01"
    assert data["hasPreviousData"] is False
    assert "previousMonth" not in data


def test_path_style_routes_accept_shorthand_tokens(client, make_user) -> None:
    user_id = make_user()
    headers = _auth(user_id)

    quarterly = client.get("/api/reports/quarterly/data/2024-Q2", headers=headers)
    yearly = client.get("/api/reports/yearly/data/2024", headers=headers)
    weekly = client.get("/api/reports/weekly/data/2024-03-13", headers=headers)

    assert quarterly.json()["data"]["period"]["months"] == ["Apr", "May", "Jun"]
    assert yearly.json()["data"]["period"]["label"] == "2024"
    assert weekly.json()["data"]["period"]["start"] == "2024-03-10"
    assert "totalIncome" not in weekly.json()["data"]


def test_invalid_period_returns_400_echoing_the_token(client, make_user) -> None:
    user_id = make_user()

    response = client.get("/api/reports/monthly/data/2024-13", headers=_auth(user_id))

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Invalid period"
    assert body["token"] == "2024-13"
    assert "2024-13" in body["message"]


def test_missing_date_parameter_returns_400(client, make_user) -> None:
    user_id = make_user()

    response = client.get("/api/reports/yearly", headers=_auth(user_id))

    assert response.status_code == 400
    assert response.json()["message"] == "Date parameter is required"


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-token"}])
def test_reports_require_a_valid_token(client, headers) -> None:
    response = client.get("/api/reports/monthly?date=2024-03", headers=headers)

    assert response.status_code == 401
    assert response.json()["success"] is False


class _FailingStore:
    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise AggregationFailure(name, "no such table: entry_items")

        return _fail


def test_aggregation_failure_returns_500_without_store_detail(client, make_user) -> None:
    user_id = make_user()
    app.dependency_overrides[get_report_service] = lambda: ReportService(
        _FailingStore(), week_start=WeekStart.sunday, max_workers=2
    )

    response = client.get("/api/reports/monthly?date=2024-03", headers=_auth(user_id))

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Failed to generate report"
    assert body["error"].startswith("Aggregation step")
    assert "detail" not in body


def test_available_periods_endpoints(client, make_user, spend, monkeypatch) -> None:
    monkeypatch.setattr("main.local_today", lambda: date(2024, 3, 13))
    user_id = make_user()
    spend(user_id, date(2024, 3, 2), {"Food": 300})
    headers = _auth(user_id)

    months = client.get("/api/reports/monthly/available-months", headers=headers).json()
    quarters = client.get("/api/reports/quarters/available", headers=headers).json()
    years = client.get("/api/reports/years/available", headers=headers).json()
    weeks = client.get("/api/reports/weekly/available-periods", headers=headers).json()

    assert months["data"]["periods"][0]["value"] == "2024-03-01"
    assert quarters["data"]["quarters"][0]["value"] == "2024-Q1"
    assert years["data"]["years"][0]["totalAmount"] == 3
    assert len(weeks["data"]["periods"]) == 12
    assert weeks["data"]["periods"][0]["value"] == "2024-03-10"


def test_bill_and_entry_writes(client, make_user) -> None:
    user_id = make_user()
    headers = _auth(user_id)

    bill = client.post(
        "/api/bills",
        json={"bill_month": "2024-03-20", "total_balance_cents": 5_000_000},
        headers=headers,
    )
    assert bill.status_code == 200
    assert bill.json()["data"]["bill_month"] == "2024-03-01"

    entry = client.post(
        "/api/entries",
        json={
            "entry_date": "2024-03-04",
            "items": [
                {"category": " Food ", "amount_cents": 700_000},
                {"category": "  ", "amount_cents": 50},
            ],
        },
        headers=headers,
    )
    assert entry.status_code == 200
    data = entry.json()["data"]
    assert data["total_debit_cents"] == 700_050
    assert [item["category"] for item in data["items"]] == ["Food", None]

    empty = client.post(
        "/api/entries", json={"entry_date": "2024-03-04", "items": []}, headers=headers
    )
    assert empty.status_code == 422
    assert empty.json()["success"] is False
    assert empty.json()["error"] == "Validation failed"
    assert empty.json()["details"][0]["loc"] == ["body", "items"]

    report = client.get("/api/reports/monthly?date=2024-03", headers=headers).json()["data"]
    assert report["category"][-1] == {"category": "Uncategorized", "amount": 0.5}


def test_notifications_list_and_mark_read(client, session, make_user) -> None:
    asha = make_user()
    ravi = make_user(email="ravi@example.com", name="Ravi")
    report = {
        "type": "monthly",
        "period": {"label": "March 2024", "start": date(2024, 3, 1), "end": date(2024, 3, 31)},
        "totalExpense": Decimal("12000.00"),
        "savings": Decimal("38000.00"),
        "savingsRate": 76,
        "category": [{"category": "Food", "amount": Decimal("7000.00")}],
    }
    notification = NotificationService(session).create_report_notification(asha, report)

    listed = client.get("/api/notifications?unread=true", headers=_auth(asha)).json()
    assert [n["id"] for n in listed["data"]] == [notification.id]
    assert listed["data"][0]["data"]["routeUrl"] == "/reports/monthly-report"

    forbidden = client.post(
        f"/api/notifications/{notification.id}/read", headers=_auth(ravi)
    )
    assert forbidden.status_code == 404
    assert forbidden.json()["message"] == "Notification not found"

    marked = client.post(f"/api/notifications/{notification.id}/read", headers=_auth(asha))
    assert marked.json()["data"]["is_read"] is True
    assert client.get("/api/notifications?unread=true", headers=_auth(asha)).json()["data"] == []


def test_access_tokens_round_trip_and_reject_tampering() -> None:
    token = issue_access_token(42)
    assert verify_access_token(token) == 42
    assert verify_access_token(token + "x") is None
    assert verify_access_token("garbage") is None


def test_health_needs_no_token(client) -> None:
    response = client.get("/api/reports/health")
    assert response.status_code == 200
    assert response.json()["success"] is True


class _ExplodingStore:
    def __getattr__(self, name):
        def _explode(*args, **kwargs):
            raise KeyError(name)

        return _explode


def test_unexpected_errors_use_the_error_envelope(make_user) -> None:
    user_id = make_user()
    app.dependency_overrides[get_report_service] = lambda: ReportService(
        _ExplodingStore(), week_start=WeekStart.sunday, max_workers=2
    )
    try:
        client = TestClient(app, raise_server_exceptions=False)
        response = client.get("/api/reports/monthly?date=2024-03", headers=_auth(user_id))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    body = response.json()
    assert body == {
        "success": False,
        "message": "Internal server error",
        "error": "Unexpected error",
    }


def test_register_then_exchange_email_for_a_token(client) -> None:
    registered = client.post(
        "/api/auth/register", json={"email": "Meera@Example.com", "name": "Meera"}
    )
    assert registered.status_code == 200
    data = registered.json()["data"]
    assert data["email"] == "meera@example.com"
    assert verify_access_token(data["access_token"]) == data["id"]

    duplicate = client.post(
        "/api/auth/register", json={"email": "meera@example.com", "name": "Meera"}
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Email already registered"

    issued = client.post("/api/auth/token", json={"email": "meera@example.com"})
    token = issued.json()["data"]["access_token"]
    assert issued.json()["data"]["token_type"] == "bearer"
    bills = client.get("/api/bills", headers={"Authorization": f"Bearer {token}"})
    assert bills.status_code == 200
    assert bills.json()["data"] == []

    unknown = client.post("/api/auth/token", json={"email": "nobody@example.com"})
    assert unknown.status_code == 401
    assert unknown.json()["success"] is False


def test_list_bills_newest_first(client, make_user, income) -> None:
    user_id = make_user()
    income(user_id, date(2024, 2, 1), 100)
    income(user_id, date(2024, 3, 1), 200)

    response = client.get("/api/bills", headers=_auth(user_id))

    assert [bill["bill_month"] for bill in response.json()["data"]] == [
        "2024-03-01",
        "2024-02-01",
    ]
