import pytest
from fastapi.testclient import TestClient

from database import build_engine, create_schema, make_sessionmaker
from main import app, get_db
from services import forecast_cache


@pytest.fixture
def client():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    TestingSession = make_sessionmaker(engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    forecast_cache.invalidate("test_setup")
    # not entered as a context manager so the scheduler never starts
    yield TestClient(app)
    app.dependency_overrides.clear()
    forecast_cache.invalidate("test_teardown")


def create_hosting(client) -> dict:
    response = client.post(
        "/api/subscriptions",
        json={
            "title": "Hosting",
            "customer_name": "Acme",
            "monthly_amount_cents": 5000,
            "start_date": "2024-01-01",
            "billing_day": 15,
        },
    )
    assert response.status_code == 201
    return response.json()


FORECAST_QUERY = {"months": 3, "start": "2024-01", "today": "2024-01-05"}


def test_forecast_reflects_cycle_actions(client) -> None:
    sub = create_hosting(client)

    body = client.get("/api/forecast", params=FORECAST_QUERY).json()
    assert [b["month"] for b in body] == ["2024-01", "2024-02", "2024-03"]
    assert [b["total_cents"] for b in body] == [5000, 5000, 5000]
    assert body[0]["entries"][0]["id"] == f"sub-{sub['id']}-2024-01"

    paid = client.post(
        f"/api/subscriptions/{sub['id']}/cycles/2024/2/paid", json={"method": "pix"}
    )
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert paid.json()["financial_entry_id"] is not None

    body = client.get("/api/forecast", params=FORECAST_QUERY).json()
    assert [b["total_cents"] for b in body] == [5000, 0, 5000]

    skipped = client.post(
        f"/api/subscriptions/{sub['id']}/cycles/2024/3/skip", json={"reason": "Pause"}
    )
    assert skipped.status_code == 200
    body = client.get("/api/forecast", params=FORECAST_QUERY).json()
    assert [b["total_cents"] for b in body] == [5000, 0, 0]

    pending = client.post(f"/api/subscriptions/{sub['id']}/cycles/2024/2/pending")
    assert pending.status_code == 200
    body = client.get("/api/forecast", params=FORECAST_QUERY).json()
    assert [b["total_cents"] for b in body] == [5000, 5000, 0]

    history = client.get(f"/api/subscriptions/{sub['id']}/payments").json()
    assert [(p["month"], p["status"]) for p in history] == [(2, "pending"), (3, "skipped")]


def test_cycle_errors_map_to_http_status(client) -> None:
    sub = create_hosting(client)

    missing = client.post("/api/subscriptions/999/cycles/2024/2/paid", json={})
    assert missing.status_code == 404

    client.post(f"/api/subscriptions/{sub['id']}/cycles/2024/2/paid", json={})
    again = client.post(f"/api/subscriptions/{sub['id']}/cycles/2024/2/paid", json={})
    assert again.status_code == 400
    assert again.json()["detail"] == "Cycle already paid"

    bad_month = client.post(f"/api/subscriptions/{sub['id']}/cycles/2024/13/paid", json={})
    assert bad_month.status_code == 400


def test_partial_payment_through_api(client) -> None:
    created = client.post(
        "/api/entries",
        json={
            "type": "income",
            "description": "Website",
            "amount_cents": 20000,
            "due_date": "2024-03-10",
        },
    )
    assert created.status_code == 201
    entry_id = created.json()["id"]

    portion = client.post(f"/api/entries/{entry_id}/payments", json={"amount_cents": 12000})
    assert portion.status_code == 200
    assert portion.json()["payment_status"] == "paid"

    body = client.get(
        "/api/forecast", params={"months": 1, "start": "2024-03", "today": "2024-03-01"}
    ).json()
    assert body[0]["total_cents"] == 8000
    assert body[0]["entries"][0]["status"] == "partial"

    too_much = client.post(f"/api/entries/{entry_id}/payments", json={"amount_cents": 9000})
    assert too_much.status_code == 400
    assert client.post("/api/entries/999/payments", json={"amount_cents": 1}).status_code == 404


def test_invalid_forecast_parameters(client) -> None:
    assert client.get("/api/forecast", params={"mode": "everything"}).status_code == 400
    assert client.get("/api/forecast", params={"start": "2024-13"}).status_code == 400
    assert client.get("/api/forecast", params={"months": "six"}).status_code == 400


def test_empty_horizon_returns_empty_list(client) -> None:
    create_hosting(client)
    response = client.get("/api/forecast", params={"months": 0})
    assert response.status_code == 200
    assert response.json() == []


def test_overdue_alerts_and_csv_export(client) -> None:
    create_hosting(client)

    alerts = client.get(
        "/api/alerts/overdue", params={"lookback": 2}
    )
    assert alerts.status_code == 200

    export = client.get("/api/forecast/export.csv", params=FORECAST_QUERY)
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    lines = export.text.strip().splitlines()
    assert lines[0] == "Month,DueDate,Source,Description,Customer,Status,Amount"
    assert len(lines) == 4


def test_summary_endpoint(client) -> None:
    client.post(
        "/api/entries",
        json={
            "type": "expense",
            "description": "Domain",
            "amount_cents": 3000,
            "payment_status": "paid",
        },
    )
    body = client.get("/api/summary").json()
    assert body["period"] == "all"
    assert body["paid_expenses"] == 3000
    assert body["balance"] == -3000

    assert client.get("/api/summary", params={"period": "custom"}).status_code == 400
