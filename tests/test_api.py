import time

from fastapi.testclient import TestClient

from api import create_app
from database import Base, build_engine, build_session_factory
from store import SQLDocumentStore


def _store(tmp_path) -> SQLDocumentStore:
    engine = build_engine(f"sqlite:///{tmp_path / 'api.db'}")
    Base.metadata.create_all(engine)
    return SQLDocumentStore(build_session_factory(engine))


def _client(tmp_path) -> TestClient:
    return TestClient(create_app(store=_store(tmp_path), mode="push"))


def _summary_when(client: TestClient, predicate, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        summary = client.get("/summary").json()
        if predicate(summary) or time.monotonic() > deadline:
            return summary
        time.sleep(0.02)


def test_requests_without_session_are_unauthorized(tmp_path) -> None:
    with _client(tmp_path) as client:
        assert client.get("/expenses").status_code == 401
        assert client.post("/expenses", json={"amount": 10}).status_code == 401
        assert client.put("/budget", json={"amount": 10}).status_code == 401

        summary = client.get("/summary").json()
        assert summary["expense_count"] == 0
        assert summary["breakdown"] == []


def test_expense_lifecycle_updates_summary(tmp_path) -> None:
    with _client(tmp_path) as client:
        response = client.post("/session", json={"user_id": "u1", "email": "ana@example.com"})
        assert response.status_code == 200

        created = client.post(
            "/expenses", json={"amount": 12000, "category_id": "transport", "note": "Taxi"}
        )
        assert created.status_code == 201
        expense_id = created.json()["id"]

        summary = _summary_when(client, lambda s: s["expense_count"] == 1)
        assert summary["totals"]["today"] == 12000
        assert summary["breakdown"][0]["name"] == "Transporte"
        assert summary["breakdown"][0]["percent"] == 100.0
        assert summary["recent"][0]["note"] == "Taxi"
        assert summary["error"] is None

        fetched = client.get(f"/expenses/{expense_id}")
        assert fetched.status_code == 200
        assert fetched.json()["amount"] == 12000
        assert client.get("/expenses/missing").status_code == 404

        listed = client.get("/expenses").json()
        assert [e["id"] for e in listed] == [expense_id]

        assert client.put(f"/expenses/{expense_id}", json={"amount": 3000}).status_code == 204
        summary = _summary_when(client, lambda s: s["totals"]["today"] == 3000)
        assert summary["totals"]["today"] == 3000

        assert client.delete(f"/expenses/{expense_id}").status_code == 204
        assert client.delete(f"/expenses/{expense_id}").status_code == 204
        summary = _summary_when(client, lambda s: s["expense_count"] == 0)
        assert summary["expense_count"] == 0


def test_invalid_expenses_are_rejected(tmp_path) -> None:
    with _client(tmp_path) as client:
        client.post("/session", json={"user_id": "u1"})

        assert client.post("/expenses", json={"amount": 0}).status_code == 422
        assert client.post("/expenses", json={"amount": 5, "note": "x" * 101}).status_code == 422
        future = client.post("/expenses", json={"amount": 5, "date": "2999-01-01T00:00:00"})
        assert future.status_code == 400
        assert client.put("/expenses/missing", json={"amount": 5}).status_code == 404


def test_budget_and_period(tmp_path) -> None:
    with _client(tmp_path) as client:
        client.post("/session", json={"user_id": "u1"})

        assert client.put("/budget", json={"amount": -1}).status_code == 400
        response = client.put("/budget", json={"amount": 500000})
        assert response.status_code == 200
        assert response.json()["summary"]["budget"]["budget"] == 500000

        weekly = client.put("/period", json={"period": "week"}).json()
        assert weekly["period"] == "week"
        assert len(weekly["series"]) == 7

        yearly = client.put("/period", json={"period": "year"}).json()
        assert [b["label"] for b in yearly["series"]][:3] == ["Ene", "Feb", "Mar"]

        assert client.put("/period", json={"period": "decade"}).status_code == 422


def test_custom_categories(tmp_path) -> None:
    with _client(tmp_path) as client:
        client.post("/session", json={"user_id": "u1"})

        icons = client.get("/categories/icons").json()
        assert len(icons) == 24

        created = client.post("/categories", json={"name": "Mascotas", "icon": icons[0]})
        assert created.status_code == 201
        category_id = created.json()["id"]
        assert category_id.startswith("custom_")

        names = [c["name"] for c in client.get("/categories").json()]
        assert names[-1] == "Mascotas"

        assert client.post("/categories", json={"name": "   "}).status_code == 400
        assert client.post("/categories", json={"name": "x" * 16}).status_code == 400
        assert client.delete("/categories/food").status_code == 400

        assert client.delete(f"/categories/{category_id}").status_code == 204
        names = [c["name"] for c in client.get("/categories").json()]
        assert "Mascotas" not in names


def test_profile_and_preferences(tmp_path) -> None:
    with _client(tmp_path) as client:
        client.post("/session", json={"user_id": "u1", "email": "ana@example.com"})

        assert client.get("/profile").json() == {"display_name": "ana"}
        assert client.put("/profile", json={"display_name": " "}).status_code == 400
        assert client.put("/profile", json={"display_name": "Ana"}).json() == {
            "display_name": "Ana"
        }

        assert client.get("/preferences").json() == {
            "notifications_enabled": True,
            "currency": "COP",
        }
        updated = client.put("/preferences", json={"currency": "usd"}).json()
        assert updated["currency"] == "USD"


def test_sign_out_clears_the_view(tmp_path) -> None:
    with _client(tmp_path) as client:
        client.post("/session", json={"user_id": "u1"})
        client.post("/expenses", json={"amount": 10})
        _summary_when(client, lambda s: s["expense_count"] == 1)

        assert client.delete("/session").status_code == 204
        summary = client.get("/summary").json()
        assert summary["expense_count"] == 0
        assert client.get("/expenses").status_code == 401

        assert client.post("/session", json={"user_id": "bad/id"}).status_code == 422


def test_expenses_grouped_by_day(tmp_path) -> None:
    with _client(tmp_path) as client:
        assert client.get("/expenses/daily").status_code == 401
        client.post("/session", json={"user_id": "u1"})

        client.post("/expenses", json={"amount": 100, "date": "2024-01-03T09:00:00"})
        client.post("/expenses", json={"amount": 40, "date": "2024-01-05T08:00:00"})
        client.post("/expenses", json={"amount": 60, "date": "2024-01-05T19:30:00"})
        _summary_when(client, lambda s: s["expense_count"] == 3)

        days = client.get("/expenses/daily").json()
        assert [d["date"] for d in days] == ["2024-01-05", "2024-01-03"]
        assert [d["total"] for d in days] == [100, 100]
        assert [len(d["expenses"]) for d in days] == [2, 1]
        assert days[0]["expenses"][0]["amount"] == 60


def test_midnight_refresh_job_is_registered(tmp_path) -> None:
    app = create_app(store=_store(tmp_path), mode="push")
    with TestClient(app):
        job = app.state.scheduler.scheduler.get_job("view_refresh")
        assert job is not None
        assert "hour='0'" in str(job.trigger)
