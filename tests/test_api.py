from fastapi.testclient import TestClient

from conftest import auth_headers
from main import app, get_db

ALICE = auth_headers("alice")
BOB = auth_headers("bob")


def post_expense(client, amount, category="food", headers=ALICE, **extra):
    body = {"type": "expense", "category": category, "amount": amount, **extra}
    return client.post("/api/transactions", json=body, headers=headers)


def test_health_needs_no_identity(client) -> None:
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json()["status"] == "OK"

    res = client.get("/api/health/db")
    assert res.status_code == 200
    assert res.json()["database"] == "Connected"


def test_missing_or_bad_token_is_unauthorized(client) -> None:
    res = client.get("/api/categories")
    assert res.status_code == 401
    assert "message" in res.json()

    res = client.get("/api/categories", headers={"Authorization": "Bearer forged"})
    assert res.status_code == 401

    res = client.get("/api/categories", headers={"Authorization": "Basic abc"})
    assert res.status_code == 401


def test_category_endpoints(client) -> None:
    res = client.get("/api/categories", headers=ALICE)
    assert res.status_code == 200
    categories = res.json()["categories"]
    assert len(categories) == 14
    assert categories[0] == {
        "id": "default-salary",
        "name": "salary",
        "type": "income",
        "icon": "💼",
        "color": "#10B981",
        "is_default": True,
        "created_at": None,
        "updated_at": None,
    }

    res = client.post(
        "/api/categories", json={"name": " Pets ", "type": "expense"}, headers=ALICE
    )
    assert res.status_code == 201
    pets = res.json()["category"]
    assert pets["name"] == "Pets"
    assert pets["is_default"] is False

    res = client.post(
        "/api/categories", json={"name": "Pets", "type": "expense"}, headers=ALICE
    )
    assert res.status_code == 400
    assert res.json()["message"] == "Category already exists"

    res = client.post(
        "/api/categories", json={"name": "Pets", "type": "income"}, headers=ALICE
    )
    assert res.status_code == 201

    res = client.put(
        f"/api/categories/{pets['id']}", json={"color": "#abcdef"}, headers=ALICE
    )
    assert res.status_code == 200
    assert res.json()["category"]["color"] == "#abcdef"

    res = client.put(f"/api/categories/{pets['id']}", json={"name": "x"}, headers=BOB)
    assert res.status_code == 404

    assert len(client.get("/api/categories", headers=ALICE).json()["categories"]) == 16
    assert len(client.get("/api/categories", headers=BOB).json()["categories"]) == 14


def test_builtin_categories_are_immutable(client) -> None:
    res = client.put("/api/categories/default-food", json={"name": "x"}, headers=ALICE)
    assert res.status_code == 400
    assert res.json()["message"] == "Cannot edit default categories"

    res = client.delete("/api/categories/default-food", headers=ALICE)
    assert res.status_code == 400
    assert res.json()["message"] == "Cannot delete default categories"

    res = client.delete("/api/categories/unknown", headers=ALICE)
    assert res.status_code == 404
    assert res.json() == {"message": "Category not found"}


def test_validation_errors_are_400_with_field_detail(client) -> None:
    res = post_expense(client, -1)
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    assert body["errors"][0]["field"] == "amount"

    res = post_expense(client, "1.00", description="x" * 201)
    assert res.status_code == 400

    res = post_expense(client, "1.00", category="nope")
    assert res.status_code == 400
    assert res.json()["errors"] == [
        {"field": "category", "message": "Unknown category 'nope'"}
    ]

    res = client.post(
        "/api/categories", json={"name": "x" * 31, "type": "expense"}, headers=ALICE
    )
    assert res.status_code == 400


def test_transaction_crud(client) -> None:
    res = post_expense(client, "19.99", description="Pizza", date="2025-03-10T12:00:00")
    assert res.status_code == 201
    txn = res.json()["transaction"]
    assert txn["amount"] == "19.99"
    assert txn["date"] == "2025-03-10T12:00:00"

    res = client.get(f"/api/transactions/{txn['id']}", headers=ALICE)
    assert res.status_code == 200

    res = client.put(
        f"/api/transactions/{txn['id']}", json={"amount": "25.50"}, headers=ALICE
    )
    assert res.status_code == 200
    assert res.json()["transaction"]["amount"] == "25.50"
    assert res.json()["transaction"]["description"] == "Pizza"

    res = client.put(
        f"/api/transactions/{txn['id']}", json={"amount": "1"}, headers=BOB
    )
    assert res.status_code == 404
    res = client.delete(f"/api/transactions/{txn['id']}", headers=BOB)
    assert res.status_code == 404

    res = client.delete(f"/api/transactions/{txn['id']}", headers=ALICE)
    assert res.status_code == 200
    res = client.get(f"/api/transactions/{txn['id']}", headers=ALICE)
    assert res.status_code == 404


def test_transaction_pagination(client) -> None:
    for day in range(1, 13):
        post_expense(client, "1.00", date=f"2025-03-{day:02d}T09:00:00")

    res = client.get("/api/transactions", headers=ALICE)
    body = res.json()
    assert body["total_transactions"] == 12
    assert body["total_pages"] == 2
    assert body["limit"] == 10
    assert len(body["transactions"]) == 10
    assert body["transactions"][0]["date"] == "2025-03-12T09:00:00"

    body = client.get("/api/transactions?page=3&limit=5", headers=ALICE).json()
    assert body["total_pages"] == 3
    assert len(body["transactions"]) == 2

    body = client.get("/api/transactions?page=9&limit=5", headers=ALICE).json()
    assert body["transactions"] == []
    assert body["current_page"] == 9

    assert client.get("/api/transactions?page=0", headers=ALICE).status_code == 400
    assert client.get("/api/transactions?limit=abc", headers=ALICE).status_code == 400


def test_dashboard_food_scenario(client) -> None:
    res = client.post(
        "/api/categories", json={"name": "food", "type": "expense"}, headers=ALICE
    )
    food_id = res.json()["category"]["id"]
    ids = [
        post_expense(client, amount).json()["transaction"]["id"]
        for amount in ("10.00", "20.00", "30.00")
    ]
    client.post(
        "/api/transactions",
        json={"type": "income", "category": "salary", "amount": "100"},
        headers=ALICE,
    )

    stats = client.get("/api/dashboard/stats", headers=ALICE).json()
    assert stats["monthly_stats"] == {
        "income": "100.00",
        "expenses": "60.00",
        "savings": "40.00",
    }
    assert stats["balance"] == "40.00"
    assert {"type": "expense", "category": "food", "total": "60.00"} in stats[
        "category_stats"
    ]
    assert len(stats["recent_transactions"]) == 4
    assert len(stats["yearly_stats"]) == 24

    res = client.delete(f"/api/categories/{food_id}", headers=ALICE)
    assert res.status_code == 400
    assert res.json()["transaction_count"] == 3

    usage = client.get(f"/api/categories/{food_id}/usage", headers=ALICE).json()
    assert usage["usage"]["total_amount"] == "60.00"
    assert usage["usage"]["transaction_count"] == 3
    assert usage["usage"]["average_amount"] == "20.00"

    for txn_id in ids:
        client.delete(f"/api/transactions/{txn_id}", headers=ALICE)
    res = client.delete(f"/api/categories/{food_id}", headers=ALICE)
    assert res.status_code == 200

    bob_stats = client.get("/api/dashboard/stats", headers=BOB).json()
    assert bob_stats["balance"] == "0.00"
    assert bob_stats["recent_transactions"] == []


def test_unexpected_errors_are_generic_500() -> None:
    def broken_db():
        raise RuntimeError("connection string leaked")
        yield

    app.dependency_overrides[get_db] = broken_db
    try:
        client = TestClient(app, raise_server_exceptions=False)
        res = client.get("/api/categories", headers=ALICE)
    finally:
        app.dependency_overrides.clear()

    assert res.status_code == 500
    assert res.json() == {"message": "Internal server error"}
    assert "leaked" not in res.text


def test_security_headers_are_set(client) -> None:
    res = client.get("/api/health")

    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert "max-age" in res.headers["Strict-Transport-Security"]


def test_requests_over_the_window_limit_get_429(client) -> None:
    for _ in range(100):
        assert client.get("/api/health").status_code == 200

    res = client.get("/api/health")

    assert res.status_code == 429
    assert res.json() == {"message": "Too many requests, please try again later."}
    assert res.headers["X-Content-Type-Options"] == "nosniff"
