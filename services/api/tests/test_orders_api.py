from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

AUTH = {"Authorization": "Bearer tok-1"}
OTHER_AUTH = {"Authorization": "Bearer tok-2"}


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    db_path = tmp_path / "cantina_orders.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("CANTINA_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("CANTINA_GATEWAY_ADAPTER", "mock")
    monkeypatch.setenv("CANTINA_ENV", "development")
    monkeypatch.setenv("CANTINA_API_TOKENS", "tok-1:u-1,tok-2:u-2")
    monkeypatch.delenv("CANTINA_MEAL_COST", raising=False)
    monkeypatch.delenv("CANTINA_DELIVERY_COST", raising=False)
    monkeypatch.delenv("CANTINA_PRICE_MARGIN", raising=False)
    monkeypatch.delenv("CANTINA_PRICE_STEP", raising=False)

    from services.api.app.main import app

    with TestClient(app) as c:
        yield c


def _order_payload(*, package_id: str = "pack-3", meals: int = 3, description: str = "") -> dict:
    return {
        "package": {
            "id": package_id,
            "name": "Pack",
            "meals": meals,
            "price": "29.99",
            "description": description,
        },
        "meals": [
            {"meal_id": "m-1", "name": "Potaje", "quantity": meals - 1},
            {"meal_id": "m-2", "name": "Ropa vieja", "quantity": 1},
        ],
        "delivery_address": {"street": "Calle 1"},
        "personal_note": "Sin cebolla",
    }


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_create_order_requires_auth(client: TestClient) -> None:
    assert client.post("/api/orders", json=_order_payload()).status_code == 401
    bad = {"Authorization": "Bearer unknown"}
    assert client.post("/api/orders", json=_order_payload(), headers=bad).status_code == 401


def test_create_and_fetch_order(client: TestClient) -> None:
    created = client.post("/api/orders", json=_order_payload(), headers=AUTH)
    assert created.status_code == 200

    data = created.json()
    assert data["status"] == "pending"
    assert data["total"] == "29.99"
    assert data["user_id"] == "u-1"
    assert len(data["deliveries"]) == 3
    assert [d["meals"][0]["meal_id"] for d in data["deliveries"]] == ["m-1", "m-1", "m-2"]

    fetched = client.get(f"/api/orders/{data['id']}", headers=AUTH)
    assert fetched.status_code == 200
    assert fetched.json()["id"] == data["id"]

    assert client.get(f"/api/orders/{data['id']}", headers=OTHER_AUTH).status_code == 404
    assert client.get("/api/orders/missing", headers=AUTH).status_code == 404


def test_custom_order_is_priced_from_counts(client: TestClient) -> None:
    payload = _order_payload(package_id="custom", meals=7, description="in 4 days")
    data = client.post("/api/orders", json=payload, headers=AUTH).json()

    assert data["total"] == "60.99"
    assert [len(d["meals"]) for d in data["deliveries"]] == [2, 2, 2, 1]


def test_create_order_rejects_meal_mismatch(client: TestClient) -> None:
    payload = _order_payload()
    payload["package"]["meals"] = 5
    assert client.post("/api/orders", json=payload, headers=AUTH).status_code == 400


def test_cancel_order(client: TestClient) -> None:
    order = client.post("/api/orders", json=_order_payload(), headers=AUTH).json()

    assert client.post(f"/api/orders/{order['id']}/cancel", headers=OTHER_AUTH).status_code == 404

    cancelled = client.post(f"/api/orders/{order['id']}/cancel", headers=AUTH)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert {d["status"] for d in cancelled.json()["deliveries"]} == {"failed"}

    again = client.post(f"/api/orders/{order['id']}/cancel", headers=AUTH)
    assert again.status_code == 409


def test_delivery_lifecycle_completes_order(client: TestClient) -> None:
    payload = _order_payload(meals=2)
    order = client.post("/api/orders", json=payload, headers=AUTH).json()
    first, second = order["deliveries"]

    early = client.post(
        f"/api/deliveries/{first['id']}/status", json={"status": "delivered"}, headers=AUTH
    )
    assert early.status_code == 409

    meal_id = first["meals"][0]["id"]
    ready = client.post(f"/api/deliveries/{first['id']}/meals/{meal_id}/complete", headers=AUTH)
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"

    cancel = client.post(f"/api/orders/{order['id']}/cancel", headers=AUTH)
    assert cancel.status_code == 409

    second_meal = second["meals"][0]["id"]
    client.post(f"/api/deliveries/{second['id']}/meals/{second_meal}/complete", headers=AUTH)

    for delivery in (first, second):
        response = client.post(
            f"/api/deliveries/{delivery['id']}/status",
            json={"status": "delivered"},
            headers=AUTH,
        )
        assert response.status_code == 200
        assert response.json()["delivered_at"] is not None

    final = client.get(f"/api/orders/{order['id']}", headers=AUTH).json()
    assert final["status"] == "completed"

    terminal = client.post(
        f"/api/deliveries/{first['id']}/status", json={"status": "failed"}, headers=AUTH
    )
    assert terminal.status_code == 409


def test_deliveries_are_owner_only(client: TestClient) -> None:
    order = client.post("/api/orders", json=_order_payload(), headers=AUTH).json()
    delivery = order["deliveries"][0]
    meal_id = delivery["meals"][0]["id"]

    moved = client.post(
        f"/api/deliveries/{delivery['id']}/status",
        json={"status": "in_progress"},
        headers=OTHER_AUTH,
    )
    assert moved.status_code == 404

    completed = client.post(
        f"/api/deliveries/{delivery['id']}/meals/{meal_id}/complete", headers=OTHER_AUTH
    )
    assert completed.status_code == 404

    untouched = client.get(f"/api/orders/{order['id']}", headers=AUTH).json()
    assert untouched["deliveries"][0]["status"] == "pending"
    assert untouched["deliveries"][0]["meals"][0]["status"] == "pending"

    cancelled = client.post(f"/api/orders/{order['id']}/cancel", headers=AUTH)
    assert cancelled.status_code == 200


def test_delivery_status_validation(client: TestClient) -> None:
    order = client.post("/api/orders", json=_order_payload(), headers=AUTH).json()
    delivery_id = order["deliveries"][0]["id"]

    unknown = client.post(
        f"/api/deliveries/{delivery_id}/status", json={"status": "lost"}, headers=AUTH
    )
    assert unknown.status_code == 400

    missing = client.post("/api/deliveries/missing/status", json={"status": "ready"}, headers=AUTH)
    assert missing.status_code == 404


def test_schedule_preview(client: TestClient) -> None:
    response = client.post(
        "/api/deliveries/preview",
        json={
            "package": {"id": "custom", "name": "Custom", "meals": 7, "description": "in 3 days"},
            "meals": [
                {"meal_id": "a", "name": "A", "quantity": 4},
                {"meal_id": "b", "name": "B", "quantity": 3},
            ],
            "today": "2026-03-02",
        },
    )
    assert response.status_code == 200

    data = response.json()
    assert data["total_meals"] == 7
    assert [d["scheduled_date"] for d in data["deliveries"]] == [
        "2026-03-04",
        "2026-03-05",
        "2026-03-06",
    ]
    assert [[m["meal_id"] for m in d["meals"]] for d in data["deliveries"]] == [
        ["a", "a", "a"],
        ["a", "b"],
        ["b", "b"],
    ]


def test_package_price(client: TestClient) -> None:
    response = client.get("/api/packages/price", params={"meals": 3, "deliveries": 3})
    assert response.status_code == 200
    assert response.json() == {"meals": 3, "deliveries": 3, "price": "29.99"}

    zero = client.get("/api/packages/price", params={"meals": 0, "deliveries": 3})
    assert zero.json()["price"] == "0.00"
