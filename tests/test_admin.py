from datetime import datetime, timedelta

import pytest


@pytest.fixture
def placed_order(client, buyer, make_product, shipping_address):
    make_product("Camera", 200.0, ["photo"])
    make_product("Tripod", 45.0, ["photo"])
    client.post(
        "/api/cart/items", json={"product_id": "PRD00001", "quantity": 1}, headers=buyer["headers"]
    )
    client.post(
        "/api/cart/items", json={"product_id": "PRD00002", "quantity": 2}, headers=buyer["headers"]
    )
    response = client.post(
        "/api/orders",
        json={"shipping_address": shipping_address, "payment_method": "card"},
        headers=buyer["headers"],
    )
    return response.get_json()["order"]


def test_admin_routes_reject_other_roles(client, buyer, seller):
    for session in (buyer, seller):
        assert client.get("/api/admin/stats", headers=session["headers"]).status_code == 403


def test_admin_stats(client, admin, database, placed_order):
    database.orders.insert_one(
        {
            "order_id": "ORD09000",
            "buyer_id": "legacy",
            "product_ids": [],
            "items": [],
            "order_state": "delivered",
            "total": 10.0,
            "created_at": datetime.utcnow() - timedelta(days=90),
        }
    )

    body = client.get("/api/admin/stats", headers=admin["headers"]).get_json()

    assert body["product_count"] == 2
    assert body["order_count"] == 2
    assert body["total_sales"] == 300.0
    days = body["last_30_days_sales"]
    assert len(days) == 30
    assert days[0]["day"] == "Day 1"
    assert days[-1]["day"] == "Day 30"
    assert days[-1]["date"] == datetime.utcnow().date().isoformat()
    assert days[-1]["sales"] == 290.0
    assert sum(day["sales"] for day in days) == 290.0


def test_admin_products_pagination_and_search(client, admin, make_product):
    for index in range(5):
        make_product(f"Gizmo {index}", 10 + index)
    make_product("Sprocket", 3)

    page_two = client.get("/api/admin/products?page=2&limit=2", headers=admin["headers"])
    search = client.get("/api/admin/products?search=gizmo&limit=10", headers=admin["headers"])

    body = page_two.get_json()
    assert [p["product_id"] for p in body["products"]] == ["PRD00003", "PRD00004"]
    assert body["total_count"] == 6
    assert body["current_page"] == 2
    assert body["total_pages"] == 3
    assert search.get_json()["total_count"] == 5


def test_admin_products_small_page(client, admin, make_product):
    for index in range(5):
        make_product(f"Gadget {index}", 5 + index)

    body = client.get("/api/admin/products?page=1&limit=2", headers=admin["headers"]).get_json()

    assert len(body["products"]) == 2
    assert body["total_pages"] == 3


def test_admin_delete_product(client, admin, make_product):
    make_product("Discontinued", 5)

    response = client.delete("/api/admin/products/PRD00001", headers=admin["headers"])
    missing = client.delete("/api/admin/products/PRD00001", headers=admin["headers"])

    assert response.get_json() == {"success": True, "id": "PRD00001"}
    assert missing.status_code == 404


def test_toggle_flash_sale(client, admin, make_product):
    make_product("Deal", 5)

    explicit = client.put(
        "/api/admin/products/PRD00001/flash-sale",
        json={"flash_sale": True},
        headers=admin["headers"],
    )
    flipped = client.put(
        "/api/admin/products/PRD00001/flash-sale", json={}, headers=admin["headers"]
    )
    invalid = client.put(
        "/api/admin/products/PRD00001/flash-sale",
        json={"flash_sale": "maybe"},
        headers=admin["headers"],
    )

    assert explicit.get_json()["product"]["flash_sale"] is True
    assert flipped.get_json()["product"]["flash_sale"] is False
    assert invalid.status_code == 400


def test_admin_orders_listing(client, admin, placed_order):
    body = client.get("/api/admin/orders?search=ord0000", headers=admin["headers"]).get_json()
    none = client.get("/api/admin/orders?search=XYZ", headers=admin["headers"]).get_json()

    assert [order["order_id"] for order in body["orders"]] == ["ORD00001"]
    assert body["total_pages"] == 1
    assert none["orders"] == []
    assert none["total_pages"] == 0


def test_admin_order_tracking_includes_products(client, admin, placed_order):
    response = client.get("/api/admin/orders/ORD00001", headers=admin["headers"])
    missing = client.get("/api/admin/orders/ORD00404", headers=admin["headers"])

    order = response.get_json()["order"]
    assert {product["name"] for product in order["products"]} == {"Camera", "Tripod"}
    assert order["payment_method"] == "card"
    assert missing.status_code == 404


def test_update_order_status(client, admin, buyer, placed_order):
    confirmed = client.put(
        "/api/admin/orders/ORD00001/status",
        json={"status": "Confirmed"},
        headers=admin["headers"],
    )
    invalid = client.put(
        "/api/admin/orders/ORD00001/status",
        json={"status": "lost"},
        headers=admin["headers"],
    )
    missing = client.put(
        "/api/admin/orders/ORD00404/status",
        json={"status": "delivered"},
        headers=admin["headers"],
    )
    tracking = client.get("/api/orders/ORD00001/tracking", headers=buyer["headers"])

    assert confirmed.get_json()["order"]["order_state"] == "confirmed"
    assert invalid.status_code == 400
    assert missing.status_code == 404
    assert tracking.get_json()["order"]["order_state"] == "confirmed"
