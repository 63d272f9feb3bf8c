import io
import os
from urllib.parse import urlparse

import pytest


def image(name="photo.png", content=b"\x89PNG fake image bytes"):
    return (io.BytesIO(content), name)


@pytest.fixture
def other_seller(signup):
    return signup("rival@storefront.test", role="seller")


def test_add_product_with_uploaded_images(app, client, seller):
    response = client.post(
        "/api/seller/products",
        data={
            "name": "Ceramic Mug",
            "price": "12.499",
            "description": "Holds coffee",
            "categories": "Kitchen, Gifts",
            "featured_image": image(),
            "other_images": [image("side.jpg"), image("top.webp")],
        },
        headers=seller["headers"],
        content_type="multipart/form-data",
    )

    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["product_id"] == "PRD00001"
    assert product["price"] == 12.5
    assert product["seller_id"] == seller["user"]["id"]
    assert product["categories"] == ["kitchen", "gifts"]
    assert len(product["other_images"]) == 2

    featured_path = urlparse(product["featured_image"]).path
    served = client.get(featured_path)
    assert served.status_code == 200
    assert served.data == b"\x89PNG fake image bytes"
    stored = os.path.join(app.config["UPLOAD_FOLDER"], os.path.basename(featured_path))
    assert os.path.exists(stored)


def test_add_product_validation(client, seller):
    no_name = client.post(
        "/api/seller/products",
        json={"price": 3, "featured_image": "https://cdn.test/a.png"},
        headers=seller["headers"],
    )
    bad_price = client.post(
        "/api/seller/products",
        json={"name": "Thing", "price": -1, "featured_image": "https://cdn.test/a.png"},
        headers=seller["headers"],
    )
    no_image = client.post(
        "/api/seller/products", json={"name": "Thing", "price": 3}, headers=seller["headers"]
    )
    bad_format = client.post(
        "/api/seller/products",
        data={"name": "Thing", "price": "3", "featured_image": image("notes.txt")},
        headers=seller["headers"],
        content_type="multipart/form-data",
    )

    assert no_name.status_code == 400
    assert bad_price.status_code == 400
    assert no_image.status_code == 400
    assert bad_format.status_code == 400


def test_buyers_cannot_add_products(client, buyer):
    response = client.post(
        "/api/seller/products",
        json={"name": "Thing", "price": 3, "featured_image": "https://cdn.test/a.png"},
        headers=buyer["headers"],
    )

    assert response.status_code == 403


def test_seller_products_and_lookup(client, seller, other_seller, make_product):
    make_product("Own Item", 10)
    make_product("Rival Item", 11, headers=other_seller["headers"])

    listing = client.get("/api/seller/products", headers=seller["headers"]).get_json()
    own = client.get("/api/seller/products/PRD00001", headers=seller["headers"])
    rival = client.get("/api/seller/products/PRD00002", headers=seller["headers"])
    missing = client.get("/api/seller/products/PRD00099", headers=seller["headers"])

    assert listing["products"] == [
        {"product_id": "PRD00001", "name": "Own Item", "price": 10.0, "total_sales": 0}
    ]
    assert own.get_json()["product"]["name"] == "Own Item"
    assert rival.status_code == 403
    assert missing.get_json() == {"product": None}


def test_update_product_fields(client, seller, make_product):
    make_product("Old Name", 10, ["misc"], other_images=["https://cdn.test/1.png", "https://cdn.test/2.png"])

    response = client.put(
        "/api/seller/products/PRD00001",
        json={
            "name": "New Name",
            "price": "15.25",
            "categories": ["Home", "home", "Decor"],
            "other_images": ["https://cdn.test/2.png"],
        },
        headers=seller["headers"],
    )

    product = response.get_json()["product"]
    assert product["name"] == "New Name"
    assert product["price"] == 15.25
    assert product["categories"] == ["home", "decor"]
    assert product["other_images"] == ["https://cdn.test/2.png"]


def test_update_product_replaces_uploaded_image(app, client, seller):
    created = client.post(
        "/api/seller/products",
        data={"name": "Poster", "price": "8", "featured_image": image("first.png")},
        headers=seller["headers"],
        content_type="multipart/form-data",
    ).get_json()["product"]
    old_file = os.path.join(
        app.config["UPLOAD_FOLDER"], os.path.basename(urlparse(created["featured_image"]).path)
    )

    response = client.put(
        "/api/seller/products/PRD00001",
        data={"featured_image": image("second.png", b"new bytes")},
        headers=seller["headers"],
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    assert response.get_json()["product"]["featured_image"] != created["featured_image"]
    assert not os.path.exists(old_file)


def test_update_product_guards(client, seller, other_seller, admin, make_product):
    make_product("Guarded", 10)

    rival = client.put(
        "/api/seller/products/PRD00001", json={"price": 1}, headers=other_seller["headers"]
    )
    empty = client.put("/api/seller/products/PRD00001", json={}, headers=seller["headers"])
    by_admin = client.put(
        "/api/seller/products/PRD00001", json={"price": 9}, headers=admin["headers"]
    )

    assert rival.status_code == 403
    assert empty.status_code == 400
    assert by_admin.get_json()["product"]["price"] == 9.0


def test_delete_product(client, seller, other_seller, make_product):
    make_product("Doomed", 10)

    rival = client.delete("/api/seller/products/PRD00001", headers=other_seller["headers"])
    own = client.delete("/api/seller/products/PRD00001", headers=seller["headers"])

    assert rival.status_code == 403
    assert own.get_json() == {"success": True, "product_id": "PRD00001"}
    assert client.get("/api/products/PRD00001").status_code == 404


def test_seller_stats_follow_sales(client, seller, buyer, make_product, shipping_address):
    make_product("Widget", 10.0)
    make_product("Gadget", 2.5)
    client.post(
        "/api/cart/items", json={"product_id": "PRD00001", "quantity": 3}, headers=buyer["headers"]
    )
    client.post("/api/cart/items", json={"product_id": "PRD00002"}, headers=buyer["headers"])
    client.post(
        "/api/orders",
        json={"shipping_address": shipping_address, "payment_method": "cash"},
        headers=buyer["headers"],
    )

    products = client.get("/api/seller/stats/products", headers=seller["headers"]).get_json()
    sales = client.get("/api/seller/stats/sales", headers=seller["headers"]).get_json()
    orders = client.get("/api/seller/stats/orders", headers=seller["headers"]).get_json()

    assert products == {"total_products": 2}
    assert sales == {"total_sales": 32.5}
    assert orders == {"total_orders": 4}
