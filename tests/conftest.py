"""pytest fixtures: app factory over an in-memory MongoDB."""

from urllib.parse import urlparse

import mongomock
import pytest

from app import create_app

ADMIN_EMAIL = "root@storefront.test"
PASSWORD = "secret123"

SHIPPING_ADDRESS = {
    "full_name": "Ada Buyer",
    "address": "1 Market Street",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


@pytest.fixture
def database():
    return mongomock.MongoClient().storefront_test


@pytest.fixture
def app(database, tmp_path):
    return create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "BCRYPT_LOG_ROUNDS": 4,
            "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
            "RESEND_ORDER_EMAIL_API_KEY": "",
        },
        database=database,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signup(client):
    def _signup(email, role="buyer", display_name="", password=PASSWORD):
        response = client.post(
            "/api/auth/signup",
            json={
                "email": email,
                "password": password,
                "display_name": display_name,
                "role": role,
            },
        )
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return {
            "token": body["access_token"],
            "user": body["user"],
            "headers": {"Authorization": f"Bearer {body['access_token']}"},
        }

    return _signup


@pytest.fixture
def buyer(signup):
    return signup("buyer@storefront.test", display_name="Ada Buyer")


@pytest.fixture
def seller(signup):
    return signup("seller@storefront.test", role="seller", display_name="Sam Seller")


@pytest.fixture
def admin(signup):
    return signup(ADMIN_EMAIL, display_name="Root")


@pytest.fixture
def make_product(client, seller):
    def _make_product(name, price, categories=(), headers=None, **extra):
        payload = {
            "name": name,
            "price": price,
            "description": f"{name} description",
            "categories": list(categories),
            "featured_image": f"https://cdn.storefront.test/{name.lower().replace(' ', '-')}.png",
        }
        payload.update(extra)
        response = client.post(
            "/api/seller/products", json=payload, headers=headers or seller["headers"]
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["product"]

    return _make_product


class FlaskResponse:
    def __init__(self, response):
        self.status_code = response.status_code
        self._payload = response.get_json(silent=True)

    def json(self):
        if self._payload is None:
            raise ValueError("response body is not JSON")
        return self._payload


class FlaskSession:
    """Routes StorefrontClient requests into the Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []

    def request(self, method, url, headers=None, json=None, params=None, timeout=None):
        path = urlparse(url).path
        self.calls.append((method, path))
        response = self.test_client.open(
            path, method=method, headers=headers, json=json, query_string=params
        )
        return FlaskResponse(response)


@pytest.fixture
def flask_session(client):
    return FlaskSession(client)


@pytest.fixture
def shipping_address():
    return dict(SHIPPING_ADDRESS)
