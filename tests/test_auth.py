import hashlib


def test_signup_returns_session_with_gravatar(client):
    response = client.post(
        "/api/auth/signup",
        json={
            "email": " New.Buyer@Storefront.TEST ",
            "password": "secret123",
            "display_name": "New Buyer",
            "role": "buyer",
        },
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["access_token"]
    user = body["user"]
    assert user["email"] == "new.buyer@storefront.test"
    assert user["display_name"] == "New Buyer"
    assert user["role"] == "buyer"
    assert user["cart"] == {}
    digest = hashlib.md5(b"new.buyer@storefront.test").hexdigest()
    assert user["avatar_url"] == f"https://www.gravatar.com/avatar/{digest}?d=identicon"


def test_signup_rejects_duplicate_email(client, buyer):
    response = client.post(
        "/api/auth/signup",
        json={"email": "buyer@storefront.test", "password": "another1"},
    )

    assert response.status_code == 409
    assert response.get_json()["message"] == "User already exists"


def test_signup_validates_input(client):
    bad_email = client.post("/api/auth/signup", json={"email": "nope", "password": "secret123"})
    short_password = client.post(
        "/api/auth/signup", json={"email": "a@b.test", "password": "123"}
    )

    assert bad_email.status_code == 400
    assert short_password.status_code == 400


def test_signup_cannot_self_assign_admin(signup):
    session = signup("sneaky@storefront.test", role="admin")

    assert session["user"]["role"] == "buyer"


def test_configured_admin_email_becomes_admin(admin):
    assert admin["user"]["role"] == "admin"


def test_seller_role_is_kept(seller):
    assert seller["user"]["role"] == "seller"


def test_signin_with_valid_and_invalid_credentials(client, buyer):
    ok = client.post(
        "/api/auth/signin",
        json={"email": "BUYER@storefront.test", "password": "secret123"},
    )
    wrong = client.post(
        "/api/auth/signin",
        json={"email": "buyer@storefront.test", "password": "wrong-password"},
    )
    missing = client.post("/api/auth/signin", json={"email": "buyer@storefront.test"})

    assert ok.status_code == 200
    assert ok.get_json()["user"]["email"] == "buyer@storefront.test"
    assert wrong.status_code == 401
    assert missing.status_code == 400


def test_session_reflects_token(client, buyer):
    anonymous = client.get("/api/auth/session")
    signed_in = client.get("/api/auth/session", headers=buyer["headers"])

    assert anonymous.get_json() == {"session": None}
    assert signed_in.get_json()["session"]["user"]["email"] == "buyer@storefront.test"


def test_signout_revokes_token(client, buyer):
    response = client.post("/api/auth/signout", headers=buyer["headers"])
    session = client.get("/api/auth/session", headers=buyer["headers"])
    cart = client.get("/api/cart", headers=buyer["headers"])

    assert response.status_code == 200
    assert session.status_code == 200
    assert session.get_json() == {"session": None}
    assert cart.status_code == 401
    assert cart.get_json()["message"] == "Session has been signed out."


def test_session_with_malformed_token(client):
    response = client.get("/api/auth/session", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 200
    assert response.get_json() == {"session": None}


def test_protected_route_requires_token(client):
    response = client.get("/api/cart")

    assert response.status_code == 401
    assert response.get_json()["message"] == "User not authenticated"
