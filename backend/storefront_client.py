"""Client-side session store and data-access layer for the storefront API.

Holds what a browser would keep on the device: the signed-in session and the
pre-login cart, persisted to a JSON file. Mutations against the API patch a
local query cache before the request resolves and roll the patch back when the
request fails.
"""
import copy
import json
import logging
import os
from typing import Callable, Dict, List, Optional
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
CART_QUERY = "fetch_cart_items"
DEFAULT_TIMEOUT = 10


def _default_auth_state() -> Dict[str, object]:
    return {
        "user": None,
        "token": None,
        "is_authenticated": False,
        "is_first_login": False,
    }


class LocalStore:
    """Auth session plus local cart, optionally persisted to ``path``."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.auth: Dict[str, object] = _default_auth_state()
        self.cart: Dict[str, int] = {}
        self.load()

    def load(self) -> None:
        if not self.path:
            return
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                saved = json.load(handle)
        except (OSError, ValueError):
            return
        if not isinstance(saved, dict):
            return

        auth = saved.get("auth")
        if isinstance(auth, dict):
            self.auth = {**_default_auth_state(), **auth}
        cart = saved.get("cart")
        if isinstance(cart, dict):
            self.cart = {
                str(product_id): int(quantity)
                for product_id, quantity in cart.items()
                if isinstance(quantity, int) and quantity > 0
            }

    def save(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump({"auth": self.auth, "cart": self.cart}, handle)
        except OSError as exc:
            logger.warning("Unable to persist storefront state: %s", exc)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth.get("is_authenticated") and self.auth.get("token"))

    @property
    def token(self) -> Optional[str]:
        return self.auth.get("token")

    @property
    def user(self) -> Optional[Dict]:
        return self.auth.get("user")

    @property
    def role(self) -> Optional[str]:
        user = self.user or {}
        return user.get("role")

    def set_credentials(self, user: Dict, token: str) -> None:
        self.auth = {
            "user": user,
            "token": token,
            "is_authenticated": True,
            "is_first_login": True,
        }
        self.save()

    def clear_credentials(self) -> None:
        self.auth = _default_auth_state()
        self.save()

    def update_user_metadata(self, **changes) -> None:
        if not self.auth.get("user"):
            return
        self.auth["user"] = {**self.auth["user"], **changes}
        self.save()

    def set_first_login_complete(self) -> None:
        self.auth["is_first_login"] = False
        self.save()

    def update_cart(self, cart: Dict[str, int]) -> None:
        self.cart = dict(cart or {})
        self.save()

    def add_to_local_cart(self, product_id: str, quantity: int = 1) -> None:
        self.cart[product_id] = self.cart.get(product_id, 0) + quantity
        self.save()

    def update_local_cart_item_quantity(self, product_id: str, quantity: int) -> None:
        if quantity > 0:
            self.cart[product_id] = quantity
        else:
            self.cart.pop(product_id, None)
        self.save()

    def clear_local_cart(self) -> None:
        self.cart = {}
        self.save()


class QueryCache:
    def __init__(self):
        self._entries: Dict[str, object] = {}

    def get(self, key: str, default=None):
        return self._entries.get(key, default)

    def set(self, key: str, value) -> None:
        self._entries[key] = value

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def patch(self, key: str, recipe: Callable[[object], None]) -> Callable[[], None]:
        """Apply ``recipe`` to a copy of the cached value and return an undo."""
        missing = key not in self._entries
        previous = self._entries.get(key)
        if missing:
            return lambda: None

        draft = copy.deepcopy(previous)
        recipe(draft)
        self._entries[key] = draft

        def undo():
            self._entries[key] = previous

        return undo


def cart_total(items: List[Dict]) -> float:
    total = 0.0
    for item in items or []:
        try:
            price = float(item.get("price", 0) or 0)
            quantity = int(item.get("quantity", 0) or 0)
        except (TypeError, ValueError):
            continue
        total += round(price * quantity, 2)
    return round(total, 2)


BUYER_ONLY_PREFIXES = ("/cart", "/checkout", "/order-confirmation")
SIGNED_IN_PREFIXES = ("/dashboard", "/order-tracking")


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def resolve_route(path: str, is_logged_in: bool, role: Optional[str]) -> Optional[str]:
    """Return the redirect target for ``path``, or ``None`` when access is allowed."""
    normalized = "/" + (path or "").split("?", 1)[0].strip("/")

    if any(_matches(normalized, prefix) for prefix in BUYER_ONLY_PREFIXES):
        return None if not is_logged_in or role == "buyer" else "/"
    if any(_matches(normalized, prefix) for prefix in SIGNED_IN_PREFIXES):
        return None if is_logged_in else "/authentication"
    if _matches(normalized, "/seller"):
        return None if is_logged_in and role == "seller" else "/"
    if _matches(normalized, "/admin"):
        return None if is_logged_in and role == "admin" else "/"
    return None


class StorefrontClient:
    def __init__(
        self,
        base_url: str,
        store: Optional[LocalStore] = None,
        session=None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.store = store or LocalStore()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.cache = QueryCache()

    def base_query(self, url: str, method: str = "GET", body: Optional[Dict] = None):
        normalized_method = str(method or "").upper()
        if normalized_method not in SUPPORTED_METHODS:
            return {"error": f"Unsupported method {method}"}

        headers = {"Accept": "application/json"}
        if self.store.token:
            headers["Authorization"] = f"Bearer {self.store.token}"

        options: Dict[str, object] = {"headers": headers, "timeout": self.timeout}
        if body is not None:
            if normalized_method == "GET":
                options["params"] = body
            else:
                options["json"] = body

        try:
            response = self.session.request(
                normalized_method, urljoin(self.base_url, url.lstrip("/")), **options
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", normalized_method, url, exc)
            return {"error": str(exc)}

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            message = (
                data.get("message")
                if isinstance(data, dict) and data.get("message")
                else f"Request failed with status {response.status_code}"
            )
            return {"error": message, "status": response.status_code}

        return {"data": data}

    # Auth

    def _start_session(self, result):
        if "error" in result:
            return result
        payload = result["data"] or {}
        self.store.set_credentials(payload.get("user"), payload.get("access_token"))
        self.cache.invalidate()
        if self.store.auth.get("is_first_login"):
            merged = self.merge_local_cart()
            if "error" in merged:
                logger.warning("Failed to merge carts: %s", merged["error"])
        return {"data": payload}

    def sign_up(self, email: str, password: str, display_name: str, role: str = "buyer"):
        result = self.base_query(
            "/api/auth/signup",
            "POST",
            {
                "email": email,
                "password": password,
                "display_name": display_name,
                "role": role,
            },
        )
        return self._start_session(result)

    def sign_in(self, email: str, password: str):
        result = self.base_query(
            "/api/auth/signin", "POST", {"email": email, "password": password}
        )
        return self._start_session(result)

    def sign_out(self):
        result = {"data": None}
        if self.store.is_authenticated:
            result = self.base_query("/api/auth/signout", "POST")
            if "error" in result:
                result = {"error": "Failed to sign out"}
        self.store.clear_credentials()
        self.cache.invalidate()
        return result

    def get_session(self):
        result = self.base_query("/api/auth/session")
        if "error" in result:
            return {"error": "Failed to get session"}
        return result

    # Cart

    def fetch_cart_items(self):
        if not self.store.is_authenticated:
            return {"data": dict(self.store.cart)}

        result = self.base_query("/api/cart")
        if "error" in result:
            return {"error": "Failed to fetch cart items"}
        cart = dict(result["data"].get("cart") or {})
        self.cache.set(CART_QUERY, cart)
        return {"data": cart}

    def add_to_cart(self, product_id: str, quantity: int = 1):
        if not self.store.is_authenticated:
            self.store.add_to_local_cart(product_id, quantity)
            return {"data": dict(self.store.cart)}

        def recipe(draft):
            draft[product_id] = draft.get(product_id, 0) + quantity

        undo = self.cache.patch(CART_QUERY, recipe)
        result = self.base_query(
            "/api/cart/items", "POST", {"product_id": product_id, "quantity": quantity}
        )
        if "error" in result:
            undo()
            return {"error": "Failed to add item to cart"}
        cart = dict(result["data"].get("cart") or {})
        self.cache.set(CART_QUERY, cart)
        return {"data": cart}

    def update_cart_item_quantity(self, product_id: str, quantity: int):
        if not self.store.is_authenticated:
            self.store.update_local_cart_item_quantity(product_id, quantity)
            return {"data": dict(self.store.cart)}

        def recipe(draft):
            if quantity > 0:
                draft[product_id] = quantity
            else:
                draft.pop(product_id, None)

        undo = self.cache.patch(CART_QUERY, recipe)
        result = self.base_query(
            f"/api/cart/items/{product_id}", "PUT", {"quantity": quantity}
        )
        if "error" in result:
            undo()
            return {"error": "Failed to update cart item quantity"}
        cart = dict(result["data"].get("cart") or {})
        self.cache.set(CART_QUERY, cart)
        return {"data": cart}

    def clear_cart(self):
        if not self.store.is_authenticated:
            self.store.clear_local_cart()
            return {"data": {}}

        result = self.base_query("/api/cart", "DELETE")
        if "error" in result:
            return {"error": "Failed to clear cart"}
        self.cache.set(CART_QUERY, {})
        return {"data": {}}

    def merge_local_cart(self):
        if not self.store.is_authenticated:
            return {"error": "User not authenticated"}

        result = self.base_query(
            "/api/cart/merge", "POST", {"items": dict(self.store.cart)}
        )
        if "error" in result:
            return {"error": "Failed to merge local cart"}

        cart = dict(result["data"].get("cart") or {})
        self.cache.set(CART_QUERY, cart)
        self.store.clear_local_cart()
        self.store.set_first_login_complete()
        return {"data": cart}

    # Checkout

    def place_order(self, shipping_address: Dict[str, str], payment_method: str):
        result = self.base_query(
            "/api/orders",
            "POST",
            {"shipping_address": shipping_address, "payment_method": payment_method},
        )
        if "error" in result:
            return {"error": "Failed to place order"}
        self.cache.invalidate(CART_QUERY)
        return {"data": {"order_id": result["data"].get("order_id")}}

    def resolve_route(self, path: str) -> Optional[str]:
        return resolve_route(path, self.store.is_authenticated, self.store.role)
