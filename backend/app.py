import hashlib
import json
import math
import os
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlparse
from uuid import uuid4

import bcrypt
import resend
from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from flask_pymongo import PyMongo
from pymongo import ReturnDocument
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import secure_filename

load_dotenv()

DEFAULT_ADMIN_EMAIL = (
    os.getenv("DEFAULT_ADMIN_EMAIL", "admin@storefront.local") or "admin@storefront.local"
).strip().lower()

ALLOWED_USER_ROLES = {"buyer", "seller", "admin"}
ORDER_STATES = ("pending", "confirmed", "delivered", "returned", "cancelled")
FLASH_SALE_LIMIT = 6
JUST_FOR_YOU_LIMIT = 10
RELATED_PRODUCTS_LIMIT = 6
MIN_PASSWORD_LENGTH = 6
SALES_WINDOW_DAYS = 30


def create_app(test_config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` lets callers hand in an already connected database object
    (tests pass an in-memory one); otherwise Flask-PyMongo connects using
    ``MONGO_URI``.
    """
    app = Flask(__name__)

    # Honor proxy headers so upload URLs keep the public origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(
        hours=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_HOURS", "1"))
    )
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/storefront"
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv("UPLOAD_FOLDER") or os.path.join(
        app.root_path, "uploads"
    )
    app.config["ALLOWED_IMAGE_EXTENSIONS"] = {"png", "jpg", "jpeg", "gif", "webp"}
    app.config["BCRYPT_LOG_ROUNDS"] = int(os.getenv("BCRYPT_LOG_ROUNDS", "12"))
    app.config["DEFAULT_ADMIN_EMAIL"] = DEFAULT_ADMIN_EMAIL
    app.config["RESEND_ORDER_EMAIL_API_KEY"] = (
        os.getenv("RESEND_ORDER_EMAIL_API_KEY") or ""
    ).strip()
    app.config["ORDER_SENDER_EMAIL"] = (
        os.getenv("ORDER_SENDER_EMAIL", "orders@storefront.local")
        or "orders@storefront.local"
    )

    if test_config:
        app.config.update(test_config)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:4173",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    jwt = JWTManager(app)
    if database is None:
        database = PyMongo(app).db
    db = database

    try:
        db.users.create_index("email", unique=True)
        db.products.create_index("product_id", unique=True)
        db.products.create_index("seller_id")
        db.orders.create_index("order_id", unique=True)
        db.orders.create_index([("buyer_id", 1), ("created_at", -1)])
        db.revoked_tokens.create_index("jti")
    except Exception as exc:
        app.logger.warning("Unable to ensure storefront indexes: %s", exc)

    # --- Session handling ---

    @jwt.token_in_blocklist_loader
    def is_token_revoked(jwt_header, jwt_payload) -> bool:
        return db.revoked_tokens.find_one({"jti": jwt_payload.get("jti")}) is not None

    @jwt.unauthorized_loader
    def handle_missing_token(reason):
        return jsonify({"message": "User not authenticated"}), 401

    @jwt.invalid_token_loader
    def handle_invalid_token(reason):
        return jsonify({"message": "Invalid session token."}), 401

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "Session expired. Please sign in again."}), 401

    @jwt.revoked_token_loader
    def handle_revoked_token(jwt_header, jwt_payload):
        return jsonify({"message": "Session has been signed out."}), 401

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"message": "Resource not found."}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"message": "Method not allowed."}), 405

    @app.errorhandler(413)
    def handle_payload_too_large(error):
        return (
            jsonify(
                {"message": f"Uploads are limited to {max_upload_mb} MB per request."}
            ),
            413,
        )

    # --- Helpers ---

    email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    def normalize_email(value: Optional[str]) -> str:
        return str(value or "").strip().lower()

    def is_valid_email(value: Optional[str]) -> bool:
        normalized = normalize_email(value)
        return bool(normalized and email_regex.match(normalized))

    def normalize_role(value: Optional[str]) -> str:
        normalized = str(value or "").strip().lower()
        return normalized if normalized in ALLOWED_USER_ROLES else "buyer"

    def get_user_role(user_document) -> str:
        if not user_document:
            return "buyer"

        email = normalize_email(user_document.get("email"))
        if email == app.config["DEFAULT_ADMIN_EMAIL"]:
            return "admin"

        return normalize_role(user_document.get("role", "buyer"))

    def load_current_user():
        current_email = normalize_email(get_jwt_identity())
        if not current_email:
            return None
        return db.users.find_one({"email": current_email})

    def require_user():
        user_document = load_current_user()
        if not user_document:
            return None, (jsonify({"message": "Account not found."}), 404)
        return user_document, None

    def require_role(*roles: str):
        allowed = {normalize_role(role) for role in roles if role}

        current_user, account_error = require_user()
        if account_error:
            return None, account_error

        user_role = get_user_role(current_user)
        if user_role == "admin" or not allowed or user_role in allowed:
            return current_user, None

        return (
            None,
            (
                jsonify(
                    {"message": "You need additional permissions to perform this action."}
                ),
                403,
            ),
        )

    def require_admin_user():
        return require_role("admin")

    def build_gravatar_url(email: str) -> str:
        digest = hashlib.md5(normalize_email(email).encode("utf-8")).hexdigest()
        return f"https://www.gravatar.com/avatar/{digest}?d=identicon"

    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=app.config["BCRYPT_LOG_ROUNDS"])
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def password_matches(password: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        if isinstance(hashed, str):
            hashed = hashed.encode("utf-8")
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed)
        except ValueError:
            return False

    def format_timestamp(value) -> Optional[str]:
        if isinstance(value, datetime):
            return value.isoformat() + "Z"
        return None

    def serialize_user(user_document) -> Dict[str, object]:
        if not user_document:
            return {}
        email = normalize_email(user_document.get("email"))
        return {
            "id": str(user_document.get("_id")),
            "email": email,
            "display_name": user_document.get("display_name") or email,
            "role": get_user_role(user_document),
            "avatar_url": user_document.get("avatar_url") or build_gravatar_url(email),
            "phone": user_document.get("phone") or "",
            "cart": dict(user_document.get("cart") or {}),
            "created_at": format_timestamp(user_document.get("created_at")),
        }

    def issue_session(user_document):
        email = normalize_email(user_document.get("email"))
        token = create_access_token(identity=email)
        return {"access_token": token, "user": serialize_user(user_document)}

    def next_sequence_identifier(counter_name: str, prefix: str) -> str:
        counter = db.counters.find_one_and_update(
            {"_id": counter_name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return f"{prefix}{int(counter['seq']):05d}"

    def safe_float(value, default=0.0):
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return default
        if math.isfinite(numeric):
            return numeric
        return default

    def safe_positive_int(value, default=0):
        try:
            numeric = int(float(value))
        except (TypeError, ValueError):
            return default
        return max(default, numeric)

    def parse_quantity(value) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value) if value.is_integer() else None
        if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
            return int(value.strip())
        return None

    def parse_bool(value) -> Optional[bool]:
        if isinstance(value, bool):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False
        return None

    def is_valid_product_key(product_id: str) -> bool:
        return bool(product_id) and "." not in product_id and not product_id.startswith("$")

    def parse_json_list(value):
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                return []
            if candidate.startswith("["):
                try:
                    parsed = json.loads(candidate)
                except ValueError:
                    return None
                return parsed if isinstance(parsed, list) else None
            return [candidate]
        return None

    def normalize_categories(raw_value) -> List[str]:
        values = parse_json_list(raw_value) or []
        categories: List[str] = []
        for entry in values:
            for part in str(entry or "").split(","):
                name = part.strip().lower()
                if name and name not in categories:
                    categories.append(name)
        return categories

    def read_payload() -> Dict:
        if request.form:
            payload = request.form.to_dict()
            for key in ("categories", "other_images"):
                many = request.form.getlist(key)
                if len(many) > 1:
                    payload[key] = many
            return payload
        return request.get_json(silent=True) or {}

    def read_pagination(default_limit: int = 20, limit_key: str = "limit"):
        page = max(safe_positive_int(request.args.get("page"), 0), 1)
        limit = safe_positive_int(request.args.get(limit_key), 0) or default_limit
        limit = min(max(limit, 1), 100)
        return page, limit

    def pagination_envelope(key: str, documents, serializer, total: int, page: int, limit: int):
        return {
            key: [serializer(document) for document in documents],
            "total_count": total,
            "current_page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    # --- Upload storage ---

    def allowed_image_extension(filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        if not extension:
            return False
        return extension in app.config["ALLOWED_IMAGE_EXTENSIONS"]

    def save_uploaded_image(image_file, prefix: str):
        if not image_file or not getattr(image_file, "filename", ""):
            return None, "An image file is required."

        original_filename = secure_filename(image_file.filename)
        if not original_filename:
            return None, "Please choose a valid file name."

        if not allowed_image_extension(original_filename):
            return (
                None,
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files.",
            )

        extension = os.path.splitext(original_filename)[1].lower()
        unique_filename = f"{secure_filename(prefix)}-{uuid4().hex}{extension}"
        destination = os.path.join(app.config["UPLOAD_FOLDER"], unique_filename)

        try:
            image_file.save(destination)
        except OSError:
            return None, "We could not store the uploaded image. Please try again."

        return build_upload_url(unique_filename), None

    def save_uploaded_images(image_files, prefix: str):
        saved_urls: List[str] = []
        for index, image_file in enumerate(image_files or []):
            if not image_file or not getattr(image_file, "filename", ""):
                continue
            image_url, image_error = save_uploaded_image(image_file, f"{prefix}-{index}")
            if image_error:
                remove_uploaded_image(saved_urls)
                return [], image_error
            saved_urls.append(image_url)
        return saved_urls, None

    def remove_uploaded_image(image_url):
        if not image_url:
            return

        if isinstance(image_url, (list, tuple, set)):
            for item in image_url:
                remove_uploaded_image(item)
            return

        path = urlparse(str(image_url)).path
        if not path.startswith("/uploads/"):
            return
        filename = secure_filename(path[len("/uploads/"):])
        if not filename:
            return

        target = os.path.join(app.config["UPLOAD_FOLDER"], filename)
        try:
            os.remove(target)
        except OSError:
            return

    def build_upload_url(filename: Optional[str]) -> str:
        if not filename:
            return ""
        return urljoin(request.host_url, f"uploads/{filename}")

    # --- Catalog helpers ---

    def serialize_product(product_document):
        if not product_document:
            return None
        return {
            "product_id": product_document.get("product_id"),
            "seller_id": product_document.get("seller_id") or "",
            "name": product_document.get("name") or "",
            "price": round(safe_float(product_document.get("price")), 2),
            "featured_image": product_document.get("featured_image") or "",
            "other_images": list(product_document.get("other_images") or []),
            "description": product_document.get("description") or "",
            "categories": list(product_document.get("categories") or []),
            "flash_sale": bool(product_document.get("flash_sale")),
            "total_sales": safe_positive_int(product_document.get("total_sales"), 0),
            "created_at": format_timestamp(product_document.get("created_at")),
        }

    def fetch_product(product_id: str):
        normalized_id = str(product_id or "").strip()
        if not normalized_id:
            return None, (jsonify({"message": "Product ID is required"}), 400)

        product_document = db.products.find_one({"product_id": normalized_id})
        if not product_document:
            return None, (jsonify({"message": "Product not found."}), 404)

        return product_document, None

    def can_manage_product(product_document, user_document) -> bool:
        if not product_document or not user_document:
            return False

        user_role = get_user_role(user_document)
        if user_role == "admin":
            return True

        if user_role != "seller":
            return False

        return str(product_document.get("seller_id") or "") == str(user_document["_id"])

    def load_managed_product(product_id: str, user_document):
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return None, load_error
        if not can_manage_product(product_document, user_document):
            return (
                None,
                (jsonify({"message": "You can only manage your own products."}), 403),
            )
        return product_document, None

    def parse_price(raw_price):
        try:
            price_value = round(float(raw_price), 2)
        except (TypeError, ValueError):
            return None, "Price must be a valid number."
        if not math.isfinite(price_value) or price_value <= 0:
            return None, "Price must be greater than zero."
        return price_value, None

    def delete_product_document(product_document, actor_document):
        db.products.delete_one({"_id": product_document["_id"]})
        remove_uploaded_image(product_document.get("featured_image"))
        remove_uploaded_image(product_document.get("other_images"))
        app.logger.info(
            "Product %s deleted by %s",
            product_document.get("product_id"),
            normalize_email(actor_document.get("email")),
        )

    # --- Cart and order helpers ---

    def expand_cart(cart: Dict[str, int]):
        product_ids = list(cart.keys())
        product_map = {}
        if product_ids:
            for product in db.products.find({"product_id": {"$in": product_ids}}):
                product_map[product["product_id"]] = product

        items = []
        total = 0.0
        for product_id, quantity in cart.items():
            product = product_map.get(product_id)
            if not product:
                continue
            price = round(safe_float(product.get("price")), 2)
            line_total = round(price * quantity, 2)
            total += line_total
            items.append(
                {
                    "product_id": product_id,
                    "name": product.get("name") or "",
                    "price": price,
                    "featured_image": product.get("featured_image") or "",
                    "quantity": quantity,
                    "subtotal": line_total,
                }
            )
        return items, round(total, 2)

    def cart_response(user_document):
        cart = dict(user_document.get("cart") or {})
        items, total = expand_cart(cart)
        return {"cart": cart, "items": items, "total": total}

    ADDRESS_FIELDS = ("full_name", "address", "city", "postal_code", "country")
    ADDRESS_FIELD_ALIASES = {
        "full_name": ("full_name", "fullName", "name"),
        "address": ("address", "line1", "street"),
        "city": ("city", "town"),
        "postal_code": ("postal_code", "postalCode", "postcode", "zip"),
        "country": ("country",),
    }

    def normalize_shipping_address(payload) -> Dict[str, str]:
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                payload = {}
        if not isinstance(payload, dict):
            return {}
        normalized: Dict[str, str] = {}
        for field in ADDRESS_FIELDS:
            for alias in ADDRESS_FIELD_ALIASES[field]:
                value = str(payload.get(alias) or "").strip()
                if value:
                    normalized[field] = value
                    break
            else:
                normalized[field] = ""
        return normalized

    def serialize_order(order_document):
        if not order_document:
            return None
        items = [
            {
                "product_id": item.get("product_id"),
                "name": item.get("name") or "",
                "price": round(safe_float(item.get("price")), 2),
                "quantity": safe_positive_int(item.get("quantity"), 1),
            }
            for item in order_document.get("items") or []
        ]
        return {
            "order_id": order_document.get("order_id"),
            "buyer_id": order_document.get("buyer_id") or "",
            "product_ids": list(order_document.get("product_ids") or []),
            "items": items,
            "order_state": order_document.get("order_state") or "pending",
            "shipping_address": order_document.get("shipping_address") or {},
            "payment_method": order_document.get("payment_method") or "",
            "total": round(safe_float(order_document.get("total")), 2),
            "created_at": format_timestamp(order_document.get("created_at")),
        }

    def send_email_via_resend(payload: Dict[str, object], api_key: str):
        configured_api_key = (api_key or "").strip()
        if not configured_api_key:
            return False, "Resend API key is not configured."

        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = configured_api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            return False, str(exc)
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)

        return True, None

    def send_order_confirmation_email(order_document, recipient_email: str):
        order_id = order_document.get("order_id")
        lines = [
            f"{item.get('quantity')} x {item.get('name')} @ {safe_float(item.get('price')):.2f}"
            for item in order_document.get("items") or []
        ]
        text_body = "\n".join(
            [f"Thanks for your order {order_id}.", ""]
            + lines
            + ["", f"Total: {safe_float(order_document.get('total')):.2f}"]
        )
        html_rows = "".join(f"<li>{line}</li>" for line in lines)
        html_body = (
            f"<h1>Order {order_id} received</h1>"
            f"<ul>{html_rows}</ul>"
            f"<p><strong>Total: {safe_float(order_document.get('total')):.2f}</strong></p>"
        )
        payload: Dict[str, object] = {
            "from": f"Storefront <{app.config['ORDER_SENDER_EMAIL']}>",
            "to": [recipient_email],
            "subject": f"Order {order_id} confirmation",
            "html": html_body,
            "text": text_body,
        }
        email_sent, email_error = send_email_via_resend(
            payload, app.config["RESEND_ORDER_EMAIL_API_KEY"]
        )
        if not email_sent:
            app.logger.warning(
                "Order confirmation for %s not sent: %s", order_id, email_error
            )
        return email_sent, email_error

    # --- Profile helpers ---

    def store_avatar(user_document):
        image_file = request.files.get("avatar")
        if not image_file or not getattr(image_file, "filename", ""):
            return None, (jsonify({"message": "Please choose an image to upload."}), 400)

        avatar_url, image_error = save_uploaded_image(
            image_file, f"avatar-{user_document['_id']}"
        )
        if image_error:
            return None, (jsonify({"message": image_error}), 400)

        previous_avatar = user_document.get("avatar_url")
        db.users.update_one(
            {"_id": user_document["_id"]},
            {"$set": {"avatar_url": avatar_url, "avatar_updated_at": datetime.utcnow()}},
        )
        if previous_avatar and previous_avatar != avatar_url:
            remove_uploaded_image(previous_avatar)

        return avatar_url, None

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    # Auth
    @app.route("/api/auth/signup", methods=["POST"])
    def sign_up():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))
        display_name = str(
            payload.get("display_name") or payload.get("displayName") or ""
        ).strip()

        if not is_valid_email(email):
            return jsonify({"message": "A valid email address is required."}), 400
        if not password:
            return jsonify({"message": "A password is required."}), 400
        if len(password) < MIN_PASSWORD_LENGTH:
            return (
                jsonify(
                    {
                        "message": f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters."
                    }
                ),
                400,
            )

        if db.users.find_one({"email": email}):
            return jsonify({"message": "User already exists"}), 409

        requested_role = normalize_role(payload.get("role"))
        if requested_role == "admin":
            requested_role = "buyer"
        assigned_role = (
            "admin" if email == app.config["DEFAULT_ADMIN_EMAIL"] else requested_role
        )

        now = datetime.utcnow()
        user_document = {
            "email": email,
            "display_name": display_name or email,
            "password": hash_password(password),
            "role": assigned_role,
            "avatar_url": build_gravatar_url(email),
            "phone": "",
            "cart": {},
            "created_at": now,
            "last_login_at": now,
        }
        insert_result = db.users.insert_one(user_document)
        user_document["_id"] = insert_result.inserted_id

        app.logger.info("Registered %s account for %s", assigned_role, email)
        return jsonify(issue_session(user_document)), 201

    @app.route("/api/auth/signin", methods=["POST"])
    def sign_in():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        user = db.users.find_one({"email": email})
        if not user or not password_matches(password, user.get("password")):
            return jsonify({"message": "Invalid credentials"}), 401

        db.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"last_login_at": datetime.utcnow()}},
        )
        user = db.users.find_one({"_id": user["_id"]})

        return jsonify(issue_session(user))

    @app.route("/api/auth/signout", methods=["POST"])
    @jwt_required()
    def sign_out():
        token_payload = get_jwt()
        db.revoked_tokens.insert_one(
            {"jti": token_payload.get("jti"), "revoked_at": datetime.utcnow()}
        )
        return jsonify({"message": "Signed out."})

    @app.route("/api/auth/session", methods=["GET"])
    def get_session():
        # Revoked, expired or malformed tokens read as signed out.
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError):
            return jsonify({"session": None})
        user_document = load_current_user()
        if not user_document:
            return jsonify({"session": None})
        return jsonify({"session": {"user": serialize_user(user_document)}})

    # Catalog
    @app.route("/api/products/flash-sale", methods=["GET"])
    def get_flash_sale_products():
        cursor = db.products.find({"flash_sale": True}).limit(FLASH_SALE_LIMIT)
        return jsonify({"products": [serialize_product(doc) for doc in cursor]})

    @app.route("/api/products/just-for-you", methods=["GET"])
    def get_just_for_you_products():
        cursor = db.products.find().limit(JUST_FOR_YOU_LIMIT)
        return jsonify({"products": [serialize_product(doc) for doc in cursor]})

    @app.route("/api/products/search", methods=["GET"])
    def search_products():
        search_term = (request.args.get("query") or request.args.get("q") or "").strip()
        category = (request.args.get("category") or "").strip().lower()
        price_range = (
            request.args.get("price_range") or request.args.get("priceRange") or ""
        ).strip()
        sort_by = (request.args.get("sort_by") or request.args.get("sortBy") or "").strip()

        query: Dict[str, object] = {
            "name": re.compile(re.escape(search_term), re.IGNORECASE)
        }
        if category:
            query["categories"] = category

        if price_range:
            minimum, _, maximum = price_range.partition("-")
            price_filter: Dict[str, float] = {}
            if minimum.strip():
                price_filter["$gte"] = safe_float(minimum, 0.0)
            if maximum.strip():
                price_filter["$lte"] = safe_float(maximum, 0.0)
            if price_filter:
                query["price"] = price_filter

        cursor = db.products.find(query)
        if sort_by == "price-low-high":
            cursor = cursor.sort("price", 1)
        elif sort_by == "price-high-low":
            cursor = cursor.sort("price", -1)

        return jsonify({"products": [serialize_product(doc) for doc in cursor]})

    @app.route("/api/products/batch", methods=["GET"])
    def get_multiple_products():
        product_ids: List[str] = []
        for raw_value in request.args.getlist("ids"):
            for part in raw_value.split(","):
                candidate = part.strip()
                if candidate and candidate not in product_ids:
                    product_ids.append(candidate)

        if not product_ids:
            return jsonify({"products": []})

        cursor = db.products.find({"product_id": {"$in": product_ids}})
        return jsonify({"products": [serialize_product(doc) for doc in cursor]})

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error
        return jsonify({"product": serialize_product(product_document)})

    @app.route("/api/products/<product_id>/related", methods=["GET"])
    def get_related_products(product_id: str):
        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        categories = list(product_document.get("categories") or [])
        if not categories:
            return jsonify({"products": []})

        cursor = db.products.find(
            {
                "product_id": {"$ne": product_document["product_id"]},
                "categories": {"$in": categories},
            }
        ).limit(RELATED_PRODUCTS_LIMIT)
        return jsonify({"products": [serialize_product(doc) for doc in cursor]})

    @app.route("/api/categories/<category_name>/products", methods=["GET"])
    def get_products_by_category(category_name: str):
        page, page_size = read_pagination(limit_key="page_size")
        normalized = category_name.strip().lower()

        query: Dict[str, object] = {}
        if normalized != "all":
            query["categories"] = normalized

        total = db.products.count_documents(query)
        cursor = (
            db.products.find(query)
            .sort("name", 1)
            .skip((page - 1) * page_size)
            .limit(page_size)
        )
        return jsonify(
            {
                "products": [serialize_product(doc) for doc in cursor],
                "total_count": total,
            }
        )

    # Cart
    @app.route("/api/cart", methods=["GET"])
    @jwt_required()
    def fetch_cart_items():
        current_user, permission_error = require_role("buyer")
        if permission_error:
            return permission_error
        return jsonify(cart_response(current_user))

    @app.route("/api/cart/items", methods=["POST"])
    @jwt_required()
    def add_to_cart():
        current_user, permission_error = require_role("buyer")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        product_id = str(payload.get("product_id") or payload.get("productId") or "").strip()
        quantity = parse_quantity(payload.get("quantity", 1))

        if quantity is None or quantity <= 0:
            return jsonify({"message": "Quantity must be a positive whole number."}), 400

        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        updated_user = db.users.find_one_and_update(
            {"_id": current_user["_id"]},
            {"$inc": {f"cart.{product_document['product_id']}": quantity}},
            return_document=ReturnDocument.AFTER,
        )
        return jsonify(cart_response(updated_user))

    @app.route("/api/cart/items/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_cart_item_quantity(product_id: str):
        current_user, permission_error = require_role("buyer")
        if permission_error:
            return permission_error

        if not is_valid_product_key(product_id):
            return jsonify({"message": "Invalid product identifier."}), 400

        payload = request.get_json(silent=True) or {}
        quantity = parse_quantity(payload.get("quantity"))
        if quantity is None:
            return jsonify({"message": "Quantity must be a whole number."}), 400

        if quantity > 0:
            _, load_error = fetch_product(product_id)
            if load_error:
                return load_error
            update = {"$set": {f"cart.{product_id}": quantity}}
        else:
            update = {"$unset": {f"cart.{product_id}": ""}}

        updated_user = db.users.find_one_and_update(
            {"_id": current_user["_id"]},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return jsonify(cart_response(updated_user))

    @app.route("/api/cart", methods=["DELETE"])
    @jwt_required()
    def clear_cart():
        current_user, permission_error = require_role("buyer")
        if permission_error:
            return permission_error

        db.users.update_one({"_id": current_user["_id"]}, {"$set": {"cart": {}}})
        return jsonify({"cart": {}, "items": [], "total": 0.0})

    @app.route("/api/cart/merge", methods=["POST"])
    @jwt_required()
    def merge_local_cart():
        current_user, permission_error = require_role("buyer")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        local_items = payload.get("items")
        if local_items is None:
            local_items = payload.get("cart") or {}
        if not isinstance(local_items, dict):
            return jsonify({"message": "Local cart must map product ids to quantities."}), 400

        candidates: Dict[str, int] = {}
        for raw_id, raw_quantity in local_items.items():
            product_id = str(raw_id or "").strip()
            quantity = parse_quantity(raw_quantity)
            if not is_valid_product_key(product_id) or quantity is None or quantity <= 0:
                continue
            candidates[product_id] = candidates.get(product_id, 0) + quantity

        known_ids = set()
        if candidates:
            for product in db.products.find(
                {"product_id": {"$in": list(candidates.keys())}}, {"product_id": 1}
            ):
                known_ids.add(product["product_id"])

        increments = {
            f"cart.{product_id}": quantity
            for product_id, quantity in candidates.items()
            if product_id in known_ids
        }
        if increments:
            updated_user = db.users.find_one_and_update(
                {"_id": current_user["_id"]},
                {"$inc": increments},
                return_document=ReturnDocument.AFTER,
            )
        else:
            updated_user = current_user

        return jsonify(cart_response(updated_user))

    # Buyers
    @app.route("/api/buyer/profile", methods=["GET", "PUT"])
    @jwt_required()
    def buyer_profile():
        current_user, account_error = require_user()
        if account_error:
            return account_error

        if request.method == "PUT":
            payload = request.get_json(silent=True) or {}
            name = str(payload.get("name", "")).strip()
            if not name:
                return jsonify({"message": "Name is required."}), 400
            db.users.update_one(
                {"_id": current_user["_id"]}, {"$set": {"display_name": name}}
            )
            current_user = db.users.find_one({"_id": current_user["_id"]})

        email = normalize_email(current_user.get("email"))
        return jsonify(
            {
                "id": str(current_user["_id"]),
                "email": email,
                "phone": current_user.get("phone") or "",
                "name": current_user.get("display_name") or email,
                "avatar_url": current_user.get("avatar_url") or build_gravatar_url(email),
            }
        )

    @app.route("/api/buyer/profile/avatar", methods=["POST"])
    @app.route("/api/seller/profile/avatar", methods=["POST"])
    @jwt_required()
    def update_profile_picture():
        roles = ("seller",) if request.path.startswith("/api/seller/") else ()
        current_user, permission_error = require_role(*roles)
        if permission_error:
            return permission_error

        avatar_url, upload_error = store_avatar(current_user)
        if upload_error:
            return upload_error

        return jsonify(
            {"message": "Profile picture updated successfully.", "avatar_url": avatar_url}
        )

    @app.route("/api/buyer/orders", methods=["GET"])
    @jwt_required()
    def get_buyer_orders():
        current_user, account_error = require_user()
        if account_error:
            return account_error

        cursor = db.orders.find({"buyer_id": str(current_user["_id"])}).sort(
            [("created_at", -1), ("order_id", -1)]
        )
        orders = [serialize_order(document) for document in cursor]
        total_spend = round(sum(order["total"] for order in orders), 2)
        return jsonify({"orders": orders, "total_spend": total_spend})

    @app.route("/api/orders/<order_id>/tracking", methods=["GET"])
    def get_order_tracking(order_id: str):
        verify_jwt_in_request(optional=True)
        current_user = load_current_user()
        if not current_user:
            return jsonify({"message": "User not authenticated"}), 401

        order_document = db.orders.find_one({"order_id": order_id})
        if not order_document:
            return jsonify({"message": "Order not found."}), 404

        if order_document.get("buyer_id") != str(current_user["_id"]):
            return (
                jsonify({"message": "You don't have permission to view this order."}),
                403,
            )

        serialized = serialize_order(order_document)
        serialized["products"] = [dict(item) for item in serialized["items"]]
        return jsonify({"order": serialized})

    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def place_order():
        current_user, permission_error = require_role("buyer")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        cart = dict(current_user.get("cart") or {})
        if not cart:
            return jsonify({"message": "Your cart is empty."}), 400

        shipping_address = normalize_shipping_address(
            payload.get("shipping_address")
            or payload.get("shippingAddress")
            or payload.get("shippingInfo")
        )
        missing_fields = [field for field in ADDRESS_FIELDS if not shipping_address.get(field)]
        if missing_fields:
            return (
                jsonify(
                    {
                        "message": "Shipping address is incomplete.",
                        "missing_fields": missing_fields,
                    }
                ),
                400,
            )

        payment_method = str(
            payload.get("payment_method") or payload.get("paymentMethod") or ""
        ).strip()
        if not payment_method:
            return jsonify({"message": "A payment method is required."}), 400

        line_items, total = expand_cart(cart)
        if not line_items:
            return jsonify({"message": "Your cart has no purchasable items."}), 400

        order_id = next_sequence_identifier("orders", "ORD")
        order_document = {
            "order_id": order_id,
            "buyer_id": str(current_user["_id"]),
            "product_ids": [item["product_id"] for item in line_items],
            "items": [
                {
                    "product_id": item["product_id"],
                    "name": item["name"],
                    "price": item["price"],
                    "quantity": item["quantity"],
                }
                for item in line_items
            ],
            "order_state": "pending",
            "shipping_address": shipping_address,
            "payment_method": payment_method,
            "total": total,
            "created_at": datetime.utcnow(),
        }
        db.orders.insert_one(order_document)

        for item in line_items:
            db.products.update_one(
                {"product_id": item["product_id"]},
                {"$inc": {"total_sales": item["quantity"]}},
            )
        db.users.update_one(
            {"_id": current_user["_id"]},
            {"$unset": {f"cart.{item['product_id']}": "" for item in line_items}},
        )

        email_sent, _ = send_order_confirmation_email(
            order_document, normalize_email(current_user.get("email"))
        )
        app.logger.info("Order %s placed for %.2f", order_id, total)

        return (
            jsonify(
                {
                    "order_id": order_id,
                    "order": serialize_order(order_document),
                    "email_sent": email_sent,
                }
            ),
            201,
        )

    # Sellers
    @app.route("/api/seller/stats/products", methods=["GET"])
    @jwt_required()
    def get_seller_total_products():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error
        count = db.products.count_documents({"seller_id": str(current_user["_id"])})
        return jsonify({"total_products": count})

    @app.route("/api/seller/stats/sales", methods=["GET"])
    @jwt_required()
    def get_seller_total_sales():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error
        total_sales = 0.0
        for product in db.products.find({"seller_id": str(current_user["_id"])}):
            total_sales += round(
                safe_float(product.get("price"))
                * safe_positive_int(product.get("total_sales"), 0),
                2,
            )
        return jsonify({"total_sales": round(total_sales, 2)})

    @app.route("/api/seller/stats/orders", methods=["GET"])
    @jwt_required()
    def get_total_orders():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error
        total_orders = sum(
            safe_positive_int(product.get("total_sales"), 0)
            for product in db.products.find({"seller_id": str(current_user["_id"])})
        )
        return jsonify({"total_orders": total_orders})

    @app.route("/api/seller/products", methods=["GET"])
    @jwt_required()
    def get_seller_products():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error
        products = [
            {
                "product_id": product.get("product_id"),
                "name": product.get("name") or "",
                "price": round(safe_float(product.get("price")), 2),
                "total_sales": safe_positive_int(product.get("total_sales"), 0),
            }
            for product in db.products.find(
                {"seller_id": str(current_user["_id"])}
            ).sort("product_id", 1)
        ]
        return jsonify({"products": products})

    @app.route("/api/seller/products/<product_id>", methods=["GET"])
    @jwt_required()
    def get_product_by_id(product_id: str):
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        product_document = db.products.find_one({"product_id": product_id})
        if not product_document:
            return jsonify({"product": None})
        if not can_manage_product(product_document, current_user):
            return jsonify({"message": "You can only manage your own products."}), 403
        return jsonify({"product": serialize_product(product_document)})

    @app.route("/api/seller/products", methods=["POST"])
    @jwt_required()
    def add_product():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        payload = read_payload()
        name = str(payload.get("name", "")).strip()
        description = str(payload.get("description", "")).strip()

        if not name:
            return jsonify({"message": "A product name is required."}), 400

        price_value, price_error = parse_price(payload.get("price", ""))
        if price_error:
            return jsonify({"message": price_error}), 400

        featured_file = request.files.get("featured_image")
        featured_url = str(payload.get("featured_image") or "").strip()
        if not featured_file and not featured_url:
            return jsonify({"message": "A featured image is required."}), 400

        product_id = next_sequence_identifier("products", "PRD")

        if featured_file:
            featured_url, image_error = save_uploaded_image(
                featured_file, f"{product_id}-featured"
            )
            if image_error:
                return jsonify({"message": image_error}), 400

        if request.files.getlist("other_images"):
            other_images, image_error = save_uploaded_images(
                request.files.getlist("other_images"), f"{product_id}-other"
            )
            if image_error:
                remove_uploaded_image(featured_url)
                return jsonify({"message": image_error}), 400
        else:
            other_images = [
                str(url).strip()
                for url in parse_json_list(payload.get("other_images")) or []
                if str(url or "").strip()
            ]

        now = datetime.utcnow()
        product_document = {
            "product_id": product_id,
            "seller_id": str(current_user["_id"]),
            "name": name,
            "price": price_value,
            "featured_image": featured_url,
            "other_images": other_images,
            "description": description,
            "categories": normalize_categories(payload.get("categories")),
            "flash_sale": False,
            "total_sales": 0,
            "created_at": now,
            "updated_at": now,
        }
        db.products.insert_one(product_document)

        app.logger.info(
            "Product %s created by %s", product_id, normalize_email(current_user.get("email"))
        )
        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(product_document),
                }
            ),
            201,
        )

    @app.route("/api/seller/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        product_document, load_error = load_managed_product(product_id, current_user)
        if load_error:
            return load_error

        payload = read_payload()
        updates: Dict[str, object] = {}

        if "name" in payload:
            name = str(payload.get("name") or "").strip()
            if not name:
                return jsonify({"message": "A product name is required."}), 400
            updates["name"] = name

        if "price" in payload:
            price_value, price_error = parse_price(payload.get("price"))
            if price_error:
                return jsonify({"message": price_error}), 400
            updates["price"] = price_value

        if "description" in payload:
            updates["description"] = str(payload.get("description") or "").strip()

        if "categories" in payload:
            updates["categories"] = normalize_categories(payload.get("categories"))

        stale_images: List[str] = []

        featured_file = request.files.get("featured_image")
        if featured_file:
            featured_url, image_error = save_uploaded_image(
                featured_file, f"{product_id}-featured"
            )
            if image_error:
                return jsonify({"message": image_error}), 400
            updates["featured_image"] = featured_url
            stale_images.append(product_document.get("featured_image"))
        elif str(payload.get("featured_image") or "").strip():
            updates["featured_image"] = str(payload["featured_image"]).strip()

        previous_other_images = list(product_document.get("other_images") or [])
        if request.files.getlist("other_images"):
            other_images, image_error = save_uploaded_images(
                request.files.getlist("other_images"), f"{product_id}-other"
            )
            if image_error:
                if featured_file:
                    remove_uploaded_image(updates.get("featured_image"))
                return jsonify({"message": image_error}), 400
            kept_images = [
                str(url).strip()
                for url in parse_json_list(payload.get("other_images")) or []
                if str(url or "").strip()
            ]
            updates["other_images"] = kept_images + other_images
        elif "other_images" in payload:
            kept_images = parse_json_list(payload.get("other_images"))
            if kept_images is None:
                return jsonify({"message": "Other images must be a list of URLs."}), 400
            updates["other_images"] = [
                str(url).strip() for url in kept_images if str(url or "").strip()
            ]

        if "other_images" in updates:
            stale_images.extend(
                url for url in previous_other_images if url not in updates["other_images"]
            )

        if not updates:
            return jsonify({"message": "No changes were provided."}), 400

        updates["updated_at"] = datetime.utcnow()
        updated_product = db.products.find_one_and_update(
            {"_id": product_document["_id"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        remove_uploaded_image(stale_images)

        return jsonify(
            {
                "message": "Product updated successfully.",
                "product": serialize_product(updated_product),
            }
        )

    @app.route("/api/seller/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_seller_product(product_id: str):
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        product_document, load_error = load_managed_product(product_id, current_user)
        if load_error:
            return load_error

        delete_product_document(product_document, current_user)
        return jsonify({"success": True, "product_id": product_id})

    # Seller profile
    @app.route("/api/seller/profile", methods=["GET", "PUT"])
    @jwt_required()
    def seller_profile():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        if request.method == "PUT":
            payload = request.get_json(silent=True) or {}
            updates: Dict[str, str] = {}
            if "display_name" in payload:
                display_name = str(payload.get("display_name") or "").strip()
                if not display_name:
                    return jsonify({"message": "Display name cannot be empty."}), 400
                updates["display_name"] = display_name
            if "phone" in payload:
                updates["phone"] = str(payload.get("phone") or "").strip()
            if not updates:
                return jsonify({"message": "No changes were provided."}), 400
            db.users.update_one({"_id": current_user["_id"]}, {"$set": updates})
            current_user = db.users.find_one({"_id": current_user["_id"]})

        email = normalize_email(current_user.get("email"))
        return jsonify(
            {
                "id": str(current_user["_id"]),
                "email": email,
                "phone": current_user.get("phone") or "",
                "display_name": current_user.get("display_name") or email,
                "avatar_url": current_user.get("avatar_url") or build_gravatar_url(email),
            }
        )

    @app.route("/api/seller/profile/password", methods=["PUT"])
    @jwt_required()
    def update_seller_password():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True) or {}
        new_password = str(
            payload.get("new_password") or payload.get("newPassword") or ""
        )
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return (
                jsonify(
                    {
                        "message": f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters."
                    }
                ),
                400,
            )

        db.users.update_one(
            {"_id": current_user["_id"]},
            {"$set": {"password": hash_password(new_password)}},
        )
        return jsonify({"success": True, "message": "Password updated successfully"})

    # --- Admin Routes ---

    @app.route("/api/admin/stats", methods=["GET"])
    @jwt_required()
    def get_admin_stats():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product_count = db.products.count_documents({})
        order_count = db.orders.count_documents({})
        total_sales = round(
            sum(
                safe_float(order.get("total"))
                for order in db.orders.find({}, {"total": 1})
            ),
            2,
        )

        today = datetime.utcnow().date()
        window_start = today - timedelta(days=SALES_WINDOW_DAYS - 1)
        sales_by_day: Dict[str, float] = {}
        for order in db.orders.find(
            {"created_at": {"$gte": datetime.combine(window_start, datetime.min.time())}},
            {"created_at": 1, "total": 1},
        ):
            created_at = order.get("created_at")
            if not isinstance(created_at, datetime):
                continue
            day_key = created_at.date().isoformat()
            sales_by_day[day_key] = sales_by_day.get(day_key, 0.0) + safe_float(
                order.get("total")
            )

        last_30_days_sales = []
        for offset in range(SALES_WINDOW_DAYS):
            day = (window_start + timedelta(days=offset)).isoformat()
            last_30_days_sales.append(
                {
                    "day": f"Day {offset + 1}",
                    "date": day,
                    "sales": round(sales_by_day.get(day, 0.0), 2),
                }
            )

        return jsonify(
            {
                "product_count": product_count,
                "order_count": order_count,
                "total_sales": total_sales,
                "last_30_days_sales": last_30_days_sales,
            }
        )

    @app.route("/api/admin/products", methods=["GET"])
    @jwt_required()
    def get_admin_products():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        page, limit = read_pagination()
        search_term = (request.args.get("search") or "").strip()
        query: Dict[str, object] = {}
        if search_term:
            query["name"] = re.compile(re.escape(search_term), re.IGNORECASE)

        total = db.products.count_documents(query)
        cursor = (
            db.products.find(query)
            .sort("product_id", 1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return jsonify(
            pagination_envelope("products", cursor, serialize_product, total, page, limit)
        )

    @app.route("/api/admin/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def admin_delete_product(product_id: str):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        delete_product_document(product_document, admin_user)
        return jsonify({"success": True, "id": product_id})

    @app.route("/api/admin/products/<product_id>/flash-sale", methods=["PUT"])
    @jwt_required()
    def toggle_flash_sale(product_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product_document, load_error = fetch_product(product_id)
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        if "flash_sale" in payload:
            flash_sale = parse_bool(payload.get("flash_sale"))
            if flash_sale is None:
                return jsonify({"message": "flash_sale must be true or false."}), 400
        else:
            flash_sale = not bool(product_document.get("flash_sale"))

        updated_product = db.products.find_one_and_update(
            {"_id": product_document["_id"]},
            {"$set": {"flash_sale": flash_sale, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return jsonify({"product": serialize_product(updated_product)})

    @app.route("/api/admin/orders", methods=["GET"])
    @jwt_required()
    def get_admin_orders():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        page, limit = read_pagination()
        search_term = (request.args.get("search") or "").strip()
        query: Dict[str, object] = {}
        if search_term:
            query["order_id"] = re.compile(re.escape(search_term), re.IGNORECASE)

        total = db.orders.count_documents(query)
        cursor = (
            db.orders.find(query)
            .sort([("created_at", -1), ("order_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return jsonify(
            pagination_envelope("orders", cursor, serialize_order, total, page, limit)
        )

    @app.route("/api/admin/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_admin_order_tracking(order_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        order_document = db.orders.find_one({"order_id": order_id})
        if not order_document:
            return jsonify({"message": "Order not found."}), 404

        serialized = serialize_order(order_document)
        product_ids = serialized["product_ids"]
        serialized["products"] = (
            [
                serialize_product(product)
                for product in db.products.find({"product_id": {"$in": product_ids}})
            ]
            if product_ids
            else []
        )
        return jsonify({"order": serialized})

    @app.route("/api/admin/orders/<order_id>/status", methods=["PUT"])
    @jwt_required()
    def update_order_status(order_id: str):
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        new_status = str(
            payload.get("status") or payload.get("newStatus") or ""
        ).strip().lower()
        if new_status not in ORDER_STATES:
            return (
                jsonify(
                    {
                        "message": "Unknown order status.",
                        "allowed": list(ORDER_STATES),
                    }
                ),
                400,
            )

        updated_order = db.orders.find_one_and_update(
            {"order_id": order_id},
            {"$set": {"order_state": new_status}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated_order:
            return jsonify({"message": "Order not found."}), 404

        app.logger.info(
            "Order %s moved to %s by %s",
            order_id,
            new_status,
            normalize_email(admin_user.get("email")),
        )
        return jsonify({"order": serialize_order(updated_order)})

    return app
