import re

import bcrypt
from flask import jsonify, request
from flask_jwt_extended import get_current_user, jwt_required
from pymongo.errors import DuplicateKeyError

from .documents import (
    MIN_PASSWORD_LENGTH,
    add_address,
    add_to_cart,
    add_to_wishlist,
    build_user_document,
    clear_cart,
    normalize_address_list,
    normalize_email,
    normalize_text,
    remove_from_cart,
    remove_from_wishlist,
    serialize_document,
    serialize_user_profile,
    set_default_address,
    summarize_cart,
    to_object_id,
    utcnow,
)
from .errors import ApiError, NotFound, ValidationFailed, require_json_object
from .tokens import REFRESH_COOKIE_NAME

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PREFERENCE_KEYS = ("newsletter", "emailNotifications", "smsNotifications")


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10))


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    return bcrypt.checkpw(password.encode("utf-8"), hashed)


def duplicate_user_message(existing, email: str) -> str:
    if normalize_email(existing.get("email")) == email:
        return "User with this email already exists"
    return "User with this phone number already exists"


def register_user_routes(app, db, issuer):
    def auth_payload(user_document, token):
        return {
            "_id": str(user_document["_id"]),
            "name": user_document.get("name", ""),
            "email": user_document.get("email", ""),
            "phone": user_document.get("phone", ""),
            "token": token,
        }

    def load_product(product_id):
        object_id = to_object_id(product_id)
        product = db.products.find_one({"_id": object_id}) if object_id else None
        if not product:
            raise NotFound("Product not found")
        return product

    def persist_user_fields(user_document, *fields):
        updates = {field: user_document.get(field) for field in fields}
        updates["updatedAt"] = utcnow()
        db.users.update_one({"_id": user_document["_id"]}, {"$set": updates})

    # --- Authentication ---

    @app.route("/api/users/register", methods=["POST"])
    def register_user():
        payload = require_json_object(request.get_json(silent=True))
        name = normalize_text(payload.get("name"))
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")
        phone = normalize_text(payload.get("phone"))

        if not name or not email or not password or not phone:
            return jsonify({"message": "Please enter all required fields"}), 400

        if not email_regex.match(email):
            return jsonify({"message": "Please enter a valid email address"}), 400

        if len(password) < MIN_PASSWORD_LENGTH:
            return (
                jsonify(
                    {"message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}
                ),
                400,
            )

        existing = db.users.find_one({"$or": [{"email": email}, {"phone": phone}]})
        if existing:
            return jsonify({"message": duplicate_user_message(existing, email)}), 400

        addresses = normalize_address_list(payload.get("addresses"))
        user_document = build_user_document(
            name, email, hash_password(password), phone, addresses
        )

        try:
            insert_result = db.users.insert_one(user_document)
        except DuplicateKeyError:
            return jsonify({"message": "User with this email already exists"}), 400
        user_document["_id"] = insert_result.inserted_id

        tokens = issuer.issue_tokens(insert_result.inserted_id)
        app.logger.info("Registered user %s", insert_result.inserted_id)

        response = jsonify(auth_payload(user_document, tokens["accessToken"]))
        issuer.set_refresh_cookie(response, tokens["refreshToken"])
        return response, 201

    @app.route("/api/users/login", methods=["POST"])
    def login_user():
        payload = require_json_object(request.get_json(silent=True))
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        user = db.users.find_one({"email": email})
        if not user or not check_password(password, user.get("password")):
            return jsonify({"message": "Invalid credentials"}), 401

        db.users.update_one({"_id": user["_id"]}, {"$set": {"lastLogin": utcnow()}})
        tokens = issuer.issue_tokens(user["_id"])

        response = jsonify(auth_payload(user, tokens["accessToken"]))
        issuer.set_refresh_cookie(response, tokens["refreshToken"])
        return response

    @app.route("/api/users/refresh-token", methods=["POST"])
    def refresh_token():
        try:
            _, tokens = issuer.refresh(db, request.cookies.get(REFRESH_COOKIE_NAME))
        except ApiError as error:
            response = jsonify(error.to_dict())
            if error.status_code == 403:
                issuer.clear_refresh_cookie(response)
            return response, error.status_code

        response = jsonify({"token": tokens["accessToken"]})
        issuer.set_refresh_cookie(response, tokens["refreshToken"])
        return response

    @app.route("/api/users/logout", methods=["POST"])
    @jwt_required()
    def logout_user():
        response = jsonify({"message": "Logged out successfully"})
        issuer.clear_refresh_cookie(response)
        return response

    # --- Profile ---

    @app.route("/api/users/profile", methods=["GET"])
    @jwt_required()
    def get_user_profile():
        return jsonify(serialize_user_profile(get_current_user()))

    @app.route("/api/users/profile", methods=["PUT"])
    @jwt_required()
    def update_user_profile():
        user = get_current_user()
        payload = require_json_object(request.get_json(silent=True))
        updates = {}

        email = normalize_email(payload.get("email"))
        if email and email != user.get("email"):
            if not email_regex.match(email):
                return jsonify({"message": "Please enter a valid email address"}), 400
            if db.users.find_one({"email": email, "_id": {"$ne": user["_id"]}}):
                return jsonify({"message": "User with this email already exists"}), 400
            updates["email"] = email

        phone = normalize_text(payload.get("phone"))
        if phone and phone != user.get("phone"):
            if db.users.find_one({"phone": phone, "_id": {"$ne": user["_id"]}}):
                return jsonify({"message": "User with this phone number already exists"}), 400
            updates["phone"] = phone

        name = normalize_text(payload.get("name"))
        if name:
            updates["name"] = name

        password = str(payload.get("password") or "")
        if password:
            if len(password) < MIN_PASSWORD_LENGTH:
                raise ValidationFailed(
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
                )
            updates["password"] = hash_password(password)

        if payload.get("addresses") is not None:
            updates["addresses"] = normalize_address_list(payload.get("addresses"))

        preferences = payload.get("preferences")
        if isinstance(preferences, dict):
            merged = dict(user.get("preferences") or {})
            for key in PREFERENCE_KEYS:
                if key in preferences:
                    merged[key] = bool(preferences[key])
            updates["preferences"] = merged

        updates["updatedAt"] = utcnow()
        try:
            db.users.update_one({"_id": user["_id"]}, {"$set": updates})
        except DuplicateKeyError:
            return jsonify({"message": "User with this email already exists"}), 400

        updated_user = db.users.find_one({"_id": user["_id"]}, {"password": 0})
        return jsonify(
            {
                **serialize_user_profile(updated_user),
                "token": issuer.create_access_token(updated_user["_id"]),
            }
        )

    @app.route("/api/users/profile", methods=["DELETE"])
    @jwt_required()
    def delete_user():
        user = get_current_user()
        result = db.users.delete_one({"_id": user["_id"]})
        if result.deleted_count == 0:
            raise NotFound("User not found")

        app.logger.info("Deleted user %s", user["_id"])
        response = jsonify({"message": "User removed"})
        issuer.clear_refresh_cookie(response)
        return response

    # --- Addresses ---

    @app.route("/api/users/addresses", methods=["GET"])
    @jwt_required()
    def list_addresses():
        return jsonify(serialize_document(get_current_user().get("addresses") or []))

    @app.route("/api/users/addresses", methods=["POST"])
    @jwt_required()
    def create_address():
        user = get_current_user()
        address = add_address(user, require_json_object(request.get_json(silent=True)))
        persist_user_fields(user, "addresses")
        return (
            jsonify(
                {
                    "address": serialize_document(address),
                    "addresses": serialize_document(user["addresses"]),
                }
            ),
            201,
        )

    @app.route("/api/users/addresses/<address_id>/default", methods=["PUT"])
    @jwt_required()
    def make_default_address(address_id: str):
        user = get_current_user()
        set_default_address(user, address_id)
        persist_user_fields(user, "addresses")
        return jsonify(serialize_document(user["addresses"]))

    # --- Cart ---

    @app.route("/api/users/cart", methods=["GET"])
    @jwt_required()
    def get_cart():
        return jsonify(summarize_cart(get_current_user()))

    @app.route("/api/users/cart", methods=["POST"])
    @jwt_required()
    def add_cart_item():
        user = get_current_user()
        payload = require_json_object(request.get_json(silent=True))
        product = load_product(payload.get("productId") or payload.get("product"))

        add_to_cart(user, product["_id"], product.get("price", 0), payload.get("quantity", 1))
        persist_user_fields(user, "cart")
        return jsonify(summarize_cart(user)), 201

    @app.route("/api/users/cart/<product_id>", methods=["DELETE"])
    @jwt_required()
    def remove_cart_item(product_id: str):
        user = get_current_user()
        remove_from_cart(user, to_object_id(product_id))
        persist_user_fields(user, "cart")
        return jsonify(summarize_cart(user))

    @app.route("/api/users/cart", methods=["DELETE"])
    @jwt_required()
    def clear_cart_items():
        user = get_current_user()
        clear_cart(user)
        persist_user_fields(user, "cart")
        return jsonify(summarize_cart(user))

    # --- Wishlist ---

    @app.route("/api/users/wishlist", methods=["GET"])
    @jwt_required()
    def get_wishlist():
        return jsonify(serialize_document(get_current_user().get("wishlist") or []))

    @app.route("/api/users/wishlist", methods=["POST"])
    @jwt_required()
    def add_wishlist_item():
        user = get_current_user()
        payload = require_json_object(request.get_json(silent=True))
        product = load_product(payload.get("productId") or payload.get("product"))

        added = add_to_wishlist(user, product["_id"])
        if added:
            persist_user_fields(user, "wishlist")
        return jsonify(serialize_document(user["wishlist"])), 201 if added else 200

    @app.route("/api/users/wishlist/<product_id>", methods=["DELETE"])
    @jwt_required()
    def remove_wishlist_item(product_id: str):
        user = get_current_user()
        remove_from_wishlist(user, to_object_id(product_id))
        persist_user_fields(user, "wishlist")
        return jsonify(serialize_document(user["wishlist"]))
