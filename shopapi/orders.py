from flask import jsonify, request
from flask_jwt_extended import get_current_user, get_jwt_identity, jwt_required, verify_jwt_in_request

from .documents import build_order_document, serialize_document, to_object_id
from .errors import require_json_object


def register_order_routes(app, db):
    @app.route("/api/orders", methods=["POST"])
    def create_order():
        verify_jwt_in_request(optional=True)
        identity = get_jwt_identity()
        current_user_id = to_object_id(identity) if identity else None

        payload = require_json_object(request.get_json(silent=True))
        order_items = payload.get("orderItems")
        if not isinstance(order_items, list) or not order_items:
            return jsonify({"message": "No order items"}), 400

        order_document = build_order_document(payload, user_id=current_user_id)
        result = db.orders.insert_one(order_document)
        order_document["_id"] = result.inserted_id

        app.logger.info(
            "Created order %s for user %s", result.inserted_id, order_document["user"]
        )
        return jsonify(serialize_document(order_document)), 201

    @app.route("/api/orders/mine", methods=["GET"])
    @jwt_required()
    def list_my_orders():
        user = get_current_user()
        order_docs = list(db.orders.find({"user": user["_id"]}).sort("createdAt", -1))
        return jsonify(serialize_document(order_docs))

    @app.route("/api/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order(order_id: str):
        user = get_current_user()
        object_id = to_object_id(order_id)
        order_document = db.orders.find_one({"_id": object_id}) if object_id else None

        if not order_document or (
            order_document.get("user") != user["_id"] and not user.get("isAdmin")
        ):
            return jsonify({"message": "Order not found"}), 404
        return jsonify(serialize_document(order_document))
