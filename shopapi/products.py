from flask import jsonify, request
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .documents import (
    build_product_document,
    build_product_update,
    serialize_document,
    to_object_id,
)
from .errors import NotFound, require_json_object


def register_product_routes(app, db):
    def fetch_product(product_id: str):
        object_id = to_object_id(product_id)
        product_document = db.products.find_one({"_id": object_id}) if object_id else None
        if not product_document:
            raise NotFound("Product not found")
        return product_document

    def unique_slug(base_slug: str) -> str:
        candidate = base_slug
        suffix = 2
        while db.products.find_one({"slug": candidate}, {"_id": 1}):
            candidate = f"{base_slug}-{suffix}"
            suffix += 1
        return candidate

    @app.route("/api/products", methods=["GET"])
    def list_products():
        product_docs = list(db.products.find({}))
        return jsonify(serialize_document(product_docs))

    @app.route("/api/products/categories", methods=["GET"])
    def list_categories():
        categories = sorted(
            category for category in db.products.distinct("category") if category
        )
        return jsonify(categories)

    @app.route("/api/products/category/<category>", methods=["GET"])
    def list_products_by_category(category: str):
        product_docs = list(db.products.find({"category": category}))
        if not product_docs:
            return (
                jsonify({"message": f"No products found in category: {category}"}),
                404,
            )
        return jsonify(serialize_document(product_docs))

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        return jsonify(serialize_document(fetch_product(product_id)))

    @app.route("/api/products", methods=["POST"])
    def create_product():
        payload = require_json_object(request.get_json(silent=True))
        product_document = build_product_document(payload)
        product_document["slug"] = unique_slug(product_document["slug"])

        try:
            result = db.products.insert_one(product_document)
        except DuplicateKeyError:
            return jsonify({"message": "A product with this slug already exists"}), 400
        product_document["_id"] = result.inserted_id

        app.logger.info("Created product %s (%s)", result.inserted_id, product_document["name"])
        return jsonify(serialize_document(product_document)), 201

    @app.route("/api/products/<product_id>", methods=["PUT"])
    def update_product(product_id: str):
        product_document = fetch_product(product_id)
        payload = require_json_object(request.get_json(silent=True))
        updates = build_product_update(payload)

        updated = db.products.find_one_and_update(
            {"_id": product_document["_id"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Product not found")
        return jsonify(serialize_document(updated))

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    def delete_product(product_id: str):
        product_document = fetch_product(product_id)
        db.products.delete_one({"_id": product_document["_id"]})

        app.logger.info("Deleted product %s", product_document["_id"])
        return jsonify({"message": "Product removed"})
