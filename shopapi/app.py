from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_pymongo import PyMongo
from werkzeug.exceptions import HTTPException

from .auth import init_auth
from .config import ACCESS_TOKEN_LIFETIME, Settings
from .errors import ApiError
from .orders import register_order_routes
from .payments import register_payment_routes
from .products import register_product_routes
from .tokens import TokenIssuer
from .users import register_user_routes


def ensure_indexes(app, db):
    index_specs = [
        ("users", "email", {"unique": True}),
        ("products", "slug", {"unique": True, "sparse": True}),
        ("products", "category", {}),
        ("orders", "user", {}),
        ("orders", "paymobOrderId", {}),
    ]
    for collection_name, field, options in index_specs:
        try:
            db[collection_name].create_index(field, **options)
        except Exception as exc:
            app.logger.warning(
                "Unable to ensure index %s.%s: %s", collection_name, field, exc
            )


def create_app(settings: Optional[Settings] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    settings = settings or Settings.from_env()

    app = Flask(__name__)

    # --- Configuration ---
    app.config["SETTINGS"] = settings
    app.config["JWT_SECRET_KEY"] = settings.access_token_secret
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = ACCESS_TOKEN_LIFETIME
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]
    app.config["MONGO_URI"] = settings.mongo_uri
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024

    # --- Initialize extensions ---
    CORS(
        app,
        supports_credentials=True,
        origins=settings.cors_allowed_origins or "*",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "Accept-Language"],
    )

    if database is None:
        mongo = PyMongo(app)
        database = mongo.db
    db = database
    ensure_indexes(app, db)

    issuer = TokenIssuer(settings)
    init_auth(app, db)

    register_user_routes(app, db, issuer)
    register_product_routes(app, db)
    register_order_routes(app, db)
    register_payment_routes(app, db, settings)

    # --- Request logging (non-production only) ---

    if not settings.is_production:

        @app.before_request
        def log_request():
            app.logger.info("%s %s", request.method, request.path)

    # --- Errors ---

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(_error):
        return jsonify({"error": "Route not found"}), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error: %s", error)
        message = "Something went wrong!" if settings.is_production else str(error)
        return jsonify({"error": message}), 500

    @app.route("/api/health")
    def health():
        return jsonify(
            {
                "status": "OK",
                "message": "Server is running",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    return app


def main():
    settings = Settings.from_env()
    app = create_app(settings)
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
