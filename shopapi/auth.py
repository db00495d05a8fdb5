from flask import jsonify, request
from flask_jwt_extended import JWTManager

from .documents import to_object_id
from .tokens import REFRESH_COOKIE_NAME


def init_auth(app, db) -> JWTManager:
    """Attach the bearer-token guard to ``app``.

    Only the ``Authorization`` header is consulted; a refresh cookie on its own never
    authorizes a protected route.
    """
    jwt_manager = JWTManager(app)

    @jwt_manager.user_lookup_loader
    def load_user(_jwt_header, jwt_data):
        user_id = to_object_id(jwt_data.get("id") or jwt_data.get("sub"))
        if user_id is None:
            return None
        return db.users.find_one({"_id": user_id}, {"password": 0})

    @jwt_manager.user_lookup_error_loader
    def user_missing(_jwt_header, _jwt_data):
        return jsonify({"message": "Not authorized, user not found"}), 401

    @jwt_manager.unauthorized_loader
    def missing_token(reason):
        if request.cookies.get(REFRESH_COOKIE_NAME):
            return (
                jsonify({"message": "Please provide access token in Authorization header"}),
                401,
            )
        app.logger.debug("Rejected request without access token: %s", reason)
        return jsonify({"message": "Not authorized, no token"}), 401

    @jwt_manager.expired_token_loader
    def expired_token(_jwt_header, _jwt_data):
        return jsonify({"message": "Token expired"}), 401

    @jwt_manager.invalid_token_loader
    def invalid_token(reason):
        app.logger.debug("Rejected access token: %s", reason)
        return jsonify({"message": "Not authorized, token failed"}), 401

    return jwt_manager
