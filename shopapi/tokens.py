"""
Access/refresh token issuance.

Access tokens are minted by flask-jwt-extended with the access secret and verified by the
guard in ``shopapi.auth``. Refresh tokens live in a separate PyJWT signing context with
their own secret and lifetime and only ever travel in the ``refreshToken`` cookie.
"""
from datetime import datetime, timezone
from typing import Dict

import jwt
from flask_jwt_extended import create_access_token

from .config import (
    ACCESS_TOKEN_LIFETIME,
    REFRESH_TOKEN_LIFETIME,
    ConfigurationError,
    Settings,
)
from .documents import to_object_id
from .errors import Forbidden, RefreshExpired, Unauthorized

REFRESH_COOKIE_NAME = "refreshToken"
REFRESH_TOKEN_TYPE = "refresh"
ALGORITHM = "HS256"


class TokenIssuer:
    def __init__(self, settings: Settings):
        if not settings.access_token_secret or not settings.refresh_token_secret:
            raise ConfigurationError("Both access and refresh token secrets must be configured")
        self.settings = settings
        self._refresh_secret = settings.refresh_token_secret

    def create_access_token(self, user_id) -> str:
        identity = str(user_id)
        return create_access_token(
            identity=identity,
            additional_claims={"id": identity},
            expires_delta=ACCESS_TOKEN_LIFETIME,
        )

    def create_refresh_token(self, user_id) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": str(user_id),
            "type": REFRESH_TOKEN_TYPE,
            "iat": now,
            "exp": now + REFRESH_TOKEN_LIFETIME,
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=ALGORITHM)

    def issue_tokens(self, user_id) -> Dict[str, str]:
        return {
            "accessToken": self.create_access_token(user_id),
            "refreshToken": self.create_refresh_token(user_id),
        }

    def decode_refresh_token(self, token: str) -> Dict:
        try:
            payload = jwt.decode(token, self._refresh_secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise RefreshExpired()
        except jwt.InvalidTokenError:
            raise Forbidden("Invalid refresh token")

        if payload.get("type") != REFRESH_TOKEN_TYPE or not payload.get("id"):
            raise Forbidden("Invalid refresh token")
        return payload

    def set_refresh_cookie(self, response, refresh_token: str):
        response.set_cookie(
            REFRESH_COOKIE_NAME,
            refresh_token,
            max_age=int(REFRESH_TOKEN_LIFETIME.total_seconds()),
            httponly=True,
            secure=self.settings.is_production,
            samesite="Strict",
        )
        return response

    def clear_refresh_cookie(self, response):
        response.delete_cookie(
            REFRESH_COOKIE_NAME,
            httponly=True,
            secure=self.settings.is_production,
            samesite="Strict",
        )
        return response

    def refresh(self, db, cookie_value: str):
        """Exchange a refresh cookie for a new token pair.

        Returns ``(user_document, tokens)``. Raises ``Unauthorized`` when the cookie is
        missing or its user was deleted, ``RefreshExpired``/``Forbidden`` when the token
        itself does not verify.
        """
        if not cookie_value:
            raise Unauthorized("Not authorized, no refresh token")

        payload = self.decode_refresh_token(cookie_value)
        user_id = to_object_id(payload.get("id"))
        user = db.users.find_one({"_id": user_id}, {"password": 0}) if user_id else None
        if not user:
            raise Unauthorized("User not found")

        return user, self.issue_tokens(user["_id"])
