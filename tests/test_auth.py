from datetime import datetime, timedelta, timezone

import jwt
from bson import ObjectId
from flask_jwt_extended import create_access_token

from conftest import ACCESS_SECRET, REFRESH_SECRET


def test_missing_header_is_rejected(app):
    response = app.test_client().get("/api/users/profile")

    assert response.status_code == 401
    assert response.get_json() == {"message": "Not authorized, no token"}


def test_refresh_cookie_alone_does_not_authorize(client, register):
    register()
    assert client.get_cookie("refreshToken") is not None

    response = client.get("/api/users/profile")

    assert response.status_code == 401
    assert response.get_json() == {
        "message": "Please provide access token in Authorization header"
    }


def test_valid_token_resolves_user_without_password(client, register, auth_headers):
    user = register()

    response = client.get("/api/users/profile", headers=auth_headers(user["token"]))

    assert response.status_code == 200
    body = response.get_json()
    assert body["email"] == "ada@example.com"
    assert "password" not in body


def test_expired_token_is_distinguished_from_invalid(app, client, register, auth_headers):
    user = register()
    with app.app_context():
        expired = create_access_token(
            identity=user["_id"],
            additional_claims={"id": user["_id"]},
            expires_delta=timedelta(minutes=-16),
        )

    expired_response = client.get("/api/users/profile", headers=auth_headers(expired))
    invalid_response = client.get("/api/users/profile", headers=auth_headers("not.a.token"))

    assert expired_response.status_code == 401
    assert expired_response.get_json() == {"message": "Token expired"}
    assert invalid_response.status_code == 401
    assert invalid_response.get_json() == {"message": "Not authorized, token failed"}


def test_token_signed_with_wrong_secret_fails(client, register, auth_headers):
    user = register()
    forged = jwt.encode(
        {
            "sub": user["_id"],
            "id": user["_id"],
            "type": "access",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        ACCESS_SECRET + "-other",
        algorithm="HS256",
    )

    response = client.get("/api/users/profile", headers=auth_headers(forged))

    assert response.status_code == 401
    assert response.get_json() == {"message": "Not authorized, token failed"}


def test_refresh_token_is_not_an_access_token(client, register, auth_headers):
    register()
    refresh_token = client.get_cookie("refreshToken").value

    response = client.get("/api/users/profile", headers=auth_headers(refresh_token))

    assert response.status_code == 401
    assert response.get_json() == {"message": "Not authorized, token failed"}
    assert jwt.decode(refresh_token, REFRESH_SECRET, algorithms=["HS256"])["type"] == "refresh"


def test_token_for_deleted_user(client, db, register, auth_headers):
    user = register()
    db.users.delete_one({"_id": ObjectId(user["_id"])})

    response = client.get("/api/users/profile", headers=auth_headers(user["token"]))

    assert response.status_code == 401
    assert response.get_json() == {"message": "Not authorized, user not found"}


def test_access_token_lifetime_is_fifteen_minutes(register):
    user = register()
    claims = jwt.decode(user["token"], ACCESS_SECRET, algorithms=["HS256"])

    assert claims["id"] == user["_id"]
    assert claims["exp"] - claims["iat"] == 15 * 60
