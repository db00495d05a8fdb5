from unittest import mock

import mongomock
import pytest
import requests

from shopapi import Settings, create_app

ACCESS_SECRET = "test-access-secret-with-enough-length-000"
REFRESH_SECRET = "test-refresh-secret-with-enough-length-00"
HMAC_SECRET = "test-paymob-hmac-secret"


@pytest.fixture
def settings():
    return Settings(
        access_token_secret=ACCESS_SECRET,
        refresh_token_secret=REFRESH_SECRET,
        paymob_api_key="paymob-api-key",
        paymob_integration_id="4411",
        paymob_iframe_id="8822",
        paymob_hmac_secret=HMAC_SECRET,
    )


@pytest.fixture
def db():
    return mongomock.MongoClient().shop


@pytest.fixture
def app(settings, db):
    app = create_app(settings, database=db)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    def build(token):
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def register(client):
    def create(name="Ada Lovelace", email="ada@example.com", phone="01000000001", password="secret123", **extra):
        response = client.post(
            "/api/users/register",
            json={"name": name, "email": email, "phone": phone, "password": password, **extra},
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    return create


@pytest.fixture
def gateway_response():
    def build(data, status=200):
        response = mock.Mock()
        response.status_code = status
        response.json.return_value = data
        if status >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(
                f"{status} Client Error", response=response
            )
        else:
            response.raise_for_status.return_value = None
        return response

    return build
