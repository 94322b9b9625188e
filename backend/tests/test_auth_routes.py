"""Login, session and system endpoint tests."""

from retail_pos.services import session_service
from retail_pos.services.auth_service import PasswordValidationError, validate_password_strength

import pytest

from conftest import TEST_PASSWORD, auth_headers, get_auth_token


def test_login_and_me(client, cashier):
    resp = client.post("/api/auth/login", json={"username": "cashier", "password": TEST_PASSWORD})

    assert resp.status_code == 200
    assert resp.json["user"]["roles"] == ["Cashier"]

    me = client.get("/api/auth/me", headers=auth_headers(resp.json["token"]))
    assert me.status_code == 200
    assert me.json["user"]["store_name"] == "Downtown"


def test_login_with_email(client, cashier):
    assert get_auth_token(client, "cashier@pos.test") is not None


def test_wrong_password(client, cashier):
    resp = client.post("/api/auth/login", json={"username": "cashier", "password": "nope-12345"})
    assert resp.status_code == 401


def test_missing_credentials(client, db_session):
    resp = client.post("/api/auth/login", json={"username": "cashier"})
    assert resp.status_code == 400


def test_logout_revokes_token(client, cashier):
    token = get_auth_token(client, "cashier")

    assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
    assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401
    assert session_service.validate_session(token) is None


def test_deactivated_user_token_rejected(client, db_session, cashier):
    token = get_auth_token(client, "cashier")
    cashier.is_active = False
    db_session.commit()

    assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


@pytest.mark.parametrize("password", ["short1", "allletters", "12345678"])
def test_weak_passwords(password):
    with pytest.raises(PasswordValidationError):
        validate_password_strength(password)


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["checks"]["database"]["status"] == "healthy"
