# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from datetime import timedelta

from conftest import PASSWORD, bearer, register
from kiwitweaks import repository
from kiwitweaks.database import utcnow
from kiwitweaks.models import AuthLog, User
from kiwitweaks.security import verify_token

NEW_PASSWORD = "N3w!Passw0rd"


def login(client, email="alice@example.com", password=PASSWORD, **extra):
    return client.post("/api/auth/login", json={"email": email, "password": password, **extra})


def test_register_returns_token_and_sends_emails(client, transport, settings):
    data = register(client, email="Alice@Example.com")

    assert data["user"]["email"] == "alice@example.com"
    assert data["user"]["username"] == "alice"
    assert data["user"]["emailVerified"] is False
    claims = verify_token(data["token"], settings.jwt_secret)
    assert claims["userId"] == data["user"]["id"]
    assert sorted(transport.subjects("alice@example.com")) == ["Verify Your Email Address", "Welcome to KiwiTweaks!"]


def test_register_duplicate_email(client):
    register(client)
    response = client.post("/api/auth/register", json={
        "email": "ALICE@example.com", "password": PASSWORD, "terms": True,
    })
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"


def test_register_duplicate_username(client):
    register(client)
    response = client.post("/api/auth/register", json={
        "email": "other@example.com", "password": PASSWORD, "username": "alice", "terms": True,
    })
    assert response.status_code == 409


def test_register_validation_envelope(client):
    response = client.post("/api/auth/register", json={"email": "alice@example.com", "password": "weak"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert {d["field"] for d in body["error"]["details"]} == {"password", "terms"}
    assert body["ref"].startswith("ERR_")


def test_empty_and_malformed_bodies(client):
    response = client.post("/api/auth/login")
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Request body is required"

    response = client.post("/api/auth/login", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"]["details"][0]["type"] == "json_invalid"


def test_login_success_records_event(client, database):
    register(client)
    response = login(client)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["token"]
    assert data["user"]["lastLogin"]

    with database.session() as db:
        events = [row.event for row in db.query(AuthLog).order_by(AuthLog.id)]
    assert events == ["register", "login"]


def test_login_refreshes_cached_profile(client):
    token = register(client)["token"]
    before = client.get("/api/user/profile", headers=bearer(token)).json()["data"]

    last_login = login(client).json()["data"]["user"]["lastLogin"]
    after = client.get("/api/user/profile", headers=bearer(token)).json()["data"]

    assert after["lastLogin"] == last_login
    assert after["lastLogin"] != before["lastLogin"]


def test_login_remember_me_extends_token(client, settings):
    register(client)
    token = login(client, remember=True).json()["data"]["token"]
    claims = verify_token(token, settings.jwt_secret)
    assert claims["exp"] - claims["iat"] == 30 * 24 * 3600


def test_login_failures_look_the_same(client, database):
    register(client)
    wrong_password = login(client, password="Wr0ng!Pass")
    unknown = login(client, email="nobody@example.com")

    assert wrong_password.status_code == unknown.status_code == 401
    assert wrong_password.json()["error"]["message"] == unknown.json()["error"]["message"]
    with database.session() as db:
        assert db.query(AuthLog).filter(AuthLog.event.like("login%")).count() == 0


def test_login_rate_limited_after_five_attempts(client):
    register(client)
    for _ in range(5):
        assert login(client, password="Wr0ng!Pass").status_code == 401
    response = login(client)
    assert response.status_code == 429
    assert response.json()["error"]["code"] == "RATE_LIMITED"
    assert int(response.headers["Retry-After"]) > 0


def test_register_rate_limited(client):
    for i in range(3):
        register(client, email=f"user{i}@example.com", username=f"user{i}")
    response = client.post("/api/auth/register", json={
        "email": "user9@example.com", "password": PASSWORD, "terms": True,
    })
    assert response.status_code == 429


def test_password_reset_request_does_not_reveal_accounts(client, transport):
    register(client)
    known = client.post("/api/auth/password-reset-request", json={"email": "alice@example.com"})
    unknown = client.post("/api/auth/password-reset-request", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.content == unknown.content
    assert transport.subjects("alice@example.com").count("Reset Your Password") == 1
    assert transport.subjects("ghost@example.com") == []


def test_password_reset_flow(client, transport):
    register(client)
    client.post("/api/auth/password-reset-request", json={"email": "alice@example.com"})
    token = transport.last_token("Reset Your Password")

    confirm = {"token": token, "password": NEW_PASSWORD, "confirmPassword": NEW_PASSWORD}
    assert client.post("/api/auth/password-reset-confirm", json=confirm).status_code == 200
    assert client.post("/api/auth/password-reset-confirm", json=confirm).status_code == 401

    assert login(client, password=PASSWORD).status_code == 401
    assert login(client, password=NEW_PASSWORD).status_code == 200


def test_expired_reset_token_rejected(client, transport, database):
    register(client)
    client.post("/api/auth/password-reset-request", json={"email": "alice@example.com"})
    token = transport.last_token("Reset Your Password")

    with database.session() as db:
        user = repository.get_user_by_email(db, "alice@example.com")
        user.reset_token_expires_at = utcnow() - timedelta(minutes=1)
        db.commit()

    response = client.post("/api/auth/password-reset-confirm", json={
        "token": token, "password": NEW_PASSWORD, "confirmPassword": NEW_PASSWORD,
    })
    assert response.status_code == 401
    assert login(client).status_code == 200


def test_verify_email_once(client, transport):
    data = register(client)
    token = transport.last_token("Verify Your Email Address")

    response = client.post("/api/auth/verify-email", json={"token": token})
    assert response.status_code == 200
    assert response.json()["data"] == {"emailVerified": True}
    assert client.post("/api/auth/verify-email", json={"token": token}).status_code == 400

    profile = client.get("/api/user/profile", headers=bearer(data["token"])).json()["data"]
    assert profile["emailVerified"] is True


def test_verification_token_expires_after_a_day(client, transport, database):
    register(client)
    token = transport.last_token("Verify Your Email Address")
    with database.session() as db:
        user = repository.get_user_by_email(db, "alice@example.com")
        user.verification_token_sent_at = utcnow() - timedelta(hours=25)
        db.commit()

    assert client.post("/api/auth/verify-email", json={"token": token}).status_code == 400


def test_resend_verification_issues_new_token(client, transport):
    register(client)
    first = transport.last_token("Verify Your Email Address")
    response = client.post("/api/auth/resend-verification", json={"email": "alice@example.com"})
    assert response.status_code == 200
    second = transport.last_token("Verify Your Email Address")

    assert second != first
    assert client.post("/api/auth/verify-email", json={"token": first}).status_code == 400
    assert client.post("/api/auth/verify-email", json={"token": second}).status_code == 200

    # Same answer for unknown or already verified addresses, and no email
    sent = len(transport.sent)
    assert client.post("/api/auth/resend-verification", json={"email": "alice@example.com"}).status_code == 200
    assert client.post("/api/auth/resend-verification", json={"email": "ghost@example.com"}).status_code == 200
    assert len(transport.sent) == sent


def test_change_password(client):
    token = register(client)["token"]
    headers = bearer(token)

    response = client.post("/api/auth/change-password", headers=headers, json={
        "currentPassword": "Wr0ng!Pass", "newPassword": NEW_PASSWORD, "confirmPassword": NEW_PASSWORD,
    })
    assert response.status_code == 401

    response = client.post("/api/auth/change-password", headers=headers, json={
        "currentPassword": PASSWORD, "newPassword": NEW_PASSWORD, "confirmPassword": NEW_PASSWORD,
    })
    assert response.status_code == 200
    assert login(client, password=NEW_PASSWORD).status_code == 200


def test_change_password_requires_token(client):
    body = {"currentPassword": PASSWORD, "newPassword": NEW_PASSWORD, "confirmPassword": NEW_PASSWORD}
    response = client.post("/api/auth/change-password", json=body)
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"

    response = client.post("/api/auth/change-password", json=body, headers=bearer("garbage"))
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid or expired token"


def test_passwords_are_never_stored_in_clear(client, database):
    register(client)
    with database.session() as db:
        user = db.query(User).filter(User.email == "alice@example.com").one()
        assert user.password.startswith("$2")
        assert PASSWORD not in user.password
        assert len(user.verification_token) == 64
