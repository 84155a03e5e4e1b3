# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from sqlalchemy import event

from conftest import bearer, register
from kiwitweaks.security import issue_token


def count_statements(engine):
    counter = {"n": 0}

    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        counter["n"] += 1

    return counter


def test_profile_is_sanitized(client):
    data = register(client)
    response = client.get("/api/user/profile", headers=bearer(data["token"]))

    assert response.status_code == 200
    profile = response.json()["data"]
    assert profile["email"] == "alice@example.com"
    assert profile["username"] == "alice"
    assert profile["hwidBound"] is False
    assert profile["purchases"] == []
    assert profile["stats"] == {"purchaseCount": 0, "accountAge": 0}
    for secret in ("password", "reset_token", "resetToken", "verificationToken", "verification_token", "hwid"):
        assert secret not in profile


def test_cached_profile_needs_no_queries(client, database):
    token = register(client)["token"]
    counter = count_statements(database.engine)

    client.get("/api/user/profile", headers=bearer(token))
    assert counter["n"] > 0

    counter["n"] = 0
    response = client.get("/api/user/profile", headers=bearer(token))
    assert response.status_code == 200
    assert counter["n"] == 0


def test_profile_of_deleted_user(client, settings):
    token = issue_token(9999, "ghost@example.com", settings.jwt_secret)
    response = client.get("/api/user/profile", headers=bearer(token))
    assert response.status_code == 404


def test_profile_requires_auth(client):
    response = client.get("/api/user/profile")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_REQUIRED"
