# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
import pytest
import requests

from conftest import bearer, register
from kiwitweaks.errors import ConfigurationError, UpstreamServiceError
from kiwitweaks.httpclient import HttpClient
from kiwitweaks.licensing import KEYAUTH_APP_API, KEYAUTH_SELLER_API, KeyAuthClient

KEY = "KIWI-AAAA-BBBB-CCCC"


class StubHttp:
    """Answers json() calls from a queue and records what was sent."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def json(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs.get("data")))
        return self.responses.pop(0)


INIT_OK = {"success": True, "sessionid": "sess-1"}


# ========== CLIENT ==========

def test_verify_license_opens_session_first():
    http = StubHttp(INIT_OK, {"success": True, "message": "ok", "info": {
        "username": "kiwi", "subscriptions": [{"subscription": "default"}], "expiry": "4102444800",
    }})
    check = KeyAuthClient(None, "owner-1", http=http).verify_license(KEY, hwid="HW-1")

    assert check.valid
    assert check.info["username"] == "kiwi"
    assert [c[2]["type"] for c in http.calls] == ["init", "license"]
    assert all(c[1] == KEYAUTH_APP_API for c in http.calls)
    assert http.calls[1][2]["sessionid"] == "sess-1"
    assert http.calls[1][2]["hwid"] == "HW-1"


def test_verify_license_reports_invalid_key():
    http = StubHttp(INIT_OK, {"success": False, "message": "Key not found"})
    check = KeyAuthClient(None, "owner-1", http=http).verify_license("NOPE")
    assert not check.valid
    assert check.message == "Key not found"


def test_failed_init_is_an_upstream_error():
    http = StubHttp({"success": False, "message": "app disabled"})
    with pytest.raises(UpstreamServiceError):
        KeyAuthClient(None, "owner-1", http=http).verify_license(KEY)


def test_generate_license_then_verifies_it():
    http = StubHttp({"success": True, "key": KEY}, INIT_OK, {"success": True, "info": {}})
    key = KeyAuthClient("seller-1", "owner-1", http=http).generate_license("alice", duration=30)

    assert key == KEY
    method, url, data = http.calls[0]
    assert url == KEYAUTH_SELLER_API
    assert data["type"] == "add"
    assert data["expiry"] == "30"
    assert data["sellerkey"] == "seller-1"


def test_generate_license_accepts_key_list():
    http = StubHttp({"success": True, "keys": [KEY]}, INIT_OK, {"success": True})
    assert KeyAuthClient("seller-1", "owner-1", http=http).generate_license("alice") == KEY


def test_generate_license_refused():
    http = StubHttp({"success": False, "message": "seller key invalid"})
    with pytest.raises(UpstreamServiceError):
        KeyAuthClient("seller-1", "owner-1", http=http).generate_license("alice")


def test_missing_credentials():
    with pytest.raises(ConfigurationError):
        KeyAuthClient(None, "owner-1", http=StubHttp()).generate_license("alice")
    with pytest.raises(ConfigurationError):
        KeyAuthClient(None, None, http=StubHttp()).verify_license(KEY)


class FailingSession:
    def request(self, method, url, **kwargs):
        raise requests.ConnectionError("unreachable")


class TextResponse:
    status_code = 200

    def json(self):
        raise ValueError("not json")


class TextSession:
    def __init__(self):
        self.kwargs = None

    def request(self, method, url, **kwargs):
        self.kwargs = kwargs
        return TextResponse()


def test_http_client_maps_failures():
    with pytest.raises(UpstreamServiceError):
        HttpClient("KeyAuth", session=FailingSession()).request("POST", KEYAUTH_APP_API)

    session = TextSession()
    with pytest.raises(UpstreamServiceError):
        HttpClient("KeyAuth", timeout=3.0, session=session).json("POST", KEYAUTH_APP_API)
    assert session.kwargs["timeout"] == 3.0


# ========== ROUTES ==========

def test_generate_license_route(client, keyauth):
    token = register(client)["token"]
    response = client.post("/api/keyauth/generate-license", headers=bearer(token), json={"username": "alice"})
    assert response.status_code == 200
    assert response.json()["data"] == {"licenseKey": "KIWI-GEN0001"}
    assert keyauth.generated == [("alice", 99999999, None)]

    assert client.post("/api/keyauth/generate-license", json={"username": "alice"}).status_code == 401


def test_verify_license_anonymous(client):
    response = client.post("/api/keyauth/verify-license", json={"licenseKey": KEY, "hwid": "HW-1"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["valid"] is True
    assert data["hwidBound"] is False
    assert data["user"] is None
    assert data["keyauth"]["username"] == "kiwi"


def test_verify_invalid_license(client):
    response = client.post("/api/keyauth/verify-license", json={"licenseKey": "NOPE"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid license key"


def _owner_token(client):
    token = register(client)["token"]
    client.post("/api/orders", headers=bearer(token), json={"productId": "premium", "licenseKey": KEY})
    return token


def test_verify_license_binds_hwid_for_owner(client):
    token = _owner_token(client)
    response = client.post("/api/keyauth/verify-license", headers=bearer(token), json={"licenseKey": KEY, "hwid": "HW-1"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["hwidBound"] is True
    assert data["user"]["hwid"] == "HW-1"
    assert data["user"]["licenseKey"] == KEY

    profile = client.get("/api/user/profile", headers=bearer(token)).json()["data"]
    assert profile["hwidBound"] is True


def test_verify_license_refuses_foreign_key(client, keyauth):
    keyauth.valid_keys.add("KIWI-OTHER")
    token = register(client)["token"]
    response = client.post("/api/keyauth/verify-license", headers=bearer(token),
                           json={"licenseKey": "KIWI-OTHER", "hwid": "HW-1"})
    assert response.status_code == 403


def test_verify_license_with_bad_token(client):
    response = client.post("/api/keyauth/verify-license", headers=bearer("garbage"), json={"licenseKey": KEY})
    assert response.status_code == 401


def test_update_hwid(client):
    token = _owner_token(client)
    response = client.post("/api/keyauth/update-hwid", headers=bearer(token), json={"licenseKey": KEY, "hwid": "HW-2"})
    assert response.status_code == 200

    response = client.post("/api/keyauth/update-hwid", headers=bearer(token), json={"licenseKey": "KIWI-OTHER", "hwid": "HW-2"})
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Invalid license key"


def test_keyauth_outage_is_502(client, keyauth):
    keyauth.error = UpstreamServiceError("KeyAuth is unreachable")
    response = client.post("/api/keyauth/verify-license", json={"licenseKey": KEY})
    assert response.status_code == 502
    assert response.json()["error"]["code"] == "UPSTREAM_ERROR"
