# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
import re

import pytest
from fastapi.testclient import TestClient

from kiwitweaks.analytics import Analytics
from kiwitweaks.cache import Cache, MemoryCacheBackend
from kiwitweaks.config import Settings
from kiwitweaks.database import Database
from kiwitweaks.licensing import LicenseCheck
from kiwitweaks.main import create_app
from kiwitweaks.notifications import Mailer
from kiwitweaks.payments import PayPalCapture
from kiwitweaks.ratelimit import MemoryRateLimitStore, RateLimiter

PASSWORD = "Str0ng!Pass"


class RecordingTransport:
    name = "recording"

    def __init__(self):
        self.sent = []

    def send(self, to, subject, html, text):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"msg-{len(self.sent)}"

    def subjects(self, to=None):
        return [m["subject"] for m in self.sent if to is None or m["to"] == to]

    def last_token(self, subject):
        for message in reversed(self.sent):
            if message["subject"] == subject:
                return re.search(r"token=([0-9a-f]{64})", message["html"]).group(1)
        raise AssertionError(f"no email with subject {subject!r}")


class FakeKeyAuth:
    def __init__(self):
        self.valid_keys = {"KIWI-AAAA-BBBB-CCCC"}
        self.generated = []
        self.error = None

    def generate_license(self, username, duration=99999999, note=None):
        if self.error:
            raise self.error
        key = f"KIWI-GEN{len(self.generated) + 1:04d}"
        self.generated.append((username, duration, note))
        self.valid_keys.add(key)
        return key

    def verify_license(self, license_key, hwid=None):
        if self.error:
            raise self.error
        if license_key not in self.valid_keys:
            return LicenseCheck(valid=False, message="Invalid license key")
        return LicenseCheck(valid=True, message="Logged in!",
                            info={"username": "kiwi", "subscriptions": [], "expiry": "4102444800"})


class FakePayPal:
    def __init__(self):
        self.created = []
        self.captured = []
        self.capture_result = None

    def create_order(self, product, email):
        self.created.append((product.id, email))
        return f"PAYPAL-{len(self.created)}"

    def capture_order(self, order_id):
        self.captured.append(order_id)
        return self.capture_result or PayPalCapture(
            order_id=order_id,
            status="COMPLETED",
            amount_value="29.99",
            currency="USD",
            custom={"email": "buyer@example.com", "plan": "premium"},
        )


async def no_sleep(seconds):
    return None


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        reset_min_response_seconds=0,
        stripe_webhook_secret="whsec_test",
        database_url="sqlite://",
    )


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    return db


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def keyauth():
    return FakeKeyAuth()


@pytest.fixture
def paypal():
    return FakePayPal()


@pytest.fixture
def cache():
    return Cache(MemoryCacheBackend())


@pytest.fixture
def limiter():
    return RateLimiter(MemoryRateLimitStore(), sleep=no_sleep)


@pytest.fixture
def app(settings, database, transport, keyauth, paypal, cache, limiter):
    return create_app(
        settings,
        database=database,
        mailer=Mailer(transport=transport),
        cache=cache,
        limiter=limiter,
        keyauth=keyauth,
        paypal=paypal,
        analytics=Analytics(),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client, email="alice@example.com", password=PASSWORD, username="alice"):
    payload = {"email": email, "password": password, "terms": True}
    if username:
        payload["username"] = username
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
