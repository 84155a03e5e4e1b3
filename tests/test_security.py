# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from datetime import datetime, timedelta, timezone

import jwt

from kiwitweaks.security import (
    configure_password_hashing,
    generate_license_key,
    generate_opaque_token,
    hash_password,
    hash_token,
    is_license_key,
    issue_token,
    verify_password,
    verify_token,
)

SECRET = "unit-secret"


def setup_module(module):
    configure_password_hashing(4)


def test_password_hash_round_trip():
    hashed = hash_password("Str0ng!Pass")
    assert hashed != "Str0ng!Pass"
    assert verify_password("Str0ng!Pass", hashed)
    assert not verify_password("str0ng!pass", hashed)


def test_verify_password_without_hash():
    assert not verify_password("anything", None)
    assert not verify_password("anything", "")
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_token_carries_user_and_email():
    claims = verify_token(issue_token(42, "alice@example.com", SECRET), SECRET)
    assert claims["userId"] == 42
    assert claims["email"] == "alice@example.com"
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600


def test_token_rejected_with_other_secret():
    assert verify_token(issue_token(1, "a@example.com", SECRET), "other-secret") is None


def test_expired_token_rejected():
    assert verify_token(issue_token(1, "a@example.com", SECRET, expiry_days=-1), SECRET) is None


def test_token_with_wrong_claim_types_rejected():
    now = datetime.now(timezone.utc)
    base = {"iat": now, "exp": now + timedelta(hours=1)}
    assert verify_token(jwt.encode({**base, "userId": "1", "email": "a@example.com"}, SECRET, algorithm="HS256"), SECRET) is None
    assert verify_token(jwt.encode({**base, "userId": True, "email": "a@example.com"}, SECRET, algorithm="HS256"), SECRET) is None
    assert verify_token(jwt.encode({**base, "userId": 1}, SECRET, algorithm="HS256"), SECRET) is None


def test_token_without_expiry_rejected():
    token = jwt.encode({"userId": 1, "email": "a@example.com"}, SECRET, algorithm="HS256")
    assert verify_token(token, SECRET) is None


def test_verify_token_never_raises_on_garbage():
    assert verify_token("not.a.jwt", SECRET) is None
    assert verify_token("", SECRET) is None
    assert verify_token(None, SECRET) is None


def test_opaque_tokens_are_stored_hashed():
    raw = generate_opaque_token()
    assert len(raw) == 64
    assert hash_token(raw) == hash_token(raw)
    assert hash_token(raw) != raw
    assert len(hash_token(raw)) == 64


def test_license_key_format():
    key = generate_license_key()
    assert is_license_key(key)
    assert len(key.split("-")) == 8
    assert key == key.upper()
    assert generate_license_key() != key
    assert not is_license_key("abcd-1234")
