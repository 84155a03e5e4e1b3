# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Credential and token helpers.

Passwords are bcrypt hashes. Session tokens are HS256 JWTs. Reset and
verification tokens are random values mailed to the user; only their SHA-256
is stored, so a leaked table does not leak usable tokens.
"""
import hashlib
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext

JWT_ALG = "HS256"
TOKEN_EXPIRY_DAYS = 7
RESET_TOKEN_TTL = timedelta(hours=1)
VERIFICATION_TOKEN_TTL = timedelta(hours=24)

LICENSE_KEY_PATTERN = re.compile(r"^[A-F0-9]{4}(-[A-F0-9]{4}){7}$")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)


def configure_password_hashing(rounds: int) -> None:
    pwd_context.update(bcrypt__rounds=rounds)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed or not isinstance(plain, str):
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        # Unrecognised or corrupted hash
        return False


def dummy_verify() -> None:
    """Burn the same time as a real check when there is no user to check against."""
    pwd_context.dummy_verify()


def issue_token(user_id: int, email: str, secret: str, expiry_days: int = TOKEN_EXPIRY_DAYS) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(days=expiry_days),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALG)


def verify_token(token, secret: str) -> Optional[dict]:
    """Claims of a valid session token, or None. Never raises."""
    if not isinstance(token, str) or not token:
        return None
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALG], options={"require": ["exp", "iat"]})
    except jwt.PyJWTError:
        return None
    user_id = claims.get("userId")
    if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(claims.get("email"), str):
        return None
    return claims


def generate_opaque_token() -> str:
    return secrets.token_hex(32)


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def generate_license_key() -> str:
    """XXXX-XXXX-XXXX-XXXX-XXXX-XXXX-XXXX-XXXX from 16 random bytes."""
    raw = secrets.token_hex(16).upper()
    return "-".join(raw[i:i + 4] for i in range(0, len(raw), 4))


def is_license_key(value) -> bool:
    return isinstance(value, str) and bool(LICENSE_KEY_PATTERN.match(value))
