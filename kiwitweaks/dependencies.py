# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
FastAPI dependencies.

A route declares its chain in this order and FastAPI resolves it in the same
order: the router's general limiter, the route's own limiter, the validated
body, then the bearer token. A rejected request never reaches the handler.
"""
import json
from typing import Iterator, Optional, Type

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .errors import AuthenticationError, ValidationError
from .ratelimit import client_ip
from .security import verify_token
from .validation import validate

auth_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request):
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    with request.app.state.database.session() as db:
        yield db


def get_cache(request: Request):
    return request.app.state.cache


def get_mailer(request: Request):
    return request.app.state.mailer


def get_analytics(request: Request):
    return request.app.state.analytics


def get_keyauth(request: Request):
    return request.app.state.keyauth


def get_paypal(request: Request):
    return request.app.state.paypal


def get_client_ip(request: Request) -> str:
    return client_ip(request, request.app.state.settings.trust_proxy_headers)


def rate_limit(tier: str):
    async def check(request: Request) -> None:
        await request.app.state.limiter.check(tier, get_client_ip(request))

    check.__name__ = f"rate_limit_{tier}"
    return check


def validated_body(schema: Type):
    async def parse(request: Request):
        raw = await request.body()
        if not raw:
            raise ValidationError("Request body is required", details=[
                {"field": "body", "message": "Request body is required", "type": "missing"},
            ])
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Request body must be valid JSON", details=[
                {"field": "body", "message": "Request body must be valid JSON", "type": "json_invalid"},
            ])
        return validate(schema, data)

    parse.__name__ = f"validated_{schema.__name__}"
    return parse


def _claims(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[dict]:
    if credentials is None:
        return None
    return verify_token(credentials.credentials, request.app.state.settings.jwt_secret)


async def require_auth(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> dict:
    """Claims of a valid session token. No database read: deleted users surface later as 404."""
    if credentials is None:
        raise AuthenticationError("Authentication required", headers={"WWW-Authenticate": "Bearer"})
    claims = _claims(request, credentials)
    if claims is None:
        raise AuthenticationError("Invalid or expired token", headers={"WWW-Authenticate": "Bearer"})
    return claims


async def optional_auth(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)) -> Optional[dict]:
    """None without a token; a token that is present must be valid."""
    if credentials is None:
        return None
    claims = _claims(request, credentials)
    if claims is None:
        raise AuthenticationError("Invalid or expired token", headers={"WWW-Authenticate": "Bearer"})
    return claims
