# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .. import __version__, repository
from ..catalog import list_products
from ..dependencies import auth_scheme, get_db, get_settings
from ..errors import AuthenticationError, ConfigurationError
from ..logs import logger
from . import success

router = APIRouter(tags=["system"])


@router.get("/products")
async def products():
    """Public catalog, cheapest first"""
    return success({"products": [p.to_dict() for p in list_products()]})


@router.get("/health")
async def health(request: Request):
    """Database health"""
    state = request.app.state
    db_health = state.database.health_check()
    body = success({
        "status": "ok" if db_health["status"] == "healthy" else "degraded",
        "version": __version__,
        "database": db_health,
        "cache": "enabled" if state.cache.enabled else "disabled",
    })
    if db_health["status"] != "healthy":
        body["success"] = False
        return JSONResponse(body, status_code=503)
    return body


def require_cron_secret(
    settings=Depends(get_settings),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> None:
    if not settings.cron_secret:
        raise ConfigurationError("Cron secret not configured")
    if credentials is None or not secrets.compare_digest(credentials.credentials, settings.cron_secret):
        raise AuthenticationError("Invalid cron secret")


# ========== CRON JOBS ==========

@router.get("/cron/prune-auth-logs", dependencies=[Depends(require_cron_secret)])
@router.post("/cron/prune-auth-logs", dependencies=[Depends(require_cron_secret)])
async def prune_auth_logs(db: Session = Depends(get_db)):
    """Drop audit log rows past their 90 day retention"""
    deleted = repository.prune_auth_logs(db)
    logger.info("Cron prune-auth-logs removed %d rows", deleted)
    return success({"deleted": deleted})
