# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import repository
from ..cache import profile_key
from ..dependencies import get_cache, get_db, get_settings, require_auth
from ..errors import NotFoundError
from . import success

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/profile")
async def profile(
    claims: dict = Depends(require_auth),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
    settings=Depends(get_settings),
):
    """Sanitized profile of the signed-in user (cached for an hour)"""
    user_id = claims["userId"]
    data = cache.get_or_set(
        profile_key(user_id),
        lambda: repository.build_profile(db, user_id),
        settings.profile_cache_ttl,
    )
    if data is None:
        raise NotFoundError("User not found")
    return success(data)
