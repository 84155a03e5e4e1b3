# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import repository
from ..cache import profile_key
from ..dependencies import get_cache, get_db, get_keyauth, optional_auth, require_auth, validated_body
from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..logs import logger, log_security
from ..schemas import GenerateLicenseRequest, UpdateHwidRequest, VerifyLicenseRequest
from . import success

router = APIRouter(prefix="/keyauth", tags=["keyauth"])


@router.post("/generate-license")
async def generate_license(
    body: GenerateLicenseRequest = Depends(validated_body(GenerateLicenseRequest)),
    claims: dict = Depends(require_auth),
    keyauth=Depends(get_keyauth),
):
    """Mint a KeyAuth license key through the seller API"""
    license_key = keyauth.generate_license(body.username, duration=body.duration, note=body.note)
    logger.info("KeyAuth license generated for %s by user %s (%s)", body.username, claims["userId"], body.product_id)
    return success({"licenseKey": license_key}, "License key generated successfully")


@router.post("/verify-license")
async def verify_license(
    body: VerifyLicenseRequest = Depends(validated_body(VerifyLicenseRequest)),
    claims: Optional[dict] = Depends(optional_auth),
    db: Session = Depends(get_db),
    keyauth=Depends(get_keyauth),
    cache=Depends(get_cache),
):
    """Check a key with KeyAuth; a signed-in owner also gets the HWID bound"""
    check = keyauth.verify_license(body.license_key, body.hwid)
    if not check.valid:
        raise ValidationError(check.message or "Invalid license key")

    owner = None
    hwid_bound = False
    if claims is not None:
        user_id = claims["userId"]
        if body.hwid:
            if not repository.bind_hwid(db, user_id, body.license_key, body.hwid):
                log_security("hwid_bind_not_owner", severity="medium", user_id=user_id)
                raise AuthorizationError("This license key does not belong to your account")
            cache.delete(profile_key(user_id))
            hwid_bound = True
        if repository.user_owns_license(db, user_id, body.license_key):
            user = repository.get_user(db, user_id)
            owner = {
                "username": user.username,
                "email": user.email,
                "isPremium": bool(user.is_premium),
                "licenseKey": user.license_key,
                "hwid": user.hwid,
            }

    return success({
        "valid": True,
        "hwidBound": hwid_bound,
        "user": owner,
        "keyauth": check.info,
    }, "License key is valid")


@router.post("/update-hwid")
async def update_hwid(
    body: UpdateHwidRequest = Depends(validated_body(UpdateHwidRequest)),
    claims: dict = Depends(require_auth),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Bind a hardware id to one of the caller's licenses"""
    user_id = claims["userId"]
    if not repository.bind_hwid(db, user_id, body.license_key, body.hwid):
        raise NotFoundError("Invalid license key")
    cache.delete(profile_key(user_id))
    logger.info("HWID updated for user %s", user_id)
    return success(message="HWID updated successfully")
