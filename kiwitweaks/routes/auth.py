# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
import asyncio
import time

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from .. import repository
from ..cache import profile_key
from ..dependencies import (
    get_cache,
    get_client_ip,
    get_db,
    get_mailer,
    get_settings,
    rate_limit,
    require_auth,
    validated_body,
)
from ..errors import AuthenticationError, ValidationError
from ..logs import log_auth, log_security
from ..notifications import notify
from ..schemas import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    PasswordResetConfirmRequest,
    RegisterRequest,
    TokenRequest,
)
from ..security import (
    RESET_TOKEN_TTL,
    VERIFICATION_TOKEN_TTL,
    dummy_verify,
    generate_opaque_token,
    hash_password,
    hash_token,
    issue_token,
    verify_password,
)
from . import success

router = APIRouter(prefix="/auth", tags=["auth"])

REMEMBER_ME_DAYS = 30

RESET_REQUESTED_MESSAGE = "If an account exists with this email, you will receive a password reset link."
VERIFICATION_SENT_MESSAGE = "If this email belongs to an unverified account, a new verification link is on its way."


def _public_user(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "emailVerified": bool(user.email_verified),
        "isPremium": bool(user.is_premium),
    }


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit("register"))])
async def register(
    background_tasks: BackgroundTasks,
    body: RegisterRequest = Depends(validated_body(RegisterRequest)),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    mailer=Depends(get_mailer),
    ip: str = Depends(get_client_ip),
):
    """Create an account and start email verification"""
    raw_token = generate_opaque_token()
    user = repository.create_user(
        db,
        email=body.email,
        password_hash=hash_password(body.password),
        username=body.username,
        verification_token=hash_token(raw_token),
    )
    repository.record_auth_event(db, "register", user_id=user.id, email=user.email, ip=ip)
    log_auth("register", user_id=user.id, email=user.email)

    background_tasks.add_task(notify, mailer.send_email_verification, user.email, user.username, raw_token, user_id=user.id)
    background_tasks.add_task(notify, mailer.send_welcome, user.email, user.username, user_id=user.id)

    token = issue_token(user.id, user.email, settings.jwt_secret)
    return success({"token": token, "user": _public_user(user)}, "Account created successfully")


@router.post("/login", dependencies=[Depends(rate_limit("login"))])
async def login(
    body: LoginRequest = Depends(validated_body(LoginRequest)),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    ip: str = Depends(get_client_ip),
    cache=Depends(get_cache),
):
    """Exchange credentials for a session token"""
    user = repository.get_user_by_email(db, body.email)
    if user is None or not user.password:
        dummy_verify()
        log_auth("login_failed", email=body.email, ip=ip, reason="unknown_account")
        raise AuthenticationError("Invalid email or password")

    if not verify_password(body.password, user.password):
        log_auth("login_failed", user_id=user.id, email=user.email, ip=ip, reason="bad_password")
        raise AuthenticationError("Invalid email or password")

    repository.record_login(db, user)
    cache.delete(profile_key(user.id))
    repository.record_auth_event(db, "login", user_id=user.id, email=user.email, ip=ip)
    log_auth("login", user_id=user.id, email=user.email)

    expiry_days = REMEMBER_ME_DAYS if body.remember else settings.jwt_expiry_days
    token = issue_token(user.id, user.email, settings.jwt_secret, expiry_days=expiry_days)
    return success({
        "token": token,
        "user": {**_public_user(user), "lastLogin": user.last_login.isoformat()},
    }, "Login successful")


@router.post("/password-reset-request", dependencies=[Depends(rate_limit("password_reset"))])
async def password_reset_request(
    background_tasks: BackgroundTasks,
    body: EmailRequest = Depends(validated_body(EmailRequest)),
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
    mailer=Depends(get_mailer),
    ip: str = Depends(get_client_ip),
):
    """Email a reset link. Answers the same way whether or not the account exists."""
    started = time.monotonic()

    user = repository.get_user_by_email(db, body.email)
    if user is not None:
        raw_token = generate_opaque_token()
        repository.store_reset_token(db, user, hash_token(raw_token), RESET_TOKEN_TTL)
        repository.record_auth_event(db, "password_reset_requested", user_id=user.id, email=user.email, ip=ip)
        background_tasks.add_task(notify, mailer.send_password_reset, user.email, user.username, raw_token, user_id=user.id)
    else:
        log_auth("password_reset_unknown_email", email=body.email, ip=ip)

    # Both branches take at least the same wall-clock time
    remaining = settings.reset_min_response_seconds - (time.monotonic() - started)
    if remaining > 0:
        await asyncio.sleep(remaining)

    return success(message=RESET_REQUESTED_MESSAGE)


@router.post("/password-reset-confirm")
async def password_reset_confirm(
    body: PasswordResetConfirmRequest = Depends(validated_body(PasswordResetConfirmRequest)),
    db: Session = Depends(get_db),
    ip: str = Depends(get_client_ip),
):
    """Set a new password with a one-time reset token"""
    user = repository.consume_reset_token(db, hash_token(body.token), hash_password(body.password))
    if user is None:
        log_security("password_reset_token_rejected", severity="low", ip=ip)
        raise AuthenticationError("Invalid or expired reset token")

    repository.record_auth_event(db, "password_reset", user_id=user.id, email=user.email, ip=ip)
    log_auth("password_reset", user_id=user.id, email=user.email)
    return success(message="Password has been reset. You can now log in.")


@router.post("/verify-email")
async def verify_email(
    body: TokenRequest = Depends(validated_body(TokenRequest)),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
    ip: str = Depends(get_client_ip),
):
    """Mark the address verified if the token was issued in the last 24 hours"""
    user = repository.consume_verification_token(db, hash_token(body.token), VERIFICATION_TOKEN_TTL)
    if user is None:
        raise ValidationError("Invalid or expired verification token")

    cache.delete(profile_key(user.id))
    repository.record_auth_event(db, "email_verified", user_id=user.id, email=user.email, ip=ip)
    log_auth("email_verified", user_id=user.id, email=user.email)
    return success({"emailVerified": True}, "Email verified successfully")


@router.post("/resend-verification", dependencies=[Depends(rate_limit("email_verification"))])
async def resend_verification(
    background_tasks: BackgroundTasks,
    body: EmailRequest = Depends(validated_body(EmailRequest)),
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
):
    """Issue a fresh verification token. The 24 hours restart from now."""
    user = repository.get_user_by_email(db, body.email)
    if user is not None and not user.email_verified:
        raw_token = generate_opaque_token()
        repository.store_verification_token(db, user, hash_token(raw_token))
        background_tasks.add_task(notify, mailer.send_email_verification, user.email, user.username, raw_token, user_id=user.id)
    return success(message=VERIFICATION_SENT_MESSAGE)


@router.post("/change-password", dependencies=[Depends(rate_limit("login"))])
async def change_password(
    body: ChangePasswordRequest = Depends(validated_body(ChangePasswordRequest)),
    claims: dict = Depends(require_auth),
    db: Session = Depends(get_db),
    ip: str = Depends(get_client_ip),
):
    """Change the password of the signed-in account"""
    user = repository.get_user(db, claims["userId"])
    if user is None:
        raise AuthenticationError("Invalid or expired token")
    if not verify_password(body.current_password, user.password):
        log_auth("change_password_failed", user_id=user.id, email=user.email, ip=ip)
        raise AuthenticationError("Current password is incorrect")

    repository.set_password(db, user, hash_password(body.new_password))
    repository.record_auth_event(db, "password_changed", user_id=user.id, email=user.email, ip=ip)
    log_auth("password_changed", user_id=user.id, email=user.email)
    return success(message="Password changed successfully")
