# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Request schemas.

Unknown fields are dropped, free-text fields are trimmed and emails are
lower-cased. Passwords are taken exactly as sent.
"""
import re
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    ValidationInfo,
    field_validator,
)
from pydantic_core import PydanticCustomError

from .catalog import PRODUCTS

SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

COMMON_PASSWORDS = {
    "password", "password123", "12345678", "qwerty", "abc123",
    "monkey", "1234567890", "letmein", "trustno1", "dragon",
    "baseball", "iloveyou", "master", "sunshine", "ashley",
    "bailey", "passw0rd", "shadow", "123123", "654321",
}


def _normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _check_strong_password(value: str) -> str:
    if not (
        re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"\d", value)
        and any(ch in SPECIAL_CHARACTERS for ch in value)
    ):
        raise PydanticCustomError(
            "password_strength",
            "Password must contain uppercase, lowercase, number, and special character",
        )
    if value.lower() in COMMON_PASSWORDS:
        raise PydanticCustomError("password_common", "This password is too common. Please choose a stronger password")
    return value


def _check_product(value: str) -> str:
    if value not in PRODUCTS:
        raise PydanticCustomError("product_unknown", "Invalid plan selected")
    return value


Email = Annotated[EmailStr, BeforeValidator(_normalize_email), AfterValidator(str.lower)]
StrongPassword = Annotated[str, Field(min_length=8, max_length=128), AfterValidator(_check_strong_password)]
Trimmed = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=256)]
ProductId = Annotated[str, StringConstraints(strip_whitespace=True), AfterValidator(_check_product)]


class RequestSchema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ========== AUTH ==========

class RegisterRequest(RequestSchema):
    email: Email
    password: StrongPassword
    username: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=30, pattern=r"^[A-Za-z0-9]+$")]] = None
    terms: bool

    @field_validator("terms")
    @classmethod
    def terms_accepted(cls, v: bool) -> bool:
        if v is not True:
            raise PydanticCustomError("terms_required", "You must accept the Terms of Service")
        return v


class LoginRequest(RequestSchema):
    email: Email
    password: str = Field(min_length=1, max_length=128)
    remember: bool = False


class EmailRequest(RequestSchema):
    email: Email


class TokenRequest(RequestSchema):
    token: Trimmed


class PasswordResetConfirmRequest(RequestSchema):
    token: Trimmed
    password: StrongPassword
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info: ValidationInfo) -> str:
        if "password" in info.data and v != info.data["password"]:
            raise PydanticCustomError("password_mismatch", "Passwords do not match")
        return v


class ChangePasswordRequest(RequestSchema):
    current_password: str = Field(alias="currentPassword", min_length=1, max_length=128)
    new_password: StrongPassword = Field(alias="newPassword")
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("new_password")
    @classmethod
    def differs_from_current(cls, v: str, info: ValidationInfo) -> str:
        if v == info.data.get("current_password"):
            raise PydanticCustomError("password_unchanged", "New password must be different from current password")
        return v

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info: ValidationInfo) -> str:
        if "new_password" in info.data and v != info.data["new_password"]:
            raise PydanticCustomError("password_mismatch", "Passwords do not match")
        return v


# ========== PAYMENTS ==========

class CheckoutRequest(RequestSchema):
    email: Email
    plan: ProductId = "premium"
    success_url: Optional[str] = Field(default=None, alias="successUrl", max_length=2048)
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl", max_length=2048)

    @field_validator("success_url", "cancel_url")
    @classmethod
    def absolute_http_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not re.match(r"^https?://[^\s/]+", v):
            raise PydanticCustomError("url_invalid", "Must be an absolute http(s) URL")
        return v


class PayPalCreateRequest(RequestSchema):
    email: Email
    plan: ProductId = "premium"


class PayPalCaptureRequest(RequestSchema):
    order_id: Trimmed = Field(alias="orderId")


# ========== LICENSING ==========

class GenerateLicenseRequest(RequestSchema):
    username: Trimmed
    duration: int = Field(default=99999999, ge=1)
    product_id: ProductId = Field(default="premium", alias="productId")
    note: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]] = None


class VerifyLicenseRequest(RequestSchema):
    license_key: Trimmed = Field(alias="licenseKey")
    hwid: Optional[Trimmed] = None


class UpdateHwidRequest(RequestSchema):
    license_key: Trimmed = Field(alias="licenseKey")
    hwid: Trimmed


# ========== ORDERS ==========

class CreateOrderRequest(RequestSchema):
    product_id: ProductId = Field(alias="productId")
    license_key: Optional[Trimmed] = Field(default=None, alias="licenseKey")
