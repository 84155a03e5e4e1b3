# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Runtime configuration.

Everything is read from the environment (a local .env file is loaded first),
so the same build runs on a laptop and behind the production proxy.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEV_JWT_SECRET = "dev-secret-change-me"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number")


@dataclass
class Settings:
    environment: str = "development"
    app_name: str = "KiwiTweaks"
    app_url: str = "https://kiwitweaks.com"
    download_url: str = "https://kiwitweaks.com/download"
    support_url: str = "https://kiwitweaks.com/support"

    # Database
    database_url: str = "sqlite:///./kiwitweaks.db"
    db_pool_size: int = 10
    db_connect_attempts: int = 3
    db_backoff_seconds: float = 1.0

    # Sessions and credentials
    jwt_secret: str = DEV_JWT_SECRET
    jwt_expiry_days: int = 7
    bcrypt_rounds: int = 10

    # Email
    resend_api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_secure: bool = False
    email_from: str = "KiwiTweaks <contact.kiwitweaks@gmail.com>"

    # Payments
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    paypal_client_id: Optional[str] = None
    paypal_client_secret: Optional[str] = None

    # Licensing
    keyauth_seller_key: Optional[str] = None
    keyauth_owner_id: Optional[str] = None
    keyauth_app_name: str = "Kiwi"

    # Cache and rate limiting
    cache_url: Optional[str] = None
    cache_enabled: bool = True
    profile_cache_ttl: int = 3600
    rate_limit_url: Optional[str] = None
    trust_proxy_headers: bool = False

    # Outbound HTTP
    http_timeout: float = 10.0
    http_retries: int = 2

    # Anti-enumeration: both branches of the reset request take at least this long
    reset_min_response_seconds: float = 0.5

    # Ops
    posthog_api_key: Optional[str] = None
    posthog_host: str = "https://us.i.posthog.com"
    cron_secret: Optional[str] = None
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def paypal_base_url(self) -> str:
        if self.is_production:
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def check(self) -> "Settings":
        """Refuse configurations that are unsafe to serve traffic with."""
        if self.is_production and self.jwt_secret == DEV_JWT_SECRET:
            raise ConfigurationError("JWT_SECRET must be set in production")
        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ConfigurationError("BCRYPT_ROUNDS must be between 4 and 31")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        # Load environment variables from .env file
        load_dotenv()

        return cls(
            environment=os.getenv("APP_ENV", "development"),
            app_name=os.getenv("APP_NAME", "KiwiTweaks"),
            app_url=os.getenv("APP_URL", "https://kiwitweaks.com"),
            download_url=os.getenv("DOWNLOAD_URL", "https://kiwitweaks.com/download"),
            support_url=os.getenv("SUPPORT_URL", "https://kiwitweaks.com/support"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./kiwitweaks.db"),
            db_pool_size=_env_int("DB_POOL_SIZE", 10),
            db_connect_attempts=_env_int("DB_CONNECT_ATTEMPTS", 3),
            db_backoff_seconds=_env_float("DB_BACKOFF_SECONDS", 1.0),
            jwt_secret=os.getenv("JWT_SECRET") or DEV_JWT_SECRET,
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 10),
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASS") or None,
            smtp_secure=_env_bool("SMTP_SECURE", False),
            email_from=os.getenv("SMTP_FROM", "KiwiTweaks <contact.kiwitweaks@gmail.com>"),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            paypal_client_id=os.getenv("PAYPAL_CLIENT_ID") or None,
            paypal_client_secret=os.getenv("PAYPAL_CLIENT_SECRET") or None,
            keyauth_seller_key=os.getenv("KEYAUTH_SELLER_KEY") or None,
            keyauth_owner_id=os.getenv("KEYAUTH_OWNER_ID") or None,
            keyauth_app_name=os.getenv("KEYAUTH_APP_NAME", "Kiwi"),
            cache_url=os.getenv("CACHE_URL") or None,
            cache_enabled=_env_bool("CACHE_ENABLED", True),
            profile_cache_ttl=_env_int("PROFILE_CACHE_TTL", 3600),
            rate_limit_url=os.getenv("RATE_LIMIT_URL") or None,
            trust_proxy_headers=_env_bool("TRUST_PROXY_HEADERS", False),
            http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
            http_retries=_env_int("HTTP_RETRIES", 2),
            reset_min_response_seconds=_env_float("RESET_MIN_RESPONSE_SECONDS", 0.5),
            posthog_api_key=os.getenv("POSTHOG_API_KEY") or None,
            posthog_host=os.getenv("POSTHOG_HOST", "https://us.i.posthog.com"),
            cron_secret=os.getenv("CRON_SECRET") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        ).check()
