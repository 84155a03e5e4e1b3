# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
KiwiTweaks API.

Run with `uvicorn kiwitweaks.main:app`. Tests build their own app through
`create_app()` with in-memory collaborators.
"""
import traceback
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, repository
from .analytics import Analytics
from .cache import Cache
from .config import Settings
from .database import Database
from .dependencies import rate_limit
from .errors import AppError, ServiceUnavailableError, generate_error_ref
from .licensing import KeyAuthClient
from .logs import configure_logging, logger
from .notifications import Mailer
from .payments import PayPalClient, configure_stripe
from .ratelimit import MemoryRateLimitStore, RateLimiter, RedisRateLimitStore
from .routes import auth, orders, payment, system, user
from .routes import keyauth as keyauth_routes
from .security import configure_password_hashing
from .validation import format_errors

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
}


def _error_body(code: str, message: str, ref: str, details=None) -> dict:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error, "ref": ref}


def _build_limiter(settings: Settings) -> RateLimiter:
    if settings.rate_limit_url:
        logger.info("Rate limit counters shared through Redis")
        return RateLimiter(RedisRateLimitStore.from_url(settings.rate_limit_url))
    logger.info("Rate limit counters are per process (RATE_LIMIT_URL not configured)")
    return RateLimiter(MemoryRateLimitStore())


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s %s (ref=%s): %s", request.method, request.url.path, exc.status_code,
                         exc.code, exc.ref, exc.__cause__ or exc.message)
        else:
            logger.warning("%s %s -> %s %s (ref=%s): %s", request.method, request.url.path, exc.status_code,
                           exc.code, exc.ref, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=exc.headers or None)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        ref = generate_error_ref()
        details = format_errors(exc.errors(), skip_prefix=("body", "query", "path", "header"))
        logger.warning("%s %s -> 400 VALIDATION_ERROR (ref=%s)", request.method, request.url.path, ref)
        return JSONResponse(_error_body("VALIDATION_ERROR", "Validation failed", ref, details), status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        ref = generate_error_ref()
        code = HTTP_ERROR_CODES.get(exc.status_code, f"HTTP_{exc.status_code}")
        logger.warning("%s %s -> %s %s (ref=%s)", request.method, request.url.path, exc.status_code, code, ref)
        return JSONResponse(
            _error_body(code, str(exc.detail), ref),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(OperationalError)
    async def database_error_handler(request: Request, exc: OperationalError):
        err = ServiceUnavailableError("Database temporarily unavailable")
        logger.error("%s %s -> 503 database error (ref=%s): %s", request.method, request.url.path, err.ref, exc.orig)
        return JSONResponse(err.to_dict(), status_code=503)

    # Global Exception Handler for PostHog
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        ref = generate_error_ref()
        logger.exception("Unhandled error on %s %s (ref=%s)", request.method, request.url.path, ref)
        app.state.analytics.capture_exception(exc)

        details = None
        if not app.state.settings.is_production:
            details = [{"field": "", "message": line, "type": "traceback"}
                       for line in traceback.format_exception(type(exc), exc, exc.__traceback__)]
        return JSONResponse(_error_body("INTERNAL_ERROR", "Internal server error", ref, details), status_code=500)


def create_app(settings: Settings = None, *, database: Database = None, mailer: Mailer = None, cache: Cache = None,
               limiter: RateLimiter = None, keyauth: KeyAuthClient = None, paypal: PayPalClient = None,
               analytics: Analytics = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    configure_password_hashing(settings.bcrypt_rounds)
    configure_stripe(settings)

    database = database or Database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        connect_attempts=settings.db_connect_attempts,
        backoff_seconds=settings.db_backoff_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        with database.session() as db:
            repository.prune_auth_logs(db)
        logger.info("%s API %s started (%s)", settings.app_name, __version__, settings.environment)
        yield
        app.state.analytics.shutdown()
        for client in (app.state.keyauth, app.state.paypal):
            http = getattr(client, "http", None)
            if http is not None:
                http.close()
        database.close()

    app = FastAPI(
        title=f"{settings.app_name} API",
        version=__version__,
        docs_url=None if settings.is_production else "/api/docs",
        redoc_url=None,
        openapi_url=None if settings.is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.mailer = mailer or Mailer.from_settings(settings)
    app.state.cache = cache or Cache.from_settings(settings)
    app.state.limiter = limiter or _build_limiter(settings)
    app.state.keyauth = keyauth or KeyAuthClient.from_settings(settings)
    app.state.paypal = paypal or PayPalClient.from_settings(settings)
    app.state.analytics = analytics or Analytics(settings.posthog_api_key, settings.posthog_host)

    # Performance: Enable GZip
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains; preload"
        return response

    register_exception_handlers(app)

    api_limit = [Depends(rate_limit("api"))]
    app.include_router(auth.router, prefix="/api", dependencies=api_limit)
    app.include_router(payment.router, prefix="/api", dependencies=api_limit)
    app.include_router(payment.webhook_router, prefix="/api")
    app.include_router(keyauth_routes.router, prefix="/api", dependencies=api_limit)
    app.include_router(orders.router, prefix="/api", dependencies=api_limit)
    app.include_router(user.router, prefix="/api", dependencies=api_limit)
    app.include_router(system.router, prefix="/api", dependencies=api_limit)

    return app


app = create_app()
