# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Error taxonomy.

Every failure a client can see is one of these classes. The HTTP layer turns
them into the same envelope:

    {"success": false, "error": {"code": ..., "message": ...}, "ref": ...}

`ref` is an opaque id printed in the logs next to the full context, so a
support ticket can be matched to a log line without leaking internals.
"""
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def generate_error_ref() -> str:
    """Reference id such as ERR_20261019T183000_A1B2."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"ERR_{stamp}_{secrets.token_hex(2).upper()}"


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Optional[List[Dict[str, Any]]] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.details = details
        self.headers = headers or {}
        self.ref = generate_error_ref()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error, "ref": self.ref}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTH_REQUIRED"
    default_message = "Authentication required"


class AuthorizationError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Resource already exists"


class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests"

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(message, headers=headers)
        self.retry_after = retry_after


class UpstreamServiceError(AppError):
    """A payment or licensing provider failed or answered garbage."""
    status_code = 502
    code = "UPSTREAM_ERROR"
    default_message = "An external service failed to respond"


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable"


class ConfigurationError(AppError):
    code = "CONFIGURATION_ERROR"
    default_message = "Service is not configured"


class EmailDeliveryError(AppError):
    code = "EMAIL_DELIVERY_FAILED"
    default_message = "Failed to send email"
