# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""Logging setup and the categorized event helpers used across handlers."""
import logging
from typing import Any

logger = logging.getLogger("kiwitweaks")

_SEVERITY_LEVELS = {
    "high": logging.ERROR,
    "medium": logging.WARNING,
    "low": logging.INFO,
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.setLevel(level.upper())


def _format(meta: dict) -> str:
    return " ".join(f"{key}={value}" for key, value in meta.items() if value is not None)


def log_auth(event: str, user_id: Any = None, email: str = None, **meta: Any) -> None:
    logger.info("Auth: %s %s", event, _format({"user_id": user_id, "email": email, **meta}))


def log_payment(event: str, user_id: Any = None, amount_cents: int = None, **meta: Any) -> None:
    logger.info("Payment: %s %s", event, _format({"user_id": user_id, "amount_cents": amount_cents, **meta}))


def log_security(event: str, severity: str = "medium", **meta: Any) -> None:
    """Security events: high goes to ERROR, medium to WARNING, low to INFO."""
    level = _SEVERITY_LEVELS.get(severity, logging.WARNING)
    logger.log(level, "Security: %s severity=%s %s", event, severity, _format(meta))
