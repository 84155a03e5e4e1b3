# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""One APIRouter per area, all mounted under /api."""
from typing import Any, Optional


def success(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    body["data"] = data if data is not None else {}
    return body
