# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""PostHog product analytics. Every call is a no-op when no key is configured."""
from typing import Any, Dict, Optional

from posthog import Posthog

from .logs import logger


class Analytics:
    def __init__(self, api_key: Optional[str] = None, host: str = "https://us.i.posthog.com"):
        self.client = None
        if api_key:
            self.client = Posthog(project_api_key=api_key, host=host)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def capture(self, distinct_id: str, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self.client:
            return
        try:
            self.client.capture(distinct_id=distinct_id or "anonymous", event=event, properties=properties or {})
        except Exception as e:
            # Analytics must never break a request
            logger.warning("PostHog capture failed: %s", e)

    def capture_exception(self, exc: BaseException) -> None:
        if not self.client:
            return
        try:
            self.client.capture_exception(exc)
        except Exception as e:
            logger.warning("PostHog exception capture failed: %s", e)

    def shutdown(self) -> None:
        if self.client:
            self.client.shutdown()
