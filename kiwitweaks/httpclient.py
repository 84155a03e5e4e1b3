# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Outbound HTTP for the PayPal and KeyAuth clients.

Every call carries an explicit timeout. Retries are bounded and follow
urllib3's defaults for which methods are safe: a POST is only retried when
the connection was never made.
"""
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import UpstreamServiceError
from .logs import logger


def build_session(retries: int = 2, backoff_factor: float = 0.5) -> requests.Session:
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 502, 503, 504),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def parse_json(response: requests.Response, service: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        logger.error("%s returned non-JSON (status %s)", service, response.status_code)
        raise UpstreamServiceError(f"{service} returned an invalid response") from e


class HttpClient:
    def __init__(self, service: str, timeout: float = 10.0, retries: int = 2, session: Optional[requests.Session] = None):
        self.service = service
        self.timeout = timeout
        self.session = session or build_session(retries)

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error("%s request failed: %s %s: %s", self.service, method, url, e)
            raise UpstreamServiceError(f"{self.service} is unreachable") from e

    def json(self, method: str, url: str, **kwargs: Any) -> Any:
        return parse_json(self.request(method, url, **kwargs), self.service)

    def close(self) -> None:
        self.session.close()
