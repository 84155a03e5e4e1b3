# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""KeyAuth client: seller API to mint keys, app API to check them."""
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigurationError, UpstreamServiceError
from .httpclient import HttpClient
from .logs import logger

KEYAUTH_SELLER_API = "https://keyauth.win/api/seller/"
KEYAUTH_APP_API = "https://keyauth.win/api/1.2/"


@dataclass
class LicenseCheck:
    valid: bool
    message: str = ""
    info: dict = field(default_factory=dict)


class KeyAuthClient:
    def __init__(self, seller_key: Optional[str], owner_id: Optional[str], app_name: str = "Kiwi",
                 http: Optional[HttpClient] = None, app_version: str = "1.0"):
        self.seller_key = seller_key
        self.owner_id = owner_id
        self.app_name = app_name
        self.app_version = app_version
        self.http = http or HttpClient("KeyAuth")

    @classmethod
    def from_settings(cls, settings) -> "KeyAuthClient":
        return cls(
            seller_key=settings.keyauth_seller_key,
            owner_id=settings.keyauth_owner_id,
            app_name=settings.keyauth_app_name,
            http=HttpClient("KeyAuth", timeout=settings.http_timeout, retries=settings.http_retries),
        )

    def _require(self, seller: bool = False) -> None:
        if not self.owner_id or (seller and not self.seller_key):
            raise ConfigurationError("KeyAuth credentials not configured")

    def generate_license(self, username: str, duration: int = 99999999, note: Optional[str] = None) -> str:
        self._require(seller=True)
        data = self.http.json("POST", KEYAUTH_SELLER_API, data={
            "sellerkey": self.seller_key,
            "type": "add",
            "format": "JSON",
            "expiry": str(duration),
            "mask": "XXXX-XXXX-XXXX-XXXX",
            "level": "1",
            "amount": "1",
            "owner": self.owner_id,
            "character": "2",
            "note": note or f"Generated for {username}",
        })
        if not isinstance(data, dict) or not data.get("success"):
            message = data.get("message") if isinstance(data, dict) else None
            logger.error("KeyAuth refused to generate a license for %s: %s", username, message)
            raise UpstreamServiceError("Failed to generate license key")

        # The seller API answers with either "key" or "keys"
        key = data.get("key") or (data.get("keys") or [None])[0]
        if not key:
            raise UpstreamServiceError("Failed to generate license key")

        if not self.verify_license(key).valid:
            logger.error("Freshly generated KeyAuth key failed verification")
            raise UpstreamServiceError("Generated key failed verification")
        return key

    def _init_session(self) -> str:
        data = self.http.json("POST", KEYAUTH_APP_API, data={
            "type": "init",
            "name": self.app_name,
            "ownerid": self.owner_id,
            "ver": self.app_version,
        })
        if not isinstance(data, dict) or not data.get("success") or not data.get("sessionid"):
            raise UpstreamServiceError("KeyAuth session could not be initialised")
        return data["sessionid"]

    def verify_license(self, license_key: str, hwid: Optional[str] = None) -> LicenseCheck:
        self._require()
        session_id = self._init_session()
        data = self.http.json("POST", KEYAUTH_APP_API, data={
            "type": "license",
            "key": license_key,
            "hwid": hwid or "",
            "sessionid": session_id,
            "name": self.app_name,
            "ownerid": self.owner_id,
        })
        if not isinstance(data, dict):
            raise UpstreamServiceError("KeyAuth returned an invalid response")
        if not data.get("success"):
            return LicenseCheck(valid=False, message=data.get("message") or "Invalid license key")
        info = data.get("info") or {}
        return LicenseCheck(
            valid=True,
            message=data.get("message", ""),
            info={
                "username": info.get("username"),
                "subscriptions": info.get("subscriptions"),
                "expiry": info.get("expiry"),
            },
        )
