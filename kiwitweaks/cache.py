# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Read-through cache.

Callers see the same values with or without a backend; only latency
changes. A backend that errors is logged and treated as a miss.
"""
import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from .logs import logger


def profile_key(user_id) -> str:
    return f"user:profile:{user_id}"


class MemoryCacheBackend:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCacheBackend:
    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.setex(key, ttl, value)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def clear(self) -> None:
        for key in self.client.scan_iter("user:*"):
            self.client.delete(key)


class Cache:
    def __init__(self, backend=None, enabled: bool = True):
        self.backend = backend
        self.enabled = enabled and backend is not None

    @classmethod
    def from_settings(cls, settings) -> "Cache":
        if not settings.cache_enabled:
            return cls(None, enabled=False)
        if settings.cache_url:
            logger.info("Using Redis cache")
            return cls(RedisCacheBackend.from_url(settings.cache_url))
        logger.info("Using in-memory cache (CACHE_URL not configured)")
        return cls(MemoryCacheBackend())

    def get(self, key: str) -> Any:
        if not self.enabled:
            return None
        try:
            raw = self.backend.get(key)
        except redis.RedisError as e:
            logger.error("Cache get error for %s: %s", key, e)
            return None
        if raw is None:
            logger.debug("Cache miss %s", key)
            return None
        logger.debug("Cache hit %s", key)
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int = 3600) -> None:
        if not self.enabled or value is None:
            return
        try:
            self.backend.set(key, json.dumps(value, default=str), ttl)
        except redis.RedisError as e:
            logger.error("Cache set error for %s: %s", key, e)

    def delete(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            self.backend.delete(key)
        except redis.RedisError as e:
            logger.error("Cache delete error for %s: %s", key, e)

    def get_or_set(self, key: str, fetch: Callable[[], Any], ttl: int = 3600) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fetch()
        self.set(key, value, ttl)
        return value
