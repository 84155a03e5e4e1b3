# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Per-IP rate limiting, tiered by how sensitive the route is.

Every accepted request counts against its tier, successful or not, and a
rejected one does not push the window further out. The in-memory store is
per process: behind several workers each one keeps its own
counters, so set RATE_LIMIT_URL to share them through Redis.
"""
import asyncio
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple

import redis
from fastapi import Request

from .errors import RateLimitError
from .logs import logger, log_security


@dataclass(frozen=True)
class Tier:
    name: str
    window_seconds: int
    max_requests: int
    message: str
    delay_after: Optional[int] = None
    delay_ms: int = 0
    max_delay_ms: int = 0

    def delay_for(self, count: int) -> float:
        """Seconds to hold a request that is within the limit but past delay_after."""
        if self.delay_after is None or count <= self.delay_after:
            return 0.0
        return min((count - self.delay_after) * self.delay_ms, self.max_delay_ms) / 1000


TIERS: Dict[str, Tier] = {
    "login": Tier("login", 15 * 60, 5, "Too many authentication attempts. Please try again in 15 minutes."),
    "register": Tier("register", 60 * 60, 3, "Too many accounts created. Please try again later."),
    "password_reset": Tier(
        "password_reset", 60 * 60, 5,
        "Too many password reset requests. Please check your email or try again later.",
    ),
    "email_verification": Tier(
        "email_verification", 60 * 60, 5,
        "Too many verification emails requested. Please check your inbox.",
    ),
    "payment": Tier("payment", 60 * 60, 10, "Too many payment attempts. Please try again later."),
    "api": Tier(
        "api", 15 * 60, 100, "API rate limit exceeded. Please slow down.",
        delay_after=30, delay_ms=500, max_delay_ms=20000,
    ),
}


class MemoryRateLimitStore:
    """Sliding window of request timestamps per key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._windows: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def hit(self, key: str, window_seconds: int, limit: Optional[int] = None) -> Tuple[int, float]:
        """Record a request; return (requests in window, seconds until the oldest expires).

        Once a key holds `limit` timestamps further hits are counted but not
        stored, so a blocked client is released when its window runs out.
        """
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)

            bucket = self._hits.setdefault(key, deque())
            self._windows[key] = window_seconds
            while bucket and now - bucket[0] >= window_seconds:
                bucket.popleft()
            if limit is not None and len(bucket) >= limit:
                return len(bucket) + 1, window_seconds - (now - bucket[0])
            bucket.append(now)
            return len(bucket), window_seconds - (now - bucket[0])

    def _sweep(self, now: float) -> None:
        # Drop keys whose newest hit has left its window
        stale = [key for key, bucket in self._hits.items()
                 if not bucket or now - bucket[-1] >= self._windows.get(key, 0)]
        for key in stale:
            del self._hits[key]
            self._windows.pop(key, None)
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._windows.clear()


class RedisRateLimitStore:
    """Fixed window counter shared by every worker (INCR + EXPIRE)."""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimitStore":
        return cls(redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2))

    def hit(self, key: str, window_seconds: int, limit: Optional[int] = None) -> Tuple[int, float]:
        # The window is fixed from the first hit, so rejected requests never extend it
        try:
            count = self.client.incr(key)
            if count == 1:
                self.client.expire(key, window_seconds)
            ttl = self.client.ttl(key)
            if ttl is None or ttl < 0:
                # Counter lost its expiry (crash between INCR and EXPIRE)
                self.client.expire(key, window_seconds)
                ttl = window_seconds
            return int(count), float(ttl)
        except redis.RedisError as e:
            # Fail open: an outage of the limiter store must not take the API down
            logger.error("Rate limit store error for %s: %s", key, e)
            return 0, float(window_seconds)

    def reset(self) -> None:
        for key in self.client.scan_iter("ratelimit:*"):
            self.client.delete(key)


class RateLimiter:
    def __init__(self, store=None, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep, enabled: bool = True):
        self.store = store or MemoryRateLimitStore()
        self._sleep = sleep
        self.enabled = enabled

    async def check(self, tier_name: str, client_ip: str) -> int:
        tier = TIERS[tier_name]
        if not self.enabled:
            return 0

        count, reset_in = self.store.hit(f"ratelimit:{tier.name}:{client_ip}", tier.window_seconds, tier.max_requests)
        if count > tier.max_requests:
            log_security("rate_limit_exceeded", severity="low", tier=tier.name, ip=client_ip, count=count)
            raise RateLimitError(tier.message, retry_after=max(1, math.ceil(reset_in)))

        delay = tier.delay_for(count)
        if delay:
            await self._sleep(delay)
        return count


def client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"
