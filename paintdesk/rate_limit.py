"""
In-memory fixed-window rate limiter.

Best effort only: counters live in this process and reset on restart, so
limits are per instance. Used to throttle checkout and referral endpoints.
"""
import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request

from .config import Config, get_config

logger = logging.getLogger(__name__)

SWEEP_PROBABILITY = 0.01


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitExceeded:
    limit: int
    retry_after: int


class RateLimiter:
    """
    Counters keyed by (store name, client key). Safe to share across threads.

    Args:
        clock: returns the current time in seconds
        rng: returns a float in [0, 1); drives the lazy sweep
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, rng: Callable[[], float] = random.random):
        self.clock = clock
        self.rng = rng
        self.stores: Dict[str, Dict[str, _Window]] = {}
        self._lock = threading.Lock()

    def _sweep(self, store: Dict[str, _Window], now: float) -> None:
        expired = [key for key, window in store.items() if now > window.reset_at]
        for key in expired:
            del store[key]

    def check(self, key: str, limit: int, window_seconds: float, store: str = "default") -> Optional[RateLimitExceeded]:
        """Count one request; return None if allowed, else how long to wait."""
        with self._lock:
            windows = self.stores.setdefault(store, {})
            now = self.clock()

            if self.rng() < SWEEP_PROBABILITY:
                self._sweep(windows, now)

            window = windows.get(key)
            if window is None or now > window.reset_at:
                windows[key] = _Window(count=1, reset_at=now + window_seconds)
                return None

            if window.count >= limit:
                retry_after = max(1, math.ceil(window.reset_at - now))
                return RateLimitExceeded(limit=limit, retry_after=retry_after)

            window.count += 1
            return None

    def reset(self) -> None:
        with self._lock:
            self.stores.clear()


rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(
    store: str,
    limit: Callable[[Config], int],
    window_seconds: Callable[[Config], float],
):
    """
    Build a dependency that throttles by client IP.

    `limit` and `window_seconds` read from the request's config so they
    follow whatever `get_config` resolves to.
    """

    async def dependency(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
        config: Config = Depends(get_config),
    ) -> None:
        key = client_ip(request)
        exceeded = limiter.check(key, limit(config), window_seconds(config), store=store)
        if exceeded:
            logger.warning("Rate limit hit on %s for %s", store, key)
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(exceeded.retry_after)},
            )

    return dependency
