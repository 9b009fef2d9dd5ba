"""
Fixed-window rate limiting keyed by client identifier + action.

The store is process-local and unsynchronized: limits are best-effort per
instance and reset on restart.
"""
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import HTTPException, Request


@dataclass
class RateLimitBucket:
    count: int
    expires_at: float


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after: Optional[int] = None


class FixedWindowRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._store: Dict[str, RateLimitBucket] = {}

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        now = self.clock()
        bucket = self._store.get(key)

        if bucket is None or bucket.expires_at < now:
            self._store[key] = RateLimitBucket(count=1, expires_at=now + window_seconds)
            return RateLimitResult(allowed=True)

        if bucket.count >= limit:
            retry_after = max(1, math.ceil(bucket.expires_at - now))
            return RateLimitResult(allowed=False, retry_after=retry_after)

        bucket.count += 1
        return RateLimitResult(allowed=True)

    def bucket(self, key: str) -> Optional[RateLimitBucket]:
        return self._store.get(key)

    def reset(self):
        self._store.clear()


limiter = FixedWindowRateLimiter()

LOGIN_LIMIT, LOGIN_WINDOW_SEC = 5, 15 * 60
COMMENT_LIMIT, COMMENT_WINDOW_SEC = 5, 60 * 60
ORDER_LIMIT, ORDER_WINDOW_SEC = 10, 60


def get_client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return (
        request.headers.get("x-real-ip")
        or request.headers.get("cf-connecting-ip")
        or "unknown"
    )


def enforce_rate_limit(request: Request, action: str, limit: int, window_seconds: float, message: str):
    result = limiter.check(f"{action}:{get_client_identifier(request)}", limit, window_seconds)
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail=message,
            headers={"Retry-After": str(result.retry_after)},
        )


def rate_limited(action: str, limit: int, window_seconds: float, message: str):
    """Build a route dependency enforcing one limit; runs before body validation."""
    def dependency(request: Request):
        enforce_rate_limit(request, action, limit, window_seconds, message)
    return dependency
