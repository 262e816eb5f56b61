"""
Gatehouse Backend: Rate Limiting
================================

What:  Fixed-window request counters keyed by caller (and optionally route).
How:   Each key owns one bucket {count, reset_at}. The first request of a
       window creates the bucket with count=1; later requests increment it
       until `max_requests`, after which the caller gets 429 until reset_at.
Who:   Two stages built by create_limiter(): a general API limiter keyed by
       IP and a strict login/registration limiter keyed by IP + path.
When:  Right after the CORS preflight stage, before CSRF and token checks,
       so floods are rejected before any cryptographic work happens.

Algorithm: Fixed Window Counter
    1. now >= bucket.reset_at (or no bucket): start a new window, count = 1, allow
    2. bucket.count >= max: deny with 429 and Retry-After
    3. otherwise: count += 1, allow

    O(1) per request and O(keys) memory, unlike the timestamp-list
    sliding window which is O(requests) per key.

Response on rate limit:
    HTTP 429 Too Many Requests
    Retry-After:            ceil(reset_at - now) seconds
    X-RateLimit-Limit:      max requests per window
    X-RateLimit-Remaining:  0
    X-RateLimit-Reset:      ISO-8601 UTC time the window resets

Production Upgrade Path:
    Buckets live in this process. For multi-worker deployments move them to
    Redis (INCR + EXPIRE) keyed the same way.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from starlette.requests import Request

from gatehouse.exceptions import RateLimitExceededError
from gatehouse.middleware.pipeline import Continue, RequestContext, StageResult, exception_response

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Request, RequestContext], str]
SkipFunc = Callable[[Request], bool]


@dataclass
class RateLimitBucket:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        reset_iso = datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset_iso,
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """
    In-memory fixed-window limiter.

    Args:
        window_seconds:  Window length.
        max_requests:    Allowed requests per key per window.
        max_buckets:     Bound on tracked keys. Expired buckets are dropped
                         first, then the one closest to resetting.
        clock:           Returns the current Unix time in seconds.

    Thread Safety:
        hit() performs its read-modify-write under a lock, so concurrent
        requests with the same key cannot both take the last slot.
    """

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        max_buckets: int = 100_000,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.max_buckets = max_buckets
        self._clock = clock
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def bucket(self, key: str) -> Optional[RateLimitBucket]:
        """Snapshot of the bucket for `key` (None if untracked)."""
        with self._lock:
            bucket = self._buckets.get(key)
            return RateLimitBucket(bucket.count, bucket.reset_at) if bucket else None

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for `key` and decide whether it may proceed."""
        # Why: read, compare and increment must be one step or two threads share the last slot
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)

            # Step 1: no bucket or window over, so start a new window with this request counted
            if bucket is None or now >= bucket.reset_at:
                if bucket is None and len(self._buckets) >= self.max_buckets:
                    self._make_room(now)
                bucket = RateLimitBucket(count=1, reset_at=now + self.window_seconds)
                self._buckets[key] = bucket
                return RateLimitDecision(True, self.max_requests, self.max_requests - 1, bucket.reset_at)

            # Step 2: window full. Denied requests are not counted and do not move reset_at
            if bucket.count >= self.max_requests:
                retry_after = max(1, math.ceil(bucket.reset_at - now))
                return RateLimitDecision(False, self.max_requests, 0, bucket.reset_at, retry_after)

            # Step 3: take a slot
            bucket.count += 1
            return RateLimitDecision(
                True, self.max_requests, self.max_requests - bucket.count, bucket.reset_at
            )

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def sweep(self) -> int:
        """Drop buckets whose window has ended. Returns how many were removed."""
        with self._lock:
            return self._evict_expired(self._clock())

    def _evict_expired(self, now: float) -> int:
        expired = [key for key, bucket in self._buckets.items() if now >= bucket.reset_at]
        for key in expired:
            del self._buckets[key]
        return len(expired)

    def _make_room(self, now: float) -> None:
        # Caller holds the lock
        if self._evict_expired(now):
            return
        # What: nothing expired, so drop the bucket that would reset soonest anyway
        soonest = min(self._buckets, key=lambda k: self._buckets[k].reset_at)
        del self._buckets[soonest]
        logger.warning("Rate limiter full (%d keys); evicted bucket closest to reset", self.max_buckets)


# ── Key functions ─────────────────────────────────────────────────────────

def client_ip_key(request: Request, context: RequestContext) -> str:
    """Default key: one bucket per caller IP."""
    return context.client_ip


def client_ip_and_path_key(request: Request, context: RequestContext) -> str:
    """Per-route key: one bucket per caller IP and path."""
    return f"{context.client_ip}:{request.url.path}"


# ── Stage factory ─────────────────────────────────────────────────────────

class RateLimitStage:
    """Pipeline stage wrapping a RateLimiter. Keeps the limiter reachable for sweeps."""

    def __init__(
        self,
        limiter: RateLimiter,
        key_func: KeyFunc = client_ip_key,
        skip_func: Optional[SkipFunc] = None,
        name: str = "api",
    ):
        self.limiter = limiter
        self.key_func = key_func
        self.skip_func = skip_func
        self.name = name

    def sweep(self) -> int:
        return self.limiter.sweep()

    def __call__(self, request: Request, context: RequestContext) -> StageResult:
        # Why: skipped paths (health, docs) stay reachable while a caller is throttled
        if self.skip_func is not None and self.skip_func(request):
            return Continue(context)

        key = self.key_func(request, context)
        decision = self.limiter.hit(key)
        if decision.allowed:
            return Continue(context)

        logger.warning(
            "Rate limit '%s' exceeded for %s: %d requests in %ss window",
            self.name,
            key,
            decision.limit,
            self.limiter.window_seconds,
        )
        return exception_response(RateLimitExceededError(decision.retry_after), headers=decision.headers())


def create_limiter(
    window_seconds: float,
    max_requests: int,
    key_func: KeyFunc = client_ip_key,
    skip_func: Optional[SkipFunc] = None,
    *,
    name: str = "api",
    max_buckets: int = 100_000,
    clock: Callable[[], float] = time.time,
) -> RateLimitStage:
    """Build a rate-limit stage with its own limiter."""
    limiter = RateLimiter(window_seconds, max_requests, max_buckets=max_buckets, clock=clock)
    return RateLimitStage(limiter, key_func=key_func, skip_func=skip_func, name=name)
