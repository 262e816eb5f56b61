"""
Gatehouse Backend: CSRF Token Store
===================================

What:  In-memory store of CSRF token/cookie pairs for the double-submit
       cookie defense.
How:   generate() creates a random token (returned in the JSON body) and a
       random cookie key (set as an HttpOnly cookie). A mutating request is
       accepted only when the X-CSRF-Token header matches the token stored
       under the cookie key the browser sent back.

Entry lifecycle:
    Issued → Valid (any number of validate() calls while unexpired)
           → Expired (noticed by validate/generate/sweep) | Invalidated (logout)
           → Removed

    There is no way back to Valid once an entry is removed.

Thread Safety:
    All map access happens under a threading.Lock, so validate/generate/
    invalidate are atomic per cookie key even when handlers run in the
    threadpool.

Scaling note:
    State lives in this process only. Multi-instance deployments need a
    shared store (e.g. Redis) keyed the same way.
"""

import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CSRF_TTL = 24 * 60 * 60
TOKEN_BYTES = 32


@dataclass(frozen=True)
class CsrfPair:
    """Token for the response body plus the key for the cookie."""

    token: str
    cookie_key: str


@dataclass(frozen=True)
class CsrfTokenEntry:
    token: str
    expires_at: float


class CsrfTokenStore:
    """
    Owns the cookie_key → CsrfTokenEntry map for one application instance.

    Args:
        ttl_seconds:  Lifetime of a pair (default 24h).
        max_entries:  Upper bound on stored pairs; the soonest-expiring pair
                      is evicted when a new one would exceed it.
        clock:        Returns the current Unix time in seconds.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_CSRF_TTL,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CsrfTokenEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def generate(self) -> CsrfPair:
        """Create and store a new pair, sweeping expired entries on the way."""
        pair = CsrfPair(token=secrets.token_hex(TOKEN_BYTES), cookie_key=secrets.token_hex(TOKEN_BYTES))
        with self._lock:
            now = self._clock()
            # Why: expired pairs go first so a full store rarely evicts a live one
            self._evict_expired(now)
            if len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
                del self._entries[oldest]
                logger.warning("CSRF store full (%d entries); evicted oldest pair", self.max_entries)
            self._entries[pair.cookie_key] = CsrfTokenEntry(
                token=pair.token, expires_at=now + self.ttl_seconds
            )
        return pair

    def validate(self, cookie_key: Optional[str], token: Optional[str]) -> bool:
        """True only if the pair exists, is unexpired and the tokens match."""
        if not cookie_key or not token:
            return False
        with self._lock:
            entry = self._entries.get(cookie_key)
            if entry is None:
                return False
            # What: expiry is noticed here, not only by the janitor
            if entry.expires_at <= self._clock():
                del self._entries[cookie_key]
                return False
        # Headers arrive latin-1 decoded; compare_digest rejects non-ASCII str, so compare bytes
        return hmac.compare_digest(entry.token.encode("utf-8"), token.encode("utf-8", "surrogateescape"))

    def invalidate(self, cookie_key: Optional[str]) -> None:
        """Remove the pair for `cookie_key`. Idempotent."""
        if not cookie_key:
            return
        with self._lock:
            self._entries.pop(cookie_key, None)

    def sweep(self) -> int:
        """Remove every expired pair. Returns how many were removed."""
        with self._lock:
            return self._evict_expired(self._clock())

    def _evict_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
