import os
import threading
import time
from collections import deque
from typing import Deque, Optional, Protocol, Tuple

import structlog
from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

logger = structlog.get_logger(__name__)


class RateLimitStore(Protocol):
    """Keyed sliding-window counter shared by every fetch in the process."""

    def hit(self, key: str, limit: int, window_seconds: float) -> Tuple[bool, float]:
        """Record one request for ``key``; return (allowed, retry_after_seconds)."""
        ...


class SlidingWindowRateLimiter:
    """Simple in-memory sliding window limiter for per-process throttling."""

    def __init__(self, sweep_interval: float = 60.0) -> None:
        self._hits: dict[str, Deque[float]] = {}
        self._windows: dict[str, float] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._last_sweep = time.monotonic()

    def tracked_keys(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        # Keys whose newest hit has left their window hold no state worth keeping.
        stale = [
            key
            for key, bucket in self._hits.items()
            if not bucket or bucket[-1] < now - self._windows.get(key, 0.0)
        ]
        for key in stale:
            del self._hits[key]
            self._windows.pop(key, None)
        self._last_sweep = now

    def hit(self, key: str, limit: int, window_seconds: float) -> Tuple[bool, float]:
        if limit <= 0:
            return True, 0.0

        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)
            bucket = self._hits.setdefault(key, deque())
            self._windows[key] = window_seconds
            window_start = now - window_seconds
            while bucket and bucket[0] < window_start:
                bucket.popleft()

            if len(bucket) >= limit:
                retry_after = window_seconds - (now - bucket[0])
                return False, max(retry_after, 0.0)

            bucket.append(now)
            return True, 0.0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._windows.clear()


class LimitsRateLimitStore:
    """Moving-window store backed by ``limits`` so several instances can share counters."""

    def __init__(self, storage_uri: str, namespace: str = "linkparse") -> None:
        self.storage_uri = storage_uri
        self.namespace = namespace
        self._limiter = MovingWindowRateLimiter(storage_from_string(storage_uri))

    def hit(self, key: str, limit: int, window_seconds: float) -> Tuple[bool, float]:
        if limit <= 0:
            return True, 0.0
        item = RateLimitItemPerSecond(limit, max(int(window_seconds), 1))
        if self._limiter.hit(item, self.namespace, key):
            return True, 0.0
        reset_time, _ = self._limiter.get_window_stats(item, self.namespace, key)
        return False, max(reset_time - time.time(), 0.0)


def build_rate_limit_store(storage_uri: Optional[str] = None) -> RateLimitStore:
    """Pick the in-process limiter unless a shared backend URI is configured."""
    uri = (storage_uri or "").strip()
    if not uri or uri == "memory://":
        return SlidingWindowRateLimiter()
    try:
        return LimitsRateLimitStore(uri)
    except Exception as exc:
        logger.error(
            "rate_limits.storage_unavailable",
            storage_uri=uri,
            error=str(exc),
        )
        return SlidingWindowRateLimiter()


_store_lock = threading.Lock()
_shared_store: Optional[RateLimitStore] = None


def get_rate_limit_store() -> RateLimitStore:
    global _shared_store
    if _shared_store is not None:
        return _shared_store
    with _store_lock:
        if _shared_store is None:
            _shared_store = build_rate_limit_store(
                os.getenv("FETCH_RATELIMIT_STORAGE_URI")
                or os.getenv("RATELIMIT_STORAGE_URI")
            )
    return _shared_store
