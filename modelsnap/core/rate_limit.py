"""
Rate Limiting
Fixed-window request limiter.

The limiter is an explicit object attached to ``app.state`` at startup, so
each application (and each test) owns its own counters instead of sharing
module-level state.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from modelsnap.core.config import settings
from modelsnap.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class MemoryCounterStore:
    """In-process counter store for development and tests."""

    def __init__(self):
        self._counts: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def incr(self, key: str, window_seconds: int) -> int:
        now = time.monotonic()
        with self._lock:
            if now >= self._next_sweep:
                self._evict_expired(now)
                self._next_sweep = now + window_seconds
            count, reset_at = self._counts.get(key, (0, now + window_seconds))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._counts[key] = (count, reset_at)
            return count

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._counts.items() if reset_at <= now]
        for key in expired:
            del self._counts[key]


class RedisCounterStore:
    """Counter store shared by every API process."""

    def __init__(self, redis: Redis, namespace: str = "ratelimit"):
        self.redis = redis
        self.namespace = namespace

    def incr(self, key: str, window_seconds: int) -> int:
        bucket = int(time.time() // window_seconds)
        redis_key = f"{self.namespace}:{key}:{bucket}"
        pipe = self.redis.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, window_seconds)
        count, _ = pipe.execute()
        return int(count)


class RateLimiter:
    """Allows ``max_requests`` per ``window_seconds`` for each key."""

    def __init__(self, store, max_requests: int, window_seconds: int):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def hit(self, key: str) -> None:
        """Count one request for ``key``; raise RateLimitError when over the limit."""
        try:
            count = self.store.incr(key, self.window_seconds)
        except RedisError as e:
            # Fail open: losing the limiter must not take the API down
            logger.warning(f"[RateLimit] Counter store unavailable, allowing request: {e}")
            return

        if count > self.max_requests:
            logger.info(f"[RateLimit] {key} exceeded {self.max_requests}/{self.window_seconds}s")
            raise RateLimitError(
                "Too many requests. Please try again later.",
                details={"retry_after_seconds": self.window_seconds},
            )


def build_rate_limiter(redis: Optional[Redis] = None) -> RateLimiter:
    """Create the limiter configured by settings."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        if redis is None:
            from modelsnap.core.redis import get_redis
            redis = get_redis()
        store = RedisCounterStore(redis)
    else:
        store = MemoryCounterStore()

    return RateLimiter(
        store,
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
