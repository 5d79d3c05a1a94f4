"""
Redis Connection Manager
One pooled connection per process, shared by the RQ queues and the rate limiter.
"""

import logging
from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

from redis import ConnectionPool, Redis
from redis.exceptions import RedisError

from modelsnap.core.config import settings

logger = logging.getLogger(__name__)


def mask_url(url: str) -> str:
    """redis://:secret@host:6379/0 -> redis://***@host:6379/0"""
    parts = urlsplit(url)
    if parts.password is None and parts.username is None:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://***@{host}{parts.path}"


class RedisManager:
    """
    Lazily created connection pool.

    Importing the API or a worker never opens a socket; the pool appears on the
    first queue operation or rate-limited request.
    """

    def __init__(self, url: Optional[str] = None, max_connections: int = 10):
        self.url = url or settings.REDIS_URL
        self.max_connections = max_connections
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None

    def get_connection(self) -> Redis:
        if self._client is None:
            self._pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                decode_responses=False,  # RQ stores pickled payloads
            )
            self._client = Redis(connection_pool=self._pool)
            logger.info(f"Created Redis connection pool for {mask_url(self.url)}")
        return self._client

    def health_check(self) -> dict:
        try:
            client = self.get_connection()
            client.ping()
            info = client.info("server")
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return {"connected": False, "error": str(e), "url": mask_url(self.url)}

        return {
            "connected": True,
            "redis_version": info.get("redis_version", "unknown"),
            "url": mask_url(self.url),
        }

    def close(self):
        if self._pool is not None:
            self._pool.disconnect()
            logger.info("Redis connection pool closed")
        self._pool = None
        self._client = None


@lru_cache()
def get_redis_manager() -> RedisManager:
    return RedisManager()


def get_redis() -> Redis:
    return get_redis_manager().get_connection()


def redis_health_check() -> dict:
    return get_redis_manager().health_check()


class Queues:
    """RQ queue names. Workers listen in ``DRAIN_ORDER``."""
    DEFAULT = "default"
    HIGH_PRIORITY = "high"
    RENDER = "render"
    LOW_PRIORITY = "low"
    NOTIFICATIONS = "notifications"

    DRAIN_ORDER = (HIGH_PRIORITY, RENDER, DEFAULT, LOW_PRIORITY, NOTIFICATIONS)

    @classmethod
    def for_priority(cls, priority: str) -> str:
        """Queue that carries drain tasks for a batch of the given priority."""
        return {"high": cls.HIGH_PRIORITY, "low": cls.LOW_PRIORITY}.get(priority, cls.RENDER)


__all__ = [
    "RedisManager",
    "get_redis_manager",
    "get_redis",
    "redis_health_check",
    "mask_url",
    "Queues",
]
