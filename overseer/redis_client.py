"""Async Redis client for the alert history store."""

from __future__ import annotations

from redis.asyncio import ConnectionPool, Redis

from .config import settings

_pool: ConnectionPool | None = None


def get_redis_client(url: str | None = None) -> Redis:
    """Get an async Redis client from the shared pool."""
    global _pool
    if url:
        return Redis.from_url(url, decode_responses=True)
    if _pool is None:
        _pool = ConnectionPool.from_url(
            settings.redis_url, max_connections=20, decode_responses=True
        )
    return Redis(connection_pool=_pool)
