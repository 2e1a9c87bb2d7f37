"""
Redis Connection

Connection pooling for the Redis-backed pieces: the offline session-end
queue, the discard fence and the cross-instance event relay.

Usage:
    from studyflow.db.redis import get_redis

    r = await get_redis()
    await r.hset("focus:offline_queue", session_id, payload)
"""

from typing import Any, Optional

import redis.asyncio as redis

from studyflow.config import settings, yaml_config


redis_config: dict[str, Any] = yaml_config.get("redis", {})
MAX_CONNECTIONS: int = redis_config.get("max_connections", 10)
KEY_PREFIX: str = redis_config.get("key_prefix", "studyflow")

# Connection pool (lazily initialized)
_redis_pool: Optional[redis.ConnectionPool] = None


def prefixed(key: str) -> str:
    """Namespace a key under the configured prefix."""
    return f"{KEY_PREFIX}:{key}"


async def get_redis_pool() -> redis.ConnectionPool:
    """Get or create the Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=MAX_CONNECTIONS,
        )
    return _redis_pool


async def get_redis() -> redis.Redis:
    """Get a Redis connection from the pool."""
    pool = await get_redis_pool()
    return redis.Redis(connection_pool=pool)


async def close_redis_pool() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None
