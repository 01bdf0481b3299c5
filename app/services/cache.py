"""
Redis Cache Service
===================

Redis connection management plus a small JSON cache used for rate limiting
and checkout idempotency replay.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from app.config import settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """
    Initialize Redis connection pool and pre-warm a connection.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = await redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        await _redis_client.ping()
        logger.info("Redis connection established")

    return _redis_client


async def get_redis() -> Redis:
    """Get Redis client, initializing if necessary."""
    global _redis_client

    if _redis_client is None:
        return await init_redis()

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


class CacheManager:
    """
    Best-effort JSON cache on top of Redis.

    Key naming convention:
        cache:{module}:{resource}:{identifier}

    Every method swallows Redis failures: a cache miss is always a safe
    answer for the callers in this service.
    """

    TTL_DAY = 86400

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        """Get a JSON value from cache, or None on miss or error."""
        try:
            client = await get_redis()
            value = await client.get(key)

            if value is None:
                return None

            return json.loads(value)
        except Exception as e:
            logger.warning("Cache get error for key %s: %s", key, e)
            return None

    @staticmethod
    async def set(key: str, value: Any, ttl: int = TTL_DAY) -> bool:
        """Store a JSON-serializable value with a TTL."""
        try:
            client = await get_redis()
            await client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.warning("Cache set error for key %s: %s", key, e)
            return False


class CacheKeys:
    """Cache key builders."""

    @staticmethod
    def checkout_session(user_id: str, idempotency_key: str) -> str:
        return f"cache:checkout:session:{user_id}:{idempotency_key}"
