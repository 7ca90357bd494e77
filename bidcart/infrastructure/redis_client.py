"""
Redis Connection
"""
import logging

import redis

from bidcart.core.config import get_settings

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis_client() -> redis.Redis:
    """Get Redis client (singleton)"""
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        _redis_client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True
        )

    return _redis_client


def test_redis_connection() -> bool:
    """Ping Redis; False when unreachable"""
    try:
        get_redis_client().ping()
        return True
    except redis.RedisError as e:
        logger.warning(f"❌ Redis connection failed: {e}")
        return False
