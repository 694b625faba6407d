"""
Redis caching for the store settings record.

Settings are read on every checkout and order edit but change only by admin
action, so they are cached with a short TTL. Caching is disabled when
REDIS_URL is unset, and cache errors never fail a request.
"""
import json
import logging
from typing import Any, Optional

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)

SETTINGS_CACHE_KEY = "storefront:settings"
SETTINGS_CACHE_TTL = 60  # seconds

redis_client = redis.from_url(REDIS_URL, decode_responses=True) if REDIS_URL else None


def get_cache(key: str) -> Optional[Any]:
    """
    Get a value from Redis cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found or caching is disabled
    """
    if redis_client is None:
        return None
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Cache get error: {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = SETTINGS_CACHE_TTL) -> bool:
    """
    Set a value in Redis cache with TTL.

    Args:
        key: Cache key
        value: JSON-serializable value
        ttl: Time to live in seconds

    Returns:
        True if successful, False otherwise
    """
    if redis_client is None:
        return False
    try:
        redis_client.setex(key, ttl, json.dumps(value))
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error: {e}")
        return False


def delete_cache(key: str) -> bool:
    if redis_client is None:
        return False
    try:
        redis_client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete error: {e}")
        return False
