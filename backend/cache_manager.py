"""
Redis Cache Manager for the Invoice Parsing Service
Provides key/value and counter utilities with graceful degradation.
Uses Redis DB 1 (DB 0 is reserved for Celery task queue).
"""

import json
import redis
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Redis connection singleton
_redis_client: Optional[redis.Redis] = None

# Default TTL (15 minutes = 900 seconds)
DEFAULT_TTL = 900


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client for caching (DB 1).
    Returns None if Redis is unavailable (graceful degradation).
    """
    global _redis_client

    if _redis_client is None:
        try:
            # Use environment variables for Docker compatibility
            redis_host = os.getenv('REDIS_HOST', 'localhost')
            redis_port = int(os.getenv('REDIS_PORT', '6379'))

            client = redis.Redis(
                host=redis_host,
                port=redis_port,
                db=1,  # Use DB 1 for caching (DB 0 is for Celery)
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2
            )
            client.ping()
            _redis_client = client
            logger.info("Redis cache connected successfully (DB 1)")
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis cache unavailable (graceful degradation): {e}")
            _redis_client = None

    return _redis_client


def cache_get(key: str) -> Optional[Any]:
    """
    Get cached value by key.
    Returns None if key not found or Redis unavailable.

    Args:
        key: Cache key

    Returns:
        Deserialized cached value or None
    """
    client = get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
        if value:
            logger.debug(f"Cache HIT: {key}")
            return json.loads(value)
        logger.debug(f"Cache MISS: {key}")
        return None
    except (redis.RedisError, json.JSONDecodeError) as e:
        logger.warning(f"Cache read error for key '{key}': {e}")
        return None


def cache_set(key: str, value: Any, ttl: Optional[int] = DEFAULT_TTL) -> bool:
    """
    Set cached value, with a TTL unless ``ttl`` is None.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time-to-live in seconds; None stores without expiry

    Returns:
        True if successful, False otherwise
    """
    client = get_redis_client()
    if not client:
        return False

    try:
        serialized = json.dumps(value, default=str)  # default=str handles datetime
        if ttl is None:
            client.set(key, serialized)
        else:
            client.setex(key, ttl, serialized)
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
        return True
    except (redis.RedisError, TypeError, ValueError) as e:
        logger.warning(f"Cache write error for key '{key}': {e}")
        return False


def counter_get(key: str) -> float:
    """
    Read a float counter. Missing keys and an unavailable Redis read as 0.

    Args:
        key: Counter key

    Returns:
        Current counter value
    """
    client = get_redis_client()
    if not client:
        return 0.0

    try:
        value = client.get(key)
        return float(value) if value else 0.0
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Counter read error for key '{key}': {e}")
        return 0.0


def counter_incr(key: str, amount: float, ttl: int = DEFAULT_TTL) -> Optional[float]:
    """
    Atomically add ``amount`` to a float counter and refresh its TTL.

    Args:
        key: Counter key
        amount: Increment (may be fractional)
        ttl: Time-to-live in seconds

    Returns:
        New counter value, or None if Redis is unavailable
    """
    client = get_redis_client()
    if not client:
        return None

    try:
        pipe = client.pipeline()
        pipe.incrbyfloat(key, amount)
        pipe.expire(key, ttl)
        new_value, _ = pipe.execute()
        logger.debug(f"Counter INCR: {key} += {amount}")
        return float(new_value)
    except redis.RedisError as e:
        logger.warning(f"Counter write error for key '{key}': {e}")
        return None


def get_cache_stats() -> dict:
    """
    Get cache statistics.

    Returns:
        Dictionary with cache stats
    """
    client = get_redis_client()
    if not client:
        return {
            'available': False,
            'error': 'Redis not available'
        }

    try:
        info = client.info()
        return {
            'available': True,
            'used_memory': info.get('used_memory_human', 'N/A'),
            'total_keys': client.dbsize(),
            'hit_rate': info.get('keyspace_hits', 0) / max(1, info.get('keyspace_hits', 0) + info.get('keyspace_misses', 0)),
            'uptime_seconds': info.get('uptime_in_seconds', 0)
        }
    except redis.RedisError as e:
        return {
            'available': False,
            'error': str(e)
        }
