"""Redis helpers for priceledger.

Values are stored as JSON text. Redis is treated as best-effort storage:
read and write failures are logged and reported as a miss / False.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from priceledger.config import get_config

logger = logging.getLogger(__name__)

# Global Redis client (lazy initialized)
_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get Redis client instance (singleton).

    Returns:
        Async Redis client
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            get_config().drafts.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    return _redis_client


async def close_redis() -> None:
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def get_cached(key: str, client: redis.Redis | None = None) -> Any | None:
    """Get a JSON value from Redis.

    Args:
        key: Cache key
        client: Explicit client (defaults to the shared one)

    Returns:
        Decoded value or None if not found/expired/unreadable
    """
    client = client or await get_redis()

    try:
        raw = await client.get(key)
        if raw:
            return json.loads(raw)
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Redis get error for key {key}: {e}")

    return None


async def set_cached(
    key: str, value: Any, ttl_seconds: int = 300, client: redis.Redis | None = None
) -> bool:
    """Set a JSON value in Redis.

    Args:
        key: Cache key
        value: JSON-serializable value
        ttl_seconds: Time to live in seconds (default 5 minutes)
        client: Explicit client (defaults to the shared one)

    Returns:
        True if successful, False otherwise
    """
    client = client or await get_redis()

    try:
        await client.setex(key, ttl_seconds, json.dumps(value))
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis set error for key {key}: {e}")
        return False


async def delete_cached(key: str, client: redis.Redis | None = None) -> bool:
    """Delete key from Redis.

    Returns:
        True if the command succeeded, False otherwise
    """
    client = client or await get_redis()

    try:
        await client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis delete error for key {key}: {e}")
        return False
