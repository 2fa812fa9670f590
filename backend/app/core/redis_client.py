"""
Redis connection for the distributed pallet lock.

Only built when pallet_lock_backend is "redis"; the in-memory backend never
opens a connection.
"""

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from backend.app.core.config import settings

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Process-wide async client, created on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=settings.redis_decode_responses,
        )
    return _redis_client


async def ping_redis() -> bool:
    """True when the lock store answers PING."""
    try:
        return bool(await get_redis().ping())
    except (RedisError, OSError):
        return False


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
