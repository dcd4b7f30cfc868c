"""Redis connection for per-user notification streams.

Redis is optional: when it cannot be reached at startup the app keeps
running and notifications fall back to the log-only dispatcher.

Usage:
    from order_escrow.infrastructure.redis_client import connect_redis, optional_redis

    await connect_redis()
    redis = optional_redis()  # None when Redis is down
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from order_escrow.config import get_settings
from order_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def connect_redis(url: str | None = None) -> aioredis.Redis | None:
    """Open the shared client, or return None if the server does not answer a PING."""
    global _redis_client
    url = url or get_settings().redis_url
    client = aioredis.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        await client.aclose()
        logger.warning("redis.unavailable", url=url, error=str(exc))
        return None
    _redis_client = client
    logger.info("redis.connected", url=url)
    return client


def optional_redis() -> aioredis.Redis | None:
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None
