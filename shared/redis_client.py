"""
Redis client singleton for shared counters.

Used by the Redis-backed rate limit counter store when several API
instances must share per-origin counters.
"""

import logging
from functools import lru_cache

import redis.asyncio as redis
from redis import ConnectionError as RedisConnectionError

from shared.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Get cached Redis client instance with production-ready configuration.

    - Connection pooling (max 20 connections)
    - Automatic retry on timeout for transient failures
    - Health check pings every 30 seconds

    Redis Key Patterns:
        - Rate limits: rate_limit:{scope}:{origin}

    Returns:
        Redis async client configured with connection pool and retry logic
    """
    settings = get_settings()

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )

        logger.info(
            f"Redis client initialized: {settings.REDIS_URL} "
            f"(max_connections=20, retry_on_timeout=True, health_check_interval=30s)"
        )
        return client

    except RedisConnectionError as e:
        logger.error(f"Redis connection failed: {e}", exc_info=True)
        raise


async def close_redis_client() -> None:
    """
    Close Redis connection gracefully.

    Note:
        Should be called during application shutdown.
    """
    try:
        client = get_redis_client()
        await client.aclose()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")
