"""Redis client for webhook idempotency keys.

Redis is optional: when it is unreachable at startup the service still runs,
and webhook event de-duplication falls back to the database-level checks.

Usage:
    from pay2start.infrastructure.redis_client import check_idempotency, set_idempotency

    if await check_idempotency(f"stripe_event:{event_id}"):
        ...
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from pay2start.config import get_settings
from pay2start.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis | None:
    """Initialize the Redis client. Called during app startup.

    Returns None (and logs a warning) if the server cannot be reached.
    """
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("redis.unavailable", url=settings.redis_url, error=str(exc))
        await client.aclose()
        _redis_client = None
        return None
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis | None:
    """Return the Redis client singleton, or None when Redis is not in use."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def check_idempotency(key: str) -> bool:
    """Check if an idempotency key has already been used.

    Returns True if the key exists (duplicate), False if new or if Redis
    is not available.
    """
    redis = get_redis()
    if redis is None:
        logger.warning("redis.idempotency_skipped", key=key)
        return False
    try:
        return bool(await redis.exists(f"idempotency:{key}"))
    except RedisError as exc:
        logger.warning("redis.idempotency_check_failed", key=key, error=str(exc))
        return False


async def set_idempotency(key: str, value: str = "1") -> None:
    """Mark an idempotency key as used with a TTL."""
    redis = get_redis()
    if redis is None:
        return
    settings = get_settings()
    try:
        await redis.set(
            f"idempotency:{key}",
            value,
            ex=settings.redis_idempotency_ttl_seconds,
        )
    except RedisError as exc:
        logger.warning("redis.idempotency_set_failed", key=key, error=str(exc))
