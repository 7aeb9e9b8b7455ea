"""Redis client for disbursement idempotency keys.

The ledger itself is the durable record of which disbursements happened
(entries carry their idempotency key). Redis adds a short-lived claim so
two concurrent retries of the same disbursement cannot both get past the
ledger check before either has written its entry.

Usage:
    from loan_lifecycle.infrastructure.redis_client import init_redis, IdempotencyGuard

    redis = await init_redis()
    guard = IdempotencyGuard(redis, ttl_seconds=86400)
    if not await guard.claim("SF-001:2024-03-01"):
        ...  # someone else is already disbursing this file
"""

from __future__ import annotations

import redis.asyncio as aioredis

from loan_lifecycle.config import get_settings
from loan_lifecycle.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis | None:
    """Return the Redis client singleton, or None when it was never initialized."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency ---


class IdempotencyGuard:
    """Atomic first-writer-wins claims on idempotency keys."""

    PREFIX = "idempotency:"

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def claim(self, key: str) -> bool:
        """Claim ``key``. Returns False if it was already claimed."""
        claimed = await self._redis.set(f"{self.PREFIX}{key}", "1", nx=True, ex=self._ttl)
        return bool(claimed)

    async def release(self, key: str) -> None:
        """Drop a claim so a failed operation can be retried."""
        await self._redis.delete(f"{self.PREFIX}{key}")
