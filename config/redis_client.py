"""
config/redis_client.py
Async Redis client for caching (admin dashboard counters) and health checks.
The same Redis instance backs the Celery broker.
"""

import json
import logging
from typing import Any, Optional
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings

logger = logging.getLogger(__name__)


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis caching patterns."""

    ADMIN_STATS_KEY = "admin:dashboard:stats"

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── Admin dashboard ──────────────────────────────────────
    async def get_admin_stats(self) -> Optional[dict]:
        try:
            return await self.get(self.ADMIN_STATS_KEY)
        except RedisError as e:
            logger.warning(f"Admin stats cache read failed: {e}")
            return None

    async def set_admin_stats(self, stats: dict) -> None:
        try:
            await self.set(self.ADMIN_STATS_KEY, stats, ttl=settings.ADMIN_STATS_CACHE_TTL)
        except RedisError as e:
            logger.warning(f"Admin stats cache write failed: {e}")

    async def invalidate_admin_stats(self) -> None:
        """Drop cached counters after any onboarding status change. Best effort."""
        try:
            await self.delete(self.ADMIN_STATS_KEY)
        except RedisError as e:
            logger.warning(f"Admin stats invalidation failed: {e}")
