"""
Redis client.

Purpose:
- Provide a lazily created async Redis connection shared by the process
- Back the reminder run lock when several processes run the ticker

Production notes:
- Point REDIS_URL at the same instance for every worker that runs reminders
- The lock key carries a TTL so a crashed holder cannot block reminders forever
"""
import logging
from typing import Optional

import redis.asyncio as redis

from config.settings import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

def get_redis() -> Optional[redis.Redis]:
    """
    Lazily create and return a Redis client.
    Returns None if the client cannot be created so callers can fall back.
    """
    global redis_client
    if redis_client is None:
        try:
            logger.info("Creating Redis client for %s", settings.REDIS_URL)
            redis_client = redis.Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        except Exception as e:
            logger.error("Failed to create Redis client: %s", e)
            redis_client = None
    return redis_client

async def close_redis():
    """Close the shared client (app shutdown)."""
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
        logger.info("Disconnected from Redis")
