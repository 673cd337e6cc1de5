"""Redis clients for cancel flags, idempotence locks and the live event channel."""

import logging
from functools import lru_cache

import redis
import redis.asyncio as aioredis

from .config import settings

logger = logging.getLogger("agent_runner.redis_client")


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    client = redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        health_check_interval=30,  # PING when idle so broken connections are noticed
    )
    logger.info("Created Redis client: %s", settings.REDIS_URL)
    return client


def get_async_redis_client() -> aioredis.Redis:
    """A fresh asyncio client; SSE subscribers own and close their own connection."""
    return aioredis.from_url(settings.REDIS_URL, decode_responses=True)
