"""
Order Service — Redis connection for the idempotency cache

One lazily created pool per process. Every Redis call made by this service
sits on a request path (idempotency replay, health), so the socket timeouts
are kept short and come from settings rather than redis-py defaults.
"""
import logging

import redis.asyncio as aioredis

from order_service.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            client_name=settings.SERVICE_NAME,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
        logger.info("Redis pool created for %s:%s/%s", settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
