"""
Redis Connection Pool

One pool per process, shared by the redis lock backend and the readiness
probe. Lock traffic is many short commands, so sockets time out after
LOCK_ACQUIRE_TIMEOUT_SECONDS: a stalled server surfaces as a store error
inside the lock wait instead of hanging a critical section.
"""
import asyncio
from urllib.parse import urlsplit

import redis.asyncio as aioredis

from dispatch_engine.core.config import settings
from dispatch_engine.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_connect_lock = asyncio.Lock()


def describe_redis_url(url: str) -> dict:
    """Host, port and db of a redis URL, without credentials"""
    parts = urlsplit(url)
    db = parts.path.lstrip("/") or "0"
    return {"host": parts.hostname, "port": parts.port or 6379, "db": db}


def build_connection_pool() -> aioredis.ConnectionPool:
    """Pool sized and timed for lock commands. Connects lazily."""
    return aioredis.ConnectionPool.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.LOCK_ACQUIRE_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.LOCK_ACQUIRE_TIMEOUT_SECONDS,
        health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL_SECONDS,
        decode_responses=True,
    )


async def get_redis() -> aioredis.Redis:
    """Shared client; the first caller builds the pool and pings the server"""
    global _redis_client
    if _redis_client is None:
        async with _connect_lock:
            if _redis_client is None:
                client = aioredis.Redis(connection_pool=build_connection_pool())
                await client.ping()
                _redis_client = client
                logger.info(
                    "Redis pool ready",
                    extra_data={
                        **describe_redis_url(settings.REDIS_URL),
                        "max_connections": settings.REDIS_MAX_CONNECTIONS,
                    }
                )
    return _redis_client


async def close_redis() -> None:
    """Disconnect the pool on shutdown"""
    global _redis_client
    client, _redis_client = _redis_client, None
    if client is not None:
        await client.aclose(close_connection_pool=True)
        logger.info("Redis pool closed")
