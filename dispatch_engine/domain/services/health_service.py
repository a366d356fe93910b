"""
Health checks - dependency probes for the readiness endpoint

- liveness: the process is up (no dependency checks)
- readiness: the database, plus Redis when it backs the critical sections
"""
from typing import Any

from sqlalchemy import text

from dispatch_engine.core import redis_client
from dispatch_engine.core.config import settings
from dispatch_engine.core.logging import get_logger
from dispatch_engine.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Sanitised messages, no infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"


async def _check_db() -> str:
    """Run a trivial query against the database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    """PING the lock backend."""
    try:
        client = await redis_client.get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def check_readiness() -> dict[str, Any]:
    """
    Readiness probe.

    Returns a dict with the overall status ("healthy" / "degraded") and one
    "ok" / "error: ..." entry per dependency. Redis is only checked when
    LOCK_BACKEND is "redis"; the memory backend has no external dependency.
    """
    checks = {"db": await _check_db()}
    if settings.LOCK_BACKEND == "redis":
        checks["redis"] = await _check_redis()

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, "lock_backend": settings.LOCK_BACKEND, **checks}
