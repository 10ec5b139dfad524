"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Dependency check (/health/health): database, Redis
"""

import time
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from db import database

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
        "started_at": _start_datetime,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }


async def _check_database() -> str:
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database health check failed", error=str(e))
        return "unavailable"
    return "ok"


async def _check_redis() -> str:
    # Only needed when runs are dispatched to Celery
    settings = get_settings()
    if settings.ENGINE_DISPATCH_MODE == "inline":
        return "not_used"
    client = aioredis.from_url(settings.REDIS_URL, socket_timeout=2)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis health check failed", error=str(e))
        return "unavailable"
    finally:
        await client.aclose()
    return "ok"


@router.get("/health", response_model=dict[str, Any])
async def health_check() -> dict[str, Any]:
    """
    Health check with dependency verification.
    Returns 503 if the database is down; Redis being down only degrades
    (runs fall back to in-process execution in auto mode).
    """
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }

    if checks["database"] == "unavailable":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    overall = "degraded" if checks["redis"] == "unavailable" else "healthy"
    return {"status": overall, **checks}
