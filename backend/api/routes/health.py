"""Health check endpoints.

Provides:
- Liveness probe with a database ping (/health)
- Process status (/health/status)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text

from app.dependencies import get_runtime
from app.runtime import Runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("", response_model=dict[str, Any])
async def health_check(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    """
    Health check with a database ping.
    Returns 503 if the database is unreachable.
    """
    try:
        async with runtime.db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": "unavailable"},
        )

    return {
        "status": "healthy",
        "version": runtime.settings.APP_VERSION,
        "database": database,
    }


@router.get("/status", response_model=dict[str, Any])
async def system_status(runtime: Runtime = Depends(get_runtime)) -> dict[str, Any]:
    """Uptime and engine settings, for dashboards."""
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)
    settings = runtime.settings

    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "uptime_seconds": round(uptime_seconds, 1),
        "supervisor": {
            "enabled": settings.SUPERVISOR_ENABLED,
            "interval_seconds": settings.SUPERVISOR_INTERVAL_SECONDS,
        },
        "dispatch_max_concurrency": settings.DISPATCH_MAX_CONCURRENCY,
    }
