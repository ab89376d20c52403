"""Health check endpoints.

Provides:
- Liveness with scheduler status (/health)
- Database check plus ledger statistics (/health/db)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.dependencies import get_db, get_trigger_manager
from services.execution_service import ExecutionService
from triggers.manager import TriggerManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("", response_model=dict[str, Any])
async def health(
    request: Request,
    scheduler: TriggerManager = Depends(get_trigger_manager),
) -> dict[str, Any]:
    """
    Liveness probe.
    Reports uptime and the active cron triggers.
    """
    settings = get_settings()
    uptime_seconds = time.monotonic() - _start_time
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime_seconds": round(uptime_seconds, 1),
        "scheduler": {
            "enabled": settings.SCHEDULER_ENABLED,
            **scheduler.get_status(),
        },
    }


@router.get("/db", response_model=dict[str, Any])
async def database_health(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """
    Ping the database and summarise the execution ledger.
    Returns 503 if the database is unreachable.
    """
    try:
        await db.execute(text("SELECT 1"))
        stats = await ExecutionService(db).get_stats()
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": "unavailable"},
        )

    next_execution = stats.get("next_execution")
    return {
        "status": "healthy",
        "database": "ok",
        "stats": {
            **stats,
            "next_execution": next_execution.isoformat() if next_execution else None,
        },
    }
