"""
Health Routes

Liveness and readiness probes.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.config import settings
from hookcms.database import get_db

router = APIRouter(tags=["Health"])
logger = logging.getLogger(__name__)

APP_START_TIME = time.time()


class HealthStatus(BaseModel):
    status: str
    timestamp: str
    version: str
    uptime_seconds: float


class ReadinessStatus(BaseModel):
    status: str
    timestamp: str
    checks: dict[str, dict[str, Any]]


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Liveness probe. Does not touch the database."""
    return HealthStatus(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        uptime_seconds=round(time.time() - APP_START_TIME, 2),
    )


@router.get("/ready", response_model=ReadinessStatus)
async def readiness_check(db: AsyncSession = Depends(get_db)) -> ReadinessStatus:
    start = time.time()
    try:
        await db.execute(text("SELECT 1"))
        database = {"status": "healthy", "latency_ms": round((time.time() - start) * 1000, 2)}
    except Exception as e:  # noqa: BLE001
        logger.error("Database health check failed: %s", e)
        database = {"status": "unhealthy", "error": str(e)}

    return ReadinessStatus(
        status="ready" if database["status"] == "healthy" else "not_ready",
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks={"database": database},
    )
