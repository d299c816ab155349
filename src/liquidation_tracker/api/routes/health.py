"""Health endpoints for load balancers and container orchestrators.

``/health`` reports database and document storage separately; only the
database decides between ``healthy`` and ``degraded``. ``/ready`` fails
with 503 while the database is unreachable.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from liquidation_tracker.api.dependencies import AppSettings, DbSession
from liquidation_tracker.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    database: str
    storage: str
    version: str


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database health check failed", exc_info=True)
        return False
    return True


def _storage_status(settings: Settings) -> str:
    path = settings.upload_path
    if path.is_dir():
        return "healthy"
    return "missing" if not path.exists() else "unhealthy"


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession, settings: AppSettings) -> HealthResponse:
    database_ok = await _database_ok(db)
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if database_ok else "unhealthy",
        storage=_storage_status(settings),
        version=settings.app_version,
    )


@router.get("/ready")
async def readiness_check(db: DbSession) -> JSONResponse:
    """Ready once the database answers."""
    if await _database_ok(db):
        return JSONResponse({"status": "ready"})
    return JSONResponse({"status": "unavailable"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
