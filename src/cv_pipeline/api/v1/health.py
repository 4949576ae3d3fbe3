from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cv_pipeline.api.deps import get_db, get_sync_engine
from cv_pipeline.core.config import get_settings
from cv_pipeline.schemas.health import HealthResponse, StatusResponse
from cv_pipeline.services.crm_sync import CrmSyncEngine

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    sync_engine: CrmSyncEngine = Depends(get_sync_engine),
) -> HealthResponse:
    settings = get_settings()
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "unhealthy",
        database=db_status,
        version=settings.app_version,
        queued_sync_attempts=len(sync_engine.scheduler),
    )


@router.get("/status", response_model=StatusResponse)
async def liveness() -> StatusResponse:
    return StatusResponse(status="ok")
