import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from cv_pipeline.api.deps import get_db, get_sync_engine
from cv_pipeline.core.exceptions import ConflictError, NotFoundError
from cv_pipeline.schemas.cv_history import CrmSyncStatus, RetrySyncResponse, SyncStatsRead
from cv_pipeline.services import candidate_service, cv_history_service
from cv_pipeline.services.crm_sync import CrmSyncEngine

router = APIRouter(tags=["crm-sync"])


@router.post(
    "/cvs/{cv_history_id}/retry-sync",
    response_model=RetrySyncResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_sync(
    cv_history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    sync_engine: CrmSyncEngine = Depends(get_sync_engine),
) -> RetrySyncResponse:
    cv = await cv_history_service.get_cv_history(db, cv_history_id)
    if not cv:
        raise NotFoundError("CV", str(cv_history_id))

    if not await sync_engine.retry_sync(cv_history_id):
        raise ConflictError(
            f"CV '{cv_history_id}' is not in failed sync status; nothing to retry"
        )
    return RetrySyncResponse(
        id=cv_history_id,
        crm_sync_status=CrmSyncStatus.PENDING,
        message="CRM sync retry scheduled",
    )


@router.post(
    "/candidates/{candidate_id}/crm-sync",
    response_model=RetrySyncResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def sync_candidate(
    candidate_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    sync_engine: CrmSyncEngine = Depends(get_sync_engine),
) -> RetrySyncResponse:
    """Send the candidate to the CRM again using their latest CV."""
    if not await candidate_service.get_candidate(db, candidate_id):
        raise NotFoundError("Candidate", str(candidate_id))
    if not await cv_history_service.get_latest_for_candidate(db, candidate_id):
        raise NotFoundError("CV for candidate", str(candidate_id))

    cv_history_id = await sync_engine.sync_candidate(candidate_id)
    if cv_history_id is None:
        raise ConflictError(
            f"Latest CV of candidate '{candidate_id}' is already synced or being pushed"
        )
    return RetrySyncResponse(
        id=cv_history_id,
        crm_sync_status=CrmSyncStatus.PENDING,
        message="CRM sync scheduled",
    )


@router.get("/crm-sync/stats", response_model=SyncStatsRead)
async def sync_stats(
    sync_engine: CrmSyncEngine = Depends(get_sync_engine),
) -> SyncStatsRead:
    stats = await sync_engine.sync_stats()
    return SyncStatsRead(
        total=stats.total,
        pending=stats.pending,
        synced=stats.synced,
        failed=stats.failed,
        success_rate=stats.success_rate,
    )
