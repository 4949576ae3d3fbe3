import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cv_pipeline.api.deps import (
    get_db,
    get_file_storage,
    get_pipeline_config,
    get_session_factory,
    get_sync_engine,
)
from cv_pipeline.core.config import PipelineConfig
from cv_pipeline.core.exceptions import NotFoundError
from cv_pipeline.schemas.cv_history import CvHistoryRead, CvHistoryTextResponse
from cv_pipeline.services import candidate_service, cv_history_service, pipeline
from cv_pipeline.services.crm_sync import CrmSyncEngine
from cv_pipeline.storage.base import FileStorage

router = APIRouter(tags=["cvs"])


async def _get_cv_or_404(db: AsyncSession, cv_history_id: uuid.UUID):
    cv = await cv_history_service.get_cv_history(db, cv_history_id)
    if not cv:
        raise NotFoundError("CV", str(cv_history_id))
    return cv


@router.post(
    "/candidates/{candidate_id}/cvs",
    response_model=CvHistoryRead,
    status_code=status.HTTP_201_CREATED,
)
async def upload_cv(
    candidate_id: uuid.UUID,
    file: UploadFile,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
    config: PipelineConfig = Depends(get_pipeline_config),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    sync_engine: CrmSyncEngine = Depends(get_sync_engine),
) -> CvHistoryRead:
    candidate = await candidate_service.get_candidate(db, candidate_id)
    if not candidate:
        raise NotFoundError("Candidate", str(candidate_id))

    content = await file.read()
    cv = await pipeline.submit_cv(
        db,
        storage,
        candidate_id,
        content=content,
        content_type=file.content_type,
        original_filename=file.filename,
        config=config,
    )
    # Background work opens its own sessions and must see the new row
    await db.commit()

    background_tasks.add_task(pipeline.process_cv, session_factory, storage, sync_engine, cv.id)
    return CvHistoryRead.model_validate(cv)


@router.get("/candidates/{candidate_id}/cvs", response_model=list[CvHistoryRead])
async def list_cvs(
    candidate_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[CvHistoryRead]:
    candidate = await candidate_service.get_candidate(db, candidate_id)
    if not candidate:
        raise NotFoundError("Candidate", str(candidate_id))
    cvs = await cv_history_service.list_for_candidate(db, candidate_id)
    return [CvHistoryRead.model_validate(cv) for cv in cvs]


@router.get("/candidates/{candidate_id}/cvs/latest", response_model=CvHistoryRead)
async def get_latest_cv(
    candidate_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> CvHistoryRead:
    """The CV attached to new job applications: the most recent upload."""
    cv = await cv_history_service.get_latest_for_candidate(db, candidate_id)
    if not cv:
        raise NotFoundError("CV for candidate", str(candidate_id))
    return CvHistoryRead.model_validate(cv)


@router.get("/cvs/{cv_history_id}", response_model=CvHistoryRead)
async def get_cv(
    cv_history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> CvHistoryRead:
    cv = await _get_cv_or_404(db, cv_history_id)
    return CvHistoryRead.model_validate(cv)


@router.get("/cvs/{cv_history_id}/download")
async def download_cv(
    cv_history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
) -> FileResponse:
    cv = await _get_cv_or_404(db, cv_history_id)
    try:
        abs_path = await storage.retrieve(cv.file_path)
    except FileNotFoundError as e:
        raise NotFoundError("CV file", str(cv_history_id)) from e
    return FileResponse(
        path=str(abs_path),
        filename=cv.original_filename,
        media_type=cv.content_type,
    )


@router.get("/cvs/{cv_history_id}/text", response_model=CvHistoryTextResponse)
async def get_cv_text(
    cv_history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> CvHistoryTextResponse:
    cv = await _get_cv_or_404(db, cv_history_id)
    return CvHistoryTextResponse(
        id=cv.id,
        extracted_text=cv.extracted_text,
        extraction_status=cv.extraction_status,
        extraction_error=cv.extraction_error,
    )


@router.post("/cvs/{cv_history_id}/extract", response_model=CvHistoryRead)
async def re_extract_cv(
    cv_history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CvHistoryRead:
    await _get_cv_or_404(db, cv_history_id)
    cv = await pipeline.extract_cv_text(session_factory, storage, cv_history_id)
    return CvHistoryRead.model_validate(cv)
