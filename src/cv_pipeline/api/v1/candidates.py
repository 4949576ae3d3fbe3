import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Query, UploadFile, status
from pydantic import EmailStr
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cv_pipeline.api.deps import (
    get_db,
    get_file_storage,
    get_pipeline_config,
    get_session_factory,
    get_sync_engine,
)
from cv_pipeline.core.config import PipelineConfig
from cv_pipeline.core.exceptions import ConflictError, NotFoundError
from cv_pipeline.models.candidate import Candidate
from cv_pipeline.schemas import PaginatedResponse
from cv_pipeline.schemas.candidate import (
    ApplicationSource,
    CandidateCreate,
    CandidateRead,
    CandidateUpdate,
    QuickApplicationRead,
)
from cv_pipeline.schemas.cv_history import CvHistoryRead
from cv_pipeline.services import candidate_service, pipeline
from cv_pipeline.services.crm_sync import CrmSyncEngine
from cv_pipeline.storage.base import FileStorage

router = APIRouter(prefix="/candidates", tags=["candidates"])


async def _get_candidate_or_404(db: AsyncSession, candidate_id: uuid.UUID) -> Candidate:
    candidate = await candidate_service.get_candidate(db, candidate_id)
    if candidate is None:
        raise NotFoundError("Candidate", str(candidate_id))
    return candidate


@router.post("/", response_model=CandidateRead, status_code=status.HTTP_201_CREATED)
async def create_candidate(
    data: CandidateCreate,
    db: AsyncSession = Depends(get_db),
) -> CandidateRead:
    try:
        candidate = await candidate_service.create_candidate(db, data)
    except IntegrityError as e:
        # Lost a race with a concurrent insert of the same email
        raise ConflictError(f"A candidate with email '{data.email}' already exists") from e
    return CandidateRead.model_validate(candidate)


@router.post(
    "/quick-application",
    response_model=QuickApplicationRead,
    status_code=status.HTTP_201_CREATED,
)
async def quick_application(
    background_tasks: BackgroundTasks,
    cv: UploadFile,
    first_name: str = Form(..., min_length=2, max_length=100),
    last_name: str = Form(..., min_length=2, max_length=100),
    email: EmailStr = Form(...),
    phone: str = Form(..., min_length=10, max_length=50),
    source: ApplicationSource = Form(ApplicationSource.QUICK_APPLICATION),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
    config: PipelineConfig = Depends(get_pipeline_config),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    sync_engine: CrmSyncEngine = Depends(get_sync_engine),
) -> QuickApplicationRead:
    """Apply without an account: form fields plus a CV in one request.

    A known email reuses the existing profile; the CV is added to its history
    and synced to the CRM like any other upload.
    """
    candidate, created = await candidate_service.find_or_create_candidate(
        db,
        CandidateCreate(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            source=source,
        ),
    )
    cv_history = await pipeline.submit_cv(
        db,
        storage,
        candidate.id,
        content=await cv.read(),
        content_type=cv.content_type,
        original_filename=cv.filename,
        config=config,
    )
    await db.commit()

    background_tasks.add_task(
        pipeline.process_cv, session_factory, storage, sync_engine, cv_history.id
    )
    return QuickApplicationRead(
        candidate=CandidateRead.model_validate(candidate),
        cv_history=CvHistoryRead.model_validate(cv_history),
        candidate_created=created,
    )


@router.get("/", response_model=PaginatedResponse[CandidateRead])
async def list_candidates(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    source: ApplicationSource | None = Query(None),
    search: str | None = Query(None, min_length=1, description="Match on name or email"),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[CandidateRead]:
    candidates, total = await candidate_service.list_candidates(
        db, skip=skip, limit=limit, source=source, search=search
    )
    return PaginatedResponse(
        items=[CandidateRead.model_validate(c) for c in candidates],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{candidate_id}", response_model=CandidateRead)
async def get_candidate(
    candidate_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> CandidateRead:
    return CandidateRead.model_validate(await _get_candidate_or_404(db, candidate_id))


@router.patch("/{candidate_id}", response_model=CandidateRead)
async def update_candidate(
    candidate_id: uuid.UUID,
    data: CandidateUpdate,
    db: AsyncSession = Depends(get_db),
) -> CandidateRead:
    candidate = await _get_candidate_or_404(db, candidate_id)
    updated = await candidate_service.update_candidate(db, candidate, data)
    return CandidateRead.model_validate(updated)
