import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cv_pipeline.core.config import PipelineConfig
from cv_pipeline.models.cv_history import CvHistory
from cv_pipeline.services import cv_history_service
from cv_pipeline.services.crm_sync import CrmSyncEngine
from cv_pipeline.services.intake import validate_upload
from cv_pipeline.services.text_extraction import extract_text_async
from cv_pipeline.storage.base import FileStorage

logger = logging.getLogger(__name__)


async def submit_cv(
    db: AsyncSession,
    storage: FileStorage,
    candidate_id: uuid.UUID,
    *,
    content: bytes,
    content_type: str | None,
    original_filename: str | None,
    config: PipelineConfig,
) -> CvHistory:
    """Validate, store and record an uploaded CV in ``pending`` sync status.

    Rejected uploads raise before anything is written. If the record cannot
    be created the stored bytes are removed again.
    """
    decision = validate_upload(
        size=len(content),
        content_type=content_type,
        original_filename=original_filename,
        config=config,
    )
    file_path = await storage.save(content, decision.stored_filename, subdir=str(candidate_id))
    try:
        cv = await cv_history_service.create_cv_history(db, candidate_id, decision, file_path)
    except Exception:
        await storage.delete(file_path)
        raise
    logger.info("Stored CV %s for candidate %s (%d bytes)", cv.id, candidate_id, decision.size)
    return cv


async def extract_cv_text(
    session_factory: async_sessionmaker[AsyncSession],
    storage: FileStorage,
    cv_history_id: uuid.UUID,
) -> CvHistory | None:
    """Best-effort text extraction. Failures are recorded, never raised."""
    async with session_factory() as session:
        cv = await cv_history_service.get_cv_history(session, cv_history_id)
        if cv is None:
            return None

        try:
            abs_path = await storage.retrieve(cv.file_path)
            result = await extract_text_async(abs_path, cv.content_type)
        except Exception as e:
            logger.warning("Text extraction failed for CV %s: %s", cv_history_id, e)
            await cv_history_service.update_extraction(session, cv, error=str(e))
        else:
            for warning in result.warnings:
                logger.info("Extraction warning for CV %s: %s", cv_history_id, warning)
            await cv_history_service.update_extraction(session, cv, result=result)

        await session.commit()
        return cv


async def process_cv(
    session_factory: async_sessionmaker[AsyncSession],
    storage: FileStorage,
    sync_engine: CrmSyncEngine,
    cv_history_id: uuid.UUID,
) -> None:
    """Kick off the CRM sync, then extract text while the push is queued."""
    await sync_engine.start_sync(cv_history_id)
    await extract_cv_text(session_factory, storage, cv_history_id)
