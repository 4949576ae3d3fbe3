"""Persistence for CvHistory records.

Sync fields are only ever changed through the compare-and-set helpers at the
bottom of this module. Each one matches on ``sync_version`` and bumps it, so
a writer holding an outdated version (a stale delayed retry, a duplicate
attempt) updates zero rows and backs off.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cv_pipeline.models.cv_history import CvHistory
from cv_pipeline.schemas.cv_history import CrmSyncStatus, ExtractionStatus
from cv_pipeline.services.intake import IntakeDecision
from cv_pipeline.services.text_extraction import ExtractionResult

MAX_ERROR_LENGTH = 500


def _truncate(message: str) -> str:
    return message if len(message) <= MAX_ERROR_LENGTH else message[: MAX_ERROR_LENGTH - 3] + "..."


async def create_cv_history(
    db: AsyncSession,
    candidate_id: uuid.UUID,
    decision: IntakeDecision,
    file_path: str,
) -> CvHistory:
    cv = CvHistory(
        candidate_id=candidate_id,
        original_filename=decision.original_filename,
        stored_filename=decision.stored_filename,
        file_path=file_path,
        content_type=decision.content_type,
        file_size_bytes=decision.size,
        crm_sync_status=CrmSyncStatus.PENDING,
        crm_sync_attempts=0,
        sync_version=0,
    )
    db.add(cv)
    await db.flush()
    await db.refresh(cv)
    return cv


async def get_cv_history(db: AsyncSession, cv_history_id: uuid.UUID) -> CvHistory | None:
    result = await db.execute(
        select(CvHistory)
        .where(CvHistory.id == cv_history_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_for_candidate(db: AsyncSession, candidate_id: uuid.UUID) -> list[CvHistory]:
    result = await db.execute(
        select(CvHistory)
        .where(CvHistory.candidate_id == candidate_id)
        .order_by(CvHistory.uploaded_at.desc())
    )
    return list(result.scalars().all())


async def get_latest_for_candidate(db: AsyncSession, candidate_id: uuid.UUID) -> CvHistory | None:
    result = await db.execute(
        select(CvHistory)
        .where(CvHistory.candidate_id == candidate_id)
        .order_by(CvHistory.uploaded_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def update_extraction(
    db: AsyncSession,
    cv: CvHistory,
    *,
    result: ExtractionResult | None = None,
    error: str | None = None,
) -> CvHistory:
    """Store the extractor's outcome. Touches extraction fields only."""
    if result is not None:
        cv.extracted_text = result.text
        cv.page_count = result.page_count
        cv.extraction_error = None
        cv.extraction_status = ExtractionStatus.COMPLETED
    else:
        cv.extracted_text = None
        cv.extraction_error = _truncate(error or "Unknown extraction error")
        cv.extraction_status = ExtractionStatus.FAILED
    await db.flush()
    await db.refresh(cv)
    return cv


async def release_in_progress(db: AsyncSession) -> int:
    """Clear claims left behind by attempts that never finished.

    Only safe while no attempt is running, i.e. at startup.
    """
    result = await db.execute(
        update(CvHistory)
        .where(CvHistory.crm_sync_in_progress.is_(True))
        .values(crm_sync_in_progress=False, sync_version=CvHistory.sync_version + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def list_pending_sync(db: AsyncSession) -> list[tuple[uuid.UUID, int]]:
    result = await db.execute(
        select(CvHistory.id, CvHistory.sync_version)
        .where(CvHistory.crm_sync_status == CrmSyncStatus.PENDING)
        .order_by(CvHistory.uploaded_at)
    )
    return [(row.id, row.sync_version) for row in result]


async def count_by_sync_status(db: AsyncSession) -> dict[CrmSyncStatus, int]:
    result = await db.execute(
        select(CvHistory.crm_sync_status, func.count()).group_by(CvHistory.crm_sync_status)
    )
    counts = {status: 0 for status in CrmSyncStatus}
    for status, count in result:
        counts[CrmSyncStatus(status)] = count
    return counts


# ── sync state transitions ──────────────────────────────────────────────


async def claim_attempt(
    db: AsyncSession,
    cv_history_id: uuid.UUID,
    expected_version: int,
    max_attempts: int,
) -> int | None:
    """Reserve the next push attempt. Returns the claimed version, or None."""
    result = await db.execute(
        update(CvHistory)
        .where(
            CvHistory.id == cv_history_id,
            CvHistory.sync_version == expected_version,
            CvHistory.crm_sync_status == CrmSyncStatus.PENDING,
            CvHistory.crm_sync_attempts < max_attempts,
            CvHistory.crm_sync_in_progress.is_(False),
        )
        .values(
            crm_sync_attempts=CvHistory.crm_sync_attempts + 1,
            crm_last_attempt_at=datetime.now(UTC),
            crm_sync_in_progress=True,
            sync_version=expected_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return expected_version + 1 if result.rowcount == 1 else None


async def mark_synced(
    db: AsyncSession,
    cv_history_id: uuid.UUID,
    version: int,
    crm_record_id: str | None,
) -> bool:
    result = await db.execute(
        update(CvHistory)
        .where(CvHistory.id == cv_history_id, CvHistory.sync_version == version)
        .values(
            crm_sync_status=CrmSyncStatus.SYNCED,
            crm_sync_date=datetime.now(UTC),
            crm_sync_error=None,
            crm_record_id=crm_record_id,
            crm_sync_in_progress=False,
            sync_version=version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_retry_pending(
    db: AsyncSession,
    cv_history_id: uuid.UUID,
    version: int,
    error: str,
) -> int | None:
    """Record a retryable failure and keep the record pending."""
    result = await db.execute(
        update(CvHistory)
        .where(CvHistory.id == cv_history_id, CvHistory.sync_version == version)
        .values(
            crm_sync_status=CrmSyncStatus.PENDING,
            crm_sync_date=None,
            crm_sync_error=_truncate(error),
            crm_sync_in_progress=False,
            sync_version=version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return version + 1 if result.rowcount == 1 else None


async def mark_failed(
    db: AsyncSession,
    cv_history_id: uuid.UUID,
    version: int,
    error: str,
) -> bool:
    result = await db.execute(
        update(CvHistory)
        .where(CvHistory.id == cv_history_id, CvHistory.sync_version == version)
        .values(
            crm_sync_status=CrmSyncStatus.FAILED,
            crm_sync_date=None,
            crm_sync_error=_truncate(error),
            crm_sync_in_progress=False,
            sync_version=version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def reset_for_retry(db: AsyncSession, cv_history_id: uuid.UUID) -> int | None:
    """Move a failed record back to pending with a fresh attempt budget.

    Returns the new version, or None when the record is missing, not failed,
    or was reset concurrently by another caller.
    """
    result = await db.execute(
        update(CvHistory)
        .where(
            CvHistory.id == cv_history_id,
            CvHistory.crm_sync_status == CrmSyncStatus.FAILED,
        )
        .values(
            crm_sync_status=CrmSyncStatus.PENDING,
            crm_sync_date=None,
            crm_sync_attempts=0,
            crm_sync_error=None,
            crm_sync_in_progress=False,
            sync_version=CvHistory.sync_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    # Read back inside the same transaction, after the row was written
    version = await db.execute(
        select(CvHistory.sync_version).where(CvHistory.id == cv_history_id)
    )
    return version.scalar_one()


async def release_claim(
    db: AsyncSession,
    cv_history_id: uuid.UUID,
    version: int,
    error: str,
    max_attempts: int,
) -> tuple[int, int, CrmSyncStatus] | None:
    """Give up a claim whose attempt broke before recording an outcome.

    The record stays pending while attempts remain and fails otherwise.
    Returns ``(new_version, attempts, status)``, or None when the claim was
    already resolved.
    """
    result = await db.execute(
        update(CvHistory)
        .where(
            CvHistory.id == cv_history_id,
            CvHistory.sync_version == version,
            CvHistory.crm_sync_in_progress.is_(True),
        )
        .values(
            crm_sync_status=case(
                (CvHistory.crm_sync_attempts >= max_attempts, CrmSyncStatus.FAILED.value),
                else_=CrmSyncStatus.PENDING.value,
            ),
            crm_sync_date=None,
            crm_sync_error=_truncate(error),
            crm_sync_in_progress=False,
            sync_version=version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    row = (
        await db.execute(
            select(CvHistory.crm_sync_attempts, CvHistory.crm_sync_status).where(
                CvHistory.id == cv_history_id
            )
        )
    ).one()
    return version + 1, row.crm_sync_attempts, CrmSyncStatus(row.crm_sync_status)
