"""CRM synchronization state machine for CvHistory records.

    pending --push ok--------------------------> synced
    pending --retryable, budget left-----------> pending (retry queued)
    pending --retryable, budget spent | fatal--> failed
    failed  --retry_sync (operator)------------> pending (attempts reset)

Every step runs in its own short session and commits right away. Exclusion
between attempts on the same record comes from the version checks in
``cv_history_service``; nothing is held open across the CRM call. An attempt
that breaks outside the CRM call releases its claim and counts as a retryable
failure, so a record never stays claimed with nothing queued.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cv_pipeline.core.config import PipelineConfig
from cv_pipeline.core.exceptions import CrmError, CrmFatalError, CrmRetryableError
from cv_pipeline.models.candidate import Candidate
from cv_pipeline.models.cv_history import CvHistory
from cv_pipeline.schemas.cv_history import CrmSyncStatus
from cv_pipeline.services import candidate_service, cv_history_service
from cv_pipeline.services.crm_client import CrmCandidatePayload, CrmClient, CrmCvReference
from cv_pipeline.services.retry_scheduler import RetryScheduler, ScheduledAttempt

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal error while syncing to the CRM"


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class SyncAttempt:
    cv_history_id: uuid.UUID
    ordinal: int
    started_at: datetime
    outcome: AttemptOutcome
    error: str | None = None
    next_delay: float | None = None


@dataclass(frozen=True)
class SyncStats:
    total: int
    pending: int
    synced: int
    failed: int

    @property
    def success_rate(self) -> float:
        return round(self.synced / self.total * 100, 2) if self.total else 0.0


def cv_download_url(api_base_url: str, cv_history_id: uuid.UUID) -> str:
    return f"{api_base_url.rstrip('/')}/api/v1/cvs/{cv_history_id}/download"


def build_payload(
    candidate: Candidate,
    cv: CvHistory,
    all_cvs: list[CvHistory],
    api_base_url: str,
) -> CrmCandidatePayload:
    """Candidate profile plus every CV on file, the synced one flagged latest."""
    return CrmCandidatePayload(
        internal_id=str(candidate.id),
        first_name=candidate.first_name,
        last_name=candidate.last_name,
        email=candidate.email,
        phone=candidate.phone,
        linkedin=candidate.linkedin,
        portfolio=candidate.portfolio,
        job_title=candidate.job_title,
        expertise_level=candidate.expertise_level,
        country=candidate.country,
        city=candidate.city,
        source=candidate.source,
        cv_id=str(cv.id),
        cv_url=cv_download_url(api_base_url, cv.id),
        cv_file_name=cv.original_filename,
        cv_uploaded_at=cv.uploaded_at,
        cv_text=cv.extracted_text,
        cvs=[
            CrmCvReference(
                url=cv_download_url(api_base_url, other.id),
                file_name=other.original_filename,
                uploaded_at=other.uploaded_at,
                is_latest=other.id == cv.id,
            )
            for other in all_cvs
        ],
        sent_at=datetime.now(UTC),
        candidate_created_at=candidate.created_at,
    )


class CrmSyncEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        crm_client: CrmClient,
        scheduler: RetryScheduler,
        config: PipelineConfig,
    ) -> None:
        self.session_factory = session_factory
        self.crm_client = crm_client
        self.scheduler = scheduler
        self.config = config
        scheduler.set_handler(self._on_due)

    async def _on_due(self, entry: ScheduledAttempt) -> None:
        try:
            await self.run_attempt(entry.cv_history_id, entry.expected_version)
        except Exception:
            # The store failed outside the claimed section; resume_pending clears any claim left
            logger.exception("Sync attempt for CV %s crashed", entry.cv_history_id)

    async def start_sync(self, cv_history_id: uuid.UUID) -> bool:
        """Queue an immediate attempt for a pending record."""
        async with self.session_factory() as session:
            cv = await cv_history_service.get_cv_history(session, cv_history_id)
        if cv is None or cv.crm_sync_status != CrmSyncStatus.PENDING or cv.crm_sync_in_progress:
            return False
        return self.scheduler.schedule(cv.id, cv.sync_version, delay=0)

    async def retry_sync(self, cv_history_id: uuid.UUID) -> bool:
        """Operator action: reset a failed record and sync it again.

        Returns False without side effects when the record is not failed,
        including when a concurrent call already reset it.
        """
        async with self.session_factory() as session:
            version = await cv_history_service.reset_for_retry(session, cv_history_id)
            await session.commit()
        if version is None:
            return False
        logger.info("CRM sync retry requested for CV %s", cv_history_id)
        if not self.scheduler.schedule(cv_history_id, version, delay=0):
            logger.warning("CV %s already has a newer attempt queued", cv_history_id)
        return True

    async def sync_candidate(self, candidate_id: uuid.UUID) -> uuid.UUID | None:
        """Push a candidate's profile again through their most recent CV.

        A pending latest CV is queued and a failed one is reset as in
        :meth:`retry_sync`. Returns the id of the queued CV, or None when the
        candidate has no CV or the latest one is synced or mid-push.
        """
        async with self.session_factory() as session:
            latest = await cv_history_service.get_latest_for_candidate(session, candidate_id)
        if latest is None:
            logger.warning("No CV on file for candidate %s; nothing to sync", candidate_id)
            return None
        if latest.crm_sync_status == CrmSyncStatus.FAILED:
            queued = await self.retry_sync(latest.id)
        else:
            queued = await self.start_sync(latest.id) or self.scheduler.outstanding(latest.id)
        return latest.id if queued else None

    async def resume_pending(self) -> int:
        """Queue every pending record after a restart lost the queue.

        Call before the scheduler starts: claims held by attempts that died
        with the previous process are released first.
        """
        async with self.session_factory() as session:
            released = await cv_history_service.release_in_progress(session)
            await session.commit()
            if released:
                logger.warning("Released %d interrupted CRM sync attempt(s)", released)
            pending = await cv_history_service.list_pending_sync(session)
        scheduled = sum(
            self.scheduler.schedule(cv_id, version, delay=0) for cv_id, version in pending
        )
        if scheduled:
            logger.info("Resumed CRM sync for %d pending CV(s)", scheduled)
        return scheduled

    async def sync_stats(self) -> SyncStats:
        async with self.session_factory() as session:
            counts = await cv_history_service.count_by_sync_status(session)
        return SyncStats(
            total=sum(counts.values()),
            pending=counts[CrmSyncStatus.PENDING],
            synced=counts[CrmSyncStatus.SYNCED],
            failed=counts[CrmSyncStatus.FAILED],
        )

    async def run_attempt(
        self, cv_history_id: uuid.UUID, expected_version: int
    ) -> SyncAttempt | None:
        """Run one push attempt if ``expected_version`` is still current.

        Returns None when the attempt was stale or lost the claim to another
        attempt; nothing is pushed in that case. An error outside the CRM call
        (the store failing, say) releases the claim and counts as a retryable
        failure.
        """
        started_at = datetime.now(UTC)
        async with self.session_factory() as session:
            version = await cv_history_service.claim_attempt(
                session, cv_history_id, expected_version, self.scheduler.policy.max_attempts
            )
            await session.commit()
        if version is None:
            logger.debug(
                "Skipping stale sync attempt for CV %s (version %d)",
                cv_history_id,
                expected_version,
            )
            return None

        try:
            return await self._attempt(cv_history_id, version, started_at)
        except Exception:
            logger.exception("Sync attempt for CV %s ended without an outcome", cv_history_id)
            return await self._release_claim(cv_history_id, version, started_at)

    async def _attempt(
        self, cv_history_id: uuid.UUID, version: int, started_at: datetime
    ) -> SyncAttempt:
        ordinal = 0
        try:
            ordinal, payload = await self._load_payload(cv_history_id)
            crm_record_id = await self._push(payload)
        except CrmError as e:
            return await self._record_failure(cv_history_id, version, ordinal, started_at, e)
        return await self._record_success(
            cv_history_id, version, ordinal, started_at, crm_record_id
        )

    async def _release_claim(
        self, cv_history_id: uuid.UUID, version: int, started_at: datetime
    ) -> SyncAttempt | None:
        policy = self.scheduler.policy
        async with self.session_factory() as session:
            released = await cv_history_service.release_claim(
                session, cv_history_id, version, INTERNAL_ERROR, policy.max_attempts
            )
            await session.commit()
        if released is None:
            return None

        new_version, ordinal, status = released
        if status == CrmSyncStatus.FAILED:
            logger.error("CRM sync failed for CV %s after %d attempt(s)", cv_history_id, ordinal)
            return SyncAttempt(
                cv_history_id, ordinal, started_at, AttemptOutcome.FATAL, INTERNAL_ERROR
            )
        next_delay = self.scheduler.schedule_retry(cv_history_id, new_version, ordinal)
        return SyncAttempt(
            cv_history_id, ordinal, started_at, AttemptOutcome.RETRYABLE, INTERNAL_ERROR, next_delay
        )

    async def _load_payload(self, cv_history_id: uuid.UUID) -> tuple[int, CrmCandidatePayload]:
        async with self.session_factory() as session:
            cv = await cv_history_service.get_cv_history(session, cv_history_id)
            if cv is None:
                raise CrmFatalError("CV record no longer exists")
            candidate = await candidate_service.get_candidate(session, cv.candidate_id)
            if candidate is None:
                raise CrmFatalError("Candidate no longer exists")
            all_cvs = await cv_history_service.list_for_candidate(session, candidate.id)
            payload = build_payload(candidate, cv, all_cvs, self.config.api_base_url)
        return cv.crm_sync_attempts, payload

    async def _push(self, payload: CrmCandidatePayload) -> str | None:
        try:
            return await asyncio.wait_for(
                self.crm_client.push(payload), timeout=self.config.crm_push_timeout_seconds
            )
        except TimeoutError as e:
            raise CrmRetryableError("CRM request timed out") from e
        except CrmError:
            raise
        except Exception as e:
            logger.warning("Unexpected CRM client error for CV %s: %r", payload.cv_id, e)
            raise CrmRetryableError("Unexpected error while contacting the CRM") from e

    async def _record_success(
        self,
        cv_history_id: uuid.UUID,
        version: int,
        ordinal: int,
        started_at: datetime,
        crm_record_id: str | None,
    ) -> SyncAttempt:
        async with self.session_factory() as session:
            updated = await cv_history_service.mark_synced(
                session, cv_history_id, version, crm_record_id
            )
            await session.commit()
        if not updated:
            logger.warning(
                "CV %s changed during a successful push; result not recorded", cv_history_id
            )
        else:
            logger.info("CV %s synced to CRM on attempt %d", cv_history_id, ordinal)
        return SyncAttempt(cv_history_id, ordinal, started_at, AttemptOutcome.SUCCESS)

    async def _record_failure(
        self,
        cv_history_id: uuid.UUID,
        version: int,
        ordinal: int,
        started_at: datetime,
        error: CrmError,
    ) -> SyncAttempt:
        if error.detail:
            logger.debug("CRM error detail for CV %s: %s", cv_history_id, error.detail)

        outcome = AttemptOutcome.RETRYABLE if error.retryable else AttemptOutcome.FATAL
        next_delay = None
        async with self.session_factory() as session:
            if error.retryable and self.scheduler.policy.can_retry(ordinal):
                new_version = await cv_history_service.mark_retry_pending(
                    session, cv_history_id, version, error.message
                )
                await session.commit()
                if new_version is not None:
                    next_delay = self.scheduler.schedule_retry(cv_history_id, new_version, ordinal)
                    logger.warning(
                        "CRM sync attempt %d/%d failed for CV %s: %s; retrying in %.1fs",
                        ordinal,
                        self.scheduler.policy.max_attempts,
                        cv_history_id,
                        error.message,
                        next_delay or 0,
                    )
            else:
                updated = await cv_history_service.mark_failed(
                    session, cv_history_id, version, error.message
                )
                await session.commit()
                if updated:
                    logger.error(
                        "CRM sync failed for CV %s after %d attempt(s): %s",
                        cv_history_id,
                        ordinal,
                        error.message,
                    )
        return SyncAttempt(cv_history_id, ordinal, started_at, outcome, error.message, next_delay)
