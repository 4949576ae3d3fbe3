import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class ExtractionStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CrmSyncStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class CvHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    candidate_id: uuid.UUID
    original_filename: str
    stored_filename: str
    content_type: str
    file_size_bytes: int
    uploaded_at: datetime
    extraction_status: ExtractionStatus
    extraction_error: str | None
    page_count: int | None
    crm_sync_status: CrmSyncStatus
    crm_sync_date: datetime | None
    crm_sync_attempts: int
    crm_sync_error: str | None


class CvHistoryTextResponse(BaseModel):
    id: uuid.UUID
    extracted_text: str | None
    extraction_status: ExtractionStatus
    extraction_error: str | None


class RetrySyncResponse(BaseModel):
    id: uuid.UUID
    crm_sync_status: CrmSyncStatus
    message: str


class SyncStatsRead(BaseModel):
    total: int
    pending: int
    synced: int
    failed: int
    success_rate: float
