import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cv_pipeline.models.base import Base, UUIDPrimaryKeyMixin
from cv_pipeline.schemas.cv_history import CrmSyncStatus, ExtractionStatus

if TYPE_CHECKING:
    from cv_pipeline.models.candidate import Candidate


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class CvHistory(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "cv_history"
    __table_args__ = (
        CheckConstraint(
            "(crm_sync_status = 'synced') = (crm_sync_date IS NOT NULL)",
            name="ck_cv_history_sync_date_matches_status",
        ),
        CheckConstraint("crm_sync_attempts >= 0", name="ck_cv_history_attempts_non_negative"),
    )

    candidate_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    original_filename: Mapped[str] = mapped_column(String(500), nullable=False)
    stored_filename: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Written by the content extractor only
    extracted_text: Mapped[str | None] = mapped_column(nullable=True)
    extraction_status: Mapped[ExtractionStatus] = mapped_column(
        Enum(
            ExtractionStatus,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=ExtractionStatus.PENDING,
        server_default=ExtractionStatus.PENDING.value,
    )
    extraction_error: Mapped[str | None] = mapped_column(nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Written by the CRM sync engine only
    crm_sync_status: Mapped[CrmSyncStatus] = mapped_column(
        Enum(
            CrmSyncStatus,
            native_enum=False,
            length=20,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=CrmSyncStatus.PENDING,
        server_default=CrmSyncStatus.PENDING.value,
        index=True,
    )
    crm_sync_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    crm_sync_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    crm_sync_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    crm_record_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    crm_last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Set while a push is running; at most one attempt holds it
    crm_sync_in_progress: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    sync_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    candidate: Mapped["Candidate"] = relationship(back_populates="cv_histories")

    def __repr__(self) -> str:
        return f"<CvHistory {self.stored_filename} ({self.crm_sync_status})>"
