"""create candidates and cv_history

Revision ID: 3f9c2e71b8d4
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9c2e71b8d4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create candidate profiles and their CV upload history."""
    op.create_table(
        "candidates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("linkedin", sa.String(length=500), nullable=True),
        sa.Column("portfolio", sa.String(length=500), nullable=True),
        sa.Column("job_title", sa.String(length=200), nullable=True),
        sa.Column("expertise_level", sa.String(length=30), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("source", sa.String(length=30), server_default="direct", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_candidates_email"), "candidates", ["email"], unique=True)

    op.create_table(
        "cv_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("candidate_id", sa.Uuid(), nullable=False),
        sa.Column("original_filename", sa.String(length=500), nullable=False),
        sa.Column("stored_filename", sa.String(length=500), nullable=False),
        sa.Column("file_path", sa.String(length=1000), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("file_size_bytes", sa.Integer(), nullable=False),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("extracted_text", sa.String(), nullable=True),
        sa.Column(
            "extraction_status", sa.String(length=20), server_default="pending", nullable=False
        ),
        sa.Column("extraction_error", sa.String(), nullable=True),
        sa.Column("page_count", sa.Integer(), nullable=True),
        sa.Column(
            "crm_sync_status", sa.String(length=20), server_default="pending", nullable=False
        ),
        sa.Column("crm_sync_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("crm_sync_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("crm_sync_error", sa.String(length=500), nullable=True),
        sa.Column("crm_record_id", sa.String(length=255), nullable=True),
        sa.Column("crm_last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "crm_sync_in_progress", sa.Boolean(), server_default=sa.false(), nullable=False
        ),
        sa.Column("sync_version", sa.Integer(), server_default="0", nullable=False),
        sa.CheckConstraint(
            "(crm_sync_status = 'synced') = (crm_sync_date IS NOT NULL)",
            name="ck_cv_history_sync_date_matches_status",
        ),
        sa.CheckConstraint(
            "crm_sync_attempts >= 0", name="ck_cv_history_attempts_non_negative"
        ),
        sa.ForeignKeyConstraint(["candidate_id"], ["candidates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stored_filename"),
    )
    op.create_index(
        op.f("ix_cv_history_candidate_id"), "cv_history", ["candidate_id"], unique=False
    )
    op.create_index(
        op.f("ix_cv_history_uploaded_at"), "cv_history", ["uploaded_at"], unique=False
    )
    op.create_index(
        op.f("ix_cv_history_crm_sync_status"), "cv_history", ["crm_sync_status"], unique=False
    )


def downgrade() -> None:
    """Drop CV history and candidates."""
    op.drop_index(op.f("ix_cv_history_crm_sync_status"), table_name="cv_history")
    op.drop_index(op.f("ix_cv_history_uploaded_at"), table_name="cv_history")
    op.drop_index(op.f("ix_cv_history_candidate_id"), table_name="cv_history")
    op.drop_table("cv_history")
    op.drop_index(op.f("ix_candidates_email"), table_name="candidates")
    op.drop_table("candidates")
