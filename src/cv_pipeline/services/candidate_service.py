import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cv_pipeline.core.exceptions import ConflictError
from cv_pipeline.models.candidate import Candidate
from cv_pipeline.schemas.candidate import CandidateCreate, CandidateUpdate


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_candidate(db: AsyncSession, candidate_id: uuid.UUID) -> Candidate | None:
    return await db.get(Candidate, candidate_id)


async def get_candidate_by_email(db: AsyncSession, email: str) -> Candidate | None:
    result = await db.execute(select(Candidate).where(Candidate.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def _ensure_email_free(
    db: AsyncSession, email: str, exclude_id: uuid.UUID | None = None
) -> None:
    existing = await get_candidate_by_email(db, email)
    if existing is not None and existing.id != exclude_id:
        raise ConflictError(f"A candidate with email '{email}' already exists")


async def create_candidate(db: AsyncSession, data: CandidateCreate) -> Candidate:
    """Insert a new profile. Emails are unique regardless of case."""
    fields = data.model_dump()
    fields["email"] = normalize_email(fields["email"])
    await _ensure_email_free(db, fields["email"])

    candidate = Candidate(**fields)
    db.add(candidate)
    await db.flush()
    await db.refresh(candidate)
    return candidate


async def find_or_create_candidate(
    db: AsyncSession, data: CandidateCreate
) -> tuple[Candidate, bool]:
    """Reuse the profile registered under ``data.email`` or create one.

    Quick applications come from visitors without an account, so an email we
    already know attaches the CV to the existing profile unchanged. The flag
    is True when a new profile was created.
    """
    existing = await get_candidate_by_email(db, data.email)
    if existing is not None:
        return existing, False
    return await create_candidate(db, data), True


async def list_candidates(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    source: str | None = None,
    search: str | None = None,
) -> tuple[list[Candidate], int]:
    conditions = []
    if source:
        conditions.append(Candidate.source == source)
    if search:
        term = search.strip().lower()
        conditions.append(
            or_(
                func.lower(Candidate.first_name).contains(term, autoescape=True),
                func.lower(Candidate.last_name).contains(term, autoescape=True),
                Candidate.email.contains(term, autoescape=True),
            )
        )

    total = (
        await db.execute(select(func.count()).select_from(Candidate).where(*conditions))
    ).scalar_one()
    rows = await db.scalars(
        select(Candidate)
        .where(*conditions)
        .order_by(Candidate.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(rows), total


async def update_candidate(
    db: AsyncSession, candidate: Candidate, data: CandidateUpdate
) -> Candidate:
    changes = data.model_dump(exclude_unset=True)
    email = changes.pop("email", None)
    if email:
        changes["email"] = normalize_email(email)
        await _ensure_email_free(db, changes["email"], exclude_id=candidate.id)

    for name, value in changes.items():
        setattr(candidate, name, value)
    await db.flush()
    await db.refresh(candidate)
    return candidate
