import os
import uuid
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from docx import Document
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cv_pipeline.api.deps import (
    get_db,
    get_file_storage,
    get_pipeline_config,
    get_session_factory,
    get_sync_engine,
)
from cv_pipeline.core.config import PDF_MIME_TYPE, PipelineConfig
from cv_pipeline.main import create_app
from cv_pipeline.models import Base, Candidate
from cv_pipeline.services import pipeline
from cv_pipeline.services.crm_sync import CrmSyncEngine
from cv_pipeline.services.retry_scheduler import ManualClock, RetryPolicy, RetryScheduler
from cv_pipeline.storage.local import LocalFileStorage
from tests.mocks.mock_crm_client import FakeCrmClient

# A per-test SQLite file unless a shared database is provided. The sync engine
# opens its own sessions, so tests cannot run inside one rolled-back transaction.
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


def make_pdf(*pages: str) -> bytes:
    """Build a small valid PDF with one line of Helvetica text per page."""
    n = len(pages)
    kids = " ".join(f"{4 + 2 * i} 0 R" for i in range(n))
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {n} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for i, text in enumerate(pages):
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {5 + 2 * i} 0 R >>"
            ).encode()
        )
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode()
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    return make_pdf("Jane Smith Senior Python Developer", "Experience at Acme Corp")


@pytest.fixture
def sample_pdf(tmp_path: Path, sample_pdf_bytes: bytes) -> Path:
    path = tmp_path / "sample_resume.pdf"
    path.write_bytes(sample_pdf_bytes)
    return path


@pytest.fixture
def sample_docx(tmp_path: Path) -> Path:
    doc = Document()
    doc.add_paragraph("JANE SMITH")
    doc.add_paragraph("Backend engineer with ten years of experience")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Skills"
    table.rows[0].cells[1].text = "Python, FastAPI"
    path = tmp_path / "sample_resume.docx"
    doc.save(str(path))
    return path


@pytest.fixture
def sample_docx_bytes(sample_docx: Path) -> bytes:
    return sample_docx.read_bytes()


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path):
    engine = create_async_engine(
        TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
def storage(tmp_path: Path) -> LocalFileStorage:
    return LocalFileStorage(str(tmp_path / "uploads"))


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(api_base_url="http://cv.test", crm_push_timeout_seconds=1.0)


@pytest.fixture
def fake_crm() -> FakeCrmClient:
    return FakeCrmClient()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock, pipeline_config: PipelineConfig) -> RetryScheduler:
    policy = RetryPolicy(
        max_attempts=pipeline_config.crm_max_attempts,
        base_delay_ms=pipeline_config.crm_retry_base_delay_ms,
    )
    return RetryScheduler(policy, clock=clock)


@pytest.fixture
def sync_engine(session_factory, fake_crm, scheduler, pipeline_config) -> CrmSyncEngine:
    return CrmSyncEngine(session_factory, fake_crm, scheduler, pipeline_config)


@pytest_asyncio.fixture
async def candidate(session_factory) -> Candidate:
    async with session_factory() as session:
        candidate = Candidate(
            first_name="Jane",
            last_name="Smith",
            email=f"jane.smith.{uuid.uuid4().hex[:8]}@example.com",
            job_title="Backend Engineer",
            source="direct",
        )
        session.add(candidate)
        await session.flush()
        await session.refresh(candidate)
        await session.commit()
        return candidate


@pytest.fixture
def submit_cv(session_factory, storage, pipeline_config):
    """Store a CV for a candidate and return its id, as an upload would."""

    async def _submit(
        candidate_id: uuid.UUID,
        content: bytes,
        content_type: str = PDF_MIME_TYPE,
        filename: str = "resume.pdf",
    ) -> uuid.UUID:
        async with session_factory() as session:
            cv = await pipeline.submit_cv(
                session,
                storage,
                candidate_id,
                content=content,
                content_type=content_type,
                original_filename=filename,
                config=pipeline_config,
            )
            await session.commit()
            return cv.id

    return _submit


@pytest_asyncio.fixture
async def client(
    session_factory, storage, pipeline_config, sync_engine
) -> AsyncGenerator[AsyncClient]:
    app = create_app()

    # Same commit/rollback behaviour as the real dependency, on the test database
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    app.dependency_overrides[get_pipeline_config] = lambda: pipeline_config
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", follow_redirects=True
    ) as ac:
        yield ac


def make_candidate_payload(**overrides):
    """Helper to create a valid candidate payload with unique email."""
    data = {
        "first_name": "John",
        "last_name": "Doe",
        "email": f"john.doe.{uuid.uuid4().hex[:8]}@example.com",
        "phone": "+1234567890",
        "job_title": "Software Engineer",
        "expertise_level": "senior",
        "country": "Portugal",
        "city": "Lisbon",
    }
    data.update(overrides)
    return data
