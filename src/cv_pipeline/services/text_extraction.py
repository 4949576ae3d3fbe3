import asyncio
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pdfplumber
from docx import Document

from cv_pipeline.core.config import DOC_MIME_TYPE, DOCX_MIME_TYPE, PDF_MIME_TYPE
from cv_pipeline.core.exceptions import ExtractionError


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    pages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def page_count(self) -> int | None:
        return len(self.pages) if self.pages else None


def extract_text_from_pdf(file_path: Path) -> ExtractionResult:
    try:
        with pdfplumber.open(file_path) as pdf:
            pages = [(page.extract_text() or "").strip() for page in pdf.pages]
    except Exception as e:
        raise ExtractionError(f"PDF extraction failed: {e}") from e
    return ExtractionResult(text="\n\n".join(pages).strip(), pages=pages)


def extract_text_from_word(file_path: Path) -> ExtractionResult:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            doc = Document(str(file_path))
        except Exception as e:
            raise ExtractionError(f"Word extraction failed: {e}") from e

        blocks = [para.text.strip() for para in doc.paragraphs if para.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    blocks.append(" | ".join(cells))

    notes = [str(w.message) for w in caught]
    if not blocks:
        notes.append("Document contains no text")
    return ExtractionResult(text="\n\n".join(blocks), warnings=notes)


EXTRACTORS: dict[str, Callable[[Path], ExtractionResult]] = {
    PDF_MIME_TYPE: extract_text_from_pdf,
    DOCX_MIME_TYPE: extract_text_from_word,
    # Legacy binary .doc files are not readable by python-docx and end up as
    # an ExtractionError, which the pipeline tolerates.
    DOC_MIME_TYPE: extract_text_from_word,
}


def extract_text(file_path: Path, content_type: str) -> ExtractionResult:
    """Extract plain text, dispatching on the declared MIME type."""
    extractor = EXTRACTORS.get(content_type)
    if extractor is None:
        raise ExtractionError(f"Unsupported content type: {content_type}")
    return extractor(file_path)


async def extract_text_async(file_path: Path, content_type: str) -> ExtractionResult:
    return await asyncio.to_thread(extract_text, file_path, content_type)
