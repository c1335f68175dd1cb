"""
PDF text extraction using PyMuPDF (fitz).

``validate`` runs cheap structural checks on the raw bytes;
``extract`` returns per-page text with whitespace collapsed, plus the
document metadata. Parsing runs in a worker thread.
"""

import asyncio
import re

import fitz  # PyMuPDF
from pydantic import BaseModel, Field

from contentpipe.core.errors import DocumentValidationError
from contentpipe.core.logging import get_logger
from contentpipe.services.processors.chunker import PageText

logger = get_logger(__name__)

PDF_MAGIC = b"%PDF"
MIN_PDF_BYTES = 100

_WHITESPACE = re.compile(r"\s+")


class ValidationResult(BaseModel):
    valid: bool
    error: str | None = None


class PdfMetadata(BaseModel):
    title: str | None = None
    author: str | None = None
    subject: str | None = None
    keywords: str | None = None
    creation_date: str | None = None
    page_count: int = 0
    file_size: int = 0


class ExtractedDocument(BaseModel):
    pages: list[PageText] = Field(default_factory=list)
    metadata: PdfMetadata


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


class PdfExtractor:
    """Validates PDF bytes and extracts page text."""

    def validate(self, data: bytes) -> ValidationResult:
        if not data or data[:4] != PDF_MAGIC:
            return ValidationResult(valid=False, error="Invalid PDF file format")
        if len(data) < MIN_PDF_BYTES:
            return ValidationResult(
                valid=False,
                error="PDF file appears to be corrupted (too small)",
            )
        return ValidationResult(valid=True)

    async def extract(self, data: bytes) -> ExtractedDocument:
        """
        Extract page text and metadata.

        Pages without text are omitted; metadata.page_count still counts
        them.

        Raises:
            DocumentValidationError: If PyMuPDF cannot open the document
        """
        return await asyncio.to_thread(self._extract_sync, data)

    def _extract_sync(self, data: bytes) -> ExtractedDocument:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            logger.error("pdf_open_failed", error=str(exc))
            raise DocumentValidationError(f"Unable to read PDF: {exc}") from exc

        try:
            pages: list[PageText] = []
            for page_index in range(doc.page_count):
                text = normalize_whitespace(doc[page_index].get_text("text"))
                if text:
                    pages.append(PageText(page_number=page_index + 1, text=text))

            info = doc.metadata or {}
            metadata = PdfMetadata(
                title=info.get("title") or None,
                author=info.get("author") or None,
                subject=info.get("subject") or None,
                keywords=info.get("keywords") or None,
                creation_date=info.get("creationDate") or None,
                page_count=doc.page_count,
                file_size=len(data),
            )
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", page_count=metadata.page_count)

        return ExtractedDocument(pages=pages, metadata=metadata)
