"""Text extraction for uploaded files.

Supports plain text, PDF (pypdf) and DOCX (python-docx). Anything else
raises ``UnsupportedTypeError``; the upload keeps the document without
content.
"""
import io
from pathlib import Path
from typing import Optional
import structlog
from docx import Document as DocxDocument
from pypdf import PdfReader

from docchat.errors import UnsupportedTypeError

logger = structlog.get_logger()

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PLAIN_TEXT = "text/plain"

_EXTENSION_TYPES = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".txt": PLAIN_TEXT,
    ".md": PLAIN_TEXT,
}


def resolve_media_type(media_type: Optional[str], filename: Optional[str] = None) -> str:
    """Use the declared media type, falling back to the file extension."""
    declared = (media_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    if filename:
        return _EXTENSION_TYPES.get(Path(filename).suffix.lower(), declared or "application/octet-stream")
    return declared or "application/octet-stream"


def _extract_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = []
    for page_number, page in enumerate(reader.pages, 1):
        text = page.extract_text() or ""
        if not text.strip():
            logger.debug("pdf_page_without_text", page=page_number)
        pages.append(text)
    return "\n\n".join(pages)


def _extract_docx(data: bytes) -> str:
    document = DocxDocument(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def _extract_plain(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


_EXTRACTORS = {
    PDF: _extract_pdf,
    DOCX: _extract_docx,
    PLAIN_TEXT: _extract_plain,
}


def extract(data: bytes, media_type: str, filename: Optional[str] = None) -> str:
    """Extract text from file bytes.

    Args:
        data: Raw file content
        media_type: Declared media type
        filename: Original filename, used when the media type is generic

    Returns:
        Extracted text (may be empty, e.g. a scanned PDF)

    Raises:
        UnsupportedTypeError: If no extractor handles the media type or the file is unreadable
    """
    resolved = resolve_media_type(media_type, filename)
    extractor = _EXTRACTORS.get(resolved)
    if extractor is None:
        raise UnsupportedTypeError(f"Text extraction not supported for media type: {resolved}")

    try:
        text = extractor(data)
    except Exception as e:
        logger.warning("text_extraction_failed", media_type=resolved, filename=filename, error=str(e))
        raise UnsupportedTypeError(f"Could not read {resolved} file: {e}") from e

    logger.info("text_extracted", media_type=resolved, filename=filename, text_length=len(text))
    return text
