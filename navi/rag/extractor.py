"""Plain-text extraction from uploaded document bytes.

Handles:
- PDF via pypdf
- Word XML (.docx) via python-docx
- Plain text / markdown as UTF-8

Extraction works on an in-memory buffer only; reading and deleting the
uploaded file is the caller's job.
"""
import asyncio
import io
import zipfile
from pathlib import PurePath
from typing import Callable, Dict
import structlog
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from navi import config
from navi.errors import DecodeError, EmptyContentError, UnsupportedTypeError

logger = structlog.get_logger()

PDF = "pdf"
DOCX = "docx"
TEXT = "text"

MIME_TYPES = {
    "application/pdf": PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DOCX,
    # Accepted at upload like the .docx type; binary .doc content fails to decode
    "application/msword": DOCX,
    "text/plain": TEXT,
    "text/markdown": TEXT,
}

EXTENSIONS = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".doc": DOCX,
    ".txt": TEXT,
    ".md": TEXT,
}

# Extension given to stored uploads whose name does not match their MIME type
KIND_EXTENSIONS = {
    PDF: ".pdf",
    DOCX: ".docx",
    TEXT: ".txt",
}


def resolve_kind(declared_type: str) -> str:
    """Map a MIME type, extension or filename to an extractor kind.

    Raises:
        UnsupportedTypeError: If nothing matches
    """
    if not declared_type:
        raise UnsupportedTypeError("Document type is required")

    declared = declared_type.strip().lower()
    if declared in MIME_TYPES:
        return MIME_TYPES[declared]

    suffix = declared if declared.startswith(".") and "/" not in declared else PurePath(declared).suffix
    if suffix in EXTENSIONS:
        return EXTENSIONS[suffix]

    raise UnsupportedTypeError(
        f"Unsupported file type: {declared_type}. Only PDF and Word documents are allowed."
    )


def _extract_pdf(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError, KeyError, TypeError) as e:
        raise DecodeError(f"PDF extraction failed: {e}") from e
    return "\n".join(pages)


def _extract_docx(data: bytes) -> str:
    try:
        document = DocxDocument(io.BytesIO(data))
    except (zipfile.BadZipFile, PackageNotFoundError, KeyError, ValueError) as e:
        raise DecodeError(f"Failed to extract text from DOCX: {e}") from e

    paragraphs = [paragraph.text for paragraph in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            paragraphs.append("\t".join(cell.text for cell in row.cells))
    return "\n".join(paragraphs)


def _extract_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Text is not valid UTF-8: {e}") from e


EXTRACTORS: Dict[str, Callable[[bytes], str]] = {
    PDF: _extract_pdf,
    DOCX: _extract_docx,
    TEXT: _extract_text,
}


def extract(data: bytes, declared_type: str) -> str:
    """Extract plain text from document bytes.

    Args:
        data: Raw file content
        declared_type: MIME type, extension (".pdf") or filename

    Returns:
        Extracted text (never blank)

    Raises:
        UnsupportedTypeError: If the type has no extractor
        DecodeError: If the bytes cannot be parsed as that type
        EmptyContentError: If no text could be extracted
    """
    kind = resolve_kind(declared_type)

    if not data:
        raise EmptyContentError("Document is empty")

    text = EXTRACTORS[kind](data)

    if not text or not text.strip():
        logger.warning("extraction_empty", kind=kind, size=len(data))
        raise EmptyContentError(f"No text content found in {kind.upper()} document")

    logger.info(
        "text_extracted",
        kind=kind,
        size=len(data),
        text_length=len(text),
    )

    return text


async def extract_async(data: bytes, declared_type: str, timeout: float = None) -> str:
    """Run extract() in a worker thread with a timeout.

    Raises:
        DecodeError: If extraction takes longer than the timeout
    """
    timeout = timeout or config.PDF_TIMEOUT
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(extract, data, declared_type),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        logger.error("extraction_timeout", declared_type=declared_type, timeout=timeout)
        raise DecodeError(f"Document processing timeout after {timeout:g} seconds") from e
