"""
Text extraction from uploaded documents.

Supports:
- text/plain: UTF-8 text (with fallback for encoding errors)
- application/pdf: Best-effort text extraction using PyMuPDF
"""
import logging
from pathlib import Path

import fitz  # PyMuPDF

from apps.docs.models import SourceType
from apps.rag.errors import UnsupportedContentError, ValidationError

logger = logging.getLogger(__name__)


class ExtractionError(ValidationError):
    """Raised when a supported file cannot be turned into text."""
    code = 'EXTRACTION_FAILED'


def extract_text_from_txt(file_path: Path) -> str:
    """
    Extract text from a plain text file.

    Args:
        file_path: Path to the spooled upload

    Returns:
        The text content

    Raises:
        ExtractionError: If file cannot be read
    """
    try:
        try:
            return file_path.read_text(encoding='utf-8')
        except UnicodeDecodeError:
            logger.warning(f"UTF-8 decode failed for {file_path.name}, using errors='ignore'")
            return file_path.read_text(encoding='utf-8', errors='ignore')
    except OSError as e:
        raise ExtractionError(f"Failed to read text file: {e}")


def extract_text_from_pdf(file_path: Path) -> str:
    """
    Extract text from a PDF file using PyMuPDF.

    Pages without text are skipped; the remaining pages are joined with a
    blank line. Scanned, image-only PDFs yield an empty string (no OCR).

    Raises:
        ExtractionError: If the file is not a readable PDF
    """
    text_parts = []

    try:
        with fitz.open(file_path) as doc:
            for page in doc:
                page_text = page.get_text()
                if page_text.strip():
                    text_parts.append(page_text)
    except (fitz.FileDataError, RuntimeError, OSError) as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")

    if not text_parts:
        logger.warning(f"No text extracted from PDF {file_path.name} (may be image-based)")
        return ""

    return "\n\n".join(text_parts)


def extract_text(file_path: Path, content_type: str) -> str:
    """
    Extract text from a spooled upload.

    Args:
        file_path: Path to the temporary artifact
        content_type: Declared MIME type of the upload

    Returns:
        Extracted text content

    Raises:
        UnsupportedContentError: If the content type is not text/plain or PDF
        ExtractionError: If extraction fails
    """
    logger.info(f"Extracting text from {file_path.name} (content_type={content_type})")

    if content_type == SourceType.PLAIN_TEXT:
        return extract_text_from_txt(file_path)

    if content_type == SourceType.PDF:
        return extract_text_from_pdf(file_path)

    raise UnsupportedContentError(f"Unsupported file type: {content_type}")
