"""
Extracción de texto plano de archivos subidos (.txt / .pdf).
"""
import logging
import os
from io import BytesIO
from typing import Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from agent.exceptions import DocumentProcessingError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"

# extensión → MIME canónico
SUPPORTED_TYPES = {
    ".txt": "text/plain",
    ".pdf": "application/pdf",
}
_MIME_TO_EXTENSION = {mime: ext for ext, mime in SUPPORTED_TYPES.items()}


def resolve_file_type(filename: str, mime_type: Optional[str] = None) -> str:
    """
    Retorna la extensión soportada (".txt" | ".pdf") según MIME o nombre.
    Lanza UnsupportedFileTypeError para cualquier otra cosa.
    """
    if mime_type in _MIME_TO_EXTENSION:
        return _MIME_TO_EXTENSION[mime_type]

    ext = os.path.splitext(filename)[1].lower()
    if ext in SUPPORTED_TYPES:
        return ext

    raise UnsupportedFileTypeError(filename, mime_type or ext or None)


def extract_text(content: bytes, file_type: str) -> str:
    if file_type == ".txt":
        return content.decode("utf-8", errors="replace")
    if file_type == ".pdf":
        return extract_pdf_text(content)
    raise UnsupportedFileTypeError(f"*{file_type}", file_type)


def extract_pdf_text(content: bytes) -> str:
    """Texto de cada página, páginas unidas por una línea en blanco."""
    try:
        reader = PdfReader(BytesIO(content), strict=False)
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, OSError) as e:
        raise DocumentProcessingError(f"Failed to extract text from PDF: {e}") from e

    logger.debug("PDF: %d pages extracted", len(pages))
    return PAGE_SEPARATOR.join(pages).strip()
