"""
Text Extraction
═══════════════

Converts downloaded CV bytes into plain text, selected by declared MIME type:

  application/pdf                                  → pypdf
  application/vnd.openxmlformats-...document       → python-docx (paragraphs + tables)
  application/msword                               → OOXML sniff → python-docx,
                                                     OLE2 binary → antiword CLI

Failure contract:
  UnsupportedFormat  content type not in the configured allow-list
  ExtractionFailed   decoder could not read the bytes (corrupt, encrypted, empty)

The extractor is stateless and does no retries; the worker decides what a
failure means for the job.
"""

from __future__ import annotations

import io
import logging
import shutil
import subprocess
import time
import zipfile
from typing import Callable, Iterable

from cv_worker.core.errors import ExtractionFailed, UnsupportedFormat

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE  = "application/pdf"
DOC_CONTENT_TYPE  = "application/msword"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

DEFAULT_ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset(
    {PDF_CONTENT_TYPE, DOC_CONTENT_TYPE, DOCX_CONTENT_TYPE}
)

_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_ZIP_MAGIC  = b"PK\x03\x04"

ANTIWORD_TIMEOUT_SECONDS = 30


def normalize_content_type(content_type: str | None) -> str:
    """'Application/PDF; charset=binary' → 'application/pdf'."""
    return (content_type or "").split(";", 1)[0].strip().lower()


# ---------------------------------------------------------------------------
# Format decoders
# ---------------------------------------------------------------------------

def _extract_pdf(data: bytes) -> str:
    """Extract text from PDF bytes using pypdf."""
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted:
            # Owner-password-only PDFs open with an empty user password
            try:
                unlocked = reader.decrypt("")
            except Exception as exc:
                raise ExtractionFailed(f"PDF is encrypted and cannot be read: {exc}") from exc
            if not unlocked:
                raise ExtractionFailed("PDF is password-protected")
        pages = [page.extract_text() or "" for page in reader.pages]
    except ExtractionFailed:
        raise
    except (PdfReadError, ValueError, KeyError, TypeError) as exc:
        raise ExtractionFailed(f"Could not parse PDF: {exc}") from exc

    return "\n\n".join(p for p in pages if p.strip())


def _iter_docx_text(document) -> Iterable[str]:
    for para in document.paragraphs:
        yield para.text
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            # Merged cells repeat the same text across the span
            yield " | ".join(dict.fromkeys(c for c in cells if c))


def _extract_docx(data: bytes) -> str:
    """Extract text from DOCX bytes using python-docx."""
    import docx
    from docx.opc.exceptions import PackageNotFoundError

    try:
        document = docx.Document(io.BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise ExtractionFailed(f"Could not parse DOCX: {exc}") from exc

    return "\n".join(line for line in _iter_docx_text(document) if line.strip())


def _extract_doc(data: bytes) -> str:
    """
    Legacy Word. Uploads labelled application/msword are often OOXML files
    saved with a .doc name; those go through python-docx. Real OLE2 binaries
    need the antiword CLI.
    """
    if data.startswith(_ZIP_MAGIC):
        return _extract_docx(data)

    if not data.startswith(_OLE2_MAGIC):
        raise ExtractionFailed("File is not a Word document (unrecognised signature)")

    antiword = shutil.which("antiword")
    if antiword is None:
        raise ExtractionFailed("Legacy .doc extraction requires the 'antiword' tool")

    try:
        proc = subprocess.run(
            [antiword, "-w", "0", "-"],
            input=data,
            capture_output=True,
            timeout=ANTIWORD_TIMEOUT_SECONDS,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise ExtractionFailed(f"antiword timed out after {ANTIWORD_TIMEOUT_SECONDS}s") from exc

    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise ExtractionFailed(f"Could not parse DOC: {stderr or f'antiword exit {proc.returncode}'}")

    return proc.stdout.decode("utf-8", errors="replace")


_DECODERS: dict[str, Callable[[bytes], str]] = {
    PDF_CONTENT_TYPE:  _extract_pdf,
    DOCX_CONTENT_TYPE: _extract_docx,
    DOC_CONTENT_TYPE:  _extract_doc,
}


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """
    Stateless extractor — pick the decoder for a content type and run it.

    Usage:
        extractor = TextExtractor()
        text = extractor.extract(file_bytes, "application/pdf")
    """

    def __init__(self, allowed_content_types: Iterable[str] | None = None) -> None:
        allowed = (
            DEFAULT_ALLOWED_CONTENT_TYPES
            if allowed_content_types is None
            else frozenset(normalize_content_type(ct) for ct in allowed_content_types)
        )
        # Only types we have a decoder for can ever be allowed
        self._allowed = allowed & _DECODERS.keys()

    @property
    def allowed_content_types(self) -> frozenset[str]:
        return self._allowed

    def supports(self, content_type: str | None) -> bool:
        return normalize_content_type(content_type) in self._allowed

    def extract(self, content: bytes, content_type: str | None) -> str:
        ct = normalize_content_type(content_type)
        if ct not in self._allowed:
            raise UnsupportedFormat(content_type or "")

        if not content:
            raise ExtractionFailed("Document is empty")

        t0 = time.monotonic()
        try:
            text = _DECODERS[ct](content)
        except ExtractionFailed as exc:
            logger.warning("Text extraction failed | type=%s bytes=%d error=%s", ct, len(content), exc)
            raise
        except Exception as exc:
            logger.warning("Text extraction failed | type=%s bytes=%d error=%s", ct, len(content), exc)
            raise ExtractionFailed(f"Could not read document: {exc}") from exc

        text = text.strip()
        logger.info(
            "Extraction | type=%s bytes=%d chars=%d elapsed_ms=%.1f",
            ct, len(content), len(text), (time.monotonic() - t0) * 1000,
        )
        return text
