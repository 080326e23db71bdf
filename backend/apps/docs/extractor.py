"""
Text extraction from uploaded documents.

Documents arrive with the chat request as a FileContext whose content is
either plain text, raw bytes, or a browser data URL
(``data:<mime>;base64,<payload>``).

Supports:
- PDF: best-effort text extraction using PyMuPDF
- Word (.docx): paragraph and table text using python-docx
- Plain text / markdown: UTF-8 (with fallback for encoding errors)
"""
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

PDF_MIME = 'application/pdf'
DOCX_MIME = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
OCTET_STREAM_MIME = 'application/octet-stream'
TEXT_MIMES = ('text/plain', 'text/markdown', 'text/x-markdown')

NO_CONTENT_PLACEHOLDER = "[No content available]"
BINARY_PLACEHOLDER = "[Binary file - content not readable]"

DATA_URL_PATTERN = re.compile(r'^data:(?P<mime>[^;,]*)(?P<params>(;[^;,]*)*),(?P<payload>.*)$', re.DOTALL)


class ExtractionError(Exception):
    """Raised when text extraction fails."""
    pass


@dataclass(frozen=True)
class FileContext:
    """An uploaded document as sent by the client."""
    name: str
    content: Union[str, bytes]
    type: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "FileContext":
        return cls(
            name=data.get("name", ""),
            content=data.get("content", ""),
            type=data.get("type", ""),
        )


def unreadable_placeholder(name: str) -> str:
    return f"[Document unreadable: {name}]"


def parse_data_url(value: str) -> Optional[Tuple[str, bytes]]:
    """
    Split a data URL into its MIME type and decoded payload.

    Returns:
        (mime, payload bytes), or None if the value is not a data URL

    Raises:
        ExtractionError: If the base64 payload is corrupt
    """
    match = DATA_URL_PATTERN.match(value)
    if not match:
        return None

    mime = match.group('mime').lower()
    payload = match.group('payload')

    if ';base64' in match.group('params').lower():
        try:
            return mime, base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ExtractionError(f"Invalid base64 payload: {e}")

    return mime, payload.encode('utf-8')


def extract_text_from_bytes(data: bytes, name: str = "") -> str:
    """Decode plain text, falling back to lossy UTF-8."""
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError:
        logger.warning(f"UTF-8 decode failed for {name}, using errors='ignore'")
        return data.decode('utf-8', errors='ignore')


def extract_text_from_pdf(data: bytes) -> str:
    """
    Extract text from a PDF using PyMuPDF.

    This is a best-effort extraction - scanned, image-based PDFs
    may not yield text. No OCR is attempted.

    Raises:
        ExtractionError: If the PDF cannot be opened or parsed
    """
    try:
        import fitz  # PyMuPDF

        text_parts = []

        with fitz.open(stream=data, filetype="pdf") as doc:
            for page in doc:
                page_text = page.get_text()
                if page_text.strip():
                    text_parts.append(page_text)

        if not text_parts:
            logger.warning("No text extracted from PDF (may be image-based)")
            return ""

        return "\n\n".join(text_parts)

    except ImportError:
        raise ExtractionError("PyMuPDF (fitz) not installed")
    except Exception as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")


def extract_text_from_docx(data: bytes) -> str:
    """
    Extract text from a Word document using python-docx.

    Paragraphs come first; when a document holds only tables, their
    rows are flattened to ``cell | cell`` lines instead.

    Raises:
        ExtractionError: If the document cannot be parsed
    """
    try:
        from docx import Document as DocxDocument

        doc = DocxDocument(io.BytesIO(data))
        parts = [para.text for para in doc.paragraphs if para.text.strip()]

        if not parts:
            for table in doc.tables:
                for row in table.rows:
                    parts.append(" | ".join(cell.text for cell in row.cells))

        return "\n\n".join(parts)

    except ImportError:
        raise ExtractionError("python-docx not installed")
    except Exception as e:
        raise ExtractionError(f"Failed to extract text from Word document: {e}")


def _is_word(name: str, mime: str) -> bool:
    return mime in (DOCX_MIME, OCTET_STREAM_MIME) or name.endswith(('.docx', '.doc'))


def _is_pdf(name: str, mime: str) -> bool:
    return mime == PDF_MIME or name.endswith('.pdf')


def _is_text(name: str, mime: str) -> bool:
    return mime in TEXT_MIMES or name.endswith(('.txt', '.md', '.markdown'))


def extract_text(file: FileContext) -> str:
    """
    Extract human-readable text from an uploaded document.

    The decoder is chosen from the data URL MIME type first, then the
    declared type, then the file name.

    Args:
        file: The uploaded document

    Returns:
        Extracted text, or a placeholder for empty or unknown binary content

    Raises:
        ExtractionError: If a decoder fails
    """
    content = file.content
    name = file.name.lower()

    if not content:
        return NO_CONTENT_PLACEHOLDER

    if isinstance(content, str):
        parsed = parse_data_url(content)
        if parsed is None:
            # Already plain text
            return content
        mime, data = parsed
    else:
        mime, data = (file.type or "").lower(), content

    logger.info(f"Extracting text from {file.name} (mime={mime}, {len(data)} bytes)")

    if _is_pdf(name, mime):
        return extract_text_from_pdf(data)

    if _is_word(name, mime):
        return extract_text_from_docx(data)

    if _is_text(name, mime):
        return extract_text_from_bytes(data, file.name)

    return BINARY_PLACEHOLDER


def extract_text_safe(file: FileContext) -> str:
    """
    Extract text, substituting a placeholder when the document is unreadable.

    A failure here only affects this one document.
    """
    try:
        return extract_text(file)
    except ExtractionError as e:
        logger.warning(f"Extraction failed for {file.name}: {e}")
        return unreadable_placeholder(file.name)
    except Exception:
        logger.exception(f"Unexpected extraction failure for {file.name}")
        return unreadable_placeholder(file.name)
