"""
System prompt assembly.

Builds the single instruction string sent as the "system" turn: the
Legal Oracle persona, followed by the extracted text of each uploaded
document.
"""
import logging
from typing import Callable, Optional, Sequence

from django.conf import settings

from apps.docs.extractor import FileContext, extract_text_safe

logger = logging.getLogger(__name__)

# Extracted text kept per document
MAX_DOCUMENT_CHARS = 50_000


PERSONA_PROMPT = """You are Legal Oracle, an expert AI legal research assistant. You specialize in Nigerian law, corporate law, contract law, property law, and legal research.

Your capabilities include:
- Analyzing legal documents and extracting key information
- Providing accurate legal citations and references
- Explaining complex legal concepts in clear terms
- Assisting with legal research and case analysis
- Drafting legal documents and correspondence
- Answering general legal questions even without uploaded documents

Always maintain a professional, authoritative, yet accessible tone. When citing legal sources, be specific and accurate. If you're uncertain about something, acknowledge it and suggest verification methods.

You can chat and answer legal questions even when no documents are uploaded. Be helpful and provide general legal guidance when documents are not available."""

DOCUMENTS_PREAMBLE = (
    "The user has uploaded the following documents for analysis. "
    "Use this context to provide more accurate and relevant responses:\n"
)

CITATION_INSTRUCTIONS = (
    "When answering questions, reference specific documents when relevant and cite "
    "page numbers if available, using exactly this form: "
    "(Source: <document name>, Page <page number>)"
)


def get_max_document_chars() -> int:
    return getattr(settings, 'MAX_DOCUMENT_CHARS', MAX_DOCUMENT_CHARS)


def build_document_section(index: int, name: str, text: str, max_chars: int) -> str:
    """
    Format one document for the prompt.

    Format:
    --- Document 1: contract.pdf ---
    The text content here...
    """
    return f"\n--- Document {index}: {name} ---\n{text[:max_chars]}\n"


def build_system_prompt(
    files: Optional[Sequence[FileContext]] = None,
    extractor: Callable[[FileContext], str] = extract_text_safe,
) -> str:
    """
    Build the system prompt with uploaded document context.

    Each document contributes at most MAX_DOCUMENT_CHARS characters of
    extracted text. A document that cannot be read contributes a
    placeholder; the others are still included.

    Args:
        files: Uploaded documents, in the order the user added them
        extractor: Text extraction function (must not raise)

    Returns:
        The assembled system prompt
    """
    if not files:
        return PERSONA_PROMPT

    max_chars = get_max_document_chars()
    parts = [PERSONA_PROMPT, "\n\n", DOCUMENTS_PREAMBLE]

    for i, file in enumerate(files, 1):
        text = extractor(file)
        if len(text) > max_chars:
            logger.debug(f"Truncating {file.name} from {len(text)} to {max_chars} chars")
        parts.append(build_document_section(i, file.name, text, max_chars))

    parts.append(f"\n{CITATION_INSTRUCTIONS}")

    system_prompt = "".join(parts)
    logger.debug(f"System prompt length: {len(system_prompt)} chars ({len(files)} documents)")
    return system_prompt
