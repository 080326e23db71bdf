"""
Inline citation extraction.

Generated replies cite uploaded documents with markers of the form
``(Source: <document name>, Page <n>)``. This module strips the markers
out of the prose and returns them as structured citations.
"""
import re
from dataclasses import dataclass, field
from typing import List

# Document names cannot contain commas; pages are base-10 integers.
# Spaces before a marker go with it so "limited (Source: ...)." becomes "limited."
CITATION_PATTERN = re.compile(r"[ \t]*\(Source: ([^,]+), Page ([0-9]+)\)")


@dataclass(frozen=True)
class Citation:
    """A reference to a page of an uploaded document."""
    document: str
    page: int

    def to_dict(self) -> dict:
        return {"document": self.document, "page": self.page}


@dataclass
class ParsedResponse:
    """Reply text with citation markers removed."""
    content: str
    citations: List[Citation] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "content": self.content,
            "citations": [c.to_dict() for c in self.citations],
        }


def parse_citations(text: str) -> ParsedResponse:
    """
    Split reply text into prose and citations.

    Markers are matched left to right without overlap and removed along
    with the spaces directly before them; the text between them is kept
    as is. Malformed markers (no "Page", a non-integer page) don't match
    and stay in the content.

    Args:
        text: Assembled reply text

    Returns:
        ParsedResponse with stripped content and citations in order
    """
    citations = []
    parts = []
    last_index = 0

    for match in CITATION_PATTERN.finditer(text):
        parts.append(text[last_index:match.start()])
        citations.append(Citation(
            document=match.group(1).strip(),
            page=int(match.group(2), 10),
        ))
        last_index = match.end()

    parts.append(text[last_index:])

    return ParsedResponse(content="".join(parts).strip(), citations=citations)
