"""
Document chunking

Splits course documents into header-delimited sections, and splits long
sections into overlapping windows that end on a natural boundary.
"""

import re
import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, asdict

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

SECTION_SPLIT = re.compile(r"(?=^#{1,3}\s)", re.MULTILINE)
SECTION_TITLE = re.compile(r"^#{1,3}\s+(.+)$", re.MULTILINE)
MODULE_NUMBER = re.compile(r"\b(?:module|modul|lesson|lektion)\s+(\d+)", re.IGNORECASE)


@dataclass
class DocumentChunk:
    """A retrievable slice of a course document"""
    id: str
    content: str
    source: str
    section: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.metadata.get("title", "")

    @property
    def course_type(self) -> str:
        return self.metadata.get("type", "")

    def to_embedding_text(self) -> str:
        return f"Section: {self.section}\n\nContent: {self.content}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentChunk":
        return cls(
            id=data["id"],
            content=data["content"],
            source=data["source"],
            section=data.get("section", "Untitled Section"),
            metadata=dict(data.get("metadata", {})),
        )


def extract_section_title(section: str) -> str:
    match = SECTION_TITLE.search(section)
    return match.group(1).strip() if match else "Untitled Section"


def extract_module_number(section_title: str) -> Optional[str]:
    match = MODULE_NUMBER.search(section_title)
    return match.group(1) if match else None


def split_text_into_chunks(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP
) -> List[str]:
    """
    Split text into overlapping windows of at most chunk_size characters.

    A window prefers to end after a paragraph break, then after a sentence,
    then after a word, provided the break lies in the second half of the window.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    chunks = []
    start = 0
    length = len(text)

    while start < length:
        end = start + chunk_size

        if end < length:
            half = start + chunk_size * 0.5
            paragraph = text.rfind("\n\n", 0, end + 2)
            sentence = text.rfind(". ", 0, end + 2)
            word = text.rfind(" ", 0, end + 1)

            if paragraph > half:
                end = paragraph + 2
            elif sentence > half:
                end = sentence + 2
            elif word > half:
                end = word + 1

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)

        if end >= length:
            break
        start = max(end - overlap, start + 1)

    return chunks


def chunk_document(
    content: str,
    source: str,
    metadata: Dict[str, Any],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP
) -> List[DocumentChunk]:
    """
    Chunk a markdown document.

    Args:
        content: Document text
        source: Source identifier; chunk ids are ``{source}-{section}-{chunk}``
        metadata: Base metadata (title, type, course_number, ...) copied onto every chunk

    Returns:
        List of DocumentChunk in document order
    """
    chunks: List[DocumentChunk] = []
    sections = [s for s in SECTION_SPLIT.split(content) if s.strip()]

    for section_index, section in enumerate(sections):
        section_title = extract_section_title(section)
        section_content = section.strip()

        if len(section_content) <= chunk_size:
            pieces = [section_content]
        else:
            pieces = split_text_into_chunks(section_content, chunk_size, overlap)

        module_number = metadata.get("module_number") or extract_module_number(section_title)

        for chunk_index, piece in enumerate(pieces):
            chunk_metadata = {
                **metadata,
                "module_number": module_number,
                "length": len(piece),
            }
            chunks.append(DocumentChunk(
                id=f"{source}-{section_index}-{chunk_index}",
                content=piece,
                source=source,
                section=section_title,
                metadata=chunk_metadata,
            ))

    logger.debug(f"Chunked {source} into {len(chunks)} chunks from {len(sections)} sections")
    return chunks
