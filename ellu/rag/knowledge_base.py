"""
Knowledge Base

In-memory chunk store for the course transcripts, loaded from markdown files
and optionally persisted to a JSON state file so runtime updates survive a
restart.

Usage:
    from ellu.rag.knowledge_base import KnowledgeBase

    kb = KnowledgeBase("./data/courses", state_file="./data/knowledge/chunks.json")
    kb.load_documents()
    hits = kb.search_chunks("seam allowance", limit=5)
"""

import re
import json
import copy
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional
from collections import Counter

from .chunking import DocumentChunk, chunk_document, DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_OVERLAP

logger = logging.getLogger(__name__)

COURSE_TYPES = {
    "101": "pattern-making",
    "201": "illustrator-fashion",
    "301": "draping",
    "401": "construction",
}
COURSE_FILE = re.compile(r"^(?P<number>\d{3})[-_](?P<slug>[\w-]+)$")


class KnowledgeBase:
    """Holds the current list of DocumentChunks"""

    def __init__(
        self,
        courses_directory: str = "./data/courses",
        state_file: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    ):
        self.courses_directory = Path(courses_directory)
        self.state_file = Path(state_file) if state_file else None
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._chunks: List[DocumentChunk] = []
        self._lock = threading.RLock()
        self.is_loaded = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_documents(self, force: bool = False) -> int:
        """Load chunks from the state file if present, else from course files"""
        with self._lock:
            if self.is_loaded and not force:
                return len(self._chunks)

            if self.state_file and self.state_file.exists():
                self._chunks = self._load_state()
                logger.info(f"Loaded {len(self._chunks)} chunks from {self.state_file}")
            else:
                self._chunks = self._load_course_files()
                logger.info(
                    f"Loaded {len(self._chunks)} chunks from {self.courses_directory}"
                )

            self.is_loaded = True
            return len(self._chunks)

    def _load_state(self) -> List[DocumentChunk]:
        with open(self.state_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        return [DocumentChunk.from_dict(item) for item in data.get("chunks", [])]

    def _load_course_files(self) -> List[DocumentChunk]:
        if not self.courses_directory.exists():
            logger.warning(f"Course directory not found: {self.courses_directory}")
            return []

        chunks: List[DocumentChunk] = []
        for path in sorted(self.courses_directory.glob("*.md")):
            content = path.read_text(encoding="utf-8")
            chunks.extend(chunk_document(
                content,
                source=path.name,
                metadata=self.course_metadata(path, content),
                chunk_size=self.chunk_size,
                overlap=self.chunk_overlap,
            ))
        return chunks

    @staticmethod
    def course_metadata(path: Path, content: str) -> Dict[str, Optional[str]]:
        """Derive course metadata from a ``101-pattern-making.md`` style file"""
        match = COURSE_FILE.match(path.stem)
        course_number = match.group("number") if match else None
        course_type = COURSE_TYPES.get(course_number) or (
            match.group("slug") if match else "construction"
        )

        heading = re.search(r"^#\s+(.+)$", content, re.MULTILINE)
        title = heading.group(1).strip() if heading else path.stem.replace("-", " ").title()

        return {
            "title": title,
            "type": course_type,
            "course_number": course_number,
            "module_number": None,
        }

    def save_state(self) -> None:
        """Write the current chunk list to the state file"""
        if not self.state_file:
            return
        with self._lock:
            payload = {"chunks": [chunk.to_dict() for chunk in self._chunks]}
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        tmp_path.replace(self.state_file)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get_all_chunks(self) -> List[DocumentChunk]:
        """Return a deep copy of the current chunks"""
        with self._lock:
            return copy.deepcopy(self._chunks)

    def get_chunk_ids(self) -> set:
        with self._lock:
            return {chunk.id for chunk in self._chunks}

    def __len__(self) -> int:
        return len(self._chunks)

    def replace_chunks(self, chunks: List[DocumentChunk], persist: bool = True) -> None:
        with self._lock:
            self._chunks = copy.deepcopy(chunks)
            self.is_loaded = True
        if persist:
            self.save_state()

    def get_chunks_by_type(self, course_type: str) -> List[DocumentChunk]:
        with self._lock:
            return [c for c in self._chunks if c.course_type == course_type]

    def search_chunks(self, query: str, limit: int = 10) -> List[DocumentChunk]:
        """Plain keyword scoring over section titles and content"""
        query_lower = query.lower().strip()
        if not query_lower:
            return []

        query_words = query_lower.split()
        scored = []

        with self._lock:
            for chunk in self._chunks:
                content_lower = chunk.content.lower()
                section_lower = chunk.section.lower()

                score = 0
                if query_lower in section_lower:
                    score += 10
                score += content_lower.count(query_lower) * 2

                for word in query_words:
                    if word in content_lower:
                        score += 1
                    if word in section_lower:
                        score += 2

                if score > 0:
                    scored.append((score, chunk))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [copy.deepcopy(chunk) for _, chunk in scored[:limit]]

    def get_statistics(self) -> Dict:
        with self._lock:
            types = Counter(chunk.course_type or "unknown" for chunk in self._chunks)
            sources = {chunk.source for chunk in self._chunks}
            return {
                "total_chunks": len(self._chunks),
                "total_sources": len(sources),
                "course_types": dict(types),
            }
