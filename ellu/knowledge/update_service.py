"""
Knowledge Update Service

Runtime add/update/remove of course content with in-memory backups.

Every mutation runs under a single non-blocking guard: a second mutation
arriving while one is in flight is rejected with UpdateInProgressError and
nothing is queued. A backup of the full chunk list is taken after the new
content passes validation and before anything changes, so restore_backup
returns the knowledge base to exactly its pre-mutation state.

Usage:
    service = create_update_service(knowledge_base, vector_store)
    result = service.add_content(UpdateSource.from_dict(payload))
    if result.success:
        print(result.chunks_added, result.backup_id)
"""

import copy
import time
import itertools
import hashlib
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from dataclasses import dataclass, field

from ..handlers.error_handler import (
    KnowledgeUpdateError,
    SecurityError,
    UpdateInProgressError,
    ValidationError,
)
from ..handlers.security import SecurityValidator
from ..rag.chunking import DocumentChunk, chunk_document
from ..rag.knowledge_base import KnowledgeBase
from ..utils.logger import QueryLogger
from .validator import KnowledgeValidator

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("file", "url", "text")
COURSE_TYPES = ("pattern-making", "illustrator-fashion", "draping", "construction")


# =============================================================================
# TYPES
# =============================================================================

@dataclass
class UpdateMetadata:
    title: str
    course_type: str
    course_number: str
    source: Optional[str] = None
    author: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass
class UpdateSource:
    """Content submitted for the knowledge base"""
    type: str
    content: str
    metadata: UpdateMetadata

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_title: str = "Untitled Content") -> "UpdateSource":
        """Build from an API payload (camelCase or snake_case keys), filling defaults"""
        meta = data.get("metadata") or {}
        if not isinstance(meta, dict):
            raise ValidationError("Source metadata must be a JSON object")
        return cls(
            type=data.get("type") or "text",
            content=data.get("content") or "",
            metadata=UpdateMetadata(
                title=meta.get("title") or default_title,
                course_type=meta.get("courseType") or meta.get("course_type") or "construction",
                course_number=str(meta.get("courseNumber") or meta.get("course_number") or "999"),
                source=meta.get("source"),
                author=meta.get("author"),
                last_modified=datetime.now(timezone.utc).isoformat(),
            ),
        )


@dataclass
class UpdateResult:
    success: bool
    message: str
    chunks_added: int = 0
    chunks_updated: int = 0
    chunks_removed: int = 0
    vectors_updated: int = 0
    backup_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": {
                "chunksAdded": self.chunks_added,
                "chunksUpdated": self.chunks_updated,
                "chunksRemoved": self.chunks_removed,
                "vectorsUpdated": self.vectors_updated,
                "backupId": self.backup_id,
            },
            "errors": self.errors,
            "warnings": self.warnings,
            "suggestions": self.suggestions,
            "confidence": self.confidence,
        }


@dataclass
class KnowledgeBackup:
    id: str
    timestamp: datetime
    description: str
    chunks: List[DocumentChunk]
    checksums: Dict[str, str]

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "description": self.description,
            "chunk_count": len(self.chunks),
        }


@dataclass
class SourceValidation:
    valid: bool
    content: str = ""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    confidence: Optional[float] = None


def chunk_checksum(chunk: DocumentChunk) -> str:
    return hashlib.sha256(f"{chunk.id}{chunk.content}".encode("utf-8")).hexdigest()


# =============================================================================
# SERVICE
# =============================================================================

class KnowledgeUpdateService:
    """Validated, backed-up mutations of the knowledge base and its vectors"""

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        vector_store: Optional[Any] = None,
        security_validator: Optional[SecurityValidator] = None,
        validator: Optional[KnowledgeValidator] = None,
        max_backups: int = 5,
        backup_ttl_hours: int = 24,
        max_file_size: int = 10 * 1024 * 1024,
        allowed_extensions: tuple = (".md", ".txt", ".json"),
        query_logger: Optional[QueryLogger] = None
    ):
        self.knowledge_base = knowledge_base
        self.vector_store = vector_store
        self.security = security_validator or SecurityValidator()
        self.validator = validator or KnowledgeValidator()
        self.max_backups = max_backups
        self.backup_ttl = timedelta(hours=backup_ttl_hours)
        self.max_file_size = max_file_size
        self.allowed_extensions = tuple(allowed_extensions)
        self.query_logger = query_logger

        self._update_lock = threading.Lock()
        self._backups: List[KnowledgeBackup] = []
        self._backup_seq = itertools.count(1)

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    @property
    def is_updating(self) -> bool:
        return self._update_lock.locked()

    @contextmanager
    def _update_guard(self):
        if not self._update_lock.acquire(blocking=False):
            logger.warning("Rejected knowledge update: another update is in progress")
            raise UpdateInProgressError("Update already in progress")
        try:
            yield
        finally:
            self._update_lock.release()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _resolve_content(self, source: UpdateSource) -> str:
        """Return the text behind a source"""
        if source.type == "url":
            raise KnowledgeUpdateError("URL fetching not implemented")
        if source.type == "file":
            path = self.security.validate_file_path(
                source.content,
                allowed_base_path=str(self.knowledge_base.courses_directory),
                allowed_extensions=self.allowed_extensions,
            )
            try:
                return Path(path).read_text(encoding="utf-8")
            except OSError as e:
                raise KnowledgeUpdateError(f"Could not read file {path}: {e}") from e
        return source.content

    def validate_source(self, source: UpdateSource) -> SourceValidation:
        """Check metadata, security and content quality of a source"""
        errors: List[str] = []
        meta = source.metadata

        if source.type not in SOURCE_TYPES:
            errors.append(f"Unknown source type: {source.type}")
        if not source.content or not source.content.strip():
            errors.append("Content cannot be empty")
        elif len(source.content.encode("utf-8")) > self.max_file_size:
            errors.append(
                f"Content too large: {len(source.content.encode('utf-8'))} bytes "
                f"(max: {self.max_file_size})"
            )
        if not meta.title or not meta.title.strip():
            errors.append("Title is required")
        if meta.course_type not in COURSE_TYPES:
            errors.append(f"Unknown course type: {meta.course_type}")
        if not meta.course_number:
            errors.append("Course number is required")

        if errors:
            return SourceValidation(valid=False, errors=errors)

        try:
            content = self._resolve_content(source)
            self.security.validate_content(content, max_bytes=self.max_file_size)
            self.security.validate_query(meta.title)
        except SecurityError as e:
            return SourceValidation(valid=False, errors=[f"Security validation failed: {e}"])

        report = self.validator.validate_content(
            content, meta.title, meta.course_type, meta.course_number
        )
        return SourceValidation(
            valid=report.is_valid,
            content=content,
            errors=report.errors,
            warnings=report.warnings,
            suggestions=report.suggestions,
            confidence=report.confidence,
        )

    @staticmethod
    def _failed_validation(validation: SourceValidation) -> UpdateResult:
        return UpdateResult(
            success=False,
            message=f"Validation failed: {', '.join(validation.errors)}",
            errors=validation.errors,
            warnings=validation.warnings,
            suggestions=validation.suggestions,
            confidence=validation.confidence,
        )

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def _create_backup(self, description: str) -> KnowledgeBackup:
        chunks = self.knowledge_base.get_all_chunks()
        backup = KnowledgeBackup(
            id=f"backup_{int(time.time() * 1000)}_{next(self._backup_seq)}",
            timestamp=datetime.now(timezone.utc),
            description=description,
            chunks=chunks,
            checksums={chunk.id: chunk_checksum(chunk) for chunk in chunks},
        )
        self._backups.append(backup)
        if len(self._backups) > self.max_backups:
            pruned = self._backups[:-self.max_backups]
            self._backups = self._backups[-self.max_backups:]
            logger.debug(f"Pruned {len(pruned)} old backups")

        logger.info(f"Created backup {backup.id} ({len(chunks)} chunks): {description}")
        return backup

    def _find_backup(self, backup_id: str) -> Optional[KnowledgeBackup]:
        return next((b for b in self._backups if b.id == backup_id), None)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _build_chunks(self, source: UpdateSource, content: str) -> List[DocumentChunk]:
        meta = source.metadata
        source_id = meta.source or f"update_{int(time.time() * 1000)}"
        metadata = {
            "title": meta.title,
            "type": meta.course_type,
            "course_number": meta.course_number,
            "author": meta.author,
            "last_modified": meta.last_modified,
        }
        return chunk_document(
            content,
            source=source_id,
            metadata=metadata,
            chunk_size=self.knowledge_base.chunk_size,
            overlap=self.knowledge_base.chunk_overlap,
        )

    def _duplicate_warnings(self, chunks: List[DocumentChunk]) -> List[str]:
        repeated = self.validator.find_duplicate_chunks([c.content for c in chunks])
        return [f"Potential duplicate content found in chunk {index}" for index in repeated]

    def _commit(
        self,
        chunks: List[DocumentChunk],
        upserts: List[DocumentChunk],
        deletions: List[str]
    ) -> int:
        """
        Write vectors first, then the chunk list.

        Upserts go before deletions. If either vector step fails the touched
        ids are put back to the current chunk list and the error propagates,
        so the store and the base keep the same chunk ids.
        """
        vectors = 0
        if self.vector_store is not None:
            upserted_ids = {c.id for c in upserts}
            stale = sorted(set(deletions) - upserted_ids)
            try:
                if upserts:
                    vectors = self.vector_store.add_chunks(upserts)
                if stale:
                    self.vector_store.delete_chunks(stale)
            except Exception:
                self._roll_back_vectors(upserted_ids | set(stale))
                raise
        self.knowledge_base.replace_chunks(chunks)
        return vectors

    def _roll_back_vectors(self, chunk_ids: Set[str]) -> None:
        """Return the given vector ids to what the unchanged knowledge base holds"""
        current = {c.id: c for c in self.knowledge_base.get_all_chunks()}
        restore = [current[cid] for cid in sorted(chunk_ids) if cid in current]
        drop = sorted(cid for cid in chunk_ids if cid not in current)
        try:
            if restore:
                self.vector_store.add_chunks(restore)
            if drop:
                self.vector_store.delete_chunks(drop)
            logger.warning(f"Rolled back {len(restore) + len(drop)} vectors after a failed write")
        except Exception as e:
            # the next pipeline start reindexes when counts disagree
            logger.error(f"Vector rollback failed, collection may be out of sync: {e}")

    def _log_update(self, action: str, result: UpdateResult) -> None:
        if self.query_logger is None:
            return
        self.query_logger.log_event(
            "knowledge-updates",
            "info" if result.success else "error",
            result.message,
            action=action,
            chunks_added=result.chunks_added,
            chunks_updated=result.chunks_updated,
            chunks_removed=result.chunks_removed,
            backup_id=result.backup_id,
        )

    def _add(self, source: UpdateSource, validation: SourceValidation) -> UpdateResult:
        new_chunks = self._build_chunks(source, validation.content)
        existing_ids = self.knowledge_base.get_chunk_ids()
        duplicates = [c.id for c in new_chunks if c.id in existing_ids]
        if duplicates:
            return UpdateResult(
                success=False,
                message=f"Content with source ID already exists: {new_chunks[0].source}",
                errors=[f"Duplicate chunk ids: {', '.join(duplicates[:5])}"],
            )

        backup = self._create_backup(f"Before adding: {source.metadata.title}")
        chunks = self.knowledge_base.get_all_chunks() + new_chunks
        vectors = self._commit(chunks, upserts=new_chunks, deletions=[])

        return UpdateResult(
            success=True,
            message=f"Successfully added {len(new_chunks)} chunks",
            chunks_added=len(new_chunks),
            vectors_updated=vectors,
            backup_id=backup.id,
            warnings=validation.warnings + self._duplicate_warnings(new_chunks),
            suggestions=validation.suggestions,
            confidence=validation.confidence,
        )

    def add_content(self, source: UpdateSource) -> UpdateResult:
        """Validate, back up, chunk and append new content"""
        with self._update_guard():
            try:
                validation = self.validate_source(source)
                if not validation.valid:
                    result = self._failed_validation(validation)
                else:
                    result = self._add(source, validation)
            except Exception as e:
                logger.error(f"Failed to add content: {e}", exc_info=True)
                result = UpdateResult(success=False, message=f"Failed to add content: {e}", errors=[str(e)])

        self._log_update("add", result)
        return result

    def update_content(self, source_id: str, source: UpdateSource) -> UpdateResult:
        """
        Replace the chunks of an existing source.

        Matches chunks by source id or by title; with no match the content is
        added instead.
        """
        with self._update_guard():
            try:
                validation = self.validate_source(source)
                if not validation.valid:
                    result = self._failed_validation(validation)
                else:
                    result = self._update(source_id, source, validation)
            except Exception as e:
                logger.error(f"Failed to update content: {e}", exc_info=True)
                result = UpdateResult(success=False, message=f"Failed to update content: {e}", errors=[str(e)])

        self._log_update("update", result)
        return result

    def _update(self, source_id: str, source: UpdateSource, validation: SourceValidation) -> UpdateResult:
        current = self.knowledge_base.get_all_chunks()
        matched = [
            c for c in current
            if c.source == source_id or c.title == source.metadata.title
        ]
        if not matched:
            logger.info(f"No content matches {source_id}; adding as new content")
            return self._add(source, validation)

        if not source.metadata.source:
            source.metadata.source = source_id

        matched_ids = {c.id for c in matched}
        new_chunks = self._build_chunks(source, validation.content)
        kept_ids = {c.id for c in current} - matched_ids
        collisions = [c.id for c in new_chunks if c.id in kept_ids]
        if collisions:
            return UpdateResult(
                success=False,
                message=f"Content with source ID already exists: {new_chunks[0].source}",
                errors=[f"Duplicate chunk ids: {', '.join(collisions[:5])}"],
            )

        backup = self._create_backup(f"Before updating: {source_id}")
        chunks = [c for c in current if c.id not in matched_ids] + new_chunks
        vectors = self._commit(chunks, upserts=new_chunks, deletions=list(matched_ids))

        return UpdateResult(
            success=True,
            message=f"Successfully updated content: {len(matched)} chunks replaced by {len(new_chunks)}",
            chunks_updated=len(new_chunks),
            chunks_removed=len(matched),
            vectors_updated=vectors,
            backup_id=backup.id,
            warnings=validation.warnings + self._duplicate_warnings(new_chunks),
            suggestions=validation.suggestions,
            confidence=validation.confidence,
        )

    def remove_content(self, source_id: str) -> UpdateResult:
        """Remove every chunk whose source equals source_id or whose title contains it"""
        with self._update_guard():
            try:
                current = self.knowledge_base.get_all_chunks()
                matched_ids = {
                    c.id for c in current
                    if c.source == source_id or source_id in c.title
                }
                if not matched_ids:
                    result = UpdateResult(
                        success=False,
                        message=f"No content found matching source ID: {source_id}",
                        errors=[f"No content found matching source ID: {source_id}"],
                    )
                else:
                    backup = self._create_backup(f"Before removing: {source_id}")
                    chunks = [c for c in current if c.id not in matched_ids]
                    self._commit(chunks, upserts=[], deletions=sorted(matched_ids))
                    result = UpdateResult(
                        success=True,
                        message=f"Successfully removed {len(matched_ids)} chunks",
                        chunks_removed=len(matched_ids),
                        vectors_updated=len(matched_ids) if self.vector_store is not None else 0,
                        backup_id=backup.id,
                    )
            except Exception as e:
                logger.error(f"Failed to remove content: {e}", exc_info=True)
                result = UpdateResult(success=False, message=f"Failed to remove content: {e}", errors=[str(e)])

        self._log_update("remove", result)
        return result

    def restore_backup(self, backup_id: str) -> UpdateResult:
        """Restore the exact chunk list captured by a backup and rebuild the vectors"""
        with self._update_guard():
            backup = self._find_backup(backup_id)
            if backup is None:
                result = UpdateResult(
                    success=False,
                    message=f"Backup not found: {backup_id}",
                    errors=[f"Backup not found: {backup_id}"],
                )
            elif datetime.now(timezone.utc) - backup.timestamp > self.backup_ttl:
                result = UpdateResult(
                    success=False,
                    message=f"Backup expired: {backup_id}",
                    errors=[f"Backup is older than {self.backup_ttl}"],
                )
            else:
                result = self._restore(backup)

        self._log_update("restore", result)
        return result

    def _restore(self, backup: KnowledgeBackup) -> UpdateResult:
        corrupted = [
            c.id for c in backup.chunks
            if backup.checksums.get(c.id) != chunk_checksum(c)
        ]
        if corrupted:
            logger.error(f"Backup {backup.id} failed integrity check: {len(corrupted)} chunks")
            return UpdateResult(
                success=False,
                message=f"Backup integrity check failed: {backup.id}",
                errors=[f"Checksum mismatch for chunk {cid}" for cid in corrupted[:5]],
            )

        chunks = copy.deepcopy(backup.chunks)
        try:
            vectors = 0
            if self.vector_store is not None:
                try:
                    vectors = self.vector_store.rebuild(chunks)
                except Exception:
                    touched = {c.id for c in chunks} | self.knowledge_base.get_chunk_ids()
                    self._roll_back_vectors(touched)
                    raise
            self.knowledge_base.replace_chunks(chunks)
        except Exception as e:
            logger.error(f"Failed to restore backup {backup.id}: {e}", exc_info=True)
            return UpdateResult(success=False, message=f"Failed to restore backup: {e}", errors=[str(e)])

        logger.info(f"Restored backup {backup.id} ({len(chunks)} chunks)")
        return UpdateResult(
            success=True,
            message=f"Successfully restored backup: {backup.id}",
            chunks_added=len(chunks),
            vectors_updated=vectors,
            backup_id=backup.id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        last = self._backups[-1] if self._backups else None
        return {
            "is_updating": self.is_updating,
            "last_backup": last.summary() if last else None,
            "backup_count": len(self._backups),
            "total_chunks": len(self.knowledge_base),
        }

    def get_backups(self) -> List[Dict[str, Any]]:
        return [backup.summary() for backup in reversed(self._backups)]

    def get_statistics(self) -> Dict[str, Any]:
        kb_stats = self.knowledge_base.get_statistics()
        return {
            "total_chunks": kb_stats["total_chunks"],
            "vector_count": self.vector_store.count() if self.vector_store is not None else 0,
            "backup_count": len(self._backups),
            "course_types": kb_stats["course_types"],
        }


def create_update_service(
    knowledge_base: KnowledgeBase,
    vector_store: Optional[Any] = None
) -> KnowledgeUpdateService:
    """Build an update service with limits from settings"""
    from config import settings
    from ..handlers.security import get_security_validator
    from ..utils.logger import get_query_logger

    ku = settings.knowledge_update
    return KnowledgeUpdateService(
        knowledge_base,
        vector_store=vector_store,
        security_validator=get_security_validator(),
        max_backups=ku.max_backups,
        backup_ttl_hours=ku.backup_ttl_hours,
        max_file_size=ku.max_file_size,
        allowed_extensions=tuple(ku.allowed_extensions),
        query_logger=get_query_logger(),
    )
