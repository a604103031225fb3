"""Knowledge validation and runtime knowledge-base updates."""

from .validator import KnowledgeValidator, ValidationResult, ContentAnalysis
from .update_service import (
    KnowledgeUpdateService,
    UpdateSource,
    UpdateMetadata,
    UpdateResult,
    KnowledgeBackup,
    create_update_service,
)

__all__ = [
    "KnowledgeValidator",
    "ValidationResult",
    "ContentAnalysis",
    "KnowledgeUpdateService",
    "UpdateSource",
    "UpdateMetadata",
    "UpdateResult",
    "KnowledgeBackup",
    "create_update_service",
]
