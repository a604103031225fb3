"""
RAG Module

Course knowledge base, chunking, Chroma vector store and the LangGraph
question-answering pipeline.
"""

from .chunking import DocumentChunk, chunk_document, split_text_into_chunks, extract_section_title
from .knowledge_base import KnowledgeBase, COURSE_TYPES
from .language import LanguageDetector, resolve_language, is_simple_greeting, SUPPORTED_LANGUAGES
from .pipeline import RAGPipeline, RAGAnswer, DocumentSource, make_excerpt, create_rag_pipeline

__all__ = [
    "DocumentChunk",
    "chunk_document",
    "split_text_into_chunks",
    "extract_section_title",
    "KnowledgeBase",
    "COURSE_TYPES",
    "LanguageDetector",
    "resolve_language",
    "is_simple_greeting",
    "SUPPORTED_LANGUAGES",
    "RAGPipeline",
    "RAGAnswer",
    "DocumentSource",
    "make_excerpt",
    "create_rag_pipeline",
]
