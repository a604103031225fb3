"""
RAG Pipeline

LangGraph workflow answering student questions from the course knowledge base.

Flow:
    START -> enhance_query -> retrieve -> route -> (generate | generate_without_context) -> END

Retrieval uses the Chroma vector store and falls back to keyword search over
the in-memory knowledge base when the vector store is unavailable. When no
course context is found at all, the model answers from general knowledge
with the fallback prompt.
"""

import os
import re
import time
import logging
from typing import Any, Dict, List, Optional, Tuple, TypedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone

from langgraph.graph import StateGraph, END

from .chunking import DocumentChunk
from .knowledge_base import KnowledgeBase
from .language import is_simple_greeting, greeting_language, pick_greeting, resolve_language
from ..llm.model_service import ModelConfig, ModelService
from ..prompt_engineering.templates import PromptTemplateManager
from ..utils.cache import MemoryCache, make_cache_key
from ..utils.logger import PerformanceLogger, QueryLogger
from ..utils.token_counter import TokenCounter, TokenUsage, estimate_tokens

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 150


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class DocumentSource:
    """Citation for a retrieved chunk"""
    title: str
    section: str
    type: str
    course_number: Optional[str]
    module_number: Optional[str]
    excerpt: str
    relevance_score: float

    @classmethod
    def from_chunk(cls, chunk: DocumentChunk, score: float) -> "DocumentSource":
        return cls(
            title=chunk.metadata.get("title", ""),
            section=chunk.section,
            type=chunk.metadata.get("type", ""),
            course_number=chunk.metadata.get("course_number"),
            module_number=chunk.metadata.get("module_number"),
            excerpt=make_excerpt(chunk.content),
            relevance_score=round(score, 2),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "section": self.section,
            "type": self.type,
            "course_number": self.course_number,
            "module_number": self.module_number,
            "excerpt": self.excerpt,
            "relevance_score": self.relevance_score,
        }


@dataclass
class RAGAnswer:
    """Answer returned to the chat endpoint"""
    content: str
    sources: List[DocumentSource]
    processing_time: int
    token_usage: TokenUsage
    language: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    provider: str = ""
    model: str = ""
    retrieval_method: str = "none"
    cached: bool = False


def make_excerpt(content: str, limit: int = EXCERPT_LENGTH) -> str:
    """Shorten content to limit chars, cutting at a word boundary past 80%"""
    text = " ".join(content.split())
    if len(text) <= limit:
        return text

    cut = text[:limit]
    last_space = cut.rfind(" ")
    if last_space > limit * 0.8:
        cut = cut[:last_space]
    return cut + "..."


# =============================================================================
# STATE
# =============================================================================

class RAGState(TypedDict, total=False):
    """State carried through the RAG graph"""
    query: str
    language: str
    model_config: ModelConfig
    history: List[Dict[str, str]]
    enhanced_query: str
    matches: List[Tuple[DocumentChunk, float]]
    retrieval_method: str
    answer: str
    usage: Dict[str, int]
    provider: str
    model: str


# =============================================================================
# PIPELINE
# =============================================================================

class RAGPipeline:
    """
    Main class for answering questions with LangGraph.

    Usage:
        pipeline = RAGPipeline(knowledge_base=kb, vector_store=store, model_service=service)
        pipeline.initialize()

        answer = pipeline.query("Wie markiere ich den Fadenlauf?", language="auto")
        print(answer.content, answer.token_usage.total_tokens)
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        model_service: ModelService,
        vector_store: Optional[Any] = None,
        prompts: Optional[PromptTemplateManager] = None,
        cache: Optional[MemoryCache] = None,
        token_counter: Optional[TokenCounter] = None,
        query_logger: Optional[QueryLogger] = None,
        top_k: int = 8,
        min_relevance: float = 0.3,
        history_messages: int = 6,
        query_expansions: Optional[Dict[str, str]] = None,
        embedding_price_per_1k: float = 0.00002
    ):
        self.knowledge_base = knowledge_base
        self.model_service = model_service
        self.vector_store = vector_store
        self.prompts = prompts or PromptTemplateManager()
        self.cache = cache
        self.token_counter = token_counter or TokenCounter(
            pricing=model_service.token_counter.pricing,
            embedding_price_per_1k=embedding_price_per_1k
        )
        self.query_logger = query_logger
        self.top_k = top_k
        self.min_relevance = min_relevance
        self.history_messages = history_messages
        self.query_expansions = query_expansions or {}
        self.perf = PerformanceLogger(__name__)

        self.graph = self._build_graph()
        self.app = self.graph.compile()

        self._setup_tracing()

    def _setup_tracing(self):
        """Setup LangSmith tracing"""
        from config import settings

        if settings.langsmith.enabled and settings.langsmith.api_key:
            os.environ["LANGCHAIN_TRACING_V2"] = "true"
            os.environ["LANGCHAIN_API_KEY"] = settings.langsmith.api_key
            os.environ["LANGCHAIN_PROJECT"] = settings.langsmith.project_name

            logger.info(f"LangSmith tracing enabled for project: {settings.langsmith.project_name}")

    def initialize(self) -> Dict[str, int]:
        """Load the knowledge base and reindex the collection when its size disagrees"""
        chunk_count = self.knowledge_base.load_documents()
        vector_count = 0

        if self.vector_store is not None:
            vector_count = self.vector_store.count()
            if chunk_count and vector_count != chunk_count:
                logger.info(
                    f"Vector collection holds {vector_count} vectors for {chunk_count} chunks, reindexing"
                )
                self.vector_store.rebuild(self.knowledge_base.get_all_chunks())
                vector_count = self.vector_store.count()

        return {"chunks": chunk_count, "vectors": vector_count}

    # -------------------------------------------------------------------------
    # Graph nodes
    # -------------------------------------------------------------------------

    def _enhance_query(self, state: RAGState) -> RAGState:
        """Expand course abbreviations so they match transcript wording"""
        enhanced = state["query"].lower()
        for abbr, expansion in self.query_expansions.items():
            pattern = re.compile(rf"\b{re.escape(abbr)}\b", re.IGNORECASE)
            if pattern.search(enhanced):
                enhanced = pattern.sub(lambda m: f"{m.group(0)} {expansion}", enhanced)
        return {**state, "enhanced_query": enhanced}

    def _retrieve(self, state: RAGState) -> RAGState:
        """Vector search with keyword fallback"""
        with self.perf.track("retrieval"):
            if self.vector_store is not None:
                try:
                    matches = self.vector_store.search(
                        state["enhanced_query"],
                        limit=self.top_k,
                        min_relevance=self.min_relevance
                    )
                    return {**state, "matches": matches, "retrieval_method": "vector"}
                except Exception as e:
                    logger.warning(f"Vector search failed, falling back to keyword search: {e}")

            chunks = self.knowledge_base.search_chunks(state["query"], limit=self.top_k)
            return {
                **state,
                "matches": [(chunk, 1.0) for chunk in chunks],
                "retrieval_method": "keyword",
            }

    def _history_messages(self, state: RAGState) -> List[Dict[str, str]]:
        history = state.get("history") or []
        recent = history[-self.history_messages:] if self.history_messages else []
        return [
            {"role": m["role"], "content": m["content"]}
            for m in recent
            if m.get("role") in ("user", "assistant") and m.get("content")
        ]

    def _generate(self, state: RAGState) -> RAGState:
        """Answer with the retrieved course context"""
        language = state["language"]
        context = self.prompts.format_context([chunk for chunk, _ in state["matches"]])

        messages = [{"role": "system", "content": self.prompts.system_prompt(language)}]
        messages.extend(self._history_messages(state))
        messages.append({
            "role": "user",
            "content": self.prompts.user_prompt(language, query=state["query"], context=context),
        })

        with self.perf.track("generation"):
            response = self.model_service.generate(messages, state["model_config"])

        return {
            **state,
            "answer": response.content,
            "usage": response.usage,
            "provider": response.provider,
            "model": response.model,
        }

    def _generate_without_context(self, state: RAGState) -> RAGState:
        """Answer from general knowledge when no course context was found"""
        messages = self._history_messages(state)
        messages.append({
            "role": "user",
            "content": self.prompts.fallback_prompt(state["language"], query=state["query"]),
        })

        with self.perf.track("generation"):
            response = self.model_service.generate(messages, state["model_config"])

        return {
            **state,
            "answer": response.content,
            "usage": response.usage,
            "provider": response.provider,
            "model": response.model,
            "retrieval_method": "none",
        }

    @staticmethod
    def _route_after_retrieval(state: RAGState) -> str:
        return "generate" if state.get("matches") else "generate_without_context"

    def _build_graph(self) -> StateGraph:
        workflow = StateGraph(RAGState)

        workflow.add_node("enhance_query", self._enhance_query)
        workflow.add_node("retrieve", self._retrieve)
        workflow.add_node("generate", self._generate)
        workflow.add_node("generate_without_context", self._generate_without_context)

        workflow.set_entry_point("enhance_query")
        workflow.add_edge("enhance_query", "retrieve")
        workflow.add_conditional_edges(
            "retrieve",
            self._route_after_retrieval,
            {
                "generate": "generate",
                "generate_without_context": "generate_without_context",
            }
        )
        workflow.add_edge("generate", END)
        workflow.add_edge("generate_without_context", END)

        return workflow

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def greet(self, message: str, language: str) -> RAGAnswer:
        language = greeting_language(message, language)
        return RAGAnswer(
            content=pick_greeting(self.prompts.greetings(language)),
            sources=[],
            processing_time=5,
            token_usage=TokenUsage(),
            language=language,
            retrieval_method="greeting",
        )

    def query(
        self,
        message: str,
        language: str = "auto",
        model_config: Optional[ModelConfig] = None,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        session_id: Optional[str] = None
    ) -> RAGAnswer:
        """
        Answer a student question.

        Args:
            message: Validated user message
            language: 'en', 'de' or 'auto'
            model_config: Provider/model selection; defaults from settings
            conversation_history: Prior turns as {role, content} dicts
            session_id: Conversation session, recorded in the query log

        Raises:
            ProviderError / ConfigurationError from the model service
        """
        start = time.time()

        if is_simple_greeting(message):
            return self.greet(message, language)

        language = resolve_language(language, message)
        model_config = self.model_service.resolve_config(model_config)

        cache_key = None
        if self.cache is not None and not conversation_history:
            cache_key = make_cache_key(
                query=message.strip().lower(),
                language=language,
                provider=model_config.provider,
                model=model_config.model,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Serving cached answer")
                return RAGAnswer(
                    content=cached.content,
                    sources=cached.sources,
                    processing_time=int((time.time() - start) * 1000),
                    token_usage=cached.token_usage,
                    language=cached.language,
                    provider=cached.provider,
                    model=cached.model,
                    retrieval_method=cached.retrieval_method,
                    cached=True,
                )

        final_state = self.app.invoke({
            "query": message,
            "language": language,
            "model_config": model_config,
            "history": conversation_history or [],
        })

        matches = final_state.get("matches") or []
        model = final_state.get("model") or model_config.model
        embedding_tokens = estimate_tokens(final_state.get("enhanced_query", message))
        token_usage = self.token_counter.build_usage(
            final_state.get("usage"), model, embedding_tokens
        )

        answer = RAGAnswer(
            content=final_state.get("answer", ""),
            sources=[DocumentSource.from_chunk(chunk, score) for chunk, score in matches],
            processing_time=int((time.time() - start) * 1000),
            token_usage=token_usage,
            language=language,
            provider=final_state.get("provider") or model_config.provider,
            model=model,
            retrieval_method=final_state.get("retrieval_method", "none"),
        )

        if cache_key is not None:
            self.cache.set(cache_key, answer)

        if self.query_logger is not None:
            self.query_logger.log_query(
                query=message,
                language=language,
                response_time_ms=answer.processing_time,
                token_usage=token_usage.to_dict(),
                relevance_scores=[s.relevance_score for s in answer.sources],
                response_length=len(answer.content),
                provider=answer.provider,
                model=answer.model,
                session_id=session_id,
            )

        logger.info(
            f"Answered in {answer.processing_time}ms with {len(answer.sources)} sources "
            f"({answer.retrieval_method}, {token_usage.total_tokens} tokens)"
        )
        return answer

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def get_system_status(self) -> Dict[str, Any]:
        status = {
            "knowledge_base": {
                "loaded": self.knowledge_base.is_loaded,
                "chunks": len(self.knowledge_base),
            },
            "vector_store": (
                self.vector_store.health_check() if self.vector_store is not None
                else {"healthy": False, "error": "not configured"}
            ),
            "cache": self.cache.get_stats() if self.cache is not None else None,
            "performance": self.perf.get_all_stats(),
        }
        return status


def create_rag_pipeline(
    knowledge_base: Optional[KnowledgeBase] = None,
    model_service: Optional[ModelService] = None,
    vector_store: Optional[Any] = None
) -> RAGPipeline:
    """Build a pipeline from settings; runs without vectors if Chroma is unreachable"""
    from config import settings
    from ..llm.model_service import get_model_service
    from ..utils.logger import get_query_logger

    rt = settings.retrieval

    if knowledge_base is None:
        knowledge_base = KnowledgeBase(
            courses_directory=rt.courses_directory,
            state_file=rt.state_file,
            chunk_size=rt.chunk_size,
            chunk_overlap=rt.chunk_overlap,
        )

    if vector_store is None:
        from .vector_store import CourseVectorStore
        try:
            vector_store = CourseVectorStore()
        except Exception as e:
            logger.warning(f"Vector store unavailable, using keyword search only: {e}")

    cache = None
    if settings.cache.enabled:
        cache = MemoryCache(max_size=settings.cache.max_size, default_ttl=settings.cache.ttl_seconds)

    return RAGPipeline(
        knowledge_base=knowledge_base,
        model_service=model_service or get_model_service(),
        vector_store=vector_store,
        cache=cache,
        query_logger=get_query_logger(),
        top_k=rt.top_k,
        min_relevance=rt.min_relevance,
        history_messages=rt.history_messages,
        query_expansions=rt.query_expansions,
        embedding_price_per_1k=settings.embeddings.price_per_1k,
    )
