"""
Shared fixtures for the ELLU Studios assistant tests.

Chroma and the LLM providers are replaced by in-memory fakes so the suite
runs offline.
"""

import logging
from unittest.mock import MagicMock

import pytest

from ellu.llm.base import LLMResponse
from ellu.llm.model_service import ModelConfig, ModelService
from ellu.rag.chunking import chunk_document
from ellu.rag.knowledge_base import KnowledgeBase
from ellu.rag.pipeline import RAGPipeline
from ellu.rag.vector_store import CourseVectorStore
from ellu.utils.token_counter import TokenCounter


CATALOG = {
    "openai": {
        "gpt-4o-mini": {"display_name": "GPT-4o Mini", "pricing": {"prompt": 0.00015, "completion": 0.0006}},
        "gpt-4o": {"display_name": "GPT-4o", "pricing": {"prompt": 0.005, "completion": 0.015}},
    },
    "anthropic": {
        "claude-3-haiku-20240307": {
            "display_name": "Claude 3 Haiku",
            "pricing": {"prompt": 0.00025, "completion": 0.00125},
        },
    },
    "gemini": {
        "gemini-1.5-flash": {"display_name": "Gemini 1.5 Flash", "pricing": {"prompt": 0.000075, "completion": 0.0003}},
    },
}

PATTERN_COURSE = """# Pattern Making Fundamentals

## Module 1: Taking Measurements

Measure the bust, waist and hip over light clothing. Keep the tape parallel
to the floor and record every measurement before drafting the pattern.

## Module 2: Darts and Seam Allowance

A dart removes excess fabric to shape the garment around the body. Mark the
dart legs, fold along the centre line and true the dart before adding seam
allowance. Standard seam allowance is 1.5 cm on side seams and 1 cm on necklines.
"""

DRAPING_COURSE = """# Draping Techniques

## Module 1: Preparing the Muslin

Press the muslin and mark the straight grain before pinning it to the dress form.
Align the centre front grain line with the centre front of the form.
"""


# ── Chroma fakes ────────────────────────────────────────────────


class FakeCollection:
    """Keyword-overlap stand-in for a Chroma collection"""

    def __init__(self):
        self.records = {}

    def upsert(self, ids, documents, metadatas):
        for chunk_id, document, metadata in zip(ids, documents, metadatas):
            self.records[chunk_id] = (document, metadata)

    def delete(self, ids):
        for chunk_id in ids:
            self.records.pop(chunk_id, None)

    def count(self):
        return len(self.records)

    def get(self, ids=None, include=None):
        selected = [cid for cid in self.records if ids is None or cid in ids]
        return {"ids": selected}

    def query(self, query_texts, n_results, where=None, include=None):
        words = set(query_texts[0].lower().split())
        scored = []
        for chunk_id, (document, metadata) in self.records.items():
            doc_words = set(document.lower().split())
            overlap = len(words & doc_words) / len(words) if words else 0.0
            scored.append((1 - overlap, chunk_id, metadata))
        scored.sort(key=lambda item: (item[0], item[1]))
        top = scored[:n_results]
        return {
            "ids": [[chunk_id for _, chunk_id, _ in top]],
            "metadatas": [[metadata for _, _, metadata in top]],
            "distances": [[distance for distance, _, _ in top]],
        }


class FakeChromaClient:
    def __init__(self):
        self.collections = {}
        self.healthy = True

    def get_or_create_collection(self, name, embedding_function=None, metadata=None):
        return self.collections.setdefault(name, FakeCollection())

    def delete_collection(self, name):
        self.collections.pop(name, None)

    def heartbeat(self):
        if not self.healthy:
            raise ConnectionError("chroma unreachable")
        return 1


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def ellu_log(caplog):
    """caplog wired to the package logger, which does not propagate once configured"""
    package_logger = logging.getLogger("ellu")
    package_logger.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger="ellu")
    yield caplog
    package_logger.removeHandler(caplog.handler)


@pytest.fixture
def courses_dir(tmp_path):
    directory = tmp_path / "courses"
    directory.mkdir()
    (directory / "101-pattern-making.md").write_text(PATTERN_COURSE, encoding="utf-8")
    (directory / "301-draping.md").write_text(DRAPING_COURSE, encoding="utf-8")
    return directory


@pytest.fixture
def knowledge_base(courses_dir, tmp_path):
    kb = KnowledgeBase(
        courses_directory=str(courses_dir),
        state_file=str(tmp_path / "knowledge" / "chunks.json"),
        chunk_size=1000,
        chunk_overlap=200,
    )
    kb.load_documents()
    return kb


@pytest.fixture
def chroma_client():
    return FakeChromaClient()


@pytest.fixture
def vector_store(chroma_client):
    return CourseVectorStore(
        collection_name="test-courses",
        client=chroma_client,
        embedding_function="fake-embedder",
        batch_size=2,
        distance_metric="cosine",
    )


@pytest.fixture
def model_service():
    """Real ModelService with generate() replaced by a canned reply"""
    service = ModelService(
        catalog=CATALOG,
        provider_settings={"openai": {"model": "gpt-4o-mini"}},
        default_config=ModelConfig(),
    )
    service.generate = MagicMock(return_value=LLMResponse(
        content="Fold along the centre line and true the dart.",
        model="gpt-4o-mini",
        provider="openai",
        usage={"prompt_tokens": 1000, "completion_tokens": 200, "total_tokens": 1200},
    ))
    return service


@pytest.fixture
def token_counter():
    return TokenCounter(
        pricing={model: info["pricing"] for models in CATALOG.values() for model, info in models.items()},
        embedding_price_per_1k=0.00002,
    )


@pytest.fixture
def pipeline(knowledge_base, model_service, vector_store, token_counter):
    pipe = RAGPipeline(
        knowledge_base=knowledge_base,
        model_service=model_service,
        vector_store=vector_store,
        token_counter=token_counter,
        min_relevance=0.0,
    )
    pipe.initialize()
    return pipe


@pytest.fixture
def make_chunks():
    def _make(content=PATTERN_COURSE, source="101-pattern-making.md", **metadata):
        base = {"title": "Pattern Making Fundamentals", "type": "pattern-making", "course_number": "101"}
        base.update(metadata)
        return chunk_document(content, source=source, metadata=base)
    return _make
