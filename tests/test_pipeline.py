"""Tests for the LangGraph RAG pipeline"""

from unittest.mock import MagicMock

import pytest

from ellu.llm import ModelConfig
from ellu.rag import LanguageDetector, RAGPipeline, is_simple_greeting, make_excerpt, resolve_language
from ellu.rag.language import greeting_language
from ellu.utils import MemoryCache, QueryLogger


class TestLanguage:

    @pytest.mark.parametrize("text,expected", [
        ("Wie kann ich den Abnäher zeichnen?", "de"),
        ("Was ist der Fadenlauf beim Nesselstoff?", "de"),
        ("How do I true a dart on the pattern?", "en"),
        ("What is seam allowance?", "en"),
        ("", "auto"),
        ("12345", "auto"),
    ])
    def test_detect(self, text, expected):
        assert LanguageDetector.detect(text) == expected

    def test_resolve(self):
        assert resolve_language("de", "How do I sew?") == "de"
        assert resolve_language("auto", "Wie nähe ich den Saum?") == "de"
        assert resolve_language("auto", "12345") == "en"

    @pytest.mark.parametrize("text", ["hi", "Hello!", "good morning", "Guten Morgen", "moin", "  hey  "])
    def test_greetings(self, text):
        assert is_simple_greeting(text)

    @pytest.mark.parametrize("text", ["hi, how do I draft a sleeve?", "hello there friend", "Hallo, was ist ein Abnäher?"])
    def test_not_greetings(self, text):
        assert not is_simple_greeting(text)

    def test_greeting_language(self):
        assert greeting_language("Guten Tag", "auto") == "de"
        assert greeting_language("hello", "auto") == "en"
        assert greeting_language("hello", "de") == "de"


class TestExcerpt:

    def test_short_text_unchanged(self):
        assert make_excerpt("Short   text\nhere") == "Short text here"

    def test_cuts_at_word_boundary(self):
        text = "word " * 60
        excerpt = make_excerpt(text)

        assert excerpt.endswith("word...")
        assert len(excerpt) <= 153


class TestQuery:

    def test_greeting_skips_provider(self, pipeline, model_service):
        answer = pipeline.query("Guten Morgen")

        assert answer.retrieval_method == "greeting"
        assert answer.language == "de"
        assert answer.sources == []
        assert answer.token_usage.total_tokens == 0
        assert answer.content in pipeline.prompts.greetings("de")
        model_service.generate.assert_not_called()

    def test_answer_with_sources_and_costs(self, pipeline, model_service):
        answer = pipeline.query("How do I true the dart before adding seam allowance?", language="en")

        assert answer.content == "Fold along the centre line and true the dart."
        assert answer.retrieval_method == "vector"
        assert answer.language == "en"
        assert answer.sources
        assert answer.sources[0].section == "Module 2: Darts and Seam Allowance"
        assert answer.sources[0].course_number == "101"
        assert answer.sources[0].module_number == "2"
        assert all(0 <= s.relevance_score <= 1 for s in answer.sources)

        usage = answer.token_usage
        assert usage.prompt_tokens == 1000
        assert usage.completion_tokens == 200
        assert usage.embedding_tokens > 0
        assert usage.cost.prompt_cost == 0.00015
        assert usage.cost.completion_cost == 0.00012

    def test_prompt_contains_context_and_history(self, pipeline, model_service):
        history = [
            {"role": "user", "content": "I am drafting a bodice."},
            {"role": "assistant", "content": "Great, start with the measurements."},
        ]

        pipeline.query("How do I true the dart?", language="en", conversation_history=history)

        messages, config = model_service.generate.call_args.args
        assert messages[0]["role"] == "system"
        assert messages[1:3] == history
        assert "[1] " in messages[-1]["content"]
        assert "How do I true the dart?" in messages[-1]["content"]
        assert config == ModelConfig()

    def test_no_context_uses_fallback_prompt(self, knowledge_base, model_service, vector_store, token_counter):
        vector_store.clear()
        pipe = RAGPipeline(knowledge_base, model_service, vector_store=vector_store, token_counter=token_counter)

        answer = pipe.query("What is the history of haute couture?", language="en")

        assert answer.sources == []
        assert answer.retrieval_method == "none"
        messages = model_service.generate.call_args.args[0]
        assert all(m["role"] != "system" for m in messages)
        assert "haute couture" in messages[-1]["content"]

    def test_vector_failure_falls_back_to_keywords(self, knowledge_base, model_service, token_counter):
        broken_store = MagicMock()
        broken_store.search.side_effect = ConnectionError("chroma unreachable")
        pipe = RAGPipeline(knowledge_base, model_service, vector_store=broken_store, token_counter=token_counter)

        answer = pipe.query("muslin grain", language="en")

        assert answer.retrieval_method == "keyword"
        assert answer.sources[0].title == "Draping Techniques"

    def test_auto_language_detects_german(self, pipeline):
        answer = pipeline.query("Wie markiere ich den Fadenlauf auf dem Nesselstoff?")

        assert answer.language == "de"

    def test_query_expansion(self, knowledge_base, model_service, vector_store, token_counter):
        pipe = RAGPipeline(
            knowledge_base, model_service, vector_store=vector_store, token_counter=token_counter,
            query_expansions={"SA": "seam allowance"},
        )

        state = pipe._enhance_query({"query": "How wide is the SA?"})

        assert state["enhanced_query"] == "how wide is the sa seam allowance?"

    def test_provider_errors_propagate(self, pipeline, model_service):
        from ellu.handlers import ProviderError

        model_service.generate.side_effect = ProviderError("openai request failed", "openai")

        with pytest.raises(ProviderError):
            pipeline.query("How do I true the dart?", language="en")


class TestCacheAndLogging:

    def test_repeated_question_served_from_cache(self, knowledge_base, model_service, vector_store, token_counter):
        pipe = RAGPipeline(
            knowledge_base, model_service, vector_store=vector_store,
            token_counter=token_counter, cache=MemoryCache(),
        )

        first = pipe.query("What is seam allowance?", language="en")
        second = pipe.query("  what is SEAM allowance?", language="en")

        assert not first.cached
        assert second.cached
        assert second.content == first.content
        assert model_service.generate.call_count == 1

        pipe.clear_cache()
        pipe.query("What is seam allowance?", language="en")
        assert model_service.generate.call_count == 2

    def test_history_bypasses_cache(self, knowledge_base, model_service, vector_store, token_counter):
        pipe = RAGPipeline(
            knowledge_base, model_service, vector_store=vector_store,
            token_counter=token_counter, cache=MemoryCache(),
        )
        history = [{"role": "user", "content": "Earlier question"}]

        pipe.query("What is ease?", language="en", conversation_history=history)
        pipe.query("What is ease?", language="en", conversation_history=history)

        assert model_service.generate.call_count == 2

    def test_queries_are_logged(self, knowledge_base, model_service, vector_store, token_counter, tmp_path):
        query_log = QueryLogger(str(tmp_path / "logs"))
        pipe = RAGPipeline(
            knowledge_base, model_service, vector_store=vector_store,
            token_counter=token_counter, query_logger=query_log, min_relevance=0.0,
        )
        pipe.initialize()

        pipe.query("What is seam allowance?", language="en", session_id="session_1")

        entry = query_log.read_entries("queries")[0]
        assert entry["session_id"] == "session_1"
        assert entry["tokens_used"]["prompt"] == 1000
        assert entry["vector_results"]["found"] > 0


class TestStatus:

    def test_initialize_seeds_empty_collection(self, knowledge_base, model_service, vector_store, token_counter):
        pipe = RAGPipeline(knowledge_base, model_service, vector_store=vector_store, token_counter=token_counter)

        counts = pipe.initialize()

        assert counts == {"chunks": 5, "vectors": 5}
        assert vector_store.count() == 5

    def test_initialize_reindexes_drifted_collection(
        self, knowledge_base, model_service, vector_store, token_counter, make_chunks
    ):
        knowledge_base.load_documents()
        chunks = knowledge_base.get_all_chunks()
        vector_store.add_chunks(chunks[1:])
        vector_store.delete_chunks([chunks[2].id])
        vector_store.add_chunks(make_chunks(source="retired-course.md")[:1])
        pipe = RAGPipeline(knowledge_base, model_service, vector_store=vector_store, token_counter=token_counter)

        counts = pipe.initialize()

        assert counts == {"chunks": 5, "vectors": 5}
        assert set(vector_store.get_ids()) == {c.id for c in chunks}

    def test_system_status(self, pipeline, chroma_client):
        status = pipeline.get_system_status()

        assert status["knowledge_base"] == {"loaded": True, "chunks": 5}
        assert status["vector_store"] == {"healthy": True, "vectors": 5}

        chroma_client.healthy = False
        assert pipeline.get_system_status()["vector_store"]["healthy"] is False
