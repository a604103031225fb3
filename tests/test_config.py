"""Tests for YAML settings loading"""

from config import Settings, expand_env, settings


def test_expand_env_defaults_and_nesting(monkeypatch):
    monkeypatch.setenv("CHROMADB_TENANT", "ellu")
    monkeypatch.delenv("CHROMADB_URL", raising=False)

    expanded = expand_env({
        "tenant": "${CHROMADB_TENANT}",
        "url": "${CHROMADB_URL:-http://localhost:8000}",
        "paths": ["./data/${CHROMADB_TENANT}/chroma", 8],
    })

    assert expanded == {
        "tenant": "ellu",
        "url": "http://localhost:8000",
        "paths": ["./data/ellu/chroma", 8],
    }


def test_missing_variable_without_default_is_empty(monkeypatch):
    monkeypatch.delenv("LLM_PROVIDER", raising=False)

    assert expand_env("${LLM_PROVIDER}") == ""


def test_settings_is_a_singleton():
    assert Settings() is settings


def test_parsed_sections():
    assert {"openai", "anthropic", "gemini"} <= set(settings.llm.providers)
    assert settings.retrieval.query_expansions["sa"] == "seam allowance"
    assert settings.knowledge_update.max_backups == 5
    assert settings.get_rate_limit("unknown") == {"requests_per_minute": 100}
    assert "gpt-4o-mini" in settings.get_model_catalog()["openai"]
