"""
ELLU Studios assistant settings.

Three YAML files live next to this module:

- ``model_config.yaml``: providers, model catalog and pricing, Chroma,
  retrieval, cache, knowledge updates, conversations, rate limits
- ``prompt_templates.yaml``: system prompts, greetings, query templates
- ``logging_config.yaml``: ``logging.config.dictConfig`` schema

String values may reference the environment as ``${VAR}`` or
``${VAR:-default}``. A ``.env`` file in the project root is loaded first,
so local keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY,
CHROMADB_*) can stay out of the YAML.

Usage:
    from config import settings

    settings.llm.default_provider
    settings.retrieval.min_relevance
"""

import os
import re
import yaml
import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

CONFIG_DIR = Path(__file__).parent
PROJECT_ROOT = CONFIG_DIR.parent

if (PROJECT_ROOT / ".env").exists():
    load_dotenv(PROJECT_ROOT / ".env")

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def expand_env(value: Any) -> Any:
    """Replace ${VAR} / ${VAR:-default} references inside nested YAML data"""
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    if isinstance(value, str) and "${" in value:
        return _ENV_REF.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), value)
    return value


def load_yaml(filename: str) -> Dict[str, Any]:
    path = CONFIG_DIR / filename
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return expand_env(yaml.safe_load(f) or {})


@dataclass
class LLMConfig:
    default_provider: str = "openai"
    default_model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_tokens: int = 2000
    # per-provider client options (model, timeout, base_url)
    providers: Dict[str, Dict] = field(default_factory=dict)


@dataclass
class EmbeddingsConfig:
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    batch_size: int = 100
    price_per_1k: float = 0.00002


@dataclass
class VectorStoreConfig:
    """Chroma connection: Cloud when tenant + CHROMADB_API_KEY, server when url, else local"""
    collection_name: str = "fashion_design_knowledge"
    persist_directory: str = "./data/embeddings/chroma_db"
    distance_metric: str = "cosine"
    url: str = ""
    tenant: str = ""
    database: str = "ellu-studios-chat-bot"


@dataclass
class RetrievalConfig:
    top_k: int = 8
    min_relevance: float = 0.3
    history_messages: int = 6
    query_expansions: Dict[str, str] = field(default_factory=dict)
    courses_directory: str = "./data/courses"
    state_file: str = "./data/knowledge/chunks.json"
    chunk_size: int = 1000
    chunk_overlap: int = 200


@dataclass
class CacheConfig:
    enabled: bool = True
    ttl_seconds: int = 1800
    max_size: int = 100


@dataclass
class KnowledgeUpdateConfig:
    max_backups: int = 5
    backup_ttl_hours: int = 24
    max_file_size: int = 10 * 1024 * 1024
    allowed_extensions: List[str] = field(default_factory=lambda: [".md", ".txt", ".json"])


@dataclass
class ConversationConfig:
    storage_file: str = "./data/conversations/sessions.json"
    max_sessions: int = 10


@dataclass
class LangSmithConfig:
    enabled: bool = False
    project_name: str = "ellu-studios-assistant"
    api_key: Optional[str] = None


class Settings:
    """Process-wide settings, parsed once from the YAML files"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._models = load_yaml("model_config.yaml")
        self.prompt_templates = load_yaml("prompt_templates.yaml")
        self._configure_logging(load_yaml("logging_config.yaml"))

        self.llm = self._parse_llm()
        self.embeddings = self._parse_embeddings()
        self.vector_store = self._parse_vector_store()
        self.retrieval = self._parse_retrieval()
        self.cache = self._parse_cache()
        self.knowledge_update = self._parse_knowledge_update()
        self.conversations = self._parse_conversations()
        self.langsmith = self._parse_langsmith()
        self.query_log_directory = self._section("query_log").get("directory", "./logs")
        self.trust_forwarded_for = str(
            self._section("server").get("trust_forwarded_for", False)
        ).lower() in ("1", "true", "yes")

        self._initialized = True

    def _section(self, name: str) -> Dict[str, Any]:
        return self._models.get(name) or {}

    def _parse_llm(self) -> LLMConfig:
        llm = self._section("llm")
        defaults = llm.get("defaults", {})
        return LLMConfig(
            default_provider=llm.get("default_provider") or "openai",
            default_model=defaults.get("model", "gpt-4o-mini"),
            temperature=float(defaults.get("temperature", 0.1)),
            max_tokens=int(defaults.get("max_tokens", 2000)),
            providers=llm.get("providers", {}),
        )

    def _parse_embeddings(self) -> EmbeddingsConfig:
        emb = self._section("embeddings")
        return EmbeddingsConfig(
            model=emb.get("model", "text-embedding-3-small"),
            dimension=emb.get("dimension", 1536),
            batch_size=emb.get("batch_size", 100),
            price_per_1k=emb.get("price_per_1k", 0.00002),
        )

    def _parse_vector_store(self) -> VectorStoreConfig:
        chroma = self._section("vector_store")
        # empty env substitutions come back as "" and fall through to defaults
        return VectorStoreConfig(
            collection_name=chroma.get("collection_name") or "fashion_design_knowledge",
            persist_directory=chroma.get("persist_directory") or "./data/embeddings/chroma_db",
            distance_metric=chroma.get("distance_metric") or "cosine",
            url=chroma.get("url") or "",
            tenant=chroma.get("tenant") or "",
            database=chroma.get("database") or "ellu-studios-chat-bot",
        )

    def _parse_retrieval(self) -> RetrievalConfig:
        search = self._section("retrieval")
        kb = self._section("knowledge_base")
        return RetrievalConfig(
            top_k=search.get("top_k", 8),
            min_relevance=search.get("min_relevance", 0.3),
            history_messages=search.get("history_messages", 6),
            query_expansions=search.get("query_expansions", {}),
            courses_directory=kb.get("courses_directory", "./data/courses"),
            state_file=kb.get("state_file", "./data/knowledge/chunks.json"),
            chunk_size=kb.get("chunk_size", 1000),
            chunk_overlap=kb.get("chunk_overlap", 200),
        )

    def _parse_cache(self) -> CacheConfig:
        return CacheConfig(**self._section("cache"))

    def _parse_knowledge_update(self) -> KnowledgeUpdateConfig:
        return KnowledgeUpdateConfig(**self._section("knowledge_update"))

    def _parse_conversations(self) -> ConversationConfig:
        return ConversationConfig(**self._section("conversations"))

    def _parse_langsmith(self) -> LangSmithConfig:
        tracing = self._section("langsmith")
        api_key = os.getenv("LANGCHAIN_API_KEY")
        return LangSmithConfig(
            enabled=bool(tracing.get("enabled")) or bool(api_key),
            project_name=tracing.get("project_name", "ellu-studios-assistant"),
            api_key=api_key,
        )

    @staticmethod
    def _configure_logging(schema: Dict[str, Any]):
        try:
            Path("./logs").mkdir(parents=True, exist_ok=True)
            logging.config.dictConfig(schema)
        except (ValueError, TypeError, AttributeError, ImportError, OSError) as e:
            logging.basicConfig(
                level=logging.INFO,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )
            logging.warning(f"Falling back to basic logging: {e}")

    def get_model_catalog(self) -> Dict[str, Dict[str, Dict]]:
        """provider -> model id -> {display_name, pricing (USD per 1K tokens)}"""
        return self._section("models")

    def get_rate_limit(self, name: str) -> Dict[str, int]:
        return self._section("rate_limits").get(name, {"requests_per_minute": 100})


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
