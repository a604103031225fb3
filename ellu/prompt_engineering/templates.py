"""
Prompt Templates Module

Renders the RAG prompts from config/prompt_templates.yaml with LangChain
PromptTemplates.
"""

import logging
from typing import Any, Dict, List, Optional

from langchain_core.prompts import PromptTemplate

logger = logging.getLogger(__name__)


class PromptTemplateManager:
    """Manages prompt templates with caching"""

    def __init__(self, templates: Optional[Dict[str, Any]] = None):
        self._templates: Dict[str, Any] = templates if templates is not None else self._load_templates()
        self._compiled: Dict[str, PromptTemplate] = {}

    @staticmethod
    def _load_templates() -> Dict[str, Any]:
        """Load templates from YAML config"""
        from config import settings
        return settings.prompt_templates

    def get_template(self, category: str, name: str) -> Any:
        """Get a raw template entry"""
        try:
            return self._templates[category][name]
        except KeyError:
            raise KeyError(f"Template not found: {category}.{name}")

    def render(self, category: str, name: str, **variables) -> str:
        """Render a template with variables"""
        cache_key = f"{category}.{name}"
        if cache_key not in self._compiled:
            self._compiled[cache_key] = PromptTemplate.from_template(
                self.get_template(category, name)
            )
        return self._compiled[cache_key].format(**variables).strip()

    def system_prompt(self, language: str) -> str:
        return self.get_template("system_prompts", language).strip()

    def user_prompt(self, language: str, query: str, context: str) -> str:
        return self.render("user_prompts", language, query=query, context=context)

    def fallback_prompt(self, language: str, query: str) -> str:
        return self.render("fallback_prompts", language, query=query)

    def format_context(self, chunks: List[Any]) -> str:
        """Number retrieved chunks as ``[i] section: content``"""
        return "\n\n".join(
            self.render("context", "chunk", index=i, section=chunk.section, content=chunk.content)
            for i, chunk in enumerate(chunks, start=1)
        )

    def greetings(self, language: str) -> List[str]:
        return list(self.get_template("greetings", language))
