"""
LLM Module for the ELLU Studios assistant

Provides unified interface for multiple LLM providers:
- OpenAI (GPT-4o, GPT-4o-mini)
- Anthropic (Claude 3 / 3.5)
- Gemini (REST generateContent)

Usage:
    from ellu.llm import ModelService, ModelConfig

    service = ModelService()
    response = service.generate(
        [{"role": "user", "content": "What is ease in pattern making?"}],
        ModelConfig(provider="gemini", model="gemini-1.5-flash"),
    )
    print(response.content, response.usage)
"""

from .base import (
    BaseLLMClient,
    LLMResponse,
    LLMClientFactory,
)

from .openai_client import OpenAIClient
from .anthropic_client import AnthropicClient
from .gemini_client import GeminiClient

from .model_service import (
    ModelConfig,
    ModelService,
    PROVIDERS,
    get_model_service,
)


__all__ = [
    # Base classes
    "BaseLLMClient",
    "LLMResponse",
    "LLMClientFactory",

    # Clients
    "OpenAIClient",
    "AnthropicClient",
    "GeminiClient",

    # Service
    "ModelConfig",
    "ModelService",
    "PROVIDERS",
    "get_model_service",
]
