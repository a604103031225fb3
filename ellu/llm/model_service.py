"""
Model Service

Single entry point for chat completions across OpenAI, Anthropic and Gemini.
Callers pass a normalized message list and a ModelConfig; the service picks
the provider client, and returns the normalized LLMResponse.
"""

import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, asdict

from .base import BaseLLMClient, LLMResponse, LLMClientFactory
from ..handlers.error_handler import ValidationError
from ..utils.token_counter import TokenCounter, CostBreakdown

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "anthropic", "gemini")


@dataclass
class ModelConfig:
    """Provider/model selection for one request"""
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_tokens: int = 2000

    def to_dict(self) -> Dict:
        return asdict(self)


class ModelService:
    """
    Dispatches chat requests to the configured provider.

    Provider errors surface as ProviderError; there is no retry.

    Usage:
        service = ModelService()
        reply = service.generate(
            [{"role": "system", "content": "..."}, {"role": "user", "content": "..."}],
            ModelConfig(provider="anthropic", model="claude-3-haiku-20240307"),
        )
    """

    def __init__(
        self,
        catalog: Optional[Dict[str, Dict[str, Dict]]] = None,
        provider_settings: Optional[Dict[str, Dict]] = None,
        default_config: Optional[ModelConfig] = None
    ):
        if catalog is None or provider_settings is None or default_config is None:
            from config import settings
            catalog = catalog if catalog is not None else settings.get_model_catalog()
            provider_settings = (
                provider_settings if provider_settings is not None else settings.llm.providers
            )
            default_config = default_config or ModelConfig(
                provider=settings.llm.default_provider,
                model=settings.llm.default_model,
                temperature=settings.llm.temperature,
                max_tokens=settings.llm.max_tokens,
            )

        self.catalog = catalog
        self.provider_settings = provider_settings
        self.default_config = default_config
        self.token_counter = TokenCounter(pricing=self._flatten_pricing(catalog))
        self._clients: Dict[Tuple[str, str], BaseLLMClient] = {}

    @staticmethod
    def _flatten_pricing(catalog: Dict[str, Dict[str, Dict]]) -> Dict[str, Dict[str, float]]:
        return {
            model: info.get("pricing", {})
            for models in catalog.values()
            for model, info in models.items()
        }

    def get_default_config(self) -> ModelConfig:
        return ModelConfig(**self.default_config.to_dict())

    def resolve_config(self, config: Optional[ModelConfig]) -> ModelConfig:
        """Fill gaps from the defaults and check provider and model against the catalog"""
        if config is None:
            return self.get_default_config()

        provider = (config.provider or self.default_config.provider).lower()
        if provider not in PROVIDERS:
            raise ValidationError(
                f"Unsupported provider: {config.provider}. Available: {', '.join(PROVIDERS)}"
            )

        model = config.model
        if not model:
            model = self.provider_settings.get(provider, {}).get("model") or self.default_config.model

        known = self.get_available_models(provider)
        if known and model not in known:
            raise ValidationError(
                f"Unsupported model for {provider}: {model}. Available: {', '.join(known)}"
            )

        return ModelConfig(
            provider=provider,
            model=model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    def get_client(self, config: ModelConfig) -> BaseLLMClient:
        """Get or create the cached client for a provider/model pair"""
        key = (config.provider, config.model)
        if key not in self._clients:
            options = {
                k: v for k, v in self.provider_settings.get(config.provider, {}).items()
                if k != "model"
            }
            self._clients[key] = LLMClientFactory.create(
                config.provider,
                model=config.model,
                **options
            )
        return self._clients[key]

    def generate(
        self,
        messages: List[Dict[str, str]],
        config: Optional[ModelConfig] = None
    ) -> LLMResponse:
        """Generate a reply with the selected provider"""
        config = self.resolve_config(config)
        client = self.get_client(config)

        logger.info(f"Generating with {config.provider}/{config.model}")
        response = client.generate(
            messages,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        logger.debug(
            f"{config.provider} replied in {response.latency_ms or 0:.0f}ms "
            f"({response.usage.get('total_tokens', 0)} tokens)"
        )
        return response

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_available_models(self, provider: str) -> List[str]:
        return list(self.catalog.get(provider.lower(), {}).keys())

    def get_model_display_name(self, model: str) -> str:
        for models in self.catalog.values():
            if model in models:
                return models[model].get("display_name", model)
        return model

    def calculate_cost(self, usage: Dict[str, int], model: str) -> CostBreakdown:
        """Cost of a provider usage dict; unknown models use gpt-4o-mini rates"""
        return self.token_counter.estimate_cost(
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
            model,
        )

    def describe_catalog(self) -> Dict[str, List[Dict]]:
        """Catalog in the shape served by GET /api/models"""
        return {
            provider: [
                {
                    "id": model,
                    "display_name": info.get("display_name", model),
                    "pricing": info.get("pricing", {}),
                }
                for model, info in models.items()
            ]
            for provider, models in self.catalog.items()
        }


# Singleton
_model_service: Optional[ModelService] = None


def get_model_service() -> ModelService:
    """Get singleton model service"""
    global _model_service
    if _model_service is None:
        _model_service = ModelService()
    return _model_service
