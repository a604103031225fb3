"""
Provider-neutral client contract.

A provider client turns a list of chat messages (``system`` / ``user`` /
``assistant``) into an ``LLMResponse`` with normalized token usage, so the
RAG pipeline can price and log every answer the same way regardless of
which vendor produced it.
"""

import os
import time
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type
from dataclasses import dataclass, field

from ..handlers.error_handler import ConfigurationError, wrap_provider_errors

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


def usage_counts(prompt_tokens: int = 0, completion_tokens: int = 0, total_tokens: Optional[int] = None) -> Dict[str, int]:
    if total_tokens is None:
        total_tokens = prompt_tokens + completion_tokens
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
    }


@dataclass
class LLMResponse:
    """One completed answer from a provider"""
    content: str
    model: str
    provider: str
    usage: Dict[str, int] = field(default_factory=usage_counts)
    latency_ms: Optional[float] = None
    raw_response: Optional[Any] = None


class BaseLLMClient(ABC):
    """
    Shared plumbing for the course assistant's providers.

    Subclasses set ``provider_name``, ``api_key_env`` and ``default_model``
    and implement two hooks: ``_connect`` builds the SDK or HTTP session,
    ``_complete`` sends one request and returns an ``LLMResponse``.
    Timing and error translation happen here.
    """

    provider_name: str = ""
    api_key_env: str = ""
    default_model: str = ""

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout: int = 30,
        **options
    ):
        self.model = model or self.default_model
        self.api_key = api_key or self._key_from_env()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.options = options
        self._client = None

    def _key_from_env(self) -> Optional[str]:
        return os.getenv(self.api_key_env)

    def _require_api_key(self, api_key: Optional[str]) -> str:
        if not api_key:
            raise ConfigurationError(f"{self.api_key_env} not set")
        return api_key

    @abstractmethod
    def _connect(self, api_key: str) -> Any:
        """Build the transport object (SDK client or HTTP session)"""

    @abstractmethod
    def _complete(self, transport: Any, messages: Messages, temperature: float, max_tokens: int) -> LLMResponse:
        """Send one completion request"""

    def _transport(self) -> Any:
        api_key = self._require_api_key(self.api_key)
        if self._client is None:
            self._client = self._connect(api_key)
        return self._client

    def generate(
        self,
        messages: Messages,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Sampling settings passed here override the client defaults for this call"""
        transport = self._transport()

        started = time.time()
        send = wrap_provider_errors(self.provider_name)(self._complete)
        response = send(
            transport,
            messages,
            self.temperature if temperature is None else temperature,
            self.max_tokens if max_tokens is None else max_tokens,
        )
        response.latency_ms = (time.time() - started) * 1000

        return response


class LLMClientFactory:
    """Registry of provider clients, keyed by lowercase provider id"""

    _registry: Dict[str, Type[BaseLLMClient]] = {}

    @classmethod
    def register(cls, provider: str):
        def add(client_class: Type[BaseLLMClient]) -> Type[BaseLLMClient]:
            cls._registry[provider.lower()] = client_class
            return client_class
        return add

    @classmethod
    def create(cls, provider: str, **options) -> BaseLLMClient:
        client_class = cls._registry.get(provider.lower())
        if client_class is None:
            raise ValueError(
                f"Unknown provider: {provider}. Available: {sorted(cls._registry)}"
            )
        return client_class(**options)

    @classmethod
    def providers(cls) -> List[str]:
        return list(cls._registry)
