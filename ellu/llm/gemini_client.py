"""
Google Gemini client

Talks to the ``generateContent`` REST endpoint with ``requests`` instead of
an SDK. Keys come from GEMINI_API_KEY (or GOOGLE_API_KEY); get one at
https://aistudio.google.com/app/apikey
"""

import os
from typing import Any, Dict, Optional

import requests

from .base import BaseLLMClient, LLMResponse, LLMClientFactory, Messages, usage_counts
from ..handlers.error_handler import ProviderError


@LLMClientFactory.register("gemini")
class GeminiClient(BaseLLMClient):
    """Gemini REST client"""

    provider_name = "gemini"
    api_key_env = "GEMINI_API_KEY"
    default_model = "gemini-1.5-flash"
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")

    def _key_from_env(self) -> Optional[str]:
        return os.getenv(self.api_key_env) or os.getenv("GOOGLE_API_KEY")

    def _connect(self, api_key: str) -> requests.Session:
        return requests.Session()

    @staticmethod
    def build_payload(messages: Messages, temperature: float, max_tokens: int) -> Dict[str, Any]:
        """Translate chat messages into a generateContent request body.

        Gemini calls the assistant role ``model`` and wants system text in
        ``systemInstruction``.
        """
        instruction = []
        contents = []

        for msg in messages:
            text = {"text": msg["content"]}
            if msg["role"] == "system":
                instruction.append(text)
            elif msg["role"] == "assistant":
                contents.append({"role": "model", "parts": [text]})
            else:
                contents.append({"role": "user", "parts": [text]})

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if instruction:
            payload["systemInstruction"] = {"parts": instruction}
        return payload

    def _complete(
        self,
        transport: requests.Session,
        messages: Messages,
        temperature: float,
        max_tokens: int
    ) -> LLMResponse:
        reply = transport.post(
            f"{self.base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": self.api_key},
            json=self.build_payload(messages, temperature, max_tokens),
            timeout=self.timeout,
        )
        reply.raise_for_status()
        body = reply.json()

        candidates = body.get("candidates") or []
        if not candidates:
            reason = body.get("promptFeedback", {}).get("blockReason", "no candidates returned")
            raise ProviderError(f"Gemini returned no answer: {reason}", self.provider_name)

        parts = candidates[0].get("content", {}).get("parts", [])
        meta = body.get("usageMetadata", {})

        return LLMResponse(
            content="".join(p.get("text", "") for p in parts),
            model=self.model,
            provider=self.provider_name,
            usage=usage_counts(
                meta.get("promptTokenCount", 0),
                meta.get("candidatesTokenCount", 0),
                meta.get("totalTokenCount"),
            ),
            raw_response=body,
        )
