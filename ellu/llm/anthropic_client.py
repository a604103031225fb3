"""
Anthropic Messages API client (Claude 3 Haiku / Opus, Claude 3.5 Sonnet).

Claude takes the system prompt as a top-level ``system`` field rather than
as a message, so the course instructions are lifted out of the history
before sending.
"""

import logging
from typing import Any, Dict, List, Tuple

from .base import BaseLLMClient, LLMResponse, LLMClientFactory, Messages, usage_counts

logger = logging.getLogger(__name__)


@LLMClientFactory.register("anthropic")
class AnthropicClient(BaseLLMClient):

    provider_name = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"
    default_model = "claude-3-haiku-20240307"

    def _connect(self, api_key: str) -> Any:
        from anthropic import Anthropic
        return Anthropic(api_key=api_key, timeout=self.timeout)

    @staticmethod
    def split_system(messages: Messages) -> Tuple[str, List[Dict[str, str]]]:
        instructions = [m["content"] for m in messages if m["role"] == "system"]
        turns = [
            {"role": m["role"], "content": m["content"]}
            for m in messages if m["role"] != "system"
        ]
        return "\n\n".join(instructions), turns

    def _complete(self, transport: Any, messages: Messages, temperature: float, max_tokens: int) -> LLMResponse:
        system, turns = self.split_system(messages)

        request = {
            "model": self.model,
            "messages": turns,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if system:
            request["system"] = system

        reply = transport.messages.create(**request)

        text_blocks = [b.text for b in reply.content if getattr(b, "type", "text") == "text"]
        if not text_blocks:
            logger.warning(f"{self.model} returned no text blocks")

        return LLMResponse(
            content="".join(text_blocks),
            model=self.model,
            provider=self.provider_name,
            usage=usage_counts(reply.usage.input_tokens, reply.usage.output_tokens),
            raw_response=reply,
        )
