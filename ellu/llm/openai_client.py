"""OpenAI chat completions (gpt-4o, gpt-4o-mini, gpt-4-turbo, gpt-3.5-turbo)"""

from typing import Any

from .base import BaseLLMClient, LLMResponse, LLMClientFactory, Messages, usage_counts


@LLMClientFactory.register("openai")
class OpenAIClient(BaseLLMClient):

    provider_name = "openai"
    api_key_env = "OPENAI_API_KEY"
    default_model = "gpt-4o-mini"

    def _connect(self, api_key: str) -> Any:
        from openai import OpenAI
        return OpenAI(api_key=api_key, timeout=self.timeout)

    def _complete(self, transport: Any, messages: Messages, temperature: float, max_tokens: int) -> LLMResponse:
        completion = transport.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        counted = completion.usage
        usage = usage_counts()
        if counted:
            usage = usage_counts(counted.prompt_tokens, counted.completion_tokens, counted.total_tokens)

        return LLMResponse(
            content=completion.choices[0].message.content or "",
            # the API reports the dated snapshot that actually answered
            model=getattr(completion, "model", None) or self.model,
            provider=self.provider_name,
            usage=usage,
            raw_response=completion,
        )
