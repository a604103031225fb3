"""
Token Counter Utility

Token estimation and cost accounting for chat and embedding calls.
Provider-reported usage is always preferred; estimates cover the embedding
side, which the embedding API does not report back through Chroma.
"""

import math
import logging
from typing import Dict, Optional
from dataclasses import dataclass, asdict

logger = logging.getLogger(__name__)

COST_PRECISION = 5
FALLBACK_MODEL = "gpt-4o-mini"


def estimate_tokens(text: str) -> int:
    """
    Estimate the token count of text.

    Takes the larger of the character-based (~4 chars/token) and the
    word-based (~0.75 tokens/word) estimate.
    """
    if not text:
        return 0
    by_chars = len(text) / 4
    by_words = len(text.split()) * 0.75
    return math.ceil(max(by_chars, by_words))


@dataclass
class CostBreakdown:
    """USD cost split by token kind"""
    prompt_cost: float = 0.0
    completion_cost: float = 0.0
    embedding_cost: float = 0.0
    total_cost: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class TokenUsage:
    """Token and cost accounting for a single answer"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    embedding_tokens: int = 0
    cost: CostBreakdown = None

    def __post_init__(self):
        if self.cost is None:
            self.cost = CostBreakdown()

    def to_dict(self) -> Dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "embedding_tokens": self.embedding_tokens,
            "cost": self.cost.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "TokenUsage":
        if not data:
            return cls()
        return cls(
            prompt_tokens=data.get("prompt_tokens", 0),
            completion_tokens=data.get("completion_tokens", 0),
            total_tokens=data.get("total_tokens", 0),
            embedding_tokens=data.get("embedding_tokens", 0),
            cost=CostBreakdown(**data.get("cost", {})),
        )


class TokenCounter:
    """
    Cost calculator backed by the model catalog pricing (USD per 1K tokens).

    Usage:
        counter = TokenCounter(pricing={"gpt-4o-mini": {"prompt": 0.00015, "completion": 0.0006}})
        cost = counter.estimate_cost(1200, 300, "gpt-4o-mini", embedding_tokens=20)
    """

    def __init__(
        self,
        pricing: Optional[Dict[str, Dict[str, float]]] = None,
        embedding_price_per_1k: float = 0.00002
    ):
        self.pricing = pricing if pricing is not None else _load_catalog_pricing()
        self.embedding_price_per_1k = embedding_price_per_1k

    def get_pricing(self, model: str) -> Dict[str, float]:
        if model in self.pricing:
            return self.pricing[model]
        logger.debug(f"No pricing for {model}, using {FALLBACK_MODEL} rates")
        return self.pricing.get(FALLBACK_MODEL, {"prompt": 0.00015, "completion": 0.0006})

    def estimate_cost(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        model: str,
        embedding_tokens: int = 0
    ) -> CostBreakdown:
        """Estimate cost for token usage"""
        prices = self.get_pricing(model)

        prompt_cost = prompt_tokens / 1000 * prices.get("prompt", 0.0)
        completion_cost = completion_tokens / 1000 * prices.get("completion", 0.0)
        embedding_cost = embedding_tokens / 1000 * self.embedding_price_per_1k

        return CostBreakdown(
            prompt_cost=round(prompt_cost, COST_PRECISION),
            completion_cost=round(completion_cost, COST_PRECISION),
            embedding_cost=round(embedding_cost, COST_PRECISION),
            total_cost=round(prompt_cost + completion_cost + embedding_cost, COST_PRECISION),
        )

    def build_usage(
        self,
        usage: Optional[Dict[str, int]],
        model: str,
        embedding_tokens: int = 0
    ) -> TokenUsage:
        """Turn a provider usage dict into a TokenUsage with costs"""
        usage = usage or {}
        prompt_tokens = usage.get("prompt_tokens", 0) or 0
        completion_tokens = usage.get("completion_tokens", 0) or 0
        total_tokens = usage.get("total_tokens") or prompt_tokens + completion_tokens

        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            embedding_tokens=embedding_tokens,
            cost=self.estimate_cost(prompt_tokens, completion_tokens, model, embedding_tokens),
        )


def _load_catalog_pricing() -> Dict[str, Dict[str, float]]:
    """Flatten the provider/model catalog into model -> pricing"""
    from config import settings

    pricing = {}
    for models in settings.get_model_catalog().values():
        for model_name, info in models.items():
            pricing[model_name] = info.get("pricing", {})
    return pricing
