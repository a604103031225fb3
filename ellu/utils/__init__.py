"""Shared utilities: logging, caching, rate limiting and token accounting."""

from .cache import MemoryCache, make_cache_key
from .logger import (
    ContextLogger,
    PerformanceLogger,
    QueryLogger,
    RedactingFormatter,
    get_logger,
    get_query_logger,
    redact_secrets,
    scrub_text,
)
from .rate_limiter import RateLimiter, RateLimitConfig, ClientRateLimiter, create_rate_limiter
from .token_counter import (
    TokenCounter,
    TokenUsage,
    CostBreakdown,
    estimate_tokens,
)

__all__ = [
    "MemoryCache",
    "make_cache_key",
    "ContextLogger",
    "PerformanceLogger",
    "QueryLogger",
    "RedactingFormatter",
    "get_logger",
    "get_query_logger",
    "redact_secrets",
    "scrub_text",
    "RateLimiter",
    "RateLimitConfig",
    "ClientRateLimiter",
    "create_rate_limiter",
    "TokenCounter",
    "TokenUsage",
    "CostBreakdown",
    "estimate_tokens",
]
