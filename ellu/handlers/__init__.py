"""
Handlers Module for the ELLU Studios assistant

Provides the exception hierarchy, HTTP error mapping and input security checks.
"""

from .error_handler import (
    # Exceptions
    ElluError,
    ValidationError,
    SecurityError,
    ConfigurationError,
    RateLimitError,
    LLMError,
    ProviderError,
    KnowledgeUpdateError,
    UpdateInProgressError,

    # Error handling
    ErrorHandler,
    GENERIC_ERROR_MESSAGE,
    wrap_provider_errors,
    get_error_handler,
)

from .security import (
    SecurityValidator,
    get_security_validator,
)


__all__ = [
    # Exceptions
    "ElluError",
    "ValidationError",
    "SecurityError",
    "ConfigurationError",
    "RateLimitError",
    "LLMError",
    "ProviderError",
    "KnowledgeUpdateError",
    "UpdateInProgressError",

    # Error handling
    "ErrorHandler",
    "GENERIC_ERROR_MESSAGE",
    "wrap_provider_errors",
    "get_error_handler",

    # Security
    "SecurityValidator",
    "get_security_validator",
]
