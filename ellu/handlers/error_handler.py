"""
Error Handler Module

Centralized exception hierarchy and the mapping from errors to HTTP responses.
"""

import logging
from typing import Optional, Type, Dict
from functools import wraps

from ..utils.logger import scrub_text

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = (
    "An unexpected error occurred while processing your request. Please try again."
)


# Custom exceptions
class ElluError(Exception):
    """Base exception for the ELLU Studios assistant"""
    pass


class ValidationError(ElluError):
    """Input validation error"""
    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or [message]


class SecurityError(ElluError):
    """Input rejected by the security validator"""
    pass


class ConfigurationError(ElluError):
    """Missing API key or unusable configuration"""
    pass


class RateLimitError(ElluError):
    """Rate limit exceeded"""
    def __init__(self, message: str, retry_after: float = 60):
        super().__init__(message)
        self.retry_after = retry_after


class LLMError(ElluError):
    """LLM-related errors"""
    pass


class ProviderError(LLMError):
    """Provider unavailable or returned error"""
    def __init__(self, message: str, provider: str):
        super().__init__(message)
        self.provider = provider


class KnowledgeUpdateError(ElluError):
    """Knowledge base mutation failed"""
    pass


class UpdateInProgressError(KnowledgeUpdateError):
    """Another knowledge update holds the update guard"""
    pass


class ErrorHandler:
    """
    Maps exceptions onto HTTP status codes and client-facing messages.

    Internal errors never leak their text to the client; they are logged
    and replaced by a generic message.

    Usage:
        handler = get_error_handler()

        try:
            ...
        except Exception as e:
            status = handler.status_code_for(e)
            body = {"error": handler.public_message(e)}
    """

    STATUS_CODES: Dict[Type[Exception], int] = {
        ValidationError: 400,
        ConfigurationError: 401,
        SecurityError: 403,
        UpdateInProgressError: 409,
        RateLimitError: 429,
    }

    def __init__(self):
        self._error_counts: Dict[str, int] = {}

    def status_code_for(self, exc: Exception) -> int:
        for exc_type, status in self.STATUS_CODES.items():
            if isinstance(exc, exc_type):
                return status
        return 500

    def public_message(self, exc: Exception) -> str:
        if self.status_code_for(exc) == 500:
            return GENERIC_ERROR_MESSAGE
        return scrub_text(str(exc))

    def record(self, exc: Exception, operation: str = "request") -> int:
        """Count and log an error, returning its HTTP status code"""
        error_type = type(exc).__name__
        self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1

        status = self.status_code_for(exc)
        detail = scrub_text(str(exc))
        if status >= 500:
            logger.error(f"{operation} failed: {error_type}: {detail}", exc_info=exc)
        else:
            logger.warning(f"{operation} rejected ({status}): {detail}")
        return status

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics"""
        return self._error_counts.copy()


def wrap_provider_errors(provider: str):
    """Decorator re-raising SDK/HTTP failures as ProviderError"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ElluError:
                raise
            except Exception as e:
                message = f"{provider} request failed: {scrub_text(str(e))}"
                logger.error(message)
                raise ProviderError(message, provider) from None
        return wrapper
    return decorator


# Singleton instances
_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get singleton error handler"""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler
