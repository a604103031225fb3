"""
Security Validation

Input screening for user queries and knowledge-base content: length limits,
prompt-injection patterns, path checks and log redaction.

Usage:
    from ellu.handlers.security import SecurityValidator

    validator = SecurityValidator()
    clean = validator.validate_query(user_text)      # raises SecurityError
"""

import re
import logging
from pathlib import PurePosixPath
from typing import Any, List, Optional

from .error_handler import SecurityError
from ..utils.logger import redact_secrets
from ..utils.rate_limiter import ClientRateLimiter, RateLimitConfig

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 1000
MAX_MESSAGE_LENGTH = 2000
MAX_CONTENT_BYTES = 10 * 1024 * 1024
MIN_API_KEY_LENGTH = 20
API_KEY_PREFIXES = ("sk-", "ak-", "AIza")
ALLOWED_EXTENSIONS = (".md", ".txt", ".json")

INJECTION_PATTERNS: List[re.Pattern] = [
    re.compile(r"\bsystem\s*:", re.IGNORECASE),
    re.compile(r"\bassistant\s*:", re.IGNORECASE),
    re.compile(r"ignore\s+previous", re.IGNORECASE),
    re.compile(r"forget\s+all", re.IGNORECASE),
    re.compile(r"override\s+instructions", re.IGNORECASE),
    re.compile(r"__[a-zA-Z_]+__"),
    re.compile(r"\$\{.*?\}"),
    re.compile(r"<script[^>]*>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\bdata:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
]

PATH_PATTERNS: List[re.Pattern] = [
    re.compile(r"\.\."),
    re.compile(r"~"),
    re.compile(r"/etc/", re.IGNORECASE),
    re.compile(r"/proc/", re.IGNORECASE),
    re.compile(r"/sys/", re.IGNORECASE),
    re.compile(r"\\"),
    re.compile(r'[<>|"*?]'),
]


class SecurityValidator:
    """Screens untrusted text before it reaches prompts or the knowledge base"""

    def __init__(self, rate_limiter: Optional[ClientRateLimiter] = None):
        self._rate_limiter = rate_limiter or ClientRateLimiter(
            RateLimitConfig(requests_per_minute=100, window_seconds=60)
        )

    # ------------------------------------------------------------------
    # Text screening
    # ------------------------------------------------------------------

    def _check_length(self, text: Any, max_length: int, label: str) -> str:
        if not isinstance(text, str):
            raise SecurityError(f"{label} must be a string")
        stripped = text.strip()
        if not stripped:
            raise SecurityError(f"{label} must not be empty")
        if len(stripped) > max_length:
            raise SecurityError(f"{label} too long: {len(stripped)} > {max_length} characters")
        return stripped

    def _check_injection(self, text: str):
        for pattern in INJECTION_PATTERNS:
            if pattern.search(text):
                logger.warning(f"Rejected input matching {pattern.pattern!r}")
                raise SecurityError("Potentially malicious input detected")

    @staticmethod
    def _sanitize(text: str) -> str:
        text = re.sub(r"[{}]", "", text)
        return re.sub(r"<[^>]*>", "", text)

    def validate_query(self, query: Any) -> str:
        """Validate a search query or identifier and return the sanitized text"""
        stripped = self._check_length(query, MAX_QUERY_LENGTH, "Query")
        self._check_injection(stripped)
        return self._sanitize(stripped)

    def validate_message(self, message: Any) -> str:
        """Validate a chat message (longer limit than queries)"""
        stripped = self._check_length(message, MAX_MESSAGE_LENGTH, "Message")
        self._check_injection(stripped)
        return self._sanitize(stripped)

    def validate_content(self, content: Any, max_bytes: int = MAX_CONTENT_BYTES) -> str:
        """
        Validate knowledge-base content.

        Content keeps its formatting; only injection patterns and size are checked.
        """
        if not isinstance(content, str):
            raise SecurityError("Content must be a string")
        if len(content.encode("utf-8")) > max_bytes:
            raise SecurityError(f"Content exceeds maximum size of {max_bytes} bytes")
        self._check_injection(content)
        return content

    # ------------------------------------------------------------------
    # Other inputs
    # ------------------------------------------------------------------

    def validate_api_key(self, key: Any) -> str:
        if not isinstance(key, str) or not key:
            raise SecurityError("API key is required")
        if len(key) < MIN_API_KEY_LENGTH:
            raise SecurityError(f"API key too short: {len(key)} < {MIN_API_KEY_LENGTH}")
        if not key.startswith(API_KEY_PREFIXES):
            raise SecurityError("Invalid API key format")
        return key

    def validate_file_path(
        self,
        file_path: Any,
        allowed_base_path: Optional[str] = None,
        allowed_extensions: tuple = ALLOWED_EXTENSIONS
    ) -> str:
        if not isinstance(file_path, str) or not file_path:
            raise SecurityError("Invalid file path")

        for pattern in PATH_PATTERNS:
            if pattern.search(file_path):
                raise SecurityError("Potentially malicious file path detected")

        path = PurePosixPath(re.sub(r"/+", "/", file_path))
        if path.suffix.lower() not in allowed_extensions:
            raise SecurityError(
                f"File type not allowed: {path.suffix or '(none)'}. "
                f"Allowed: {', '.join(allowed_extensions)}"
            )

        if allowed_base_path is not None:
            base = PurePosixPath(re.sub(r"/+", "/", allowed_base_path))
            if path != base and base not in path.parents:
                raise SecurityError("File path outside allowed directory")

        return str(path)

    def check_rate_limit(self, identifier: str) -> bool:
        allowed, _ = self._rate_limiter.allow(identifier)
        return allowed

    def sanitize_for_logging(self, data: Any) -> Any:
        """Return a copy of data with secret-looking values redacted"""
        return redact_secrets(data)


# Singleton
_security_validator: Optional[SecurityValidator] = None


def get_security_validator() -> SecurityValidator:
    """Get singleton security validator"""
    global _security_validator
    if _security_validator is None:
        _security_validator = SecurityValidator()
    return _security_validator
