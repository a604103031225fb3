"""
Request-scoped logging, stage timings and the daily query log.

Python's ``logging`` (configured from config/logging_config.yaml) carries
the application log. On top of it:

- ``ContextLogger`` appends request fields (client, action, session) as a
  JSON suffix to every message.
- ``PerformanceLogger`` keeps rolling timing samples for pipeline stages.
- ``QueryLogger`` writes one JSON line per answered question or knowledge
  event to ``{log_type}-{YYYY-MM-DD}.jsonl``.
"""

import logging
import re
import threading
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path
from datetime import datetime, timezone
from collections import deque
import time
import json

REDACTED = "[REDACTED]"
MAX_LOGGED_STRING = 500

SENSITIVE_KEY_PATTERN = re.compile(
    r"(api[_-]?key|secret|password|authorization|access[_-]?token|^token$|^key$)",
    re.IGNORECASE,
)
SECRET_VALUE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b(?:sk|ak)-[A-Za-z0-9_\-]{16,}"), REDACTED),
    (re.compile(r"\bAIza[0-9A-Za-z_\-]{20,}"), REDACTED),
    (re.compile(r"([?&](?:key|api_key|access_token|token)=)[^&\s]+", re.IGNORECASE), r"\1" + REDACTED),
]


def scrub_text(text: str) -> str:
    """Mask API keys and credential query parameters inside free text"""
    for pattern, replacement in SECRET_VALUE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_secrets(data: Any, max_length: int = MAX_LOGGED_STRING) -> Any:
    """Copy of data with secret-named fields and secret-looking strings masked"""
    if isinstance(data, dict):
        return {
            key: REDACTED if SENSITIVE_KEY_PATTERN.search(str(key)) else redact_secrets(value, max_length)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_secrets(item, max_length) for item in data]
    if isinstance(data, str):
        data = scrub_text(data)
        if len(data) > max_length:
            return data[:max_length] + "...[truncated]"
    return data


class RedactingFormatter(logging.Formatter):
    """Formatter that masks API keys in messages and rendered tracebacks"""

    def format(self, record: logging.LogRecord) -> str:
        return scrub_text(super().format(record))


class ContextLogger:
    """
    Usage:
        log = get_logger(__name__).context(client="10.0.0.1", action="add")
        log.info("Processing knowledge update")
    """

    def __init__(self, name: str, fields: Optional[Dict[str, Any]] = None):
        self._logger = logging.getLogger(name)
        self.fields: Dict[str, Any] = dict(fields or {})

    def context(self, **fields) -> "ContextLogger":
        return ContextLogger(self._logger.name, {**self.fields, **fields})

    def _emit(self, level: int, msg: str, **kwargs):
        msg = scrub_text(msg)
        fields = redact_secrets({k: v for k, v in self.fields.items() if v is not None})
        if fields:
            msg = f"{msg} | {json.dumps(fields, default=str)}"
        self._logger.log(level, msg, **kwargs)

    def debug(self, msg: str):
        self._emit(logging.DEBUG, msg)

    def info(self, msg: str):
        self._emit(logging.INFO, msg)

    def warning(self, msg: str):
        self._emit(logging.WARNING, msg)

    def error(self, msg: str, exc_info: bool = False):
        self._emit(logging.ERROR, msg, exc_info=exc_info)


class PerformanceLogger:
    """Rolling duration samples per stage (retrieval, generation, response_time)"""

    def __init__(self, name: str, max_samples: int = 1000):
        self._logger = logging.getLogger(name)
        self._max_samples = max_samples
        self._samples: Dict[str, deque] = {}
        self._lock = threading.Lock()

    def track(self, stage: str) -> "_StageTimer":
        return _StageTimer(self, stage)

    def record(self, stage: str, duration_ms: float, success: bool = True):
        with self._lock:
            window = self._samples.setdefault(stage, deque(maxlen=self._max_samples))
            window.append((duration_ms, success))

        self._logger.debug(f"{stage} took {duration_ms:.1f}ms ({'ok' if success else 'failed'})")

    def get_stats(self, stage: str) -> Dict[str, float]:
        with self._lock:
            samples = list(self._samples.get(stage, ()))

        if not samples:
            return {}

        durations = [d for d, _ in samples]
        return {
            "count": len(samples),
            "avg_ms": sum(durations) / len(durations),
            "min_ms": min(durations),
            "max_ms": max(durations),
            "success_rate": sum(1 for _, ok in samples if ok) / len(samples),
        }

    def get_all_stats(self) -> Dict[str, Dict[str, float]]:
        return {stage: self.get_stats(stage) for stage in list(self._samples)}


class _StageTimer:

    def __init__(self, perf: PerformanceLogger, stage: str):
        self.perf = perf
        self.stage = stage
        self.started = 0.0
        self.duration_ms = 0.0

    def __enter__(self):
        self.started = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.time() - self.started) * 1000
        self.perf.record(self.stage, self.duration_ms, exc_type is None)
        return False


class QueryLogger:
    """
    Append-only JSON-lines files under ``directory``, one per log type and UTC day.

    Usage:
        query_log = QueryLogger("./logs")
        query_log.log_query(query="What is ease?", language="en", response_time_ms=830, ...)
        query_log.read_entries("queries")
    """

    def __init__(self, directory: str = "./logs"):
        self.directory = Path(directory)
        self._lock = threading.Lock()
        self._logger = logging.getLogger(__name__)
        self.metrics = PerformanceLogger(__name__)

    def _path_for(self, log_type: str, day: Optional[str] = None) -> Path:
        day = day or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.directory / f"{log_type}-{day}.jsonl"

    def write(self, log_type: str, record: Dict[str, Any]) -> None:
        line = json.dumps(
            {"timestamp": datetime.now(timezone.utc).isoformat(), **redact_secrets(record)},
            ensure_ascii=False,
            default=str,
        )
        try:
            with self._lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                with open(self._path_for(log_type), "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            # a failed log write never fails the request
            self._logger.error(f"Could not append to {log_type} log: {e}")

    def log_query(
        self,
        query: str,
        language: str,
        response_time_ms: float,
        token_usage: Dict[str, Any],
        relevance_scores: List[float],
        response_length: int,
        provider: str = "",
        model: str = "",
        session_id: Optional[str] = None,
        errors: Optional[List[str]] = None
    ) -> None:
        self.metrics.record("response_time", response_time_ms, success=not errors)
        self.write("queries", {
            "session_id": session_id,
            "query": query[:500],
            "language": language,
            "provider": provider,
            "model": model,
            "response_time_ms": round(response_time_ms, 2),
            "tokens_used": {
                "prompt": token_usage.get("prompt_tokens", 0),
                "completion": token_usage.get("completion_tokens", 0),
                "embedding": token_usage.get("embedding_tokens", 0),
            },
            "vector_results": {
                "found": len(relevance_scores),
                "relevance_scores": relevance_scores,
                "top_score": max(relevance_scores, default=0),
            },
            "response": {"length": response_length},
            "errors": errors or [],
        })

    def log_event(self, log_type: str, level: str, message: str, **metadata) -> None:
        self.write(log_type, {"level": level, "message": message, "metadata": metadata})

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        return self.metrics.get_all_stats()

    def read_entries(self, log_type: str, day: Optional[str] = None) -> List[Dict[str, Any]]:
        path = self._path_for(log_type, day)
        if not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    def health_check(self) -> Dict[str, Any]:
        """The log is healthy when its directory accepts a test write"""
        issues = []
        marker = self.directory / ".write-test"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            marker.write_text("ok", encoding="utf-8")
            marker.unlink()
        except OSError as e:
            issues.append(f"Log directory not writable: {e}")
        return {"healthy": not issues, "issues": issues}


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(name)


_query_logger: Optional[QueryLogger] = None


def get_query_logger() -> QueryLogger:
    """Process-wide query log in the configured directory"""
    global _query_logger
    if _query_logger is None:
        from config import settings
        _query_logger = QueryLogger(settings.query_log_directory)
    return _query_logger
