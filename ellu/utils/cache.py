"""
Answer cache for the chat endpoint.

Students tend to ask the same opening questions ("what is seam allowance?"),
so finished RAG answers are kept in process for a while. Entries expire
after ``default_ttl`` seconds and the oldest entry is dropped when the
cache is full. The cache is emptied whenever course content changes.
"""

import json
import hashlib
import time
import logging
import threading
from typing import Any, Dict, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class MemoryCache:
    """Thread-safe TTL map with oldest-first eviction"""

    def __init__(self, max_size: int = 100, default_ttl: int = 1800):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None and entry.expired(time.time()):
                del self._cache[key]
                entry = None

            if entry is None:
                self._misses += 1
                return None

            entry.hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        now = time.time()
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._make_room(now)
            self._cache[key] = CacheEntry(value, now, now + (ttl or self.default_ttl))

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._cache)
            self._cache.clear()
        if dropped:
            logger.info(f"Answer cache cleared ({dropped} entries)")

    def _make_room(self, now: float):
        for key in [k for k, e in self._cache.items() if e.expired(now)]:
            del self._cache[key]

        if len(self._cache) >= self.max_size:
            oldest = min(self._cache, key=lambda k: self._cache[k].created_at)
            del self._cache[oldest]

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            hits = sum(e.hits for e in self._cache.values())
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "total_hits": hits,
                "misses": self._misses,
            }


def make_cache_key(**parts) -> str:
    """SHA-256 of the keyword parts, independent of argument order"""
    canonical = json.dumps(parts, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
