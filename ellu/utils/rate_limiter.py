"""
Rate Limiter Utility

Sliding-window request limiting per client identifier.
"""

import time
import logging
import threading
from typing import Dict, Optional
from dataclasses import dataclass
from collections import deque

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting"""
    requests_per_minute: int = 100
    window_seconds: float = 60.0


class RateLimiter:
    """
    Sliding-window rate limiter for a single client.

    Thread-safe; FastAPI runs sync endpoints on a worker pool.
    """

    def __init__(self, config: RateLimitConfig = None):
        self.config = config or RateLimitConfig()
        self._request_times: deque = deque()
        self._lock = threading.Lock()

    def _clean_old_entries(self, now: float):
        """Remove entries older than the window"""
        cutoff = now - self.config.window_seconds
        while self._request_times and self._request_times[0] <= cutoff:
            self._request_times.popleft()

    def check_limit(self) -> tuple[bool, float]:
        """
        Check and record a request.

        Returns:
            (allowed, wait_time): Whether request is allowed and wait time if not
        """
        with self._lock:
            now = time.time()
            self._clean_old_entries(now)

            if len(self._request_times) >= self.config.requests_per_minute:
                wait_time = self.config.window_seconds - (now - self._request_times[0])
                return False, max(0.0, wait_time)

            self._request_times.append(now)
            return True, 0.0

    def is_idle(self) -> bool:
        """True once every recorded request has left the window"""
        with self._lock:
            self._clean_old_entries(time.time())
            return not self._request_times


class ClientRateLimiter:
    """Rate limiter that tracks each client identifier separately"""

    def __init__(self, config: RateLimitConfig = None):
        self.config = config or RateLimitConfig()
        self._limiters: Dict[str, RateLimiter] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.time()

    def _evict_idle(self, now: float):
        """Drop clients with no requests left in their window, at most once per window"""
        if now - self._last_sweep < self.config.window_seconds:
            return
        self._last_sweep = now
        idle = [key for key, limiter in self._limiters.items() if limiter.is_idle()]
        for key in idle:
            del self._limiters[key]
        if idle:
            logger.debug(f"Evicted {len(idle)} idle rate limit windows")

    def get_limiter(self, identifier: str) -> RateLimiter:
        """Get or create limiter for a client"""
        with self._lock:
            self._evict_idle(time.time())
            if identifier not in self._limiters:
                self._limiters[identifier] = RateLimiter(self.config)
            return self._limiters[identifier]

    def allow(self, identifier: str) -> tuple[bool, float]:
        allowed, wait_time = self.get_limiter(identifier).check_limit()
        if not allowed:
            logger.warning(f"Rate limit reached for {identifier}, retry in {wait_time:.1f}s")
        return allowed, wait_time


def create_rate_limiter(name: str) -> ClientRateLimiter:
    """Create a per-client limiter from the rate_limits section of the settings"""
    from config import settings

    limits = settings.get_rate_limit(name)
    config = RateLimitConfig(
        requests_per_minute=limits.get('requests_per_minute', 100),
        window_seconds=limits.get('window_seconds', 60.0)
    )
    return ClientRateLimiter(config)
