"""
Cache access for request gates and report caching.

Everything goes through Django's cache framework, selected by
REWARDMAN["CACHE_ALIAS"], so a multi-instance deployment points the alias
at a shared backend (Redis, Memcached) instead of per-process memory.
Callers can pass their own backend instead.
"""

from django.core.cache import caches
from django.core.cache.backends.base import BaseCache

from rewardman.conf import rewardman_settings


def get_cache(alias: str | None = None) -> BaseCache:
    return caches[alias or rewardman_settings.CACHE_ALIAS]


class RateLimiter:
    """
    Fixed-window request counter.

    Usage:
        limiter = RateLimiter()
        if not limiter.hit("redeem:42", limit=5, window=3600):
            reject()
    """

    def __init__(self, cache: BaseCache | None = None, prefix: str = "rewardman:rl"):
        self.cache = cache if cache is not None else get_cache()
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def hit(self, key: str, limit: int, window: int) -> bool:
        """Count one request; False once ``limit`` requests were seen in the window."""
        cache_key = self._key(key)
        if self.cache.add(cache_key, 1, timeout=window):
            return True
        try:
            count = self.cache.incr(cache_key)
        except ValueError:
            # Expired between add() and incr(): start a new window
            self.cache.set(cache_key, 1, timeout=window)
            return True
        return count <= limit

    def reset(self, key: str) -> None:
        self.cache.delete(self._key(key))
