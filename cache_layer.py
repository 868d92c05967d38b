"""
Process-local result cache.

Entries are keyed by (namespace, scope), where scope is usually an
organization id. Dropping a scope forgets that organization's entry without
touching other tenants. Values expire after CACHE_TTL_SECONDS, so workers that
do not see an invalidation converge on their own.
"""
from __future__ import annotations

import os
import threading
from typing import Any, Callable, Hashable

from cachetools import TTLCache


def _env_bounded(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(os.getenv(name, "") or default)
    except ValueError:
        value = default
    return max(low, min(high, value))


class ScopedCache:
    def __init__(self, ttl_seconds: int, max_items: int):
        self._entries: TTLCache = TTLCache(maxsize=max_items, ttl=ttl_seconds)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def fetch(self, namespace: str, scope: Hashable, compute: Callable[[], Any]) -> Any:
        key = (namespace, scope)
        with self._lock:
            if key in self._entries:
                self._hits += 1
                return self._entries[key]
            self._misses += 1
        value = compute()
        with self._lock:
            # A concurrent fetch may have stored first; keep that one.
            return self._entries.setdefault(key, value)

    def drop(self, namespace: str, scope: Hashable) -> bool:
        with self._lock:
            return self._entries.pop((namespace, scope), None) is not None

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "capacity": self._entries.maxsize,
                "hits": self._hits,
                "misses": self._misses,
                "hitRate": round(100.0 * self._hits / lookups, 2) if lookups else 0.0,
            }


_cache = ScopedCache(
    ttl_seconds=_env_bounded("CACHE_TTL_SECONDS", 30, 1, 3600),
    max_items=_env_bounded("CACHE_MAX_ITEMS", 10_000, 100, 500_000),
)


def cached(namespace: str, scope: Hashable, compute: Callable[[], Any]) -> Any:
    return _cache.fetch(namespace, scope, compute)


def invalidate(namespace: str, scope: Hashable) -> bool:
    return _cache.drop(namespace, scope)


def cache_clear() -> None:
    _cache.reset()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
