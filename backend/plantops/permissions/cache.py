from __future__ import annotations

from threading import Lock
from typing import Any, Hashable

from cachetools import TTLCache


class ThreadSafeTTLCache:
    """Wrap TTLCache with a lock; a ttl of 0 disables caching entirely."""

    def __init__(self, *, maxsize: int, ttl: int) -> None:
        self.enabled = ttl > 0
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=max(ttl, 1))
        self._lock = Lock()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return self.enabled and key in self._cache

    def get(self, key: Hashable, default: Any = None) -> Any:
        if not self.enabled:
            return default
        with self._lock:
            return self._cache.get(key, default)

    def __setitem__(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._cache[key] = value

    def pop(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._cache.pop(key, default)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
