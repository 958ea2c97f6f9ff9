"""
In-process LRU caches for derived read models (video gallery, playlists,
homepage fragments). One registry per process; invalidation clears keys
across every registered cache.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional, Tuple

from vidsync.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_MISSING = object()


class LRUCache:
    """Size-bounded mapping with a per-entry TTL."""

    def __init__(self, name: str, max_entries: int = 512, ttl_seconds: Optional[float] = None):
        self.name = name
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._data: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key, _MISSING)
            if entry is _MISSING:
                return default
            stored_at, value = entry
            if self.ttl_seconds is not None and time.monotonic() - stored_at > self.ttl_seconds:
                del self._data[key]
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = (time.monotonic(), value)
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, _MISSING) is not _MISSING

    def clear(self) -> int:
        with self._lock:
            count = len(self._data)
            self._data.clear()
            return count

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._data)


class LocalCacheRegistry:
    def __init__(self):
        self._caches: Dict[str, LRUCache] = {}

    def register(self, name: str, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None) -> LRUCache:
        if name not in self._caches:
            self._caches[name] = LRUCache(
                name,
                max_entries=max_entries or settings.local_cache_max_entries,
                ttl_seconds=ttl_seconds if ttl_seconds is not None else settings.local_cache_ttl_seconds,
            )
        return self._caches[name]

    def get(self, name: str) -> Optional[LRUCache]:
        return self._caches.get(name)

    def invalidate(self, keys: Iterable[str]) -> int:
        """Delete each key from every cache; returns entries removed."""
        removed = 0
        for key in keys:
            for cache in self._caches.values():
                if cache.delete(key):
                    removed += 1
        return removed

    def clear_all(self) -> int:
        return sum(cache.clear() for cache in self._caches.values())


cache_registry = LocalCacheRegistry()
video_cache = cache_registry.register("videos")
playlist_cache = cache_registry.register("playlists")
