"""Bounded in-process cache with least-recently-accessed eviction."""

from __future__ import annotations

import logging
import time
from threading import RLock
from typing import Any, Callable, Dict, Optional

from ownerscout.cache.entry import CacheEntry, wrap

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100


class MemoryCache:
    """Fast tier: lives and dies with the process.

    ``set`` evicts exactly one entry when the live entry count has reached
    ``max_entries``: the one with the smallest ``accessed_at``, first inserted
    on ties.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, *, clock: Callable[[], float] = time.time) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if not entry.is_live(now):
                del self._entries[key]
                return None
            entry.touch(now)
            return entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry without touching it."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_live(self._clock()):
                return None
            return entry

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            if self.size >= self.max_entries:
                self._evict_lru()
            self._entries[key] = wrap(key, value, ttl_seconds, self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.is_live(self._clock()):
                del self._entries[key]
                return False
            return True

    @property
    def size(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if not entry.is_live(now)]
            for key in expired:
                del self._entries[key]
            return len(self._entries)

    def _evict_lru(self) -> None:
        oldest_key: Optional[str] = None
        oldest_time = float("inf")
        for key, entry in self._entries.items():
            if entry.accessed_at < oldest_time:
                oldest_time = entry.accessed_at
                oldest_key = key

        if oldest_key is not None:
            del self._entries[oldest_key]
            logger.debug("Evicted least recently used key %s from memory cache", oldest_key)
