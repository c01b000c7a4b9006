"""Byte-budgeted persistent cache tier.

The tier owns TTL and eviction policy; persistence is delegated to a store
object (``ownerscout.core.db.PostgresCacheStore`` in production) exposing:

- ``ensure_schema()``
- ``fetch(key) -> Optional[CacheEntry]``
- ``upsert(entry, size_bytes, query_parameters)``
- ``touch(key, accessed_at, access_count)``
- ``delete(key) -> bool``
- ``delete_expired(now) -> int``
- ``oldest_entries() -> Iterable[Tuple[str, int]]`` (oldest insert first)
- ``clear()``, ``total_size() -> int``, ``count() -> int``
"""

from __future__ import annotations

import json
import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional

from ownerscout.cache.entry import CacheEntry, wrap

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 500 * 1024 * 1024
EVICTION_FRACTION = 0.1


def estimate_entry_size(entry: CacheEntry) -> int:
    """UTF-8 byte length of the entry's JSON form."""
    serialized = json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=False, default=str)
    return len(serialized.encode("utf-8"))


class DurableCache:
    """Durable tier: survives restarts, shared between worker instances.

    Reads propagate store errors so the facade can count them as misses;
    writes log and swallow them.
    """

    def __init__(
        self,
        store: Any,
        max_bytes: int = DEFAULT_MAX_BYTES,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.max_bytes = max_bytes
        self._clock = clock
        self._ready = False
        self._init_lock = Lock()

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        with self._init_lock:
            if not self._ready:
                self.store.ensure_schema()
                self._ready = True
                logger.info("Durable cache tier initialised")

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        self._ensure_ready()
        entry = self.store.fetch(key)
        if entry is None:
            return None

        now = self._clock()
        if not entry.is_live(now):
            self._delete_quietly(key)
            return None

        entry.touch(now)
        try:
            self.store.touch(key, entry.accessed_at, entry.access_count)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to persist access stats for %s: %s", key, exc)
        return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def has(self, key: str) -> bool:
        self._ensure_ready()
        entry = self.store.fetch(key)
        return entry is not None and entry.is_live(self._clock())

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        query_parameters: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            self._ensure_ready()
            self._make_room()
            entry = wrap(key, value, ttl_seconds, self._clock())
            self.store.upsert(entry, estimate_entry_size(entry), query_parameters)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to write %s to durable cache: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        self._ensure_ready()
        return self.store.delete(key)

    def clear(self) -> None:
        self._ensure_ready()
        self.store.clear()

    def get_size(self) -> int:
        self._ensure_ready()
        return self.store.total_size()

    def get_entry_count(self) -> int:
        self._ensure_ready()
        return self.store.count()

    def _make_room(self) -> None:
        if self.store.total_size() < self.max_bytes:
            return

        purged = self.store.delete_expired(self._clock())
        if purged:
            logger.info("Purged %d expired durable cache entries", purged)
        if self.store.total_size() < self.max_bytes:
            return

        self._evict_oldest(int(self.max_bytes * EVICTION_FRACTION))

    def _evict_oldest(self, target_bytes: int) -> None:
        freed = 0
        evicted = 0
        for key, size_bytes in self.store.oldest_entries():
            if freed >= target_bytes:
                break
            if self.store.delete(key):
                freed += size_bytes
                evicted += 1
        logger.info("Evicted %d durable cache entries (%d bytes) to stay under budget", evicted, freed)

    def _delete_quietly(self, key: str) -> None:
        try:
            self.store.delete(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to delete expired durable cache entry %s: %s", key, exc)
