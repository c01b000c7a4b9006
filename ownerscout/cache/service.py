"""Unified two-tier cache.

Reads check the in-process tier first and fall back to the durable tier,
promoting durable hits back into memory with their remaining lifetime.
Writes land in memory synchronously and are handed to a background executor
for the durable tier; those background writes never raise into callers.

Usage:
    cache = CacheService(MemoryCache(), DurableCache(PostgresCacheStore()))
    cache.set(key, payload)
    payload = cache.get(key)
    cache.close()
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Optional, Set

from ownerscout.cache.durable_tier import DurableCache
from ownerscout.cache.fast_tier import MemoryCache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    fast_tier_entries: int
    durable_tier_entries: int
    durable_tier_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CacheService:
    def __init__(
        self,
        memory: MemoryCache,
        durable: Optional[DurableCache] = None,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.time,
        enable_metrics: bool = True,
    ) -> None:
        self.memory = memory
        self.durable = durable
        self.default_ttl = default_ttl
        self.enable_metrics = enable_metrics
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="cache-writer")
        self._pending: Set[Future] = set()
        self._pending_lock = Lock()
        self._stats_lock = Lock()
        self._hits = 0
        self._misses = 0

    # ---------- Reads ----------

    def get(self, key: str) -> Optional[Any]:
        value = self.memory.get(key)
        if value is not None:
            self._record_hit()
            logger.debug("Memory cache hit for %s", key)
            return value

        entry = None
        if self.durable is not None:
            try:
                entry = self.durable.get_entry(key)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Durable cache read failed for %s, treating as miss: %s", key, exc)

        if entry is None:
            self._record_miss()
            return None

        self._record_hit()
        remaining = entry.remaining_ttl(self._clock())
        if remaining > 0:
            self.memory.set(key, entry.value, remaining)
            logger.debug("Promoted %s from durable cache (%.0fs remaining)", key, remaining)
        return entry.value

    def has(self, key: str) -> bool:
        if self.memory.has(key):
            return True
        if self.durable is None:
            return False
        try:
            return self.durable.has(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Durable cache lookup failed for %s: %s", key, exc)
            return False

    # ---------- Writes ----------

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        query_parameters: Optional[Dict[str, Any]] = None,
    ) -> None:
        effective_ttl = ttl if ttl is not None else self.default_ttl
        self.memory.set(key, value, effective_ttl)

        if self.durable is None:
            return

        future = self._executor.submit(self._write_durable_safe, key, value, effective_ttl, query_parameters)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard_pending)

    def delete(self, key: str) -> bool:
        removed = self.memory.delete(key)
        if self.durable is not None:
            # A queued write for this key would otherwise land after the delete.
            self.flush()
            removed = self.durable.delete(key) or removed
        return removed

    def get_or_compute(self, key: str, compute: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Return the cached value, or compute, store and return it.

        Concurrent callers missing on the same key may each run ``compute``.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = compute()
        self.set(key, value, ttl)
        return value

    def warm(self, entries: Iterable[Dict[str, Any]]) -> None:
        """Pre-load ``{"key", "value", "ttl"?}`` mappings."""
        for item in entries:
            self.set(item["key"], item["value"], item.get("ttl"))

    def clear(self) -> None:
        self.flush()
        self.memory.clear()
        if self.durable is not None:
            self.durable.clear()
        with self._stats_lock:
            self._hits = 0
            self._misses = 0
        logger.info("Cache cleared")

    # ---------- Stats & lifecycle ----------

    def get_stats(self) -> CacheStats:
        with self._stats_lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        hit_rate = hits / total if total > 0 else 0.0

        durable_entries = 0
        durable_bytes = 0
        if self.durable is not None:
            try:
                durable_entries = self.durable.get_entry_count()
                durable_bytes = self.durable.get_size()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Unable to read durable cache stats: %s", exc)

        return CacheStats(
            hits=hits,
            misses=misses,
            hit_rate=hit_rate,
            fast_tier_entries=self.memory.size,
            durable_tier_entries=durable_entries,
            durable_tier_bytes=durable_bytes,
        )

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until queued durable writes have finished."""
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self.flush()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "CacheService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()

    # ---------- Internals ----------

    def _write_durable_safe(
        self,
        key: str,
        value: Any,
        ttl: float,
        query_parameters: Optional[Dict[str, Any]],
    ) -> None:
        try:
            self.durable.set(key, value, ttl, query_parameters)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Background durable cache write failed for %s: %s", key, exc)

    def _discard_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _record_hit(self) -> None:
        if self.enable_metrics:
            with self._stats_lock:
                self._hits += 1

    def _record_miss(self) -> None:
        if self.enable_metrics:
            with self._stats_lock:
                self._misses += 1
