"""Database helpers for the durable cache tier."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import extras, pool

from ownerscout.cache.entry import CacheEntry
from ownerscout.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _to_timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


_CREATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    id BIGSERIAL PRIMARY KEY,
    cache_key TEXT UNIQUE NOT NULL,
    payload JSONB NOT NULL,
    query_parameters JSONB,
    size_bytes INTEGER NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL,
    accessed_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_entries_expires ON cache_entries(expires_at);
CREATE INDEX IF NOT EXISTS idx_cache_entries_created ON cache_entries(created_at, id);
"""

_UPSERT_ENTRY = """
INSERT INTO cache_entries (
    cache_key,
    payload,
    query_parameters,
    size_bytes,
    access_count,
    created_at,
    accessed_at,
    expires_at
) VALUES (
    %(cache_key)s,
    %(payload)s,
    %(query_parameters)s,
    %(size_bytes)s,
    %(access_count)s,
    %(created_at)s,
    %(accessed_at)s,
    %(expires_at)s
)
ON CONFLICT (cache_key) DO UPDATE SET
    payload = EXCLUDED.payload,
    query_parameters = COALESCE(EXCLUDED.query_parameters, cache_entries.query_parameters),
    size_bytes = EXCLUDED.size_bytes,
    access_count = EXCLUDED.access_count,
    created_at = EXCLUDED.created_at,
    accessed_at = EXCLUDED.accessed_at,
    expires_at = EXCLUDED.expires_at;
"""

_SELECT_ENTRY = """
SELECT cache_key, payload, created_at, accessed_at, expires_at, access_count
FROM cache_entries
WHERE cache_key = %(cache_key)s;
"""

_TOUCH_ENTRY = """
UPDATE cache_entries
SET accessed_at = %(accessed_at)s, access_count = %(access_count)s
WHERE cache_key = %(cache_key)s;
"""

_DELETE_ENTRY = "DELETE FROM cache_entries WHERE cache_key = %(cache_key)s;"
_DELETE_EXPIRED = "DELETE FROM cache_entries WHERE expires_at <= %(now)s;"
_SELECT_OLDEST = "SELECT cache_key, size_bytes FROM cache_entries ORDER BY created_at, id;"
_CLEAR = "DELETE FROM cache_entries;"
_TOTAL_SIZE = "SELECT COALESCE(SUM(size_bytes), 0) FROM cache_entries;"
_COUNT = "SELECT COUNT(*) FROM cache_entries;"


class PostgresCacheStore:
    """Row-per-entry persistence for ``DurableCache`` (last write wins)."""

    def _execute(self, sql: str, params: Optional[Dict[str, Any]] = None, *, fetch: Optional[str] = None):
        with get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    if fetch == "one":
                        result = cur.fetchone()
                    elif fetch == "all":
                        result = cur.fetchall()
                    else:
                        result = cur.rowcount
                conn.commit()
            except psycopg2.Error:
                conn.rollback()
                raise
        return result

    def ensure_schema(self) -> None:
        self._execute(_CREATE_SCHEMA)
        logger.info("Ensured cache_entries schema")

    def fetch(self, key: str) -> Optional[CacheEntry]:
        row = self._execute(_SELECT_ENTRY, {"cache_key": key}, fetch="one")
        if not row:
            return None
        cache_key, payload, created_at, accessed_at, expires_at, access_count = row
        return CacheEntry(
            key=cache_key,
            value=payload,
            created_at=_to_timestamp(created_at),
            accessed_at=_to_timestamp(accessed_at),
            expires_at=_to_timestamp(expires_at),
            access_count=access_count,
        )

    def upsert(self, entry: CacheEntry, size_bytes: int, query_parameters: Optional[Dict[str, Any]] = None) -> None:
        params = {
            "cache_key": entry.key,
            "payload": extras.Json(entry.value),
            "query_parameters": extras.Json(query_parameters) if query_parameters is not None else None,
            "size_bytes": size_bytes,
            "access_count": entry.access_count,
            "created_at": _to_datetime(entry.created_at),
            "accessed_at": _to_datetime(entry.accessed_at),
            "expires_at": _to_datetime(entry.expires_at),
        }
        self._execute(_UPSERT_ENTRY, params)
        logger.debug("Upserted cache entry %s (%d bytes)", entry.key, size_bytes)

    def touch(self, key: str, accessed_at: float, access_count: int) -> None:
        self._execute(
            _TOUCH_ENTRY,
            {"cache_key": key, "accessed_at": _to_datetime(accessed_at), "access_count": access_count},
        )

    def delete(self, key: str) -> bool:
        return self._execute(_DELETE_ENTRY, {"cache_key": key}) > 0

    def delete_expired(self, now: float) -> int:
        return self._execute(_DELETE_EXPIRED, {"now": _to_datetime(now)})

    def oldest_entries(self) -> List[Tuple[str, int]]:
        rows = self._execute(_SELECT_OLDEST, fetch="all")
        return [(key, int(size)) for key, size in rows]

    def clear(self) -> None:
        self._execute(_CLEAR)

    def total_size(self) -> int:
        row = self._execute(_TOTAL_SIZE, fetch="one")
        return int(row[0]) if row else 0

    def count(self) -> int:
        row = self._execute(_COUNT, fetch="one")
        return int(row[0]) if row else 0
