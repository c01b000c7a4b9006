import sys
from pathlib import Path

import pytest

# Ensure `ownerscout` is importable when running pytest from the repository root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ownerscout.cache.entry import CacheEntry  # noqa: E402


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class InMemoryStore:
    """Store double honouring the durable-tier store contract."""

    def __init__(self):
        self.rows = {}
        self.schema_calls = 0
        self.touches = []
        self.fail_upsert = False
        self.fail_fetch = False

    def ensure_schema(self):
        self.schema_calls += 1

    def fetch(self, key):
        if self.fail_fetch:
            raise RuntimeError("store unavailable")
        row = self.rows.get(key)
        if row is None:
            return None
        return CacheEntry.from_dict(row["entry"])

    def upsert(self, entry, size_bytes, query_parameters=None):
        if self.fail_upsert:
            raise RuntimeError("disk full")
        self.rows.pop(entry.key, None)
        self.rows[entry.key] = {
            "entry": entry.to_dict(),
            "size": size_bytes,
            "query_parameters": query_parameters,
        }

    def touch(self, key, accessed_at, access_count):
        self.touches.append((key, accessed_at, access_count))
        if key in self.rows:
            self.rows[key]["entry"]["accessed_at"] = accessed_at
            self.rows[key]["entry"]["access_count"] = access_count

    def delete(self, key):
        return self.rows.pop(key, None) is not None

    def delete_expired(self, now):
        expired = [key for key, row in self.rows.items() if row["entry"]["expires_at"] <= now]
        for key in expired:
            del self.rows[key]
        return len(expired)

    def oldest_entries(self):
        ordered = sorted(self.rows.items(), key=lambda item: item[1]["entry"]["created_at"])
        return [(key, row["size"]) for key, row in ordered]

    def clear(self):
        self.rows.clear()

    def total_size(self):
        return sum(row["size"] for row in self.rows.values())

    def count(self):
        return len(self.rows)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()
