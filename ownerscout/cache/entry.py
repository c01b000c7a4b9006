"""Timestamped, expiring value wrapper shared by every cache tier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    accessed_at: float
    expires_at: float
    access_count: int = 0

    def is_live(self, now: float) -> bool:
        return now < self.expires_at

    def touch(self, now: float) -> None:
        """Record a read; LRU decisions use the new ``accessed_at``."""
        self.accessed_at = now
        self.access_count += 1

    def remaining_ttl(self, now: float) -> float:
        return self.expires_at - now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "created_at": self.created_at,
            "accessed_at": self.accessed_at,
            "expires_at": self.expires_at,
            "access_count": self.access_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            value=data["value"],
            created_at=float(data["created_at"]),
            accessed_at=float(data["accessed_at"]),
            expires_at=float(data["expires_at"]),
            access_count=int(data.get("access_count", 0)),
        )


def wrap(key: str, value: Any, ttl_seconds: float, now: float) -> CacheEntry:
    return CacheEntry(
        key=key,
        value=value,
        created_at=now,
        accessed_at=now,
        expires_at=now + ttl_seconds,
        access_count=0,
    )
