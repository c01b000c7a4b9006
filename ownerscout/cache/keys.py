"""Deterministic cache keys for search queries."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from ownerscout.models import ResultShape, SearchArea, SearchFilters


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def canonicalize(value: Any) -> Any:
    """Sort mapping keys at every level and array elements by serialized form."""
    if isinstance(value, Mapping):
        return {str(key): canonicalize(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple, set, frozenset)):
        return sorted((canonicalize(item) for item in value), key=_serialize)
    return value


def build_cache_key(
    location_token: str,
    radius_km: float,
    filters: Mapping[str, Any],
    result_shape: str,
) -> str:
    payload = {
        "location": location_token,
        "radius_km": float(radius_km),
        "filters": canonicalize(filters),
        "result_shape": result_shape,
    }
    return hashlib.sha256(_serialize(payload).encode("utf-8")).hexdigest()


def location_token(area: SearchArea) -> str:
    """ZIP code, plus the explicit center when one overrides geocoding."""
    token = area.zip_code.strip()
    if area.center is not None:
        token = f"{token}@{area.center.lat:.6f},{area.center.lng:.6f}"
    return token


def build_search_cache_key(area: SearchArea, filters: SearchFilters, result_shape: ResultShape) -> str:
    return build_cache_key(
        location_token(area),
        area.radius_km,
        filters.to_dict(),
        ResultShape(result_shape).value,
    )


def place_cache_key(place_id: str) -> str:
    return f"place:{place_id}"


def geocode_cache_key(address: str) -> str:
    return f"geo:{address.strip().lower()}"
