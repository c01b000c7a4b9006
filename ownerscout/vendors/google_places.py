"""Client utilities for the Google Places, Area Insights and Geocoding APIs."""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_INSIGHTS_URL = "https://areainsights.googleapis.com/v1:computeInsights"
_PLACES_URL = "https://places.googleapis.com/v1/places"
_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

REQUEST_TIMEOUT = 10
INSIGHTS_FIELD_MASK = "count,placeInsights"
DETAIL_FIELD_MASK = (
    "id,displayName,types,rating,userRatingCount,priceLevel,formattedAddress,"
    "location,websiteUri,nationalPhoneNumber,businessStatus"
)
CAPACITY_MARKERS = ("RESOURCE_EXHAUSTED", "100 places")


class GooglePlacesError(RuntimeError):
    """Raised when a Google API returns a non-successful response."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class CapacityExceededError(GooglePlacesError):
    """The aggregate query matched more places than one request may return."""


def is_capacity_exceeded(status: int, body: str) -> bool:
    return status == 429 and any(marker in (body or "") for marker in CAPACITY_MARKERS)


def build_insights_body(
    *,
    latitude: float,
    longitude: float,
    radius_meters: float,
    included_types: Iterable[str],
    excluded_primary_types: Iterable[str],
    min_rating: float,
    max_rating: float,
    insight: str,
    price_levels: Iterable[str] = (),
    operating_status: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "insights": [insight],
        "filter": {
            "locationFilter": {
                "circle": {
                    "latLng": {"latitude": latitude, "longitude": longitude},
                    "radius": radius_meters,
                }
            },
            "typeFilter": {
                "includedTypes": list(included_types),
                "excludedPrimaryTypes": list(excluded_primary_types),
            },
            "ratingFilter": {"minRating": min_rating, "maxRating": max_rating},
        },
    }
    price_levels = list(price_levels)
    if price_levels:
        body["filter"]["priceLevels"] = price_levels
    if operating_status:
        body["filter"]["operatingStatus"] = [f"OPERATING_STATUS_{operating_status}"]
    return body


def compute_insights(body: Dict[str, Any], api_key: str, timeout: float = REQUEST_TIMEOUT) -> Dict[str, Any]:
    response = _SESSION.post(
        _INSIGHTS_URL,
        params={"key": api_key},
        json=body,
        headers={"X-Goog-FieldMask": INSIGHTS_FIELD_MASK},
        timeout=timeout,
    )
    if is_capacity_exceeded(response.status_code, response.text):
        raise CapacityExceededError("Aggregate query exceeds the per-request place limit", 429, response.text)
    if not response.ok:
        logger.error("compute_insights failed: status=%s, body=%s", response.status_code, response.text[:500])
        raise GooglePlacesError(
            f"Places Aggregate API error: {response.status_code}",
            response.status_code,
            response.text,
        )
    return response.json()


def place_details(place_id: str, api_key: str, timeout: float = REQUEST_TIMEOUT) -> Optional[Dict[str, Any]]:
    """Fetch one place; ``None`` when the API does not know the id."""
    response = _SESSION.get(
        f"{_PLACES_URL}/{place_id}",
        params={"key": api_key},
        headers={"X-Goog-FieldMask": DETAIL_FIELD_MASK},
        timeout=timeout,
    )
    if response.status_code == 404:
        logger.debug("place_details: %s not found", place_id)
        return None
    if not response.ok:
        logger.error("place_details failed: status=%s, body=%s", response.status_code, response.text[:500])
        raise GooglePlacesError(f"Place Details API error: {response.status_code}", response.status_code, response.text)
    return response.json()


def geocode(address: str, api_key: str, timeout: float = REQUEST_TIMEOUT) -> Optional[Tuple[float, float]]:
    params = {"address": address, "key": api_key}
    response = _SESSION.get(_GEOCODE_URL, params=params, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status == "ZERO_RESULTS":
        return None
    if status != "OK":
        logger.error("geocode failed: status=%s, error_message=%s", status, payload.get("error_message"))
        raise GooglePlacesError(payload.get("error_message") or status, response.status_code, str(payload))
    location = payload["results"][0]["geometry"]["location"]
    return float(location["lat"]), float(location["lng"])
