"""Utilities for transforming Places API responses into domain models."""

import logging
from typing import Any, Dict, Iterable, List, Optional

import phonenumbers

from ownerscout.models import GeoLocation, OperationalStatus, PlaceDetails, PriceLevel

logger = logging.getLogger(__name__)

_IGNORE_TYPES = {"point_of_interest", "establishment", "food", "premise"}


def _extract_primary_type(types: Iterable[str]) -> Optional[str]:
    for type_name in types or []:
        if type_name not in _IGNORE_TYPES:
            return type_name
    return None


def parse_price_level(raw: Any) -> Optional[PriceLevel]:
    if not raw:
        return None
    try:
        return PriceLevel(raw)
    except ValueError:
        logger.debug("Unknown price level %r", raw)
        return None


def parse_operational_status(raw: Any) -> OperationalStatus:
    try:
        return OperationalStatus(raw) if raw else OperationalStatus.OPERATIONAL
    except ValueError:
        return OperationalStatus.OPERATIONAL


def normalize_phone(raw: Optional[str], default_region: Optional[str]) -> Optional[str]:
    """Return an E.164 phone string, or the stripped input when it can't be parsed."""
    if not raw or not raw.strip():
        return None
    try:
        parsed = phonenumbers.parse(raw, default_region)
    except phonenumbers.NumberParseException:
        return raw.strip()
    if not phonenumbers.is_possible_number(parsed):
        return raw.strip()
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def place_id_from_reference(reference: str) -> str:
    """``places/ChIJ...`` -> ``ChIJ...``."""
    return reference.split("/", 1)[1] if "/" in reference else reference


def extract_place_references(payload: Dict[str, Any]) -> List[str]:
    insights = payload.get("placeInsights") or payload.get("place_insights") or []
    references = []
    for insight in insights:
        if not isinstance(insight, dict):
            continue
        reference = insight.get("place") or insight.get("name") or insight.get("id")
        if reference:
            references.append(reference)
    return references


def to_place_details(result: Dict[str, Any], default_phone_region: Optional[str] = None) -> PlaceDetails:
    location = result.get("location") or {}
    types = result.get("types") or []
    primary = _extract_primary_type(types)
    if primary and types and types[0] != primary:
        types = [primary] + [t for t in types if t != primary]

    return PlaceDetails(
        place_id=result.get("id", ""),
        name=(result.get("displayName") or {}).get("text") or "Unknown",
        types=list(types),
        rating=float(result.get("rating") or 0.0),
        user_rating_count=int(result.get("userRatingCount") or 0),
        price_level=parse_price_level(result.get("priceLevel")),
        address=result.get("formattedAddress") or "",
        location=GeoLocation(float(location.get("latitude") or 0.0), float(location.get("longitude") or 0.0)),
        operational_status=parse_operational_status(result.get("businessStatus")),
        website=result.get("websiteUri") or None,
        phone=normalize_phone(result.get("nationalPhoneNumber"), default_phone_region),
    )
