"""Core data models shared by the prospecting search pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ResultShape(str, Enum):
    COUNT = "INSIGHT_COUNT"
    PLACES = "INSIGHT_PLACES"


class PriceLevel(str, Enum):
    FREE = "PRICE_LEVEL_FREE"
    INEXPENSIVE = "PRICE_LEVEL_INEXPENSIVE"
    MODERATE = "PRICE_LEVEL_MODERATE"
    EXPENSIVE = "PRICE_LEVEL_EXPENSIVE"
    VERY_EXPENSIVE = "PRICE_LEVEL_VERY_EXPENSIVE"


class OperationalStatus(str, Enum):
    OPERATIONAL = "OPERATIONAL"
    CLOSED_TEMPORARILY = "CLOSED_TEMPORARILY"
    CLOSED_PERMANENTLY = "CLOSED_PERMANENTLY"


@dataclass(frozen=True, slots=True)
class GeoLocation:
    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class SearchArea:
    """Where to search: a ZIP code token, a radius and optionally a known center."""

    zip_code: str
    radius_km: float
    center: Optional[GeoLocation] = None


def _flag(data: Dict[str, Any], name: str) -> bool:
    value = data.get(name, False)
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean")
    return value


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """User-facing filters; the rating range is what bisection narrows."""

    included_types: List[str] = field(default_factory=lambda: ["restaurant"])
    min_rating: float = 3.8
    max_rating: float = 4.8
    price_levels: List[PriceLevel] = field(default_factory=list)
    status: OperationalStatus = OperationalStatus.OPERATIONAL
    independent_only: bool = False
    require_no_first_party_ordering: bool = False
    require_third_party_delivery: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "included_types": list(self.included_types),
            "min_rating": self.min_rating,
            "max_rating": self.max_rating,
            "price_levels": [PriceLevel(level).value for level in self.price_levels],
            "status": OperationalStatus(self.status).value,
            "independent_only": self.independent_only,
            "require_no_first_party_ordering": self.require_no_first_party_ordering,
            "require_third_party_delivery": self.require_third_party_delivery,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchFilters":
        """Build filters from request-style input; raises ``ValueError`` on bad values."""
        defaults = cls()
        included_types = data.get("included_types", defaults.included_types)
        if isinstance(included_types, str):
            included_types = [included_types]
        return cls(
            included_types=[str(t).strip() for t in included_types if str(t).strip()],
            min_rating=float(data.get("min_rating", defaults.min_rating)),
            max_rating=float(data.get("max_rating", defaults.max_rating)),
            price_levels=[PriceLevel(level) for level in data.get("price_levels") or []],
            status=OperationalStatus(data.get("status") or defaults.status),
            independent_only=_flag(data, "independent_only"),
            require_no_first_party_ordering=_flag(data, "require_no_first_party_ordering"),
            require_third_party_delivery=_flag(data, "require_third_party_delivery"),
        )


@dataclass(slots=True)
class TechStackProfile:
    """What a restaurant website runs, as far as the crawler could tell."""

    website_platform: str = "Unknown"
    online_ordering: List[str] = field(default_factory=list)
    reservations: List[str] = field(default_factory=list)
    delivery: List[str] = field(default_factory=list)
    loyalty_or_crm: List[str] = field(default_factory=list)
    pos: List[str] = field(default_factory=list)
    other_scripts: List[str] = field(default_factory=list)
    confidence: int = 10
    has_first_party_ordering: bool = False

    @classmethod
    def unknown(cls) -> "TechStackProfile":
        """Low-confidence default used when a site can't be crawled."""
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TechStackProfile":
        return cls(
            website_platform=data.get("website_platform", "Unknown"),
            online_ordering=list(data.get("online_ordering", [])),
            reservations=list(data.get("reservations", [])),
            delivery=list(data.get("delivery", [])),
            loyalty_or_crm=list(data.get("loyalty_or_crm", [])),
            pos=list(data.get("pos", [])),
            other_scripts=list(data.get("other_scripts", [])),
            confidence=int(data.get("confidence", 10)),
            has_first_party_ordering=_flag(data, "has_first_party_ordering"),
        )


@dataclass(frozen=True, slots=True)
class FitAnalysis:
    score: int
    reason: str
    is_independent: bool


@dataclass(frozen=True, slots=True)
class ChainDetectionResult:
    is_chain: bool
    confidence: int
    reason: str
    chain_name: Optional[str] = None


@dataclass(slots=True)
class PlaceDetails:
    """Normalized snapshot of a Places API detail record."""

    place_id: str
    name: str
    types: List[str] = field(default_factory=list)
    rating: float = 0.0
    user_rating_count: int = 0
    price_level: Optional[PriceLevel] = None
    address: str = ""
    location: GeoLocation = field(default_factory=lambda: GeoLocation(0.0, 0.0))
    operational_status: OperationalStatus = OperationalStatus.OPERATIONAL
    website: Optional[str] = None
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price_level"] = self.price_level.value if self.price_level else None
        data["operational_status"] = OperationalStatus(self.operational_status).value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaceDetails":
        location = data.get("location") or {}
        price_level = data.get("price_level")
        return cls(
            place_id=data["place_id"],
            name=data.get("name", "Unknown"),
            types=list(data.get("types", [])),
            rating=float(data.get("rating") or 0.0),
            user_rating_count=int(data.get("user_rating_count") or 0),
            price_level=PriceLevel(price_level) if price_level else None,
            address=data.get("address", ""),
            location=GeoLocation(float(location.get("lat", 0.0)), float(location.get("lng", 0.0))),
            operational_status=OperationalStatus(data.get("operational_status") or OperationalStatus.OPERATIONAL),
            website=data.get("website"),
            phone=data.get("phone"),
        )


@dataclass(frozen=True, slots=True)
class EnrichedPlace:
    details: PlaceDetails
    tech_stack: TechStackProfile
    fit: FitAnalysis

    @property
    def place_id(self) -> str:
        return self.details.place_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "details": self.details.to_dict(),
            "tech_stack": asdict(self.tech_stack),
            "fit": asdict(self.fit),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichedPlace":
        fit = data["fit"]
        return cls(
            details=PlaceDetails.from_dict(data["details"]),
            tech_stack=TechStackProfile.from_dict(data["tech_stack"]),
            fit=FitAnalysis(score=int(fit["score"]), reason=fit["reason"], is_independent=bool(fit["is_independent"])),
        )


@dataclass(frozen=True, slots=True)
class FitStatistics:
    high_fit_count: int = 0
    average_score: int = 0


@dataclass(frozen=True, slots=True)
class AggregateResult:
    """One search answer. ``places`` is only populated for ``ResultShape.PLACES``."""

    result_shape: ResultShape
    total_count: int
    breakdown_by_category: Dict[str, int] = field(default_factory=dict)
    places: Optional[List[EnrichedPlace]] = None
    fit_statistics: Optional[FitStatistics] = None
    failed_partitions: int = 0

    @classmethod
    def empty(cls, result_shape: ResultShape, failed_partitions: int = 0) -> "AggregateResult":
        if result_shape == ResultShape.PLACES:
            return cls(result_shape, 0, {}, [], FitStatistics(), failed_partitions)
        return cls(result_shape, 0, {}, failed_partitions=failed_partitions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_shape": ResultShape(self.result_shape).value,
            "total_count": self.total_count,
            "breakdown_by_category": dict(self.breakdown_by_category),
            "places": [place.to_dict() for place in self.places] if self.places is not None else None,
            "fit_statistics": asdict(self.fit_statistics) if self.fit_statistics is not None else None,
            "failed_partitions": self.failed_partitions,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregateResult":
        places = data.get("places")
        stats = data.get("fit_statistics")
        return cls(
            result_shape=ResultShape(data["result_shape"]),
            total_count=int(data.get("total_count", 0)),
            breakdown_by_category={k: int(v) for k, v in (data.get("breakdown_by_category") or {}).items()},
            places=[EnrichedPlace.from_dict(p) for p in places] if places is not None else None,
            fit_statistics=FitStatistics(**stats) if stats is not None else None,
            failed_partitions=int(data.get("failed_partitions", 0)),
        )
