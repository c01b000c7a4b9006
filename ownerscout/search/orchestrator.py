"""Adaptive rating-range search over the Places Aggregate API.

One aggregate request may only describe a bounded number of places. When
upstream reports that a rating range holds too many, the range is split at its
midpoint and both halves are searched on the next level. Levels are processed
breadth first: every range of a level is in flight at once on the branch pool,
and completed leaves are folded together in rating order at the end.

A failure of the top-level range propagates to the caller. A failure of any
narrower range only costs that slice of the result; it is counted in
``AggregateResult.failed_partitions`` and such results are never cached.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import requests

from ownerscout.cache.keys import build_search_cache_key, geocode_cache_key, place_cache_key
from ownerscout.cache.service import CacheService
from ownerscout.core.chain_detector import detect_chain
from ownerscout.core.tech_detector import TechDetector
from ownerscout.etl import transform
from ownerscout.models import (
    AggregateResult,
    ChainDetectionResult,
    EnrichedPlace,
    FitStatistics,
    GeoLocation,
    PlaceDetails,
    ResultShape,
    SearchArea,
    SearchFilters,
    TechStackProfile,
)
from ownerscout.search.merge import compute_fit_statistics, merge_results, rank_places
from ownerscout.search.scoring import calculate_fit_score
from ownerscout.vendors import google_places
from ownerscout.vendors.google_places import CapacityExceededError, GooglePlacesError

logger = logging.getLogger(__name__)

MAX_PLACES = 80
MAX_SPLIT_DEPTH = 6
MIN_SPLIT_WIDTH = 0.1
DEFAULT_INCLUDED_TYPE = "restaurant"
EXCLUDED_PRIMARY_TYPES = ("fast_food_restaurant",)
PLACE_TTL_SECONDS = 30 * 24 * 60 * 60


class LocationNotFoundError(ValueError):
    """The search area's ZIP code could not be resolved to coordinates."""


@dataclass(frozen=True)
class RatingRange:
    min_rating: float
    max_rating: float
    depth: int = 0

    @property
    def width(self) -> float:
        return self.max_rating - self.min_rating

    def can_split(self, max_depth: int, min_width: float) -> bool:
        return self.depth < max_depth and self.width >= min_width

    def split(self) -> Tuple["RatingRange", "RatingRange"]:
        # Both halves include the midpoint; merge deduplicates places sitting on it.
        mid = (self.min_rating + self.max_rating) / 2
        return (
            RatingRange(self.min_rating, mid, self.depth + 1),
            RatingRange(mid, self.max_rating, self.depth + 1),
        )


def passes_filters(place: EnrichedPlace, filters: SearchFilters) -> bool:
    if place.fit.score == 0:
        return False
    if filters.independent_only and not place.fit.is_independent:
        return False
    if filters.require_no_first_party_ordering and place.tech_stack.has_first_party_ordering:
        return False
    if filters.require_third_party_delivery and not place.tech_stack.delivery:
        return False
    return True


class SearchOrchestrator:
    def __init__(
        self,
        *,
        api_key: str,
        cache: Optional[CacheService] = None,
        tech_detector: Optional[TechDetector] = None,
        chain_detector: Callable[..., ChainDetectionResult] = detect_chain,
        max_places: int = MAX_PLACES,
        max_depth: int = MAX_SPLIT_DEPTH,
        min_split_width: float = MIN_SPLIT_WIDTH,
        request_timeout: float = google_places.REQUEST_TIMEOUT,
        place_ttl: float = PLACE_TTL_SECONDS,
        result_ttl: Optional[float] = None,
        default_phone_region: Optional[str] = "US",
        branch_workers: int = 4,
        detail_workers: int = 8,
    ) -> None:
        self.api_key = api_key
        self.cache = cache
        self.tech_detector = tech_detector or TechDetector()
        self.chain_detector = chain_detector
        self.max_places = max_places
        self.max_depth = max_depth
        self.min_split_width = min_split_width
        self.request_timeout = request_timeout
        self.place_ttl = place_ttl
        self.result_ttl = result_ttl
        self.default_phone_region = default_phone_region
        # Branch tasks wait on detail tasks, so the two must never share a pool.
        self._branch_pool = ThreadPoolExecutor(max_workers=branch_workers, thread_name_prefix="search-branch")
        self._detail_pool = ThreadPoolExecutor(max_workers=detail_workers, thread_name_prefix="search-detail")

    # ---------- Public API ----------

    def search(
        self,
        area: SearchArea,
        filters: SearchFilters,
        result_shape: ResultShape = ResultShape.PLACES,
    ) -> AggregateResult:
        shape = ResultShape(result_shape)
        if area.radius_km <= 0:
            raise ValueError("radius_km must be positive")
        if filters.min_rating > filters.max_rating:
            raise ValueError("min_rating must not exceed max_rating")

        cache_key = build_search_cache_key(area, filters, shape)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Serving search %s from cache", cache_key[:12])
                return AggregateResult.from_dict(cached)

        center = self.resolve_center(area)
        logger.info(
            "Searching zip=%s radius_km=%s rating=%.1f-%.1f shape=%s",
            area.zip_code,
            area.radius_km,
            filters.min_rating,
            filters.max_rating,
            shape.value,
        )
        result = self._run_levels(center, area, filters, shape)

        if result.failed_partitions:
            logger.warning(
                "Search for zip=%s degraded: %d partition(s) failed; result not cached",
                area.zip_code,
                result.failed_partitions,
            )
        elif self.cache is not None:
            self.cache.set(
                cache_key,
                result.to_dict(),
                self.result_ttl,
                query_parameters={
                    "zip_code": area.zip_code,
                    "radius_km": area.radius_km,
                    "filters": filters.to_dict(),
                    "result_shape": shape.value,
                },
            )

        logger.info("Search complete: total_count=%d", result.total_count)
        return result

    def resolve_center(self, area: SearchArea) -> GeoLocation:
        if area.center is not None:
            return area.center

        cache_key = geocode_cache_key(area.zip_code)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return GeoLocation(float(cached["lat"]), float(cached["lng"]))

        coordinates = google_places.geocode(area.zip_code, self.api_key, self.request_timeout)
        if coordinates is None:
            raise LocationNotFoundError(f"Could not geocode ZIP code {area.zip_code!r}")

        center = GeoLocation(*coordinates)
        if self.cache is not None:
            self.cache.set(cache_key, {"lat": center.lat, "lng": center.lng}, self.place_ttl)
        return center

    def close(self) -> None:
        self._branch_pool.shutdown(wait=True)
        self._detail_pool.shutdown(wait=True)
        self.tech_detector.close()

    def __enter__(self) -> "SearchOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()

    # ---------- Bisection ----------

    def _run_levels(
        self,
        center: GeoLocation,
        area: SearchArea,
        filters: SearchFilters,
        shape: ResultShape,
    ) -> AggregateResult:
        level = [RatingRange(filters.min_rating, filters.max_rating)]
        leaves: List[Tuple[RatingRange, AggregateResult]] = []

        while level:
            futures = [
                (rating_range, self._branch_pool.submit(self._run_partition, center, area, filters, shape, rating_range))
                for rating_range in level
            ]
            next_level: List[RatingRange] = []

            for rating_range, future in futures:
                try:
                    leaves.append((rating_range, future.result()))
                except CapacityExceededError:
                    if rating_range.can_split(self.max_depth, self.min_split_width):
                        lower, upper = rating_range.split()
                        logger.info(
                            "Range %.3f-%.3f over capacity, splitting at %.3f (depth %d)",
                            rating_range.min_rating,
                            rating_range.max_rating,
                            lower.max_rating,
                            rating_range.depth,
                        )
                        next_level.extend((lower, upper))
                        continue
                    if rating_range.depth == 0:
                        raise
                    logger.warning(
                        "Range %.3f-%.3f over capacity and cannot be split further; returning it empty",
                        rating_range.min_rating,
                        rating_range.max_rating,
                    )
                    leaves.append((rating_range, AggregateResult.empty(shape, failed_partitions=1)))
                except (GooglePlacesError, requests.RequestException) as exc:
                    if rating_range.depth == 0:
                        raise
                    logger.warning(
                        "Range %.3f-%.3f failed, returning it empty: %s",
                        rating_range.min_rating,
                        rating_range.max_rating,
                        exc,
                    )
                    leaves.append((rating_range, AggregateResult.empty(shape, failed_partitions=1)))

            level = next_level

        leaves.sort(key=lambda leaf: (leaf[0].min_rating, leaf[0].max_rating))
        result = leaves[0][1]
        for _, partial in leaves[1:]:
            result = merge_results(result, partial, self.max_places)
        return result

    def _run_partition(
        self,
        center: GeoLocation,
        area: SearchArea,
        filters: SearchFilters,
        shape: ResultShape,
        rating_range: RatingRange,
    ) -> AggregateResult:
        included_types = list(filters.included_types) or [DEFAULT_INCLUDED_TYPE]
        body = google_places.build_insights_body(
            latitude=center.lat,
            longitude=center.lng,
            radius_meters=area.radius_km * 1000,
            included_types=included_types,
            excluded_primary_types=EXCLUDED_PRIMARY_TYPES,
            min_rating=rating_range.min_rating,
            max_rating=rating_range.max_rating,
            insight=shape.value,
            price_levels=[level.value for level in filters.price_levels],
            operating_status=filters.status.value,
        )
        payload = google_places.compute_insights(body, self.api_key, self.request_timeout)

        count = int(payload.get("count") or 0)
        # Upstream only returns a total, so it is spread evenly across the requested types.
        breakdown = {type_name: count // len(included_types) for type_name in included_types} if count > 0 else {}

        if shape == ResultShape.COUNT:
            return AggregateResult(shape, count, breakdown)

        place_ids = [transform.place_id_from_reference(ref) for ref in transform.extract_place_references(payload)]
        if not place_ids:
            return AggregateResult(shape, count, breakdown, [], FitStatistics())
        place_ids = place_ids[: self.max_places]

        logger.info(
            "Enriching %d places for rating %.1f-%.1f",
            len(place_ids),
            rating_range.min_rating,
            rating_range.max_rating,
        )
        enriched = list(self._detail_pool.map(self._enrich_place, place_ids))
        places = rank_places(
            [place for place in enriched if place is not None and passes_filters(place, filters)],
            self.max_places,
        )
        return AggregateResult(shape, count, breakdown, places, compute_fit_statistics(places))

    # ---------- Per-place work ----------

    def _fetch_details(self, place_id: str) -> Optional[PlaceDetails]:
        cache_key = place_cache_key(place_id)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return PlaceDetails.from_dict(cached)

        raw = google_places.place_details(place_id, self.api_key, self.request_timeout)
        if raw is None:
            return None

        details = transform.to_place_details(raw, self.default_phone_region)
        if self.cache is not None:
            self.cache.set(cache_key, details.to_dict(), self.place_ttl)
        return details

    def _enrich_place(self, place_id: str) -> Optional[EnrichedPlace]:
        try:
            details = self._fetch_details(place_id)
        except (GooglePlacesError, requests.RequestException) as exc:
            logger.warning("Failed to fetch details for %s: %s", place_id, exc)
            return None
        if details is None:
            return None

        tech = TechStackProfile.unknown()
        try:
            chain = self.chain_detector(details.name, details.website)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Chain detection failed for %s, scoring as independent: %s", place_id, exc)
            fit = calculate_fit_score(details, tech, True)
            return EnrichedPlace(details, tech, fit)

        if details.website:
            try:
                tech = self.tech_detector.detect(details.website)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Tech detection failed for %s: %s", details.website, exc)

        fit = calculate_fit_score(details, tech, not chain.is_chain)
        return EnrichedPlace(details, tech, fit)
