"""CLI job that runs one prospecting search and prints the result as JSON."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from ownerscout.core.config import ConfigError, get_settings
from ownerscout.core.container import Services, build_services
from ownerscout.models import AggregateResult, GeoLocation, PriceLevel, ResultShape, SearchArea, SearchFilters

logger = logging.getLogger(__name__)


def run_search_job(
    *,
    zip_code: str,
    radius_km: float,
    filters: SearchFilters,
    result_shape: ResultShape,
    center: Optional[GeoLocation] = None,
    services: Optional[Services] = None,
) -> AggregateResult:
    settings = get_settings()
    if not settings.google_api_key:
        raise ConfigError("GOOGLE_API_KEY is required")

    zip_code = (zip_code or "").strip()
    if not zip_code:
        raise ValueError("ZIP code is empty")

    owns_services = services is None
    services = services or build_services(settings)
    try:
        result = services.orchestrator.search(SearchArea(zip_code, radius_km, center), filters, result_shape)
        if result.failed_partitions:
            logger.warning("%d rating range(s) failed; the result is partial", result.failed_partitions)
        return result
    finally:
        if owns_services:
            services.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Search Google Places for restaurant prospects")
    parser.add_argument("--zip", dest="zip_code", required=True, help="ZIP code at the center of the search")
    parser.add_argument("--radius-km", dest="radius_km", type=float, default=2.0, help="Search radius in km")
    parser.add_argument("--lat", dest="lat", type=float, help="Center latitude (skips geocoding)")
    parser.add_argument("--lng", dest="lng", type=float, help="Center longitude (skips geocoding)")
    parser.add_argument(
        "--type",
        dest="included_types",
        action="append",
        help="Place type to include (repeatable, default: restaurant)",
    )
    parser.add_argument("--min-rating", dest="min_rating", type=float, default=3.8)
    parser.add_argument("--max-rating", dest="max_rating", type=float, default=4.8)
    parser.add_argument(
        "--price",
        dest="price_levels",
        action="append",
        choices=[level.value for level in PriceLevel],
        help="Price level to include (repeatable)",
    )
    parser.add_argument("--independent-only", dest="independent_only", action="store_true")
    parser.add_argument("--no-first-party-ordering", dest="require_no_first_party_ordering", action="store_true")
    parser.add_argument("--require-delivery", dest="require_third_party_delivery", action="store_true")
    parser.add_argument(
        "--count-only",
        dest="count_only",
        action="store_true",
        help="Only return counts, skip place enrichment",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    if (args.lat is None) != (args.lng is None):
        parser.error("--lat and --lng must be given together")
    if args.min_rating > args.max_rating:
        parser.error("--min-rating must not exceed --max-rating")

    filters = SearchFilters(
        included_types=args.included_types or ["restaurant"],
        min_rating=args.min_rating,
        max_rating=args.max_rating,
        price_levels=[PriceLevel(level) for level in args.price_levels or []],
        independent_only=args.independent_only,
        require_no_first_party_ordering=args.require_no_first_party_ordering,
        require_third_party_delivery=args.require_third_party_delivery,
    )
    center = GeoLocation(args.lat, args.lng) if args.lat is not None else None
    shape = ResultShape.COUNT if args.count_only else ResultShape.PLACES

    try:
        result = run_search_job(
            zip_code=args.zip_code,
            radius_km=args.radius_km,
            filters=filters,
            result_shape=shape,
            center=center,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    json.dump(result.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
