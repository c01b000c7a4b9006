"""Combine partial search results from sibling rating ranges."""

import logging
from typing import Dict, List, Sequence

from ownerscout.models import AggregateResult, EnrichedPlace, FitStatistics, ResultShape
from ownerscout.search.scoring import HIGH_FIT_THRESHOLD

logger = logging.getLogger(__name__)


def compute_fit_statistics(places: Sequence[EnrichedPlace]) -> FitStatistics:
    if not places:
        return FitStatistics(0, 0)
    scores = [place.fit.score for place in places]
    return FitStatistics(
        high_fit_count=sum(1 for score in scores if score >= HIGH_FIT_THRESHOLD),
        average_score=sum(scores) // len(scores),
    )


def rank_places(places: Sequence[EnrichedPlace], max_places: int) -> List[EnrichedPlace]:
    """Drop repeated place ids (first one wins), best fit first, capped."""
    seen = set()
    unique: List[EnrichedPlace] = []
    for place in places:
        if place.place_id in seen:
            logger.debug("Dropping duplicate place %s from overlapping ranges", place.place_id)
            continue
        seen.add(place.place_id)
        unique.append(place)
    unique.sort(key=lambda place: place.fit.score, reverse=True)
    return unique[:max_places]


def merge_results(first: AggregateResult, second: AggregateResult, max_places: int) -> AggregateResult:
    breakdown: Dict[str, int] = dict(first.breakdown_by_category)
    for category, count in second.breakdown_by_category.items():
        breakdown[category] = breakdown.get(category, 0) + count

    shape = ResultShape(first.result_shape)
    total = first.total_count + second.total_count
    failed = first.failed_partitions + second.failed_partitions

    if shape != ResultShape.PLACES:
        return AggregateResult(shape, total, breakdown, failed_partitions=failed)

    places = rank_places(list(first.places or []) + list(second.places or []), max_places)
    return AggregateResult(shape, total, breakdown, places, compute_fit_statistics(places), failed)
