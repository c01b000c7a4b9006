"""Owner.com fit scoring for an enriched restaurant."""

from typing import List, Tuple

from ownerscout.models import FitAnalysis, PlaceDetails, PriceLevel, TechStackProfile

HIGH_FIT_THRESHOLD = 80

INDEPENDENT_POINTS = 20
IDEAL_PRICE_POINTS = 15
HEALTHY_RATING_POINTS = 10
STRONG_REVIEWS_POINTS = 10
COMMISSION_BLEED_POINTS = 35
NO_ORDERING_POINTS = 15
LEGACY_SITE_POINTS = 10
LOW_CONFIDENCE_PENALTY = -5

HEALTHY_RATING_RANGE = (3.8, 4.9)
STRONG_REVIEW_COUNT = 100
LOW_CONFIDENCE_THRESHOLD = 50
MAX_REASONS = 3

IDEAL_PRICE_LEVELS = (PriceLevel.MODERATE, PriceLevel.EXPENSIVE)
LEGACY_PLATFORMS = ("WordPress", "Wix", "GoDaddy", "Custom", "Unknown")
OWNER_PLATFORM = "Owner.com"


def _format_reason(reasons: List[Tuple[int, str]]) -> str:
    # sorted() is stable, so equal-point reasons keep the order they triggered in.
    ranked = sorted(reasons, key=lambda item: item[0], reverse=True)
    labels = [label for _, label in ranked[:MAX_REASONS]]
    reason = ", ".join(labels)
    if len(ranked) > MAX_REASONS:
        reason += f" +{len(ranked) - MAX_REASONS} more"
    return reason


def calculate_fit_score(place: PlaceDetails, tech: TechStackProfile, is_independent: bool) -> FitAnalysis:
    if not is_independent:
        return FitAnalysis(0, "Chain Restaurant", False)
    if any(OWNER_PLATFORM.lower() in system.lower() for system in tech.online_ordering):
        return FitAnalysis(0, "Already on Owner.com", True)

    score = 0
    reasons: List[Tuple[int, str]] = []

    def award(points: int, label: str) -> None:
        nonlocal score
        score += points
        reasons.append((points, label))

    award(INDEPENDENT_POINTS, "Independent")

    if place.price_level in IDEAL_PRICE_LEVELS:
        award(IDEAL_PRICE_POINTS, "Ideal Price ($$-$$$)")

    low, high = HEALTHY_RATING_RANGE
    if low <= place.rating <= high:
        award(HEALTHY_RATING_POINTS, "Strong Rating")

    if place.user_rating_count >= STRONG_REVIEW_COUNT:
        award(STRONG_REVIEWS_POINTS, "Strong Review Volume")

    if tech.delivery and not tech.has_first_party_ordering:
        award(COMMISSION_BLEED_POINTS, "High Commission Bleed (3P Only)")
    elif not tech.has_first_party_ordering and not tech.online_ordering:
        award(NO_ORDERING_POINTS, "No Online Ordering")

    if tech.website_platform in LEGACY_PLATFORMS:
        award(LEGACY_SITE_POINTS, "Legacy Website")

    if tech.confidence < LOW_CONFIDENCE_THRESHOLD:
        score += LOW_CONFIDENCE_PENALTY

    return FitAnalysis(max(0, min(100, score)), _format_reason(reasons), True)
