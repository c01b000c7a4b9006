import pytest
import requests

from ownerscout.cache.fast_tier import MemoryCache
from ownerscout.cache.service import CacheService
from ownerscout.models import ChainDetectionResult, GeoLocation, ResultShape, SearchArea, SearchFilters, TechStackProfile
from ownerscout.search import orchestrator
from ownerscout.search.orchestrator import LocationNotFoundError, RatingRange, SearchOrchestrator
from ownerscout.vendors.google_places import CapacityExceededError, GooglePlacesError

AREA = SearchArea("28202", 3, GeoLocation(35.22, -80.84))


class FakeTechDetector:
    def __init__(self, profiles=None):
        self.profiles = profiles or {}
        self.calls = []
        self.closed = False

    def detect(self, website):
        self.calls.append(website)
        return self.profiles.get(website, TechStackProfile(website_platform="WordPress", confidence=60))

    def close(self):
        self.closed = True


def raw_place(place_id, name, website=None, rating=4.5, reviews=150):
    return {
        "id": place_id,
        "displayName": {"text": name},
        "types": ["restaurant"],
        "rating": rating,
        "userRatingCount": reviews,
        "priceLevel": "PRICE_LEVEL_MODERATE",
        "formattedAddress": "1 Main St",
        "location": {"latitude": 35.2, "longitude": -80.8},
        "websiteUri": website,
    }


def rating_of(body):
    rating = body["filter"]["ratingFilter"]
    return rating["minRating"], rating["maxRating"]


@pytest.fixture
def upstream(monkeypatch):
    calls = {"insights": [], "details": [], "geocode": []}
    state = {"insights": lambda body: {"count": 0}, "details": {}}

    def fake_compute_insights(body, api_key, timeout=10):
        calls["insights"].append(body)
        return state["insights"](body)

    def fake_place_details(place_id, api_key, timeout=10):
        calls["details"].append(place_id)
        detail = state["details"].get(place_id)
        if isinstance(detail, Exception):
            raise detail
        return detail

    def fake_geocode(address, api_key, timeout=10):
        calls["geocode"].append(address)
        return state.get("geocode", (35.22, -80.84))

    monkeypatch.setattr(orchestrator.google_places, "compute_insights", fake_compute_insights)
    monkeypatch.setattr(orchestrator.google_places, "place_details", fake_place_details)
    monkeypatch.setattr(orchestrator.google_places, "geocode", fake_geocode)
    return calls, state


@pytest.fixture
def make_orchestrator():
    created = []

    def factory(**kwargs):
        kwargs.setdefault("api_key", "key")
        kwargs.setdefault("tech_detector", FakeTechDetector())
        instance = SearchOrchestrator(**kwargs)
        created.append(instance)
        return instance

    yield factory
    for instance in created:
        instance.close()


def test_rating_range_split():
    lower, upper = RatingRange(3.8, 4.8).split()

    assert lower == RatingRange(3.8, 4.3, 1)
    assert upper == RatingRange(4.3, 4.8, 1)
    assert RatingRange(4.0, 4.05, 1).can_split(6, 0.1) is False
    assert RatingRange(4.0, 4.5, 6).can_split(6, 0.1) is False


def test_count_search_without_split(upstream, make_orchestrator):
    calls, state = upstream
    state["insights"] = lambda body: {"count": "45"}
    filters = SearchFilters(included_types=["restaurant", "cafe"])

    result = make_orchestrator().search(AREA, filters, ResultShape.COUNT)

    assert result.total_count == 45
    assert result.breakdown_by_category == {"restaurant": 22, "cafe": 22}
    assert result.places is None
    body = calls["insights"][0]
    assert body["insights"] == ["INSIGHT_COUNT"]
    assert body["filter"]["locationFilter"]["circle"]["radius"] == 3000
    assert body["filter"]["typeFilter"]["excludedPrimaryTypes"] == ["fast_food_restaurant"]


def test_capacity_splits_rating_range(upstream, make_orchestrator):
    calls, state = upstream

    def insights(body):
        low, high = rating_of(body)
        if high - low > 0.5:
            raise CapacityExceededError("too many", 429, "RESOURCE_EXHAUSTED")
        return {"count": 60}

    state["insights"] = insights

    result = make_orchestrator().search(AREA, SearchFilters(min_rating=3.8, max_rating=4.8), ResultShape.COUNT)

    assert result.total_count == 120
    assert result.failed_partitions == 0
    ranges = sorted(rating_of(body) for body in calls["insights"])
    assert ranges == [(3.8, 4.3), (3.8, 4.8), (4.3, 4.8)]


def test_bisection_terminates_with_empty_leaves(upstream, make_orchestrator, caplog):
    calls, state = upstream

    def always_full(body):
        raise CapacityExceededError("too many", 429, "100 places")

    state["insights"] = always_full

    with caplog.at_level("WARNING"):
        result = make_orchestrator(max_depth=2).search(AREA, SearchFilters(), ResultShape.PLACES)

    # 1 root + 2 + 4 leaves
    assert len(calls["insights"]) == 7
    assert result.total_count == 0
    assert result.places == []
    assert result.failed_partitions == 4
    assert "cannot be split further" in caplog.text


def test_narrow_root_range_is_not_split(upstream, make_orchestrator):
    calls, state = upstream

    def always_full(body):
        raise CapacityExceededError("too many", 429, "RESOURCE_EXHAUSTED")

    state["insights"] = always_full

    with pytest.raises(CapacityExceededError):
        make_orchestrator().search(AREA, SearchFilters(min_rating=4.0, max_rating=4.05), ResultShape.COUNT)
    assert len(calls["insights"]) == 1


def test_root_capacity_without_split_propagates(upstream, make_orchestrator):
    calls, state = upstream

    def always_full(body):
        raise CapacityExceededError("too many", 429, "RESOURCE_EXHAUSTED")

    state["insights"] = always_full

    with pytest.raises(CapacityExceededError):
        make_orchestrator(max_depth=0).search(AREA, SearchFilters(), ResultShape.COUNT)


@pytest.mark.parametrize("error", [GooglePlacesError("denied", 403, "denied"), requests.Timeout("slow")])
def test_root_errors_propagate(upstream, make_orchestrator, error):
    calls, state = upstream

    def broken(body):
        raise error

    state["insights"] = broken

    with pytest.raises(type(error)):
        make_orchestrator().search(AREA, SearchFilters(), ResultShape.COUNT)


def test_branch_error_degrades_to_empty_and_skips_cache(upstream, make_orchestrator):
    calls, state = upstream

    def insights(body):
        low, high = rating_of(body)
        if high - low > 0.5:
            raise CapacityExceededError("too many", 429, "RESOURCE_EXHAUSTED")
        if low >= 4.3:
            raise GooglePlacesError("backend", 500, "oops")
        return {"count": 30}

    state["insights"] = insights
    cache = CacheService(MemoryCache(10))
    search = make_orchestrator(cache=cache)

    result = search.search(AREA, SearchFilters(min_rating=3.8, max_rating=4.8), ResultShape.COUNT)
    search.search(AREA, SearchFilters(min_rating=3.8, max_rating=4.8), ResultShape.COUNT)
    cache.close()

    assert result.total_count == 30
    assert result.failed_partitions == 1
    assert len(calls["insights"]) == 6


def test_places_search_enriches_scores_and_filters(upstream, make_orchestrator):
    calls, state = upstream
    state["insights"] = lambda body: {
        "count": 3,
        "placeInsights": [{"place": "places/indie"}, {"place": "places/chain"}, {"place": "places/gone"}],
    }
    state["details"] = {
        "indie": raw_place("indie", "Luigi's Trattoria", "https://luigis.example.com"),
        "chain": raw_place("chain", "Chipotle", "https://chipotle.com"),
        "gone": None,
    }
    detector = FakeTechDetector(
        {"https://luigis.example.com": TechStackProfile(website_platform="Wix", delivery=["DoorDash"], confidence=60)}
    )

    result = make_orchestrator(tech_detector=detector).search(AREA, SearchFilters(), ResultShape.PLACES)

    assert result.total_count == 3
    assert [place.place_id for place in result.places] == ["indie"]
    luigi = result.places[0]
    assert luigi.fit.score == 100
    assert luigi.tech_stack.delivery == ["DoorDash"]
    assert result.fit_statistics.high_fit_count == 1
    assert result.fit_statistics.average_score == 100
    assert sorted(calls["details"]) == ["chain", "gone", "indie"]


def test_place_detail_failure_skips_only_that_place(upstream, make_orchestrator, caplog):
    calls, state = upstream
    state["insights"] = lambda body: {"count": 2, "placeInsights": [{"place": "places/a"}, {"place": "places/b"}]}
    state["details"] = {
        "a": raw_place("a", "Casa Azul"),
        "b": requests.ConnectionError("reset"),
    }

    with caplog.at_level("WARNING"):
        result = make_orchestrator().search(AREA, SearchFilters(), ResultShape.PLACES)

    assert [place.place_id for place in result.places] == ["a"]
    assert result.failed_partitions == 0
    assert "Failed to fetch details for b" in caplog.text


class FailingTechDetector(FakeTechDetector):
    def __init__(self, failing_website):
        super().__init__()
        self.failing_website = failing_website

    def detect(self, website):
        if website == self.failing_website:
            raise RuntimeError("crawler crashed")
        return super().detect(website)


def test_tech_detection_failure_keeps_place_with_unknown_profile(upstream, make_orchestrator, caplog):
    calls, state = upstream
    state["insights"] = lambda body: {"count": 2, "placeInsights": [{"place": "places/a"}, {"place": "places/b"}]}
    state["details"] = {
        "a": raw_place("a", "Casa Azul", "https://casa.example.com"),
        "b": raw_place("b", "Pho Bay", "https://pho.example.com"),
    }
    detector = FailingTechDetector("https://casa.example.com")

    with caplog.at_level("WARNING"):
        result = make_orchestrator(tech_detector=detector).search(AREA, SearchFilters(), ResultShape.PLACES)

    by_id = {place.place_id: place for place in result.places}
    assert set(by_id) == {"a", "b"}
    assert by_id["a"].tech_stack == TechStackProfile.unknown()
    assert by_id["b"].tech_stack.website_platform == "WordPress"
    assert "Tech detection failed for https://casa.example.com" in caplog.text


def test_chain_detection_failure_keeps_search_running(upstream, make_orchestrator, caplog):
    calls, state = upstream
    state["insights"] = lambda body: {"count": 2, "placeInsights": [{"place": "places/a"}, {"place": "places/b"}]}
    state["details"] = {
        "a": raw_place("a", "Casa Azul", "https://casa.example.com"),
        "b": raw_place("b", "Pho Bay", "https://pho.example.com"),
    }

    def flaky_chain_detector(name, website=None):
        if name == "Casa Azul":
            raise RuntimeError("registry broken")
        return ChainDetectionResult(False, 80, "No chain indicators found")

    with caplog.at_level("WARNING"):
        result = make_orchestrator(chain_detector=flaky_chain_detector).search(
            AREA, SearchFilters(), ResultShape.PLACES
        )

    by_id = {place.place_id: place for place in result.places}
    assert set(by_id) == {"a", "b"}
    assert by_id["a"].tech_stack == TechStackProfile.unknown()
    assert by_id["a"].fit.is_independent is True
    assert "Chain detection failed for a" in caplog.text


def test_places_without_website_get_unknown_profile(upstream, make_orchestrator):
    calls, state = upstream
    state["insights"] = lambda body: {"count": 1, "placeInsights": [{"place": "places/a"}]}
    state["details"] = {"a": raw_place("a", "Casa Azul")}
    detector = FakeTechDetector()

    result = make_orchestrator(tech_detector=detector).search(AREA, SearchFilters(), ResultShape.PLACES)

    assert detector.calls == []
    assert result.places[0].tech_stack == TechStackProfile.unknown()


def test_require_third_party_delivery_filter(upstream, make_orchestrator):
    calls, state = upstream
    state["insights"] = lambda body: {"count": 1, "placeInsights": [{"place": "places/a"}]}
    state["details"] = {"a": raw_place("a", "Casa Azul", "https://casa.example.com")}

    result = make_orchestrator().search(AREA, SearchFilters(require_third_party_delivery=True), ResultShape.PLACES)

    assert result.places == []
    assert result.total_count == 1


def test_place_ids_are_capped_before_detail_fetch(upstream, make_orchestrator):
    calls, state = upstream
    references = [{"place": f"places/p{i}"} for i in range(5)]
    state["insights"] = lambda body: {"count": 5, "placeInsights": references}
    state["details"] = {f"p{i}": raw_place(f"p{i}", f"Bistro {i}") for i in range(5)}

    result = make_orchestrator(max_places=2).search(AREA, SearchFilters(), ResultShape.PLACES)

    assert sorted(calls["details"]) == ["p0", "p1"]
    assert len(result.places) == 2


def test_repeated_search_is_served_from_cache(upstream, make_orchestrator):
    calls, state = upstream
    state["insights"] = lambda body: {"count": 1, "placeInsights": [{"place": "places/a"}]}
    state["details"] = {"a": raw_place("a", "Casa Azul")}
    cache = CacheService(MemoryCache(50))
    search = make_orchestrator(cache=cache)
    area = SearchArea("28202", 3)
    filters = SearchFilters(included_types=["restaurant", "cafe"])
    reordered = SearchFilters(included_types=["cafe", "restaurant"])

    first = search.search(area, filters, ResultShape.PLACES)
    second = search.search(area, reordered, ResultShape.PLACES)
    stats = cache.get_stats()
    cache.close()

    assert second == first
    assert len(calls["insights"]) == 1
    assert calls["geocode"] == ["28202"]
    assert stats.hits >= 1
    assert cache.memory.has("place:a")


def test_geocode_is_cached(upstream, make_orchestrator):
    calls, state = upstream
    cache = CacheService(MemoryCache(10))
    search = make_orchestrator(cache=cache)

    assert search.resolve_center(SearchArea("28202", 1)) == GeoLocation(35.22, -80.84)
    assert search.resolve_center(SearchArea("28202", 1)) == GeoLocation(35.22, -80.84)
    cache.close()

    assert calls["geocode"] == ["28202"]


def test_unknown_zip_raises(upstream, make_orchestrator):
    calls, state = upstream
    state["geocode"] = None

    with pytest.raises(LocationNotFoundError):
        make_orchestrator().search(SearchArea("00000", 1), SearchFilters(), ResultShape.COUNT)
    assert calls["insights"] == []


def test_invalid_inputs_are_rejected(make_orchestrator):
    search = make_orchestrator()

    with pytest.raises(ValueError):
        search.search(SearchArea("28202", 0, AREA.center), SearchFilters(), ResultShape.COUNT)
    with pytest.raises(ValueError):
        search.search(AREA, SearchFilters(min_rating=4.5, max_rating=4.0), ResultShape.COUNT)


def test_close_releases_tech_detector():
    detector = FakeTechDetector()
    SearchOrchestrator(api_key="key", tech_detector=detector).close()

    assert detector.closed is True
