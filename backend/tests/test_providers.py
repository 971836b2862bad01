import asyncio
import json

import httpx
import pytest
from backend.venue_engine.cache import TTLCache
from backend.venue_engine.errors import (
    ProviderError,
    ProviderTimeout,
    ProviderValidationError,
    RetryExhausted,
)
from backend.venue_engine.models import Coordinate, SearchQuery
from backend.venue_engine.providers import (
    FoursquareProvider,
    GooglePlacesProvider,
    StaticProvider,
)
from backend.venue_engine.providers.foursquare import category_ids
from backend.venue_engine.providers.foursquare import normalize_place as normalize_foursquare
from backend.venue_engine.providers.google_places import included_types
from backend.venue_engine.providers.google_places import normalize_place as normalize_google
from backend.venue_engine.retry import RetryPolicy
from backend.venue_engine.routing import OSRMRouter, format_distance, format_duration

HAMBURG = Coordinate(53.5511, 9.9937)
ALSTER = Coordinate(53.5621, 10.0045)
QUERY = SearchQuery(origin=HAMBURG, radius_m=1500, cuisines={"Italian"})

GOOGLE_PLACE = {
    "id": "ChIJ1",
    "displayName": {"text": "Bella Notte"},
    "types": ["italian_restaurant", "restaurant"],
    "rating": 4.6,
    "userRatingCount": 320,
    "priceLevel": "PRICE_LEVEL_MODERATE",
    "location": {"latitude": 53.5511, "longitude": 9.9937},
    "formattedAddress": "Jungfernstieg 1, Hamburg",
    "photos": [{"name": "places/ChIJ1/photos/abc", "widthPx": 800, "heightPx": 600}],
    "currentOpeningHours": {"openNow": True},
}

FOURSQUARE_PLACE = {
    "fsq_id": "4b1",
    "name": "Bella Notte Ristorante ",
    "location": {"address": "Jungfernstieg 1", "locality": "Hamburg"},
    "geocodes": {"main": {"latitude": 53.5514, "longitude": 9.9937}},
    "categories": [{"name": "Italian Restaurant"}, {"name": "Wine Bar"}],
    "rating": 8.6,
    "price": 2,
    "photos": [{"prefix": "https://fastly.4sqi.net/img/", "suffix": "/abc.jpg"}],
    "hours": {"open_now": False},
    "stats": {"total_ratings": 45},
}


def run_with(handler, factory):
    """Build a provider around a MockTransport client and run ``factory(provider)``."""

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await factory(client)

    return asyncio.run(run())


class TestGooglePlaces:
    def test_included_types(self):
        query = SearchQuery(origin=HAMBURG, cuisines={"Italian", "Japanese"})
        assert included_types(query) == [
            "italian_restaurant",
            "japanese_restaurant",
            "sushi_restaurant",
        ]
        assert included_types(SearchQuery(origin=HAMBURG)) == ["restaurant"]
        assert included_types(SearchQuery(origin=HAMBURG, cuisines={"peruvian"})) == ["restaurant"]

    def test_normalize_place(self):
        venue = normalize_google(GOOGLE_PLACE, "https://places.example/v1")
        assert venue.provider_id == "ChIJ1"
        assert venue.name == "Bella Notte"
        assert venue.cuisine_type == "Italian"
        assert venue.price_tier == 2
        assert venue.review_count == 320
        assert venue.open_now is True
        assert venue.tags == {"highly rated", "indoor"}
        assert venue.photos[0].url == (
            "https://places.example/v1/places/ChIJ1/photos/abc/media?maxWidthPx=400&maxHeightPx=300"
        )

    def test_place_without_location_is_dropped(self):
        assert normalize_google({"id": "x", "displayName": {"text": "Ghost"}}, "https://g") is None

    def test_non_numeric_rating_fields_are_dropped(self):
        place = dict(GOOGLE_PLACE, rating="4.6", userRatingCount="many")
        venue = normalize_google(place, "https://places.example/v1")
        assert venue.rating is None
        assert venue.review_count is None
        assert "highly rated" not in venue.tags

    def test_search_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"places": [GOOGLE_PLACE, {"id": "no-location"}]})

        venues = run_with(
            handler,
            lambda client: GooglePlacesProvider(
                api_key="g-key", base_url="https://places.example/v1", client=client
            ).search(QUERY, limit=5),
        )

        assert [v.name for v in venues] == ["Bella Notte"]
        assert seen["url"] == "https://places.example/v1/places:searchNearby"
        assert seen["headers"]["X-Goog-Api-Key"] == "g-key"
        assert "places.displayName" in seen["headers"]["X-Goog-FieldMask"]
        assert seen["body"]["includedTypes"] == ["italian_restaurant"]
        assert seen["body"]["maxResultCount"] == 5
        assert seen["body"]["locationRestriction"]["circle"]["radius"] == 1500.0

    @pytest.mark.parametrize(
        ("status", "error_cls"),
        [
            (400, ProviderValidationError),
            (403, ProviderValidationError),
            (429, ProviderError),
            (503, ProviderError),
        ],
    )
    def test_http_errors(self, status, error_cls):
        with pytest.raises(error_cls) as exc_info:
            run_with(
                lambda request: httpx.Response(status, json={"error": {"status": "X"}}),
                lambda client: GooglePlacesProvider(api_key="k", client=client).search(QUERY),
            )
        assert exc_info.value.status_code == status

    def test_missing_api_key(self):
        with pytest.raises(ProviderValidationError):
            run_with(
                lambda request: httpx.Response(200, json={}),
                lambda client: GooglePlacesProvider(api_key="", client=client).search(QUERY),
            )

    def test_timeout_maps_to_provider_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderTimeout):
            run_with(
                handler,
                lambda client: GooglePlacesProvider(api_key="k", client=client).search(QUERY),
            )

    def test_invalid_json(self):
        with pytest.raises(ProviderValidationError):
            run_with(
                lambda request: httpx.Response(200, content=b"<html>"),
                lambda client: GooglePlacesProvider(api_key="k", client=client).search(QUERY),
            )


class TestFoursquare:
    def test_category_ids(self):
        query = SearchQuery(origin=HAMBURG, cuisines={"Italian", "pizza", "klingon"})
        assert category_ids(query) == "13064,13236"

    def test_normalize_place(self):
        venue = normalize_foursquare(FOURSQUARE_PLACE)
        assert venue.provider_id == "4b1"
        assert venue.name == "Bella Notte Ristorante"
        assert venue.location == Coordinate(53.5514, 9.9937)
        assert venue.address == "Jungfernstieg 1, Hamburg"
        assert venue.rating == 4.3
        assert venue.review_count == 45
        assert venue.price_tier == 2
        assert venue.cuisine_type == "Italian Restaurant"
        assert venue.open_now is False
        assert venue.photos[0].url == "https://fastly.4sqi.net/img/original/abc.jpg"

    def test_search_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, json={"results": [FOURSQUARE_PLACE]})

        venues = run_with(
            handler,
            lambda client: FoursquareProvider(
                api_key="fsq-key", base_url="https://fsq.example/v3", client=client
            ).search(QUERY, limit=10),
        )

        request = seen["request"]
        assert len(venues) == 1
        assert request.method == "GET"
        assert request.url.path == "/v3/places/search"
        assert request.url.params["ll"] == "53.5511,9.9937"
        assert request.url.params["categories"] == "13236"
        assert request.url.params["limit"] == "10"
        assert request.headers["Authorization"] == "fsq-key"


def route_payload(distance, duration):
    return {"code": "Ok", "routes": [{"distance": distance, "duration": duration}]}


def make_router(client):
    return OSRMRouter(
        base_url="https://osrm.example/route/v1",
        cache=TTLCache(60),
        retry_policy=RetryPolicy(max_retries=0, base_delay=0),
        client=client,
    )


class TestRouting:
    @pytest.mark.parametrize(
        ("meters", "text"), [(850, "850 m"), (1500, "1.5 km"), (12_340, "12.3 km")]
    )
    def test_format_distance(self, meters, text):
        assert format_distance(meters) == text

    @pytest.mark.parametrize(
        ("seconds", "text"), [(300, "5 min"), (3600, "1 hr"), (5400, "1 hr 30 min")]
    )
    def test_format_duration(self, seconds, text):
        assert format_duration(seconds) == text

    def test_route_is_fetched_and_cached(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json=route_payload(1234.5, 420))

        async def twice(client):
            router = make_router(client)
            first = await router.route(HAMBURG, ALSTER)
            second = await router.route(HAMBURG, ALSTER)
            return first, second

        first, second = run_with(handler, twice)

        assert calls == ["/route/v1/car/9.9937,53.5511;10.0045,53.5621"]
        assert first == second
        assert first.distance_text == "1.2 km"
        assert first.duration_text == "7 min"

    def test_no_route_returns_none(self):
        result = run_with(
            lambda request: httpx.Response(200, json={"code": "NoRoute", "routes": []}),
            lambda client: make_router(client).route(HAMBURG, ALSTER, "walking"),
        )
        assert result is None

    def test_server_error_exhausts_retries(self):
        with pytest.raises(RetryExhausted):
            run_with(
                lambda request: httpx.Response(502),
                lambda client: make_router(client).route(HAMBURG, ALSTER),
            )

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            run_with(
                lambda request: httpx.Response(200, json={}),
                lambda client: make_router(client).route(HAMBURG, ALSTER, "teleport"),
            )

    def test_route_both_tolerates_one_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "/foot/" in request.url.path:
                return httpx.Response(503)
            return httpx.Response(200, json=route_payload(2000, 360))

        result = run_with(handler, lambda client: make_router(client).route_both(HAMBURG, ALSTER))
        assert result.driving.distance_m == 2000
        assert result.walking is None


class TestStaticProvider:
    def test_from_json_filters_by_radius(self, tmp_path):
        path = tmp_path / "venues.json"
        rows = [
            {"id": "near", "name": "Near", "lat": 53.5515, "lng": 9.9937, "tags": ["cozy"]},
            {"id": "far", "name": "Far", "lat": 53.6511, "lng": 9.9937},
            {"id": "nearest", "name": "Nearest", "lat": 53.5511, "lng": 9.9937, "price_tier": 2},
        ]
        path.write_text(json.dumps(rows), encoding="utf-8")
        provider = StaticProvider.from_json("static", path)

        venues = asyncio.run(provider.search(SearchQuery(origin=HAMBURG, radius_m=1000)))

        assert [v.provider_id for v in venues] == ["nearest", "near"]
        assert venues[0].price_tier == 2
        assert venues[1].tags == {"cozy"}
        assert provider.calls == 1
