"""HTTP surface: search, compatibility, cache administration and observability."""

from __future__ import annotations

from backend.venue_engine.errors import ProviderValidationError
from backend.venue_engine.metrics import normalize_endpoint
from backend.venue_engine.models import PreferenceProfile

SEARCH = {"latitude": 53.5511, "longitude": 9.9937, "radius_m": 2000}


class TestVenueSearch:
    def test_search_returns_merged_ranked_venues(self, client):
        response = client.post("/v1/venues/search", json=SEARCH)

        assert response.status_code == 200
        body = response.json()
        assert body["cache_hit"] is False
        assert body["degraded"] is False
        assert body["providers_succeeded"] == ["google_places", "foursquare"]
        assert len(body["venues"]) == 4
        first = body["venues"][0]
        for key in ("venue_id", "name", "ai_score", "contextual_score", "match_factors", "sources"):
            assert key in first
        scores = [venue["ai_score"] for venue in body["venues"]]
        assert scores == sorted(scores, reverse=True)

    def test_repeat_search_hits_cache(self, client, static_providers):
        client.post("/v1/venues/search", json=SEARCH)
        response = client.post("/v1/venues/search", json=SEARCH)

        assert response.json()["cache_hit"] is True
        assert [p.calls for p in static_providers] == [1, 1]

    def test_profile_drives_ranking(self, client):
        payload = {**SEARCH, "user": {"cuisines": ["Japanese"], "price_tiers": ["$$$"]}}
        response = client.post("/v1/venues/search", json=payload)
        assert response.json()["venues"][0]["name"] == "Sakura Sushi"

    def test_partial_failure_is_flagged(self, client, static_providers):
        static_providers[1].error = ProviderValidationError(
            "foursquare", "HTTP 400", status_code=400
        )

        body = client.post("/v1/venues/search", json=SEARCH).json()

        assert body["degraded"] is True
        assert body["providers_failed"] == {"foursquare": "HTTP 400"}
        assert len(body["venues"]) == 3

    def test_all_providers_down_is_503(self, client, static_providers):
        for provider in static_providers:
            provider.error = ProviderValidationError(provider.name, "HTTP 401", status_code=401)

        response = client.post("/v1/venues/search", json=SEARCH)

        assert response.status_code == 503
        assert set(response.json()["providers_failed"]) == {"google_places", "foursquare"}

    def test_few_results_carry_warning(self, client):
        payload = {**SEARCH, "providers": ["foursquare"]}
        body = client.post("/v1/venues/search", json=payload).json()
        assert body["warnings"][0]["code"] == "insufficient_results"

    def test_unknown_provider_is_400(self, client):
        response = client.post("/v1/venues/search", json={**SEARCH, "providers": ["yelp"]})
        assert response.status_code == 400

    def test_invalid_coordinates_rejected(self, client):
        response = client.post("/v1/venues/search", json={**SEARCH, "latitude": 123})
        assert response.status_code == 422


class TestCompatibility:
    def test_inline_profiles(self, client):
        payload = {
            "user_a": {"cuisines": ["italian", "thai"], "vibes": ["romantic"]},
            "user_b": {"cuisines": ["italian"], "vibes": ["romantic"]},
        }
        response = client.post("/v1/compatibility", json=payload)

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "rules"
        assert body["cuisine_score"] == 0.5
        assert body["vibe_score"] == 1.0
        assert body["compatibility_factors"]["shared_cuisines"] == ["italian"]

    def test_profiles_from_store(self, client):
        store = client.app.state.services.preference_store
        store.add(PreferenceProfile(user_id="alex", cuisines={"french"}))
        store.add(PreferenceProfile(user_id="sam", cuisines={"french"}))

        response = client.post(
            "/v1/compatibility", json={"user_a_id": "alex", "user_b_id": "sam"}
        )
        assert response.status_code == 200
        assert response.json()["cuisine_score"] == 1.0

    def test_no_preferences_anywhere_is_422(self, client):
        response = client.post("/v1/compatibility", json={"user_a": {}, "user_b": {}})
        assert response.status_code == 422

    def test_missing_users_is_400(self, client):
        response = client.post("/v1/compatibility", json={"user_a_id": "alex"})
        assert response.status_code == 400


class TestCacheAdmin:
    def test_stats(self, client):
        client.post("/v1/venues/search", json=SEARCH)
        client.post("/v1/venues/search", json=SEARCH)

        body = client.get("/v1/cache/stats").json()
        stats = body["search_results"]
        assert stats["size"] == 1
        assert stats["hits"] == 1
        assert set(body["circuit_breakers"]) == {"google_places", "foursquare"}
        assert body["circuit_breakers"]["foursquare"]["state"] == "closed"

    def test_invalidate(self, client):
        client.post("/v1/venues/search", json=SEARCH)

        response = client.post(
            "/v1/cache/invalidate", json={"latitude": 53.5511, "longitude": 9.9937}
        )

        assert response.json() == {"removed": 1, "prefix": "53.551_9.994"}
        assert client.post("/v1/venues/search", json=SEARCH).json()["cache_hit"] is False


class TestObservability:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["providers"] == ["google_places", "foursquare"]
        assert body["ai_scoring"] is False

    def test_metrics_exposed(self, client):
        client.post("/v1/venues/search", json=SEARCH)
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "venue_engine_info" in response.text
        assert "venue_provider_requests_total" in response.text
        assert 'endpoint="/metrics"' not in response.text

    def test_request_id_round_trip(self, client):
        response = client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"
        assert len(client.get("/health").headers["X-Request-ID"]) == 36

    def test_endpoint_normalization(self):
        assert normalize_endpoint("/v1/venues/12345") == "/v1/venues/{id}"
        assert (
            normalize_endpoint("/v1/users/123e4567-e89b-12d3-a456-426614174000")
            == "/v1/users/{id}"
        )
        assert normalize_endpoint("/v1/venues/search") == "/v1/venues/search"
