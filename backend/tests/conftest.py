import math
import os
import sys
from pathlib import Path

import pytest
import sentry_sdk
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Disable outbound Sentry calls during tests
sentry_sdk.init = lambda *args, **kwargs: None  # type: ignore[assignment]
os.environ["SENTRY_DSN"] = ""
# No real upstreams in tests
os.environ["USE_GOOGLE_PLACES"] = "false"
os.environ["USE_FOURSQUARE"] = "false"
os.environ["AI_SCORING_ENABLED"] = "false"
os.environ.pop("STATIC_VENUES_PATH", None)

from backend.venue_engine.main import app, build_services  # noqa: E402
from backend.venue_engine.models import Coordinate, ProviderVenue  # noqa: E402
from backend.venue_engine.providers import StaticProvider  # noqa: E402

HAMBURG = Coordinate(53.5511, 9.9937)


def _offset(origin: Coordinate, north_m: float = 0.0, east_m: float = 0.0) -> Coordinate:
    # ~111_320 m per degree of latitude; longitude shrinks with cos(lat)
    lat = origin.lat + north_m / 111_320.0
    lng = origin.lng + east_m / (111_320.0 * math.cos(math.radians(origin.lat)))
    return Coordinate(lat, lng)


def make_venue(
    provider: str,
    provider_id: str,
    name: str,
    *,
    north_m: float = 0.0,
    east_m: float = 0.0,
    origin: Coordinate = HAMBURG,
    **fields,
) -> ProviderVenue:
    return ProviderVenue(
        provider=provider,
        provider_id=provider_id,
        name=name,
        location=_offset(origin, north_m, east_m),
        **fields,
    )


@pytest.fixture
def venue():
    """Factory for ProviderVenues placed relative to central Hamburg."""
    return make_venue


@pytest.fixture
def offset():
    return _offset


@pytest.fixture
def static_providers():
    google = StaticProvider(
        "google_places",
        [
            make_venue(
                "google_places",
                "g1",
                "Bella Notte",
                cuisine_type="Italian",
                price_tier=2,
                rating=4.6,
                review_count=320,
                tags={"romantic", "indoor"},
                open_now=True,
            ),
            make_venue(
                "google_places",
                "g2",
                "Sakura Sushi",
                north_m=400,
                cuisine_type="Japanese",
                price_tier=3,
                rating=4.4,
            ),
            make_venue(
                "google_places",
                "g3",
                "Burger Barn",
                east_m=700,
                cuisine_type="American",
                price_tier=1,
                rating=3.9,
            ),
        ],
    )
    foursquare = StaticProvider(
        "foursquare",
        [
            make_venue(
                "foursquare",
                "f1",
                "Bella Notte Ristorante",
                north_m=30,
                cuisine_type="Italian",
                price_tier=2,
                rating=4.3,
                review_count=45,
                tags={"wine"},
            ),
            make_venue(
                "foursquare",
                "f2",
                "Le Petit Bistro",
                east_m=-500,
                cuisine_type="French",
                price_tier=3,
                rating=4.1,
            ),
        ],
    )
    return [google, foursquare]


@pytest.fixture
def client(static_providers):
    previous = app.state.services
    app.state.services = build_services(providers=static_providers)
    try:
        yield TestClient(app, base_url="http://api.testserver")
    finally:
        app.state.services = previous
