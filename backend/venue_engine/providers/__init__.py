"""Venue providers. Each variant turns its upstream payload into ProviderVenues."""

from .base import HTTPProvider, Provider
from .foursquare import FoursquareProvider
from .google_places import GooglePlacesProvider
from .static import StaticProvider

__all__ = [
    "FoursquareProvider",
    "GooglePlacesProvider",
    "HTTPProvider",
    "Provider",
    "StaticProvider",
]
