"""Venue aggregation, entity resolution and compatibility-aware ranking."""

__version__ = "0.3.0"
