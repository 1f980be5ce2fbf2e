"""geostream - aggregates position fixes from multiple location providers."""

__version__ = "0.1.0"
