"""
Livetrack Ingestion Package

Tracker API clients and the normalizers turning their payloads into points.
"""

from contracts.constants import TRACKER_SPOT, TRACKER_GARMIN
from ingestion.normalize import Normalizer, ParseError
from ingestion.spot import SpotNormalizer
from ingestion.garmin import GarminNormalizer
from ingestion.fetchers import FetchError, TrackerFetcher, build_fetchers

# Normalizers keyed by pilot.tracker_type
NORMALIZERS: dict[str, Normalizer] = {
    TRACKER_SPOT: SpotNormalizer(),
    TRACKER_GARMIN: GarminNormalizer(),
}


def get_normalizer(tracker_type: str) -> Normalizer:
    """Return the normalizer for a tracker type; KeyError if unknown."""
    return NORMALIZERS[tracker_type]


__all__ = [
    "Normalizer",
    "ParseError",
    "SpotNormalizer",
    "GarminNormalizer",
    "FetchError",
    "TrackerFetcher",
    "build_fetchers",
    "NORMALIZERS",
    "get_normalizer",
]
