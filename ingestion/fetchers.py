"""
Tracker API clients.

Each fetcher downloads the raw feed of one tracker for the UTC day of a
given timestamp. Parsing is left to the matching normalizer.

Sources:
- SPOT public feed API (JSON)
- Garmin MapShare KML feed
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import requests
from prometheus_client import Counter, Histogram

from contracts.constants import TRACKER_SPOT, TRACKER_GARMIN

logger = logging.getLogger(__name__)

# Both APIs are picky about unknown clients
USER_AGENT = "Wget/1.13.4 (linux-gnu)"
HTTP_TIMEOUT_SECONDS = 5

DEFAULT_SPOT_BASE_URL = "https://api.findmespot.com/spot-main-web/consumer/rest-api/2.0/public/feed/"
DEFAULT_GARMIN_BASE_URL = "https://share.garmin.com/Feed/Share/"

# ============================================
# Prometheus Metrics
# ============================================

FETCHES_TOTAL = Counter('tracker_fetches_total', 'Tracker API requests', ['source', 'status'])
FETCH_LATENCY = Histogram('tracker_fetch_latency_seconds', 'Tracker API request duration', ['source'])


class FetchError(Exception):
    """Transient failure while talking to a tracker API."""

    def __init__(self, source: str, reason: str, url: str = ""):
        self.source = source
        self.reason = reason
        self.url = url
        super().__init__(f"{source} fetch failed: {reason}")


class TrackerFetcher:
    """Base client for a tracker feed API."""

    source: str = ""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def create_url(self, tracker_id: str, since: datetime) -> str:
        raise NotImplementedError

    def fetch(self, tracker_id: str, since: datetime) -> bytes:
        """
        Download the raw feed of a tracker.

        Raises:
            FetchError: on network errors, timeouts and non-200 answers
        """
        url = self.create_url(tracker_id, since)
        logger.debug(f"Fetching {self.source} feed {url}")

        try:
            with FETCH_LATENCY.labels(source=self.source).time():
                response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            FETCHES_TOTAL.labels(source=self.source, status="timeout").inc()
            raise FetchError(self.source, "timeout", url) from e
        except requests.exceptions.RequestException as e:
            FETCHES_TOTAL.labels(source=self.source, status="connection_error").inc()
            raise FetchError(self.source, f"connection error: {e}", url) from e

        if response.status_code != 200:
            FETCHES_TOTAL.labels(source=self.source, status=f"http_{response.status_code}").inc()
            raise FetchError(self.source, f"HTTP {response.status_code}", url)

        FETCHES_TOTAL.labels(source=self.source, status="success").inc()
        return response.content


class SpotFetcher(TrackerFetcher):
    """Client for the SPOT public feed API."""

    source = TRACKER_SPOT

    def create_url(self, tracker_id: str, since: datetime) -> str:
        day = since.astimezone(timezone.utc)
        return f"{self.base_url}{tracker_id}/message.json?startDate={day:%Y-%m-%d}T00:00:00-0000"


class GarminFetcher(TrackerFetcher):
    """Client for the Garmin MapShare KML feed."""

    source = TRACKER_GARMIN

    def create_url(self, tracker_id: str, since: datetime) -> str:
        day = since.astimezone(timezone.utc)
        return f"{self.base_url}{tracker_id}?d1={day:%Y-%m-%d}T00:00&d2={day:%Y-%m-%d}T23:59"


def build_fetchers(
    spot_base_url: str = DEFAULT_SPOT_BASE_URL,
    garmin_base_url: str = DEFAULT_GARMIN_BASE_URL,
    session: Optional[requests.Session] = None,
) -> dict[str, TrackerFetcher]:
    """Fetchers keyed by tracker type, sharing one HTTP session."""
    session = session or requests.Session()
    return {
        TRACKER_SPOT: SpotFetcher(spot_base_url, session=session),
        TRACKER_GARMIN: GarminFetcher(garmin_base_url, session=session),
    }
