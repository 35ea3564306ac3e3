"""
Public transport itinerary lookup (search.ch timetable API).

Used to add a "back home by train" link to landing messages. The lookup
is best effort: callers must treat ItineraryError as "no itinerary".
"""

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

ITINERARY_API_URL = "https://timetable.search.ch/api/route.json"
HTTP_TIMEOUT_SECONDS = 5


class ItineraryError(Exception):
    """The itinerary could not be retrieved."""


class ItineraryClient:
    """Client for the search.ch route API."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        api_url: str = ITINERARY_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.session = session or requests.Session()
        self.api_url = api_url
        self.timeout = timeout

    def lookup(self, latitude: float, longitude: float, home: str) -> str:
        """
        Return the URL of an itinerary from a position to a home location.

        Raises:
            ItineraryError: if the API cannot be reached or answers without a URL
        """
        if not home:
            raise ItineraryError("no home location")

        params = {"from": f"{latitude:f},{longitude:f}", "to": home}
        try:
            response = self.session.get(self.api_url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ItineraryError(f"request failed: {e}") from e

        if response.status_code != 200:
            raise ItineraryError(f"HTTP {response.status_code}")

        try:
            url = response.json()["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise ItineraryError(f"unexpected answer: {e}") from e

        if not url:
            raise ItineraryError("empty itinerary URL")
        return url
