"""
Unit tests for the tracker API clients and the itinerary lookup.

HTTP sessions are mocked.
"""

import pytest
from pathlib import Path
import sys
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock, Mock

import requests

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from contracts.constants import TRACKER_SPOT, TRACKER_GARMIN
from ingestion import FetchError, build_fetchers
from ingestion.fetchers import SpotFetcher, GarminFetcher, USER_AGENT
from processing.itinerary import ItineraryClient, ItineraryError

SINCE = datetime(2023, 8, 23, 10, 26, 45, tzinfo=timezone.utc)


def mock_session(response=None, error=None) -> MagicMock:
    session = MagicMock()
    session.headers = {}
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return session


class TestCreateUrl:
    """Feed URLs for one UTC day."""

    def test_spot_url(self):
        fetcher = SpotFetcher("https://spot.example/feed", session=mock_session())
        assert fetcher.create_url("0onlLopfoM4bG5jXvWRE8H0Obd0oMxMBq", SINCE) == (
            "https://spot.example/feed/0onlLopfoM4bG5jXvWRE8H0Obd0oMxMBq/message.json"
            "?startDate=2023-08-23T00:00:00-0000"
        )

    def test_garmin_url(self):
        fetcher = GarminFetcher("https://garmin.example/Feed/Share/", session=mock_session())
        assert fetcher.create_url("PilotGarmin", SINCE) == (
            "https://garmin.example/Feed/Share/PilotGarmin?d1=2023-08-23T00:00&d2=2023-08-23T23:59"
        )

    def test_day_is_taken_in_utc(self):
        """Test that a local timestamp just after midnight maps to the previous UTC day."""
        local = datetime(2023, 8, 24, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        fetcher = GarminFetcher("https://garmin.example/", session=mock_session())
        assert "d1=2023-08-23T00:00" in fetcher.create_url("PilotGarmin", local)


class TestFetch:
    """Raw feed download."""

    def test_success(self):
        session = mock_session(Mock(status_code=200, content=b"<kml/>"))
        fetcher = GarminFetcher("https://garmin.example/", session=session)

        assert fetcher.fetch("PilotGarmin", SINCE) == b"<kml/>"
        assert session.headers["User-Agent"] == USER_AGENT
        assert session.get.call_args.kwargs["timeout"] == 5

    def test_timeout(self):
        fetcher = SpotFetcher("https://spot.example/", session=mock_session(error=requests.exceptions.Timeout()))

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("abc", SINCE)

        assert exc_info.value.reason == "timeout"
        assert exc_info.value.source == TRACKER_SPOT

    def test_connection_error(self):
        session = mock_session(error=requests.exceptions.ConnectionError("refused"))
        fetcher = SpotFetcher("https://spot.example/", session=session)

        with pytest.raises(FetchError, match="connection error"):
            fetcher.fetch("abc", SINCE)

    def test_non_200(self):
        fetcher = GarminFetcher("https://garmin.example/", session=mock_session(Mock(status_code=503)))

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("PilotGarmin", SINCE)

        assert exc_info.value.reason == "HTTP 503"
        assert exc_info.value.url.startswith("https://garmin.example/PilotGarmin")

    def test_build_fetchers(self):
        fetchers = build_fetchers(session=mock_session())

        assert isinstance(fetchers[TRACKER_SPOT], SpotFetcher)
        assert isinstance(fetchers[TRACKER_GARMIN], GarminFetcher)


class TestItinerary:
    """search.ch route lookup."""

    def _response(self, body, status_code=200) -> Mock:
        response = Mock(status_code=status_code)
        response.json.return_value = body
        return response

    def test_lookup(self):
        session = mock_session(self._response({"url": "https://search.ch/timetable/?x"}))
        client = ItineraryClient(session=session)

        assert client.lookup(46.46218, 6.85973, "Lausanne") == "https://search.ch/timetable/?x"
        assert session.get.call_args.kwargs["params"] == {"from": "46.462180,6.859730", "to": "Lausanne"}

    def test_no_home(self):
        session = mock_session()
        with pytest.raises(ItineraryError):
            ItineraryClient(session=session).lookup(46.4, 6.8, "")
        session.get.assert_not_called()

    @pytest.mark.parametrize("body", [{}, {"url": ""}, ["unexpected"]])
    def test_answer_without_url(self, body):
        client = ItineraryClient(session=mock_session(self._response(body)))
        with pytest.raises(ItineraryError):
            client.lookup(46.4, 6.8, "Lausanne")

    def test_server_error(self):
        client = ItineraryClient(session=mock_session(self._response({}, status_code=500)))
        with pytest.raises(ItineraryError, match="HTTP 500"):
            client.lookup(46.4, 6.8, "Lausanne")

    def test_unreachable(self):
        client = ItineraryClient(session=mock_session(error=requests.exceptions.ConnectionError()))
        with pytest.raises(ItineraryError):
            client.lookup(46.4, 6.8, "Lausanne")
