"""
Contract tests for the tracker normalizers.

Validates that recorded SPOT and Garmin payloads normalize to the
expected points. These tests run independently (no full stack required).
"""

import json
import pytest
from pathlib import Path
import sys
from datetime import datetime, timezone

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from contracts.constants import TRACKER_SPOT, TRACKER_GARMIN
from ingestion import get_normalizer, ParseError, SpotNormalizer, GarminNormalizer
from processing.classifier import MessageKind, message_kind


def load_fixture(filename: str) -> bytes:
    """Load raw fixture payload."""
    fixture_path = Path(__file__).parent.parent / "fixtures" / filename
    return fixture_path.read_bytes()


def spot_message(**overrides) -> dict:
    message = {
        "messengerName": "Pilot Spot",
        "messageType": "UNLIMITED-TRACK",
        "latitude": 46.45669,
        "longitude": 6.88411,
        "dateTime": "2023-01-14T07:47:09+0000",
        "altitude": 1264,
    }
    message.update(overrides)
    return message


def spot_payload(messages) -> bytes:
    return json.dumps({
        "response": {"feedMessageResponse": {"count": 1, "messages": {"message": messages}}}
    }).encode()


class TestSpotNormalizer:
    """SPOT JSON feed."""

    def test_full_response(self):
        """Test that a feed with 4 messages yields 4 points in source order."""
        points = SpotNormalizer().parse(load_fixture("spot_response_full.json"))

        assert len(points) == 4
        assert points[0].msg_type == "OK"
        assert message_kind(points[0].msg_type) == MessageKind.OK
        assert points[0].msg_content == "Pilot has landed safely"
        assert points[1].msg_type == "UNLIMITED-TRACK"
        assert points[1].latitude == pytest.approx(46.45669)
        assert points[1].longitude == pytest.approx(6.88411)
        assert points[1].date_time == datetime(2023, 1, 14, 7, 47, 9, tzinfo=timezone.utc)
        assert points[1].altitude == 1264

    def test_source_order_is_kept(self):
        """Test that newest-first feeds are not re-sorted by the normalizer."""
        points = SpotNormalizer().parse(load_fixture("spot_response_full.json"))
        timestamps = [p.date_time for p in points]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_single_message_not_wrapped_in_list(self):
        """Test that a lone message object is treated as a one-element list."""
        points = SpotNormalizer().parse(load_fixture("spot_response_single_msg.json"))

        assert len(points) == 1
        assert points[0].date_time == datetime(2023, 8, 23, 9, 33, 25, tzinfo=timezone.utc)
        assert points[0].latitude == pytest.approx(46.6015)

    def test_no_displayable_messages(self):
        """Test that an error response without feed yields no points."""
        assert SpotNormalizer().parse(load_fixture("spot_response_no_messages.json")) == []

    def test_missing_content_defaults_to_empty(self):
        """Test that tracking messages without messageContent get an empty content."""
        points = SpotNormalizer().parse(spot_payload([spot_message()]))
        assert points[0].msg_content == ""

    def test_malformed_date_time(self):
        """Test that a malformed dateTime is reported with its field name."""
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(spot_payload([spot_message(dateTime="14/01/2023 07:47")]))

        assert exc_info.value.field == "dateTime"
        assert exc_info.value.source == TRACKER_SPOT
        assert exc_info.value.value == "14/01/2023 07:47"

    def test_non_numeric_latitude(self):
        """Test that a non-numeric latitude is rejected."""
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(spot_payload([spot_message(latitude="north")]))
        assert exc_info.value.field == "latitude"

    def test_missing_longitude(self):
        """Test that a missing longitude is rejected."""
        message = spot_message()
        del message["longitude"]
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(spot_payload([message]))
        assert exc_info.value.field == "longitude"

    def test_latitude_out_of_range(self):
        """Test that coordinates outside WGS84 bounds are rejected."""
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(spot_payload([spot_message(latitude=123.4)]))
        assert exc_info.value.field == "latitude"

    def test_invalid_json(self):
        """Test that a non-JSON body is a parse error on the body."""
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(b"<html>Service Unavailable</html>")
        assert exc_info.value.field == "body"

    @pytest.mark.parametrize("raw, field", [
        (b'{"response": "oops"}', "response"),
        (b'{"response": {"feedMessageResponse": ["oops"]}}', "feedMessageResponse"),
        (b'{"response": {"feedMessageResponse": {"messages": 3}}}', "messages"),
        (b'{"response": {"feedMessageResponse": {"messages": {"message": "oops"}}}}', "message"),
    ])
    def test_unexpected_structure(self, raw, field):
        """Test that well-formed JSON of the wrong shape names the offending field."""
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(raw)
        assert exc_info.value.field == field

    def test_message_entry_not_an_object(self):
        with pytest.raises(ParseError) as exc_info:
            SpotNormalizer().parse(spot_payload([spot_message(), "x"]))

        assert exc_info.value.field == "message"
        assert exc_info.value.value == "x"


class TestGarminNormalizer:
    """Garmin MapShare KML feed."""

    def test_feed(self):
        """Test that placemarks become points and the track line is skipped."""
        points = GarminNormalizer().parse(load_fixture("garmin_feed.kml"))

        # 6 placemarks, the last one is the track line
        assert len(points) == 5
        assert points[0].msg_type == "Tracking turned on from device."
        assert points[1].latitude == pytest.approx(46.625150)
        assert points[1].longitude == pytest.approx(7.206108)
        assert points[1].date_time == datetime(2023, 8, 23, 10, 26, 45, tzinfo=timezone.utc)
        assert points[2].date_time == datetime(2023, 8, 23, 10, 36, 45, tzinfo=timezone.utc)

    def test_elevation_is_truncated_to_metres(self):
        """Test that '1520.76 m from MSL' becomes 1520."""
        points = GarminNormalizer().parse(load_fixture("garmin_feed.kml"))
        assert points[2].altitude == 1520

    def test_text_becomes_content(self):
        """Test that the Text field is carried as message content."""
        points = GarminNormalizer().parse(load_fixture("garmin_feed.kml"))
        assert points[3].msg_type == "Msg to shared map received"
        assert points[3].msg_content == "Landed near Boltigen"
        assert message_kind(points[3].msg_type) == MessageKind.CUSTOM

    def test_empty_feed(self):
        """Test that a feed without placemarks yields no points."""
        assert GarminNormalizer().parse(load_fixture("garmin_feed_empty.kml")) == []

    def test_malformed_time(self):
        """Test that a malformed Time UTC is reported with its field name."""
        raw = load_fixture("garmin_feed.kml").replace(b"8/23/2023 10:26:45 AM", b"yesterday")
        with pytest.raises(ParseError) as exc_info:
            GarminNormalizer().parse(raw)

        assert exc_info.value.field == "Time UTC"
        assert exc_info.value.source == TRACKER_GARMIN

    def test_non_numeric_longitude(self):
        """Test that a non-numeric longitude is rejected."""
        raw = load_fixture("garmin_feed.kml").replace(
            b"<value>7.206108</value>", b"<value>east</value>"
        )
        with pytest.raises(ParseError) as exc_info:
            GarminNormalizer().parse(raw)
        assert exc_info.value.field == "Longitude"

    def test_invalid_xml(self):
        """Test that a truncated document is a parse error on the body."""
        with pytest.raises(ParseError) as exc_info:
            GarminNormalizer().parse(load_fixture("garmin_feed.kml")[:500])
        assert exc_info.value.field == "body"


class TestNormalizerRegistry:
    """Normalizers are selected by tracker type."""

    def test_known_tracker_types(self):
        assert isinstance(get_normalizer(TRACKER_SPOT), SpotNormalizer)
        assert isinstance(get_normalizer(TRACKER_GARMIN), GarminNormalizer)

    def test_unknown_tracker_type(self):
        with pytest.raises(KeyError):
            get_normalizer("inreach-classic")
