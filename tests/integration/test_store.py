"""
Integration test: TrackStore against a real Postgres.

Requires a reachable database (DATABASE_URL or POSTGRES_* variables).
The schema is created if needed; test rows are removed afterwards.

This test verifies:
1. Roster queries, including the organization filter
2. Point inserts and duplicate handling
3. Day and date queries
4. The new_track_data notification fired by inserts
"""

import json
import pytest
import psycopg
from pathlib import Path
import sys
from datetime import date, datetime, timezone

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from contracts.constants import NOTIFY_CHANNEL_NEW_TRACK_DATA
from contracts.validation import Point, validate_track_notification
from scripts.init_db import create_schema
from storage.manager import DATABASE_URL, StoreError, TrackStore

PILOT_ID = "integration-test-pilot"
OTHER_PILOT_ID = "integration-test-other"
DAY = date(2001, 2, 3)


def make_point(minute: int, msg_type: str = "UNLIMITED-TRACK") -> Point:
    return Point(
        date_time=datetime(2001, 2, 3, 10, minute, 0, tzinfo=timezone.utc),
        latitude=46.6,
        longitude=7.2,
        altitude=1500 + minute,
        msg_type=msg_type,
    )


@pytest.fixture(scope="module")
def store():
    """Store on a prepared schema with two test pilots."""
    try:
        conn = psycopg.connect(DATABASE_URL, autocommit=True, connect_timeout=3)
    except psycopg.Error as e:
        pytest.skip(f"Could not connect to database: {e}")

    assert create_schema(DATABASE_URL), "Schema creation failed"
    conn.execute("DELETE FROM pilot WHERE id IN (%s, %s)", (PILOT_ID, OTHER_PILOT_ID))
    conn.execute(
        "INSERT INTO pilot (id, name, home, orgs, tracker_type) VALUES "
        "(%s, 'Integration Pilot', 'Lausanne', ARRAY['integration-club'], 'spot'), "
        "(%s, 'Integration Other', '', '{}', 'garmin')",
        (PILOT_ID, OTHER_PILOT_ID),
    )

    track_store = TrackStore(DATABASE_URL)
    yield track_store

    track_store.close()
    conn.execute("DELETE FROM pilot WHERE id IN (%s, %s)", (PILOT_ID, OTHER_PILOT_ID))
    conn.close()


class TestPilots:
    """Roster queries."""

    def test_all_pilots(self, store):
        ids = {pilot.id for pilot in store.get_all_pilots()}
        assert {PILOT_ID, OTHER_PILOT_ID} <= ids

    def test_pilots_from_org(self, store):
        pilots = store.get_pilots_from_org("integration-club")

        assert [pilot.id for pilot in pilots] == [PILOT_ID]
        assert pilots[0].orgs == ["integration-club"]
        assert pilots[0].home == "Lausanne"


class TestTracks:
    """Point inserts and track queries."""

    def test_write_and_read_back(self, store):
        assert store.write_track(PILOT_ID, make_point(1))
        assert store.write_track(PILOT_ID, make_point(2, msg_type="OK"))

        track = store.get_track_of_day(PILOT_ID, DAY)
        assert track == [make_point(1), make_point(2, msg_type="OK")]

    def test_duplicate_write_is_not_an_error(self, store):
        """Test that writing the same point twice returns False without raising."""
        store.write_track(PILOT_ID, make_point(3))
        assert store.write_track(PILOT_ID, make_point(3)) is False

    def test_track_since(self, store):
        since = make_point(1).date_time
        track = store.get_track_since(PILOT_ID, since)

        assert all(point.date_time > since for point in track)
        assert make_point(2, msg_type="OK") in track

    def test_all_tracks_of_day(self, store):
        tracks = store.get_all_tracks_of_day(DAY)

        assert len(tracks["Integration Pilot"]) >= 2
        assert tracks["Integration Other"] == []

    def test_dates_with_count(self, store):
        rows = store.get_dates_with_count(limit=1000)
        counts = dict(rows)

        assert counts[DAY] == 1

    def test_unknown_pilot(self, store):
        with pytest.raises(StoreError):
            store.write_track("no-such-pilot", make_point(4))


class TestNotification:
    """Inserts notify listeners with the pilot name and the point."""

    def test_insert_notifies(self, store):
        with psycopg.connect(DATABASE_URL, autocommit=True) as listen_conn:
            listen_conn.execute(f"LISTEN {NOTIFY_CHANNEL_NEW_TRACK_DATA}")
            store.write_track(PILOT_ID, make_point(5, msg_type="HELP"))

            payloads = [notify.payload for notify in listen_conn.notifies(timeout=5.0, stop_after=1)]

        assert len(payloads) == 1
        is_valid, notification, error = validate_track_notification(json.loads(payloads[0]))
        assert is_valid, f"Invalid notification: {error}"
        assert notification.pilot == "Integration Pilot"
        assert notification.point == make_point(5, msg_type="HELP")
