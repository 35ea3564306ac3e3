"""
PostgreSQL store for pilots and their tracks.

Tables (see scripts/init_db.py):
- pilot: roster, with the organizations each pilot belongs to
- track: one row per point, keyed by (pilot_id, unix_time)

Every insert into track fires a NOTIFY on the new_track_data channel.
"""

import os
import logging
from datetime import date, datetime
from typing import Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from pydantic import ValidationError

from contracts.validation import Pilot, Point
from storage.metrics import PILOTS_RETRIEVED, TRACKS_RETRIEVED, TRACKS_WRITTEN, QUERY_LATENCY

logger = logging.getLogger(__name__)

POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", "5432"))
POSTGRES_DB_NAME = os.getenv("POSTGRES_DB_NAME", "tracking")
POSTGRES_USER = os.getenv("POSTGRES_USER", "livetrack")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "livetrack")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB_NAME}",
)

DEFAULT_DATES_LIMIT = 5

PILOT_COLUMNS = "id, name, home, orgs, tracker_type"
POINT_COLUMNS = "unix_time, latitude, longitude, altitude, msg_type, msg_content"


class StoreError(Exception):
    """Store failure other than a duplicate point."""


def row_to_point(row: dict) -> Point:
    return Point(
        date_time=row["unix_time"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        altitude=row["altitude"],
        msg_type=row["msg_type"] or "",
        msg_content=row["msg_content"] or "",
    )


class TrackStore:
    """
    Access to the pilot and track tables.

    Uses one autocommit connection, opened lazily. psycopg serializes
    concurrent use of a connection, so the store can be shared between
    the scheduler threads.
    """

    def __init__(self, database_url: str = DATABASE_URL, connect_timeout: int = 10):
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self._conn: Optional[psycopg.Connection] = None

    def connect(self) -> psycopg.Connection:
        """Open the connection if needed."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg.connect(
                    self.database_url,
                    autocommit=True,
                    row_factory=dict_row,
                    connect_timeout=self.connect_timeout,
                )
            except psycopg.Error as e:
                raise StoreError(f"Cannot connect to database: {e}") from e
            logger.info("Database connection established")
        return self._conn

    def close(self):
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")
        self._conn = None

    def _fetch_all(self, query_name: str, query: str, params: tuple = ()) -> list[dict]:
        conn = self.connect()
        try:
            with QUERY_LATENCY.labels(query=query_name).time():
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return cur.fetchall()
        except psycopg.Error as e:
            raise StoreError(f"{query_name} failed: {e}") from e

    def ping(self) -> bool:
        self._fetch_all("ping", "SELECT 1 AS ok")
        return True

    # ============================================================================
    # Pilots
    # ============================================================================

    def _to_pilots(self, query_name: str, rows: list[dict]) -> list[Pilot]:
        try:
            pilots = [Pilot(**row) for row in rows]
        except ValidationError as e:
            raise StoreError(f"{query_name} returned an invalid pilot: {e}") from e
        PILOTS_RETRIEVED.inc(len(pilots))
        return pilots

    def get_all_pilots(self) -> list[Pilot]:
        rows = self._fetch_all(
            "get_all_pilots",
            f"SELECT {PILOT_COLUMNS} FROM pilot ORDER BY name",
        )
        return self._to_pilots("get_all_pilots", rows)

    def get_pilots_from_org(self, organization: str) -> list[Pilot]:
        rows = self._fetch_all(
            "get_pilots_from_org",
            f"SELECT {PILOT_COLUMNS} FROM pilot WHERE %s = ANY(orgs) ORDER BY name",
            (organization,),
        )
        return self._to_pilots("get_pilots_from_org", rows)

    # ============================================================================
    # Tracks
    # ============================================================================

    def get_track_since(self, pilot_id: str, since: datetime) -> list[Point]:
        """Points strictly after `since`, oldest first."""
        rows = self._fetch_all(
            "get_track_since",
            f"SELECT {POINT_COLUMNS} FROM track "
            "WHERE pilot_id = %s AND unix_time > %s ORDER BY unix_time",
            (pilot_id, since),
        )
        TRACKS_RETRIEVED.inc(len(rows))
        return [row_to_point(row) for row in rows]

    def get_track_of_day(self, pilot_id: str, day: date) -> list[Point]:
        rows = self._fetch_all(
            "get_track_of_day",
            f"SELECT {POINT_COLUMNS} FROM track "
            "WHERE pilot_id = %s AND (unix_time AT TIME ZONE 'UTC')::date = %s "
            "ORDER BY unix_time",
            (pilot_id, day),
        )
        TRACKS_RETRIEVED.inc(len(rows))
        return [row_to_point(row) for row in rows]

    def get_all_tracks_of_day(self, day: date) -> dict[str, list[Point]]:
        """Track of every pilot for a UTC day, keyed by pilot name. Pilots without points map to []."""
        return {
            pilot.name: self.get_track_of_day(pilot.id, day)
            for pilot in self.get_all_pilots()
        }

    def get_dates_with_count(self, limit: int = DEFAULT_DATES_LIMIT) -> list[tuple[date, int]]:
        """Most recent days with activity and the number of distinct pilots that flew."""
        rows = self._fetch_all(
            "get_dates_with_count",
            "SELECT (unix_time AT TIME ZONE 'UTC')::date AS day, COUNT(DISTINCT pilot_id) AS pilots "
            "FROM track GROUP BY day ORDER BY day DESC LIMIT %s",
            (limit,),
        )
        return [(row["day"], row["pilots"]) for row in rows]

    def write_track(self, pilot_id: str, point: Point) -> bool:
        """
        Insert one point.

        Returns:
            True if inserted, False if the point was already stored.

        Raises:
            StoreError: on any failure other than a duplicate key
        """
        conn = self.connect()
        try:
            with QUERY_LATENCY.labels(query="write_track").time():
                with conn.cursor() as cur:
                    cur.execute(
                        f"INSERT INTO track (pilot_id, {POINT_COLUMNS}) "
                        "VALUES (%s, %s, %s, %s, %s, %s, %s)",
                        (
                            pilot_id,
                            point.date_time,
                            point.latitude,
                            point.longitude,
                            point.altitude,
                            point.msg_type,
                            point.msg_content,
                        ),
                    )
        except errors.UniqueViolation:
            TRACKS_WRITTEN.labels(result="duplicate").inc()
            logger.debug(f"Point {point.date_time.isoformat()} of pilot {pilot_id} already stored")
            return False
        except psycopg.Error as e:
            raise StoreError(f"write_track failed for pilot {pilot_id}: {e}") from e

        TRACKS_WRITTEN.labels(result="inserted").inc()
        return True
