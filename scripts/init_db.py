#!/usr/bin/env python3
"""
Initialize the Livetrack database schema.

Creates, if missing:
- pilot: roster (id, name, home, orgs[], tracker_type)
- track: one row per point, primary key (pilot_id, unix_time)
- a trigger publishing every inserted point on the new_track_data channel

Safe to run repeatedly.
"""

import os
import sys
import time
import logging
from pathlib import Path

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import psycopg

from contracts.constants import NOTIFY_CHANNEL_NEW_TRACK_DATA
from storage.manager import DATABASE_URL

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS pilot (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    home         TEXT NOT NULL DEFAULT '',
    orgs         TEXT[] NOT NULL DEFAULT '{}',
    tracker_type TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS track (
    pilot_id    TEXT NOT NULL REFERENCES pilot (id) ON DELETE CASCADE,
    unix_time   TIMESTAMPTZ NOT NULL,
    latitude    DOUBLE PRECISION NOT NULL,
    longitude   DOUBLE PRECISION NOT NULL,
    altitude    INTEGER NOT NULL DEFAULT 0,
    msg_type    TEXT NOT NULL DEFAULT '',
    msg_content TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (pilot_id, unix_time)
);

CREATE INDEX IF NOT EXISTS track_unix_time_idx ON track (unix_time);
"""

NOTIFY_TRIGGER = f"""
CREATE OR REPLACE FUNCTION notify_new_track_data() RETURNS trigger AS $$
BEGIN
    PERFORM pg_notify('{NOTIFY_CHANNEL_NEW_TRACK_DATA}', json_build_object(
        'pilot', (SELECT name FROM pilot WHERE id = NEW.pilot_id),
        'point', json_build_object(
            'dateTime', NEW.unix_time,
            'latitude', NEW.latitude,
            'longitude', NEW.longitude,
            'altitude', NEW.altitude,
            'msgType', NEW.msg_type,
            'msgContent', NEW.msg_content
        )
    )::text);
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS track_notify_new_track_data ON track;
CREATE TRIGGER track_notify_new_track_data
    AFTER INSERT ON track
    FOR EACH ROW EXECUTE FUNCTION notify_new_track_data();
"""


def wait_for_database(database_url: str, max_retries: int = 30, retry_delay: int = 2) -> bool:
    """Wait for the database to accept connections."""
    logger.info("Waiting for database...")

    for i in range(max_retries):
        try:
            with psycopg.connect(database_url, connect_timeout=5):
                logger.info("Database is available")
                return True
        except psycopg.OperationalError as e:
            if i < max_retries - 1:
                logger.debug(f"Database not ready (attempt {i+1}/{max_retries}): {e}")
                time.sleep(retry_delay)
            else:
                logger.error(f"Database not available after {max_retries} attempts: {e}")

    return False


def create_schema(database_url: str) -> bool:
    """Create tables and the notification trigger."""
    try:
        with psycopg.connect(database_url, autocommit=True) as conn:
            conn.execute(SCHEMA)
            logger.info("✅ Tables pilot and track are ready")
            conn.execute(NOTIFY_TRIGGER)
            logger.info(f"✅ Inserts on track notify '{NOTIFY_CHANNEL_NEW_TRACK_DATA}'")
        return True
    except psycopg.Error as e:
        logger.error(f"❌ Failed to create schema: {e}")
        return False


def main():
    """Main entry point."""
    logger.info("=" * 50)
    logger.info("Livetrack Database Initialization")
    logger.info("=" * 50)

    database_url = os.getenv("DATABASE_URL", DATABASE_URL)

    if not wait_for_database(database_url):
        logger.error("Failed to connect to database. Exiting.")
        sys.exit(1)

    if not create_schema(database_url):
        logger.error("Failed to create schema. Exiting.")
        sys.exit(1)

    logger.info("=" * 50)
    logger.info("Database initialization complete")
    logger.info("=" * 50)


if __name__ == "__main__":
    main()
