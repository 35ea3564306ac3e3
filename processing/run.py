#!/usr/bin/env python3
"""
Entry point for the tracker service.

Polls every pilot's tracker, stores new points and announces them on
Telegram. Exits with status 1 if the database or Telegram cannot be
reached at startup.
"""

import os
import sys
import signal
import logging
import threading
from datetime import time as dt_time
from pathlib import Path

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from prometheus_client import start_http_server

from ingestion.fetchers import DEFAULT_SPOT_BASE_URL, DEFAULT_GARMIN_BASE_URL, build_fetchers
from processing.classifier import DEFAULT_LIVETRACK_ENDPOINT, EventClassifier
from processing.itinerary import ItineraryClient
from processing.notifier import NotificationDispatcher, NotificationError
from processing.scheduler import FetchScheduler
from storage.manager import DATABASE_URL, StoreError, TrackStore

# ============================================
# Configuration
# ============================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
METRICS_PORT = int(os.getenv("METRICS_PORT", "8001"))

FETCH_INTERVAL_SECONDS = float(os.getenv("FETCH_INTERVAL_SECONDS", "240"))
PACING_DELAY_SECONDS = float(os.getenv("PACING_DELAY_SECONDS", "5"))
DAILY_RESET_TIME = os.getenv("DAILY_RESET_TIME", "00:00")
SHUTDOWN_TIMEOUT_SECONDS = float(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "10"))
ORGANIZATION = os.getenv("ORGANIZATION", "")

SPOT_BASE_URL = os.getenv("SPOT_BASE_URL", DEFAULT_SPOT_BASE_URL)
GARMIN_BASE_URL = os.getenv("GARMIN_BASE_URL", DEFAULT_GARMIN_BASE_URL)
LIVETRACK_ENDPOINT = os.getenv("LIVETRACK_ENDPOINT", DEFAULT_LIVETRACK_ENDPOINT)

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN", "")
TELEGRAM_CHANNEL = os.getenv("TELEGRAM_CHANNEL", "")

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def start_metrics_server():
    """Start Prometheus metrics server in background thread."""
    try:
        start_http_server(METRICS_PORT)
        logger.info(f"Prometheus metrics server started on port {METRICS_PORT}")
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")


def build_scheduler(store: TrackStore, dispatcher: NotificationDispatcher) -> FetchScheduler:
    return FetchScheduler(
        store=store,
        fetchers=build_fetchers(SPOT_BASE_URL, GARMIN_BASE_URL),
        classifier=EventClassifier(LIVETRACK_ENDPOINT, ItineraryClient()),
        dispatcher=dispatcher,
        fetch_interval=FETCH_INTERVAL_SECONDS,
        reset_time=dt_time.fromisoformat(DAILY_RESET_TIME),
        pacing_delay=PACING_DELAY_SECONDS,
        organization=ORGANIZATION or None,
    )


def main():
    logger.info("=" * 50)
    logger.info("Livetrack Tracker - Starting")
    logger.info("=" * 50)

    if not TELEGRAM_TOKEN or not TELEGRAM_CHANNEL:
        logger.error("TELEGRAM_TOKEN and TELEGRAM_CHANNEL must be set")
        sys.exit(1)

    metrics_thread = threading.Thread(target=start_metrics_server, daemon=True)
    metrics_thread.start()

    store = TrackStore(DATABASE_URL)
    dispatcher = NotificationDispatcher(TELEGRAM_TOKEN, TELEGRAM_CHANNEL)
    scheduler = build_scheduler(store, dispatcher)

    try:
        store.connect()
        dispatcher.verify()
        scheduler.set_roster(scheduler.load_roster())
    except (StoreError, NotificationError) as e:
        logger.error(f"Startup failed: {e}")
        store.close()
        sys.exit(1)

    if ORGANIZATION:
        logger.info(f"Tracking pilots of organization '{ORGANIZATION}'")

    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        shutdown.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    scheduler.start()
    shutdown.wait()

    scheduler.stop(timeout=SHUTDOWN_TIMEOUT_SECONDS)
    store.close()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
