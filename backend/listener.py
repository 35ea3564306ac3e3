"""
Postgres LISTEN bridge for the new_track_data channel.

Runs in a background thread with its own connection and forwards every
notification payload, unchanged, to a callback (the broadcast server).
Reconnects with exponential backoff when the connection drops.
"""

import json
import logging
import threading
from typing import Callable, Optional

import psycopg
from psycopg import sql

from backend.metrics import NOTIFICATIONS_RECEIVED, LISTENER_RECONNECTS
from contracts.constants import NOTIFY_CHANNEL_NEW_TRACK_DATA
from contracts.validation import validate_track_notification

logger = logging.getLogger(__name__)

MIN_RECONNECT_INTERVAL_SECONDS = 10.0
MAX_RECONNECT_INTERVAL_SECONDS = 30.0
POLL_TIMEOUT_SECONDS = 1.0


class StoreListener:
    """Listens to a Postgres notification channel."""

    def __init__(
        self,
        database_url: str,
        on_payload: Callable[[str], None],
        channel: str = NOTIFY_CHANNEL_NEW_TRACK_DATA,
        min_reconnect_interval: float = MIN_RECONNECT_INTERVAL_SECONDS,
        max_reconnect_interval: float = MAX_RECONNECT_INTERVAL_SECONDS,
    ):
        self.database_url = database_url
        self.on_payload = on_payload
        self.channel = channel
        self.min_reconnect_interval = min_reconnect_interval
        self.max_reconnect_interval = max_reconnect_interval
        self.running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _connect(self) -> psycopg.Connection:
        conn = psycopg.connect(self.database_url, autocommit=True)
        conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.channel)))
        logger.info(f"Listening on channel '{self.channel}'")
        return conn

    def handle_payload(self, payload: str):
        """Forward one notification payload."""
        try:
            data = json.loads(payload)
            is_valid, notification, error = validate_track_notification(data)
        except json.JSONDecodeError as e:
            is_valid, notification, error = False, None, str(e)

        if is_valid:
            NOTIFICATIONS_RECEIVED.labels(status="valid").inc()
            logger.debug(f"New point for {notification.pilot} at {notification.point.date_time.isoformat()}")
        else:
            # Dashboards decide what to do with it
            NOTIFICATIONS_RECEIVED.labels(status="invalid").inc()
            logger.warning(f"Unexpected notification payload: {error}")

        self.on_payload(payload)

    def next_backoff(self, backoff: float) -> float:
        return min(backoff * 2, self.max_reconnect_interval)

    def _listen_loop(self):
        backoff = self.min_reconnect_interval

        while not self._stop_event.is_set():
            try:
                with self._connect() as conn:
                    backoff = self.min_reconnect_interval
                    while not self._stop_event.is_set():
                        for notify in conn.notifies(timeout=POLL_TIMEOUT_SECONDS):
                            self.handle_payload(notify.payload)
            except psycopg.OperationalError as e:
                if self._stop_event.is_set():
                    break
                LISTENER_RECONNECTS.inc()
                logger.warning(f"Store connection lost ({e}), reconnecting in {backoff:.0f}s")
                if self._stop_event.wait(backoff):
                    break
                backoff = self.next_backoff(backoff)

        logger.info("Listener loop stopped")

    def start(self):
        """Start listener in background thread."""
        if self.running:
            logger.warning("Listener already running")
            return

        self.running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._listen_loop, name="store-listener", daemon=True)
        self._thread.start()
        logger.info("Listener started")

    def stop(self, timeout: float = 5.0):
        """Stop listener."""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info("Listener stopped")
