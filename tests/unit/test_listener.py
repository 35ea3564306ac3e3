"""
Unit tests for the store notification listener.
"""

import json
import threading
import pytest
from pathlib import Path
import sys
from unittest.mock import Mock

import psycopg

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from backend.listener import StoreListener

VALID_PAYLOAD = json.dumps({
    "pilot": "Pilot Garmin",
    "point": {
        "dateTime": "2023-08-23T10:26:45+00:00",
        "latitude": 46.62515,
        "longitude": 7.206108,
        "altitude": 2048,
        "msgType": "Tracking interval received.",
        "msgContent": "",
    },
})


def make_listener(**kwargs) -> tuple[StoreListener, Mock]:
    on_payload = Mock()
    return StoreListener("postgresql://localhost/tracking", on_payload, **kwargs), on_payload


class TestHandlePayload:
    """Payloads are forwarded verbatim."""

    def test_valid_payload(self):
        listener, on_payload = make_listener()
        listener.handle_payload(VALID_PAYLOAD)
        on_payload.assert_called_once_with(VALID_PAYLOAD)

    @pytest.mark.parametrize("payload", ["not json", '{"pilot": "Pilot Garmin"}'])
    def test_unexpected_payload_is_still_forwarded(self, payload):
        listener, on_payload = make_listener()
        listener.handle_payload(payload)
        on_payload.assert_called_once_with(payload)


class TestReconnect:
    """Backoff between connection attempts."""

    def test_backoff_doubles_up_to_max(self):
        listener, _ = make_listener(min_reconnect_interval=10, max_reconnect_interval=30)

        assert listener.next_backoff(10) == 20
        assert listener.next_backoff(20) == 30
        assert listener.next_backoff(30) == 30

    def test_retries_after_connection_failure(self):
        """Test that a failed connection is retried until the listener is stopped."""
        listener, _ = make_listener(min_reconnect_interval=0.01, max_reconnect_interval=0.02)
        attempts = []
        retried = threading.Event()

        def failing_connect():
            attempts.append(1)
            if len(attempts) >= 3:
                retried.set()
            raise psycopg.OperationalError("connection refused")

        listener._connect = failing_connect
        listener.start()
        try:
            assert retried.wait(timeout=2.0), "Listener should keep reconnecting"
        finally:
            listener.stop(timeout=1.0)

        assert not listener._thread.is_alive()
