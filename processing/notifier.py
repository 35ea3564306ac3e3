"""
Telegram notification dispatcher.

Sends Markdown messages to one chat through the Bot HTTP API and keeps
the ids of sent messages in memory so they can all be deleted at the
daily reset.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import requests

from processing.metrics import NOTIFICATIONS_SENT, NOTIFICATIONS_REMOVED, NOTIFICATION_ERRORS

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
HTTP_TIMEOUT_SECONDS = 10
PARSE_MODE = "Markdown"

# Telegram's answer when deleting a message that is already gone
MESSAGE_NOT_FOUND = "message to delete not found"


class NotificationError(Exception):
    """A Telegram API call failed."""

    def __init__(self, method: str, description: str):
        self.method = method
        self.description = description
        super().__init__(f"Telegram {method} failed: {description}")


@dataclass
class NotificationRecord:
    message_id: int
    pilot_id: Optional[str] = None
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationDispatcher:
    """
    Telegram bot bound to one chat.

    send() is called from the fetch thread and retract_all() from the
    daily reset thread, so the sent-message records are lock protected.
    """

    def __init__(
        self,
        token: str,
        channel: str,
        session: Optional[requests.Session] = None,
        api_url: str = TELEGRAM_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ):
        self.channel = channel
        self.timeout = timeout
        self.session = session or requests.Session()
        self._base_url = f"{api_url}/bot{token}"
        self._records: list[NotificationRecord] = []
        self._lock = threading.Lock()

    def _call(self, method: str, payload: dict) -> dict:
        try:
            response = self.session.post(f"{self._base_url}/{method}", json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            # The request URL embeds the bot token; only report the error type
            raise NotificationError(method, type(e).__name__) from e

        try:
            body = response.json()
        except ValueError as e:
            raise NotificationError(method, f"HTTP {response.status_code}, invalid JSON") from e

        if not body.get("ok"):
            raise NotificationError(method, body.get("description") or f"HTTP {response.status_code}")
        return body.get("result")

    @property
    def pending(self) -> int:
        """Number of sent messages not yet retracted."""
        with self._lock:
            return len(self._records)

    def verify(self) -> dict:
        """
        Check the bot credentials.

        Raises:
            NotificationError: if the token is rejected or Telegram is unreachable
        """
        me = self._call("getMe", {})
        logger.info(f"Authorized on Telegram as @{me.get('username')}")
        return me

    def send(self, text: str, pilot_id: Optional[str] = None) -> int:
        """Send a message to the chat and return its id."""
        try:
            result = self._call("sendMessage", {
                "chat_id": self.channel,
                "text": text,
                "parse_mode": PARSE_MODE,
            })
        except NotificationError:
            NOTIFICATION_ERRORS.labels(method="sendMessage").inc()
            raise

        message_id = result["message_id"]
        with self._lock:
            self._records.append(NotificationRecord(message_id=message_id, pilot_id=pilot_id))
        NOTIFICATIONS_SENT.inc()
        logger.debug(f"Sent message {message_id} to {self.channel}")
        return message_id

    def retract_all(self) -> int:
        """
        Delete every message sent since the last retraction.

        All deletions are attempted; records are dropped whatever the
        outcome. Messages already deleted count as retracted.

        Returns:
            Number of messages deleted.

        Raises:
            ExceptionGroup: of NotificationError, one per failed deletion
        """
        with self._lock:
            records, self._records = self._records, []

        removed = 0
        failures = []
        for record in records:
            try:
                self._call("deleteMessage", {"chat_id": self.channel, "message_id": record.message_id})
            except NotificationError as e:
                if MESSAGE_NOT_FOUND in e.description.lower():
                    logger.debug(f"Message {record.message_id} was already deleted")
                    continue
                NOTIFICATION_ERRORS.labels(method="deleteMessage").inc()
                logger.warning(
                    f"Message {record.message_id} of pilot {record.pilot_id or '-'} "
                    f"sent at {record.sent_at.isoformat()} could not be deleted: {e.description}"
                )
                failures.append(e)
                continue
            removed += 1

        NOTIFICATIONS_REMOVED.inc(removed)
        logger.info(f"Retracted {removed} of {len(records)} messages")

        if failures:
            raise ExceptionGroup(f"{len(failures)} of {len(records)} messages could not be deleted", failures)
        return removed
