"""
SPOT feed normalizer.

Parses the public SPOT feed API (message.json). Notable quirks:
- `messages.message` is a bare object instead of a list when the feed
  holds a single message
- a feed without displayable messages has no `feedMessageResponse`
  at all, only an `errors` object
"""

import json
import logging
from datetime import datetime

from contracts.constants import TRACKER_SPOT
from contracts.validation import Point
from ingestion.normalize import Normalizer, ParseError

logger = logging.getLogger(__name__)

SPOT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


class SpotNormalizer(Normalizer):
    """Normalizer for SPOT JSON feeds."""

    source = TRACKER_SPOT

    def parse(self, raw: bytes) -> list[Point]:
        try:
            document = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(self.source, "body", raw[:80], str(e)) from e

        if not isinstance(document, dict):
            raise ParseError(self.source, "body", raw[:80], "expected a JSON object")

        response = document.get("response") or {}
        if not isinstance(response, dict):
            raise ParseError(self.source, "response", response, "expected an object")

        feed = response.get("feedMessageResponse")
        if feed is None:
            if response.get("errors"):
                logger.debug(f"SPOT feed has no messages: {response['errors']}")
            return []
        if not isinstance(feed, dict):
            raise ParseError(self.source, "feedMessageResponse", feed, "expected an object")

        container = feed.get("messages") or {}
        if not isinstance(container, dict):
            raise ParseError(self.source, "messages", container, "expected an object")

        messages = container.get("message") or []
        if isinstance(messages, dict):
            messages = [messages]
        if not isinstance(messages, list):
            raise ParseError(self.source, "message", messages, "expected an object or a list")

        return [self._to_point(message) for message in messages]

    def _to_point(self, message) -> Point:
        if not isinstance(message, dict):
            raise ParseError(self.source, "message", message, "expected an object")

        raw_date = message.get("dateTime")
        try:
            date_time = datetime.strptime(raw_date, SPOT_DATE_FORMAT)
        except (TypeError, ValueError) as e:
            raise ParseError(self.source, "dateTime", raw_date) from e

        altitude = message.get("altitude") or 0

        return self.build_point(
            date_time=date_time,
            latitude=self.parse_float("latitude", message.get("latitude")),
            longitude=self.parse_float("longitude", message.get("longitude")),
            altitude=int(self.parse_float("altitude", altitude)),
            msg_type=message.get("messageType") or "",
            msg_content=message.get("messageContent") or "",
        )
