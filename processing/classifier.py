"""
Event classification.

Maps the message kind of a newly merged point to a chat notification:
- OK: landing report with flight statistics and links
- HELP / MOVE / CUSTOM: urgent message with the raw content
- START / OFF: tracking switched on again / off
- UNKNOWN: nothing sent
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from urllib.parse import quote

from contracts.constants import (
    KIND_OK,
    KIND_HELP,
    KIND_MOVE,
    KIND_CUSTOM,
    KIND_START,
    KIND_OFF,
    KIND_UNKNOWN,
    MESSAGE_TYPE_KINDS,
    TRACKING_MESSAGE_TYPES,
)
from contracts.validation import Pilot, Point
from processing.itinerary import ItineraryClient, ItineraryError
from processing.track import cumulative_distance, flight_time, format_duration, takeoff_distance

logger = logging.getLogger(__name__)

DEFAULT_LIVETRACK_ENDPOINT = "https://livetrack.fahy.xyz/"
NO_ITINERARY = "No SBB itinerary"
MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination={latitude:f},{longitude:f}&travelmode=driving"

# RFC 822 layout, e.g. "14 Jan 23 08:17 UTC"
RFC822_FORMAT = "%d %b %y %H:%M %Z"


class MessageKind(str, Enum):
    OK = KIND_OK
    HELP = KIND_HELP
    MOVE = KIND_MOVE
    CUSTOM = KIND_CUSTOM
    START = KIND_START
    OFF = KIND_OFF
    UNKNOWN = KIND_UNKNOWN


def message_kind(msg_type: str) -> MessageKind:
    """Kind of a raw tracker message type."""
    return MessageKind(MESSAGE_TYPE_KINDS.get(msg_type, KIND_UNKNOWN))


@dataclass
class Notification:
    text: str
    should_notify: bool
    kind: MessageKind = MessageKind.UNKNOWN


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(RFC822_FORMAT)


def livetrack_link(endpoint: str, pilot_name: str) -> str:
    return f"[Livetrack]({endpoint}?pilot={quote(pilot_name)})"


def map_link(point: Point) -> str:
    url = MAPS_DIRECTIONS_URL.format(latitude=point.latitude, longitude=point.longitude)
    return f"[Pick Me]({url})"


class EventClassifier:
    """Turns merged points into chat notifications."""

    def __init__(
        self,
        livetrack_endpoint: str = DEFAULT_LIVETRACK_ENDPOINT,
        itinerary: Optional[ItineraryClient] = None,
    ):
        self.livetrack_endpoint = livetrack_endpoint
        self.itinerary = itinerary or ItineraryClient()

    def itinerary_link(self, point: Point, pilot: Pilot) -> Optional[str]:
        """Markdown link to the way home, or None when the lookup fails."""
        try:
            url = self.itinerary.lookup(point.latitude, point.longitude, pilot.home)
        except ItineraryError as e:
            logger.warning(f"No itinerary for {pilot.name}: {e}")
            return None
        return f"[Back with SBB]({url})"

    def session_started(self, pilot: Pilot, started_at: datetime) -> Notification:
        """Notification for the first points of the day."""
        text = (
            f"*{pilot.name}* started tracking at {format_timestamp(started_at)}\n"
            f"{livetrack_link(self.livetrack_endpoint, pilot.name)}"
        )
        return Notification(text=text, should_notify=True, kind=MessageKind.START)

    def classify(self, point: Point, pilot: Pilot) -> Notification:
        """
        Decide whether and what to notify for a point.

        `pilot.points` is the track so far and should already include `point`.
        """
        kind = message_kind(point.msg_type)

        if kind == MessageKind.OK:
            return Notification(text=self._landing_text(point, pilot), should_notify=True, kind=kind)

        if kind in (MessageKind.HELP, MessageKind.MOVE, MessageKind.CUSTOM):
            content = point.msg_content or point.msg_type
            return Notification(text=f"*{pilot.name}* sent {content}!!!", should_notify=True, kind=kind)

        if kind == MessageKind.START:
            text = f"*{pilot.name}* started tracking again at {format_timestamp(point.date_time)}"
            return Notification(text=text, should_notify=True, kind=kind)

        if kind == MessageKind.OFF:
            text = f"*{pilot.name}* turned the tracking off at {format_timestamp(point.date_time)}"
            return Notification(text=text, should_notify=True, kind=kind)

        if point.msg_type in TRACKING_MESSAGE_TYPES:
            logger.debug(f"Position report of {pilot.name} at {point.date_time.isoformat()}")
        else:
            logger.warning(f"Message type unknown for {pilot.name}: {point.msg_type!r}")
        return Notification(text="", should_notify=False, kind=kind)

    def _landing_text(self, point: Point, pilot: Pilot) -> str:
        track = pilot.points or [point]
        itinerary = self.itinerary_link(point, pilot) or NO_ITINERARY

        return (
            f"*{pilot.name}* sent OK at {format_timestamp(point.date_time)}\n"
            f"Flight time: {format_duration(flight_time(track))}\n"
            f"Distance ALL/TO: {cumulative_distance(track):.2f}/{takeoff_distance(track):.2f} km\n"
            f"{livetrack_link(self.livetrack_endpoint, pilot.name)}\n"
            f"{map_link(point)}\n"
            f"{itinerary}"
        )
