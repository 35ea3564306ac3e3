"""
Livetrack Contracts Package

Provides shared constants and validation for data contracts.
"""

from contracts.constants import *
from contracts.validation import (
    Point,
    TrackPoint,
    Pilot,
    DatesResponse,
    TrackNotification,
    validate_point,
    validate_pilot,
    validate_track_notification,
)

__all__ = [
    # Constants
    "NOTIFY_CHANNEL_NEW_TRACK_DATA",
    "TRACKER_SPOT",
    "TRACKER_GARMIN",
    "MESSAGE_TYPE_KINDS",
    "TRACKING_MESSAGE_TYPES",
    # Models
    "Point",
    "TrackPoint",
    "Pilot",
    "DatesResponse",
    "TrackNotification",
    # Validators
    "validate_point",
    "validate_pilot",
    "validate_track_notification",
]
