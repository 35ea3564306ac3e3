"""
Shared constants for Livetrack services.

This module provides a single source of truth for:
- Tracker source tags
- Raw tracker message types and the notification kind they map to
- The store change-notification channel

All services should import from this module to ensure consistency.
"""

# Store change-notification channel (Postgres LISTEN/NOTIFY)
NOTIFY_CHANNEL_NEW_TRACK_DATA = "new_track_data"

# Tracker source tags (pilot.tracker_type)
TRACKER_SPOT = "spot"
TRACKER_GARMIN = "garmin"

# Message kinds
KIND_OK = "OK"
KIND_HELP = "HELP"
KIND_MOVE = "MOVE"
KIND_CUSTOM = "CUSTOM"
KIND_START = "START"
KIND_OFF = "OFF"
KIND_UNKNOWN = "UNKNOWN"

# Raw message types as delivered by the trackers, mapped to their kind.
# SPOT sends short upper-case tags, Garmin inReach sends full sentences.
MESSAGE_TYPE_KINDS = {
    "OK": KIND_OK,
    "HELP": KIND_HELP,
    "SOS": KIND_HELP,
    "MOVE": KIND_MOVE,
    "NEWMOVEMENT": KIND_MOVE,
    "CUSTOM": KIND_CUSTOM,
    "START": KIND_START,
    "OFF": KIND_OFF,
    "POWER-OFF": KIND_OFF,
    "Tracking turned on from device.": KIND_START,
    "Tracking turned off from device.": KIND_OFF,
    "Msg to shared map received": KIND_CUSTOM,
    "Quick Text to MapShare received": KIND_CUSTOM,
    "Emergency initiated from device.": KIND_HELP,
}

# Periodic position reports: stored and broadcast, never announced
TRACKING_MESSAGE_TYPES = frozenset({
    "TRACK",
    "EXTREME-TRACK",
    "UNLIMITED-TRACK",
    "Tracking interval received.",
    "Tracking message received.",
})
