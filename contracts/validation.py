"""
Validation library for Livetrack data contracts.

Provides Pydantic models for pilots, track points and the change
notification emitted by the store. All services should use these models
to validate data crossing a process boundary (tracker feeds, database
rows, the dashboard API).
"""

from typing import Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from contracts.constants import TRACKER_SPOT, TRACKER_GARMIN


# ============================================================================
# Track Points
# ============================================================================

class Point(BaseModel):
    """
    A single position report of a pilot.

    Points are immutable and hashable; two points are the same point only
    when every field is equal.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    date_time: datetime
    latitude: float = Field(ge=-90, le=90, description="Latitude in degrees (WGS84)")
    longitude: float = Field(ge=-180, le=180, description="Longitude in degrees (WGS84)")
    altitude: int = Field(0, description="Altitude in metres")
    msg_type: str = Field("", description="Raw message type as sent by the tracker")
    msg_content: str = ""

    @field_validator("date_time", mode="before")
    @classmethod
    def parse_date_time(cls, v):
        """Parse ISO 8601 datetime string."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v

    @field_validator("date_time")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class TrackPoint(Point):
    """Point enriched with statistics derived from the track it belongs to."""
    flight_time: float = Field(0.0, ge=0, description="Seconds since the first point of the track")
    take_off_dist: float = Field(0.0, ge=0, description="Straight line distance from take-off in km")
    cum_dist: float = Field(0.0, ge=0, description="Cumulative distance in km")
    leg_dist: float = Field(0.0, ge=0, description="Distance from the previous point in km")
    avg_speed: float = Field(0.0, ge=0, description="Average speed since take-off in km/h")
    leg_speed: float = Field(0.0, ge=0, description="Speed since the previous point in km/h")


# ============================================================================
# Pilots
# ============================================================================

class Pilot(BaseModel):
    """A tracked pilot and the points fetched for them since the last reset."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    home: str = ""
    orgs: list[str] = Field(default_factory=list)
    tracker_type: str = Field(description=f"Tracker source tag, e.g. '{TRACKER_SPOT}' or '{TRACKER_GARMIN}'")
    points: list[Point] = Field(default_factory=list)

    @field_validator("orgs", mode="before")
    @classmethod
    def default_orgs(cls, v):
        """Postgres returns NULL for an empty array column."""
        return v or []


# ============================================================================
# API and Change Notifications
# ============================================================================

class DatesResponse(BaseModel):
    """Most recent dates with track activity and their pilot counts."""
    dates: list[str]
    counts: list[int]


class TrackNotification(BaseModel):
    """Payload published on the new_track_data channel for every stored point."""
    pilot: str
    point: Point


# ============================================================================
# Validation Functions
# ============================================================================

def validate_point(data: dict) -> tuple[bool, Optional[Point], Optional[str]]:
    """
    Validate Point.

    Returns:
        (is_valid, point_or_none, error_message_or_none)
    """
    try:
        point = Point(**data)
        return True, point, None
    except Exception as e:
        return False, None, str(e)


def validate_pilot(data: dict) -> tuple[bool, Optional[Pilot], Optional[str]]:
    """
    Validate Pilot.

    Returns:
        (is_valid, pilot_or_none, error_message_or_none)
    """
    try:
        pilot = Pilot(**data)
        return True, pilot, None
    except Exception as e:
        return False, None, str(e)


def validate_track_notification(data: dict) -> tuple[bool, Optional[TrackNotification], Optional[str]]:
    """
    Validate TrackNotification.

    Returns:
        (is_valid, notification_or_none, error_message_or_none)
    """
    try:
        notification = TrackNotification(**data)
        return True, notification, None
    except Exception as e:
        return False, None, str(e)
