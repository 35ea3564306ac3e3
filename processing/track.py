"""
Track merging and derived statistics.

merge() decides which fetched points are new for a pilot:
- only points strictly after the high-water mark are candidates
- candidates are ordered by timestamp (feeds may be newest first)
- the walk stops at the first point already known

Statistics (distances, flight time, speeds) are computed on read and
never influence merging or classification.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from contracts.validation import Point, TrackPoint

# Statute miles per nautical mile, and km per statute mile
MILES_PER_NAUTICAL_MILE = 1.1515
KM_PER_MILE = 1.609344


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km (spherical law of cosines)."""
    radlat1 = math.radians(lat1)
    radlat2 = math.radians(lat2)
    radtheta = math.radians(lon1 - lon2)

    dist = math.sin(radlat1) * math.sin(radlat2) + math.cos(radlat1) * math.cos(radlat2) * math.cos(radtheta)
    # Rounding can push identical coordinates slightly above 1
    dist = max(-1.0, min(1.0, dist))

    dist = math.degrees(math.acos(dist))
    return dist * 60 * MILES_PER_NAUTICAL_MILE * KM_PER_MILE


def start_of_day(now: datetime) -> datetime:
    """UTC midnight of the day containing `now`."""
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def high_water_mark(known_tail: list[Point], now: datetime) -> datetime:
    """Timestamp after which fetched points are candidates."""
    if known_tail:
        return known_tail[-1].date_time
    return start_of_day(now)


@dataclass
class MergeResult:
    points: list[Point] = field(default_factory=list)
    # Set when the pilot had no points yet: the first new point's timestamp
    session_start: Optional[datetime] = None


def merge(known_tail: list[Point], fetched: list[Point], now: Optional[datetime] = None) -> MergeResult:
    """
    Select the points of `fetched` that extend `known_tail`.

    Returns the new points in chronological order. A point equal to one
    already known (or already accepted in this merge) ends the walk, so
    anything sorted after it is left for a later cycle.
    """
    now = now or datetime.now(timezone.utc)
    since = high_water_mark(known_tail, now)

    candidates = sorted(
        (point for point in fetched if point.date_time > since),
        key=lambda point: point.date_time,
    )

    seen = set(known_tail)
    new_points = []
    for point in candidates:
        if point in seen:
            break
        new_points.append(point)
        seen.add(point)

    session_start = None
    if not known_tail and new_points:
        session_start = new_points[0].date_time

    return MergeResult(points=new_points, session_start=session_start)


# ============================================================================
# Track statistics
# ============================================================================

def flight_time(points: list[Point]) -> timedelta:
    """Duration between the first and last point."""
    if not points:
        return timedelta(0)
    return points[-1].date_time - points[0].date_time


def takeoff_distance(points: list[Point]) -> float:
    """Straight line distance in km between the first and last point."""
    if len(points) < 2:
        return 0.0
    start, end = points[0], points[-1]
    return distance(start.latitude, start.longitude, end.latitude, end.longitude)


def cumulative_distance(points: list[Point]) -> float:
    """Sum of all leg distances in km."""
    return sum(
        distance(a.latitude, a.longitude, b.latitude, b.longitude)
        for a, b in zip(points, points[1:])
    )


def format_duration(delta: timedelta) -> str:
    """Render a duration as e.g. 4h12m11s, 3m5s or 45s."""
    total = int(delta.total_seconds())
    sign = "-" if total < 0 else ""
    hours, remainder = divmod(abs(total), 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def compute_statistics(points: list[Point]) -> list[TrackPoint]:
    """Enrich an ordered track with per-point statistics."""
    enriched: list[TrackPoint] = []

    for i, point in enumerate(points):
        if i == 0:
            enriched.append(TrackPoint(**point.model_dump()))
            continue

        first = points[0]
        previous = enriched[i - 1]

        elapsed = (point.date_time - first.date_time).total_seconds()
        leg_elapsed = (point.date_time - previous.date_time).total_seconds()
        leg_dist = distance(previous.latitude, previous.longitude, point.latitude, point.longitude)
        cum_dist = previous.cum_dist + leg_dist

        enriched.append(TrackPoint(
            **point.model_dump(),
            flight_time=max(elapsed, 0.0),
            take_off_dist=distance(first.latitude, first.longitude, point.latitude, point.longitude),
            leg_dist=leg_dist,
            cum_dist=cum_dist,
            avg_speed=cum_dist / (elapsed / 3600) if elapsed > 0 else 0.0,
            leg_speed=leg_dist / (leg_elapsed / 3600) if leg_elapsed > 0 else 0.0,
        ))

    return enriched
