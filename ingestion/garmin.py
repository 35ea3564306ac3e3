"""
Garmin inReach (MapShare) KML feed normalizer.

Every position is a Placemark under Document/Folder whose values live in
ExtendedData/Data[@name]/value. The feed ends with a Placemark holding
the track line and no data; it is skipped.
"""

import re
import logging
from datetime import datetime, timezone
from xml.etree import ElementTree

from contracts.constants import TRACKER_GARMIN
from contracts.validation import Point
from ingestion.normalize import Normalizer, ParseError

logger = logging.getLogger(__name__)

GARMIN_TIME_FORMAT = "%m/%d/%Y %I:%M:%S %p"
ELEVATION_PATTERN = re.compile(r"-?\d+")

PLACEMARK_PATH = "{*}Document/{*}Folder/{*}Placemark"
DATA_PATH = "{*}ExtendedData/{*}Data"


class GarminNormalizer(Normalizer):
    """Normalizer for Garmin MapShare KML feeds."""

    source = TRACKER_GARMIN

    def parse(self, raw: bytes) -> list[Point]:
        try:
            root = ElementTree.fromstring(raw)
        except ElementTree.ParseError as e:
            raise ParseError(self.source, "body", raw[:80], str(e)) from e

        points = []
        for placemark in root.iterfind(PLACEMARK_PATH):
            data = {
                element.get("name"): (element.findtext("{*}value") or "").strip()
                for element in placemark.iterfind(DATA_PATH)
            }
            if not data:
                continue
            points.append(self._to_point(data))

        return points

    def _to_point(self, data: dict) -> Point:
        raw_time = data.get("Time UTC")
        try:
            date_time = datetime.strptime(raw_time, GARMIN_TIME_FORMAT).replace(tzinfo=timezone.utc)
        except (TypeError, ValueError) as e:
            raise ParseError(self.source, "Time UTC", raw_time) from e

        return self.build_point(
            date_time=date_time,
            latitude=self.parse_float("Latitude", data.get("Latitude")),
            longitude=self.parse_float("Longitude", data.get("Longitude")),
            altitude=self._parse_elevation(data.get("Elevation", "")),
            msg_type=data.get("Event", ""),
            msg_content=data.get("Text", ""),
        )

    def _parse_elevation(self, value: str) -> int:
        # "1520.76 m from MSL" -> 1520
        if not value:
            return 0
        match = ELEVATION_PATTERN.search(value)
        if match is None:
            raise ParseError(self.source, "Elevation", value)
        return int(match.group())
