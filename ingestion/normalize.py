"""
Point normalization contract shared by every tracker source.

A normalizer turns the raw body returned by a tracker API into an
ordered list of Points:
- output order is the source order (merge owns sorting)
- malformed payloads raise ParseError naming the offending field
- no network or storage side effects
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from contracts.validation import Point

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a tracker payload cannot be turned into points."""

    def __init__(self, source: str, field: str, value: Any, reason: str = ""):
        self.source = source
        self.field = field
        self.value = value
        self.reason = reason
        message = f"{source}: invalid {field} {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class Normalizer(ABC):
    """Base class for tracker payload normalizers."""

    source: str = ""

    @abstractmethod
    def parse(self, raw: bytes) -> list[Point]:
        """Parse a raw tracker payload into points, in source order."""

    def parse_float(self, field: str, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            raise ParseError(self.source, field, value, "not a number")
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ParseError(self.source, field, value, "not a number") from e

    def build_point(self, **fields) -> Point:
        """Build a Point, reporting range violations as ParseError."""
        try:
            return Point(**fields)
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error.get("loc") else "point"
            raise ParseError(self.source, field, fields.get(field), error.get("msg", "")) from e
