"""
Geometry models — renderable shapes derived from threat coordinates.

Everything here is produced by threatmap.engine.geo and consumed by
presentation adapters. Nothing here holds state about the feed.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

from threatmap.models.threat import Severity


class Vector3(NamedTuple):
    x: float
    y: float
    z: float

    def plus(self, other: Vector3) -> Vector3:
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def minus(self, other: Vector3) -> Vector3:
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, factor: float) -> Vector3:
        return Vector3(self.x * factor, self.y * factor, self.z * factor)

    def length(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def cross(self, other: Vector3) -> Vector3:
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def normalized(self) -> Vector3:
        """Unit vector in the same direction; the zero vector stays zero."""
        length = self.length()
        if length == 0.0:
            return Vector3(0.0, 0.0, 0.0)
        return self.scale(1.0 / length)

    def distance_to(self, other: Vector3) -> float:
        return self.minus(other).length()


class Bounds(BaseModel):
    """Axis-aligned lat/lon rectangle, used to auto-frame the 2D map."""

    model_config = ConfigDict(frozen=True)

    south: float
    west: float
    north: float
    east: float

    @property
    def center(self) -> tuple[float, float]:
        return ((self.south + self.north) / 2.0, (self.west + self.east) / 2.0)


class PathStyle(BaseModel):
    """Stroke for one attack path: color from severity, geometry from category."""

    model_config = ConfigDict(frozen=True)

    color: str
    stroke_weight: int = Field(ge=1)
    opacity: float = Field(ge=0.0, le=1.0)
    dash_pattern: Optional[str] = None   # SVG dash-array; None is a solid line


class MapPath(BaseModel):
    """A threat's route on the flat map."""

    threat_id: str
    attack_type: str
    severity: Severity
    style: PathStyle
    positions: list[tuple[float, float]]   # (lat, lon) pairs, source first


class GlobeArc(BaseModel):
    """A threat's route on the sphere."""

    threat_id: str
    attack_type: str
    severity: Severity
    style: PathStyle
    source_marker: Vector3
    points: list[Vector3]
