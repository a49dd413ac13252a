"""
Geo projection — threat coordinates → renderable geometry and styling.

Pure functions only: no state, no randomness, no I/O. Presentation
adapters call these directly; the API layer wraps map_paths(),
globe_arcs() and bounds_for() for remote consumers.

Visual encoding is dual-keyed: color comes from severity, stroke geometry
(weight, opacity, dash pattern) comes from attack category.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any, Optional

from threatmap.models.geometry import Bounds, GlobeArc, MapPath, PathStyle, Vector3
from threatmap.models.threat import AttackType, GeoPoint, Severity, ThreatEvent

DEFAULT_RADIUS = 2.0
DEFAULT_SEGMENTS = 50
ARC_HEIGHT_FACTOR = 0.3   # control point height as a fraction of chord length
_EPSILON = 1e-9

# ---------------------------------------------------------------------------
# Severity → color
# ---------------------------------------------------------------------------
_SEVERITY_COLORS: dict[Severity, str] = {
    Severity.CRITICAL: "#ef4444",   # red
    Severity.HIGH: "#f97316",       # orange
    Severity.MEDIUM: "#eab308",     # yellow
    Severity.LOW: "#3b82f6",        # blue
}
_DEFAULT_COLOR = _SEVERITY_COLORS[Severity.LOW]

# ---------------------------------------------------------------------------
# Attack category → stroke geometry: (weight, opacity, dash pattern)
# ---------------------------------------------------------------------------
_ATTACK_STROKES: dict[AttackType, tuple[int, float, Optional[str]]] = {
    AttackType.DDOS: (3, 0.7, "5, 5"),
    AttackType.BRUTE_FORCE: (2, 0.6, "10, 5"),
    AttackType.RANSOMWARE: (3, 0.8, "15, 5, 5, 5"),
    AttackType.PHISHING: (2, 0.5, "2, 8"),
    AttackType.SQL_INJECTION: (2, 0.6, "8, 3, 2, 3"),
    AttackType.ZERO_DAY: (4, 0.9, None),             # solid, thick
    AttackType.SUPPLY_CHAIN: (3, 0.7, "20, 10"),
    AttackType.AI_POWERED: (3, 0.8, "3, 3"),
    AttackType.CRYPTOJACKING: (2, 0.5, "12, 8"),
    AttackType.API_ABUSE: (2, 0.6, "6, 4"),
    AttackType.IOT_BOTNET: (2, 0.6, "4, 6"),
    AttackType.CREDENTIAL_STUFFING: (2, 0.6, "10, 10"),
    AttackType.PORT_SCAN: (1, 0.4, "1, 4"),
    AttackType.UNAUTHORIZED_ACCESS: (2, 0.6, "7, 7"),
}
_DEFAULT_STROKE: tuple[int, float, Optional[str]] = (2, 0.6, None)


def color_for_severity(severity: Any) -> str:
    """Return the hex color token for *severity*. Unrecognised input → blue."""
    parsed = Severity.parse(severity)
    if parsed is None:
        return _DEFAULT_COLOR
    return _SEVERITY_COLORS[parsed]


def path_style_for_type(attack_type: Any, severity: Any) -> PathStyle:
    """Combine category stroke geometry with severity color."""
    weight, opacity, dash = _ATTACK_STROKES.get(
        AttackType.from_label(attack_type), _DEFAULT_STROKE
    )
    return PathStyle(
        color=color_for_severity(severity),
        stroke_weight=weight,
        opacity=opacity,
        dash_pattern=dash,
    )


# ---------------------------------------------------------------------------
# Sphere
# ---------------------------------------------------------------------------

def project_3d(lat: float, lon: float, radius: float = DEFAULT_RADIUS) -> Vector3:
    """Map (lat, lon) in degrees onto a sphere of *radius* centred on the origin.

    The north pole lands on +Y; lon -180 lands on -X.
    """
    phi = (90.0 - lat) * (math.pi / 180.0)
    theta = (lon + 180.0) * (math.pi / 180.0)
    return Vector3(
        -radius * math.sin(phi) * math.cos(theta),
        radius * math.cos(phi),
        radius * math.sin(phi) * math.sin(theta),
    )


def _control_direction(start: Vector3, end: Vector3) -> Vector3:
    midpoint = start.plus(end).scale(0.5)
    if midpoint.length() > _EPSILON * max(start.length(), 1.0):
        return midpoint.normalized()

    # Antipodal endpoints: the midpoint is the centre. Lift the arc along
    # any axis perpendicular to the chord instead.
    chord = end.minus(start)
    perpendicular = chord.cross(Vector3(0.0, 1.0, 0.0))
    if perpendicular.length() <= _EPSILON * chord.length():
        perpendicular = chord.cross(Vector3(1.0, 0.0, 0.0))
    return perpendicular.normalized()


def arc_3d(
    source: GeoPoint,
    target: GeoPoint,
    radius: float = DEFAULT_RADIUS,
    segments: int = DEFAULT_SEGMENTS,
) -> list[Vector3]:
    """Sample a quadratic Bézier arc between two surface points.

    The control point sits above the chord midpoint at radius + 0.3 × chord
    length, so longer routes climb higher. Returns segments + 1 points,
    source first and target last.
    """
    if segments < 1:
        raise ValueError(f"segments must be >= 1, got {segments}")

    start = project_3d(source.lat, source.lon, radius)
    end = project_3d(target.lat, target.lon, radius)
    chord = start.distance_to(end)
    control = _control_direction(start, end).scale(radius + chord * ARC_HEIGHT_FACTOR)

    points: list[Vector3] = []
    for i in range(segments + 1):
        t = i / segments
        a = (1.0 - t) * (1.0 - t)
        b = 2.0 * (1.0 - t) * t
        c = t * t
        points.append(start.scale(a).plus(control.scale(b)).plus(end.scale(c)))
    return points


# ---------------------------------------------------------------------------
# Flat map
# ---------------------------------------------------------------------------

def planar_path(source: GeoPoint, target: GeoPoint) -> list[tuple[float, float]]:
    """The 2D route: a straight polyline from source to target in (lat, lon)."""
    return [(source.lat, source.lon), (target.lat, target.lon)]


def bounds_for(events: Iterable[ThreatEvent]) -> Optional[Bounds]:
    """Smallest rectangle covering every event's source coordinates.

    Events without source coordinates are ignored; no coordinates at all
    yields None.
    """
    lats: list[float] = []
    lons: list[float] = []
    for event in events:
        if event.source_coords is None:
            continue
        lats.append(event.source_coords.lat)
        lons.append(event.source_coords.lon)

    if not lats:
        return None
    return Bounds(south=min(lats), west=min(lons), north=max(lats), east=max(lons))


# ---------------------------------------------------------------------------
# Per-event geometry
# ---------------------------------------------------------------------------

def renderable(events: Iterable[ThreatEvent]) -> list[ThreatEvent]:
    """Events the maps draw: still Detected and attributed at both ends."""
    return [e for e in events if not e.is_mitigated and e.has_route]


def map_paths(events: Iterable[ThreatEvent]) -> list[MapPath]:
    paths: list[MapPath] = []
    for event in renderable(events):
        source, target = event.source_coords, event.target_coords
        if source is None or target is None:
            continue
        paths.append(
            MapPath(
                threat_id=event.id,
                attack_type=event.type,
                severity=event.severity,
                style=path_style_for_type(event.type, event.severity),
                positions=planar_path(source, target),
            )
        )
    return paths


def globe_arcs(
    events: Iterable[ThreatEvent],
    radius: float = DEFAULT_RADIUS,
    segments: int = DEFAULT_SEGMENTS,
) -> list[GlobeArc]:
    arcs: list[GlobeArc] = []
    for event in renderable(events):
        source, target = event.source_coords, event.target_coords
        if source is None or target is None:
            continue
        arcs.append(
            GlobeArc(
                threat_id=event.id,
                attack_type=event.type,
                severity=event.severity,
                style=path_style_for_type(event.type, event.severity),
                source_marker=project_3d(source.lat, source.lon, radius),
                points=arc_3d(source, target, radius, segments),
            )
        )
    return arcs
