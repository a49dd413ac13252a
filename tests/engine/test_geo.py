"""Tests for threatmap/engine/geo.py."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from threatmap.engine import geo
from threatmap.models.geometry import Bounds, PathStyle, Vector3
from threatmap.models.threat import AttackType, GeoPoint, Severity, ThreatEvent

TOL = 1e-9

MOSCOW = GeoPoint(lat=55.75, lon=37.62, label="Moscow")
NEW_YORK = GeoPoint(lat=40.71, lon=-74.0, label="New York")
BEIJING = GeoPoint(lat=39.9, lon=116.4, label="Beijing")


def make_event(threat_id: str = "A", **overrides) -> ThreatEvent:
    data = dict(
        id=threat_id,
        timestamp=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        type="DDoS",
        severity="High",
        source_coords=MOSCOW,
        target_coords=NEW_YORK,
    )
    data.update(overrides)
    return ThreatEvent(**data)


def close(a: Vector3, b: Vector3, tol: float = TOL) -> bool:
    return all(abs(p - q) <= tol for p, q in zip(a, b))


# ---------------------------------------------------------------------------
# project_3d
# ---------------------------------------------------------------------------

class TestProject3D:
    def test_north_pole_maps_to_positive_y(self):
        assert close(geo.project_3d(90, 0, 2), Vector3(0.0, 2.0, 0.0))

    def test_south_pole_maps_to_negative_y(self):
        assert close(geo.project_3d(-90, 45, 2), Vector3(0.0, -2.0, 0.0))

    def test_equator_prime_meridian(self):
        # theta = 180°: x = -r·cos(π) = r, z = r·sin(π) = 0
        assert close(geo.project_3d(0, 0, 1), Vector3(1.0, 0.0, 0.0))

    def test_equator_antimeridian(self):
        assert close(geo.project_3d(0, -180, 1), Vector3(-1.0, 0.0, 0.0))

    def test_equator_ninety_east(self):
        assert close(geo.project_3d(0, 90, 1), Vector3(0.0, 0.0, -1.0))

    @pytest.mark.parametrize("lat", [-90, -45.5, 0, 12.3, 89.9, 90])
    @pytest.mark.parametrize("lon", [-180, -97.1, 0, 33.3, 180])
    @pytest.mark.parametrize("radius", [0.5, 2.0, 100.0])
    def test_lands_on_sphere_surface(self, lat, lon, radius):
        assert math.isclose(geo.project_3d(lat, lon, radius).length(), radius, rel_tol=1e-12)

    def test_default_radius_is_two(self):
        assert math.isclose(geo.project_3d(10, 20).length(), 2.0)


# ---------------------------------------------------------------------------
# arc_3d
# ---------------------------------------------------------------------------

class TestArc3D:
    def test_default_sample_count(self):
        assert len(geo.arc_3d(MOSCOW, NEW_YORK)) == 51

    def test_custom_sample_count(self):
        assert len(geo.arc_3d(MOSCOW, NEW_YORK, segments=10)) == 11

    def test_endpoints_are_projected_coordinates(self):
        points = geo.arc_3d(MOSCOW, NEW_YORK, radius=2.0)
        assert close(points[0], geo.project_3d(MOSCOW.lat, MOSCOW.lon, 2.0))
        assert close(points[-1], geo.project_3d(NEW_YORK.lat, NEW_YORK.lon, 2.0))

    def test_is_deterministic(self):
        assert geo.arc_3d(MOSCOW, BEIJING, 2.0) == geo.arc_3d(MOSCOW, BEIJING, 2.0)

    def test_midpoint_rises_above_surface(self):
        points = geo.arc_3d(MOSCOW, NEW_YORK, radius=2.0)
        assert points[25].length() > 2.0

    def test_control_point_height_follows_chord(self):
        radius = 2.0
        start = geo.project_3d(MOSCOW.lat, MOSCOW.lon, radius)
        end = geo.project_3d(NEW_YORK.lat, NEW_YORK.lon, radius)
        chord = start.distance_to(end)
        control = start.plus(end).scale(0.5).normalized().scale(radius + 0.3 * chord)
        expected_mid = start.scale(0.25).plus(control.scale(0.5)).plus(end.scale(0.25))

        points = geo.arc_3d(MOSCOW, NEW_YORK, radius=radius, segments=2)
        assert close(points[1], expected_mid)

    def test_longer_routes_climb_higher(self):
        near = GeoPoint(lat=56.0, lon=38.0)
        short_peak = max(p.length() for p in geo.arc_3d(MOSCOW, near))
        long_peak = max(p.length() for p in geo.arc_3d(MOSCOW, NEW_YORK))
        assert long_peak > short_peak

    def test_same_point_collapses(self):
        points = geo.arc_3d(MOSCOW, MOSCOW)
        start = geo.project_3d(MOSCOW.lat, MOSCOW.lon)
        assert all(close(p, start) for p in points)

    def test_antipodal_points_still_arc(self):
        north = GeoPoint(lat=90, lon=0)
        south = GeoPoint(lat=-90, lon=0)
        points = geo.arc_3d(north, south, radius=2.0)
        assert len(points) == 51
        assert all(math.isfinite(c) for p in points for c in p)
        assert points[25].length() > 1.0

    def test_antipodal_equator_points_still_arc(self):
        points = geo.arc_3d(GeoPoint(lat=0, lon=0), GeoPoint(lat=0, lon=180), radius=2.0)
        assert points[25].length() > 1.0

    def test_zero_segments_rejected(self):
        with pytest.raises(ValueError):
            geo.arc_3d(MOSCOW, NEW_YORK, segments=0)


# ---------------------------------------------------------------------------
# Styling
# ---------------------------------------------------------------------------

class TestColorForSeverity:
    @pytest.mark.parametrize(
        "severity, color",
        [
            (Severity.CRITICAL, "#ef4444"),
            (Severity.HIGH, "#f97316"),
            (Severity.MEDIUM, "#eab308"),
            (Severity.LOW, "#3b82f6"),
            ("Critical", "#ef4444"),
            ("high", "#f97316"),
        ],
    )
    def test_mapping(self, severity, color):
        assert geo.color_for_severity(severity) == color

    @pytest.mark.parametrize("severity", ["Extreme", "", None, 7])
    def test_unrecognised_defaults_to_blue(self, severity):
        assert geo.color_for_severity(severity) == "#3b82f6"


class TestPathStyleForType:
    def test_every_known_category_has_its_own_stroke(self):
        known = [a for a in AttackType if a is not AttackType.OTHER]
        assert len(known) >= 14
        styles = {geo.path_style_for_type(a, "Low") for a in known}
        assert len(styles) == len(known)

    def test_ddos_style(self):
        style = geo.path_style_for_type("DDoS", "Critical")
        assert style == PathStyle(color="#ef4444", stroke_weight=3, opacity=0.7, dash_pattern="5, 5")

    def test_zero_day_is_solid_and_thick(self):
        style = geo.path_style_for_type("Zero-Day Exploit", "Low")
        assert style.dash_pattern is None
        assert style.stroke_weight == 4
        assert style.opacity == 0.9

    def test_label_match_is_case_insensitive(self):
        assert geo.path_style_for_type("port scan", "Low") == geo.path_style_for_type("Port Scan", "Low")

    def test_unknown_category_gets_default(self):
        style = geo.path_style_for_type("Quantum Heist", "Medium")
        assert style == PathStyle(color="#eab308", stroke_weight=2, opacity=0.6, dash_pattern=None)

    def test_geometry_independent_of_severity(self):
        low = geo.path_style_for_type("Phishing", "Low")
        critical = geo.path_style_for_type("Phishing", "Critical")
        assert (low.stroke_weight, low.opacity, low.dash_pattern) == (
            critical.stroke_weight, critical.opacity, critical.dash_pattern
        )
        assert low.color != critical.color


# ---------------------------------------------------------------------------
# Flat map
# ---------------------------------------------------------------------------

class TestPlanarPath:
    def test_source_then_target(self):
        assert geo.planar_path(MOSCOW, NEW_YORK) == [(55.75, 37.62), (40.71, -74.0)]


class TestBoundsFor:
    def test_empty_input_has_no_bounds(self):
        assert geo.bounds_for([]) is None

    def test_events_without_source_coords_have_no_bounds(self):
        assert geo.bounds_for([make_event(source_coords=None)]) is None

    def test_single_event_is_a_point(self):
        bounds = geo.bounds_for([make_event()])
        assert bounds == Bounds(south=55.75, west=37.62, north=55.75, east=37.62)

    def test_covers_all_sources_only(self):
        events = [
            make_event("A", source_coords=MOSCOW),
            make_event("B", source_coords=BEIJING),
            make_event("C", source_coords=NEW_YORK, target_coords=None),
            make_event("D", source_coords=None),
        ]
        bounds = geo.bounds_for(events)
        assert bounds == Bounds(south=39.9, west=-74.0, north=55.75, east=116.4)

    def test_center(self):
        bounds = Bounds(south=0, west=-10, north=20, east=30)
        assert bounds.center == (10.0, 10.0)


# ---------------------------------------------------------------------------
# Per-event geometry
# ---------------------------------------------------------------------------

class TestRenderable:
    def test_excludes_missing_coordinates_and_mitigated(self):
        events = [
            make_event("ok"),
            make_event("no-source", source_coords=None),
            make_event("no-target", target_coords=None),
            make_event("done", status="Mitigated"),
        ]
        assert [e.id for e in geo.renderable(events)] == ["ok"]

    def test_map_paths(self):
        paths = geo.map_paths([make_event("A", type="Phishing", severity="Low")])
        assert len(paths) == 1
        path = paths[0]
        assert path.threat_id == "A"
        assert path.positions == [(55.75, 37.62), (40.71, -74.0)]
        assert path.style.color == "#3b82f6"
        assert path.style.dash_pattern == "2, 8"

    def test_map_paths_skip_unattributed(self):
        assert geo.map_paths([make_event(target_coords=None)]) == []

    def test_globe_arcs(self):
        arcs = geo.globe_arcs([make_event("A")], radius=3.0, segments=20)
        assert len(arcs) == 1
        arc = arcs[0]
        assert len(arc.points) == 21
        assert close(arc.source_marker, geo.project_3d(MOSCOW.lat, MOSCOW.lon, 3.0))
        assert close(arc.points[0], arc.source_marker)
