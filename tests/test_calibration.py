"""Tests for marker role assignment and both calibration models."""
import math

import numpy as np
import pytest

from slab_geometry2d.calibration import (
    assign_marker_roles,
    build_calibration,
    default_markers,
    marker_list_from_dicts,
    projective_frame,
    similarity_frame,
    solve_homography,
    solve_linear_system,
    validate_quad,
)
from slab_geometry2d.diagnostics import Diagnostics
from slab_geometry2d.errors import CalibrationError
from slab_geometry2d.models import MarkerCandidate, MarkerRole, markers_by_role


def unassigned(markers):
    return [MarkerCandidate(m.x, m.y, confidence=m.confidence) for m in markers]


class TestRoleAssignment:
    def test_three_markers(self, scenario_c_markers):
        shuffled = unassigned(scenario_c_markers)[::-1]
        roles = markers_by_role(assign_marker_roles(shuffled))
        assert roles[MarkerRole.ORIGIN].xy == (100.0, 300.0)
        assert roles[MarkerRole.X_AXIS].xy == (500.0, 300.0)
        assert roles[MarkerRole.SCALE].xy == (100.0, 50.0)

    def test_four_markers(self, trapezoid_markers):
        roles = markers_by_role(assign_marker_roles(unassigned(trapezoid_markers)))
        for marker in trapezoid_markers:
            assert roles[marker.role].xy == marker.xy

    def test_extra_candidates_keep_most_confident(self, trapezoid_markers):
        cands = unassigned(trapezoid_markers) + [MarkerCandidate(300, 250, confidence=0.1)]
        assigned = assign_marker_roles(cands)
        assert len(assigned) == 4
        assert all(m.xy != (300.0, 250.0) for m in assigned)

    def test_too_few(self):
        with pytest.raises(CalibrationError):
            assign_marker_roles([MarkerCandidate(0, 0), MarkerCandidate(10, 10)])


class TestSimilarity:
    def test_scenario_ratio_and_orientation(self, scenario_c_markers):
        frame = build_calibration(scenario_c_markers, 400.0, 250.0)
        assert frame.model == "similarity"
        assert not frame.is_projective
        assert frame.ratio == pytest.approx(1.0)
        assert frame.orientation == pytest.approx(0.0)

    def test_axes(self, scenario_c_markers):
        frame = build_calibration(scenario_c_markers, 400.0, 250.0)
        real = frame.pixel_to_real([[100, 300], [500, 300], [100, 50]])
        assert np.allclose(real, [[0, 0], [400, 0], [0, 250]])

    def test_round_trip_rotated(self, rng):
        o, x, s = (200.0, 400.0), (500.0, 300.0), (150.0, 100.0)
        frame = similarity_frame(o, x, s, 762.0)
        assert frame.orientation == pytest.approx(math.atan2(-100, 300))
        pts = rng.random((20, 2)) * 600
        assert np.allclose(frame.real_to_pixel(frame.pixel_to_real(pts)), pts)

    def test_markers_too_close(self):
        with pytest.raises(CalibrationError):
            similarity_frame((100, 100), (300, 100), (103, 104), 762.0)

    def test_ratio_out_of_range(self):
        with pytest.raises(CalibrationError):
            similarity_frame((0, 0), (100, 0), (0, 100), 1e6)
        with pytest.raises(CalibrationError):
            similarity_frame((0, 0), (100, 0), (0, 100), 0.5)


class TestProjective:
    def test_homography_maps_corners(self, trapezoid_markers):
        src = [m.xy for m in trapezoid_markers]
        dst = [(0, 0), (480, 0), (480, 340), (0, 340)]
        H = solve_homography(src, dst)
        assert H.shape == (3, 3)
        assert H[2, 2] == 1.0
        for (x, y), (u, v) in zip(src, dst):
            p = H @ np.array([x, y, 1.0])
            assert p[0] / p[2] == pytest.approx(u, abs=1e-6)
            assert p[1] / p[2] == pytest.approx(v, abs=1e-6)

    def test_frame_from_four_markers(self, trapezoid_markers):
        frame = build_calibration(trapezoid_markers, 480.0, 340.0)
        assert frame.model == "projective"
        assert frame.is_projective
        real = frame.pixel_to_real([m.xy for m in trapezoid_markers])
        assert np.allclose(real, [[0, 0], [480, 0], [480, 340], [0, 340]], atol=1e-6)

    def test_round_trip(self, trapezoid_markers, rng):
        frame = build_calibration(trapezoid_markers, 480.0, 340.0)
        pts = 100 + rng.random((25, 2)) * 300
        assert np.allclose(frame.real_to_pixel(frame.pixel_to_real(pts)), pts, atol=1e-6)

    def test_non_convex_quad(self):
        with pytest.raises(CalibrationError):
            validate_quad([(0, 0), (100, 0), (0, 100), (100, 100)])

    def test_short_side(self):
        with pytest.raises(CalibrationError):
            validate_quad([(0, 0), (100, 0), (100, 5), (0, 5)])

    def test_singular_system(self):
        A = np.ones((3, 3))
        with pytest.raises(CalibrationError):
            solve_linear_system(A, np.ones(3))

    def test_solve_linear_system(self):
        A = np.array([[0.0, 2.0, 1.0], [1.0, 1.0, 0.0], [3.0, 0.0, 1.0]])
        x = np.array([1.0, -2.0, 3.0])
        assert np.allclose(solve_linear_system(A, A @ x), x)

    def test_bad_distances(self, trapezoid_markers):
        o, x, tr, s = trapezoid_markers
        with pytest.raises(CalibrationError):
            projective_frame(o, x, tr, s, 0.0, 340.0)


class TestEscalation:
    def test_bad_quad_falls_back_to_similarity(self):
        markers = [
            MarkerCandidate(100, 300, MarkerRole.ORIGIN),
            MarkerCandidate(500, 300, MarkerRole.X_AXIS),
            MarkerCandidate(100, 50, MarkerRole.SCALE),
            MarkerCandidate(100, 55, MarkerRole.TOP_RIGHT),
        ]
        diagnostics = Diagnostics()
        frame = build_calibration(markers, 400.0, 250.0, diagnostics=diagnostics)
        assert frame.model == "similarity"
        assert frame.ratio == pytest.approx(1.0)
        assert any(e.kind == "CalibrationError" for e in diagnostics.events)

    def test_no_markers_uses_defaults(self):
        frame = build_calibration(None, image_size=(600, 400))
        assert frame.model == "default"
        assert len(frame.markers) == 3
        assert frame.origin == pytest.approx((120.0, 320.0))
        assert frame.ratio == pytest.approx(762.0 / 240.0)

    def test_two_markers_use_defaults(self):
        frame = build_calibration([MarkerCandidate(10, 10), MarkerCandidate(50, 50)], image_size=(600, 400))
        assert frame.model == "default"

    def test_tiny_image_still_yields_frame(self):
        frame = build_calibration([], image_size=(1, 1))
        assert frame.model == "default"
        assert 0.01 < frame.ratio <= 100.0

    def test_default_marker_layout(self):
        origin, x_axis, scale = default_markers(1000, 500)
        assert origin.xy == pytest.approx((200.0, 400.0))
        assert x_axis.xy == pytest.approx((800.0, 400.0))
        assert scale.xy == pytest.approx((200.0, 100.0))
        assert origin.confidence == 0.5


class TestMarkerParsing:
    def test_wire_roles(self):
        markers = marker_list_from_dicts(
            [
                {"x": 1, "y": 2, "role": "xAxis"},
                {"x": 3, "y": 4, "role": "topRight", "confidence": 0.7},
                {"x": 5, "y": 6, "role": "bogus"},
                {"x": 7, "y": 8},
            ]
        )
        assert [m.role for m in markers] == [
            MarkerRole.X_AXIS,
            MarkerRole.TOP_RIGHT,
            MarkerRole.UNASSIGNED,
            MarkerRole.UNASSIGNED,
        ]
        assert markers[1].confidence == pytest.approx(0.7)
