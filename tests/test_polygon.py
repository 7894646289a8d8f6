"""Tests for polygon post-processing."""
import math

import numpy as np
import pytest

from slab_geometry2d.errors import GeometryDegeneracy
from slab_geometry2d.polygon import (
    close_contour,
    convex_hull,
    fallback_polygon,
    is_self_intersecting,
    open_contour,
    polygon_area,
    polygon_perimeter,
    postprocess,
    prune_deep_concavities,
    resample,
    resolve_self_intersections,
    simplify,
    smooth,
    subdivide,
)
from slab_geometry2d.utils.poly_math import point_segment_distance


def square_ring(side=100.0, per_side=25):
    t = np.linspace(0, side, per_side, endpoint=False)
    top = np.column_stack([t, np.zeros_like(t)])
    right = np.column_stack([np.full_like(t, side), t])
    bottom = np.column_stack([side - t, np.full_like(t, side)])
    left = np.column_stack([np.zeros_like(t), side - t])
    return np.vstack([top, right, bottom, left])


def circle_ring(radius=50.0, count=60, center=(100.0, 100.0)):
    a = 2 * math.pi * np.arange(count) / count
    return np.column_stack([center[0] + radius * np.cos(a), center[1] + radius * np.sin(a)])


class TestConvexHull:
    def test_every_point_inside_hull(self, rng):
        for _ in range(10):
            pts = rng.random((60, 2)) * 500
            hull = convex_hull(pts)
            n = len(hull)
            for p in pts:
                for i in range(n):
                    a, b = hull[i], hull[(i + 1) % n]
                    cross = (b[0] - a[0]) * (p[1] - a[1]) - (b[1] - a[1]) * (p[0] - a[0])
                    assert cross >= -1e-7

    def test_turns_have_consistent_sign(self, rng):
        pts = rng.random((200, 2)) * 100
        hull = convex_hull(pts)
        n = len(hull)
        signs = set()
        for i in range(n):
            o, a, b = hull[i - 1], hull[i], hull[(i + 1) % n]
            signs.add(np.sign((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])))
        assert signs == {1.0}

    def test_square_with_interior_points(self):
        pts = np.array([[0, 0], [10, 0], [10, 10], [0, 10], [5, 5], [2, 3], [5, 0]], dtype=float)
        hull = convex_hull(pts)
        assert len(hull) == 4
        assert polygon_area(hull) == pytest.approx(100.0)

    def test_degenerate_input(self):
        assert len(convex_hull(np.array([[1.0, 1.0], [1.0, 1.0]]))) == 1


class TestSimplify:
    def test_output_is_subsequence_with_endpoints(self, rng):
        pts = np.cumsum(rng.normal(size=(120, 2)), axis=0)
        out = simplify(pts, 1.5)
        assert np.array_equal(out[0], pts[0])
        assert np.array_equal(out[-1], pts[-1])
        j = 0
        for p in out:
            while not np.array_equal(pts[j], p):
                j += 1
            j += 1

    def test_dropped_points_within_epsilon(self, rng):
        pts = np.cumsum(rng.normal(size=(150, 2)), axis=0)
        eps = 2.0
        out = simplify(pts, eps)
        kept_idx = [int(np.nonzero((pts == p).all(axis=1))[0][0]) for p in out]
        for a, b in zip(kept_idx, kept_idx[1:]):
            for k in range(a + 1, b):
                assert point_segment_distance(pts[k], pts[a], pts[b]) <= eps + 1e-9

    def test_straight_line_collapses(self):
        pts = np.column_stack([np.arange(50.0), np.zeros(50)])
        assert len(simplify(pts, 0.5)) == 2

    def test_depth_bound_keeps_range(self):
        pts = np.column_stack([np.arange(10.0), (np.arange(10) % 2) * 10.0])
        out = simplify(pts, 0.1, max_depth=0)
        assert len(out) == len(pts)


class TestSmoothAndResample:
    def test_smooth_preserves_count_and_is_circular(self):
        ring = square_ring()
        out = smooth(ring, 5, 1.0)
        assert out.shape == ring.shape
        # corner pulled inward, symmetric about the diagonal
        assert 0 < out[0, 0] < 10 and out[0, 0] == pytest.approx(out[0, 1])

    def test_smooth_constant_ring_unchanged(self):
        ring = circle_ring()
        out = smooth(ring, 1, 1.0)
        assert np.allclose(out, ring)

    def test_resample_upsamples(self):
        ring = np.array([[0, 0], [100, 0], [100, 100], [0, 100]], dtype=float)
        out = resample(ring, 24)
        assert len(out) == 24
        assert polygon_area(out) == pytest.approx(10000.0)

    def test_resample_subsamples(self):
        ring = circle_ring(count=400)
        out = resample(ring, 100)
        assert len(out) == 100
        assert all(any(np.array_equal(p, q) for q in ring) for p in out[:5])

    def test_subdivide_keeps_vertices(self):
        ring = np.array([[0, 0], [300, 0], [300, 100], [0, 100]], dtype=float)
        out = subdivide(ring, 16)
        assert len(out) == 16
        for corner in ring:
            assert any(np.array_equal(corner, p) for p in out)
        # long edges take more of the new points
        assert int(np.sum(out[:, 1] == 0)) > int(np.sum(out[:, 0] == 300))
        assert polygon_area(out) == pytest.approx(30000.0)

    def test_subdivide_never_drops(self):
        ring = circle_ring(count=40)
        assert np.array_equal(subdivide(ring, 10), ring)

    def test_closed_input_stays_closed_form_independent(self):
        ring = square_ring()
        assert len(resample(close_contour(ring), 50)) == 50


class TestSelfIntersection:
    def test_bowtie_detected_and_replaced_by_hull(self):
        bowtie = np.array([[0, 0], [10, 10], [10, 0], [0, 10]], dtype=float)
        assert is_self_intersecting(bowtie)
        fixed = resolve_self_intersections(bowtie)
        assert not is_self_intersecting(fixed)
        assert polygon_area(fixed) == pytest.approx(100.0)

    def test_simple_polygons_pass(self):
        assert not is_self_intersecting(square_ring())
        assert not is_self_intersecting(circle_ring())


class TestPruneConcavities:
    def test_deep_notch_removed(self):
        ring = np.vstack([square_ring(100.0, 10)[:5], [[50.0, 60.0]], square_ring(100.0, 10)[5:]])
        pruned = prune_deep_concavities(ring, 0.05)
        assert len(pruned) == len(ring) - 1
        assert not any(np.array_equal(p, [50.0, 60.0]) for p in pruned)

    def test_convex_polygon_untouched(self):
        ring = circle_ring()
        assert len(prune_deep_concavities(ring, 0.05)) == len(ring)


class TestHelpers:
    def test_close_and_open(self):
        ring = square_ring()
        closed = close_contour(ring)
        assert len(closed) == len(ring) + 1
        assert np.array_equal(closed[0], closed[-1])
        assert np.array_equal(open_contour(closed), ring)

    def test_area_and_perimeter(self):
        ring = np.array([[0, 0], [4, 0], [4, 3], [0, 3]], dtype=float)
        assert polygon_area(ring) == pytest.approx(12.0)
        assert polygon_perimeter(close_contour(ring)) == pytest.approx(14.0)

    def test_fallback_polygon(self):
        poly = fallback_polygon(100, 80)
        assert len(poly) == 21
        assert np.array_equal(poly[0], poly[-1])
        radii = np.hypot(poly[:, 0] - 50, poly[:, 1] - 40)
        assert np.allclose(radii, 24.0)

    def test_fallback_polygon_around_seed(self):
        poly = fallback_polygon(200, 200, seed=(30, 40))
        assert np.allclose(poly[:-1].mean(axis=0), [30, 40])


class TestPostprocess:
    def test_square_trace_stays_square(self):
        out = postprocess(square_ring(200.0, 199))
        assert 24 <= len(out) <= 200
        assert not is_self_intersecting(out)
        assert polygon_area(out) == pytest.approx(40000.0, rel=0.01)

    def test_long_rectangle_keeps_corners(self):
        rect = np.array([[0, 0], [1000, 0], [1000, 100], [0, 100]], dtype=float)
        out = postprocess(rect)
        assert len(out) == 24
        assert polygon_area(out) == pytest.approx(100000.0, rel=0.01)
        for corner in rect:
            assert np.min(np.linalg.norm(out - corner, axis=1)) < 2.0

    def test_sparse_ray_samples_keep_area(self):
        angles = np.radians(np.arange(0, 360, 5))
        radii = 100.0 / np.maximum(np.abs(np.cos(angles)), np.abs(np.sin(angles)))
        ring = np.column_stack([100 + radii * np.cos(angles), 100 + radii * np.sin(angles)])
        out = postprocess(ring)
        assert polygon_area(out) == pytest.approx(40000.0, rel=0.01)

    def test_too_few_vertices(self):
        with pytest.raises(GeometryDegeneracy):
            postprocess(np.array([[0.0, 0.0], [1.0, 1.0]]))
