"""Tests for seeded ray casting."""
import math
from dataclasses import replace

import numpy as np
import pytest

from slab_geometry2d.config import DetectionConfig
from slab_geometry2d.errors import GeometryDegeneracy
from slab_geometry2d.polygon import polygon_area
from slab_geometry2d.raycast import (
    adjust_seed,
    cast_ray,
    neighbor_consistency_filter,
    ray_cast_contour,
    reject_outliers,
    reseed_candidates,
    sort_by_angle,
)


class TestCastRay:
    def test_farthest_hit_on_filled_square(self, square_mask):
        assert cast_ray(square_mask, (200, 200), 0.0) == (299.0, 200.0)
        assert cast_ray(square_mask, (200, 200), math.pi / 2) == (200.0, 299.0)

    def test_small_gap_bridged_large_gap_stops(self):
        mask = np.zeros((100, 100), dtype=bool)
        mask[50, 10:41] = True
        mask[50, 44:61] = True
        mask[50, 81:91] = True
        assert cast_ray(mask, (10, 50), 0.0, 2, 8, 15) == (60.0, 50.0)

    def test_background_origin_far_from_region(self):
        mask = np.zeros((100, 100), dtype=bool)
        mask[:, 90:] = True
        assert cast_ray(mask, (10, 50), 0.0, 2, 8, 15) is None

    def test_origin_outside_image(self, square_mask):
        assert cast_ray(square_mask, (-5, -5), 0.0) is None


class TestSeedAdjustment:
    def test_interior_seed_kept(self, square_mask):
        assert adjust_seed(square_mask, (200, 200)) == (200, 200)

    def test_boundary_seed_moves_inside(self, square_mask):
        x, y = adjust_seed(square_mask, (100, 200))
        assert (x, y) == (101, 200)

    def test_background_seed_moves_to_nearest_interior(self, square_mask):
        x, y = adjust_seed(square_mask, (50, 200))
        assert (x, y) == (101, 200)


class TestFilters:
    def test_iqr_rejects_far_point(self):
        a = np.linspace(0, 2 * math.pi, 30, endpoint=False)
        r = np.linspace(9.0, 11.0, 30)
        pts = np.column_stack([r * np.cos(a), r * np.sin(a)])
        pts = np.vstack([pts, [[100.0, 0.0]]])
        kept = reject_outliers(pts, (0.0, 0.0), 1.5)
        assert len(kept) == 30

    def test_neighbor_consistency_drops_spike(self):
        a = np.linspace(0, 2 * math.pi, 36, endpoint=False)
        ring = np.column_stack([50 * np.cos(a), 50 * np.sin(a)])
        ring[10] = ring[10] * 4
        out = neighbor_consistency_filter(ring, 3.0)
        assert len(out) == 35

    def test_sort_by_angle(self):
        pts = np.array([[0.0, 1.0], [1.0, 0.0], [-1.0, 0.0]])
        out = sort_by_angle(pts, (0.0, 0.0))
        assert out.tolist() == [[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0]]


class TestRayCastContour:
    def test_square_outline(self, square_mask):
        ring = ray_cast_contour(square_mask, (200, 200), DetectionConfig())
        assert len(ring) >= 10
        assert polygon_area(ring) == pytest.approx(39601.0, rel=0.05)
        on_edge = (np.isin(ring[:, 0], [100, 299])) | (np.isin(ring[:, 1], [100, 299]))
        assert on_edge.mean() > 0.9

    def test_seed_on_boundary(self, square_mask):
        ring = ray_cast_contour(square_mask, (100, 150), DetectionConfig())
        assert polygon_area(ring) > 30000

    def test_small_region_is_strategy_failure(self):
        mask = np.zeros((100, 100), dtype=bool)
        mask[48:53, 48:53] = True
        with pytest.raises(GeometryDegeneracy):
            ray_cast_contour(mask, (50, 50), DetectionConfig())


def polygon_ring(count=36, radius=100.0):
    angles = np.radians(np.arange(count) * 360.0 / count)
    return np.column_stack([radius * np.cos(angles), radius * np.sin(angles)])


class TestReseedCandidates:
    def test_smooth_ring_has_none(self):
        assert reseed_candidates(polygon_ring()) == []

    def test_spike_ranked_first(self):
        ring = polygon_ring()
        ring[5] *= 2.0
        assert reseed_candidates(ring) == [5, 4, 6]

    def test_limit_respected(self):
        ring = polygon_ring()
        ring[5] *= 2.0
        assert reseed_candidates(ring, limit=2) == [5, 4]
        assert reseed_candidates(ring, limit=0) == []

    def test_large_gap_vertex(self):
        ring = np.delete(polygon_ring(), range(10, 15), axis=0)
        assert reseed_candidates(ring) == [9]


class TestReseedFans:
    """A wall inside the square hides its right-hand side from the seed."""

    @pytest.fixture
    def walled_square(self, square_mask):
        mask = square_mask.copy()
        mask[150:250, 240:250] = False
        return mask

    @pytest.fixture
    def line_of_sight(self):
        # no gap bridging and no outlier trimming, so hits are pure visibility
        return DetectionConfig(
            gap_tolerance_min=0,
            gap_tolerance_max=0,
            continue_search_distance=0,
            outlier_factor=10.0,
            neighbor_factor=20.0,
        )

    def test_first_pass_stops_at_wall(self, walled_square, line_of_sight):
        ring = ray_cast_contour(walled_square, (200, 200), replace(line_of_sight, max_reseed_points=0))
        assert ring[:, 0].max() < 290

    def test_fans_reach_hidden_side(self, walled_square, line_of_sight):
        first = ray_cast_contour(walled_square, (200, 200), replace(line_of_sight, max_reseed_points=0))
        ring = ray_cast_contour(walled_square, (200, 200), line_of_sight)
        assert len(ring) > len(first)
        hidden = ring[ring[:, 0] >= 290]
        assert len(hidden) > 0
        assert walled_square[hidden[:, 1].astype(int), hidden[:, 0].astype(int)].all()
