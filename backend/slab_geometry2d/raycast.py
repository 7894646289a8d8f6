"""Seeded ray casting: recover a slab outline by walking rays out from a tap point."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from slab_geometry2d.config import DetectionConfig
from slab_geometry2d.diagnostics import Deadline, check_deadline
from slab_geometry2d.errors import GeometryDegeneracy
from slab_geometry2d.morphology import erode
from slab_geometry2d.polygon import polygon_area
from slab_geometry2d.utils.poly_math import turn_angle_degrees

# Re-seed origins are pulled this far back toward the seed so they start inside.
RESEED_PULLBACK = 2.0


def adjust_seed(mask: np.ndarray, seed: Tuple[float, float], max_radius: Optional[float] = None) -> Tuple[int, int]:
    """Nearest pixel to ``seed`` whose 3x3 neighbourhood is all foreground.

    The seed itself is returned when it already qualifies or when no interior
    pixel exists within ``max_radius``.
    """
    h, w = mask.shape
    sx = int(round(min(max(seed[0], 0), w - 1)))
    sy = int(round(min(max(seed[1], 0), h - 1)))
    interior = erode(mask, 3)
    if interior[sy, sx]:
        return sx, sy
    ys, xs = np.nonzero(interior)
    if len(xs) == 0:
        return sx, sy
    d2 = (xs - sx) ** 2 + (ys - sy) ** 2
    best = int(np.argmin(d2))
    if max_radius is not None and d2[best] > max_radius ** 2:
        return sx, sy
    return int(xs[best]), int(ys[best])


def _runs(values: np.ndarray) -> List[Tuple[int, int]]:
    """(start, end) inclusive index pairs of True runs."""
    if len(values) == 0:
        return []
    padded = np.concatenate([[False], values, [False]]).astype(np.int8)
    diff = np.diff(padded)
    starts = np.nonzero(diff == 1)[0]
    ends = np.nonzero(diff == -1)[0] - 1
    return list(zip(starts.tolist(), ends.tolist()))


def cast_ray(
    mask: np.ndarray,
    origin: Tuple[float, float],
    angle: float,
    gap_tolerance_min: int = 2,
    gap_tolerance_max: int = 8,
    continue_search_distance: int = 15,
) -> Optional[Tuple[float, float]]:
    """Farthest foreground pixel reached along one ray, or None.

    Background gaps are bridged while they stay within a tolerance that grows
    linearly with radius. A longer gap is still bridged when it is shorter
    than ``continue_search_distance`` and the pixels beyond it form a run of
    at least two.
    """
    h, w = mask.shape
    ox, oy = float(origin[0]), float(origin[1])
    dx, dy = math.cos(angle), math.sin(angle)
    max_r = int(math.ceil(math.hypot(w, h)))

    radii = np.arange(0, max_r + 1, dtype=np.float64)
    xs = np.rint(ox + radii * dx).astype(np.int64)
    ys = np.rint(oy + radii * dy).astype(np.int64)
    inside = (xs >= 0) & (xs < w) & (ys >= 0) & (ys < h)
    if not inside[0]:
        return None
    stop = int(np.argmin(inside)) if not inside.all() else len(inside)
    xs, ys = xs[:stop], ys[:stop]
    values = mask[ys, xs]

    runs = _runs(values)
    if not runs:
        return None
    first_start, last_end = runs[0]
    if first_start > continue_search_distance:
        return None

    reach = max(1.0, math.hypot(w, h) / 2.0)
    for start, end in runs[1:]:
        gap = start - last_end - 1
        tolerance = gap_tolerance_min + (gap_tolerance_max - gap_tolerance_min) * min(1.0, last_end / reach)
        if gap <= tolerance:
            last_end = end
        elif gap <= continue_search_distance and end - start + 1 >= 2:
            last_end = end
        else:
            break
    return float(xs[last_end]), float(ys[last_end])


def reject_outliers(points: np.ndarray, center: Tuple[float, float], factor: float = 1.5) -> np.ndarray:
    """IQR filter on distance from ``center``."""
    if len(points) < 4:
        return points
    d = np.hypot(points[:, 0] - center[0], points[:, 1] - center[1])
    q1, q3 = np.percentile(d, [25, 75])
    iqr = q3 - q1
    keep = (d >= q1 - factor * iqr) & (d <= q3 + factor * iqr)
    return points[keep]


def sort_by_angle(points: np.ndarray, center: Tuple[float, float]) -> np.ndarray:
    if len(points) == 0:
        return points
    angles = np.arctan2(points[:, 1] - center[1], points[:, 0] - center[0])
    return points[np.argsort(angles, kind="stable")]


def neighbor_consistency_filter(ring: np.ndarray, factor: float = 3.0) -> np.ndarray:
    """Drop vertices farther than ``factor`` x the mean edge from both neighbours."""
    n = len(ring)
    if n < 4:
        return ring
    to_next = np.linalg.norm(np.roll(ring, -1, axis=0) - ring, axis=1)
    to_prev = np.roll(to_next, 1)
    mean_edge = float(to_next.mean())
    if mean_edge <= 0:
        return ring
    limit = factor * mean_edge
    keep = ~((to_next > limit) & (to_prev > limit))
    return ring[keep]


def _dedupe(points: np.ndarray) -> np.ndarray:
    if len(points) == 0:
        return points
    _, idx = np.unique(np.round(points, 3), axis=0, return_index=True)
    return points[np.sort(idx)]


def reseed_candidates(
    ring: np.ndarray,
    curvature_threshold: float = 45.0,
    gap_factor: float = 2.5,
    limit: int = 8,
) -> List[int]:
    """Indices of the highest-priority high-curvature or large-gap vertices."""
    n = len(ring)
    if n < 3 or limit <= 0:
        return []
    to_next = np.linalg.norm(np.roll(ring, -1, axis=0) - ring, axis=1)
    mean_edge = float(to_next.mean()) or 1.0
    scored = []
    for i in range(n):
        turn = turn_angle_degrees(ring[i - 1], ring[i], ring[(i + 1) % n])
        priority = max(turn / curvature_threshold, to_next[i] / (gap_factor * mean_edge))
        if priority > 1.0:
            scored.append((priority, i))
    scored.sort(key=lambda item: -item[0])
    return [i for _, i in scored[:limit]]


def _fan_angles(center_angle: float, step: float) -> Sequence[float]:
    count = int(math.floor(math.pi / step))
    return [center_angle - math.pi / 2.0 + k * step for k in range(count + 1)]


def ray_cast_contour(
    mask: np.ndarray,
    seed: Tuple[float, float],
    config: Optional[DetectionConfig] = None,
    deadline: Optional[Deadline] = None,
) -> np.ndarray:
    """Outline of the region around ``seed`` as an open ring sorted by angle.

    Raises GeometryDegeneracy when too few vertices survive or the enclosed
    area is below ``min_contour_area``.
    """
    config = config or DetectionConfig()
    mask = mask.astype(bool)
    center = adjust_seed(mask, seed)
    step = math.radians(config.angular_step_degrees)
    ray_args = (config.gap_tolerance_min, config.gap_tolerance_max, config.continue_search_distance)

    hits = []
    angle = 0.0
    while angle < 2.0 * math.pi - 1e-9:
        hit = cast_ray(mask, center, angle, *ray_args)
        if hit is not None:
            hits.append(hit)
        angle += step
    check_deadline(deadline, "ray cast")

    points = _dedupe(np.array(hits, dtype=np.float64).reshape(-1, 2))
    points = sort_by_angle(reject_outliers(points, center, config.outlier_factor), center)

    extra = []
    for idx in reseed_candidates(points, config.curvature_threshold_degrees, config.reseed_gap_factor, config.max_reseed_points):
        check_deadline(deadline, "ray cast re-seed")
        vertex = points[idx]
        outward = math.atan2(vertex[1] - center[1], vertex[0] - center[0])
        dist = math.hypot(vertex[0] - center[0], vertex[1] - center[1])
        pull = min(RESEED_PULLBACK, dist)
        origin = (vertex[0] - pull * math.cos(outward), vertex[1] - pull * math.sin(outward))
        for fan_angle in _fan_angles(outward, step):
            hit = cast_ray(mask, origin, fan_angle, *ray_args)
            if hit is not None:
                extra.append(hit)

    if extra:
        merged = _dedupe(np.vstack([points, np.array(extra, dtype=np.float64)]))
        merged = sort_by_angle(reject_outliers(merged, center, config.outlier_factor), center)
        merged = neighbor_consistency_filter(merged, config.neighbor_factor)
        points = sort_by_angle(merged, center)

    if len(points) < config.min_vertex_count:
        raise GeometryDegeneracy(f"ray cast produced {len(points)} vertices (< {config.min_vertex_count})")
    area = polygon_area(points)
    if area < config.min_contour_area:
        raise GeometryDegeneracy(f"ray cast area {area:.1f} below {config.min_contour_area}")
    return points
