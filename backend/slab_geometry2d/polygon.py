"""Pure polygon operations on (N, 2) float arrays.

Contours are handled as open rings (the closing vertex is implicit) unless a
function says otherwise; ``close_contour`` / ``open_contour`` convert between
the two forms.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from slab_geometry2d.config import DetectionConfig
from slab_geometry2d.diagnostics import Deadline, Diagnostics, check_deadline
from slab_geometry2d.errors import GeometryDegeneracy
from slab_geometry2d.models import as_points
from slab_geometry2d.utils.poly_math import cross, edge_lengths, ring_perimeter, shoelace

SIMPLIFY_MAX_DEPTH = 100
FALLBACK_VERTEX_COUNT = 20
FALLBACK_RADIUS_FRACTION = 0.3
SMOOTHING_SPACING = 1.0
MAX_DENSE_VERTICES = 20000


def is_closed(points: np.ndarray) -> bool:
    return len(points) >= 2 and bool(np.allclose(points[0], points[-1]))


def close_contour(points: np.ndarray) -> np.ndarray:
    pts = as_points(points)
    if len(pts) == 0 or is_closed(pts):
        return pts.copy()
    return np.vstack([pts, pts[:1]])


def open_contour(points: np.ndarray) -> np.ndarray:
    pts = as_points(points)
    if len(pts) >= 2 and is_closed(pts):
        return pts[:-1].copy()
    return pts.copy()


def polygon_area(points: np.ndarray) -> float:
    return abs(shoelace(open_contour(points)))


def polygon_perimeter(points: np.ndarray) -> float:
    return ring_perimeter(open_contour(points))


def _chord_distances(pts: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    ab = b - a
    denom = float(ab @ ab)
    if denom <= 1e-18:
        return np.linalg.norm(pts - a, axis=1)
    t = np.clip(((pts - a) @ ab) / denom, 0.0, 1.0)
    proj = a + t[:, None] * ab
    return np.linalg.norm(pts - proj, axis=1)


def simplify(points: np.ndarray, epsilon: float, max_depth: int = SIMPLIFY_MAX_DEPTH) -> np.ndarray:
    """Douglas-Peucker on a polyline, driven by an explicit stack.

    Ranges reached past ``max_depth`` are kept unsplit. The result is always a
    subsequence of the input that keeps its first and last points.
    """
    pts = as_points(points)
    n = len(pts)
    if n <= 2:
        return pts.copy()

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, n - 1, 0)]
    while stack:
        start, end, depth = stack.pop()
        if end - start < 2:
            continue
        inner = pts[start + 1:end]
        dists = _chord_distances(inner, pts[start], pts[end])
        idx = int(np.argmax(dists))
        if dists[idx] <= epsilon:
            continue
        if depth >= max_depth:
            keep[start:end + 1] = True
            continue
        split = start + 1 + idx
        keep[split] = True
        stack.append((start, split, depth + 1))
        stack.append((split, end, depth + 1))
    return pts[keep].copy()


def simplify_ring(ring: np.ndarray, epsilon: float) -> np.ndarray:
    return open_contour(simplify(close_contour(ring), epsilon))


def gaussian_kernel(window: int, sigma: float) -> np.ndarray:
    half = max(0, int(window) // 2)
    offsets = np.arange(-half, half + 1, dtype=np.float64)
    weights = np.exp(-(offsets ** 2) / (2.0 * max(sigma, 1e-6) ** 2))
    return weights / weights.sum()


def smooth(points: np.ndarray, window: int = 5, sigma: float = 1.0) -> np.ndarray:
    """Circular Gaussian moving average on an open ring."""
    ring = open_contour(points)
    n = len(ring)
    if n < 3 or window <= 1:
        return ring
    window = min(int(window), n if n % 2 == 1 else n - 1)
    kernel = gaussian_kernel(window, sigma)
    half = len(kernel) // 2
    out = np.zeros_like(ring)
    for k, weight in enumerate(kernel):
        out += weight * np.roll(ring, half - k, axis=0)
    return out


def convex_hull(points: np.ndarray) -> np.ndarray:
    """Graham scan. Returns the strict hull as an open ring."""
    pts = np.unique(open_contour(points), axis=0)
    if len(pts) < 3:
        return pts

    pivot_idx = np.lexsort((pts[:, 0], pts[:, 1]))[0]
    pivot = pts[pivot_idx]
    rest = np.delete(pts, pivot_idx, axis=0)
    delta = rest - pivot
    angles = np.arctan2(delta[:, 1], delta[:, 0])
    dists = np.hypot(delta[:, 0], delta[:, 1])
    rest = rest[np.lexsort((dists, angles))]

    hull = [pivot]
    for p in rest:
        while len(hull) >= 2:
            o, a = hull[-2], hull[-1]
            if cross(o, a, p) > 0:
                break
            hull.pop()
        hull.append(p)
    return np.array(hull, dtype=np.float64)


def is_self_intersecting(contour: np.ndarray) -> bool:
    """True when any two non-adjacent edges of the ring cross."""
    ring = open_contour(contour)
    n = len(ring)
    if n < 4:
        return False
    a = ring
    b = np.roll(ring, -1, axis=0)
    r = b - a
    eps = 1e-9
    for i in range(n - 2):
        j = np.arange(i + 2, n)
        if i == 0:
            j = j[j != n - 1]
        if len(j) == 0:
            continue
        s = r[j]
        qp = a[j] - a[i]
        denom = r[i, 0] * s[:, 1] - r[i, 1] * s[:, 0]
        valid = np.abs(denom) > eps
        safe = np.where(valid, denom, 1.0)
        t = (qp[:, 0] * s[:, 1] - qp[:, 1] * s[:, 0]) / safe
        u = (qp[:, 0] * r[i, 1] - qp[:, 1] * r[i, 0]) / safe
        hit = valid & (t > eps) & (t < 1 - eps) & (u > eps) & (u < 1 - eps)
        if hit.any():
            return True
    return False


def resolve_self_intersections(contour: np.ndarray, diagnostics: Optional[Diagnostics] = None) -> np.ndarray:
    ring = open_contour(contour)
    if not is_self_intersecting(ring):
        return ring
    if diagnostics is not None:
        diagnostics.record("postprocess", GeometryDegeneracy("self-intersecting contour replaced by its convex hull"))
    return convex_hull(ring)


def _orientation_sign(ring: np.ndarray) -> float:
    return 1.0 if shoelace(ring) >= 0 else -1.0


def prune_deep_concavities(contour: np.ndarray, threshold_ratio: float = 0.05) -> np.ndarray:
    """Drop reflex vertices whose detour exceeds ``threshold_ratio`` of the perimeter."""
    ring = open_contour(contour)
    if len(ring) <= 3 or threshold_ratio <= 0:
        return ring
    perimeter = ring_perimeter(ring)
    if perimeter <= 0:
        return ring
    sign = _orientation_sign(ring)
    limit = threshold_ratio * perimeter

    kept = list(range(len(ring)))
    i = 0
    while i < len(kept) and len(kept) > 3:
        prev_p = ring[kept[i - 1]]
        cur = ring[kept[i]]
        next_p = ring[kept[(i + 1) % len(kept)]]
        turn = cross(prev_p, cur, next_p)
        detour = np.linalg.norm(cur - prev_p) + np.linalg.norm(next_p - cur) - np.linalg.norm(next_p - prev_p)
        if turn * sign < 0 and detour > limit:
            kept.pop(i)
            continue
        i += 1
    return ring[kept].copy()


def resample(points: np.ndarray, target_count: int) -> np.ndarray:
    """Even arc-length resampling of a closed ring, or uniform subsampling when denser."""
    ring = open_contour(points)
    n = len(ring)
    target = int(target_count)
    if n == 0 or target <= 0 or n == target:
        return ring
    if n > target:
        idx = np.floor(np.linspace(0, n, target, endpoint=False)).astype(int)
        return ring[idx].copy()

    closed = np.vstack([ring, ring[:1]])
    seg = np.linalg.norm(np.diff(closed, axis=0), axis=1)
    total = float(seg.sum())
    if total <= 0:
        return np.repeat(ring[:1], target, axis=0)
    cum = np.concatenate([[0.0], np.cumsum(seg)])
    samples = np.linspace(0.0, total, target, endpoint=False)
    x = np.interp(samples, cum, closed[:, 0])
    y = np.interp(samples, cum, closed[:, 1])
    return np.column_stack([x, y])


def subdivide(points: np.ndarray, target_count: int) -> np.ndarray:
    """Insert evenly spaced points along each edge until the ring has ``target_count`` vertices.

    Every input vertex is kept, so corners survive. Extra points go to edges in
    proportion to their length.
    """
    ring = open_contour(points)
    n = len(ring)
    target = int(target_count)
    if n < 2 or target <= n:
        return ring

    closed = np.vstack([ring, ring[:1]])
    seg = np.linalg.norm(np.diff(closed, axis=0), axis=1)
    total = float(seg.sum())
    if total <= 0:
        return ring
    extra = target - n
    shares = seg / total * extra
    counts = np.floor(shares).astype(int)
    leftover = extra - int(counts.sum())
    if leftover > 0:
        counts[np.argsort(-(shares - counts), kind="stable")[:leftover]] += 1

    pieces = []
    for i in range(n):
        steps = int(counts[i]) + 1
        t = np.arange(steps, dtype=np.float64) / steps
        pieces.append(closed[i] + t[:, None] * (closed[i + 1] - closed[i]))
    return np.vstack(pieces)


def fallback_polygon(
    width: int,
    height: int,
    seed: Optional[Tuple[float, float]] = None,
    vertex_count: int = FALLBACK_VERTEX_COUNT,
) -> np.ndarray:
    """Closed regular polygon of radius 0.3 * min(width, height)."""
    radius = FALLBACK_RADIUS_FRACTION * min(width, height)
    cx, cy = (width / 2.0, height / 2.0) if seed is None else (float(seed[0]), float(seed[1]))
    angles = 2.0 * math.pi * np.arange(vertex_count) / vertex_count
    ring = np.column_stack([cx + radius * np.cos(angles), cy + radius * np.sin(angles)])
    return close_contour(ring)


def postprocess(
    contour: np.ndarray,
    config: Optional[DetectionConfig] = None,
    diagnostics: Optional[Diagnostics] = None,
    deadline: Optional[Deadline] = None,
) -> np.ndarray:
    """densify -> smooth -> simplify -> self-intersection resolution -> concavity pruning -> resample.

    Smoothing runs on a pixel-spaced ring so the kernel spans a few pixels, not
    whole edges. The final resample subdivides edges and keeps every simplified
    vertex.
    """
    config = config or DetectionConfig()
    ring = open_contour(contour)
    if len(ring) < 3:
        raise GeometryDegeneracy(f"contour has only {len(ring)} vertices")

    dense_count = min(MAX_DENSE_VERTICES, int(math.ceil(ring_perimeter(ring) / SMOOTHING_SPACING)))
    smoothed = smooth(subdivide(ring, dense_count), config.smoothing_window, config.smoothing_sigma)
    check_deadline(deadline, "postprocess")
    simplified = simplify_ring(smoothed, config.simplify_epsilon)
    if len(simplified) < 3:
        simplified = smoothed
    ring = resolve_self_intersections(simplified, diagnostics)
    ring = prune_deep_concavities(ring, config.concavity_ratio)
    check_deadline(deadline, "postprocess")

    target = int(np.clip(len(ring), config.target_vertex_min, config.target_vertex_max))
    ring = subdivide(ring, target) if len(ring) < target else resample(ring, target)
    if np.any(edge_lengths(ring) <= 1e-9):
        ring = _drop_duplicate_vertices(ring)
    return ring


def _drop_duplicate_vertices(ring: np.ndarray) -> np.ndarray:
    nxt = np.roll(ring, -1, axis=0)
    keep = np.linalg.norm(nxt - ring, axis=1) > 1e-9
    if not keep.any():
        return ring[:1].copy()
    return ring[keep].copy()
