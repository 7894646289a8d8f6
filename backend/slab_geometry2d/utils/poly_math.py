from __future__ import annotations

import math

import numpy as np


def cross(o: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    """z of (a - o) x (b - o); positive for a counter-clockwise turn in y-up axes."""
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


def shoelace(points: np.ndarray) -> float:
    """Signed area of an open ring."""
    if len(points) < 3:
        return 0.0
    x = points[:, 0]
    y = points[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))


def ring_perimeter(points: np.ndarray) -> float:
    if len(points) < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(np.roll(points, -1, axis=0) - points, axis=1)))


def edge_lengths(points: np.ndarray) -> np.ndarray:
    return np.linalg.norm(np.roll(points, -1, axis=0) - points, axis=1)


def point_segment_distance(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    ab = b - a
    denom = float(ab @ ab)
    if denom <= 1e-18:
        return float(np.linalg.norm(p - a))
    t = max(0.0, min(1.0, float((p - a) @ ab) / denom))
    return float(np.linalg.norm(p - (a + t * ab)))


def turn_angle_degrees(prev: np.ndarray, cur: np.ndarray, nxt: np.ndarray) -> float:
    """Deviation from straight at ``cur`` (0 = collinear, 180 = reversal)."""
    a = cur - prev
    b = nxt - cur
    na = math.hypot(a[0], a[1])
    nb = math.hypot(b[0], b[1])
    if na < 1e-12 or nb < 1e-12:
        return 0.0
    cosang = max(-1.0, min(1.0, float(a @ b) / (na * nb)))
    return math.degrees(math.acos(cosang))
