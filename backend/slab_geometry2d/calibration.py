"""Marker role assignment and pixel <-> real-world calibration.

Two models are supported:
  - similarity (3 markers): rotation about the origin marker plus a uniform
    scale taken from the origin -> scale marker distance
  - projective (4 markers): a planar homography from the marker quad onto the
    real-world rectangle (0,0) (X,0) (X,Y) (0,Y)

``build_calibration`` always returns a frame, escalating projective ->
similarity -> synthetic default markers and recording every step it skips.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from slab_geometry2d.config import DetectionConfig
from slab_geometry2d.diagnostics import Diagnostics
from slab_geometry2d.errors import CalibrationError
from slab_geometry2d.models import CalibrationFrame, MarkerCandidate, MarkerRole, markers_by_role

DEFAULT_X_DISTANCE = 762.0
DEFAULT_Y_DISTANCE = 762.0

MIN_RATIO = 0.01
MAX_RATIO = 100.0

# Relative pivot tolerance for the 8x8 elimination.
PIVOT_TOLERANCE = 1e-10

PointLike = Union[MarkerCandidate, Tuple[float, float], Sequence[float]]


def _xy(point: PointLike) -> np.ndarray:
    if isinstance(point, MarkerCandidate):
        return np.array([point.x, point.y], dtype=np.float64)
    return np.asarray(point, dtype=np.float64).reshape(2)


# ---------------------------------------------------------------------------
# roles


def assign_marker_roles(candidates: Sequence[MarkerCandidate]) -> Tuple[MarkerCandidate, ...]:
    """Tag candidates with roles from their layout in the photo.

    3 markers: topmost is scale; of the remaining two the leftmost is origin
    and the rightmost is x_axis.
    4 markers: the two topmost are scale (left) and top_right (right); the two
    bottom ones are origin (left) and x_axis (right).
    More than 4: the four with the highest confidence are used.
    """
    cands = list(candidates)
    if len(cands) < 3:
        raise CalibrationError(f"need at least 3 markers, got {len(cands)}")
    if len(cands) > 4:
        cands = sorted(cands, key=lambda m: -m.confidence)[:4]

    by_y = sorted(cands, key=lambda m: (m.y, m.x))
    if len(cands) == 3:
        scale = by_y[0]
        origin, x_axis = sorted(by_y[1:], key=lambda m: (m.x, m.y))
        return (
            origin.with_role(MarkerRole.ORIGIN),
            x_axis.with_role(MarkerRole.X_AXIS),
            scale.with_role(MarkerRole.SCALE),
        )

    scale, top_right = sorted(by_y[:2], key=lambda m: (m.x, m.y))
    origin, x_axis = sorted(by_y[2:], key=lambda m: (m.x, m.y))
    return (
        origin.with_role(MarkerRole.ORIGIN),
        x_axis.with_role(MarkerRole.X_AXIS),
        scale.with_role(MarkerRole.SCALE),
        top_right.with_role(MarkerRole.TOP_RIGHT),
    )


def default_markers(width: float, height: float) -> Tuple[MarkerCandidate, ...]:
    """Synthetic origin / x-axis / scale markers at 20 % and 80 % of the frame."""
    return (
        MarkerCandidate(0.2 * width, 0.8 * height, MarkerRole.ORIGIN, 0.5),
        MarkerCandidate(0.8 * width, 0.8 * height, MarkerRole.X_AXIS, 0.5),
        MarkerCandidate(0.2 * width, 0.2 * height, MarkerRole.SCALE, 0.5),
    )


def scale_markers(markers: Iterable[MarkerCandidate], factor: float) -> Tuple[MarkerCandidate, ...]:
    return tuple(m.scaled(factor) for m in markers)


# ---------------------------------------------------------------------------
# similarity


def similarity_frame(
    origin: PointLike,
    x_axis: PointLike,
    scale: PointLike,
    real_distance: float,
    min_separation: float = 10.0,
    markers: Sequence[MarkerCandidate] = (),
) -> CalibrationFrame:
    o = _xy(origin)
    x = _xy(x_axis)
    s = _xy(scale)

    pixel_distance = float(np.linalg.norm(s - o))
    if pixel_distance < min_separation:
        raise CalibrationError(f"origin and scale markers are {pixel_distance:.2f}px apart (< {min_separation})")
    if float(np.linalg.norm(x - o)) < min_separation:
        raise CalibrationError("origin and x-axis markers are too close")

    ratio = float(real_distance) / pixel_distance
    if not math.isfinite(ratio) or not (MIN_RATIO < ratio <= MAX_RATIO):
        raise CalibrationError(f"pixel-to-real ratio {ratio} outside ({MIN_RATIO}, {MAX_RATIO}]")

    orientation = math.atan2(x[1] - o[1], x[0] - o[0])
    return CalibrationFrame(
        origin=(float(o[0]), float(o[1])),
        orientation=orientation,
        ratio=ratio,
        model="similarity",
        markers=tuple(markers),
    )


# ---------------------------------------------------------------------------
# projective


def validate_quad(quad: Sequence[PointLike], min_side: float = 10.0, max_side_ratio: float = 10.0) -> None:
    """Raise CalibrationError unless ``quad`` is a convex, well-proportioned quadrilateral."""
    pts = np.array([_xy(p) for p in quad], dtype=np.float64)
    if pts.shape != (4, 2):
        raise CalibrationError("quad needs exactly 4 points")

    crosses = []
    for i in range(4):
        a, b, c = pts[i - 1], pts[i], pts[(i + 1) % 4]
        crosses.append((b[0] - a[0]) * (c[1] - b[1]) - (b[1] - a[1]) * (c[0] - b[0]))
    crosses = np.array(crosses)
    if not (np.all(crosses > 0) or np.all(crosses < 0)):
        raise CalibrationError("marker quad is not convex")

    sides = np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)
    if np.any(sides < min_side):
        raise CalibrationError(f"marker quad side shorter than {min_side}px")
    for a, b in ((sides[0], sides[2]), (sides[1], sides[3])):
        if max(a, b) / min(a, b) > max_side_ratio:
            raise CalibrationError("opposite sides of marker quad differ too much")


def solve_linear_system(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Gaussian elimination with partial pivoting. Raises on a near-singular pivot."""
    M = np.hstack([np.asarray(A, dtype=np.float64), np.asarray(b, dtype=np.float64).reshape(-1, 1)])
    n = M.shape[0]
    scale = float(np.abs(M[:, :n]).max()) or 1.0

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(M[col:, col])))
        if abs(M[pivot_row, col]) <= PIVOT_TOLERANCE * scale:
            raise CalibrationError("singular pivot while solving homography")
        if pivot_row != col:
            M[[col, pivot_row]] = M[[pivot_row, col]]
        for row in range(col + 1, n):
            factor = M[row, col] / M[col, col]
            M[row, col:] -= factor * M[col, col:]

    x = np.zeros(n, dtype=np.float64)
    for row in range(n - 1, -1, -1):
        x[row] = (M[row, n] - M[row, row + 1:n] @ x[row + 1:n]) / M[row, row]
    return x


def solve_homography(src: Sequence[PointLike], dst: Sequence[PointLike]) -> np.ndarray:
    """3x3 homography (h33 = 1) mapping the 4 ``src`` points onto ``dst``."""
    s = np.array([_xy(p) for p in src], dtype=np.float64)
    d = np.array([_xy(p) for p in dst], dtype=np.float64)
    if s.shape != (4, 2) or d.shape != (4, 2):
        raise CalibrationError("homography needs exactly 4 correspondences")

    A = np.zeros((8, 8), dtype=np.float64)
    b = np.zeros(8, dtype=np.float64)
    for i, ((x, y), (u, v)) in enumerate(zip(s, d)):
        A[2 * i] = [x, y, 1.0, 0.0, 0.0, 0.0, -u * x, -u * y]
        A[2 * i + 1] = [0.0, 0.0, 0.0, x, y, 1.0, -v * x, -v * y]
        b[2 * i] = u
        b[2 * i + 1] = v

    h = solve_linear_system(A, b)
    H = np.append(h, 1.0).reshape(3, 3)
    if not np.all(np.isfinite(H)):
        raise CalibrationError("homography has non-finite coefficients")
    return H


def projective_frame(
    origin: PointLike,
    x_axis: PointLike,
    top_right: PointLike,
    scale: PointLike,
    x_distance: float,
    y_distance: float,
    min_side: float = 10.0,
    max_side_ratio: float = 10.0,
    markers: Sequence[MarkerCandidate] = (),
) -> CalibrationFrame:
    quad = [_xy(origin), _xy(x_axis), _xy(top_right), _xy(scale)]
    validate_quad(quad, min_side, max_side_ratio)
    X, Y = float(x_distance), float(y_distance)
    if X <= 0 or Y <= 0 or not (math.isfinite(X) and math.isfinite(Y)):
        raise CalibrationError("real-world distances must be positive")

    H = solve_homography(quad, [(0.0, 0.0), (X, 0.0), (X, Y), (0.0, Y)])
    o, x = quad[0], quad[1]
    ratio = Y / float(np.linalg.norm(quad[3] - o))
    return CalibrationFrame(
        origin=(float(o[0]), float(o[1])),
        orientation=math.atan2(x[1] - o[1], x[0] - o[0]),
        ratio=ratio,
        homography=tuple(float(v) for v in H.ravel()),
        model="projective",
        markers=tuple(markers),
    )


# ---------------------------------------------------------------------------
# escalation


def _default_frame(width: float, height: float, y_distance: float, config: DetectionConfig) -> CalibrationFrame:
    markers = default_markers(width, height)
    origin, _, scale = markers
    try:
        frame = similarity_frame(markers[0], markers[1], markers[2], y_distance, config.min_marker_separation, markers)
        return CalibrationFrame(frame.origin, frame.orientation, frame.ratio, None, "default", markers)
    except CalibrationError:
        # Tiny frames or extreme distances: keep a usable, clamped ratio.
        dist = math.hypot(scale.x - origin.x, scale.y - origin.y)
        ratio = y_distance / dist if dist > 0 else 1.0
        if not math.isfinite(ratio) or ratio <= 0:
            ratio = 1.0
        ratio = min(MAX_RATIO, max(MIN_RATIO * 1.01, ratio))
        return CalibrationFrame((origin.x, origin.y), 0.0, ratio, None, "default", markers)


def build_calibration(
    markers: Optional[Sequence[MarkerCandidate]],
    x_distance: float = DEFAULT_X_DISTANCE,
    y_distance: float = DEFAULT_Y_DISTANCE,
    image_size: Tuple[int, int] = (0, 0),
    config: Optional[DetectionConfig] = None,
    diagnostics: Optional[Diagnostics] = None,
) -> CalibrationFrame:
    """Best available frame for ``markers``; never raises for bad markers."""
    config = config or DetectionConfig()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()
    width, height = image_size
    markers = list(markers or [])

    if not markers:
        diagnostics.record("calibration", "no markers; using synthetic defaults")
        print("[calibration] no markers, using default frame")
        return _default_frame(width, height, y_distance, config)

    if any(m.role == MarkerRole.UNASSIGNED for m in markers):
        try:
            markers = list(assign_marker_roles(markers))
        except CalibrationError as exc:
            diagnostics.record("calibration", exc)
            print(f"[calibration] role assignment failed ({exc}), using default frame")
            return _default_frame(width, height, y_distance, config)

    roles = markers_by_role(markers)
    if all(r in roles for r in (MarkerRole.ORIGIN, MarkerRole.X_AXIS, MarkerRole.SCALE, MarkerRole.TOP_RIGHT)):
        try:
            frame = projective_frame(
                roles[MarkerRole.ORIGIN],
                roles[MarkerRole.X_AXIS],
                roles[MarkerRole.TOP_RIGHT],
                roles[MarkerRole.SCALE],
                x_distance,
                y_distance,
                config.min_quad_side,
                config.max_side_ratio,
                markers,
            )
            print("[calibration] projective frame from 4 markers")
            return frame
        except CalibrationError as exc:
            diagnostics.record("calibration", exc)
            print(f"[calibration] projective failed ({exc}), trying similarity")

    if all(r in roles for r in (MarkerRole.ORIGIN, MarkerRole.X_AXIS, MarkerRole.SCALE)):
        try:
            frame = similarity_frame(
                roles[MarkerRole.ORIGIN],
                roles[MarkerRole.X_AXIS],
                roles[MarkerRole.SCALE],
                y_distance,
                config.min_marker_separation,
                markers,
            )
            print(f"[calibration] similarity frame, ratio={frame.ratio:.4f}")
            return frame
        except CalibrationError as exc:
            diagnostics.record("calibration", exc)
            print(f"[calibration] similarity failed ({exc}), using default frame")
    else:
        diagnostics.record("calibration", CalibrationError("markers are missing a required role"))

    return _default_frame(width, height, y_distance, config)


def marker_list_from_dicts(items: Iterable[dict]) -> List[MarkerCandidate]:
    """Parse ``{"x", "y", "role"?, "confidence"?}`` dicts coming from a request body."""
    out = []
    for item in items:
        role = item.get("role") or MarkerRole.UNASSIGNED.value
        aliases = {"xAxis": "x_axis", "topRight": "top_right"}
        role = aliases.get(role, role)
        try:
            role_enum = MarkerRole(role)
        except ValueError:
            role_enum = MarkerRole.UNASSIGNED
        out.append(
            MarkerCandidate(
                float(item["x"]),
                float(item["y"]),
                role_enum,
                float(item.get("confidence", 1.0)),
                None if item.get("area") is None else float(item["area"]),
            )
        )
    return out
