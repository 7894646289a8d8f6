"""Result and calibration types shared across the detection pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from slab_geometry2d.diagnostics import Diagnostics


class MarkerRole(str, Enum):
    ORIGIN = "origin"
    X_AXIS = "x_axis"
    SCALE = "scale"
    TOP_RIGHT = "top_right"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class MarkerCandidate:
    x: float
    y: float
    role: MarkerRole = MarkerRole.UNASSIGNED
    confidence: float = 1.0
    area: Optional[float] = None

    @property
    def xy(self) -> Tuple[float, float]:
        return (float(self.x), float(self.y))

    def with_role(self, role: MarkerRole) -> "MarkerCandidate":
        return MarkerCandidate(self.x, self.y, role, self.confidence, self.area)

    def scaled(self, factor: float) -> "MarkerCandidate":
        area = None if self.area is None else self.area * factor * factor
        return MarkerCandidate(self.x * factor, self.y * factor, self.role, self.confidence, area)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": float(self.x),
            "y": float(self.y),
            "role": self.role.value,
            "confidence": float(self.confidence),
            "area": None if self.area is None else float(self.area),
        }


def as_points(points: Any) -> np.ndarray:
    """Coerce a point sequence into a float64 (N, 2) array."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim == 1 and arr.size == 2:
        arr = arr.reshape(1, 2)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected (N, 2) points, got shape {arr.shape}")
    return arr


@dataclass(frozen=True)
class CalibrationFrame:
    """Pixel <-> real-world mapping.

    Similarity frames rotate by ``orientation`` about ``origin`` and scale by
    ``ratio`` (real units per pixel). Projective frames carry a 3x3
    ``homography`` (row-major, h33 = 1) that maps pixels to real units.
    Real-world y points from the origin towards the scale marker, i.e. "up"
    in the photo.
    """

    origin: Tuple[float, float]
    orientation: float
    ratio: float
    homography: Optional[Tuple[float, ...]] = None
    model: str = "similarity"
    markers: Tuple[MarkerCandidate, ...] = ()

    @property
    def is_projective(self) -> bool:
        return self.homography is not None

    def homography_matrix(self) -> Optional[np.ndarray]:
        if self.homography is None:
            return None
        return np.asarray(self.homography, dtype=np.float64).reshape(3, 3)

    def _axes(self) -> Tuple[np.ndarray, np.ndarray]:
        c, s = math.cos(self.orientation), math.sin(self.orientation)
        return np.array([c, s]), np.array([s, -c])

    def pixel_to_real(self, points: Any) -> np.ndarray:
        pts = as_points(points)
        if len(pts) == 0:
            return pts.copy()
        if self.is_projective:
            return _apply_homography(self.homography_matrix(), pts)
        u, v = self._axes()
        d = pts - np.asarray(self.origin, dtype=np.float64)
        return np.column_stack([d @ u, d @ v]) * self.ratio

    def real_to_pixel(self, points: Any) -> np.ndarray:
        pts = as_points(points)
        if len(pts) == 0:
            return pts.copy()
        if self.is_projective:
            return _apply_homography(np.linalg.inv(self.homography_matrix()), pts)
        u, v = self._axes()
        scaled = pts / self.ratio
        return np.asarray(self.origin, dtype=np.float64) + np.outer(scaled[:, 0], u) + np.outer(scaled[:, 1], v)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "origin": [float(self.origin[0]), float(self.origin[1])],
            "orientation": float(self.orientation),
            "ratio": float(self.ratio),
            "homography": None if self.homography is None else [float(h) for h in self.homography],
            "markers": [m.to_dict() for m in self.markers],
        }


def _apply_homography(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    homo = np.column_stack([pts, np.ones(len(pts))]) @ H.T
    w = homo[:, 2:3]
    w = np.where(np.abs(w) < 1e-12, 1e-12, w)
    return homo[:, :2] / w


@dataclass(frozen=True)
class Detected:
    contour: np.ndarray
    frame: CalibrationFrame
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def is_fallback(self) -> bool:
        return False

    @property
    def strategy(self) -> Optional[str]:
        return self.diagnostics.strategy

    @property
    def reason(self) -> Optional[str]:
        return None

    @property
    def real_contour(self) -> np.ndarray:
        return self.frame.pixel_to_real(self.contour)


@dataclass(frozen=True)
class Fallback:
    contour: np.ndarray
    frame: CalibrationFrame
    reason: str
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def is_fallback(self) -> bool:
        return True

    @property
    def strategy(self) -> Optional[str]:
        return "fallback"

    @property
    def real_contour(self) -> np.ndarray:
        return self.frame.pixel_to_real(self.contour)


def markers_by_role(markers: Sequence[MarkerCandidate]) -> Dict[MarkerRole, MarkerCandidate]:
    return {m.role: m for m in markers if m.role != MarkerRole.UNASSIGNED}
