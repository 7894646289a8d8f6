from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from slab_geometry2d.errors import DetectionTimeout


@dataclass
class DiagnosticEvent:
    stage: str
    kind: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"stage": self.stage, "kind": self.kind, "message": self.message}


@dataclass
class Diagnostics:
    """Per-call record of recovered conditions, timings and optional debug rasters."""

    events: List[DiagnosticEvent] = field(default_factory=list)
    strategy: Optional[str] = None
    timings: Dict[str, float] = field(default_factory=dict)
    scale_factor: float = 1.0
    masks: Dict[str, np.ndarray] = field(default_factory=dict)
    overlay: Optional[np.ndarray] = None
    emit_rasters: bool = False

    def record(self, stage: str, error: Any) -> None:
        kind = type(error).__name__ if isinstance(error, BaseException) else "note"
        self.events.append(DiagnosticEvent(stage, kind, str(error)))

    def add_mask(self, name: str, mask: np.ndarray) -> None:
        if self.emit_rasters:
            self.masks[name] = mask.copy()

    def time(self, name: str, seconds: float) -> None:
        self.timings[name] = round(float(seconds), 6)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "strategy": self.strategy,
            "timings": dict(self.timings),
            "scaleFactor": float(self.scale_factor),
            "masks": sorted(self.masks.keys()),
        }


class Deadline:
    """Cooperative wall-clock budget shared between the caller and the worker."""

    def __init__(self, budget_seconds: float):
        self.started = time.monotonic()
        self.expires_at = self.started + max(0.0, float(budget_seconds))
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self._cancelled or time.monotonic() >= self.expires_at

    def check(self, where: str = "") -> None:
        if self.expired():
            raise DetectionTimeout(f"time budget exhausted{' in ' + where if where else ''}")


def check_deadline(deadline: Optional[Deadline], where: str = "") -> None:
    if deadline is not None:
        deadline.check(where)


def render_overlay(
    image: np.ndarray,
    contour: Optional[np.ndarray],
    markers: Sequence[Any] = (),
    seed: Optional[Tuple[float, float]] = None,
    fallback: bool = False,
) -> np.ndarray:
    """Draw the contour, markers and seed on a BGR copy of ``image``."""
    if image.ndim == 2:
        overlay = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        overlay = image.copy()

    if contour is not None and len(contour) >= 2:
        colour = (40, 40, 220) if fallback else (50, 200, 50)
        pts = np.round(contour).astype(np.int32).reshape(-1, 1, 2)
        cv2.polylines(overlay, [pts], True, colour, 2, cv2.LINE_AA)

    for marker in markers:
        cx, cy = int(round(marker.x)), int(round(marker.y))
        cv2.circle(overlay, (cx, cy), 8, (0, 165, 255), -1)
        cv2.putText(overlay, marker.role.value, (cx + 10, cy - 10), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 2, cv2.LINE_AA)

    if seed is not None:
        sx, sy = int(round(seed[0])), int(round(seed[1]))
        size = 8
        # crosshair
        cv2.line(overlay, (sx - size, sy), (sx + size, sy), (0, 0, 0), 3, cv2.LINE_AA)
        cv2.line(overlay, (sx, sy - size), (sx, sy + size), (0, 0, 0), 3, cv2.LINE_AA)
        cv2.line(overlay, (sx - size, sy), (sx + size, sy), (255, 255, 255), 1, cv2.LINE_AA)
        cv2.line(overlay, (sx, sy - size), (sx, sy + size), (255, 255, 255), 1, cv2.LINE_AA)
    return overlay
