"""Reference marker candidates: small, compact, dark blobs clear of the image border."""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

import numpy as np

from slab_geometry2d.calibration import assign_marker_roles
from slab_geometry2d.config import DetectionConfig
from slab_geometry2d.diagnostics import Deadline, check_deadline
from slab_geometry2d.errors import CalibrationError
from slab_geometry2d.models import MarkerCandidate
from slab_geometry2d.morphology import open as open_mask
from slab_geometry2d.regions import connected_components
from slab_geometry2d.segmentation import segment_otsu
from slab_geometry2d.utils.image_ops import ensure_image, to_grayscale

MAX_CANDIDATES = 4


def score_component(component: np.ndarray) -> Tuple[float, Tuple[int, int, int, int]]:
    """Confidence from bounding-box fill ratio and squareness."""
    x_min, y_min = component.min(axis=0)
    x_max, y_max = component.max(axis=0)
    bw = int(x_max - x_min + 1)
    bh = int(y_max - y_min + 1)
    fill = len(component) / float(bw * bh)
    squareness = min(bw, bh) / float(max(bw, bh))
    confidence = float(np.clip(fill * squareness, 0.0, 1.0))
    return confidence, (int(x_min), int(y_min), bw, bh)


def find_marker_candidates(
    image: np.ndarray,
    config: Optional[DetectionConfig] = None,
    deadline: Optional[Deadline] = None,
    scale: float = 1.0,
) -> List[MarkerCandidate]:
    """Marker blobs in ``image``, most confident first.

    ``marker_min_area`` / ``marker_max_area`` are in original-image pixels;
    ``scale`` is how far ``image`` was downsampled from the original.
    """
    config = config or DetectionConfig()
    image = ensure_image(image)
    gray = to_grayscale(image)
    h, w = gray.shape

    area_scale = float(scale) ** 2
    min_area = max(1, int(math.floor(config.marker_min_area * area_scale)))
    max_area = max(min_area, int(math.ceil(config.marker_max_area * area_scale)))

    mask = open_mask(segment_otsu(gray), 3)
    check_deadline(deadline, "marker segmentation")
    components = connected_components(mask, min_area, max_area, deadline)

    candidates = []
    for comp in components:
        confidence, (x0, y0, bw, bh) = score_component(comp)
        if x0 == 0 or y0 == 0 or x0 + bw >= w or y0 + bh >= h:
            continue
        cx, cy = comp.mean(axis=0)
        candidates.append(MarkerCandidate(float(cx), float(cy), confidence=confidence, area=float(len(comp))))

    candidates.sort(key=lambda m: -m.confidence)
    return candidates[:MAX_CANDIDATES]


def detect_markers(
    image: np.ndarray,
    config: Optional[DetectionConfig] = None,
    deadline: Optional[Deadline] = None,
    scale: float = 1.0,
) -> List[MarkerCandidate]:
    """Candidates with roles assigned, or the raw candidates when fewer than 3 were found."""
    candidates = find_marker_candidates(image, config, deadline, scale)
    print(f"[markers] {len(candidates)} candidate(s)")
    try:
        return list(assign_marker_roles(candidates))
    except CalibrationError:
        return candidates
