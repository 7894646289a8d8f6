"""
Slab 2D geometry: calibrated outline extraction from a single photo.

Pipeline:
  Markers    : dark compact blobs -> role assignment -> calibration frame
  Segment    : colour range / Otsu / adaptive / edge / region-sample masks
  Morphology : open / close / hole filling
  Boundary   : component labelling + Moore trace, or seeded ray casting
  Polygon    : smooth, simplify, hull, concavity pruning, resample
  Orchestrate: strategy chain under a time budget, synthetic fallback
"""

from slab_geometry2d.calibration import build_calibration
from slab_geometry2d.config import DetectionConfig, resolve_detection_config
from slab_geometry2d.detector import ContourDetector, detect_contour
from slab_geometry2d.errors import (
    BoundaryTraceError,
    CalibrationError,
    DetectionTimeout,
    GeometryDegeneracy,
    InputError,
    SlabGeometryError,
)
from slab_geometry2d.models import CalibrationFrame, Detected, Fallback, MarkerCandidate, MarkerRole

__all__ = [
    "BoundaryTraceError",
    "CalibrationError",
    "CalibrationFrame",
    "ContourDetector",
    "Detected",
    "DetectionConfig",
    "DetectionTimeout",
    "Fallback",
    "GeometryDegeneracy",
    "InputError",
    "MarkerCandidate",
    "MarkerRole",
    "SlabGeometryError",
    "build_calibration",
    "detect_contour",
    "resolve_detection_config",
]
