"""Error taxonomy for the slab detection core.

Only ``InputError`` ever reaches a caller of ``detect_contour``; the others are
raised inside the pipeline and recovered locally (recorded in diagnostics).
"""

from __future__ import annotations


class SlabGeometryError(Exception):
    """Base class for all errors raised by slab_geometry2d."""


class InputError(SlabGeometryError, ValueError):
    """Zero-size or otherwise unusable input image."""


class CalibrationError(SlabGeometryError, ValueError):
    """Markers cannot produce a trustworthy calibration frame."""


class DetectionTimeout(SlabGeometryError, TimeoutError):
    """The per-call wall-clock budget expired inside a strategy."""


class GeometryDegeneracy(SlabGeometryError, ValueError):
    """A contour is degenerate (self-intersecting, too small, zero-length)."""


class BoundaryTraceError(GeometryDegeneracy):
    """Moore tracing exceeded its step budget without closing."""
