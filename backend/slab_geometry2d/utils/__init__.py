"""Raster and polygon helpers shared by the slab detection modules."""

from slab_geometry2d.utils.image_ops import downsample, ensure_image, to_grayscale
from slab_geometry2d.utils.poly_math import ring_perimeter, shoelace

__all__ = [
    "ensure_image",
    "to_grayscale",
    "downsample",
    "shoelace",
    "ring_perimeter",
]
