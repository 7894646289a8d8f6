from __future__ import annotations

from typing import Tuple

import cv2
import numpy as np

from slab_geometry2d.errors import InputError


def ensure_image(image: np.ndarray) -> np.ndarray:
    """Validate an input raster once per call. Returns a uint8 HxW or HxWx3 array."""
    if not isinstance(image, np.ndarray):
        raise InputError(f"Expected a numpy array, got {type(image).__name__}")
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.ndim == 3 and image.shape[2] == 4:
        image = cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_BGRA2BGR) if image.dtype == np.uint8 else image[:, :, :3]
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] != 3):
        raise InputError(f"Unsupported image shape {image.shape}")
    h, w = image.shape[:2]
    if h <= 0 or w <= 0:
        raise InputError(f"Image has zero size ({w}x{h})")
    if image.dtype == np.bool_:
        return image.astype(np.uint8) * 255
    if image.dtype != np.uint8:
        if not np.issubdtype(image.dtype, np.number):
            raise InputError(f"Unsupported image dtype {image.dtype}")
        return np.clip(image, 0, 255).astype(np.uint8)
    return image


def image_size(image: np.ndarray) -> Tuple[int, int]:
    """(width, height)"""
    return int(image.shape[1]), int(image.shape[0])


def to_grayscale(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image.copy()
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def gaussian_blur(gray: np.ndarray, radius: int) -> np.ndarray:
    if radius <= 0:
        return gray.copy()
    k = int(radius) if int(radius) % 2 == 1 else int(radius) + 1
    return cv2.GaussianBlur(gray, (k, k), 0)


def stretch_contrast(gray: np.ndarray) -> np.ndarray:
    lo, hi = int(gray.min()), int(gray.max())
    if hi <= lo:
        return gray.copy()
    out = (gray.astype(np.float32) - lo) * (255.0 / (hi - lo))
    return np.clip(out, 0, 255).astype(np.uint8)


def downsample(image: np.ndarray, max_dimension: int) -> Tuple[np.ndarray, float]:
    """Shrink so the longer side is at most ``max_dimension``.

    Returns (image, scale) where processed = original * scale.
    """
    h, w = image.shape[:2]
    longest = max(h, w)
    if longest <= max_dimension:
        return image, 1.0
    scale = float(max_dimension) / float(longest)
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)
    return resized, scale
