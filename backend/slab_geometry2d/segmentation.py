"""Foreground segmentation of a slab photo into a boolean mask.

Four interchangeable modes are supported:
  - colorRange: HSV boxes (hue in degrees, wrapping through red)
  - otsu: global threshold maximising between-class variance
  - adaptive: pixel darker than its clipped local mean minus a constant
  - edge: Sobel magnitude with hysteresis promotion

Region sampling is the tap-driven alternative: pixels are classified by colour
distance to a tapped slab patch and a tapped background patch.

All functions return a fresh bool array the size of the input and never
modify their argument.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from slab_geometry2d.config import DetectionConfig, HsvRange
from slab_geometry2d.diagnostics import Deadline, check_deadline
from slab_geometry2d.errors import InputError
from slab_geometry2d.utils.image_ops import ensure_image, to_grayscale


def to_hsv(image: np.ndarray) -> np.ndarray:
    """HxWx3 float32 HSV with hue in [0, 360) and saturation/value in [0, 1]."""
    image = ensure_image(image)
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    hsv = cv2.cvtColor(image.astype(np.float32) / 255.0, cv2.COLOR_BGR2HSV)
    hsv[:, :, 0] = np.mod(hsv[:, :, 0], 360.0)
    return hsv


def _gray(image: np.ndarray) -> np.ndarray:
    image = ensure_image(image)
    return to_grayscale(image) if image.ndim == 3 else image


def segment_color_range(image: np.ndarray, ranges: Sequence[HsvRange]) -> np.ndarray:
    hsv = to_hsv(image)
    h, s, v = hsv[:, :, 0], hsv[:, :, 1], hsv[:, :, 2]
    mask = np.zeros(h.shape, dtype=bool)
    for rng in ranges:
        if rng.wraps:
            hue_ok = (h >= rng.hue_min) | (h <= rng.hue_max)
        else:
            hue_ok = (h >= rng.hue_min) & (h <= rng.hue_max)
        mask |= hue_ok & (s >= rng.sat_min) & (s <= rng.sat_max) & (v >= rng.val_min) & (v <= rng.val_max)
    return mask


def otsu_threshold(gray: np.ndarray) -> int:
    """Otsu's threshold over a 256-bin histogram.

    The dark class is ``gray <= t``. When every candidate has zero variance
    (uniform image) the first candidate, 0, is returned.
    """
    gray = _gray(gray)
    hist = np.bincount(gray.ravel(), minlength=256).astype(np.float64)
    levels = np.arange(256, dtype=np.float64)
    total = hist.sum()
    w_b = np.cumsum(hist)
    w_f = total - w_b
    sum_b = np.cumsum(hist * levels)
    sum_t = sum_b[-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        mean_b = np.where(w_b > 0, sum_b / w_b, 0.0)
        mean_f = np.where(w_f > 0, (sum_t - sum_b) / w_f, 0.0)
    between = w_b * w_f * (mean_b - mean_f) ** 2
    between[(w_b == 0) | (w_f == 0)] = 0.0
    return int(np.argmax(between))


def segment_binary(gray: np.ndarray, threshold: int) -> np.ndarray:
    return _gray(gray) <= int(threshold)


def segment_otsu(gray: np.ndarray) -> np.ndarray:
    gray = _gray(gray)
    return segment_binary(gray, otsu_threshold(gray))


def local_mean(gray: np.ndarray, block_size: int) -> np.ndarray:
    """Box mean over an odd window clipped to the image, via an integral image."""
    gray = _gray(gray)
    h, w = gray.shape
    r = max(1, int(block_size)) // 2
    integral = cv2.integral(gray, sdepth=cv2.CV_64F)

    ys = np.arange(h)
    xs = np.arange(w)
    y0 = np.clip(ys - r, 0, h)
    y1 = np.clip(ys + r + 1, 0, h)
    x0 = np.clip(xs - r, 0, w)
    x1 = np.clip(xs + r + 1, 0, w)

    sums = (
        integral[np.ix_(y1, x1)]
        - integral[np.ix_(y0, x1)]
        - integral[np.ix_(y1, x0)]
        + integral[np.ix_(y0, x0)]
    )
    counts = np.outer(y1 - y0, x1 - x0).astype(np.float64)
    return sums / counts


def segment_adaptive(gray: np.ndarray, block_size: int = 25, constant: float = 5.0) -> np.ndarray:
    gray = _gray(gray)
    return gray.astype(np.float64) < local_mean(gray, block_size) - float(constant)


def gradient_magnitude(gray: np.ndarray) -> np.ndarray:
    gray = _gray(gray).astype(np.float32)
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    return cv2.magnitude(gx, gy)


def segment_edges(
    gray: np.ndarray,
    low: float = 50.0,
    high: float = 150.0,
    deadline: Optional[Deadline] = None,
) -> np.ndarray:
    mag = gradient_magnitude(gray)
    strong = mag >= high
    weak = mag >= low
    kernel = np.ones((3, 3), dtype=np.uint8)

    current = strong.copy()
    while True:
        check_deadline(deadline, "edge hysteresis")
        grown = cv2.dilate(current.astype(np.uint8), kernel).astype(bool) & weak
        grown |= current
        if np.array_equal(grown, current):
            return current
        current = grown


def segment(
    image: np.ndarray,
    mode: str,
    config: Optional[DetectionConfig] = None,
    deadline: Optional[Deadline] = None,
) -> np.ndarray:
    config = config or DetectionConfig()
    image = ensure_image(image)
    if mode == "colorRange":
        return segment_color_range(image, config.color_ranges)
    if mode == "otsu":
        return segment_otsu(image)
    if mode == "adaptive":
        return segment_adaptive(image, config.adaptive_block_size, config.adaptive_constant)
    if mode == "edge":
        return segment_edges(image, config.edge_low, config.edge_high, deadline)
    raise InputError(f"Unknown segmentation mode: {mode}")


def sample_region(
    image: np.ndarray,
    point: Tuple[float, float],
    radius: int = 5,
) -> Tuple[np.ndarray, float]:
    """Mean colour and RMS colour spread of the square patch around ``point``."""
    image = ensure_image(image)
    h, w = image.shape[:2]
    pixels = image.reshape(h, w, -1)
    cx, cy = int(point[0]), int(point[1])
    x0, x1 = max(0, cx - radius), min(w, cx + radius + 1)
    y0, y1 = max(0, cy - radius), min(h, cy + radius + 1)
    if x0 >= x1 or y0 >= y1:
        raise InputError(f"sample point ({point[0]}, {point[1]}) is outside the image")
    patch = pixels[y0:y1, x0:x1].reshape(-1, pixels.shape[2]).astype(np.float64)
    mean = np.rint(patch.mean(axis=0))
    spread = float(np.sqrt(np.mean(np.sum((patch - mean) ** 2, axis=1))))
    return mean, spread


def region_distance_threshold(
    slab_mean: np.ndarray,
    background_mean: np.ndarray,
    slab_spread: float,
    background_spread: float,
    multiplier: float = 1.5,
) -> float:
    """Half the gap between the two sample colours, widened by their mean spread."""
    base = float(np.linalg.norm(np.asarray(slab_mean, dtype=np.float64) - background_mean))
    return (0.5 * base + 0.5 * (slab_spread + background_spread)) * float(multiplier)


def segment_region_samples(
    image: np.ndarray,
    slab_point: Tuple[float, float],
    background_point: Tuple[float, float],
    radius: int = 5,
    multiplier: float = 1.5,
) -> np.ndarray:
    """Pixels closer in colour to the slab sample than to the background sample, within the threshold."""
    image = ensure_image(image)
    h, w = image.shape[:2]
    slab_mean, slab_spread = sample_region(image, slab_point, radius)
    background_mean, background_spread = sample_region(image, background_point, radius)
    threshold = region_distance_threshold(slab_mean, background_mean, slab_spread, background_spread, multiplier)

    pixels = image.reshape(h, w, -1).astype(np.float32)
    to_slab = np.linalg.norm(pixels - slab_mean.astype(np.float32), axis=2)
    to_background = np.linalg.norm(pixels - background_mean.astype(np.float32), axis=2)
    return (to_slab < to_background) & (to_slab < threshold)
