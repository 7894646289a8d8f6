from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np

from slab_geometry2d.errors import CalibrationError
from slab_geometry2d.models import CalibrationFrame
from slab_geometry2d.utils.image_ops import ensure_image

# Source coordinates this far outside the raster still sample the edge pixel.
EDGE_EPSILON = 1e-6
MAX_RECTIFIED_DIMENSION = 4000


def warp_perspective(
    image: np.ndarray,
    homography: np.ndarray,
    size: Tuple[int, int],
    background: int = 0,
) -> np.ndarray:
    """Resample ``image`` through ``homography`` (source -> destination pixels).

    Every destination pixel is pulled back through the inverse mapping and
    bilinearly interpolated from its four enclosing source pixels. Pixels that
    land outside the source stay ``background``.
    """
    image = ensure_image(image)
    out_w, out_h = int(size[0]), int(size[1])
    if out_w <= 0 or out_h <= 0:
        raise ValueError(f"Invalid output size {size}")
    H = np.asarray(homography, dtype=np.float64).reshape(3, 3)
    try:
        H_inv = np.linalg.inv(H)
    except np.linalg.LinAlgError as exc:
        raise CalibrationError("homography is not invertible") from exc

    src_h, src_w = image.shape[:2]
    gx, gy = np.meshgrid(np.arange(out_w, dtype=np.float64), np.arange(out_h, dtype=np.float64))
    dst = np.stack([gx.ravel(), gy.ravel(), np.ones(gx.size)], axis=0)
    src = H_inv @ dst
    w = src[2]
    w = np.where(np.abs(w) < 1e-12, 1e-12, w)
    sx = src[0] / w
    sy = src[1] / w

    valid = (
        (sx >= -EDGE_EPSILON)
        & (sx <= src_w - 1 + EDGE_EPSILON)
        & (sy >= -EDGE_EPSILON)
        & (sy <= src_h - 1 + EDGE_EPSILON)
    )
    sx = np.clip(sx, 0, src_w - 1)
    sy = np.clip(sy, 0, src_h - 1)
    x0 = np.floor(sx).astype(np.int64)
    y0 = np.floor(sy).astype(np.int64)
    x1 = np.minimum(x0 + 1, src_w - 1)
    y1 = np.minimum(y0 + 1, src_h - 1)
    fx = sx - x0
    fy = sy - y0

    pixels = image.astype(np.float64)
    if pixels.ndim == 2:
        pixels = pixels[:, :, None]
    fx_, fy_ = fx[:, None], fy[:, None]

    top = pixels[y0, x0] * (1 - fx_) + pixels[y0, x1] * fx_
    bottom = pixels[y1, x0] * (1 - fx_) + pixels[y1, x1] * fx_
    values = top * (1 - fy_) + bottom * fy_

    channels = pixels.shape[2]
    out = np.full((out_h * out_w, channels), float(background), dtype=np.float64)
    out[valid] = values[valid]
    out = np.clip(np.rint(out), 0, 255).astype(np.uint8).reshape(out_h, out_w, channels)
    return out[:, :, 0] if image.ndim == 2 else out


def frame_matrix(frame: CalibrationFrame) -> np.ndarray:
    """3x3 pixel -> real matrix for either calibration model."""
    if frame.is_projective:
        return frame.homography_matrix()
    c, s = math.cos(frame.orientation), math.sin(frame.orientation)
    ox, oy = frame.origin
    r = frame.ratio
    return np.array(
        [
            [c * r, s * r, -(ox * c + oy * s) * r],
            [s * r, -c * r, -(ox * s - oy * c) * r],
            [0.0, 0.0, 1.0],
        ]
    )


def rectify(
    image: np.ndarray,
    frame: CalibrationFrame,
    pixels_per_unit: Optional[float] = None,
) -> Tuple[np.ndarray, float]:
    """Top-down view of the marker rectangle.

    Returns (rectified image, pixels_per_unit). Output y grows downwards while
    real y grows upwards, so the scale marker ends up at the top.
    """
    image = ensure_image(image)
    h, w = image.shape[:2]
    if len(frame.markers) >= 3:
        corners = np.array([[m.x, m.y] for m in frame.markers], dtype=np.float64)
    else:
        corners = np.array([[0, 0], [w - 1, 0], [w - 1, h - 1], [0, h - 1]], dtype=np.float64)
    real = frame.pixel_to_real(corners)
    min_x, min_y = real.min(axis=0)
    max_x, max_y = real.max(axis=0)
    span_x, span_y = max_x - min_x, max_y - min_y
    if span_x <= 0 or span_y <= 0:
        raise CalibrationError("calibration markers do not span an area")

    ppu = float(pixels_per_unit) if pixels_per_unit else 1.0 / frame.ratio
    largest = max(span_x, span_y) * ppu
    if largest > MAX_RECTIFIED_DIMENSION:
        ppu *= MAX_RECTIFIED_DIMENSION / largest

    to_output = np.array(
        [
            [ppu, 0.0, -min_x * ppu],
            [0.0, -ppu, max_y * ppu],
            [0.0, 0.0, 1.0],
        ]
    )
    H = to_output @ frame_matrix(frame)
    size = (int(math.ceil(span_x * ppu)) + 1, int(math.ceil(span_y * ppu)) + 1)
    return warp_perspective(image, H, size), ppu
