from __future__ import annotations

import cv2
import numpy as np


def _kernel(k: int) -> np.ndarray:
    size = 2 * (max(1, int(k)) // 2) + 1
    return np.ones((size, size), dtype=np.uint8)


def dilate(mask: np.ndarray, k: int = 3) -> np.ndarray:
    out = cv2.dilate(mask.astype(np.uint8), _kernel(k), borderType=cv2.BORDER_CONSTANT, borderValue=0)
    return out.astype(bool)


def erode(mask: np.ndarray, k: int = 3) -> np.ndarray:
    """Out-of-bounds neighbours count as background."""
    out = cv2.erode(mask.astype(np.uint8), _kernel(k), borderType=cv2.BORDER_CONSTANT, borderValue=0)
    return out.astype(bool)


def close(mask: np.ndarray, k: int = 5) -> np.ndarray:
    # Pad so the erode step cannot eat into regions touching the border.
    pad = _kernel(k).shape[0]
    padded = np.pad(mask.astype(bool), pad, mode="constant", constant_values=False)
    closed = erode(dilate(padded, k), k)
    return closed[pad:-pad, pad:-pad]


def open(mask: np.ndarray, k: int = 3) -> np.ndarray:  # noqa: A001
    return dilate(erode(mask, k), k)


def fill_holes(mask: np.ndarray) -> np.ndarray:
    """Fill background regions not connected to the image border."""
    mask = mask.astype(bool)
    h, w = mask.shape
    if h == 0 or w == 0:
        return mask.copy()
    padded = np.zeros((h + 2, w + 2), dtype=np.uint8)
    padded[1:-1, 1:-1] = mask.astype(np.uint8) * 255
    flood_mask = np.zeros((h + 4, w + 4), dtype=np.uint8)
    cv2.floodFill(padded, flood_mask, (0, 0), 128)
    return (padded[1:-1, 1:-1] != 128)
