"""Slab detection and calibration service used by the API routers."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from services.image_codec import decode_image, encode_image
from slab_geometry2d.calibration import (
    DEFAULT_X_DISTANCE,
    DEFAULT_Y_DISTANCE,
    build_calibration,
    marker_list_from_dicts,
)
from slab_geometry2d.config import resolve_detection_config
from slab_geometry2d.detector import detect_contour
from slab_geometry2d.diagnostics import Diagnostics
from slab_geometry2d.markers import detect_markers
from slab_geometry2d.perspective import rectify
from slab_geometry2d.utils.image_ops import downsample


def _points(arr: np.ndarray) -> List[Dict[str, float]]:
    return [{"x": float(x), "y": float(y)} for x, y in arr]


class DetectionService:
    """Run slab detection off the event loop."""

    async def detect(
        self,
        *,
        image_base64: str,
        seed: Optional[Tuple[float, float]] = None,
        markers: Optional[Sequence[Dict[str, Any]]] = None,
        x_distance: float = DEFAULT_X_DISTANCE,
        y_distance: float = DEFAULT_Y_DISTANCE,
        config: Optional[Dict[str, Any]] = None,
        background_sample: Optional[Tuple[float, float]] = None,
    ) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            self._detect_sync,
            image_base64,
            seed,
            markers,
            x_distance,
            y_distance,
            config,
            background_sample,
        )

    def _detect_sync(
        self,
        image_base64: str,
        seed: Optional[Tuple[float, float]],
        markers: Optional[Sequence[Dict[str, Any]]],
        x_distance: float,
        y_distance: float,
        config: Optional[Dict[str, Any]],
        background_sample: Optional[Tuple[float, float]] = None,
    ) -> Dict[str, Any]:
        image = decode_image(image_base64)
        parsed = marker_list_from_dicts(markers) if markers else None
        result = detect_contour(image, config, seed, parsed, x_distance, y_distance, background_sample)

        overlay = result.diagnostics.overlay
        return {
            "detected": not result.is_fallback,
            "strategy": result.strategy,
            "reason": result.reason,
            "pixelContour": _points(result.contour),
            "realContour": _points(result.real_contour),
            "calibration": result.frame.to_dict(),
            "diagnostics": result.diagnostics.to_dict(),
            "overlayBase64": encode_image(overlay) if overlay is not None else None,
        }

    async def find_markers(self, *, image_base64: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._find_markers_sync, image_base64, config)

    def _find_markers_sync(self, image_base64: str, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        image = decode_image(image_base64)
        cfg = resolve_detection_config(config)
        processed, scale = downsample(image, cfg.max_image_dimension)
        markers = [m.scaled(1.0 / scale) for m in detect_markers(processed, cfg, scale=scale)]
        return {
            "markers": [m.to_dict() for m in markers],
            "imageWidth": int(image.shape[1]),
            "imageHeight": int(image.shape[0]),
        }

    def build_frame(
        self,
        markers: Sequence[Dict[str, Any]],
        x_distance: float,
        y_distance: float,
        image_size: Tuple[int, int] = (0, 0),
    ) -> Dict[str, Any]:
        diagnostics = Diagnostics()
        frame = build_calibration(marker_list_from_dicts(markers), x_distance, y_distance, image_size, None, diagnostics)
        return {"calibration": frame.to_dict(), "events": [e.to_dict() for e in diagnostics.events]}

    def convert_points(
        self,
        markers: Sequence[Dict[str, Any]],
        x_distance: float,
        y_distance: float,
        points: Sequence[Dict[str, float]],
        direction: str,
        image_size: Tuple[int, int] = (0, 0),
    ) -> Dict[str, Any]:
        frame = build_calibration(marker_list_from_dicts(markers), x_distance, y_distance, image_size)
        arr = np.array([[p["x"], p["y"]] for p in points], dtype=np.float64).reshape(-1, 2)
        if direction == "toReal":
            converted = frame.pixel_to_real(arr)
        elif direction == "toPixel":
            converted = frame.real_to_pixel(arr)
        else:
            raise ValueError(f"Unknown direction: {direction}")
        return {"points": _points(converted), "model": frame.model}

    async def rectify(
        self,
        *,
        image_base64: str,
        markers: Sequence[Dict[str, Any]],
        x_distance: float,
        y_distance: float,
        pixels_per_unit: Optional[float] = None,
    ) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            self._rectify_sync,
            image_base64,
            markers,
            x_distance,
            y_distance,
            pixels_per_unit,
        )

    def _rectify_sync(
        self,
        image_base64: str,
        markers: Sequence[Dict[str, Any]],
        x_distance: float,
        y_distance: float,
        pixels_per_unit: Optional[float],
    ) -> Dict[str, Any]:
        image = decode_image(image_base64)
        h, w = image.shape[:2]
        frame = build_calibration(marker_list_from_dicts(markers), x_distance, y_distance, (w, h))
        rectified, ppu = rectify(image, frame, pixels_per_unit)
        return {
            "imageBase64": encode_image(rectified),
            "width": int(rectified.shape[1]),
            "height": int(rectified.shape[0]),
            "pixelsPerUnit": float(ppu),
            "calibration": frame.to_dict(),
        }
