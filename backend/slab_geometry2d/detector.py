"""Detection orchestrator.

``detect_contour`` runs the strategy chain in a per-call worker thread under a
wall-clock budget and always returns a contour plus a calibration frame: a
``Detected`` result when a strategy validates, otherwise a ``Fallback``.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from slab_geometry2d.calibration import DEFAULT_X_DISTANCE, DEFAULT_Y_DISTANCE, build_calibration, scale_markers
from slab_geometry2d.config import DetectionConfig, resolve_detection_config
from slab_geometry2d.diagnostics import Deadline, Diagnostics, render_overlay
from slab_geometry2d.errors import DetectionTimeout, GeometryDegeneracy, SlabGeometryError
from slab_geometry2d.markers import detect_markers
from slab_geometry2d.models import CalibrationFrame, Detected, Fallback, MarkerCandidate
from slab_geometry2d.polygon import close_contour, fallback_polygon, is_self_intersecting, open_contour, polygon_area
from slab_geometry2d.strategies import StrategyContext, default_strategy_chain, run_strategy
from slab_geometry2d.utils.image_ops import downsample, ensure_image, image_size

DetectionResult = Union[Detected, Fallback]

__all__ = ["Deadline", "ContourDetector", "DetectionResult", "detect_contour", "validate_contour"]


def validate_contour(contour: np.ndarray, width: int, height: int, config: DetectionConfig) -> None:
    """Raise GeometryDegeneracy unless ``contour`` is usable as a slab outline."""
    ring = open_contour(contour)
    if len(ring) < config.min_vertex_count:
        raise GeometryDegeneracy(f"{len(ring)} vertices (< {config.min_vertex_count})")
    area = polygon_area(ring)
    if area < config.min_contour_area:
        raise GeometryDegeneracy(f"area {area:.1f} below {config.min_contour_area}")
    if area > config.max_area_ratio * width * height:
        raise GeometryDegeneracy(f"area {area:.1f} covers more than {config.max_area_ratio:.0%} of the frame")
    if is_self_intersecting(ring):
        raise GeometryDegeneracy("contour still self-intersects")


def _fallback(
    width: int,
    height: int,
    seed: Optional[Tuple[float, float]],
    frame: CalibrationFrame,
    reason: str,
    diagnostics: Diagnostics,
) -> Fallback:
    print(f"[detector] fallback: {reason}")
    return Fallback(fallback_polygon(width, height, seed), frame, reason, diagnostics)


def _run_pipeline(
    image: np.ndarray,
    config: DetectionConfig,
    seed: Optional[Tuple[float, float]],
    markers: Optional[Sequence[MarkerCandidate]],
    x_distance: float,
    y_distance: float,
    deadline: Deadline,
    diagnostics: Diagnostics,
    background_sample: Optional[Tuple[float, float]] = None,
) -> Union[Detected, Fallback]:
    width, height = image_size(image)
    started = time.perf_counter()
    frame: Optional[CalibrationFrame] = None

    try:
        processed, scale = downsample(image, config.max_image_dimension)
        diagnostics.scale_factor = scale
        deadline.check("downsample")

        if markers:
            found = list(markers)
        else:
            found = scale_markers(detect_markers(processed, config, deadline, scale), 1.0 / scale)
        frame = build_calibration(found, x_distance, y_distance, (width, height), config, diagnostics)
        diagnostics.time("calibration", time.perf_counter() - started)

        proc_seed = None if seed is None else (seed[0] * scale, seed[1] * scale)
        proc_background = None
        if background_sample is not None:
            proc_background = (background_sample[0] * scale, background_sample[1] * scale)
        ctx = StrategyContext(processed, config, proc_seed, deadline, diagnostics, proc_background)
        proc_h, proc_w = processed.shape[:2]

        for strategy in default_strategy_chain(seeded=proc_seed is not None, sampled=proc_background is not None):
            try:
                ring = run_strategy(strategy, ctx)
                validate_contour(ring, proc_w, proc_h, config)
            except DetectionTimeout:
                raise
            except (SlabGeometryError, cv2.error) as exc:
                diagnostics.record(strategy.name, exc)
                print(f"[detector] {strategy.name} failed: {exc}")
                continue

            diagnostics.strategy = strategy.name
            diagnostics.time("total", time.perf_counter() - started)
            print(f"[detector] {strategy.name} ok ({len(ring)} vertices) in {diagnostics.timings['total']:.3f}s")
            if diagnostics.emit_rasters:
                proc_markers = scale_markers(frame.markers, scale)
                diagnostics.overlay = render_overlay(processed, ring, proc_markers, proc_seed)
            return Detected(close_contour(ring / scale), frame, diagnostics)

        reason = "no strategy produced a valid contour"
    except DetectionTimeout as exc:
        diagnostics.record("detector", exc)
        reason = "timeout"

    if frame is None:
        frame = build_calibration(markers, x_distance, y_distance, (width, height), config, diagnostics)
    diagnostics.time("total", time.perf_counter() - started)
    result = _fallback(width, height, seed, frame, reason, diagnostics)
    if diagnostics.emit_rasters:
        scale = diagnostics.scale_factor
        processed, _ = downsample(image, config.max_image_dimension)
        diagnostics.overlay = render_overlay(
            processed,
            open_contour(result.contour) * scale,
            scale_markers(frame.markers, scale),
            None if seed is None else (seed[0] * scale, seed[1] * scale),
            fallback=True,
        )
    return result


def detect_contour(
    image: np.ndarray,
    config: Optional[Any] = None,
    seed: Optional[Tuple[float, float]] = None,
    markers: Optional[Sequence[MarkerCandidate]] = None,
    x_distance: float = DEFAULT_X_DISTANCE,
    y_distance: float = DEFAULT_Y_DISTANCE,
    background_sample: Optional[Tuple[float, float]] = None,
) -> Union[Detected, Fallback]:
    """Slab outline and calibration for one photo.

    With ``background_sample`` (a tap on the board behind the slab) and a
    ``seed`` on the slab, pixels are first classified by colour distance to
    the two tapped patches.

    Raises InputError for an unusable image; every other failure, including
    running out of time, yields a ``Fallback``.
    """
    image = ensure_image(image)
    cfg = resolve_detection_config(config)
    width, height = image_size(image)
    deadline = Deadline(cfg.timeout_budget)
    worker_diagnostics = Diagnostics(emit_rasters=cfg.emit_diagnostics)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="slab-detect")
    try:
        future = executor.submit(
            _run_pipeline,
            image,
            cfg,
            seed,
            markers,
            x_distance,
            y_distance,
            deadline,
            worker_diagnostics,
            background_sample,
        )
        try:
            return future.result(timeout=deadline.remaining())
        except FutureTimeout:
            deadline.cancel()
    finally:
        executor.shutdown(wait=False)

    # The worker is abandoned; it stops at its next deadline check.
    diagnostics = Diagnostics(events=list(worker_diagnostics.events), scale_factor=worker_diagnostics.scale_factor)
    diagnostics.record("detector", DetectionTimeout(f"no result within {cfg.timeout_budget}s"))
    frame = build_calibration(markers, x_distance, y_distance, (width, height), cfg, diagnostics)
    return _fallback(width, height, seed, frame, "timeout", diagnostics)


class ContourDetector:
    """Detector bound to one configuration and one pair of marker distances."""

    def __init__(
        self,
        config: Optional[Any] = None,
        x_distance: float = DEFAULT_X_DISTANCE,
        y_distance: float = DEFAULT_Y_DISTANCE,
    ):
        self.config = resolve_detection_config(config)
        self.x_distance = float(x_distance)
        self.y_distance = float(y_distance)

    def detect(
        self,
        image: np.ndarray,
        seed: Optional[Tuple[float, float]] = None,
        markers: Optional[Sequence[MarkerCandidate]] = None,
        background_sample: Optional[Tuple[float, float]] = None,
    ) -> Union[Detected, Fallback]:
        return detect_contour(
            image, self.config, seed, markers, self.x_distance, self.y_distance, background_sample
        )

    def detect_markers(self, image: np.ndarray) -> Sequence[MarkerCandidate]:
        return detect_markers(ensure_image(image), self.config)

    def calibrate(
        self,
        markers: Sequence[MarkerCandidate],
        size: Tuple[int, int],
    ) -> CalibrationFrame:
        return build_calibration(markers, self.x_distance, self.y_distance, size, self.config)
