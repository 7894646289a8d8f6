"""Contour strategies and their registry.

Every strategy exposes the same capability: ``segment`` turns the processing
image into a mask and ``extract_boundary`` turns that mask into a raw ring.
``detect`` chains the two and runs the shared polygon post-processing.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Type

import numpy as np

from slab_geometry2d.config import DetectionConfig
from slab_geometry2d.diagnostics import Deadline, Diagnostics, check_deadline
from slab_geometry2d.errors import GeometryDegeneracy
from slab_geometry2d.morphology import close, fill_holes
from slab_geometry2d.morphology import open as open_mask
from slab_geometry2d.polygon import convex_hull, postprocess
from slab_geometry2d.raycast import ray_cast_contour
from slab_geometry2d.regions import connected_components, largest_component, row_extremes, trace_component
from slab_geometry2d.segmentation import (
    segment,
    segment_adaptive,
    segment_binary,
    segment_otsu,
    segment_region_samples,
)
from slab_geometry2d.utils.image_ops import gaussian_blur, stretch_contrast, to_grayscale


@dataclass
class StrategyContext:
    image: np.ndarray
    config: DetectionConfig
    seed: Optional[Tuple[float, float]] = None
    deadline: Optional[Deadline] = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    background_sample: Optional[Tuple[float, float]] = None
    _gray: Optional[np.ndarray] = None

    @property
    def gray(self) -> np.ndarray:
        if self._gray is None:
            self._gray = to_grayscale(self.image)
        return self._gray

    @property
    def shape(self) -> Tuple[int, int]:
        return self.image.shape[:2]

    @property
    def max_component_size(self) -> int:
        h, w = self.shape
        return int(min(self.config.max_blob_size, self.config.max_area_ratio * h * w))


class ContourStrategy(ABC):
    name: str = "base"
    requires_seed: bool = False
    requires_background_sample: bool = False

    @abstractmethod
    def segment(self, ctx: StrategyContext) -> np.ndarray:
        ...

    @abstractmethod
    def extract_boundary(self, mask: np.ndarray, ctx: StrategyContext) -> np.ndarray:
        ...

    def detect(self, ctx: StrategyContext) -> np.ndarray:
        check_deadline(ctx.deadline, self.name)
        mask = self.segment(ctx)
        ctx.diagnostics.add_mask(self.name, mask)
        check_deadline(ctx.deadline, self.name)
        ring = self.extract_boundary(mask, ctx)
        return postprocess(ring, ctx.config, ctx.diagnostics, ctx.deadline)


_REGISTRY: Dict[str, Type[ContourStrategy]] = {}


def register_strategy(cls: Type[ContourStrategy]) -> Type[ContourStrategy]:
    if cls.name in _REGISTRY:
        raise ValueError(f"Strategy already registered: {cls.name}")
    _REGISTRY[cls.name] = cls
    return cls


def get_strategy(name: str) -> ContourStrategy:
    try:
        return _REGISTRY[name]()
    except KeyError:
        raise ValueError(f"Unknown strategy: {name}") from None


def available_strategies() -> List[str]:
    return list(_REGISTRY.keys())


DEFAULT_CHAIN = ("region_sample_ray_cast", "seeded_ray_cast", "adaptive_trace", "threshold_sweep", "otsu_hull")


def default_strategy_chain(seeded: bool = False, sampled: bool = False) -> List[ContourStrategy]:
    chain = [get_strategy(n) for n in DEFAULT_CHAIN]
    return [
        s
        for s in chain
        if (seeded or not s.requires_seed) and (sampled or not s.requires_background_sample)
    ]


# Ray gap limits for region-sample masks.
REGION_GAP_TOLERANCE = (5, 20)
REGION_CONTINUE_SEARCH = 30


@register_strategy
class RegionSampleRayCastStrategy(ContourStrategy):
    """Classify pixels against a tapped slab patch and a tapped background patch, then cast rays."""

    name = "region_sample_ray_cast"
    requires_seed = True
    requires_background_sample = True

    def segment(self, ctx: StrategyContext) -> np.ndarray:
        if ctx.seed is None or ctx.background_sample is None:
            raise GeometryDegeneracy("region sampling needs a slab tap and a background tap")
        cfg = ctx.config
        mask = segment_region_samples(
            ctx.image,
            ctx.seed,
            ctx.background_sample,
            cfg.region_sample_radius,
            cfg.region_threshold_multiplier,
        )
        return fill_holes(open_mask(close(mask, 3), 3))

    def extract_boundary(self, mask: np.ndarray, ctx: StrategyContext) -> np.ndarray:
        cfg = ctx.config
        wide = cfg.with_overrides(
            gap_tolerance_min=max(cfg.gap_tolerance_min, REGION_GAP_TOLERANCE[0]),
            gap_tolerance_max=max(cfg.gap_tolerance_max, REGION_GAP_TOLERANCE[1]),
            continue_search_distance=max(cfg.continue_search_distance, REGION_CONTINUE_SEARCH),
        )
        return ray_cast_contour(mask, ctx.seed, wide, ctx.deadline)


@register_strategy
class SeededRayCastStrategy(ContourStrategy):
    """Segment with the configured mode, close, fill holes, then cast rays from the seed."""

    name = "seeded_ray_cast"
    requires_seed = True

    def segment(self, ctx: StrategyContext) -> np.ndarray:
        cfg = ctx.config
        image = ctx.image
        if cfg.segmentation_mode != "colorRange":
            image = gaussian_blur(ctx.gray, cfg.blur_radius)
        mask = segment(image, cfg.segmentation_mode, cfg, ctx.deadline)
        return fill_holes(close(mask, cfg.morph_kernel_size))

    def extract_boundary(self, mask: np.ndarray, ctx: StrategyContext) -> np.ndarray:
        if ctx.seed is None:
            raise GeometryDegeneracy("seeded strategy needs a seed")
        return ray_cast_contour(mask, ctx.seed, ctx.config, ctx.deadline)


@register_strategy
class AdaptiveTraceStrategy(ContourStrategy):
    """Contrast stretch, blur, adaptive threshold, close, then trace the largest blob."""

    name = "adaptive_trace"

    def segment(self, ctx: StrategyContext) -> np.ndarray:
        cfg = ctx.config
        gray = gaussian_blur(stretch_contrast(ctx.gray), cfg.blur_radius)
        mask = segment_adaptive(gray, cfg.adaptive_block_size, cfg.adaptive_constant)
        return close(mask, cfg.morph_kernel_size)

    def extract_boundary(self, mask: np.ndarray, ctx: StrategyContext) -> np.ndarray:
        comp = largest_component(mask, ctx.config.min_blob_size, ctx.max_component_size, ctx.deadline)
        if comp is None:
            raise GeometryDegeneracy("adaptive threshold found no component in range")
        return trace_component(comp, ctx.shape, deadline=ctx.deadline)


@register_strategy
class ThresholdSweepStrategy(ContourStrategy):
    """Try fixed grey levels and keep the one with the largest in-range blob; hull it."""

    name = "threshold_sweep"

    def __init__(self):
        self._best: Optional[np.ndarray] = None

    def segment(self, ctx: StrategyContext) -> np.ndarray:
        cfg = ctx.config
        gray = gaussian_blur(ctx.gray, cfg.blur_radius)
        best_mask = np.zeros(ctx.shape, dtype=bool)
        self._best = None
        for level in cfg.threshold_sweep:
            check_deadline(ctx.deadline, f"{self.name} level {level}")
            mask = open_mask(segment_binary(gray, level), 3)
            comp = largest_component(mask, cfg.min_blob_size, ctx.max_component_size, ctx.deadline)
            if comp is not None and (self._best is None or len(comp) > len(self._best)):
                self._best = comp
                best_mask = mask
        return best_mask

    def extract_boundary(self, mask: np.ndarray, ctx: StrategyContext) -> np.ndarray:
        comp = self._best
        if comp is None:
            comps = connected_components(mask, ctx.config.min_blob_size, ctx.max_component_size, ctx.deadline)
            comp = comps[0] if comps else None
        if comp is None:
            raise GeometryDegeneracy("threshold sweep found no component in range")
        return convex_hull(row_extremes(comp))


@register_strategy
class OtsuHullStrategy(ContourStrategy):
    name = "otsu_hull"

    def segment(self, ctx: StrategyContext) -> np.ndarray:
        return segment_otsu(gaussian_blur(ctx.gray, ctx.config.blur_radius))

    def extract_boundary(self, mask: np.ndarray, ctx: StrategyContext) -> np.ndarray:
        ys, xs = np.nonzero(mask)
        if len(xs) < 3:
            raise GeometryDegeneracy("otsu mask has no foreground")
        hull = convex_hull(row_extremes(np.column_stack([xs, ys])))
        if len(hull) < 3:
            raise GeometryDegeneracy("otsu foreground is degenerate")
        return hull


def run_strategy(strategy: ContourStrategy, ctx: StrategyContext) -> np.ndarray:
    started = time.perf_counter()
    try:
        return strategy.detect(ctx)
    finally:
        ctx.diagnostics.time(strategy.name, time.perf_counter() - started)
