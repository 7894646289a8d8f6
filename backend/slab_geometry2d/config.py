"""Detection configuration: presets plus a clamping resolver."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

SEGMENTATION_MODES = ("colorRange", "otsu", "adaptive", "edge")


@dataclass(frozen=True)
class HsvRange:
    """Inclusive HSV box. Hue in degrees [0, 360), saturation/value in [0, 1].

    ``hue_min > hue_max`` means the range wraps through red (h >= min or h <= max).
    """

    hue_min: float
    hue_max: float
    sat_min: float = 0.0
    sat_max: float = 1.0
    val_min: float = 0.0
    val_max: float = 1.0

    @property
    def wraps(self) -> bool:
        return self.hue_min > self.hue_max


# Light, medium and dark wood tones, then weathered/desaturated boards.
WOOD_COLOR_RANGES: Tuple[HsvRange, ...] = (
    HsvRange(15, 40, 0.1, 0.5, 0.5, 1.0),
    HsvRange(10, 30, 0.2, 0.7, 0.3, 0.7),
    HsvRange(5, 25, 0.2, 0.8, 0.1, 0.5),
    HsvRange(0, 60, 0.0, 0.2, 0.4, 0.9),
)


@dataclass(frozen=True)
class DetectionConfig:
    segmentation_mode: str = "adaptive"
    blur_radius: int = 3
    morph_kernel_size: int = 5
    simplify_epsilon: float = 3.0
    smoothing_window: int = 5
    smoothing_sigma: float = 1.0
    min_blob_size: int = 20
    max_blob_size: int = 4_000_000
    max_area_ratio: float = 0.9
    min_contour_area: float = 400.0
    min_vertex_count: int = 10
    target_vertex_min: int = 24
    target_vertex_max: int = 200
    concavity_ratio: float = 0.05
    angular_step_degrees: float = 5.0
    gap_tolerance_min: int = 2
    gap_tolerance_max: int = 8
    continue_search_distance: int = 15
    curvature_threshold_degrees: float = 45.0
    reseed_gap_factor: float = 2.5
    max_reseed_points: int = 8
    outlier_factor: float = 1.5
    neighbor_factor: float = 3.0
    adaptive_block_size: int = 25
    adaptive_constant: float = 5.0
    edge_low: float = 50.0
    edge_high: float = 150.0
    threshold_sweep: Tuple[int, ...] = (50, 100, 128, 150, 200)
    color_ranges: Tuple[HsvRange, ...] = WOOD_COLOR_RANGES
    timeout_budget: float = 10.0
    max_image_dimension: int = 1200
    min_marker_separation: float = 10.0
    min_quad_side: float = 10.0
    max_side_ratio: float = 10.0
    marker_min_area: int = 30
    marker_max_area: int = 20000
    region_sample_radius: int = 5
    region_threshold_multiplier: float = 1.5
    emit_diagnostics: bool = False
    preset: str = "balanced"

    def with_overrides(self, **overrides: Any) -> "DetectionConfig":
        return replace(self, **overrides)


DETECTION_PRESETS: Dict[str, Dict[str, Any]] = {
    "fast": {
        "blur_radius": 3,
        "simplify_epsilon": 4.0,
        "angular_step_degrees": 10.0,
        "max_reseed_points": 4,
        "target_vertex_max": 120,
        "timeout_budget": 5.0,
        "max_image_dimension": 800,
    },
    "balanced": {},
    "precise": {
        "blur_radius": 5,
        "simplify_epsilon": 2.0,
        "angular_step_degrees": 2.0,
        "max_reseed_points": 12,
        "target_vertex_max": 400,
        "timeout_budget": 30.0,
        "max_image_dimension": 1600,
    },
}

# (min, max) clamps for numeric fields; ints stay ints.
_CLAMPS: Dict[str, Tuple[float, float]] = {
    "blur_radius": (0, 31),
    "morph_kernel_size": (1, 31),
    "simplify_epsilon": (0.0, 50.0),
    "smoothing_window": (1, 31),
    "smoothing_sigma": (0.1, 20.0),
    "min_blob_size": (1, 10_000_000),
    "max_blob_size": (1, 100_000_000),
    "max_area_ratio": (0.05, 1.0),
    "min_contour_area": (0.0, 1e9),
    "min_vertex_count": (3, 1000),
    "target_vertex_min": (3, 5000),
    "target_vertex_max": (3, 5000),
    "concavity_ratio": (0.0, 1.0),
    "angular_step_degrees": (0.5, 45.0),
    "gap_tolerance_min": (0, 200),
    "gap_tolerance_max": (0, 400),
    "continue_search_distance": (0, 400),
    "curvature_threshold_degrees": (1.0, 179.0),
    "reseed_gap_factor": (1.0, 20.0),
    "max_reseed_points": (0, 64),
    "outlier_factor": (0.1, 10.0),
    "neighbor_factor": (1.0, 20.0),
    "adaptive_block_size": (3, 255),
    "adaptive_constant": (-255.0, 255.0),
    "edge_low": (0.0, 2000.0),
    "edge_high": (0.0, 2000.0),
    "timeout_budget": (0.0005, 600.0),
    "max_image_dimension": (64, 16384),
    "min_marker_separation": (1.0, 10000.0),
    "min_quad_side": (1.0, 10000.0),
    "max_side_ratio": (1.0, 1000.0),
    "marker_min_area": (1, 10_000_000),
    "marker_max_area": (1, 100_000_000),
    "region_sample_radius": (1, 50),
    "region_threshold_multiplier": (0.1, 10.0),
}

# Accept the camelCase names used over the wire.
_ALIASES = {
    "segmentationMode": "segmentation_mode",
    "blurRadius": "blur_radius",
    "morphKernelSize": "morph_kernel_size",
    "simplifyEpsilon": "simplify_epsilon",
    "smoothingWindow": "smoothing_window",
    "minBlobSize": "min_blob_size",
    "maxBlobSize": "max_blob_size",
    "angularStepDegrees": "angular_step_degrees",
    "gapToleranceMin": "gap_tolerance_min",
    "gapToleranceMax": "gap_tolerance_max",
    "continueSearchDistance": "continue_search_distance",
    "timeoutBudget": "timeout_budget",
    "maxImageDimension": "max_image_dimension",
    "emitDiagnostics": "emit_diagnostics",
    "regionSampleRadius": "region_sample_radius",
    "regionThresholdMultiplier": "region_threshold_multiplier",
}


def _odd(value: int) -> int:
    return value if value % 2 == 1 else value + 1


_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off", "")


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        return default
    return bool(value)


def _parse_color_ranges(raw: Any) -> Optional[Tuple[HsvRange, ...]]:
    if not isinstance(raw, (list, tuple)):
        return None
    ranges = []
    for item in raw:
        if isinstance(item, HsvRange):
            ranges.append(item)
        elif isinstance(item, dict):
            ranges.append(
                HsvRange(
                    hue_min=float(item.get("hueMin", item.get("hue_min", 0.0))),
                    hue_max=float(item.get("hueMax", item.get("hue_max", 360.0))),
                    sat_min=float(item.get("satMin", item.get("sat_min", 0.0))),
                    sat_max=float(item.get("satMax", item.get("sat_max", 1.0))),
                    val_min=float(item.get("valMin", item.get("val_min", 0.0))),
                    val_max=float(item.get("valMax", item.get("val_max", 1.0))),
                )
            )
        elif isinstance(item, (list, tuple)) and len(item) == 6:
            ranges.append(HsvRange(*(float(v) for v in item)))
    return tuple(ranges) if ranges else None


def resolve_detection_config(config: Optional[Any] = None) -> DetectionConfig:
    """Resolve a user dict (or an existing config) into a validated ``DetectionConfig``."""
    if isinstance(config, DetectionConfig):
        return config
    cfg = config if isinstance(config, dict) else {}
    cfg = {_ALIASES.get(k, k): v for k, v in cfg.items()}

    preset = str(cfg.get("preset", "balanced")).lower().strip()
    if preset not in DETECTION_PRESETS:
        preset = "balanced"

    merged: Dict[str, Any] = dict(DETECTION_PRESETS[preset])
    known = {f.name for f in fields(DetectionConfig)}
    for key, value in cfg.items():
        if key in known and key not in ("color_ranges", "threshold_sweep", "preset"):
            merged[key] = value

    defaults = DetectionConfig()
    for key, (lo, hi) in _CLAMPS.items():
        if key not in merged:
            continue
        default = getattr(defaults, key)
        try:
            value = float(merged[key])
        except (TypeError, ValueError):
            value = float(default)
        value = max(lo, min(hi, value))
        merged[key] = int(round(value)) if isinstance(default, int) else value

    mode = str(merged.get("segmentation_mode", defaults.segmentation_mode))
    merged["segmentation_mode"] = mode if mode in SEGMENTATION_MODES else defaults.segmentation_mode
    merged["emit_diagnostics"] = _as_bool(merged.get("emit_diagnostics"), defaults.emit_diagnostics)

    for key in ("adaptive_block_size", "smoothing_window"):
        if key in merged:
            merged[key] = _odd(int(merged[key]))
    if "blur_radius" in merged and merged["blur_radius"] > 0:
        merged["blur_radius"] = _odd(int(merged["blur_radius"]))

    ranges = _parse_color_ranges(cfg.get("color_ranges"))
    if ranges is not None:
        merged["color_ranges"] = ranges
    sweep = cfg.get("threshold_sweep")
    if isinstance(sweep, (list, tuple)) and sweep:
        merged["threshold_sweep"] = tuple(int(max(0, min(255, int(t)))) for t in sweep)

    resolved = defaults.with_overrides(preset=preset, **merged)

    # Keep paired bounds ordered.
    if resolved.gap_tolerance_max < resolved.gap_tolerance_min:
        resolved = resolved.with_overrides(gap_tolerance_max=resolved.gap_tolerance_min)
    if resolved.target_vertex_max < resolved.target_vertex_min:
        resolved = resolved.with_overrides(target_vertex_max=resolved.target_vertex_min)
    if resolved.max_blob_size < resolved.min_blob_size:
        resolved = resolved.with_overrides(max_blob_size=resolved.min_blob_size)
    if resolved.edge_high < resolved.edge_low:
        resolved = resolved.with_overrides(edge_high=resolved.edge_low)
    return resolved
