"""Tests for detection presets and the config resolver."""
import pytest

from slab_geometry2d.config import (
    DETECTION_PRESETS,
    WOOD_COLOR_RANGES,
    DetectionConfig,
    HsvRange,
    resolve_detection_config,
)


class TestPresets:
    def test_default_is_balanced(self):
        assert resolve_detection_config(None) == DetectionConfig()
        assert resolve_detection_config({}).preset == "balanced"

    @pytest.mark.parametrize("name", sorted(DETECTION_PRESETS))
    def test_preset_values_applied(self, name):
        cfg = resolve_detection_config({"preset": name})
        assert cfg.preset == name
        for key, value in DETECTION_PRESETS[name].items():
            assert getattr(cfg, key) == value

    def test_unknown_preset(self):
        assert resolve_detection_config({"preset": "turbo"}).preset == "balanced"

    def test_override_beats_preset(self):
        cfg = resolve_detection_config({"preset": "fast", "timeout_budget": 2.5})
        assert cfg.timeout_budget == 2.5
        assert cfg.max_image_dimension == 800

    def test_existing_config_passes_through(self):
        cfg = DetectionConfig(blur_radius=7)
        assert resolve_detection_config(cfg) is cfg


class TestClamping:
    def test_numeric_clamps(self):
        cfg = resolve_detection_config({"blur_radius": 100, "timeout_budget": -1, "max_area_ratio": 3})
        assert cfg.blur_radius == 31
        assert cfg.timeout_budget == pytest.approx(0.0005)
        assert cfg.max_area_ratio == 1.0

    def test_unparseable_value_uses_default(self):
        cfg = resolve_detection_config({"angular_step_degrees": "wide"})
        assert cfg.angular_step_degrees == 5.0

    def test_int_fields_stay_int(self):
        cfg = resolve_detection_config({"min_blob_size": 12.7})
        assert cfg.min_blob_size == 13
        assert isinstance(cfg.min_blob_size, int)

    def test_window_sizes_made_odd(self):
        cfg = resolve_detection_config({"adaptive_block_size": 24, "smoothing_window": 4, "blur_radius": 6})
        assert cfg.adaptive_block_size == 25
        assert cfg.smoothing_window == 5
        assert cfg.blur_radius == 7

    def test_paired_bounds_ordered(self):
        cfg = resolve_detection_config({"gap_tolerance_min": 10, "gap_tolerance_max": 4, "edge_low": 300, "edge_high": 100})
        assert cfg.gap_tolerance_max == 10
        assert cfg.edge_high == 300


class TestWireFormat:
    def test_camel_case_aliases(self):
        cfg = resolve_detection_config({"segmentationMode": "otsu", "timeoutBudget": 2, "emitDiagnostics": True})
        assert cfg.segmentation_mode == "otsu"
        assert cfg.timeout_budget == 2.0
        assert cfg.emit_diagnostics is True

    def test_unknown_mode_and_keys(self):
        cfg = resolve_detection_config({"segmentation_mode": "magic", "bogus": 1})
        assert cfg.segmentation_mode == "adaptive"
        assert not hasattr(cfg, "bogus")

    def test_color_ranges(self):
        cfg = resolve_detection_config({"color_ranges": [{"hueMin": 350, "hueMax": 10, "satMin": 0.3}, [0, 60, 0, 1, 0, 1]]})
        assert cfg.color_ranges == (HsvRange(350, 10, 0.3, 1.0, 0.0, 1.0), HsvRange(0, 60, 0, 1, 0, 1))
        assert cfg.color_ranges[0].wraps

    def test_bad_color_ranges_keep_defaults(self):
        assert resolve_detection_config({"color_ranges": "wood"}).color_ranges == WOOD_COLOR_RANGES

    def test_threshold_sweep_clipped(self):
        cfg = resolve_detection_config({"threshold_sweep": [-5, 90, 400]})
        assert cfg.threshold_sweep == (0, 90, 255)

    @pytest.mark.parametrize(
        "raw, expected",
        [("false", False), ("False", False), ("0", False), ("", False), ("true", True), ("yes", True), (1, True), ("maybe", False)],
    )
    def test_emit_diagnostics_strings(self, raw, expected):
        assert resolve_detection_config({"emitDiagnostics": raw}).emit_diagnostics is expected
