"""Shared fixtures for the slab analyzer test suite.

Images are synthetic numpy rasters so the suite needs no sample photos.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

BACKEND_ROOT = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(BACKEND_ROOT))

from slab_geometry2d.models import MarkerCandidate, MarkerRole  # noqa: E402


@pytest.fixture
def square_image():
    """Black 200x200 square centred on a white 400x400 canvas (BGR)."""
    image = np.full((400, 400, 3), 255, dtype=np.uint8)
    image[100:300, 100:300] = 0
    return image


@pytest.fixture
def square_mask():
    mask = np.zeros((400, 400), dtype=bool)
    mask[100:300, 100:300] = True
    return mask


@pytest.fixture
def uniform_image():
    return np.full((100, 100, 3), 128, dtype=np.uint8)


@pytest.fixture
def marker_image():
    """White 600x400 canvas with three 16x16 black markers and nothing else."""
    image = np.full((400, 600, 3), 255, dtype=np.uint8)
    for cx, cy in ((100, 300), (500, 300), (100, 50)):
        image[cy - 8:cy + 8, cx - 8:cx + 8] = 0
    return image


@pytest.fixture
def scenario_c_markers():
    return [
        MarkerCandidate(100, 300, MarkerRole.ORIGIN),
        MarkerCandidate(500, 300, MarkerRole.X_AXIS),
        MarkerCandidate(100, 50, MarkerRole.SCALE),
    ]


@pytest.fixture
def trapezoid_markers():
    """Origin, x-axis, top-right, scale of a non-rectangular trapezoid."""
    return [
        MarkerCandidate(80, 420, MarkerRole.ORIGIN),
        MarkerCandidate(560, 430, MarkerRole.X_AXIS),
        MarkerCandidate(470, 90, MarkerRole.TOP_RIGHT),
        MarkerCandidate(150, 80, MarkerRole.SCALE),
    ]


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def two_tone_image():
    """200x160 slab one shade darker than its 400x400 board (BGR)."""
    image = np.full((400, 400, 3), (90, 120, 150), dtype=np.uint8)
    image[120:280, 100:300] = (70, 100, 130)
    return image
