from __future__ import annotations

from typing import List, Optional, Tuple

import cv2
import numpy as np

from slab_geometry2d.diagnostics import Deadline, check_deadline
from slab_geometry2d.errors import BoundaryTraceError

# E, SE, S, SW, W, NW, N, NE in image axes (y down).
MOORE_DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
    (0, -1),
    (1, -1),
)

DEFAULT_TRACE_STEPS = 10000


def connected_components(
    mask: np.ndarray,
    min_size: int = 1,
    max_size: Optional[int] = None,
    deadline: Optional[Deadline] = None,
) -> List[np.ndarray]:
    """4-connected foreground regions whose pixel count lies in [min_size, max_size].

    Each region is an (N, 2) int array of (x, y) pixel coordinates, largest first.
    """
    binary = mask.astype(np.uint8)
    if binary.size == 0 or not binary.any():
        return []
    n_labels, labels, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=4)
    check_deadline(deadline, "connected components")

    areas = stats[:, cv2.CC_STAT_AREA]
    upper = max_size if max_size is not None else int(binary.size)
    keep = [lab for lab in range(1, n_labels) if min_size <= areas[lab] <= upper]
    if not keep:
        return []

    flat = labels.ravel()
    order = np.argsort(flat, kind="stable")
    bounds = np.concatenate([[0], np.cumsum(np.bincount(flat, minlength=n_labels))])
    width = labels.shape[1]

    components = []
    for lab in sorted(keep, key=lambda lab: -areas[lab]):
        check_deadline(deadline, "connected components")
        idx = order[bounds[lab]:bounds[lab + 1]]
        components.append(np.column_stack([idx % width, idx // width]).astype(np.int64))
    return components


def largest_component(
    mask: np.ndarray,
    min_size: int = 1,
    max_size: Optional[int] = None,
    deadline: Optional[Deadline] = None,
) -> Optional[np.ndarray]:
    comps = connected_components(mask, min_size, max_size, deadline)
    return comps[0] if comps else None


def component_mask(component: np.ndarray, shape: Tuple[int, int]) -> np.ndarray:
    out = np.zeros(shape, dtype=bool)
    out[component[:, 1], component[:, 0]] = True
    return out


def component_start(component: np.ndarray) -> Tuple[int, int]:
    """Leftmost, then topmost pixel. It always lies on the outer boundary."""
    min_x = component[:, 0].min()
    column = component[component[:, 0] == min_x]
    return int(min_x), int(column[:, 1].min())


def trace_boundary(
    mask: np.ndarray,
    start: Tuple[int, int],
    max_steps: int = DEFAULT_TRACE_STEPS,
    deadline: Optional[Deadline] = None,
) -> np.ndarray:
    """Moore-neighbour trace of the outer boundary through ``start``.

    Returns the boundary pixels in visiting order as an open (N, 2) float ring.
    Raises BoundaryTraceError if the walk does not return to ``start`` within
    ``max_steps`` moves.
    """
    h, w = mask.shape
    sx, sy = int(start[0]), int(start[1])
    if not (0 <= sx < w and 0 <= sy < h) or not mask[sy, sx]:
        raise BoundaryTraceError(f"start pixel {start} is not foreground")

    points = [(sx, sy)]
    x, y = sx, sy
    direction = 7
    for step in range(max_steps):
        if step % 512 == 0:
            check_deadline(deadline, "boundary trace")
        moved = False
        for i in range(8):
            d = (direction + i) % 8
            dx, dy = MOORE_DIRECTIONS[d]
            nx, ny = x + dx, y + dy
            if 0 <= nx < w and 0 <= ny < h and mask[ny, nx]:
                x, y = nx, ny
                direction = (d + 5) % 8
                moved = True
                break
        if not moved:
            # isolated pixel
            return np.array(points, dtype=np.float64)
        if x == sx and y == sy:
            return np.array(points, dtype=np.float64)
        points.append((x, y))
    raise BoundaryTraceError(f"boundary trace exceeded {max_steps} steps")


def trace_component(
    component: np.ndarray,
    shape: Tuple[int, int],
    max_steps: int = DEFAULT_TRACE_STEPS,
    deadline: Optional[Deadline] = None,
) -> np.ndarray:
    return trace_boundary(component_mask(component, shape), component_start(component), max_steps, deadline)


def row_extremes(pixels: np.ndarray) -> np.ndarray:
    """Leftmost and rightmost pixel of every row. Their hull equals the hull of ``pixels``."""
    if len(pixels) == 0:
        return np.zeros((0, 2), dtype=np.float64)
    order = np.lexsort((pixels[:, 0], pixels[:, 1]))
    ordered = pixels[order]
    ys = ordered[:, 1]
    first = np.concatenate([[True], ys[1:] != ys[:-1]])
    last = np.concatenate([ys[1:] != ys[:-1], [True]])
    return np.vstack([ordered[first], ordered[last]]).astype(np.float64)
