"""
Degree-grid spatial index.

A cell id is "r{level}:{row}:{col}". Rows count up from the south pole, cols
eastward from -180. At every level the cells cover the whole lat/lng domain
without gaps or overlaps; polar cells are distorted the same way the map is.
"""
import math
from typing import List, Sequence, Tuple

from .geo import normalize
from ..core.constants import CELL_SIZES_DEG, ZOOM_RESOLUTION_STEPS

MAX_RESOLUTION = len(CELL_SIZES_DEG) - 1

def cell_size_deg(resolution: int) -> float:
    if not 0 <= int(resolution) <= MAX_RESOLUTION:
        raise ValueError(f"resolution out of range: {resolution}")
    return CELL_SIZES_DEG[int(resolution)]

def _grid_dims(size: float) -> Tuple[int, int]:
    return int(round(180.0 / size)), int(round(360.0 / size))

def resolution_for(zoom: float,
                   steps: Sequence[Tuple[float, int]] = ZOOM_RESOLUTION_STEPS) -> int:
    """
    Step function zoom -> resolution level.

    Picks the last step whose min zoom <= zoom. Zooms below the first step get
    the coarsest level. The result is clamped to MAX_RESOLUTION, the finest
    level the privacy floor allows, whatever the table says.
    """
    level = 0
    for min_zoom, step_level in steps:
        if zoom >= min_zoom:
            level = max(level, int(step_level))
        else:
            break
    return max(0, min(level, MAX_RESOLUTION))

def cell_for(lat: float, lng: float, resolution: int) -> str:
    size = cell_size_deg(resolution)
    n_rows, n_cols = _grid_dims(size)
    lat, lng = normalize(lat, lng)
    row = min(int(math.floor((lat + 90.0) / size)), n_rows - 1)
    col = int(math.floor((lng + 180.0) / size)) % n_cols
    return f"r{int(resolution)}:{row}:{col}"

def parse_cell(cell_id: str) -> Tuple[int, int, int]:
    try:
        head, row_s, col_s = str(cell_id).split(":")
        if not head.startswith("r"):
            raise ValueError
        level, row, col = int(head[1:]), int(row_s), int(col_s)
    except ValueError:
        raise ValueError(f"malformed cell id: {cell_id!r}") from None
    size = cell_size_deg(level)
    n_rows, n_cols = _grid_dims(size)
    if not (0 <= row < n_rows and 0 <= col < n_cols):
        raise ValueError(f"cell outside grid: {cell_id!r}")
    return level, row, col

def _cell_bounds(cell_id: str) -> Tuple[float, float, float, float]:
    level, row, col = parse_cell(cell_id)
    size = CELL_SIZES_DEG[level]
    south = -90.0 + row * size
    west = -180.0 + col * size
    return south, west, min(90.0, south + size), min(180.0, west + size)

def boundary_of(cell_id: str) -> List[Tuple[float, float]]:
    """Corners as (lat, lng): SW, SE, NE, NW."""
    s, w, n, e = _cell_bounds(cell_id)
    return [(s, w), (s, e), (n, e), (n, w)]

def center_of(cell_id: str) -> Tuple[float, float]:
    s, w, n, e = _cell_bounds(cell_id)
    return (s + n) / 2.0, (w + e) / 2.0
