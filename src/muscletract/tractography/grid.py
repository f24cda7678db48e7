"""
Seed Grid Helpers

Tracts are stored densely as (rows, cols, points, 3) arrays, zero-padded up
to the longest tract. These helpers count tract points, locate the active
region of the seed grid and validate that input arrays agree in shape.
"""

import numpy as np
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class GridShapeError(ValueError):
    """Exception raised for malformed or inconsistent grid arrays"""
    pass


class ActiveRegion:
    """
    Bounding box of the tracked cells of a seed grid

    Row and column limits are inclusive.
    """

    def __init__(self, first_row: int, last_row: int, first_col: int, last_col: int):
        self.first_row = int(first_row)
        self.last_row = int(last_row)
        self.first_col = int(first_col)
        self.last_col = int(last_col)

    @property
    def rows(self) -> slice:
        return slice(self.first_row, self.last_row + 1)

    @property
    def cols(self) -> slice:
        return slice(self.first_col, self.last_col + 1)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.last_row - self.first_row + 1, self.last_col - self.first_col + 1)

    @property
    def n_cells(self) -> int:
        return self.shape[0] * self.shape[1]

    def mask(self, grid_shape: Tuple[int, int]) -> np.ndarray:
        """Boolean grid that is True inside the region"""
        inside = np.zeros(grid_shape, dtype=bool)
        inside[self.rows, self.cols] = True
        return inside

    def to_dict(self) -> dict:
        return {
            'first_row': self.first_row,
            'last_row': self.last_row,
            'first_col': self.first_col,
            'last_col': self.last_col,
        }

    def __repr__(self) -> str:
        return (f"ActiveRegion(rows={self.first_row}..{self.last_row}, "
                f"cols={self.first_col}..{self.last_col})")


def validate_fiber_grid(fiber_all: np.ndarray, name: str = "fiber_all") -> np.ndarray:
    """Check that a tract grid has shape (rows, cols, points, 3)"""
    fiber_all = np.asarray(fiber_all, dtype=np.float64)
    if fiber_all.ndim != 4 or fiber_all.shape[-1] != 3:
        raise GridShapeError(
            f"{name} must have shape (rows, cols, points, 3), got {fiber_all.shape}"
        )
    return fiber_all


def check_grid_shape(array: np.ndarray, grid_shape: Tuple[int, int], name: str, ndim: int):
    """Check that an array is defined over the same seed grid"""
    if array.ndim != ndim or array.shape[:2] != tuple(grid_shape):
        raise GridShapeError(
            f"{name} must be {ndim}-D over a {grid_shape[0]}x{grid_shape[1]} grid, "
            f"got shape {array.shape}"
        )


def point_mask(fiber_all: np.ndarray) -> np.ndarray:
    """Boolean (rows, cols, points) array marking present (non-padding) points"""
    return np.any(fiber_all != 0, axis=-1)


def count_points(fiber_all: np.ndarray) -> np.ndarray:
    """Number of points in each tract, (rows, cols)"""
    return point_mask(fiber_all).sum(axis=-1)


def max_tract_length(fiber_all: np.ndarray) -> int:
    """
    Index (1-based) of the last point occupied by any tract

    Returns 0 for an empty grid.
    """
    occupied = np.flatnonzero(point_mask(fiber_all).any(axis=(0, 1)))
    if occupied.size == 0:
        return 0
    return int(occupied[-1]) + 1


def find_active_region(tracked: np.ndarray) -> Optional[ActiveRegion]:
    """
    Find the minimal bounding box containing every tracked cell

    Args:
        tracked: Boolean (rows, cols) grid

    Returns:
        ActiveRegion, or None when nothing was tracked
    """
    tracked = np.asarray(tracked, dtype=bool)
    rows = np.flatnonzero(tracked.any(axis=1))
    cols = np.flatnonzero(tracked.any(axis=0))

    if rows.size == 0:
        return None

    region = ActiveRegion(rows[0], rows[-1], cols[0], cols[-1])
    logger.debug(f"Active region: {region}")
    return region
