"""
Shared fixtures for fiber smoothing and selection tests
"""

import pytest
import numpy as np


def build_quantified_grid(
    n_rows=5,
    n_cols=5,
    n_pts=10,
    angle=15.0,
    curvature=10.0,
    length=40.0
):
    """
    Create a seed grid of straight tracts with constant quantification

    Tract (r, c) runs along the slice axis from seed (r+1, c+1, 1). Every
    point carries the same angle and curvature, and cumulative distance
    rises linearly to the requested length.
    """
    fiber_all = np.zeros((n_rows, n_cols, n_pts, 3))
    for r in range(n_rows):
        for c in range(n_cols):
            fiber_all[r, c, :, 0] = r + 1
            fiber_all[r, c, :, 1] = c + 1
            fiber_all[r, c, :, 2] = np.arange(1, n_pts + 1)

    data = {
        'fiber_all': fiber_all,
        'angle_list': np.full((n_rows, n_cols, n_pts), float(angle)),
        'curvature_list': np.full((n_rows, n_cols, n_pts), float(curvature)),
        'distance_list': np.tile(np.linspace(0, length, n_pts), (n_rows, n_cols, 1)),
        'n_points': np.full((n_rows, n_cols, 3), float(n_pts)),
        'roi_flag': np.ones((n_rows, n_cols)),
        'apo_area': np.ones((n_rows, n_cols)),
    }

    roi_mesh = np.zeros((n_rows, n_cols, 3))
    for r in range(n_rows):
        for c in range(n_cols):
            roi_mesh[r, c] = (r + 1, c + 1, 1)
    data['roi_mesh'] = roi_mesh

    return data


def set_cell(data, row, col, angle=None, curvature=None, length=None):
    """Overwrite the quantification of one tract"""
    n_pts = data['angle_list'].shape[2]
    if angle is not None:
        data['angle_list'][row, col, :] = angle
    if curvature is not None:
        data['curvature_list'][row, col, :] = curvature
    if length is not None:
        data['distance_list'][row, col, :] = np.linspace(0, length, n_pts)


@pytest.fixture
def quantified_grid():
    """Factory for synthetic quantified tract grids"""
    return build_quantified_grid


@pytest.fixture
def edit_cell():
    """Helper to overwrite one tract's quantification"""
    return set_cell


@pytest.fixture
def goodness_config():
    """Default selection thresholds"""
    return {
        'min_distance': 10.0,
        'min_pennation': 5.0,
        'max_pennation': 40.0,
        'max_curvature': 40.0,
    }
