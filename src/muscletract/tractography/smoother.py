"""
Arc-Length Polynomial Smoothing of Fiber Tracts

Each tract is fitted, axis by axis, to a polynomial of the distance travelled
along the tract and resampled at a finer, uniform arc-length spacing:

1. Tracts are converted to mm so anisotropic voxels do not distort distances
2. Tracts with too few points for the requested polynomial order are dropped
3. Row, column and slice positions are fitted relative to the seed point
4. Fitted curves are shifted so they start exactly at the seed point
5. Residuals against the tracked points are reported in mm and voxels

Fitting positions against distance rather than point number keeps the method
valid for trackers that use variable step sizes.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Optional, Union
import logging

from tqdm import tqdm

from .grid import count_points, max_tract_length, validate_fiber_grid
from .options import SmootherOptions, coerce_options

logger = logging.getLogger(__name__)


@dataclass
class SmoothingResult:
    """Container for smoothed tracts and fit diagnostics"""
    smoothed_fibers: np.ndarray
    smoothed_fibers_mm: np.ndarray
    fibers_mm: np.ndarray
    pcoeff_r: np.ndarray
    pcoeff_c: np.ndarray
    pcoeff_s: np.ndarray
    n_points_smoothed: np.ndarray
    residuals: np.ndarray
    residuals_mm: np.ndarray
    options: Optional[SmootherOptions] = field(default=None, repr=False)

    @property
    def n_smoothed(self) -> int:
        return int(np.count_nonzero(self.n_points_smoothed))

    def to_dict(self) -> Dict[str, np.ndarray]:
        """Arrays keyed by name, for saving"""
        return {
            'smoothed_fiber_all': self.smoothed_fibers,
            'smoothed_fiber_all_mm': self.smoothed_fibers_mm,
            'fiber_all_mm': self.fibers_mm,
            'pcoeff_r': self.pcoeff_r,
            'pcoeff_c': self.pcoeff_c,
            'pcoeff_s': self.pcoeff_s,
            'n_points_smoothed': self.n_points_smoothed,
            'residuals': self.residuals,
            'residuals_mm': self.residuals_mm,
        }


def arc_length(points: np.ndarray) -> np.ndarray:
    """
    Cumulative distance along a polyline

    Args:
        points: Array of points (N, 3)

    Returns:
        Distances from the first point (N,); the first value is 0
    """
    if len(points) == 0:
        return np.zeros(0)
    segments = np.diff(points, axis=0)
    return np.concatenate([[0.0], np.cumsum(np.linalg.norm(segments, axis=1))])


def evaluate_anchored(coefficients: np.ndarray, positions: np.ndarray, anchor: float) -> np.ndarray:
    """
    Evaluate a fitted polynomial so that the curve starts exactly at anchor

    The value at positions[0] is subtracted before the anchor is added back,
    which removes any fit offset at the seed point.
    """
    curve = np.polyval(coefficients, positions)
    curve = curve - curve[0]
    return curve + anchor


class FiberSmoother:
    """
    Polynomial smoother for a grid of fiber tracts
    """

    def __init__(
        self,
        options: Union[SmootherOptions, Dict],
        show_progress: bool = False
    ):
        """
        Initialize smoother

        Args:
            options: SmootherOptions or equivalent dict
            show_progress: Display a progress bar while fitting
        """
        self.options = coerce_options(options, SmootherOptions)
        self.show_progress = show_progress

        logger.info(
            f"FiberSmoother initialized: p_order={self.options.p_order}, "
            f"interpolation_step={self.options.interpolation_step}, "
            f"units={self.options.tract_units}"
        )

    def n_output_points(self, n_points: int) -> int:
        """Number of resampled points for a tract with n_points points"""
        # Tolerance keeps the end point when the step divides the tract evenly
        return int(np.floor((n_points - 1) / self.options.interpolation_step + 1e-9)) + 1

    def fit_tract(self, tract_mm: np.ndarray) -> Dict:
        """
        Fit and resample one tract

        Args:
            tract_mm: Tract points in mm (N, 3), N > 2 * max(p_order)

        Returns:
            Dictionary containing:
                - 'coefficients': per-axis polynomial coefficients, highest power first
                - 'smoothed_mm': resampled tract in mm (M, 3)
                - 'evaluated_mm': fitted positions at the tracked points (N, 3)
                - 'distance': arc length of the tracked points (N,)
        """
        n_points = len(tract_mm)
        distance = arc_length(tract_mm)
        total_distance = distance[-1]

        fiber_step = (total_distance / (n_points - 1)) * self.options.interpolation_step
        n_out = self.n_output_points(n_points)
        positions = np.arange(n_out) * fiber_step

        seed = tract_mm[0]
        coefficients = []
        smoothed = np.zeros((n_out, 3))
        for axis in range(3):
            coeffs = np.polyfit(distance, tract_mm[:, axis] - seed[axis], self.options.p_order[axis])
            coefficients.append(coeffs)
            smoothed[:, axis] = evaluate_anchored(coeffs, positions, seed[axis])

        # Residuals compare like with like: the resampled tract when it has
        # the tracked number of points, otherwise the fit at the tracked
        # arc-length positions
        if n_out == n_points:
            evaluated = smoothed.copy()
        else:
            evaluated = np.zeros((n_points, 3))
            for axis in range(3):
                evaluated[:, axis] = evaluate_anchored(coefficients[axis], distance, seed[axis])

        return {
            'coefficients': coefficients,
            'smoothed_mm': smoothed,
            'evaluated_mm': evaluated,
            'distance': distance,
        }

    def smooth(self, fiber_all: np.ndarray) -> SmoothingResult:
        """
        Smooth every tract of a seed grid

        Args:
            fiber_all: Tracts (rows, cols, points, 3) in the units given by
                options.tract_units, zero-padded

        Returns:
            SmoothingResult
        """
        fiber_all = validate_fiber_grid(fiber_all)
        dwi_res = self.options.dwi_res
        scale = dwi_res.scale
        n_rows, n_cols = fiber_all.shape[:2]

        if self.options.tract_units == 'vx':
            fibers_mm = dwi_res.to_mm(fiber_all)
            fibers_vx = fiber_all
        else:
            fibers_mm = fiber_all.copy()
            fibers_vx = dwi_res.to_voxels(fiber_all)

        max_length = max_tract_length(fiber_all)
        out_length = max_length * int(np.ceil(1.0 / self.options.interpolation_step))

        smoothed_mm = np.zeros((n_rows, n_cols, out_length, 3))
        smoothed_vx = np.zeros((n_rows, n_cols, out_length, 3))
        pcoeff = [np.zeros((n_rows, n_cols, order + 1)) for order in self.options.p_order]
        n_points_smoothed = np.zeros((n_rows, n_cols), dtype=np.int64)
        residuals = np.full((n_rows, n_cols, max_length, 5), np.nan)
        residuals_mm = np.full((n_rows, n_cols, max_length, 5), np.nan)

        n_points = count_points(fiber_all)
        candidates = np.argwhere(n_points > self.options.min_points)
        n_tracked = int(np.count_nonzero(n_points))

        logger.info(
            f"Smoothing {len(candidates)} of {n_tracked} tracts "
            f"(tracts need more than {self.options.min_points} points)"
        )

        pbar = tqdm(total=len(candidates), desc="Smoothing", unit="tract",
                    disable=not self.show_progress)

        for row, col in candidates:
            n = int(n_points[row, col])
            tract_mm = fibers_mm[row, col, :n]
            tract_vx = fibers_vx[row, col, :n]
            fit = self.fit_tract(tract_mm)

            seed_mm = tract_mm[0]
            seed_vx = tract_vx[0]
            curve_mm = fit['smoothed_mm']
            n_out = len(curve_mm)

            smoothed_mm[row, col, :n_out] = curve_mm
            # Convert relative to the seed so point 0 stays exact in voxels
            smoothed_vx[row, col, :n_out] = (curve_mm - seed_mm) / scale + seed_vx
            for axis in range(3):
                pcoeff[axis][row, col] = fit['coefficients'][axis]
            n_points_smoothed[row, col] = n_out

            evaluated_mm = fit['evaluated_mm']
            evaluated_vx = (evaluated_mm - seed_mm) / scale + seed_vx
            point_numbers = np.arange(1, n + 1)
            percent_length = 100.0 * point_numbers / n

            residuals_mm[row, col, :n, :3] = evaluated_mm - tract_mm
            residuals_mm[row, col, :n, 3] = point_numbers
            residuals_mm[row, col, :n, 4] = percent_length

            residuals[row, col, :n, :3] = evaluated_vx - tract_vx
            residuals[row, col, :n, 3] = point_numbers
            residuals[row, col, :n, 4] = percent_length

            pbar.update(1)

        pbar.close()

        n_excluded = n_tracked - len(candidates)
        if n_excluded > 0:
            logger.info(f"Excluded {n_excluded} tracts too short for polynomial fitting")

        return SmoothingResult(
            smoothed_fibers=smoothed_vx,
            smoothed_fibers_mm=smoothed_mm,
            fibers_mm=fibers_mm,
            pcoeff_r=pcoeff[0],
            pcoeff_c=pcoeff[1],
            pcoeff_s=pcoeff[2],
            n_points_smoothed=n_points_smoothed,
            residuals=residuals,
            residuals_mm=residuals_mm,
            options=self.options
        )


def smooth_fibers(
    fiber_all: np.ndarray,
    options: Union[SmootherOptions, Dict],
    show_progress: bool = False
) -> SmoothingResult:
    """
    Smooth fiber tracts with arc-length polynomial fits

    Args:
        fiber_all: Tracts (rows, cols, points, 3)
        options: SmootherOptions or dict with dwi_res, interpolation_step,
            p_order and tract_units
        show_progress: Display a progress bar

    Returns:
        SmoothingResult
    """
    return FiberSmoother(options, show_progress=show_progress).smooth(fiber_all)
