"""
Fiber Tract Quality Selection

Rejects implausible fiber tracts with a cascade of criteria. Each stage
only considers tracts that passed every earlier stage:

1. Monotonic progression along the propagation axis (slice by default)
2. Minimum length
3. Mean pennation angle inside an open range
4. Mean curvature below a maximum
5. Length, pennation and curvature consistent with the 5x5 neighborhood
6. Optional uniform sampling across the aponeurosis mesh

The outputs keep only the surviving tracts and report, per stage, how many
tracts remain. Whole-muscle values are averages weighted by the aponeurosis
area each tract represents.

The selection thresholds, and the number of tracts each one rejects, belong
in the methods section of any report built on these results.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union
import logging

from .grid import (
    ActiveRegion,
    GridShapeError,
    check_grid_shape,
    count_points,
    find_active_region,
    validate_fiber_grid,
)
from .options import GoodnessOptions, coerce_options
from .uniform_sampling import UniformSampler, UniformSamplingResult

logger = logging.getLogger(__name__)

N_LAYERS = 6
NEIGHBORHOOD_RADIUS = 2
OUTLIER_SD = 2.0


@dataclass
class GoodnessResult:
    """Container for fiber selection results"""
    final_fibers: np.ndarray
    final_curvature: np.ndarray
    final_angle: np.ndarray
    final_distance: np.ndarray
    qual_mask: np.ndarray
    num_tracked: np.ndarray
    mean_fiber_props: np.ndarray
    mean_apo_props: np.ndarray
    active_region: Optional[ActiveRegion] = None
    sampling: Optional[UniformSamplingResult] = None
    options: Optional[GoodnessOptions] = field(default=None, repr=False)

    @property
    def final_mask(self) -> np.ndarray:
        """Cells whose tracts survived selection"""
        if self.sampling is not None:
            return self.qual_mask[..., 5]
        return self.qual_mask[..., 4]

    @property
    def n_selected(self) -> int:
        return int(np.count_nonzero(self.final_mask))

    def to_dict(self) -> Dict[str, np.ndarray]:
        """Arrays keyed by name, for saving"""
        arrays = {
            'final_fibers': self.final_fibers,
            'final_curvature': self.final_curvature,
            'final_angle': self.final_angle,
            'final_distance': self.final_distance,
            'qual_mask': self.qual_mask.astype(np.uint8),
            'num_tracked': self.num_tracked,
            'mean_fiber_props': self.mean_fiber_props,
            'mean_apo_props': self.mean_apo_props,
        }
        if self.sampling is not None:
            arrays['region_ids'] = self.sampling.region_ids
            arrays['sampling_frequency'] = np.array(self.sampling.sampling_frequency)
        return arrays


def point_count_layers(n_points: np.ndarray, grid_shape: Tuple[int, int]) -> np.ndarray:
    """
    Normalize point counts to (rows, cols, 3)

    Layer 0 counts tract points, layer 1 angle samples and layer 2
    curvature samples. A 2D array is used for all three.
    """
    n_points = np.asarray(n_points, dtype=np.float64)
    if n_points.ndim == 2:
        check_grid_shape(n_points, grid_shape, 'n_points', 2)
        return np.repeat(n_points[..., None], 3, axis=-1)
    check_grid_shape(n_points, grid_shape, 'n_points', 3)
    if n_points.shape[2] < 3:
        raise GridShapeError(f"n_points needs 3 layers, got {n_points.shape[2]}")
    return n_points[..., :3]


def tract_properties(
    angle_list: np.ndarray,
    curvature_list: np.ndarray,
    distance_list: np.ndarray,
    n_points: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Per-tract mean angle, mean curvature and total length

    Returns:
        mean_angle: NaN from empty tracts set to 0
        mean_curvature: May contain NaN for empty tracts
        total_distance: Largest cumulative distance
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        mean_angle = np.sum(angle_list, axis=2) / n_points[..., 1]
        mean_curvature = np.sum(curvature_list, axis=2) / n_points[..., 2]
    mean_angle[np.isnan(mean_angle)] = 0

    if distance_list.shape[2] == 0:
        total_distance = np.zeros(distance_list.shape[:2])
    else:
        total_distance = np.max(distance_list, axis=2)

    return mean_angle, mean_curvature, total_distance


def monotonic_mask(fiber_all: np.ndarray, candidates: np.ndarray, axis: int = 2) -> np.ndarray:
    """
    Tracts that never step backwards along the propagation axis

    The first and last steps are ignored; polynomial fitting can overshoot
    at the ends of a tract.

    Args:
        fiber_all: Tracts (rows, cols, points, 3)
        candidates: Boolean (rows, cols) cells to evaluate
        axis: Coordinate index of the propagation direction

    Returns:
        Boolean (rows, cols); False outside candidates
    """
    passed = np.zeros(candidates.shape, dtype=bool)
    n_points = count_points(fiber_all)

    for row, col in np.argwhere(candidates):
        positions = fiber_all[row, col, :n_points[row, col], axis]
        steps = np.diff(positions)[1:-1]
        passed[row, col] = not np.any(steps < 0)

    return passed


def _sample_std(values: np.ndarray) -> float:
    """Sample standard deviation; 0 for fewer than two values"""
    if values.size < 2:
        return 0.0
    return float(np.std(values, ddof=1))


def _is_outlier(value: float, center: float, spread: float) -> bool:
    return value > center + OUTLIER_SD * spread or value < center - OUTLIER_SD * spread


def local_consistency_mask(
    layer4: np.ndarray,
    mean_angle: np.ndarray,
    mean_curvature: np.ndarray,
    total_distance: np.ndarray,
    region: ActiveRegion,
    radius: int = NEIGHBORHOOD_RADIUS
) -> np.ndarray:
    """
    Tracts consistent with their neighbors in angle, curvature and length

    For every cell of layer4, neighbors within a (2*radius+1)^2 window that
    also passed layer 4 define the local statistics: mean and SD of angle,
    median and SD of curvature, median and SD of length. A tract lying more
    than 2 SD from the local center in any property is rejected.

    Only the finished layer-4 array is read, so results do not depend on the
    order in which cells are visited.

    Returns:
        Boolean (rows, cols) layer-5 mask
    """
    snapshot = layer4.copy()
    snapshot.setflags(write=False)
    passed = np.zeros(layer4.shape, dtype=bool)

    for row, col in np.argwhere(snapshot):
        rows = slice(max(row - radius, region.first_row), min(row + radius, region.last_row) + 1)
        cols = slice(max(col - radius, region.first_col), min(col + radius, region.last_col) + 1)
        neighbors = snapshot[rows, cols]

        local_angle = mean_angle[rows, cols][neighbors]
        local_curve = mean_curvature[rows, cols][neighbors]
        local_length = total_distance[rows, cols][neighbors]

        # Angle uses the mean, curvature and length the median
        outlier = (
            _is_outlier(mean_angle[row, col], np.mean(local_angle), _sample_std(local_angle))
            or _is_outlier(mean_curvature[row, col], np.median(local_curve), _sample_std(local_curve))
            or _is_outlier(total_distance[row, col], np.median(local_length), _sample_std(local_length))
        )
        passed[row, col] = not outlier

    return passed


def area_weighted_mean(values: np.ndarray, apo_area: np.ndarray, mask: np.ndarray) -> float:
    """
    Mean of values over mask, weighted by aponeurosis area

    NaN values are treated as zero. Returns 0 when no area is selected.
    """
    values = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0)
    weights = np.asarray(apo_area, dtype=np.float64) * mask
    total_weight = np.sum(weights)
    if total_weight <= 0:
        return 0.0
    return float(np.sum(values * weights) / total_weight)


class FiberGoodness:
    """
    Quality cascade for a grid of quantified fiber tracts
    """

    def __init__(self, options: Union[GoodnessOptions, Dict]):
        """
        Initialize selector

        Args:
            options: GoodnessOptions or equivalent dict
        """
        self.options = coerce_options(options, GoodnessOptions)

        logger.info(
            f"FiberGoodness initialized: min_distance={self.options.min_distance}mm, "
            f"pennation=({self.options.min_pennation}, {self.options.max_pennation})deg, "
            f"max_curvature={self.options.max_curvature}/m, "
            f"sampling_frequency={self.options.sampling_frequency}"
        )

    def _validate_inputs(
        self,
        fiber_all,
        angle_list,
        distance_list,
        curvature_list,
        n_points,
        roi_flag,
        apo_area,
        roi_mesh
    ) -> Dict[str, np.ndarray]:
        fiber_all = validate_fiber_grid(fiber_all)
        grid_shape = fiber_all.shape[:2]

        arrays = {'fiber_all': fiber_all}
        for name, array in (('angle_list', angle_list),
                            ('distance_list', distance_list),
                            ('curvature_list', curvature_list)):
            array = np.asarray(array, dtype=np.float64)
            check_grid_shape(array, grid_shape, name, 3)
            arrays[name] = array

        if not (arrays['angle_list'].shape == arrays['distance_list'].shape
                == arrays['curvature_list'].shape):
            raise GridShapeError(
                "angle_list, distance_list and curvature_list must have the same shape, got "
                f"{arrays['angle_list'].shape}, {arrays['distance_list'].shape}, "
                f"{arrays['curvature_list'].shape}"
            )

        arrays['n_points'] = point_count_layers(n_points, grid_shape)

        for name, array in (('roi_flag', roi_flag), ('apo_area', apo_area)):
            array = np.asarray(array, dtype=np.float64)
            check_grid_shape(array, grid_shape, name, 2)
            arrays[name] = array

        if roi_mesh is not None:
            roi_mesh = np.asarray(roi_mesh, dtype=np.float64)
            check_grid_shape(roi_mesh, grid_shape, 'roi_mesh', 3)
            if roi_mesh.shape[2] < 3:
                raise GridShapeError(f"roi_mesh needs at least 3 channels, got {roi_mesh.shape[2]}")
        elif self.options.uniform_sampling:
            raise GridShapeError("roi_mesh is required for uniform sampling")
        arrays['roi_mesh'] = roi_mesh

        return arrays

    @staticmethod
    def tracked_cells(angle_list: np.ndarray) -> np.ndarray:
        """Cells with a quantified tract"""
        if angle_list.shape[2] > 1:
            return angle_list[..., 1] != 0
        return np.any(angle_list != 0, axis=2)

    def select(
        self,
        fiber_all: np.ndarray,
        angle_list: np.ndarray,
        distance_list: np.ndarray,
        curvature_list: np.ndarray,
        n_points: np.ndarray,
        roi_flag: np.ndarray,
        apo_area: np.ndarray,
        roi_mesh: Optional[np.ndarray] = None
    ) -> GoodnessResult:
        """
        Run the quality cascade

        Args:
            fiber_all: Tracts (rows, cols, points, 3), smoothed or raw
            angle_list: Pointwise pennation angles (rows, cols, Q)
            distance_list: Pointwise cumulative distances (rows, cols, Q)
            curvature_list: Pointwise curvatures (rows, cols, Q)
            n_points: Point counts (rows, cols) or (rows, cols, 3)
            roi_flag: Cells whose tracts propagated at least one step
            apo_area: Aponeurosis area element per seed
            roi_mesh: Seed mesh (rows, cols, >=3); required for uniform sampling

        Returns:
            GoodnessResult
        """
        arrays = self._validate_inputs(
            fiber_all, angle_list, distance_list, curvature_list,
            n_points, roi_flag, apo_area, roi_mesh
        )
        fiber_all = arrays['fiber_all']
        angle_list = arrays['angle_list']
        distance_list = arrays['distance_list']
        curvature_list = arrays['curvature_list']
        n_points = arrays['n_points']
        apo_area = arrays['apo_area']
        grid_shape = fiber_all.shape[:2]

        mean_angle, mean_curvature, total_distance = tract_properties(
            angle_list, curvature_list, distance_list, n_points
        )

        qual_mask = np.zeros(grid_shape + (N_LAYERS,), dtype=bool)
        region = find_active_region(self.tracked_cells(angle_list))

        if region is None:
            logger.warning("No quantified fiber tracts; nothing to select")
            return self._assemble(
                arrays, qual_mask, np.zeros(grid_shape, dtype=bool), region, None,
                mean_angle, mean_curvature, total_distance
            )

        inside = region.mask(grid_shape)
        propagated = (arrays['roi_flag'] != 0) & inside

        # 1) monotonic progression along the propagation axis
        qual_mask[..., 0] = monotonic_mask(fiber_all, propagated, self.options.propagation_axis)

        # 2) minimum length
        qual_mask[..., 1] = qual_mask[..., 0] & (total_distance >= self.options.min_distance)

        # 3) pennation angle inside the open range
        angle_ok = (mean_angle > self.options.min_pennation) & (mean_angle < self.options.max_pennation)
        qual_mask[..., 2] = qual_mask[..., 1] & angle_ok

        # 4) curvature below the maximum
        qual_mask[..., 3] = qual_mask[..., 2] & (mean_curvature < self.options.max_curvature)

        # 5) consistency with neighboring tracts, from the finished layer 4
        qual_mask[..., 4] = local_consistency_mask(
            qual_mask[..., 3], mean_angle, mean_curvature, total_distance, region
        )

        survivors = qual_mask[..., 4].copy()
        for values in (mean_angle, mean_curvature, total_distance):
            survivors &= ~np.isnan(values)

        sampling = None
        if self.options.uniform_sampling:
            sampler = UniformSampler(self.options.dwi_res, self.options.sampling_frequency)
            sampling = sampler.sample(
                arrays['roi_mesh'], survivors, mean_angle, mean_curvature,
                total_distance, apo_area, region
            )
            qual_mask[..., 5] = sampling.selection

        return self._assemble(
            arrays, qual_mask, survivors, region, sampling,
            mean_angle, mean_curvature, total_distance
        )

    def _assemble(
        self,
        arrays: Dict[str, np.ndarray],
        qual_mask: np.ndarray,
        survivors: np.ndarray,
        region: Optional[ActiveRegion],
        sampling: Optional[UniformSamplingResult],
        mean_angle: np.ndarray,
        mean_curvature: np.ndarray,
        total_distance: np.ndarray
    ) -> GoodnessResult:
        """Mask the outputs and compute summaries"""
        final_mask = qual_mask[..., 5] if sampling is not None else survivors
        final = final_mask.astype(np.float64)

        num_tracked = np.zeros(2 + N_LAYERS, dtype=np.int64)
        if region is not None:
            num_tracked[0] = region.n_cells
            num_tracked[1] = int(np.count_nonzero(arrays['roi_flag'][region.rows, region.cols]))
            num_tracked[2:] = np.count_nonzero(qual_mask, axis=(0, 1))

        mean_fiber_props = np.zeros(final_mask.shape + (5,))
        mean_fiber_props[..., 0] = np.nan_to_num(mean_curvature, nan=0.0) * final
        mean_fiber_props[..., 1] = np.nan_to_num(mean_angle, nan=0.0) * final
        mean_fiber_props[..., 2] = np.nan_to_num(total_distance, nan=0.0) * final
        mean_fiber_props[..., 3] = arrays['apo_area']
        mean_fiber_props[..., 4] = arrays['n_points'][..., 0] * final

        if sampling is not None:
            mean_apo_props = sampling.mean_apo_props.copy()
        else:
            mean_apo_props = np.array([
                area_weighted_mean(mean_curvature, arrays['apo_area'], final_mask),
                area_weighted_mean(mean_angle, arrays['apo_area'], final_mask),
                area_weighted_mean(total_distance, arrays['apo_area'], final_mask),
            ])
            if not np.any(final_mask):
                logger.warning("No fiber tracts survived selection; whole-muscle summary set to zero")

        logger.info(
            "Tracts per stage: "
            + ", ".join(f"{label}={count}" for label, count in zip(
                ['seeds', 'tracked', 'monotonic', 'length', 'pennation',
                 'curvature', 'neighbors', 'sampled'], num_tracked))
        )

        return GoodnessResult(
            final_fibers=arrays['fiber_all'] * final[..., None, None],
            final_curvature=arrays['curvature_list'] * final[..., None],
            final_angle=arrays['angle_list'] * final[..., None],
            final_distance=arrays['distance_list'] * final[..., None],
            qual_mask=qual_mask,
            num_tracked=num_tracked,
            mean_fiber_props=mean_fiber_props,
            mean_apo_props=mean_apo_props,
            active_region=region,
            sampling=sampling,
            options=self.options
        )


def select_fibers(
    fiber_all: np.ndarray,
    angle_list: np.ndarray,
    distance_list: np.ndarray,
    curvature_list: np.ndarray,
    n_points: np.ndarray,
    roi_flag: np.ndarray,
    apo_area: np.ndarray,
    roi_mesh: Optional[np.ndarray],
    options: Union[GoodnessOptions, Dict]
) -> GoodnessResult:
    """
    Select plausible fiber tracts and summarize muscle architecture

    See FiberGoodness.select for argument details.
    """
    return FiberGoodness(options).select(
        fiber_all, angle_list, distance_list, curvature_list,
        n_points, roi_flag, apo_area, roi_mesh
    )
