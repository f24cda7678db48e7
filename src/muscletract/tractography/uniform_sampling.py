"""
Uniform Spatial Sampling of Fiber Tracts over the Aponeurosis Mesh

Seed points are denser where the aponeurosis is narrow, so a plain average
over all tracts is biased toward narrow regions. The sampler partitions the
mesh into regions of one sampling period of cumulative surface distance and
keeps the single most typical tract of each region.
"""

import warnings
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

from .grid import ActiveRegion
from .options import DWIResolution

logger = logging.getLogger(__name__)

MIN_TRACTS_PER_REGION = 3


@dataclass
class UniformSamplingResult:
    """Container for uniform sampling results"""
    selection: np.ndarray
    region_ids: np.ndarray
    requested_frequency: float
    sampling_frequency: float
    max_frequency: float
    regional_medians: np.ndarray
    regional_area: np.ndarray
    represented: np.ndarray
    mean_apo_props: np.ndarray

    @property
    def clamped(self) -> bool:
        return self.sampling_frequency < self.requested_frequency

    @property
    def sampling_period(self) -> float:
        return 1.0 / self.sampling_frequency

    @property
    def n_regions(self) -> int:
        return len(self.regional_area)

    @property
    def n_selected(self) -> int:
        return int(np.count_nonzero(self.selection))


def mesh_steps(mesh_mm: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Distances between adjacent mesh nodes

    Args:
        mesh_mm: Mesh coordinates (rows, cols, 3) in mm

    Returns:
        col_steps: Distance from each node to its left neighbor, 0 in the first column
        row_steps: Distance from each node to the node above, 0 in the first row
    """
    col_steps = np.zeros(mesh_mm.shape[:2])
    row_steps = np.zeros(mesh_mm.shape[:2])
    col_steps[:, 1:] = np.linalg.norm(np.diff(mesh_mm, axis=1), axis=-1)
    row_steps[1:, :] = np.linalg.norm(np.diff(mesh_mm, axis=0), axis=-1)
    return col_steps, row_steps


def max_sampling_frequency(col_steps: np.ndarray, row_steps: np.ndarray) -> float:
    """
    Highest sampling frequency the mesh supports, in mm^-1

    Returns inf when the mesh has no non-zero spacing.
    """
    spacings = np.concatenate([col_steps.ravel(), row_steps.ravel()])
    spacings = spacings[spacings > 0]
    if spacings.size == 0:
        return np.inf
    return 1.0 / np.min(spacings)


def assign_regions(col_steps: np.ndarray, row_steps: np.ndarray, sampling_period: float) -> np.ndarray:
    """
    Bucket mesh nodes by cumulative surface distance

    Region id = floor((cumulative column-wise distance + cumulative
    row-wise distance) / sampling_period).
    """
    cumulative = np.cumsum(col_steps, axis=1) + np.cumsum(row_steps, axis=0)
    return np.floor(cumulative / sampling_period).astype(np.int64)


def similarity_scores(values: np.ndarray, medians: np.ndarray) -> np.ndarray:
    """
    Sum of normalized deviations from regional medians

    Args:
        values: Tract properties (N, M)
        medians: Regional medians (M,)

    Returns:
        Scores (N,); lower is more typical. A property equal to a zero
        median contributes 0, any other value against a zero median inf.
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        deviation = np.abs(values / medians - 1.0)
    deviation[values == medians] = 0.0
    deviation[np.isnan(deviation)] = np.inf
    return deviation.sum(axis=1)


class UniformSampler:
    """
    Selects one representative tract per region of the aponeurosis mesh
    """

    def __init__(
        self,
        dwi_res: DWIResolution,
        sampling_frequency: float,
        min_tracts: int = MIN_TRACTS_PER_REGION
    ):
        """
        Initialize sampler

        Args:
            dwi_res: Image resolution for converting the mesh to mm
            sampling_frequency: Requested sampling density in mm^-1
            min_tracts: Regions with fewer surviving tracts are dropped
        """
        self.dwi_res = DWIResolution.from_value(dwi_res)
        self.requested_frequency = float(sampling_frequency)
        self.min_tracts = min_tracts

    def effective_frequency(self, max_frequency: float) -> float:
        """Requested frequency, clamped to what the mesh supports"""
        if self.requested_frequency <= max_frequency:
            return self.requested_frequency

        message = (
            f"Minimum observed fiber tract spacing is {1.0 / max_frequency:.2f}mm; "
            f"sampling at {max_frequency:.4g} mm^-1 instead of the requested "
            f"{self.requested_frequency:.4g} mm^-1"
        )
        logger.warning(message)
        warnings.warn(message, UserWarning)
        return max_frequency

    def sample(
        self,
        roi_mesh: np.ndarray,
        survivors: np.ndarray,
        mean_angle: np.ndarray,
        mean_curvature: np.ndarray,
        total_distance: np.ndarray,
        apo_area: np.ndarray,
        region: Optional[ActiveRegion] = None
    ) -> UniformSamplingResult:
        """
        Select the most typical surviving tract of each sampling region

        Args:
            roi_mesh: Seed mesh (rows, cols, >=3) in voxel units
            survivors: Boolean (rows, cols) tracts eligible for selection
            mean_angle: Mean pennation angle per tract
            mean_curvature: Mean curvature per tract
            total_distance: Length per tract
            apo_area: Aponeurosis area element per seed
            region: Active region; defaults to the whole grid

        Returns:
            UniformSamplingResult
        """
        grid_shape = survivors.shape
        if region is None:
            region = ActiveRegion(0, grid_shape[0] - 1, 0, grid_shape[1] - 1)
        box = (region.rows, region.cols)

        mesh_mm = self.dwi_res.to_mm(np.asarray(roi_mesh, dtype=np.float64)[..., :3])[box]
        col_steps, row_steps = mesh_steps(mesh_mm)

        max_frequency = max_sampling_frequency(col_steps, row_steps)
        sampling_frequency = self.effective_frequency(max_frequency)
        sampling_period = 1.0 / sampling_frequency

        region_ids = np.full(grid_shape, -1, dtype=np.int64)
        region_ids[box] = assign_regions(col_steps, row_steps, sampling_period)

        properties = np.stack([mean_angle, mean_curvature, total_distance], axis=-1)
        eligible = survivors & np.all(np.isfinite(properties), axis=-1)

        unique_ids = np.unique(region_ids[box])
        regional_medians = np.zeros((len(unique_ids), 3))
        regional_area = np.zeros(len(unique_ids))
        represented = np.zeros(len(unique_ids), dtype=bool)
        selection = np.zeros(grid_shape, dtype=bool)

        for k, region_id in enumerate(unique_ids):
            in_region = region_ids == region_id
            regional_area[k] = np.sum(apo_area[in_region])

            members = np.argwhere(in_region & eligible)
            if len(members) < self.min_tracts:
                logger.debug(
                    f"Region {region_id}: {len(members)} tracts, "
                    f"fewer than {self.min_tracts}; no representative"
                )
                continue

            values = properties[members[:, 0], members[:, 1]]
            medians = np.median(values, axis=0)
            scores = similarity_scores(values, medians)
            if not np.any(np.isfinite(scores)):
                continue

            row, col = members[int(np.argmin(scores))]
            selection[row, col] = True
            regional_medians[k] = medians
            represented[k] = True

        # Whole-muscle values: regional medians weighted by regional area
        weights = regional_area * represented
        if np.sum(weights) > 0:
            mean_apo_props = (regional_medians * weights[:, None]).sum(axis=0) / np.sum(weights)
        else:
            logger.warning("No sampling region has enough tracts; whole-muscle summary set to zero")
            mean_apo_props = np.zeros(3)

        # Property order in the summary is curvature, pennation, length
        mean_apo_props = mean_apo_props[[1, 0, 2]]
        regional_medians = regional_medians[:, [1, 0, 2]]

        logger.info(
            f"Uniform sampling at {sampling_frequency:.4g} mm^-1: "
            f"{int(np.sum(represented))}/{len(unique_ids)} regions represented"
        )

        return UniformSamplingResult(
            selection=selection,
            region_ids=region_ids,
            requested_frequency=self.requested_frequency,
            sampling_frequency=sampling_frequency,
            max_frequency=max_frequency,
            regional_medians=regional_medians,
            regional_area=regional_area,
            represented=represented,
            mean_apo_props=mean_apo_props
        )
