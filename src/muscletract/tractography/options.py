"""
Options for Fiber Smoothing and Fiber Selection

Holds the image resolution descriptor used for voxel/mm conversion and the
validated option sets consumed by the smoother and the quality cascade.
Options can be built directly, from plain dictionaries, or from JSON
configuration files. Every validation failure raises ConfigurationError
before any per-tract work starts.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

VOXEL_UNITS = ('vx', 'voxel', 'voxels')
PHYSICAL_UNITS = ('mm', 'physical')


class ConfigurationError(ValueError):
    """Exception raised for missing or invalid option values"""
    pass


class DWIResolution:
    """
    Spatial resolution of the diffusion-weighted images

    The in-plane voxel width (field of view / matrix size) scales the row and
    column coordinates; the slice thickness scales the slice coordinate.
    """

    def __init__(self, field_of_view: float, matrix_size: float, slice_thickness: float):
        values = {
            'field_of_view': field_of_view,
            'matrix_size': matrix_size,
            'slice_thickness': slice_thickness,
        }
        for key, value in values.items():
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ConfigurationError(f"dwi_res {key} must be numeric, got {value!r}")
            if not np.isfinite(value) or value <= 0:
                raise ConfigurationError(f"dwi_res {key} must be positive, got {value}")

        self.field_of_view = float(field_of_view)
        self.matrix_size = float(matrix_size)
        self.slice_thickness = float(slice_thickness)

    @classmethod
    def from_value(cls, value: Union['DWIResolution', Sequence[float]]) -> 'DWIResolution':
        """Build from a (FOV, matrix size, slice thickness) triple"""
        if isinstance(value, DWIResolution):
            return value
        if value is None:
            raise ConfigurationError("dwi_res is required")
        triple = np.asarray(value, dtype=float).ravel()
        if triple.size != 3:
            raise ConfigurationError(
                f"dwi_res must have 3 elements (FOV, matrix size, slice thickness), got {triple.size}"
            )
        return cls(*triple)

    @property
    def inplane_scale(self) -> float:
        """Voxel width in mm"""
        return self.field_of_view / self.matrix_size

    @property
    def scale(self) -> np.ndarray:
        """mm per voxel for (row, column, slice)"""
        return np.array([self.inplane_scale, self.inplane_scale, self.slice_thickness])

    def to_mm(self, coords: np.ndarray) -> np.ndarray:
        """
        Convert voxel coordinates to mm

        Args:
            coords: Array whose last axis holds (row, column, slice)

        Returns:
            New array in mm
        """
        coords = np.asarray(coords, dtype=np.float64)
        if coords.shape[-1] != 3:
            raise ConfigurationError(f"Expected last axis of size 3, got shape {coords.shape}")
        return coords * self.scale

    def to_voxels(self, coords: np.ndarray) -> np.ndarray:
        """Convert mm coordinates to voxel units"""
        coords = np.asarray(coords, dtype=np.float64)
        if coords.shape[-1] != 3:
            raise ConfigurationError(f"Expected last axis of size 3, got shape {coords.shape}")
        return coords / self.scale

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.field_of_view, self.matrix_size, self.slice_thickness)

    def __repr__(self) -> str:
        return (f"DWIResolution(field_of_view={self.field_of_view}, "
                f"matrix_size={self.matrix_size}, slice_thickness={self.slice_thickness})")


def parse_tract_units(units: str) -> str:
    """Normalize a tract unit flag to 'vx' or 'mm'"""
    if not isinstance(units, str):
        raise ConfigurationError(f"tract_units must be a string, got {units!r}")
    key = units.strip().lower()
    if key in VOXEL_UNITS:
        return 'vx'
    if key in PHYSICAL_UNITS:
        return 'mm'
    raise ConfigurationError(f"Unexpected units for fiber tracts: {units!r} (use 'vx' or 'mm')")


def _require(config: Dict, key: str, section: str):
    if key not in config or config[key] is None:
        raise ConfigurationError(f"Missing required {section} option: '{key}'")
    return config[key]


def _as_float(value, name: str) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be numeric, got {value!r}")
    if not np.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value}")
    return value


class SmootherOptions:
    """
    Options for arc-length polynomial smoothing

    Args:
        dwi_res: (FOV mm, matrix size, slice thickness mm) or DWIResolution
        interpolation_step: Output spacing in fractions of a voxel width
        p_order: One polynomial order for all axes, or (Nr, Nc, Ns)
        tract_units: 'vx' if tracts are in voxels, 'mm' if in mm
    """

    def __init__(
        self,
        dwi_res: Union[DWIResolution, Sequence[float]],
        interpolation_step: float,
        p_order: Union[int, Sequence[int]],
        tract_units: str = 'vx'
    ):
        self.dwi_res = DWIResolution.from_value(dwi_res)

        self.interpolation_step = _as_float(interpolation_step, 'interpolation_step')
        if self.interpolation_step <= 0:
            raise ConfigurationError(
                f"interpolation_step must be positive, got {self.interpolation_step}"
            )

        self.p_order = self._parse_orders(p_order)
        self.tract_units = parse_tract_units(tract_units)

    @staticmethod
    def _parse_orders(p_order) -> Tuple[int, int, int]:
        orders = np.atleast_1d(np.asarray(p_order))
        if orders.size == 1:
            orders = np.repeat(orders, 3)
        if orders.size != 3:
            raise ConfigurationError(f"p_order must have 1 or 3 elements, got {orders.size}")

        parsed = []
        for order in orders:
            try:
                is_integer = float(order) == int(order)
            except (TypeError, ValueError):
                is_integer = False
            if not is_integer or int(order) < 1:
                raise ConfigurationError(f"Polynomial orders must be integers >= 1, got {order}")
            parsed.append(int(order))
        return tuple(parsed)

    @property
    def max_order(self) -> int:
        return max(self.p_order)

    @property
    def min_points(self) -> int:
        """Tracts need strictly more points than this to be fitted"""
        return 2 * self.max_order

    @classmethod
    def from_dict(cls, config: Dict) -> 'SmootherOptions':
        """Create options from a configuration dictionary"""
        if not isinstance(config, dict):
            raise ConfigurationError(f"Smoother options must be a mapping, got {type(config).__name__}")
        return cls(
            dwi_res=_require(config, 'dwi_res', 'smoother'),
            interpolation_step=_require(config, 'interpolation_step', 'smoother'),
            p_order=_require(config, 'p_order', 'smoother'),
            tract_units=_require(config, 'tract_units', 'smoother'),
        )

    def to_dict(self) -> Dict:
        return {
            'dwi_res': list(self.dwi_res.as_tuple()),
            'interpolation_step': self.interpolation_step,
            'p_order': list(self.p_order),
            'tract_units': self.tract_units,
        }


class GoodnessOptions:
    """
    Thresholds for the fiber quality cascade

    Args:
        min_distance: Minimum tract length in mm
        min_pennation: Lower (exclusive) mean pennation bound in degrees
        max_pennation: Upper (exclusive) mean pennation bound in degrees
        max_curvature: Upper (exclusive) mean curvature bound in m^-1
        sampling_frequency: Optional uniform sampling density in mm^-1
        dwi_res: Image resolution; required for uniform sampling
        propagation_axis: Coordinate index that must not decrease along tracts
    """

    def __init__(
        self,
        min_distance: float,
        min_pennation: float,
        max_pennation: float,
        max_curvature: float,
        sampling_frequency: Optional[float] = None,
        dwi_res: Optional[Union[DWIResolution, Sequence[float]]] = None,
        propagation_axis: int = 2
    ):
        self.min_distance = _as_float(min_distance, 'min_distance')
        if self.min_distance <= 0:
            raise ConfigurationError(f"min_distance must be positive, got {self.min_distance}")

        self.min_pennation = _as_float(min_pennation, 'min_pennation')
        self.max_pennation = _as_float(max_pennation, 'max_pennation')
        if self.min_pennation >= self.max_pennation:
            raise ConfigurationError(
                f"min_pennation ({self.min_pennation}) must be below "
                f"max_pennation ({self.max_pennation})"
            )

        self.max_curvature = _as_float(max_curvature, 'max_curvature')

        if sampling_frequency is not None:
            sampling_frequency = _as_float(sampling_frequency, 'sampling_frequency')
            if sampling_frequency <= 0:
                raise ConfigurationError(
                    f"sampling_frequency must be positive, got {sampling_frequency}"
                )
        self.sampling_frequency = sampling_frequency

        self.dwi_res = DWIResolution.from_value(dwi_res) if dwi_res is not None else None
        if self.sampling_frequency is not None and self.dwi_res is None:
            raise ConfigurationError("dwi_res is required when sampling_frequency is set")

        if propagation_axis not in (0, 1, 2):
            raise ConfigurationError(f"propagation_axis must be 0, 1 or 2, got {propagation_axis}")
        self.propagation_axis = int(propagation_axis)

    @property
    def uniform_sampling(self) -> bool:
        return self.sampling_frequency is not None

    @classmethod
    def from_dict(cls, config: Dict) -> 'GoodnessOptions':
        """Create options from a configuration dictionary"""
        if not isinstance(config, dict):
            raise ConfigurationError(f"Goodness options must be a mapping, got {type(config).__name__}")
        return cls(
            min_distance=_require(config, 'min_distance', 'goodness'),
            min_pennation=_require(config, 'min_pennation', 'goodness'),
            max_pennation=_require(config, 'max_pennation', 'goodness'),
            max_curvature=_require(config, 'max_curvature', 'goodness'),
            sampling_frequency=config.get('sampling_frequency'),
            dwi_res=config.get('dwi_res'),
            propagation_axis=config.get('propagation_axis', 2),
        )

    def to_dict(self) -> Dict:
        return {
            'min_distance': self.min_distance,
            'min_pennation': self.min_pennation,
            'max_pennation': self.max_pennation,
            'max_curvature': self.max_curvature,
            'sampling_frequency': self.sampling_frequency,
            'dwi_res': list(self.dwi_res.as_tuple()) if self.dwi_res is not None else None,
            'propagation_axis': self.propagation_axis,
        }


def coerce_options(options, options_class):
    """Accept an options instance or a dict"""
    if isinstance(options, options_class):
        return options
    if isinstance(options, dict):
        return options_class.from_dict(options)
    raise ConfigurationError(
        f"Expected {options_class.__name__} or dict, got {type(options).__name__}"
    )


def load_config(config_path: Union[str, Path]) -> Dict:
    """
    Read a JSON configuration file

    A shared top-level "dwi_res" is copied into the "smoother" and
    "goodness" sections when they do not define their own.
    """
    config_path = Path(config_path)
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}")

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration {config_path} must contain a JSON object")

    shared_res = config.get('dwi_res')
    for section in ('smoother', 'goodness'):
        if section not in config:
            continue
        if not isinstance(config[section], dict):
            raise ConfigurationError(
                f"Configuration section '{section}' in {config_path} must be a JSON object, "
                f"got {type(config[section]).__name__}"
            )
        if shared_res is not None:
            config[section].setdefault('dwi_res', shared_res)

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_options(config_path: Union[str, Path], section: str):
    """
    Load one option set from a JSON configuration file

    Args:
        config_path: JSON file path
        section: 'smoother' or 'goodness'; a file without sections is
            read as a single flat option set

    Returns:
        SmootherOptions or GoodnessOptions
    """
    config = load_config(config_path)
    options_class = {'smoother': SmootherOptions, 'goodness': GoodnessOptions}.get(section)
    if options_class is None:
        raise ConfigurationError(f"Unknown configuration section: {section}")
    return options_class.from_dict(config.get(section, config))
