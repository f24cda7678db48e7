"""
Tractography Post-Processing Module

Smoothing and quality selection of muscle fiber tracts.

Main components:
- FiberSmoother: Arc-length polynomial fitting and resampling of tracts
- FiberGoodness: Quality cascade with neighborhood outlier rejection
- UniformSampler: Uniform spatial sampling across the aponeurosis mesh
- SelectionReport: JSON and text audit reports
"""

from .options import (
    ConfigurationError,
    DWIResolution,
    GoodnessOptions,
    SmootherOptions,
    load_config,
    load_options
)
from .grid import ActiveRegion, GridShapeError
from .smoother import FiberSmoother, SmoothingResult, smooth_fibers
from .goodness import FiberGoodness, GoodnessResult, select_fibers, area_weighted_mean
from .uniform_sampling import UniformSampler, UniformSamplingResult
from .quality_report import SelectionReport

__all__ = [
    'ConfigurationError',
    'DWIResolution',
    'GoodnessOptions',
    'SmootherOptions',
    'load_config',
    'load_options',
    'ActiveRegion',
    'GridShapeError',
    'FiberSmoother',
    'SmoothingResult',
    'smooth_fibers',
    'FiberGoodness',
    'GoodnessResult',
    'select_fibers',
    'area_weighted_mean',
    'UniformSampler',
    'UniformSamplingResult',
    'SelectionReport'
]
