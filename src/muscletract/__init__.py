"""
MuscleTract: smoothing and quality selection of muscle DTI fiber tracts
"""

__version__ = "0.1.0"

from .tractography import (
    ConfigurationError,
    DWIResolution,
    FiberGoodness,
    FiberSmoother,
    GoodnessOptions,
    SmootherOptions,
    select_fibers,
    smooth_fibers
)

__all__ = [
    'ConfigurationError',
    'DWIResolution',
    'FiberGoodness',
    'FiberSmoother',
    'GoodnessOptions',
    'SmootherOptions',
    'select_fibers',
    'smooth_fibers'
]
