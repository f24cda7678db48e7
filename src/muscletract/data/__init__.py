"""
MuscleTract Data Module

Reading and writing of tract grids and quantification arrays.
"""

from .loader import (
    TractDataLoader,
    DataLoadError,
    load_arrays,
    save_arrays,
    SMOOTHING_VARIABLES,
    SELECTION_VARIABLES
)

__all__ = [
    'TractDataLoader',
    'DataLoadError',
    'load_arrays',
    'save_arrays',
    'SMOOTHING_VARIABLES',
    'SELECTION_VARIABLES',
]
