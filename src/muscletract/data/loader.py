#!/usr/bin/env python
"""
Data Loader Module for MuscleTract

Reads the arrays exchanged with the tracking and quantification steps from
MATLAB .mat files (as written by the MuscleDTI toolbox) or NumPy .npz
archives, and writes results back in either format.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import numpy as np
from scipy import io as sio


logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = ('.mat', '.npz')

# Variables needed by each processing step
SMOOTHING_VARIABLES = ('fiber_all',)
SELECTION_VARIABLES = (
    'angle_list',
    'distance_list',
    'curvature_list',
    'n_points',
    'roi_flag',
    'apo_area',
)


class DataLoadError(Exception):
    """Exception raised for errors while reading or writing tract data"""
    pass


class TractDataLoader:
    """
    Loader for fiber-tract grids and their quantification arrays

    Features:
    - MATLAB .mat input through scipy.io
    - NumPy .npz input without pickled objects
    - Check for the variables a processing step requires
    """

    def __init__(self, squeeze: bool = False):
        """
        Initialize loader

        Parameters
        ----------
        squeeze : bool
            Remove singleton dimensions from MATLAB arrays (default: False,
            so a 1-row seed grid keeps its grid shape)
        """
        self.squeeze = squeeze

    def load(
        self,
        path: Union[str, Path],
        required: Iterable[str] = ()
    ) -> Dict[str, np.ndarray]:
        """
        Load all arrays from a file

        Parameters
        ----------
        path : str or Path
            Input .mat or .npz file
        required : iterable of str
            Variable names that must be present

        Returns
        -------
        dict
            Arrays keyed by variable name

        Raises
        ------
        DataLoadError
            If the file is missing, unreadable, of an unsupported type, or
            lacks a required variable
        """
        path = Path(path)
        if not path.exists():
            raise DataLoadError(f"File not found: {path}")

        suffix = path.suffix.lower()
        logger.info(f"Loading tract data from {path}")

        try:
            if suffix == '.mat':
                contents = sio.loadmat(str(path), squeeze_me=self.squeeze)
                arrays = {
                    key: np.asarray(value) for key, value in contents.items()
                    if not key.startswith('__')
                }
            elif suffix == '.npz':
                with np.load(path, allow_pickle=False) as contents:
                    arrays = {key: contents[key] for key in contents.files}
            else:
                raise DataLoadError(
                    f"Unsupported file type '{path.suffix}' (expected one of {SUPPORTED_SUFFIXES})"
                )
        except DataLoadError:
            raise
        except Exception as e:
            raise DataLoadError(f"Failed to read {path}: {e}")

        missing = [name for name in required if name not in arrays]
        if missing:
            raise DataLoadError(f"{path} is missing required variables: {', '.join(missing)}")

        logger.debug(f"Loaded variables: {sorted(arrays)}")
        return arrays

    def save(self, path: Union[str, Path], arrays: Dict[str, Optional[np.ndarray]]) -> Path:
        """
        Save arrays to a .mat or .npz file

        Parameters
        ----------
        path : str or Path
            Output file; the suffix selects the format
        arrays : dict
            Arrays keyed by variable name; None values are skipped

        Returns
        -------
        Path
            The written file
        """
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            raise DataLoadError(
                f"Unsupported file type '{path.suffix}' (expected one of {SUPPORTED_SUFFIXES})"
            )

        data = {}
        for key, value in arrays.items():
            if value is None:
                continue
            value = np.asarray(value)
            if value.dtype == bool:
                value = value.astype(np.uint8)
            data[key] = value

        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            if suffix == '.mat':
                sio.savemat(str(path), data, do_compression=True)
            else:
                np.savez_compressed(path, **data)
        except Exception as e:
            raise DataLoadError(f"Failed to write {path}: {e}")

        logger.info(f"Saved {len(data)} arrays to {path}")
        return path


def load_arrays(path: Union[str, Path], required: Iterable[str] = ()) -> Dict[str, np.ndarray]:
    """Load arrays from a .mat or .npz file"""
    return TractDataLoader().load(path, required=required)


def save_arrays(path: Union[str, Path], arrays: Dict[str, Optional[np.ndarray]]) -> Path:
    """Save arrays to a .mat or .npz file"""
    return TractDataLoader().save(path, arrays)
