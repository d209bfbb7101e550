"""
Masking utilities for handling missing or invalid observations.

Masks are 1D arrays of type int8 with one entry per observation (row);
1 marks a valid observation.
"""

import numpy as np
from typing import List, Optional, Tuple


def mask_finite(x: np.ndarray) -> np.ndarray:
    """
    Create a mask of the observations (rows) whose values are all finite.

    Parameters
    ----------
    x : np.ndarray
        Data array of shape (n_pts,) or (n_pts, n_dims)

    Returns
    -------
    np.ndarray
        Mask of type int8, where 1 indicates a fully finite row
    """
    return mask_clean(np.isfinite(x))


def mask_clean(x: np.ndarray) -> np.ndarray:
    """
    Make any array a compatible mask for the code.

    At any given time t, the resulting mask is 1 only if the mask is
    non-zero in every dimension at that time (AND logic).

    Parameters
    ----------
    x : np.ndarray
        Mask array of shape (n_pts,) or (n_pts, n_dims)

    Returns
    -------
    np.ndarray
        1D mask of type int8
    """
    y = np.asarray(x) != 0
    if y.ndim > 1:
        y = y.reshape(y.shape[0], -1).all(axis=1)
    return y.astype('i1').flatten()


def combine(valid_x: Optional[np.ndarray], valid_y: Optional[np.ndarray],
            n_pts: int) -> np.ndarray:
    """
    Combine the validity masks of x and y (None means all valid).

    Parameters
    ----------
    valid_x, valid_y : np.ndarray or None
        Masks for x and y
    n_pts : int
        Number of observations

    Returns
    -------
    np.ndarray
        1D mask of type int8, 1 where both x and y are valid
    """
    mask = np.ones(n_pts, dtype='i1')
    for valid in (valid_x, valid_y):
        if valid is None:
            continue
        valid = mask_clean(valid)
        if valid.size != n_pts:
            raise ValueError(f"mask has {valid.size} entries, expected {n_pts}")
        mask = mask * valid
    return mask


def valid_runs(mask: np.ndarray) -> List[Tuple[int, int]]:
    """
    Find the contiguous runs of valid observations.

    Parameters
    ----------
    mask : np.ndarray
        1D mask, non-zero for valid observations

    Returns
    -------
    List[Tuple[int, int]]
        (start, length) of each run, in time order
    """
    m = np.concatenate(([0], mask_clean(mask), [0])).astype(np.int8)
    edges = np.diff(m)
    starts = np.flatnonzero(edges == 1)
    stops = np.flatnonzero(edges == -1)
    return [(int(a), int(b - a)) for a, b in zip(starts, stops)]
