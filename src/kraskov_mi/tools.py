"""
Data processing utilities for mutual information estimation.

Observations are stored as arrays of shape (n_pts, n_dims): one row per
observation, one column per dimension.
"""

import numpy as np
from scipy.special import digamma
from typing import Optional, Tuple
import warnings


def reorder(x, n_dims: int = -1) -> np.ndarray:
    """
    Make any array-like compatible with the estimators.

    Ensures observations are rows, values are float64 and data is
    C-contiguous. A 1D array is a univariate signal (one column), unless
    n_dims > 1 and it holds exactly n_dims values: it is then a single
    multivariate observation (one row).

    Parameters
    ----------
    x : array-like
        Data of shape (n_pts,) or (n_pts, n_dims)
    n_dims : int
        Expected number of columns (-1 to accept any)

    Returns
    -------
    np.ndarray
        Well-aligned array of shape (n_pts, n_dims)
    """
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 1 and n_dims > 1 and x.size == n_dims:
        # a single multivariate observation
        x = x.reshape((1, n_dims))
    elif x.ndim == 1:
        x = x.reshape((x.size, 1))
    elif x.ndim != 2:
        raise ValueError(f"observations must be 1D or 2D, got {x.ndim} dimensions")

    if n_dims > 0 and x.shape[1] != n_dims:
        raise ValueError(f"expected {n_dims} columns, got {x.shape[1]}")

    if x.flags['C_CONTIGUOUS']:
        return x
    else:
        return x.copy()


def normalise(x: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Normalise each column to zero mean and unit standard deviation.

    A column with zero standard deviation is left unchanged.

    Parameters
    ----------
    x : np.ndarray
        Data of shape (n_pts, n_dims)

    Returns
    -------
    Tuple[np.ndarray, np.ndarray, np.ndarray]
        (normalised data, means, stds). For a constant column the mean is
        reported as 0 and the std as 1, so normalise_with() leaves it raw too.
    """
    x = reorder(x)
    means = np.mean(x, axis=0)
    stds = np.std(x, axis=0, ddof=1) if x.shape[0] > 1 else np.zeros(x.shape[1])

    constant = ~(stds > 0)
    if np.any(constant):
        warnings.warn(f"column(s) {np.flatnonzero(constant).tolist()} have zero "
                      "standard deviation and are not normalised", RuntimeWarning)
        means = np.where(constant, 0.0, means)
        stds = np.where(constant, 1.0, stds)

    return normalise_with(x, means, stds), means, stds


def normalise_with(x: np.ndarray, means: np.ndarray, stds: np.ndarray) -> np.ndarray:
    """
    Normalise data using previously computed column means and stds.

    Parameters
    ----------
    x : np.ndarray
        Data of shape (n_pts, n_dims)
    means, stds : np.ndarray
        Column statistics, as returned by normalise()

    Returns
    -------
    np.ndarray
        Normalised copy of the data
    """
    return (reorder(x, len(means)) - means) / stds


def add_noise(x: np.ndarray, level: float, seed: Optional[int] = None) -> np.ndarray:
    """
    Add uniform noise in [-level/2, level/2] to every coordinate.

    Parameters
    ----------
    x : np.ndarray
        Data of shape (n_pts, n_dims)
    level : float
        Amplitude of the noise (0 returns a copy of the data)
    seed : int or None
        Seed of the generator. None draws fresh entropy from the OS,
        so results are not reproducible.

    Returns
    -------
    np.ndarray
        Noisy copy of the data
    """
    x = reorder(x)
    if level < 0:
        raise ValueError("noise level must be >= 0")
    if level == 0:
        return x.copy()
    rng = np.random.default_rng(seed)
    return x + rng.uniform(-level / 2, level / 2, size=x.shape)


def digamma_table(n: int) -> np.ndarray:
    """
    Tabulate the digamma function on integers.

    Parameters
    ----------
    n : int
        Largest argument needed

    Returns
    -------
    np.ndarray
        psi of size n+1, with psi[m] = digamma(m) for 1 <= m <= n, psi[0] = NaN
    """
    psi = np.empty(n + 1, dtype=np.float64)
    psi[0] = np.nan
    psi[1:] = digamma(np.arange(1, n + 1, dtype=np.float64))
    return psi


def gaussian_entropy(x: np.ndarray) -> float:
    """
    Compute entropy assuming Gaussian distribution.

    H = 0.5 * log((2*pi*e)^d * det(Cov))

    Parameters
    ----------
    x : np.ndarray
        Data of shape (n_pts, n_dims)

    Returns
    -------
    float
        Entropy estimate in nats (NaN if the covariance is degenerate)
    """
    x = reorder(x)
    n_pts, n_dims = x.shape

    if n_pts <= n_dims:
        return np.nan

    cov = np.atleast_2d(np.cov(x, rowvar=False))
    det = np.linalg.det(cov)

    if det <= 0:
        return np.nan

    return 0.5 * n_dims * (1 + np.log(2 * np.pi)) + 0.5 * np.log(det)
