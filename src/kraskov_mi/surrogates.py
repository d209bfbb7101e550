"""
Surrogate data and permutation significance testing.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional

from . import commons


def surrogate(x: np.ndarray, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Create a surrogate version of the data by shuffling it in time.

    Rows are permuted as a whole, so the joint coordinates of each sample
    are preserved while its relation to any other signal is destroyed.

    Parameters
    ----------
    x : np.ndarray
        Signal of shape (n_pts, n_dims) or (n_pts,)
    rng : np.random.Generator, optional
        Random generator (default: a fresh, unseeded one)

    Returns
    -------
    np.ndarray
        Surrogate data with same shape as input
    """
    if rng is None:
        rng = np.random.default_rng()
    x = np.asarray(x)
    return x[rng.permutation(x.shape[0])].copy()


@dataclass
class EmpiricalDistribution:
    """Value of a statistic against its distribution under the null hypothesis."""
    actual_value: float
    surrogate_values: np.ndarray = field(repr=False)

    @property
    def n_surrogates(self) -> int:
        return len(self.surrogate_values)

    @property
    def p_value(self) -> float:
        """Fraction of surrogates at least as large as the actual value."""
        if self.n_surrogates == 0:
            return np.nan
        return float(np.mean(self.surrogate_values >= self.actual_value))

    @property
    def mean(self) -> float:
        return float(np.mean(self.surrogate_values))

    @property
    def std(self) -> float:
        return float(np.std(self.surrogate_values))

    @property
    def z_score(self) -> float:
        std = self.std
        if std == 0:
            return np.nan
        return (self.actual_value - self.mean) / std


def compute_significance(calc, n_permutations: int = 100,
                         permutations: Optional[List[np.ndarray]] = None,
                         seed: Optional[int] = None) -> EmpiricalDistribution:
    """
    Test the MI of a calculator against surrogates where Y is reordered.

    Each surrogate is computed by a new calculator with the same properties
    and observation sets, so the calculator under test keeps its stored
    average and local values.

    Parameters
    ----------
    calc : KraskovMutualInfo
        Calculator with observations set
    n_permutations : int
        Number of surrogates (ignored if permutations is given)
    permutations : list of np.ndarray, optional
        Explicit orderings of the observations
    seed : int, optional
        Seed for drawing the orderings

    Returns
    -------
    EmpiricalDistribution
    """
    actual = calc.get_last_average()
    if actual is None:
        actual = calc.compute_average_local_of_observations()

    n_pts = calc.get_num_observations()
    if permutations is None:
        if n_permutations < 1:
            raise ValueError(f"number of permutations must be >= 1, got {n_permutations}")
        # each ordering is a surrogate of the time indices
        rng = np.random.default_rng(seed)
        permutations = [surrogate(np.arange(n_pts), rng) for _ in range(n_permutations)]

    # surrogate runs must not replace the info of the actual computation
    info = dict(commons._last_info)
    values = np.empty(len(permutations), dtype=np.float64)
    for i, perm in enumerate(permutations):
        perm = np.asarray(perm, dtype=np.intp)
        if perm.shape != (n_pts,) or not np.array_equal(np.sort(perm), np.arange(n_pts)):
            raise ValueError(f"permutation {i} is not a permutation of {n_pts} observations")
        values[i] = calc.surrogate_calculator(perm).compute_average_local_of_observations()

    commons._last_info.update(info)

    result = EmpiricalDistribution(actual, values)
    if commons.get_verbosity() > 1:
        print(f"MI = {actual:.6f}, surrogates {result.mean:.6f} +/- {result.std:.6f}, "
              f"p = {result.p_value:.4f} ({result.n_surrogates} permutations)")
    return result
