"""
Mutual information estimation using k-NN (Kraskov-Stogbauer-Grassberger).

This module implements:
- the two KSG estimators of MI between multivariate continuous variables,
  as local (per-sample) values and as their average
- dynamic correlation exclusion (Theiler window) within observation sets
- scoring of new observations against a frozen reference set
- an experimental conditional entropy H(X|Y)

The estimators are:

    algorithm 1:  I(i) = psi(k) - psi(n_x+1) - psi(n_y+1) + psi(N)
    algorithm 2:  I(i) = psi(k) - 1/k - psi(n_x) - psi(n_y) + psi(N)

where, for algorithm 1, n_x(i) and n_y(i) count the points strictly closer
than eps(i), the max-norm distance to the k-th neighbour in the joint space;
for algorithm 2, they count the points closer than or at eps_x(i) (eps_y(i)),
the largest X (Y) distance to one of the same k neighbours.

References:
- Kraskov, A., Stogbauer, H., Grassberger, P. (2004) PRE 69, 066138
- Theiler, J. (1986) PRA 34, 2427
"""

import numpy as np
from dataclasses import dataclass
from enum import IntEnum
from scipy.special import digamma
from typing import Dict, List, NamedTuple, Optional, Union

from . import commons
from . import parallel
from .neighbours import Boundary, NeighbourIndex
from .observations import ObservationStore
from .surrogates import EmpiricalDistribution, compute_significance
from .tools import add_noise, digamma_table, gaussian_entropy, normalise, normalise_with, reorder


class Algorithm(IntEnum):
    """KSG estimator variant."""
    KSG1 = 1
    KSG2 = 2


class NeighbourCounts(NamedTuple):
    """
    Raw neighbour statistics of samples, before any digamma correction.

    radius is the distance to the k-th neighbour in the joint space;
    radius_x and radius_y are the radii used for counting in each marginal
    (equal to radius for algorithm 1).
    """
    radius: Union[float, np.ndarray]
    n_x: Union[int, np.ndarray]
    n_y: Union[int, np.ndarray]
    radius_x: Union[float, np.ndarray]
    radius_y: Union[float, np.ndarray]


def _local_values(algorithm: Algorithm, psi: np.ndarray, k: int,
                  n_x: np.ndarray, n_y: np.ndarray, n_total: int) -> np.ndarray:
    """Local MI values from neighbour counts, psi being a digamma table."""
    if algorithm == Algorithm.KSG1:
        return psi[k] - psi[n_x + 1] - psi[n_y + 1] + psi[n_total]
    return psi[k] - 1.0 / k - psi[n_x] - psi[n_y] + psi[n_total]


def _marginal_radius(points: np.ndarray, neighbours: np.ndarray, centres: np.ndarray) -> np.ndarray:
    """Largest max-norm distance from each centre to its neighbours, in one marginal space."""
    return np.max(np.abs(points[neighbours] - centres[:, None, :]), axis=(1, 2))


@dataclass(frozen=True, eq=False)
class ReferenceSnapshot:
    """
    Read-only view over preprocessed observations and their neighbour indices.

    It is built once per configuration and then shared by all worker
    threads, and used as the reference population when scoring new
    observations.
    """
    x: np.ndarray
    y: np.ndarray
    joint_index: NeighbourIndex
    x_index: NeighbourIndex
    y_index: NeighbourIndex
    k: int
    psi: np.ndarray
    means: Optional[np.ndarray] = None
    stds: Optional[np.ndarray] = None

    @property
    def n_points(self) -> int:
        return self.x.shape[0]

    @property
    def dim_x(self) -> int:
        return self.x.shape[1]

    def counts(self, algorithm: Algorithm, start: int, stop: int) -> NeighbourCounts:
        """Neighbour counts of the reference samples start..stop-1."""
        idx = np.arange(start, stop)
        dist, ind = self.joint_index.k_nearest(idx, self.k)
        radius = dist[:, -1]
        if algorithm == Algorithm.KSG1:
            n_x = self.x_index.count_within_radius(idx, radius, Boundary.STRICT)
            n_y = self.y_index.count_within_radius(idx, radius, Boundary.STRICT)
            return NeighbourCounts(radius, n_x, n_y, radius, radius)

        radius_x = _marginal_radius(self.x, ind, self.x[idx])
        radius_y = _marginal_radius(self.y, ind, self.y[idx])
        n_x = self.x_index.count_within_radius(idx, radius_x, Boundary.INCLUSIVE)
        n_y = self.y_index.count_within_radius(idx, radius_y, Boundary.INCLUSIVE)
        return NeighbourCounts(radius, n_x, n_y, radius_x, radius_y)

    def counts_for_new(self, algorithm: Algorithm, new_x: np.ndarray, new_y: np.ndarray) -> NeighbourCounts:
        """Neighbour counts of new (already preprocessed) samples among the reference samples."""
        dist, ind = self.joint_index.query_k_nearest(np.hstack([new_x, new_y]), self.k)
        radius = dist[:, -1]
        if algorithm == Algorithm.KSG1:
            n_x = self.x_index.query_count_within_radius(new_x, radius, Boundary.STRICT)
            n_y = self.y_index.query_count_within_radius(new_y, radius, Boundary.STRICT)
            return NeighbourCounts(radius, n_x, n_y, radius, radius)

        radius_x = _marginal_radius(self.x, ind, new_x)
        radius_y = _marginal_radius(self.y, ind, new_y)
        n_x = self.x_index.query_count_within_radius(new_x, radius_x, Boundary.INCLUSIVE)
        n_y = self.y_index.query_count_within_radius(new_y, radius_y, Boundary.INCLUSIVE)
        return NeighbourCounts(radius, n_x, n_y, radius_x, radius_y)

    def local_values(self, algorithm: Algorithm, start: int, stop: int) -> np.ndarray:
        c = self.counts(algorithm, start, stop)
        return _local_values(algorithm, self.psi, self.k, c.n_x, c.n_y, self.n_points)

    def local_values_for_new(self, algorithm: Algorithm, new_x: np.ndarray, new_y: np.ndarray) -> np.ndarray:
        c = self.counts_for_new(algorithm, new_x, new_y)
        # the new sample itself is part of the population it is compared in
        return _local_values(algorithm, self.psi, self.k, c.n_x, c.n_y, self.n_points + 1)

    def preprocess_new(self, new_x: np.ndarray, new_y: np.ndarray):
        """Normalise new samples with the statistics of the reference samples (no noise)."""
        if self.means is None:
            return new_x, new_y
        joint = normalise_with(np.hstack([new_x, new_y]), self.means, self.stds)
        return (np.ascontiguousarray(joint[:, :self.dim_x]),
                np.ascontiguousarray(joint[:, self.dim_x:]))


def build_snapshot(store: ObservationStore, k: int, normalise_data: bool = True,
                   noise_level: float = 0.0, noise_seed: Optional[int] = None,
                   exclusion_window: int = 0) -> ReferenceSnapshot:
    """
    Preprocess finalised observations and build their neighbour indices.

    Parameters
    ----------
    store : ObservationStore
        Finalised observations
    k : int
        Number of neighbours
    normalise_data : bool
        Normalise each column to zero mean and unit variance
    noise_level : float
        Amplitude of the uniform noise added after normalisation
    noise_seed : int or None
        Seed of the noise generator (None: not reproducible)
    exclusion_window : int
        Theiler window within observation sets

    Returns
    -------
    ReferenceSnapshot
    """
    dim_x = store.dim_x
    joint = np.hstack([store.x, store.y])
    means = stds = None
    if normalise_data:
        joint, means, stds = normalise(joint)
    if noise_level > 0:
        joint = add_noise(joint, noise_level, noise_seed)

    x = np.ascontiguousarray(joint[:, :dim_x])
    y = np.ascontiguousarray(joint[:, dim_x:])
    x.flags.writeable = False
    y.flags.writeable = False
    sets, times = store.set_indices, store.time_points
    joint_index = NeighbourIndex(joint, sets, times, exclusion_window)

    n_pts = joint.shape[0]
    comparable = joint_index.comparable_count(np.arange(n_pts))
    if k > comparable.min():
        raise ValueError(f"k={k} is too large: some points only have {int(comparable.min())} "
                         f"comparable neighbours (N={n_pts}, Theiler window={exclusion_window})")

    return ReferenceSnapshot(
        x=x,
        y=y,
        joint_index=joint_index,
        x_index=NeighbourIndex(x, sets, times, exclusion_window),
        y_index=NeighbourIndex(y, sets, times, exclusion_window),
        k=k,
        psi=digamma_table(n_pts + 1),
        means=means,
        stds=stds,
    )


def _squeeze(counts: NeighbourCounts) -> NeighbourCounts:
    return NeighbourCounts(float(counts.radius[0]), int(counts.n_x[0]), int(counts.n_y[0]),
                           float(counts.radius_x[0]), float(counts.radius_y[0]))


class KraskovMutualInfo:
    """
    Kraskov-Stogbauer-Grassberger estimator of the mutual information
    between multivariate continuous variables X and Y.

    Usage:
        calc = KraskovMutualInfo(algorithm=2, k=4)
        calc.initialise(dim_x, dim_y)
        calc.set_observations(x, y)
        mi = calc.compute_average_local_of_observations()
        local_mi = calc.compute_local_of_previous_observations()

    Properties (see set_property) are taken from the module defaults in
    commons, then from the constructor arguments.

    Parameters
    ----------
    algorithm : int, optional
        KSG algorithm, 1 or 2
    properties : dict, optional
        Property names and values
    **kwargs
        More properties, with '_' in place of '-' (e.g. add_noise=0)
    """

    def __init__(self, algorithm: Optional[int] = None,
                 properties: Optional[Dict] = None, **kwargs):
        self._props = commons.get_defaults()
        self._store = ObservationStore()
        self._snapshot: Optional[ReferenceSnapshot] = None
        self._locals: Optional[np.ndarray] = None
        self._last_average: Optional[float] = None
        self.debug = False

        if algorithm is not None:
            self.set_property(commons.PROP_ALGORITHM, algorithm)
        for key, value in dict(properties or {}, **kwargs).items():
            self.set_property(key, value)
        self._digamma_k = float(digamma(self.k))

    # ------------------------------------------------------------------
    # properties

    def set_property(self, key: str, value) -> None:
        """
        Set a property of the calculator.

        Parameters
        ----------
        key : str
            One of (case-insensitive):
            - "k": number of nearest neighbours (default 4)
            - "algorithm": 1 or 2 (default 1)
            - "normalise" / "normalize": normalise each column before
              searching neighbours (default true)
            - "add-noise": amplitude of the noise added to the data
              (default 1e-8, 0 for none)
            - "noise-seed": integer seed of the noise, or "unseeded"
            - "dyn-corr-excl-time": Theiler window (default 0)
            - "num-threads": number of threads, or "all"
        value : str or native value
        """
        name, value = commons.parse_property(key, value)
        if self._props[name] == value:
            return
        self._props[name] = value
        if name == commons.PROP_K:
            self._digamma_k = float(digamma(value))
        if name in commons.GEOMETRY_PROPERTIES:
            self._snapshot = None
        if name != commons.PROP_NUM_THREADS:
            self._locals = None
            self._last_average = None

    def get_property(self, key: str) -> str:
        """Return a property as a string."""
        name = commons.property_key(key)
        return commons.format_property(name, self._props[name])

    @property
    def properties(self) -> Dict:
        return dict(self._props)

    @property
    def k(self) -> int:
        return self._props[commons.PROP_K]

    @property
    def digamma_k(self) -> float:
        """psi(k), for callers recombining neighbour counts."""
        return self._digamma_k

    @property
    def algorithm(self) -> Algorithm:
        return Algorithm(self._props[commons.PROP_ALGORITHM])

    def set_debug(self, debug: bool) -> None:
        self.debug = bool(debug)

    # ------------------------------------------------------------------
    # observations

    def _invalidate(self):
        self._snapshot = None
        self._locals = None
        self._last_average = None

    def initialise(self, dim_x: Optional[int] = None, dim_y: Optional[int] = None) -> None:
        """
        Reset the calculator, keeping the properties.

        Parameters
        ----------
        dim_x, dim_y : int, optional
            Dimensions of x and y (default: those of the previous initialise)
        """
        if dim_x is None:
            dim_x = self._store.dim_x
        if dim_y is None:
            dim_y = self._store.dim_y
        if dim_x is None or dim_y is None:
            raise ValueError("dimensions of x and y must be given")
        self._store.initialise(dim_x, dim_y)
        self._invalidate()

    def set_observations(self, x, y, valid_x=None, valid_y=None) -> None:
        """Use x and y (one row per sample) as the single observation set.
        See ObservationStore.set_observations for the validity masks."""
        self._invalidate()
        self._store.set_observations(x, y, valid_x, valid_y)

    def start_add_observations(self) -> None:
        self._invalidate()
        self._store.start_add_observations()

    def add_observations(self, x, y, start: int = 0, length: Optional[int] = None) -> None:
        """Add rows [start, start+length) of x and y as a new observation set."""
        self._invalidate()
        self._store.add_observations(x, y, start, length)

    def finalise_add_observations(self) -> None:
        self._store.finalise_add_observations()

    def get_num_observations(self) -> int:
        return self._store.get_num_observations()

    def get_observation_set_indices(self) -> np.ndarray:
        return self._store.get_observation_set_indices()

    def get_observation_time_points(self) -> np.ndarray:
        return self._store.get_observation_time_points()

    @property
    def observations(self) -> ObservationStore:
        return self._store

    # ------------------------------------------------------------------
    # computations

    def _get_snapshot(self) -> ReferenceSnapshot:
        if not self._store.finalised:
            raise RuntimeError("observations must be set (or finalised) before computing")
        if self._snapshot is None:
            p = self._props
            self._snapshot = build_snapshot(
                self._store, p[commons.PROP_K],
                normalise_data=p[commons.PROP_NORMALISE],
                noise_level=p[commons.PROP_ADD_NOISE],
                noise_seed=p[commons.PROP_NOISE_SEED],
                exclusion_window=p[commons.PROP_DYN_CORR_EXCL_TIME])
            if self.debug or commons.get_verbosity() > 1:
                print(f"built neighbour indices on {self._snapshot.n_points} points "
                      f"(k={self.k}, Theiler={p[commons.PROP_DYN_CORR_EXCL_TIME]})")
        return self._snapshot

    def get_reference_snapshot(self) -> ReferenceSnapshot:
        """Read-only handle on the preprocessed observations and their indices."""
        return self._get_snapshot()

    def compute_average_local_of_observations(self) -> float:
        """
        Compute the MI estimate over all observations.

        The local values are kept and returned by
        compute_local_of_previous_observations().

        Returns
        -------
        float
            Average of the local MI values, in nats
        """
        snapshot = self._get_snapshot()
        algorithm = self.algorithm
        n_threads = self._props[commons.PROP_NUM_THREADS]

        local_values = parallel.evaluate(
            lambda start, stop: snapshot.local_values(algorithm, start, stop),
            snapshot.n_points, n_threads)
        average = float(np.mean(local_values))

        self._locals = local_values
        self._last_average = average

        commons._last_info['average'] = average
        commons._last_info['std'] = float(np.std(local_values))
        commons._last_info['n_errors'] = int(np.sum(~np.isfinite(local_values)))
        commons._last_info['n_eff'] = snapshot.n_points
        commons._last_info['n_sets'] = self._store.n_sets
        commons._last_info['Theiler'] = self._props[commons.PROP_DYN_CORR_EXCL_TIME]
        commons._last_info['n_threads'] = len(parallel.split_range(
            snapshot.n_points, commons.resolve_threads(n_threads)))

        if self.debug:
            print(f"algorithm {int(algorithm)}, k={self.k}: average MI = {average:.8f} "
                  f"from {snapshot.n_points} samples")
        return average

    def compute_local_of_previous_observations(self) -> np.ndarray:
        """Local MI values of the observations (computed if needed)."""
        if self._locals is None:
            self.compute_average_local_of_observations()
        return self._locals.copy()

    def get_last_average(self) -> Optional[float]:
        return self._last_average

    def _check_new(self, new_x, new_y):
        new_x = reorder(new_x, self._store.dim_x)
        new_y = reorder(new_y, self._store.dim_y)
        if new_x.shape[0] != new_y.shape[0]:
            raise ValueError(f"new x and y must have the same number of rows "
                             f"({new_x.shape[0]} != {new_y.shape[0]})")
        return new_x, new_y

    def compute_local_using_previous_observations(self, new_x, new_y) -> np.ndarray:
        """
        Compute local MI values of new samples, using the observations as
        the reference population.

        New samples are normalised with the statistics of the observations
        (no noise is added), and are only compared to the observations,
        never to each other. The observations are left untouched.

        Note: to reproduce the local values of the observations themselves,
        pass them again with k set to one more than in the original
        computation, since each of them will now find itself at distance 0.

        Parameters
        ----------
        new_x, new_y : array-like
            New samples, one row per sample

        Returns
        -------
        np.ndarray
            Local MI value of each new sample
        """
        snapshot = self._get_snapshot()
        new_x, new_y = snapshot.preprocess_new(*self._check_new(new_x, new_y))
        algorithm = self.algorithm
        return parallel.evaluate(
            lambda start, stop: snapshot.local_values_for_new(
                algorithm, new_x[start:stop], new_y[start:stop]),
            new_x.shape[0], self._props[commons.PROP_NUM_THREADS])

    def partial_compute_from_observations(self, t: int, n_points: int = 1,
                                          return_locals: bool = False):
        """
        Neighbour counts (or local values) of observations t..t+n_points-1.

        Returns
        -------
        NeighbourCounts or np.ndarray
            Counts are scalars when n_points is 1
        """
        snapshot = self._get_snapshot()
        if t < 0 or n_points < 1 or t + n_points > snapshot.n_points:
            raise ValueError(f"invalid range t={t}, n_points={n_points}")
        if return_locals:
            return snapshot.local_values(self.algorithm, t, t + n_points)
        counts = snapshot.counts(self.algorithm, t, t + n_points)
        return _squeeze(counts) if n_points == 1 else counts

    def partial_compute_from_new_observations(self, t: int, n_points: int, new_x, new_y,
                                              return_locals: bool = False):
        """
        Neighbour counts (or local values) of new samples t..t+n_points-1
        among the observations.

        new_x and new_y must already be preprocessed (e.g. normalised) the
        way the observations were.
        """
        snapshot = self._get_snapshot()
        new_x, new_y = self._check_new(new_x, new_y)
        if t < 0 or n_points < 1 or t + n_points > new_x.shape[0]:
            raise ValueError(f"invalid range t={t}, n_points={n_points}")
        x, y = new_x[t:t + n_points], new_y[t:t + n_points]
        if return_locals:
            return snapshot.local_values_for_new(self.algorithm, x, y)
        counts = snapshot.counts_for_new(self.algorithm, x, y)
        return _squeeze(counts) if n_points == 1 else counts

    def compute_average_conditional_entropy(self, entropy_x: Optional[float] = None) -> float:
        """
        Experimental estimate of the conditional entropy H(X|Y).

        H(X|Y) = H(X) - I(X;Y), where H(X) is not estimated by k-NN but
        taken as a reference value: entropy_x if given, else the entropy of
        a Gaussian with the covariance of the (preprocessed) X. This is only
        as good as that reference, e.g. for Gaussian or known marginals.

        Parameters
        ----------
        entropy_x : float, optional
            Known entropy of X, in nats (for the data as preprocessed)

        Returns
        -------
        float
            Estimate of H(X|Y) in nats
        """
        if self._last_average is None:
            self.compute_average_local_of_observations()
        if entropy_x is None:
            entropy_x = gaussian_entropy(self._get_snapshot().x)
        return entropy_x - self._last_average

    def compute_significance(self, n_permutations: int = 100,
                             permutations: Optional[List[np.ndarray]] = None,
                             seed: Optional[int] = None) -> EmpiricalDistribution:
        """
        Permutation test of the MI against surrogates where Y is shuffled.

        The average and local values of this calculator are not modified.

        Parameters
        ----------
        n_permutations : int
            Number of surrogates (ignored if permutations is given)
        permutations : list of np.ndarray, optional
            Explicit orderings of the observations to apply to Y
        seed : int, optional
            Seed of the generator drawing the permutations

        Returns
        -------
        EmpiricalDistribution
        """
        return compute_significance(self, n_permutations, permutations, seed)

    def surrogate_calculator(self, permutation: np.ndarray) -> "KraskovMutualInfo":
        """New calculator with the same properties and observation sets, and Y reordered."""
        store = self._store
        y = store.y[np.asarray(permutation)]
        calc = KraskovMutualInfo(properties=self._props)
        calc.initialise(store.dim_x, store.dim_y)
        start = 0
        for length in store.set_lengths:
            calc.add_observations(store.x, y, start, int(length))
            start += int(length)
        calc.finalise_add_observations()
        return calc


def compute_MI(x: np.ndarray, y: np.ndarray, k: Optional[int] = None,
               Theiler: Optional[int] = None, normalise: Optional[bool] = None,
               noise: Optional[float] = None, seed: Optional[int] = None,
               n_threads: Optional[int] = None,
               mask: Optional[np.ndarray] = None) -> List[float]:
    """
    Compute Mutual Information MI(x, y) with both KSG algorithms.

    Parameters
    ----------
    x, y : np.ndarray
        Signals of shape (n_pts, n_dims) or (n_pts,)
    k : int
        Number of neighbors (default from commons)
    Theiler : int
        Theiler window (default from commons)
    normalise : bool
        Normalise the columns first (default from commons)
    noise : float
        Amplitude of the noise added to the data (default from commons)
    seed : int
        Seed of the noise (default: unseeded)
    n_threads : int
        Number of threads (-1 for all)
    mask : np.ndarray, optional
        Validity mask, 1 for samples to use

    Returns
    -------
    List[float]
        [MI_algo1, MI_algo2]
    """
    calc = KraskovMutualInfo(algorithm=1, properties=_functional_properties(
        k, Theiler, normalise, noise, seed, n_threads))
    calc.set_observations(x, y, valid_x=mask)
    I1 = calc.compute_average_local_of_observations()
    # the neighbour indices are kept when only the algorithm changes
    calc.set_property(commons.PROP_ALGORITHM, 2)
    I2 = calc.compute_average_local_of_observations()
    return [I1, I2]


def compute_local_MI(x: np.ndarray, y: np.ndarray, algorithm: int = 1,
                     k: Optional[int] = None, Theiler: Optional[int] = None,
                     normalise: Optional[bool] = None, noise: Optional[float] = None,
                     seed: Optional[int] = None, n_threads: Optional[int] = None) -> np.ndarray:
    """
    Compute the local MI values of each sample of (x, y).

    Parameters are the same as compute_MI, plus the algorithm (1 or 2).

    Returns
    -------
    np.ndarray
        Local MI value of each sample
    """
    calc = KraskovMutualInfo(algorithm=algorithm, properties=_functional_properties(
        k, Theiler, normalise, noise, seed, n_threads))
    calc.set_observations(x, y)
    return calc.compute_local_of_previous_observations()


def _functional_properties(k, Theiler, normalise, noise, seed, n_threads) -> Dict:
    props = {
        commons.PROP_K: k,
        commons.PROP_DYN_CORR_EXCL_TIME: Theiler,
        commons.PROP_NORMALISE: normalise,
        commons.PROP_ADD_NOISE: noise,
        commons.PROP_NOISE_SEED: seed,
        commons.PROP_NUM_THREADS: n_threads,
    }
    return {key: value for key, value in props.items() if value is not None}
