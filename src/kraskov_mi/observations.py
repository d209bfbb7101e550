"""
Storage of paired (x, y) observations, split into observation sets.

An observation set is a contiguous, time-ordered run of samples added in
one call (e.g. one trial). Samples of a later set always come after all
samples of earlier sets. Each sample knows the set it belongs to and its
time point within that set, which is what the dynamic correlation
exclusion (Theiler window) works on.
"""

import numpy as np
from typing import List, Optional

from . import commons
from .masks import combine, valid_runs
from .tools import reorder


class ObservationStore:
    """
    Holds joint samples of X (dimension dim_x) and Y (dimension dim_y).

    Usage:
        store.initialise(dim_x, dim_y)
        store.add_observations(x1, y1)
        store.add_observations(x2, y2, start=10, length=50)
        store.finalise_add_observations()
    or simply store.set_observations(x, y).
    """

    def __init__(self):
        self.dim_x = None
        self.dim_y = None
        self._reset()

    def _reset(self):
        self._x_sets: List[np.ndarray] = []
        self._y_sets: List[np.ndarray] = []
        self._starts: List[int] = []
        self._lengths = None
        self._finalised = False
        self.x = None
        self.y = None
        self.set_indices = None
        self.time_points = None

    @property
    def initialised(self) -> bool:
        return self.dim_x is not None

    @property
    def finalised(self) -> bool:
        return self._finalised

    def initialise(self, dim_x: int, dim_y: int) -> None:
        """
        Reset all observations and bind the dimensions of x and y.

        Parameters
        ----------
        dim_x, dim_y : int
            Number of columns of x and y (both must be >= 1)
        """
        for name, d in (('dim_x', dim_x), ('dim_y', dim_y)):
            if isinstance(d, bool) or not isinstance(d, (int, np.integer)) or d <= 0:
                raise ValueError(f"{name} must be a positive integer, got {d!r}")
        self.dim_x = int(dim_x)
        self.dim_y = int(dim_y)
        self._reset()

    def start_add_observations(self) -> None:
        """Discard any observations added since the last initialise()."""
        if not self.initialised:
            raise RuntimeError("initialise() must be called before adding observations")
        self._reset()

    def add_observations(self, x, y, start: int = 0, length: Optional[int] = None) -> None:
        """
        Add a new observation set made of rows [start, start+length) of x and y.

        Parameters
        ----------
        x : array-like
            Source of shape (n_pts, dim_x), or (n_pts,) if dim_x is 1
        y : array-like
            Destination of shape (n_pts, dim_y), or (n_pts,) if dim_y is 1
        start : int
            First row to use; it is also the time label of the set
        length : int, optional
            Number of rows to use (default: all rows from start)
        """
        if not self.initialised:
            raise RuntimeError("initialise() must be called before adding observations")
        if self._finalised:
            raise RuntimeError("observations were already finalised; call initialise() to start again")

        x = reorder(x, self.dim_x)
        y = reorder(y, self.dim_y)
        if x.shape[0] != y.shape[0]:
            raise ValueError(f"x and y must have the same number of rows ({x.shape[0]} != {y.shape[0]})")

        n_pts = x.shape[0]
        if length is None:
            length = n_pts - start
        if start < 0 or length <= 0 or start + length > n_pts:
            raise ValueError(f"invalid range start={start}, length={length} for {n_pts} observations")

        self._x_sets.append(x[start:start + length].copy())
        self._y_sets.append(y[start:start + length].copy())
        self._starts.append(int(start))

    def finalise_add_observations(self) -> None:
        """
        Lock the observations and build the set-index and time-point tables.

        Calling it again once finalised does nothing.
        """
        if self._finalised:
            return
        if not self._x_sets:
            raise RuntimeError("no observations were added")

        lengths = np.array([len(s) for s in self._x_sets], dtype=np.intp)
        self.x = np.concatenate(self._x_sets, axis=0)
        self.y = np.concatenate(self._y_sets, axis=0)
        self.set_indices = np.repeat(np.arange(len(lengths), dtype=np.intp), lengths)

        # time point = start label of the set + offset inside the set
        first = np.concatenate(([0], np.cumsum(lengths)[:-1]))
        offsets = np.arange(self.x.shape[0], dtype=np.intp) - np.repeat(first, lengths)
        self.time_points = offsets + np.repeat(np.array(self._starts, dtype=np.intp), lengths)

        self._x_sets = []
        self._y_sets = []
        self._lengths = lengths
        self._finalised = True

        if commons.get_verbosity() > 1:
            print(f"finalised {self.x.shape[0]} observations in {len(lengths)} set(s)")

    def set_observations(self, x, y, valid_x=None, valid_y=None) -> None:
        """
        Use x and y as the only observation set.

        If validity masks are given, only observations valid in both x and y
        are kept, and each contiguous run of valid observations becomes its
        own observation set.

        Parameters
        ----------
        x, y : array-like
            Observations, one row per sample
        valid_x, valid_y : array-like, optional
            Validity masks (non-zero for valid samples)
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if not self.initialised:
            self.initialise(reorder(x).shape[1], reorder(y).shape[1])
        else:
            self.start_add_observations()

        if valid_x is None and valid_y is None:
            self.add_observations(x, y)
        else:
            n_pts = reorder(x).shape[0]
            runs = valid_runs(combine(valid_x, valid_y, n_pts))
            for start, length in runs:
                self.add_observations(x, y, start, length)
        self.finalise_add_observations()

    def _check_finalised(self):
        if not self._finalised:
            raise RuntimeError("observations have not been finalised")

    @property
    def n_observations(self) -> int:
        self._check_finalised()
        return self.x.shape[0]

    @property
    def n_sets(self) -> int:
        self._check_finalised()
        return len(self._lengths)

    @property
    def set_start_times(self) -> np.ndarray:
        self._check_finalised()
        return np.array(self._starts, dtype=np.intp)

    @property
    def set_lengths(self) -> np.ndarray:
        self._check_finalised()
        return self._lengths.copy()

    def get_num_observations(self) -> int:
        return self.n_observations

    def get_observation_set_indices(self) -> np.ndarray:
        self._check_finalised()
        return self.set_indices.copy()

    def get_observation_time_points(self) -> np.ndarray:
        self._check_finalised()
        return self.time_points.copy()
