"""
Nearest-neighbour searches under the max-norm, with dynamic correlation
exclusion.

A NeighbourIndex wraps a scipy cKDTree built on a set of points and the
observation-set metadata of these points. When a point of the index is
queried, the point itself and all points of the same observation set whose
time points are within the exclusion (Theiler) window of it are ignored.
Points from other sets are never excluded.

Points that are not part of the index (new observations) are queried with
the query_* methods, which apply no exclusion at all.
"""

import numpy as np
from enum import Enum
from scipy.spatial import cKDTree
from typing import Optional, Tuple


class Boundary(Enum):
    """How a point lying exactly at the radius is counted."""
    INCLUSIVE = 'inclusive'     # distance <= radius
    STRICT = 'strict'           # distance < radius


def _strict_radius(radius: np.ndarray) -> np.ndarray:
    """Largest float below the radius, so that d <= r' is the same as d < r."""
    return np.where(radius > 0, np.nextafter(radius, -np.inf), 0.0)


class NeighbourIndex:
    """
    Spatial index over fixed-dimension vectors, using the max-norm.

    Parameters
    ----------
    points : np.ndarray
        Data of shape (n_pts, n_dims)
    set_indices : np.ndarray, optional
        Observation set of each point, non-decreasing (default: a single set)
    time_points : np.ndarray, optional
        Time point of each point within its set, increasing by 1 inside a
        set (default: 0..n_pts-1)
    exclusion_window : int
        Theiler window; 0 only excludes the point itself
    leafsize : int
        Leaf size of the tree
    """

    def __init__(self, points: np.ndarray, set_indices: Optional[np.ndarray] = None,
                 time_points: Optional[np.ndarray] = None,
                 exclusion_window: int = 0, leafsize: int = 16):
        self.points = np.ascontiguousarray(points, dtype=np.float64)
        if self.points.ndim != 2:
            raise ValueError("points must be of shape (n_pts, n_dims)")
        self.n_points, self.n_dims = self.points.shape
        if exclusion_window < 0:
            raise ValueError("exclusion window must be >= 0")
        self.exclusion_window = int(exclusion_window)

        if set_indices is None:
            set_indices = np.zeros(self.n_points, dtype=np.intp)
        if time_points is None:
            time_points = np.arange(self.n_points, dtype=np.intp)
        self.set_indices = np.asarray(set_indices, dtype=np.intp)
        self.time_points = np.asarray(time_points, dtype=np.intp)
        if self.set_indices.shape != (self.n_points,) or self.time_points.shape != (self.n_points,):
            raise ValueError("set_indices and time_points must have one entry per point")
        # sets are contiguous runs with consecutive time points
        same_set = self.set_indices[1:] == self.set_indices[:-1]
        if np.any(np.diff(self.set_indices) < 0):
            raise ValueError("set_indices must be non-decreasing (sets cannot be interleaved)")
        if np.any(np.diff(self.time_points)[same_set] != 1):
            raise ValueError("time_points must increase by 1 within each set")

        self._tree = cKDTree(self.points, leafsize=leafsize)
        self._excluded = self._count_excluded()

    def _count_excluded(self) -> np.ndarray:
        # sets are contiguous and their time points consecutive
        _, first, lengths = np.unique(self.set_indices, return_index=True, return_counts=True)
        first = np.repeat(first, lengths)
        lengths = np.repeat(lengths, lengths)
        offset = np.arange(self.n_points) - first
        w = self.exclusion_window
        return (np.minimum(offset, w) + np.minimum(lengths - 1 - offset, w) + 1).astype(np.intp)

    def excluded_count(self, idx) -> np.ndarray:
        """Number of points ignored when querying each indexed point (itself included)."""
        return self._excluded[np.atleast_1d(idx)]

    def comparable_count(self, idx) -> np.ndarray:
        """Number of points each indexed point can be compared to."""
        return self.n_points - self.excluded_count(idx)

    def _is_excluded(self, idx: np.ndarray, other: np.ndarray) -> np.ndarray:
        """Exclusion mask; idx of shape (n, 1) broadcasts against other of shape (n, m)."""
        same_set = self.set_indices[other] == self.set_indices[idx]
        close = np.abs(self.time_points[other] - self.time_points[idx]) <= self.exclusion_window
        return (other == idx) | (same_set & close)

    def k_nearest(self, idx, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find the k nearest neighbours of points of the index.

        Parameters
        ----------
        idx : int or array-like of int
            Indices of the query points
        k : int
            Number of neighbours

        Returns
        -------
        Tuple[np.ndarray, np.ndarray]
            distances and indices of the neighbours, both of shape (n, k),
            sorted by increasing distance
        """
        idx = np.atleast_1d(np.asarray(idx, dtype=np.intp))
        n = idx.size
        # at most 2*w+1 of the nearest points can be excluded
        n_query = min(k + 2 * self.exclusion_window + 1, self.n_points)
        dist, ind = self._tree.query(self.points[idx], k=n_query, p=np.inf)
        dist = np.reshape(dist, (n, n_query))
        ind = np.reshape(ind, (n, n_query))

        keep = ~self._is_excluded(idx[:, None], ind)
        rank = np.cumsum(keep, axis=1)
        if np.any(rank[:, -1] < k):
            bad = int(idx[np.argmax(rank[:, -1] < k)])
            raise ValueError(f"point {bad} has only {int(self.comparable_count(bad)[0])} "
                             f"comparable neighbours, fewer than k={k}")
        keep &= rank <= k
        return dist[keep].reshape(n, k), ind[keep].reshape(n, k)

    def kth_neighbour_distance(self, idx, k: int) -> np.ndarray:
        """Distance from each indexed point to its k-th nearest valid neighbour."""
        return self.k_nearest(idx, k)[0][:, -1]

    def count_within_radius(self, idx, radius, boundary: Boundary = Boundary.INCLUSIVE) -> np.ndarray:
        """
        Count the valid neighbours of points of the index within a radius.

        Parameters
        ----------
        idx : int or array-like of int
            Indices of the query points
        radius : float or array-like
            Radius, one per query point or shared
        boundary : Boundary
            Whether points at exactly the radius are counted

        Returns
        -------
        np.ndarray
            Number of neighbours of each query point (itself not included)
        """
        idx = np.atleast_1d(np.asarray(idx, dtype=np.intp))
        radius = np.array(np.broadcast_to(np.asarray(radius, dtype=np.float64), idx.shape))
        pts = self.points[idx]
        counts = self._count(pts, radius, boundary)

        # remove the point itself and its excluded neighbours
        for d in range(-self.exclusion_window, self.exclusion_window + 1):
            other = idx + d
            inside = (other >= 0) & (other < self.n_points)
            other = np.clip(other, 0, self.n_points - 1)
            excluded = inside & self._is_excluded(idx, other)
            dist = np.max(np.abs(self.points[other] - pts), axis=1)
            within = dist <= radius if boundary is Boundary.INCLUSIVE else dist < radius
            counts -= excluded & within
        return counts

    def _count(self, pts: np.ndarray, radius: np.ndarray, boundary: Boundary) -> np.ndarray:
        if boundary is Boundary.STRICT:
            r = _strict_radius(radius)
            counts = self._tree.query_ball_point(pts, r, p=np.inf, return_length=True)
            counts = np.where(radius > 0, counts, 0)
        else:
            if np.any(radius < 0):
                raise ValueError("radius must be >= 0")
            counts = self._tree.query_ball_point(pts, radius, p=np.inf, return_length=True)
        return np.asarray(counts, dtype=np.intp).reshape(len(pts))

    def query_k_nearest(self, points: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find the k nearest points of the index to external points (no exclusion).

        Returns
        -------
        Tuple[np.ndarray, np.ndarray]
            distances and indices, both of shape (n, k)
        """
        points = np.ascontiguousarray(points, dtype=np.float64).reshape(-1, self.n_dims)
        if k > self.n_points:
            raise ValueError(f"k={k} is larger than the number of reference points ({self.n_points})")
        dist, ind = self._tree.query(points, k=k, p=np.inf)
        n = points.shape[0]
        return np.reshape(dist, (n, k)), np.reshape(ind, (n, k))

    def query_count_within_radius(self, points: np.ndarray, radius,
                                  boundary: Boundary = Boundary.INCLUSIVE) -> np.ndarray:
        """Count the points of the index within a radius of external points (no exclusion)."""
        points = np.ascontiguousarray(points, dtype=np.float64).reshape(-1, self.n_dims)
        radius = np.array(np.broadcast_to(np.asarray(radius, dtype=np.float64), (points.shape[0],)))
        return self._count(points, radius, boundary)
