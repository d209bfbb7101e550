"""
Evaluation of per-sample quantities over a thread pool.

The sample range [0, n) is cut into contiguous, balanced chunks, one per
worker. Workers only read shared, already-built structures, and results are
put back together in sample order, so the output does not depend on the
number of threads.
"""

import numpy as np
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Tuple

from . import commons


def split_range(n: int, n_threads: int) -> List[Tuple[int, int]]:
    """
    Split [0, n) into contiguous chunks of (almost) equal sizes.

    Parameters
    ----------
    n : int
        Number of samples
    n_threads : int
        Number of workers; there are never more chunks than samples

    Returns
    -------
    List[Tuple[int, int]]
        (start, stop) of each chunk, in order
    """
    if n <= 0:
        return []
    n_chunks = max(1, min(n_threads, n))
    size, residual = divmod(n, n_chunks)
    chunks = []
    start = 0
    for i in range(n_chunks):
        stop = start + size + (1 if i < residual else 0)
        chunks.append((start, stop))
        start = stop
    return chunks


def evaluate(func: Callable[[int, int], np.ndarray], n: int, n_threads: int = 1) -> np.ndarray:
    """
    Compute func over [0, n), split between threads.

    Parameters
    ----------
    func : Callable
        func(start, stop) returns the values for samples start..stop-1
    n : int
        Number of samples
    n_threads : int
        Number of threads (-1 for all cores, 1 for sequential)

    Returns
    -------
    np.ndarray
        Values for all samples, in sample order
    """
    n_threads = commons.resolve_threads(n_threads)
    chunks = split_range(n, n_threads)
    if not chunks:
        return np.zeros(0, dtype=np.float64)

    if len(chunks) == 1:
        return np.asarray(func(0, n))

    if commons.get_verbosity() > 2:
        print(f"computing {n} samples on {len(chunks)} threads")

    with ThreadPoolExecutor(max_workers=len(chunks)) as executor:
        futures = [executor.submit(func, start, stop) for start, stop in chunks]
        # result() re-raises any worker exception
        results = [f.result() for f in futures]

    return np.concatenate(results)
