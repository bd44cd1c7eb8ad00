# src/ptdiag/neighbors.py

from __future__ import annotations

from typing import List, Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .errors import PreconditionError, require_positive_int

# relative slack when deciding that a distance ties with the k-th one
TIE_RTOL = 1e-9


def check_neighbor_count(n_points: int, k: int) -> int:
    k = require_positive_int("k_neighbors", k)
    if n_points < k + 1:
        raise PreconditionError(
            f"need at least k_neighbors + 1 = {k + 1} points; got {n_points}"
        )
    return k


def knn(X: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    k nearest neighbors of every row of X, self excluded.

    Returns (distances, indices), each of shape [n, k], sorted by distance.
    """
    k = check_neighbor_count(X.shape[0], k)
    nn = NearestNeighbors(n_neighbors=k, metric="euclidean").fit(X)
    # X=None: each indexed point is not its own neighbor
    distances, indices = nn.kneighbors()
    return distances, indices


def knn_sets_with_ties(
    X: np.ndarray,
    k: int,
    chunk_size: int = 1024,
) -> List[np.ndarray]:
    """
    Tie-inclusive neighbor sets: for each row, every other row whose
    distance is within the k-th neighbor distance (up to TIE_RTOL).

    Sets may therefore hold more than k members, but never depend on the
    order in which tied points are stored.
    """
    distances, _ = knn(X, k)
    kth = distances[:, -1]
    radii = kth * (1.0 + TIE_RTOL) + 1e-12

    nn = NearestNeighbors(metric="euclidean").fit(X)
    n = X.shape[0]
    out: List[np.ndarray] = [np.empty(0, dtype=np.int64)] * n

    # similar radii per chunk keep each radius query cheap
    order = np.argsort(radii, kind="stable")
    for start in range(0, n, chunk_size):
        rows = order[start : start + chunk_size]
        dist, ind = nn.radius_neighbors(X[rows], radius=float(radii[rows].max()))
        for row, d, i in zip(rows, dist, ind):
            keep = (d <= radii[row]) & (i != row)
            out[row] = np.sort(i[keep]).astype(np.int64)
    return out
