# src/ptdiag/checks/connectivity.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.sparse.csgraph import connected_components
from sklearn.neighbors import NearestNeighbors

from ..errors import require_positive
from ..neighbors import knn
from ..utils import as_matrix


@dataclass(frozen=True)
class ClusterCheckResult:
    """
    Outcome of a connectivity check on one point cloud.

    label
        "single" if the cloud is one connected structure, "multi" otherwise.
    connected
        Same decision as a boolean.
    n_components
        Connected components of the symmetric kNN graph.
    n_groups
        Groups left after merging components that are not geometrically
        separated.
    labels
        Group label per point, shape [n_points].
    within_distances
        Within-component kNN distance scale, one per component.
    separation
        (component_a, component_b) -> min inter-component distance divided
        by the larger within-component scale. Holds every pair closer than
        separation_ratio times the largest scale, plus each component's
        nearest other component.
    """

    label: str
    connected: bool
    n_components: int
    n_groups: int
    labels: np.ndarray
    within_distances: np.ndarray
    separation: Dict[Tuple[int, int], float] = field(default_factory=dict)


def _knn_graph(distances: np.ndarray, indices: np.ndarray) -> sparse.csr_matrix:
    n_points, k = indices.shape
    rows = np.repeat(np.arange(n_points, dtype=np.int64), k)
    cols = indices.reshape(-1).astype(np.int64)
    A = sparse.csr_matrix(
        (np.ones(rows.shape[0]), (rows, cols)),
        shape=(n_points, n_points),
    )
    return A.maximum(A.T)


def _close_pairs(
    X: np.ndarray,
    comp: np.ndarray,
    radius: float,
    chunk_size: int = 1024,
) -> Dict[Tuple[int, int], float]:
    """Min distance of every component pair that comes within `radius`."""
    nn = NearestNeighbors(metric="euclidean").fit(X)
    frames = []
    for start in range(0, X.shape[0], chunk_size):
        rows = np.arange(start, min(start + chunk_size, X.shape[0]))
        dist, ind = nn.radius_neighbors(X[rows], radius=radius)
        sizes = np.array([i.shape[0] for i in ind])
        if sizes.sum() == 0:
            continue
        ca = np.repeat(comp[rows], sizes)
        cb = comp[np.concatenate(ind)]
        d = np.concatenate(dist)
        cross = ca < cb
        frames.append(pd.DataFrame({"a": ca[cross], "b": cb[cross], "d": d[cross]}))
    if not frames:
        return {}
    mins = pd.concat(frames).groupby(["a", "b"])["d"].min()
    return {(int(a), int(b)): float(d) for (a, b), d in mins.items()}


def _nearest_other(X: np.ndarray, comp: np.ndarray, a: int) -> Tuple[int, float]:
    """Closest other component to component `a` and its distance."""
    rest = np.flatnonzero(comp != a)
    nn = NearestNeighbors(n_neighbors=1).fit(X[rest])
    d, i = nn.kneighbors(X[comp == a])
    best = int(d[:, 0].argmin())
    return int(comp[rest[i[best, 0]]]), float(d[best, 0])


def _separation_ratio(cross: float, scale: float) -> float:
    if scale > 0:
        return cross / scale
    return np.inf if cross > 0 else 0.0


def check_connectivity(
    points,
    k_neighbors: int = 10,
    separation_ratio: float = 3.0,
) -> ClusterCheckResult:
    """
    Decide whether a point cloud is one connected structure or several
    geometrically separated groups.

    Clusters are the connected components of the symmetric kNN graph.
    Components that merely reflect uneven sampling of a continuum sit close
    to each other relative to their own neighbor spacing, so any pair whose
    separation ratio is <= `separation_ratio` is merged back together.

    Parameters
    ----------
    points
        Cells x features (expression) or cells x 2 (embedding); array,
        sparse matrix or DataFrame.
    k_neighbors
        k for the kNN graph (excluding self).
    separation_ratio
        Threshold on min inter-cluster distance / within-cluster kNN scale.

    Returns
    -------
    ClusterCheckResult
    """
    separation_ratio = require_positive("separation_ratio", separation_ratio)
    X, _ = as_matrix(points, name="points")
    distances, indices = knn(X, k_neighbors)

    n_comp, comp = connected_components(_knn_graph(distances, indices), directed=False)
    mean_knn = distances.mean(axis=1)
    within = np.array(
        [float(np.median(mean_knn[comp == c])) for c in range(n_comp)]
    )

    if n_comp == 1:
        return ClusterCheckResult(
            label="single",
            connected=True,
            n_components=1,
            n_groups=1,
            labels=np.zeros(X.shape[0], dtype=np.int64),
            within_distances=within,
        )

    # a touching pair is never farther apart than this
    cross = _close_pairs(X, comp, separation_ratio * float(within.max()))
    for a in range(n_comp):
        b, d = _nearest_other(X, comp, a)
        cross[(min(a, b), max(a, b))] = d

    separation: Dict[Tuple[int, int], float] = {}
    touching = []
    for (a, b), d in sorted(cross.items()):
        ratio = _separation_ratio(d, max(within[a], within[b]))
        separation[(a, b)] = ratio
        if ratio <= separation_ratio:
            touching.append((a, b))

    if touching:
        pairs = np.asarray(touching, dtype=np.int64)
        G = sparse.csr_matrix(
            (np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])),
            shape=(n_comp, n_comp),
        )
        n_groups, group_of_comp = connected_components(G, directed=False)
    else:
        n_groups, group_of_comp = n_comp, np.arange(n_comp)

    connected = n_groups == 1
    return ClusterCheckResult(
        label="single" if connected else "multi",
        connected=bool(connected),
        n_components=int(n_comp),
        n_groups=int(n_groups),
        labels=np.asarray(group_of_comp, dtype=np.int64)[comp],
        within_distances=within,
        separation=separation,
    )
