# src/ptdiag/checks/preservation.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from ..errors import PreconditionError, require_fraction
from ..neighbors import knn_sets_with_ties
from ..utils import align_rows, as_embedding, as_matrix


@dataclass(frozen=True)
class PreservationResult:
    """
    good_rate
        Fraction of cells whose neighborhood survives the projection.
    per_cell_flags
        Boolean Series indexed by cell id (expression order).
    overlap
        Weighted neighbor overlap per cell, same index.
    """

    good_rate: float
    per_cell_flags: pd.Series
    overlap: pd.Series


def _weighted_overlap(
    high: np.ndarray,
    low: np.ndarray,
    labels: Optional[np.ndarray],
    cell: int,
    cross_cluster_weight: float,
) -> float:
    if high.size == 0:
        return 1.0
    shared = np.isin(high, low, assume_unique=True)
    if labels is None:
        return float(shared.mean())
    w = np.where(labels[high] == labels[cell], 1.0, cross_cluster_weight)
    total = w.sum()
    if total <= 0:
        return float(shared.mean())
    return float(w[shared].sum() / total)


def check_preservation(
    expression,
    embedding,
    cluster_labels=None,
    k_neighbors: int = 10,
    overlap_threshold: float = 0.5,
    cross_cluster_weight: float = 0.5,
) -> PreservationResult:
    """
    Compare each cell's kNN set in expression space with its kNN set in
    the 2D embedding.

    Neighbor sets include every point tied at the k-th distance. When
    cluster labels are given, high-dim neighbors from another cluster weigh
    `cross_cluster_weight` instead of 1, so losing relationships between
    unrelated cell types costs less.

    Parameters
    ----------
    expression
        Cells x genes (array, sparse matrix or DataFrame).
    embedding
        Cells x 2 (array or DataFrame). DataFrames are aligned to the
        expression cell ids.
    cluster_labels
        Optional per-cell high-dim cluster labels, in expression row order
        (or a Series indexed by cell id).
    k_neighbors
        k for both neighbor searches.
    overlap_threshold
        A cell is preserved when its weighted overlap exceeds this value.
    cross_cluster_weight
        Weight in [0, 1] of cross-cluster high-dim neighbors.
    """
    overlap_threshold = require_fraction("overlap_threshold", overlap_threshold)
    cross_cluster_weight = require_fraction("cross_cluster_weight", cross_cluster_weight)

    X_high, ids = as_matrix(expression, name="expression")
    X_low, low_ids = as_embedding(embedding)
    X_low = X_low[align_rows(ids, low_ids)]

    labels = None
    if cluster_labels is not None:
        if isinstance(cluster_labels, pd.Series):
            labels = cluster_labels.reindex(ids).to_numpy()
            if pd.isna(labels).any():
                raise PreconditionError("cluster_labels missing for some cells")
        else:
            labels = np.asarray(cluster_labels)
        if labels.shape[0] != X_high.shape[0]:
            raise PreconditionError(
                f"cluster_labels must have one entry per cell; "
                f"got {labels.shape[0]} for {X_high.shape[0]} cells"
            )

    high_sets = knn_sets_with_ties(X_high, k_neighbors)
    low_sets = knn_sets_with_ties(X_low, k_neighbors)

    overlap = np.array(
        [
            _weighted_overlap(h, l, labels, i, cross_cluster_weight)
            for i, (h, l) in enumerate(zip(high_sets, low_sets))
        ]
    )
    flags = overlap > overlap_threshold

    return PreservationResult(
        good_rate=float(flags.mean()),
        per_cell_flags=pd.Series(flags, index=ids, name="preserved"),
        overlap=pd.Series(overlap, index=ids, name="overlap"),
    )
