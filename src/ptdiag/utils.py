# src/ptdiag/utils.py

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import sparse as sp_sparse

from .errors import PreconditionError


def to_dense(X) -> np.ndarray:
    if isinstance(X, pd.DataFrame):
        X = X.to_numpy()
    if sp_sparse.issparse(X):
        X = X.toarray()
    return np.asarray(X, dtype=np.float64)


def as_matrix(data, name: str = "matrix") -> Tuple[np.ndarray, pd.Index]:
    """
    Coerce a cells x features table into (dense float array, cell ids).

    DataFrames keep their index as cell ids; arrays and sparse matrices
    are identified by row position.
    """
    if isinstance(data, pd.DataFrame):
        ids = data.index
    else:
        ids = None
    X = to_dense(data)
    if X.ndim != 2:
        raise PreconditionError(f"{name} must be 2-dimensional; got shape {X.shape}")
    if ids is None:
        ids = pd.RangeIndex(X.shape[0])
    if not ids.is_unique:
        raise PreconditionError(f"{name} has duplicated cell ids")
    if not np.isfinite(X).all():
        raise PreconditionError(f"{name} contains non-finite values")
    return X, pd.Index(ids)


def as_embedding(data, name: str = "embedding") -> Tuple[np.ndarray, pd.Index]:
    X, ids = as_matrix(data, name=name)
    if X.shape[1] != 2:
        raise PreconditionError(
            f"{name} must have exactly 2 columns; got {X.shape[1]}"
        )
    return X, ids


def align_rows(
    ref_ids: pd.Index,
    other_ids: pd.Index,
    ref_name: str = "expression",
    other_name: str = "embedding",
) -> np.ndarray:
    """
    Positions that reorder `other` rows into `ref` order.

    Both tables must describe exactly the same cells.
    """
    if len(ref_ids) != len(other_ids):
        raise PreconditionError(
            f"{ref_name} and {other_name} must have same number of cells; "
            f"got {len(ref_ids)} and {len(other_ids)}"
        )
    if ref_ids.equals(other_ids):
        return np.arange(len(ref_ids))
    positions = other_ids.get_indexer(ref_ids)
    if (positions < 0).any():
        missing = ref_ids[positions < 0][:5].tolist()
        raise PreconditionError(
            f"cell ids of {ref_name} missing from {other_name}, e.g. {missing}"
        )
    return positions


def subsample_indices(
    n: int,
    max_cells: Optional[int] = None,
    seed: int = 0,
) -> np.ndarray:
    """
    Sorted row positions of a seeded subsample of at most max_cells rows.

    If max_cells is None or >= n, every row is kept.
    """
    if max_cells is None or max_cells >= n:
        return np.arange(n)
    rng = np.random.default_rng(seed)
    idx = rng.choice(n, size=max_cells, replace=False)
    idx.sort()
    return idx
