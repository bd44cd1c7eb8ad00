# src/ptdiag/trajectory/data_sources.py

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import scanpy as sc  # type: ignore

from ..utils import to_dense
from .model import TrajectoryObject, build_trajectory


class AnnDataTrajectoryProvider:
    """
    Standardizes which views of an AnnData feed the diagnostics:
      - expression (ad.X, a layer, or an obsm representation such as X_pca)
      - 2D embeddings (first two columns of ad.obsm[key])
      - per-lineage pseudotime (obs columns or an obsm matrix)
      - fitted curve points (ad.uns[curves_key][lineage])

    Curve entries in ad.uns may be a bare [n, 2] array or a mapping with
    "points" (or "s") and an optional "order" (or "ord").
    """

    def __init__(
        self,
        expression_source: str = "X",
        curves_key: str = "trajectory_curves",
    ):
        self.expression_source = expression_source
        self.curves_key = curves_key

    def get_expression(self, ad: sc.AnnData) -> pd.DataFrame:
        src = self.expression_source
        if src == "X":
            X = ad.X
        elif src in ad.layers:
            X = ad.layers[src]
        elif src in ad.obsm:
            X = ad.obsm[src]
        else:
            raise KeyError(
                f"expression_source '{src}' is neither 'X', a layer nor an obsm key"
            )
        X = to_dense(X)
        print(
            f"[AnnDataTrajectoryProvider] using '{src}' for expression with shape",
            X.shape,
            flush=True,
        )
        return pd.DataFrame(X, index=ad.obs_names.copy())

    def get_embedding(self, ad: sc.AnnData, embedding_key: str) -> pd.DataFrame:
        if embedding_key not in ad.obsm:
            raise KeyError(f"Embedding key '{embedding_key}' not found in ad.obsm")
        X = to_dense(ad.obsm[embedding_key])
        if X.ndim != 2 or X.shape[1] < 2:
            raise ValueError(
                f"ad.obsm['{embedding_key}'] needs at least 2 columns; got {X.shape}"
            )
        if X.shape[1] > 2:
            print(
                f"[AnnDataTrajectoryProvider] '{embedding_key}' has {X.shape[1]} "
                "columns; using the first two",
                flush=True,
            )
        return pd.DataFrame(X[:, :2], index=ad.obs_names.copy(), columns=["x", "y"])

    def get_pseudotime(
        self,
        ad: sc.AnnData,
        pseudotime_keys: Sequence[str] | str,
    ) -> pd.DataFrame:
        """
        Pseudotime table from obs columns (one per lineage) or from a
        single obsm matrix with one column per lineage.
        """
        if isinstance(pseudotime_keys, str):
            if pseudotime_keys in ad.obsm:
                arr = to_dense(ad.obsm[pseudotime_keys])
                if arr.ndim == 1:
                    arr = arr[:, None]
                cols = [f"lineage{i + 1}" for i in range(arr.shape[1])]
                return pd.DataFrame(arr, index=ad.obs_names.copy(), columns=cols)
            pseudotime_keys = [pseudotime_keys]

        missing = [k for k in pseudotime_keys if k not in ad.obs]
        if missing:
            raise KeyError(f"pseudotime columns {missing} not found in ad.obs")
        pt = ad.obs[list(pseudotime_keys)].apply(pd.to_numeric, errors="coerce")
        return pt.astype(np.float64)

    @staticmethod
    def _unpack_curve(entry: Any) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        if isinstance(entry, Mapping):
            points = entry.get("points", entry.get("s"))
            if points is None:
                raise KeyError("curve entry needs a 'points' (or 's') array")
            order = entry.get("order", entry.get("ord"))
            return np.asarray(points), None if order is None else np.asarray(order)
        return np.asarray(entry), None

    def get_curves(
        self,
        ad: sc.AnnData,
        lineage_names: Optional[Sequence[str]] = None,
    ) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
        """
        Curve points and orderings per lineage from ad.uns[curves_key].

        If lineage_names is given, the stored curves are renamed
        positionally (the i-th stored curve belongs to the i-th lineage).
        """
        if self.curves_key not in ad.uns:
            raise KeyError(f"curves_key '{self.curves_key}' not found in ad.uns")
        raw = ad.uns[self.curves_key]
        points: Dict[str, np.ndarray] = {}
        orders: Dict[str, np.ndarray] = {}
        for i, (name, entry) in enumerate(raw.items()):
            if lineage_names is not None:
                if i >= len(lineage_names):
                    break
                name = lineage_names[i]
            P, order = self._unpack_curve(entry)
            points[str(name)] = P
            if order is not None:
                orders[str(name)] = order
        return points, orders

    def get_trajectory(
        self,
        ad: sc.AnnData,
        embedding_key: str,
        pseudotime_keys: Sequence[str] | str,
        rename_curves: bool = False,
    ) -> TrajectoryObject:
        embedding = self.get_embedding(ad, embedding_key)
        pseudotime = self.get_pseudotime(ad, pseudotime_keys)
        names = list(pseudotime.columns) if rename_curves else None
        points, orders = self.get_curves(ad, lineage_names=names)
        return build_trajectory(embedding, pseudotime, points, curve_orders=orders)
