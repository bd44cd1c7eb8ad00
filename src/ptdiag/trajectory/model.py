# src/ptdiag/trajectory/model.py
from __future__ import annotations

from collections.abc import Mapping as MappingABC
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import PreconditionError
from ..utils import as_embedding


def curve_points_to_segments(
    points,
    order: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """
    Turn an ordered point sequence of a fitted curve into line segments.

    Parameters
    ----------
    points
        Curve points, shape [n_points, 2].
    order
        Optional ordering of the points along the curve (principal-curve
        fits often return points in cell order plus a separate ordering).

    Returns
    -------
    segments
        Array of shape [n_segments, 2, 2]; segments[i] = [start, end].
        Consecutive duplicate points are dropped, so a curve with fewer than
        two distinct points yields zero segments.
    """
    P = np.asarray(points, dtype=np.float64)
    if P.ndim != 2 or P.shape[1] != 2:
        raise PreconditionError(f"curve points must have shape [n, 2]; got {P.shape}")
    if order is not None:
        order = np.asarray(order, dtype=np.int64)
        if order.shape[0] != P.shape[0]:
            raise PreconditionError(
                f"curve order has {order.shape[0]} entries for {P.shape[0]} points"
            )
        P = P[order]
    if not np.isfinite(P).all():
        raise PreconditionError("curve points contain non-finite values")

    if P.shape[0] > 1:
        keep = np.concatenate([[True], (np.diff(P, axis=0) != 0).any(axis=1)])
        P = P[keep]
    if P.shape[0] < 2:
        return np.empty((0, 2, 2), dtype=np.float64)
    return np.stack([P[:-1], P[1:]], axis=1)


def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=np.float64, copy=True)
    a.setflags(write=False)
    return a


class CurveSegments(MappingABC):
    """Read-only lineage -> segment array mapping (picklable)."""

    def __init__(self, segments: Mapping[str, np.ndarray]):
        self._segments: Dict[str, np.ndarray] = {
            str(k): _frozen(v) for k, v in segments.items()
        }

    def __getitem__(self, lineage: str) -> np.ndarray:
        return self._segments[lineage]

    def __iter__(self) -> Iterator[str]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        sizes = {k: v.shape[0] for k, v in self._segments.items()}
        return f"CurveSegments({sizes})"


@dataclass(frozen=True)
class TrajectoryObject:
    """
    Embedding + per-lineage pseudotime + fitted curve as segments.

    embedding
        DataFrame [n_cells, 2], index = cell ids.
    pseudotime
        DataFrame [n_cells, n_lineages], same index as embedding, NaN
        for cells not assigned to a lineage.
    curves
        lineage -> read-only segment array [n_segments, 2, 2].

    Build it with `build_trajectory`, which validates every invariant.
    """

    embedding: pd.DataFrame
    pseudotime: pd.DataFrame
    curves: Mapping[str, np.ndarray]

    @property
    def lineages(self) -> list[str]:
        return [str(c) for c in self.pseudotime.columns]

    @property
    def cell_ids(self) -> pd.Index:
        return self.embedding.index

    def coordinates(self) -> np.ndarray:
        return self.embedding.to_numpy(dtype=np.float64)

    def assigned(self, lineage: str) -> np.ndarray:
        """Boolean mask of cells with a defined pseudotime on `lineage`."""
        return np.isfinite(self.pseudotime[lineage].to_numpy(dtype=np.float64))


def build_trajectory(
    embedding,
    pseudotime,
    curve_points: Mapping[str, object],
    curve_orders: Optional[Mapping[str, Sequence[int]]] = None,
) -> TrajectoryObject:
    """
    Normalize trajectory-fit outputs into a TrajectoryObject.

    Parameters
    ----------
    embedding
        Cells x 2 coordinates (DataFrame or array).
    pseudotime
        Cells x lineages (DataFrame, Series or array); index must be a
        subset of the embedding's cell ids. Cells absent from it are treated
        as unassigned.
    curve_points
        lineage -> ordered curve points [n_points, 2]. Every lineage with at
        least one defined pseudotime needs a non-empty curve.
    curve_orders
        Optional lineage -> point ordering, passed to
        `curve_points_to_segments`.
    """
    X, ids = as_embedding(embedding)
    emb = pd.DataFrame(X, index=ids, columns=["x", "y"])

    if isinstance(pseudotime, pd.Series):
        pseudotime = pseudotime.to_frame(name=pseudotime.name or "lineage1")
    if isinstance(pseudotime, pd.DataFrame):
        pt = pseudotime.astype(np.float64)
    else:
        arr = np.asarray(pseudotime, dtype=np.float64)
        if arr.ndim == 1:
            arr = arr[:, None]
        if arr.shape[0] != len(ids):
            raise PreconditionError(
                f"pseudotime has {arr.shape[0]} rows for {len(ids)} embedded cells"
            )
        pt = pd.DataFrame(
            arr,
            index=ids,
            columns=[f"lineage{i + 1}" for i in range(arr.shape[1])],
        )

    if not pt.index.is_unique:
        raise PreconditionError("pseudotime has duplicated cell ids")
    extra = pt.index.difference(ids)
    if len(extra) > 0:
        raise PreconditionError(
            f"pseudotime has {len(extra)} cells not in the embedding, "
            f"e.g. {extra[:5].tolist()}"
        )
    pt = pt.reindex(ids)
    pt.columns = [str(c) for c in pt.columns]
    if np.isinf(pt.to_numpy()).any():
        raise PreconditionError("pseudotime contains infinite values")

    curves = {str(k): v for k, v in curve_points.items()}
    orders = {str(k): v for k, v in (curve_orders or {}).items()}
    segments = {}
    for lineage in pt.columns:
        has_cells = pt[lineage].notna().any()
        if lineage not in curves:
            if has_cells:
                raise PreconditionError(f"no curve supplied for lineage '{lineage}'")
            segments[lineage] = np.empty((0, 2, 2))
            continue
        segs = curve_points_to_segments(curves[lineage], order=orders.get(lineage))
        if segs.shape[0] == 0 and has_cells:
            raise PreconditionError(
                f"curve for lineage '{lineage}' is empty but has assigned cells"
            )
        segments[lineage] = segs

    return TrajectoryObject(
        embedding=emb,
        pseudotime=pt,
        curves=CurveSegments(segments),
    )
