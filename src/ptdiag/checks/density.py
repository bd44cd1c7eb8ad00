# src/ptdiag/checks/density.py

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial import ConvexHull, QhullError

from ..config import DENSITY_SUPPORTS
from ..errors import (
    ConfigurationError,
    PreconditionError,
    require_choice,
    require_positive,
    require_positive_int,
)
from ..utils import as_embedding

# hull support walks the grid one column at a time along the shorter axis
MAX_GRID_COLUMNS = 10_000_000


@dataclass(frozen=True)
class DensityResult:
    occupied_rate: float
    n_occupied: int
    n_candidate: int
    bin_width: float
    support: str


def _hull(points: np.ndarray) -> ConvexHull | None:
    try:
        return ConvexHull(points)
    except QhullError:
        return None


def _inside_hull(equations: np.ndarray, centers: np.ndarray, tol: float) -> np.ndarray:
    # facet equations: normal . x + offset <= 0 inside
    lhs = centers @ equations[:, :2].T + equations[:, 2]
    return (lhs <= tol).all(axis=1)


def _hull_bins_per_column(
    equations: np.ndarray,
    lo: np.ndarray,
    n_bins: np.ndarray,
    bin_width: float,
    tol: float,
    chunk_size: int = 65536,
) -> int:
    """Number of bin centres inside the hull, counted column by column."""
    a, b, c = equations[:, 0], equations[:, 1], equations[:, 2]
    up, down, flat = b > 0, b < 0, b == 0
    total = 0
    for start in range(0, int(n_bins[0]), chunk_size):
        cols = np.arange(start, min(start + chunk_size, int(n_bins[0])))
        xc = lo[0] + (cols + 0.5) * bin_width
        rhs = tol - c[None, :] - a[None, :] * xc[:, None]         # [n_cols, f]

        # each facet bounds y from one side, or the whole column if b == 0
        with np.errstate(over="ignore", divide="ignore"):
            y_hi = (rhs[:, up] / b[up]).min(axis=1) if up.any() else np.inf
            y_lo = (rhs[:, down] / b[down]).max(axis=1) if down.any() else -np.inf
            j_lo = np.maximum(np.ceil((y_lo - lo[1]) / bin_width - 0.5), 0.0)
            j_hi = np.minimum(np.floor((y_hi - lo[1]) / bin_width - 0.5), n_bins[1] - 1.0)
        n_col = np.maximum(j_hi - j_lo + 1.0, 0.0) * np.ones(cols.shape[0])
        if flat.any():
            n_col = np.where((rhs[:, flat] >= 0).all(axis=1), n_col, 0.0)
        total += int(n_col.sum())
    return total


def evaluate_density(
    embedding,
    bin_width: float = 1.0,
    min_count: int = 1,
    support: str = "hull",
) -> DensityResult:
    """
    Grid occupancy of a 2D embedding.

    The embedding is covered with square bins of side `bin_width` anchored
    at the data minimum. Candidate bins are those whose centre lies inside
    the convex hull of the cells, plus every occupied bin; support="bbox"
    (or a hull that degenerates to a line) uses the whole bounding box.
    occupied_rate = bins holding >= min_count cells / candidate bins.

    Only occupied bins are materialized and hull bins are counted per grid
    column, so memory grows with the number of cells and the shorter grid
    side, not with the grid area. A grid whose shorter side exceeds
    MAX_GRID_COLUMNS bins raises ConfigurationError.

    If all cells coincide, the rate is 1.
    """
    bin_width = require_positive("bin_width", bin_width)
    min_count = require_positive_int("min_count", min_count)
    support = require_choice("support", support, DENSITY_SUPPORTS)

    X, _ = as_embedding(embedding)
    if X.shape[0] == 0:
        raise PreconditionError("embedding has no cells")

    lo = X.min(axis=0)
    extent = X.max(axis=0) - lo
    if not (extent > 0).any():
        return DensityResult(1.0, 1, 1, bin_width, support)

    n_bins = np.floor(extent / bin_width).astype(np.int64) + 1
    if n_bins[0] > n_bins[1]:
        X, lo, n_bins = X[:, ::-1], lo[::-1], n_bins[::-1]
    if n_bins[0] > MAX_GRID_COLUMNS:
        raise ConfigurationError(
            f"bin_width={bin_width!r} gives a {n_bins[0]} x {n_bins[1]} grid; "
            f"the shorter side may hold at most {MAX_GRID_COLUMNS} bins"
        )

    ij = np.floor((X - lo) / bin_width).astype(np.int64)
    ij = np.minimum(ij, n_bins - 1)
    cells, counts = np.unique(ij, axis=0, return_counts=True)
    occupied = cells[counts >= min_count]
    n_occupied = int(occupied.shape[0])

    n_candidate = None
    if support == "hull":
        hull = _hull(X)
        if hull is not None:
            scale = max(float(np.ptp(X, axis=0).max()), 1.0)
            tol = 1e-9 * scale
            n_inside = _hull_bins_per_column(hull.equations, lo, n_bins, bin_width, tol)
            centers = lo + (occupied + 0.5) * bin_width
            n_outside = int((~_inside_hull(hull.equations, centers, tol)).sum())
            n_candidate = n_inside + n_outside
    if n_candidate is None:
        n_candidate = int(n_bins[0]) * int(n_bins[1])

    return DensityResult(
        occupied_rate=float(n_occupied / n_candidate),
        n_occupied=n_occupied,
        n_candidate=n_candidate,
        bin_width=bin_width,
        support=support,
    )
