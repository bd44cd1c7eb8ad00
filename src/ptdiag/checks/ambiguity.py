# src/ptdiag/checks/ambiguity.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
from scipy.stats import median_abs_deviation

from ..config import OUTLIER_MODES
from ..errors import (
    ConfigurationError,
    PreconditionError,
    require_choice,
    require_fraction,
    require_positive,
    require_positive_int,
)
from ..trajectory.model import TrajectoryObject

# MAD -> standard deviation under normality
_MAD_NORMAL = 1.4826


@dataclass(frozen=True)
class AmbiguityResult:
    """
    ambiguous_rate
        Flagged (cell, lineage) assignments / all assignments.
    per_cell_flags
        Boolean Series over cells assigned to at least one lineage;
        True if the cell is ambiguous on any lineage.
    lineage_flags
        Cells x lineages, nullable boolean (NA = not assigned).
    projections
        One row per (cell, lineage) with nearest segment, arc position,
        residuals and the outlier / fold decisions.
    """

    ambiguous_rate: float
    per_cell_flags: pd.Series
    lineage_flags: pd.DataFrame
    projections: pd.DataFrame


def _segment_geometry(segments: np.ndarray):
    A = segments[:, 0, :]
    V = segments[:, 1, :] - A
    L2 = (V**2).sum(axis=1)
    L = np.sqrt(L2)
    start = np.concatenate([[0.0], np.cumsum(L)[:-1]])
    return A, V, L2, L, start


def project_onto_curve(
    coords: np.ndarray,
    segments: np.ndarray,
    fold_arc_fraction: float = 0.1,
    fold_chord_ratio: float = 0.5,
    chunk_size: int = 2048,
) -> pd.DataFrame:
    """
    Orthogonal projection of points onto a piecewise-linear curve.

    For every point, the nearest segment (lowest index on exact ties), the
    clamped position t on it, the arc-length position of the projection,
    the residual distance and the residual signed by the side of the curve
    are returned. `fold_distance` is the distance to the closest segment
    whose projection lies more than fold_arc_fraction * curve length away
    along the curve and where the curve has bent back: the straight-line
    distance between the two projection points is below fold_chord_ratio
    times their arc-length gap (inf if none). A straight stretch has ratio
    1; a fold shows up as a fold_distance close to the residual.

    Parameters
    ----------
    coords
        Points, shape [n, 2].
    segments
        Segments, shape [m, 2, 2] with m >= 1.
    """
    coords = np.asarray(coords, dtype=np.float64)
    segments = np.asarray(segments, dtype=np.float64)
    if segments.ndim != 3 or segments.shape[1:] != (2, 2) or segments.shape[0] == 0:
        raise PreconditionError(
            f"segments must have shape [m >= 1, 2, 2]; got {segments.shape}"
        )

    A, V, L2, L, start = _segment_geometry(segments)
    total = float(L.sum())
    L2_safe = np.where(L2 > 0, L2, 1.0)
    min_gap = fold_arc_fraction * total

    cols: Dict[str, List[np.ndarray]] = {
        k: []
        for k in (
            "segment",
            "t",
            "arc_position",
            "residual",
            "signed_residual",
            "fold_distance",
        )
    }
    for lo in range(0, coords.shape[0], chunk_size):
        P = coords[lo : lo + chunk_size]
        rows = np.arange(P.shape[0])

        W = P[:, None, :] - A[None, :, :]                       # [c, m, 2]
        t = np.clip((W * V[None]).sum(axis=2) / L2_safe, 0.0, 1.0)
        proj = A[None] + t[..., None] * V[None]
        D = np.linalg.norm(P[:, None, :] - proj, axis=2)       # [c, m]
        pos = start[None, :] + t * L[None, :]

        seg = D.argmin(axis=1)
        r = D[rows, seg]
        p_star = pos[rows, seg]

        cross = V[seg, 0] * W[rows, seg, 1] - V[seg, 1] * W[rows, seg, 0]
        sign = np.where(cross < 0, -1.0, 1.0)

        gap = np.abs(pos - p_star[:, None])
        near = proj[rows, seg]                                  # [c, 2]
        chord = np.linalg.norm(proj - near[:, None, :], axis=2)
        bent = (gap > min_gap) & (chord < fold_chord_ratio * gap)
        fold_d = np.where(bent, D, np.inf).min(axis=1)

        cols["segment"].append(seg)
        cols["t"].append(t[rows, seg])
        cols["arc_position"].append(p_star)
        cols["residual"].append(r)
        cols["signed_residual"].append(sign * r)
        cols["fold_distance"].append(fold_d)

    return pd.DataFrame(
        {
            k: (np.concatenate(v) if v else np.empty(0))
            for k, v in cols.items()
        }
    )


def _location_scale(s: np.ndarray, floor: float) -> Tuple[float, float, float, float]:
    """median, MAD, upper-side MAD, lower-side MAD (all normal-scaled)."""
    med = float(np.median(s))
    dev = s - med
    mad = float(median_abs_deviation(s, scale="normal"))
    up = dev[dev >= 0]
    down = -dev[dev <= 0]
    up_mad = _MAD_NORMAL * float(np.median(up)) if up.size else 0.0
    down_mad = _MAD_NORMAL * float(np.median(down)) if down.size else 0.0
    mad = max(mad, floor)
    return med, mad, max(up_mad, mad), max(down_mad, mad)


def _residual_outliers(
    arc_position: np.ndarray,
    signed: np.ndarray,
    total_length: float,
    outlier_mode: str,
    mad_multiplier: float,
    arc_bins: int,
    min_cells_per_bin: int,
    floor: float,
) -> np.ndarray:
    if total_length > 0:
        bins = np.floor(arc_position / total_length * arc_bins).astype(np.int64)
        bins = np.clip(bins, 0, arc_bins - 1)
    else:
        bins = np.zeros(arc_position.shape[0], dtype=np.int64)

    pooled = _location_scale(signed, floor)
    flags = np.zeros(signed.shape[0], dtype=bool)
    for b in np.unique(bins):
        m = bins == b
        s = signed[m]
        if s.size >= min_cells_per_bin:
            med, mad, up, down = _location_scale(s, floor)
        else:
            med, mad, up, down = pooled
        dev = s - med
        if outlier_mode == "neutral":
            flags[m] = np.abs(dev) > mad_multiplier * mad
        else:
            flags[m] = (dev > mad_multiplier * up) | (-dev > mad_multiplier * down)
    return flags


def detect_ambiguous(
    trajectory: TrajectoryObject,
    outlier_mode: str = "neutral",
    mad_multiplier: float = 3.0,
    arc_bins: int = 10,
    min_cells_per_bin: int = 5,
    fold_ratio: float = 1.1,
    fold_arc_fraction: float = 0.1,
    fold_chord_ratio: float = 0.5,
) -> AmbiguityResult:
    """
    Flag cells whose projection onto their lineage curve is ambiguous.

    A cell is ambiguous on a lineage when either
      - its signed residual is an outlier among cells projecting onto the
        same stretch of the curve (arc-length bins; median / MAD), or
      - the curve folds back near it: a segment far away along the curve,
        whose projection point lies close to the cell's own projection
        point (chord < fold_chord_ratio * arc gap), is within
        fold_ratio * residual of the cell.
    Cells lying on the curve are never ambiguous.

    outlier_mode
        "neutral": symmetric test, |s - median| > mad_multiplier * MAD.
        "asymmetric": one scale per side of the median, each at least the
        pooled MAD, for jagged curves where residuals are skewed. It never
        flags a cell the neutral test keeps.
    """
    outlier_mode = require_choice("outlier_mode", outlier_mode, OUTLIER_MODES)
    mad_multiplier = require_positive("mad_multiplier", mad_multiplier)
    arc_bins = require_positive_int("arc_bins", arc_bins)
    min_cells_per_bin = require_positive_int("min_cells_per_bin", min_cells_per_bin)
    fold_ratio = require_positive("fold_ratio", fold_ratio)
    fold_arc_fraction = require_fraction("fold_arc_fraction", fold_arc_fraction)
    fold_chord_ratio = require_positive("fold_chord_ratio", fold_chord_ratio)
    if fold_chord_ratio >= 1.0:
        raise ConfigurationError(
            f"fold_chord_ratio must lie in (0, 1); got {fold_chord_ratio!r}"
        )
    if not isinstance(trajectory, TrajectoryObject):
        raise PreconditionError(
            f"expected a TrajectoryObject; got {type(trajectory).__name__}"
        )

    coords = trajectory.coordinates()
    ids = trajectory.cell_ids
    lineage_flags = pd.DataFrame(index=ids, columns=trajectory.lineages, dtype="boolean")
    frames = []

    for lineage in trajectory.lineages:
        mask = trajectory.assigned(lineage)
        if not mask.any():
            continue
        segments = trajectory.curves[lineage]
        proj = project_onto_curve(
            coords[mask],
            segments,
            fold_arc_fraction=fold_arc_fraction,
            fold_chord_ratio=fold_chord_ratio,
        )

        total = float(_segment_geometry(segments)[3].sum())
        extent = float(np.ptp(segments.reshape(-1, 2), axis=0).max())
        on_curve_tol = 1e-9 * max(total, extent, 1.0)

        residual = proj["residual"].to_numpy()
        on_curve = residual <= on_curve_tol
        outlier = _residual_outliers(
            proj["arc_position"].to_numpy(),
            proj["signed_residual"].to_numpy(),
            total,
            outlier_mode,
            mad_multiplier,
            arc_bins,
            min_cells_per_bin,
            floor=on_curve_tol,
        )
        fold = proj["fold_distance"].to_numpy() <= fold_ratio * residual
        flag = (outlier | fold) & ~on_curve

        proj.insert(0, "cell", ids[mask])
        proj.insert(1, "lineage", lineage)
        proj["on_curve"] = on_curve
        proj["outlier"] = outlier & ~on_curve
        proj["fold"] = fold & ~on_curve
        proj["ambiguous"] = flag
        frames.append(proj)

        lineage_flags.loc[ids[mask], lineage] = flag

    if not frames:
        raise PreconditionError(
            "no cell has a defined pseudotime on any lineage; ambiguous rate is undefined"
        )

    projections = pd.concat(frames, ignore_index=True)
    assigned_any = lineage_flags.notna().any(axis=1)
    per_cell = lineage_flags[assigned_any].fillna(False).any(axis=1).astype(bool)
    per_cell.name = "ambiguous"

    return AmbiguityResult(
        ambiguous_rate=float(projections["ambiguous"].mean()),
        per_cell_flags=per_cell,
        lineage_flags=lineage_flags,
        projections=projections,
    )
