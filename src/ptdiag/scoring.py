# src/ptdiag/scoring.py
"""
Combine per-embedding diagnostics into one recommendation score.

    score = - disconnect_penalty * [DCcheck is False]
            + simi_weight * (SimiRetain - simi_midpoint)
            + gof_weight  * (GOF - gof_midpoint)
            - ushape_weight * USHAPE

score > 0 -> "Recommended", otherwise "Non-recommended". An embedding with
any metric missing is "Incomplete" and gets no score.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from .config import ScoreConfig
from .errors import PreconditionError

RECOMMENDED = "Recommended"
NON_RECOMMENDED = "Non-recommended"
INCOMPLETE = "Incomplete"

METRIC_COLUMNS = ("DCcheck", "SimiRetain", "GOF", "USHAPE")


@dataclass(frozen=True)
class EvaluationMetrics:
    """The four diagnostics of one embedding; None marks a missing metric."""

    embedding_id: str
    dc_check: Optional[bool] = None
    simi_retain: Optional[float] = None
    gof: Optional[float] = None
    ushape: Optional[float] = None

    def as_row(self) -> dict:
        return {
            "DCcheck": self.dc_check,
            "SimiRetain": self.simi_retain,
            "GOF": self.gof,
            "USHAPE": self.ushape,
        }


@dataclass(frozen=True)
class ScoreResult:
    embedding_id: str
    score: float
    recommendation: str


def _missing(value) -> bool:
    return value is None or (isinstance(value, float) and np.isnan(value))


def score_metrics(
    metrics: EvaluationMetrics,
    config: Optional[ScoreConfig] = None,
) -> ScoreResult:
    """Score one embedding; pure function of the four metrics and config."""
    config = config or ScoreConfig()
    config.validate()

    values = metrics.as_row()
    if any(_missing(v) for v in values.values()):
        return ScoreResult(metrics.embedding_id, float("nan"), INCOMPLETE)

    rates = {k: float(values[k]) for k in ("SimiRetain", "GOF", "USHAPE")}
    for name, rate in rates.items():
        if not 0.0 <= rate <= 1.0:
            raise PreconditionError(f"{name} must lie in [0, 1]; got {rate!r}")

    total = 0.0
    if not bool(values["DCcheck"]):
        total -= config.disconnect_penalty
    total += config.simi_weight * (rates["SimiRetain"] - config.simi_midpoint)
    total += config.gof_weight * (rates["GOF"] - config.gof_midpoint)
    total -= config.ushape_weight * rates["USHAPE"]

    label = RECOMMENDED if total > 0 else NON_RECOMMENDED
    return ScoreResult(metrics.embedding_id, float(total), label)


def _rows(metrics_table: pd.DataFrame) -> Iterable[EvaluationMetrics]:
    missing_cols = [c for c in METRIC_COLUMNS if c not in metrics_table.columns]
    if missing_cols:
        raise PreconditionError(f"metrics table lacks columns {missing_cols}")
    for emb_id, row in metrics_table.iterrows():
        dc = row["DCcheck"]
        yield EvaluationMetrics(
            embedding_id=str(emb_id),
            dc_check=None if pd.isna(dc) else bool(dc),
            simi_retain=None if pd.isna(row["SimiRetain"]) else float(row["SimiRetain"]),
            gof=None if pd.isna(row["GOF"]) else float(row["GOF"]),
            ushape=None if pd.isna(row["USHAPE"]) else float(row["USHAPE"]),
        )


def score(
    metrics_table: pd.DataFrame,
    config: Optional[ScoreConfig] = None,
) -> pd.DataFrame:
    """
    Score every row (one embedding per row) of a metrics table.

    Parameters
    ----------
    metrics_table
        DataFrame indexed by embedding id with columns DCcheck, SimiRetain,
        GOF and USHAPE. Missing values (NaN / None) make a row Incomplete.
    config
        Score weights, midpoints and disconnection penalty.

    Returns
    -------
    DataFrame
        The input columns plus `score`, `recommendation` and `rank`
        (1 = best; Incomplete rows are not ranked). Row order is preserved.
    """
    config = config or ScoreConfig()
    results: List[ScoreResult] = [score_metrics(m, config) for m in _rows(metrics_table)]

    out = metrics_table.copy()
    out["score"] = [r.score for r in results]
    out["recommendation"] = [r.recommendation for r in results]
    out["rank"] = out["score"].rank(ascending=False, method="min").astype("Int64")
    return out
