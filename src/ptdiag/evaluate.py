# src/ptdiag/evaluate.py

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .checks.ambiguity import AmbiguityResult, detect_ambiguous
from .checks.connectivity import ClusterCheckResult, check_connectivity
from .checks.density import DensityResult, evaluate_density
from .checks.homogeneity import HomogeneityResult, test_homogeneity
from .checks.preservation import PreservationResult, check_preservation
from .config import EvaluationConfig
from .errors import PreconditionError
from .neighbors import check_neighbor_count
from .scoring import EvaluationMetrics, score
from .trajectory.model import TrajectoryObject
from .utils import align_rows, as_embedding, as_matrix


@dataclass(frozen=True)
class DatasetChecks:
    """
    High-dimensional checks computed once per dataset and shared read-only
    by every embedding evaluation.
    """

    connectivity: ClusterCheckResult
    homogeneity: HomogeneityResult

    @property
    def cluster_labels(self) -> np.ndarray:
        return self.connectivity.labels


@dataclass(frozen=True)
class EmbeddingCandidate:
    """One embedding to evaluate, with its optional trajectory fit."""

    embedding_id: str
    embedding: Any
    trajectory: Optional[TrajectoryObject] = None


@dataclass(frozen=True)
class EmbeddingEvaluation:
    embedding_id: str
    metrics: EvaluationMetrics
    connectivity: ClusterCheckResult
    preservation: PreservationResult
    density: DensityResult
    ambiguity: Optional[AmbiguityResult] = None


def validate_inputs(
    expression,
    candidates: Sequence[EmbeddingCandidate],
    config: EvaluationConfig,
) -> None:
    """Fail-fast pass over every input before anything expensive runs."""
    config.validate()
    X, ids = as_matrix(expression, name="expression")
    check_neighbor_count(X.shape[0], config.high_dim_connectivity.k_neighbors)

    seen = set()
    for cand in candidates:
        if cand.embedding_id in seen:
            raise PreconditionError(f"duplicated embedding id '{cand.embedding_id}'")
        seen.add(cand.embedding_id)

        emb_X, emb_ids = as_embedding(
            cand.embedding, name=f"embedding '{cand.embedding_id}'"
        )
        align_rows(ids, emb_ids, other_name=f"embedding '{cand.embedding_id}'")
        check_neighbor_count(len(emb_ids), config.connectivity.k_neighbors)
        check_neighbor_count(len(emb_ids), config.preservation.k_neighbors)

        if cand.trajectory is not None:
            traj_ids = cand.trajectory.cell_ids
            extra = traj_ids.difference(emb_ids)
            if len(extra) > 0:
                raise PreconditionError(
                    f"trajectory of '{cand.embedding_id}' has cells outside its "
                    f"embedding, e.g. {extra[:5].tolist()}"
                )
            # USHAPE must be measured on the same layout as SimiRetain and GOF
            pos = emb_ids.get_indexer(traj_ids)
            if not np.allclose(
                cand.trajectory.coordinates(), emb_X[pos], rtol=1e-9, atol=1e-12
            ):
                raise PreconditionError(
                    f"trajectory of '{cand.embedding_id}' was built on other "
                    "coordinates than its embedding"
                )


def check_dataset(
    expression,
    config: Optional[EvaluationConfig] = None,
) -> DatasetChecks:
    """Run the expression-space connectivity check and the homogeneity test."""
    config = (config or EvaluationConfig()).validate()
    cc = config.high_dim_connectivity
    hc = config.homogeneity

    print("[PTDIAG.DATASET] high-dim connectivity check...", flush=True)
    connectivity = check_connectivity(
        expression,
        k_neighbors=cc.k_neighbors,
        separation_ratio=cc.separation_ratio,
    )
    print(
        f"[PTDIAG.DATASET] connectivity: label={connectivity.label}, "
        f"components={connectivity.n_components}, groups={connectivity.n_groups}",
        flush=True,
    )
    if not connectivity.connected:
        print(
            "[PTDIAG.DATASET] WARNING: expression data splits into distinct "
            "groups; a single trajectory is unlikely to be meaningful.",
            flush=True,
        )

    print(
        f"[PTDIAG.DATASET] homogeneity test with {hc.n_permutations} permutations...",
        flush=True,
    )
    homogeneity = test_homogeneity(
        expression,
        num_permutations=hc.n_permutations,
        alpha=hc.alpha,
        max_cells=hc.max_cells,
        seed=hc.seed,
    )
    print(
        f"[PTDIAG.DATASET] homogeneity: statistic={homogeneity.statistic:.4f}, "
        f"p={homogeneity.p_value:.4f} -> {homogeneity.decision}",
        flush=True,
    )
    return DatasetChecks(connectivity=connectivity, homogeneity=homogeneity)


def evaluate_embedding(
    candidate: EmbeddingCandidate,
    expression,
    cluster_labels: Optional[np.ndarray] = None,
    config: Optional[EvaluationConfig] = None,
) -> EmbeddingEvaluation:
    """
    Run the per-embedding checks on one candidate.

    cluster_labels are the high-dim cluster labels (expression row order),
    passed explicitly so evaluations stay independent of each other.
    Without a trajectory, USHAPE is missing and the embedding scores as
    Incomplete.
    """
    config = (config or EvaluationConfig()).validate()
    tag = f"[PTDIAG.EVAL {candidate.embedding_id}]"

    connectivity = check_connectivity(
        candidate.embedding,
        k_neighbors=config.connectivity.k_neighbors,
        separation_ratio=config.connectivity.separation_ratio,
    )
    pc = config.preservation
    preservation = check_preservation(
        expression,
        candidate.embedding,
        cluster_labels=cluster_labels,
        k_neighbors=pc.k_neighbors,
        overlap_threshold=pc.overlap_threshold,
        cross_cluster_weight=pc.cross_cluster_weight,
    )
    dc = config.density
    density = evaluate_density(
        candidate.embedding,
        bin_width=dc.bin_width,
        min_count=dc.min_count,
        support=dc.support,
    )

    ambiguity = None
    if candidate.trajectory is not None:
        ac = config.ambiguity
        ambiguity = detect_ambiguous(
            candidate.trajectory,
            outlier_mode=ac.outlier_mode,
            mad_multiplier=ac.mad_multiplier,
            arc_bins=ac.arc_bins,
            min_cells_per_bin=ac.min_cells_per_bin,
            fold_ratio=ac.fold_ratio,
            fold_arc_fraction=ac.fold_arc_fraction,
            fold_chord_ratio=ac.fold_chord_ratio,
        )
    else:
        print(f"{tag} no trajectory supplied; USHAPE left missing", flush=True)

    metrics = EvaluationMetrics(
        embedding_id=candidate.embedding_id,
        dc_check=connectivity.connected,
        simi_retain=preservation.good_rate,
        gof=density.occupied_rate,
        ushape=None if ambiguity is None else ambiguity.ambiguous_rate,
    )
    print(
        f"{tag} DCcheck={metrics.dc_check} SimiRetain={metrics.simi_retain:.3f} "
        f"GOF={metrics.gof:.3f} USHAPE="
        + ("NA" if metrics.ushape is None else f"{metrics.ushape:.3f}"),
        flush=True,
    )
    return EmbeddingEvaluation(
        embedding_id=candidate.embedding_id,
        metrics=metrics,
        connectivity=connectivity,
        preservation=preservation,
        density=density,
        ambiguity=ambiguity,
    )


def evaluate_embeddings(
    expression,
    candidates: Sequence[EmbeddingCandidate],
    config: Optional[EvaluationConfig] = None,
    dataset: Optional[DatasetChecks] = None,
    map_fn: Callable = map,
) -> List[EmbeddingEvaluation]:
    """
    Evaluate an ordered collection of embeddings against one dataset.

    Inputs are validated up front. The dataset-level checks are computed
    once (unless `dataset` is given) and their cluster labels are handed to
    every evaluation. `map_fn` may be any map-compatible callable, e.g.
    `ProcessPoolExecutor().map`, to fan the evaluations out; results come
    back in candidate order.
    """
    config = config or EvaluationConfig()
    candidates = list(candidates)
    validate_inputs(expression, candidates, config)

    if dataset is None:
        dataset = check_dataset(expression, config)

    print(f"[PTDIAG.EVAL] evaluating {len(candidates)} embeddings", flush=True)
    run_one = partial(
        evaluate_embedding,
        expression=expression,
        cluster_labels=dataset.cluster_labels,
        config=config,
    )
    return list(map_fn(run_one, candidates))


def metrics_table(evaluations: Sequence[EmbeddingEvaluation]) -> pd.DataFrame:
    """DCcheck / SimiRetain / GOF / USHAPE per embedding, in input order."""
    rows: Dict[str, Mapping[str, Any]] = {
        ev.embedding_id: ev.metrics.as_row() for ev in evaluations
    }
    table = pd.DataFrame.from_dict(rows, orient="index")
    table.index.name = "embedding_id"
    return table


def rank_embeddings(
    evaluations: Sequence[EmbeddingEvaluation],
    config: Optional[EvaluationConfig] = None,
) -> pd.DataFrame:
    config = config or EvaluationConfig()
    return score(metrics_table(evaluations), config.score)
