#!/usr/bin/env python3
"""
scripts/ptdiag_eval.py

Config-driven pseudotime diagnostics over several candidate embeddings.

All runtime config is read from a params YAML, e.g.:

ptdiag_eval:
  ad_path: data/interim/dataset_embeddings.h5ad
  expression_source: X          # "X", a layer name, or an obsm key (X_pca)
  max_cells: null               # optional seeded subsample
  seed: 0
  n_workers: 1                  # >1 evaluates embeddings in worker processes
  out_dir: out/metrics/ptdiag
  embeddings:
    - key: X_umap_hvg1000
      pseudotime: [slingPseudotime_1, slingPseudotime_2]
      curves_key: curves__X_umap_hvg1000
    - key: X_umap_hvg3000
      pseudotime: X_pt_hvg3000  # obsm matrix, one column per lineage
      curves_key: curves__X_umap_hvg3000
    - key: X_pca2               # no trajectory -> scored as Incomplete

ptdiag:                         # optional; defaults for anything missing
  connectivity: {k_neighbors: 10, separation_ratio: 3.0}
  high_dim_connectivity: {k_neighbors: 10}
  homogeneity: {n_permutations: 20, seed: 0}
  preservation: {k_neighbors: 10, overlap_threshold: 0.5}
  density: {bin_width: 1.0}
  ambiguity: {outlier_mode: neutral}
  score: {disconnect_penalty: 10.0}
"""

from __future__ import annotations

import argparse
import json
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import scanpy as sc  # type: ignore
import yaml

from ptdiag import (
    AnnDataTrajectoryProvider,
    EmbeddingCandidate,
    check_dataset,
    evaluate_embeddings,
    evaluation_config_from_params,
    metrics_table,
    rank_embeddings,
    validate_inputs,
)
from ptdiag.utils import subsample_indices


# -----------------------------
# Small helpers
# -----------------------------


def _to_plain(o: Any) -> Any:
    if isinstance(o, (np.ndarray,)):
        return o.tolist()
    if isinstance(o, (np.generic,)):
        return o.item()
    return str(o)


def _allocate_run_dir(base_out_dir: Path, base_run_id: str) -> Path:
    run_dir = base_out_dir / base_run_id
    if not run_dir.exists():
        return run_dir

    max_idx = 1
    for p in base_out_dir.iterdir():
        if not p.is_dir() or not p.name.startswith(base_run_id + "__r"):
            continue
        tail = p.name.split("__r", 1)[-1]
        try:
            max_idx = max(max_idx, int(tail))
        except ValueError:
            continue

    return base_out_dir / f"{base_run_id}__r{max_idx + 1}"


def _subsample_ad(
    ad: sc.AnnData,
    max_cells: Optional[int],
    seed: int = 0,
) -> sc.AnnData:
    idx = subsample_indices(ad.n_obs, max_cells=max_cells, seed=seed)
    if idx.shape[0] == ad.n_obs:
        print(f"[PTDIAG] using all {ad.n_obs} cells", flush=True)
        return ad
    print(
        f"[PTDIAG] subsampled {ad.n_obs} -> {idx.shape[0]} cells (seed={seed})",
        flush=True,
    )
    return ad[idx].copy()


def _build_candidates(
    ad: sc.AnnData,
    entries: List[Dict[str, Any]],
    expression_source: str,
) -> List[EmbeddingCandidate]:
    candidates = []
    for entry in entries:
        key = entry["key"]
        provider = AnnDataTrajectoryProvider(
            expression_source=expression_source,
            curves_key=entry.get("curves_key", "trajectory_curves"),
        )
        embedding = provider.get_embedding(ad, key)
        trajectory = None
        if entry.get("pseudotime") is not None:
            trajectory = provider.get_trajectory(
                ad,
                embedding_key=key,
                pseudotime_keys=entry["pseudotime"],
                rename_curves=bool(entry.get("rename_curves", False)),
            )
        candidates.append(
            EmbeddingCandidate(
                embedding_id=str(entry.get("id", key)),
                embedding=embedding,
                trajectory=trajectory,
            )
        )
    return candidates


# -----------------------------
# CLI
# -----------------------------


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Score candidate embeddings for pseudotime reliability."
    )
    p.add_argument(
        "--params",
        type=str,
        default="configs/params.yml",
        help="Params YAML with a ptdiag_eval block (default: configs/params.yml).",
    )
    p.add_argument(
        "--cfg-key",
        type=str,
        default="ptdiag_eval",
        help="YAML block key for the run config (default: ptdiag_eval).",
    )
    return p.parse_args()


def main() -> None:
    args = parse_args()

    params_path = Path(args.params)
    params: Dict[str, Any] = yaml.safe_load(params_path.read_text())
    run_cfg: Dict[str, Any] = params.get(args.cfg_key, {})
    if not run_cfg:
        raise RuntimeError(
            f"No '{args.cfg_key}' block found in {params_path}. "
            "Add a ptdiag_eval: section with ad_path and embeddings."
        )
    entries = run_cfg.get("embeddings") or []
    if not entries:
        raise RuntimeError(f"'{args.cfg_key}.embeddings' is empty in {params_path}")

    config = evaluation_config_from_params(params, key="ptdiag")

    ad_path = Path(run_cfg["ad_path"])
    expression_source = run_cfg.get("expression_source", "X")
    max_cells = run_cfg.get("max_cells", None)
    seed = int(run_cfg.get("seed", 0))
    n_workers = int(run_cfg.get("n_workers", 1))
    out_dir = Path(run_cfg.get("out_dir", "out/metrics/ptdiag"))

    # --- Load AnnData ---
    print(f"[PTDIAG] Reading AnnData from: {ad_path}", flush=True)
    ad = sc.read_h5ad(ad_path)
    print(f"[PTDIAG] Loaded AnnData: n_obs={ad.n_obs}, n_vars={ad.n_vars}", flush=True)
    ad = _subsample_ad(ad, None if max_cells is None else int(max_cells), seed=seed)

    expression = AnnDataTrajectoryProvider(
        expression_source=expression_source
    ).get_expression(ad)
    candidates = _build_candidates(ad, entries, expression_source)

    # --- Run evaluation ---
    validate_inputs(expression, candidates, config)
    dataset = check_dataset(expression, config)
    if n_workers > 1:
        with ProcessPoolExecutor(max_workers=n_workers) as pool:
            evaluations = evaluate_embeddings(
                expression, candidates, config, dataset=dataset, map_fn=pool.map
            )
    else:
        evaluations = evaluate_embeddings(expression, candidates, config, dataset=dataset)

    table = metrics_table(evaluations)
    scores = rank_embeddings(evaluations, config)

    # --- Write outputs ---
    base_run_id = f"{ad_path.stem}__ptdiag"
    out_dir.mkdir(parents=True, exist_ok=True)
    run_dir = _allocate_run_dir(out_dir, base_run_id)
    run_dir.mkdir(parents=True, exist_ok=False)

    meta: Dict[str, Any] = {
        "run_id": run_dir.name,
        "base_run_id": base_run_id,
        "ad_path": str(ad_path),
        "expression_source": expression_source,
        "eval_n_cells": int(ad.n_obs),
        "max_cells": None if max_cells is None else int(max_cells),
        "params_path": str(params_path),
    }
    dataset_payload = {
        "connectivity_label": dataset.connectivity.label,
        "connected": dataset.connectivity.connected,
        "n_components": dataset.connectivity.n_components,
        "n_groups": dataset.connectivity.n_groups,
        "homogeneity_statistic": dataset.homogeneity.statistic,
        "homogeneity_p_value": dataset.homogeneity.p_value,
        "homogeneity_decision": dataset.homogeneity.decision,
    }
    payload = {
        "meta": meta,
        "dataset": dataset_payload,
        "embeddings": scores.reset_index().to_dict(orient="records"),
        "params": {k: params[k] for k in (args.cfg_key, "ptdiag") if k in params},
    }

    json_path = run_dir / "metrics.json"
    csv_path = run_dir / "metrics.csv"
    scores_path = run_dir / "scores.csv"
    manifest_path = run_dir / "manifest.json"

    with json_path.open("w") as f:
        json.dump(payload, f, indent=2, default=_to_plain)
    with manifest_path.open("w") as f:
        json.dump(
            {**meta, "embeddings": [c.embedding_id for c in candidates]},
            f,
            indent=2,
            default=_to_plain,
        )
    table.to_csv(csv_path)
    scores.to_csv(scores_path)

    print(scores.to_string(), flush=True)
    print(f"\n[PTDIAG] Wrote JSON metrics to {json_path}")
    print(f"[PTDIAG] Wrote CSV metrics to  {csv_path}")
    print(f"[PTDIAG] Wrote scores to       {scores_path}")
    print(f"[PTDIAG] Wrote manifest to     {manifest_path}")


if __name__ == "__main__":
    main()
