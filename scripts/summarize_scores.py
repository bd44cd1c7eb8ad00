#!/usr/bin/env python3
"""
scripts/summarize_scores.py

Scan <root>/**/scores.csv written by scripts/ptdiag_eval.py and stack them
into one table, tagged with the run they came from:

  out/metrics/ptdiag_summary.csv
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List

import pandas as pd


def find_score_files(root: Path) -> List[Path]:
    return sorted(root.glob("**/scores.csv"))


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Aggregate ptdiag scores across runs.")
    p.add_argument("--root", type=str, default="out/metrics/ptdiag")
    p.add_argument("--out", type=str, default="out/metrics/ptdiag_summary.csv")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    root = Path(args.root)
    out_csv = Path(args.out)

    print(f"[SUMMARY] Looking for scores under: {root.resolve()}")
    if not root.exists():
        print(f"[SUMMARY] No directory found at {root.resolve()}")
        return

    files = find_score_files(root)
    if not files:
        print(f"[SUMMARY] No scores.csv files found under {root.resolve()}")
        return
    print(f"[SUMMARY] Found {len(files)} scores.csv files")

    frames = []
    for path in files:
        try:
            df = pd.read_csv(path)
        except (OSError, pd.errors.ParserError) as e:
            print(f"[SUMMARY] WARNING: failed to read {path}: {e}")
            continue

        manifest = path.parent / "manifest.json"
        meta = json.loads(manifest.read_text()) if manifest.exists() else {}
        df.insert(0, "run_id", meta.get("run_id", path.parent.name))
        df.insert(1, "ad_path", meta.get("ad_path"))
        df["scores_path"] = str(path)
        frames.append(df)

    if not frames:
        print("[SUMMARY] Nothing readable; no summary written")
        return

    summary = pd.concat(frames, ignore_index=True)
    summary = summary.sort_values(["run_id", "rank"], na_position="last")
    out_csv.parent.mkdir(parents=True, exist_ok=True)
    summary.to_csv(out_csv, index=False)
    print(f"[SUMMARY] Wrote {len(summary)} rows to {out_csv}")


if __name__ == "__main__":
    main()
