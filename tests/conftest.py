"""Shared synthetic data for the ptdiag test suite.

All fixtures are deterministic: fixed seeds or exact lattices, so every
check can assert exact outcomes.
"""

import numpy as np
import pandas as pd
import pytest

from ptdiag.config import EvaluationConfig


@pytest.fixture
def grid_points():
    """10 x 10 unit lattice, one connected structure."""
    gi, gj = np.meshgrid(np.arange(10.0), np.arange(10.0), indexing="ij")
    return np.column_stack([gi.ravel(), gj.ravel()])


@pytest.fixture
def two_blobs():
    """Two tight 2D blobs (30 points each) far apart."""
    rng = np.random.default_rng(0)
    a = rng.normal(loc=0.0, scale=0.1, size=(30, 2))
    b = rng.normal(loc=10.0, scale=0.1, size=(30, 2))
    return np.vstack([a, b])


@pytest.fixture
def gapped_line():
    """A line sampled every 0.1 with one slightly wider gap (0.35)."""
    left = np.arange(51) * 0.1
    right = 5.35 + np.arange(51) * 0.1
    x = np.concatenate([left, right])
    return np.column_stack([x, np.zeros_like(x)])


@pytest.fixture
def two_group_expression():
    """60 cells x 10 genes; the first 5 genes separate two groups."""
    rng = np.random.default_rng(1)
    X = rng.normal(scale=0.5, size=(60, 10))
    X[30:, :5] += 5.0
    ids = [f"cell{i:03d}" for i in range(60)]
    genes = [f"g{j}" for j in range(10)]
    return pd.DataFrame(X, index=ids, columns=genes)


@pytest.fixture
def sine_dataset():
    """
    100 cells on a sine-shaped continuum.

    Expression has the 2D curve coordinates plus a constant gene, so the
    2D embedding reproduces expression distances exactly.
    """
    t = np.linspace(0.0, 10.0, 100)
    ids = [f"c{i:03d}" for i in range(100)]
    expression = pd.DataFrame(
        {"g0": t, "g1": np.sin(t), "g2": np.zeros_like(t)}, index=ids
    )
    embedding = pd.DataFrame({"x": t, "y": np.sin(t)}, index=ids)
    pseudotime = pd.DataFrame({"lineage1": t}, index=ids)
    s = np.linspace(0.0, 10.0, 60)
    curve = np.column_stack([s, np.sin(s)])
    return expression, embedding, pseudotime, curve


@pytest.fixture
def fast_config():
    """Evaluation config with a small permutation count and fine density grid."""
    cfg = EvaluationConfig()
    cfg.homogeneity.n_permutations = 20
    cfg.density.bin_width = 0.5
    return cfg.validate()
