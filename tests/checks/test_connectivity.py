import numpy as np
import pandas as pd
import pytest
from scipy import sparse
from scipy.sparse.csgraph import connected_components
from scipy.spatial.distance import cdist

from ptdiag.checks.connectivity import check_connectivity
from ptdiag.neighbors import knn
from ptdiag.errors import ConfigurationError, PreconditionError

pytestmark = pytest.mark.unit


class TestConnectedStructures:
    """Clouds that form one structure."""

    def test_lattice_is_single_and_connected(self, grid_points):
        res = check_connectivity(grid_points, k_neighbors=5)
        assert res.connected is True
        assert res.label == "single"
        assert res.n_components == 1
        assert res.n_groups == 1
        assert np.all(res.labels == 0)

    def test_uneven_sampling_gap_is_merged_back(self, gapped_line):
        """A kNN split caused by a slightly wider gap is not a separation."""
        res = check_connectivity(gapped_line, k_neighbors=3, separation_ratio=3.0)
        assert res.n_components == 2
        assert res.n_groups == 1
        assert res.connected is True
        assert res.separation[(0, 1)] == pytest.approx(0.35 / (0.4 / 3), rel=1e-6)

    def test_dataframe_input(self, grid_points):
        df = pd.DataFrame(grid_points, index=[f"c{i}" for i in range(100)])
        assert check_connectivity(df, k_neighbors=4).connected


class TestSeparatedStructures:
    """Clouds made of distinct groups."""

    def test_two_blobs_are_disconnected(self, two_blobs):
        res = check_connectivity(two_blobs, k_neighbors=5)
        assert res.connected is False
        assert res.label == "multi"
        assert res.n_groups == 2
        assert len(set(res.labels[:30])) == 1
        assert len(set(res.labels[30:])) == 1
        assert res.labels[0] != res.labels[30]
        assert max(res.separation.values()) > 3.0

    def test_high_threshold_merges_blobs(self, two_blobs):
        res = check_connectivity(two_blobs, k_neighbors=5, separation_ratio=1e6)
        assert res.connected is True
        assert res.n_components >= 2


class TestValidation:

    def test_insufficient_cells(self):
        with pytest.raises(PreconditionError):
            check_connectivity(np.zeros((5, 2)), k_neighbors=5)

    def test_non_positive_k(self, grid_points):
        with pytest.raises(ConfigurationError):
            check_connectivity(grid_points, k_neighbors=0)

    def test_non_positive_ratio(self, grid_points):
        with pytest.raises(ConfigurationError):
            check_connectivity(grid_points, separation_ratio=0)

    def test_non_finite_points(self, grid_points):
        pts = grid_points.copy()
        pts[3, 1] = np.nan
        with pytest.raises(PreconditionError):
            check_connectivity(pts)


def test_repeat_runs_are_identical(two_blobs):
    a = check_connectivity(two_blobs, k_neighbors=5)
    b = check_connectivity(two_blobs, k_neighbors=5)
    assert np.array_equal(a.labels, b.labels)
    assert np.array_equal(a.within_distances, b.within_distances)
    assert a.separation == b.separation


def test_many_components_merge_like_an_exhaustive_pair_scan():
    """k=1 shreds a uniform cloud; merging must match comparing every pair."""
    X = np.random.default_rng(12).uniform(0.0, 30.0, size=(300, 2))
    res = check_connectivity(X, k_neighbors=1, separation_ratio=3.0)
    assert res.n_components > 20

    _, idx = knn(X, 1)
    A = sparse.csr_matrix((np.ones(300), (np.arange(300), idx[:, 0])), shape=(300, 300))
    n_comp, comp = connected_components(A.maximum(A.T), directed=False)
    assert n_comp == res.n_components

    touching = []
    for a in range(n_comp):
        for b in range(a + 1, n_comp):
            cross = cdist(X[comp == a], X[comp == b]).min()
            scale = max(res.within_distances[a], res.within_distances[b])
            if cross / scale <= 3.0:
                touching.append((a, b))
    pairs = np.asarray(touching, dtype=np.int64).reshape(-1, 2)
    G = sparse.csr_matrix(
        (np.ones(len(pairs)), (pairs[:, 0], pairs[:, 1])), shape=(n_comp, n_comp)
    )
    n_groups, group = connected_components(G, directed=False)
    expected = group[comp]

    assert res.n_groups == n_groups
    # same partition up to relabeling
    assert len(set(zip(res.labels, expected))) == n_groups
