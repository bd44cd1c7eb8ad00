import numpy as np
import pytest
from scipy import sparse

from ptdiag.checks.homogeneity import distance_dispersion, test_homogeneity
from ptdiag.errors import (
    ConfigurationError,
    NumericalDegeneracyError,
    PreconditionError,
)

pytestmark = pytest.mark.unit


def test_two_groups_have_structure(two_group_expression):
    res = test_homogeneity(two_group_expression, num_permutations=20, seed=0)
    assert res.decision == "has_structure"
    assert res.homogeneous is False
    assert res.p_value == pytest.approx(1.0 / 21.0)
    assert res.statistic > res.null.max()


def test_single_gene_is_homogeneous():
    """Permuting one gene cannot change the distance distribution."""
    X = np.linspace(0.0, 3.0, 30)[:, None]
    res = test_homogeneity(X, num_permutations=20, seed=3)
    assert res.p_value == pytest.approx(1.0)
    assert res.homogeneous is True
    assert res.decision == "homogeneous"


def test_same_seed_is_reproducible(two_group_expression):
    a = test_homogeneity(two_group_expression, num_permutations=25, seed=7)
    b = test_homogeneity(two_group_expression, num_permutations=25, seed=7)
    assert a.statistic == b.statistic
    assert a.p_value == b.p_value
    assert np.array_equal(a.null, b.null)


def test_max_cells_subsamples(two_group_expression):
    res = test_homogeneity(two_group_expression, num_permutations=5, max_cells=40)
    assert res.n_cells_used == 40
    assert res.null.shape == (5,)


def test_sparse_input_matches_dense(two_group_expression):
    dense = test_homogeneity(two_group_expression.to_numpy(), num_permutations=5)
    sp = test_homogeneity(sparse.csr_matrix(two_group_expression.to_numpy()), num_permutations=5)
    assert dense.statistic == pytest.approx(sp.statistic)
    assert np.allclose(dense.null, sp.null)


def test_coincident_cells_are_degenerate():
    with pytest.raises(NumericalDegeneracyError):
        distance_dispersion(np.ones((10, 4)))
    with pytest.raises(NumericalDegeneracyError):
        test_homogeneity(np.ones((10, 4)))


def test_too_few_cells():
    with pytest.raises(PreconditionError):
        test_homogeneity(np.array([[0.0, 1.0], [1.0, 0.0]]))


@pytest.mark.parametrize("n_perm", [0, -3, 2.5])
def test_bad_permutation_count(two_group_expression, n_perm):
    with pytest.raises(ConfigurationError):
        test_homogeneity(two_group_expression, num_permutations=n_perm)
