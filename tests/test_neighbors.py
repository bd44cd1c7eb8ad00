import numpy as np
import pytest

from ptdiag.errors import ConfigurationError, PreconditionError
from ptdiag.neighbors import knn, knn_sets_with_ties

pytestmark = pytest.mark.unit


def test_knn_excludes_self(grid_points):
    """Neighbors never contain the query point itself."""
    _, idx = knn(grid_points, 3)
    assert idx.shape == (100, 3)
    assert not (idx == np.arange(100)[:, None]).any()


def test_tied_neighbors_are_all_included(grid_points):
    """An interior lattice point has four neighbors tied at distance 1."""
    sets = knn_sets_with_ties(grid_points, 1)
    interior = 5 * 10 + 5
    corner = 0
    assert len(sets[interior]) == 4
    assert len(sets[corner]) == 2


def test_tie_sets_survive_rigid_motion(grid_points):
    """Rotating the lattice does not change tie-inclusive neighbor sets."""
    theta = 0.7
    R = np.array([[np.cos(theta), -np.sin(theta)], [np.sin(theta), np.cos(theta)]])
    moved = grid_points @ R.T + np.array([3.0, -2.0])
    a = knn_sets_with_ties(grid_points, 4)
    b = knn_sets_with_ties(moved, 4)
    assert all(np.array_equal(x, y) for x, y in zip(a, b))


def test_too_few_points_is_a_precondition_error():
    with pytest.raises(PreconditionError):
        knn(np.zeros((3, 2)), 3)


def test_non_positive_k_is_a_configuration_error(grid_points):
    with pytest.raises(ConfigurationError):
        knn(grid_points, 0)
