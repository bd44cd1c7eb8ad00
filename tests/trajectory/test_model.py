import dataclasses
import pickle

import numpy as np
import pandas as pd
import pytest

from ptdiag.errors import PreconditionError
from ptdiag.trajectory import TrajectoryObject, build_trajectory, curve_points_to_segments

pytestmark = pytest.mark.unit


class TestSegments:

    def test_consecutive_points_become_segments(self):
        segs = curve_points_to_segments([[0, 0], [1, 0], [1, 1]])
        assert segs.shape == (2, 2, 2)
        np.testing.assert_array_equal(segs[1], [[1, 0], [1, 1]])

    def test_order_is_applied_before_pairing(self):
        segs = curve_points_to_segments([[1, 1], [0, 0], [1, 0]], order=[1, 2, 0])
        np.testing.assert_array_equal(segs[0], [[0, 0], [1, 0]])
        np.testing.assert_array_equal(segs[1], [[1, 0], [1, 1]])

    def test_repeated_points_are_dropped(self):
        segs = curve_points_to_segments([[0, 0], [0, 0], [2, 0], [2, 0]])
        assert segs.shape == (1, 2, 2)

    def test_single_distinct_point_gives_no_segments(self):
        assert curve_points_to_segments([[3, 3], [3, 3]]).shape == (0, 2, 2)

    def test_bad_shapes(self):
        with pytest.raises(PreconditionError):
            curve_points_to_segments(np.zeros((4, 3)))
        with pytest.raises(PreconditionError):
            curve_points_to_segments(np.zeros((4, 2)), order=[0, 1])


class TestBuild:

    def test_sine_trajectory(self, sine_dataset):
        _, embedding, pseudotime, curve = sine_dataset
        traj = build_trajectory(embedding, pseudotime, {"lineage1": curve})
        assert isinstance(traj, TrajectoryObject)
        assert traj.lineages == ["lineage1"]
        assert traj.curves["lineage1"].shape == (59, 2, 2)
        assert traj.assigned("lineage1").all()
        assert list(traj.embedding.columns) == ["x", "y"]

    def test_array_pseudotime_gets_lineage_names(self):
        coords = np.arange(12.0).reshape(6, 2)
        pt = np.column_stack([np.arange(6.0), np.full(6, np.nan)])
        traj = build_trajectory(coords, pt, {"lineage1": coords})
        assert traj.lineages == ["lineage1", "lineage2"]
        assert not traj.assigned("lineage2").any()
        assert traj.curves["lineage2"].shape == (0, 2, 2)

    def test_partial_pseudotime_is_reindexed(self, sine_dataset):
        _, embedding, pseudotime, curve = sine_dataset
        traj = build_trajectory(embedding, pseudotime.iloc[:40], {"lineage1": curve})
        assert traj.pseudotime.index.equals(embedding.index)
        assert traj.assigned("lineage1").sum() == 40

    def test_pseudotime_outside_embedding(self, sine_dataset):
        _, embedding, pseudotime, curve = sine_dataset
        with pytest.raises(PreconditionError):
            build_trajectory(embedding.iloc[:50], pseudotime, {"lineage1": curve})

    def test_missing_curve_for_assigned_lineage(self, sine_dataset):
        _, embedding, pseudotime, _ = sine_dataset
        with pytest.raises(PreconditionError):
            build_trajectory(embedding, pseudotime, {})

    def test_degenerate_curve_for_assigned_lineage(self, sine_dataset):
        _, embedding, pseudotime, _ = sine_dataset
        with pytest.raises(PreconditionError):
            build_trajectory(embedding, pseudotime, {"lineage1": [[1.0, 1.0]]})

    def test_infinite_pseudotime(self, sine_dataset):
        _, embedding, pseudotime, curve = sine_dataset
        pt = pseudotime.copy()
        pt.iloc[3, 0] = np.inf
        with pytest.raises(PreconditionError):
            build_trajectory(embedding, pt, {"lineage1": curve})


class TestImmutability:

    @pytest.fixture
    def traj(self, sine_dataset):
        _, embedding, pseudotime, curve = sine_dataset
        return build_trajectory(embedding, pseudotime, {"lineage1": curve})

    def test_fields_cannot_be_rebound(self, traj):
        with pytest.raises(dataclasses.FrozenInstanceError):
            traj.curves = {}

    def test_segment_arrays_are_read_only(self, traj):
        with pytest.raises(ValueError):
            traj.curves["lineage1"][0, 0, 0] = 99.0

    def test_curve_mapping_has_no_item_assignment(self, traj):
        with pytest.raises(TypeError):
            traj.curves["lineage2"] = np.zeros((1, 2, 2))

    def test_pickle_roundtrip(self, traj):
        clone = pickle.loads(pickle.dumps(traj))
        np.testing.assert_array_equal(clone.curves["lineage1"], traj.curves["lineage1"])
        pd.testing.assert_frame_equal(clone.pseudotime, traj.pseudotime)
