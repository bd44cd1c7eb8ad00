import numpy as np
import pandas as pd
import pytest
import scanpy as sc

from ptdiag.trajectory import AnnDataTrajectoryProvider, TrajectoryObject

pytestmark = pytest.mark.unit


@pytest.fixture
def adata(sine_dataset):
    expression, embedding, pseudotime, curve = sine_dataset
    ad = sc.AnnData(
        X=expression.to_numpy(),
        obs=pd.DataFrame({"slingPseudotime_1": pseudotime["lineage1"]}, index=expression.index),
    )
    ad.layers["counts"] = np.round(expression.to_numpy() * 10.0)
    ad.obsm["X_sine"] = np.column_stack([embedding.to_numpy(), np.zeros(ad.n_obs)])
    ad.obsm["X_pt"] = pseudotime.to_numpy()
    ad.uns["trajectory_curves"] = {
        "curve1": {"points": curve[::-1].copy(), "order": np.arange(60)[::-1].copy()}
    }
    return ad


class TestViews:

    def test_expression_sources(self, adata):
        X = AnnDataTrajectoryProvider().get_expression(adata)
        assert X.shape == (100, 3)
        assert list(X.index) == list(adata.obs_names)
        counts = AnnDataTrajectoryProvider(expression_source="counts").get_expression(adata)
        assert counts.to_numpy()[-1, 0] == 100.0
        obsm = AnnDataTrajectoryProvider(expression_source="X_sine").get_expression(adata)
        assert obsm.shape == (100, 3)

    def test_unknown_expression_source(self, adata):
        with pytest.raises(KeyError):
            AnnDataTrajectoryProvider(expression_source="nope").get_expression(adata)

    def test_embedding_uses_first_two_columns(self, adata):
        emb = AnnDataTrajectoryProvider().get_embedding(adata, "X_sine")
        assert list(emb.columns) == ["x", "y"]
        assert emb.shape == (100, 2)

    def test_pseudotime_from_obs_or_obsm(self, adata):
        provider = AnnDataTrajectoryProvider()
        from_obs = provider.get_pseudotime(adata, "slingPseudotime_1")
        from_obsm = provider.get_pseudotime(adata, "X_pt")
        assert list(from_obs.columns) == ["slingPseudotime_1"]
        assert list(from_obsm.columns) == ["lineage1"]
        np.testing.assert_allclose(from_obs.to_numpy(), from_obsm.to_numpy())

    def test_missing_keys(self, adata):
        provider = AnnDataTrajectoryProvider()
        with pytest.raises(KeyError):
            provider.get_embedding(adata, "X_umap")
        with pytest.raises(KeyError):
            provider.get_pseudotime(adata, ["slingPseudotime_9"])
        with pytest.raises(KeyError):
            AnnDataTrajectoryProvider(curves_key="other").get_curves(adata)


class TestTrajectory:

    def test_curve_order_is_applied(self, adata):
        points, orders = AnnDataTrajectoryProvider().get_curves(adata)
        assert list(points) == ["curve1"]
        ordered = points["curve1"][orders["curve1"]]
        assert ordered[0, 0] == 0.0 and ordered[-1, 0] == 10.0

    def test_curves_renamed_to_lineages(self, adata):
        traj = AnnDataTrajectoryProvider().get_trajectory(
            adata, "X_sine", "X_pt", rename_curves=True
        )
        assert isinstance(traj, TrajectoryObject)
        assert traj.lineages == ["lineage1"]
        segs = traj.curves["lineage1"]
        assert segs.shape == (59, 2, 2)
        assert segs[0, 0, 0] == 0.0

    def test_unmatched_curve_names_fail(self, adata):
        from ptdiag.errors import PreconditionError

        with pytest.raises(PreconditionError):
            AnnDataTrajectoryProvider().get_trajectory(adata, "X_sine", "X_pt")
