"""Unit tests for reduction module."""

import pytest
import numpy as np
import pandas as pd

from cytotraj.core.reduction import (
    ReductionConfig,
    ReductionEngine,
    ReductionResult,
)


class TestReductionConfig:
    """Tests for ReductionConfig dataclass."""

    def test_default_values(self):
        config = ReductionConfig()
        assert config.methods == ["pca", "tsne"]
        assert config.n_pcs == 20
        assert config.perplexity == 30.0
        assert config.use_downsampled is False

    def test_from_yaml(self, tmp_path):
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("reduction:\n  methods: [pca, diffmap]\n  n_dcs: 5\n")
        config = ReductionConfig.from_yaml(yaml_file)
        assert config.methods == ["pca", "diffmap"]
        assert config.n_dcs == 5

    def test_to_dict(self):
        d = ReductionConfig(methods=["umap"]).to_dict()
        assert d["methods"] == ["umap"]
        assert "umap_min_dist" in d


class TestReductionEngine:
    """Tests for ReductionEngine class."""

    def test_pca(self, small_trajectory_adata):
        engine = ReductionEngine(ReductionConfig(n_pcs=3))
        key = engine.run_pca(small_trajectory_adata)
        assert key == "X_pca"
        assert small_trajectory_adata.obsm["X_pca"].shape == (small_trajectory_adata.n_obs, 3)

    def test_pca_components_clamped(self, small_trajectory_adata):
        """n_pcs above n_vars - 1 is reduced."""
        engine = ReductionEngine(ReductionConfig(n_pcs=50))
        engine.run_pca(small_trajectory_adata)
        assert small_trajectory_adata.obsm["X_pca"].shape[1] == small_trajectory_adata.n_vars - 1

    def test_run_methods(self, small_trajectory_adata):
        engine = ReductionEngine(ReductionConfig(methods=["pca", "tsne", "diffmap"], n_dcs=4))
        result = engine.run(small_trajectory_adata)
        assert isinstance(result, ReductionResult)
        assert result.embedding_keys == ["X_pca", "X_tsne", "X_diffmap"]
        assert small_trajectory_adata.obsm["X_tsne"].shape[1] == 2
        # trivial first diffusion component is dropped
        assert small_trajectory_adata.obsm["X_diffmap"].shape[1] == 4
        record = small_trajectory_adata.uns["reduction"]
        assert record["methods"] == ["pca", "tsne", "diffmap"]
        assert record["layer"] == "X"
        assert record["n_embedded"] == small_trajectory_adata.n_obs

    def test_umap(self, small_trajectory_adata):
        engine = ReductionEngine(ReductionConfig(neighbors_k=10))
        engine.run_umap(small_trajectory_adata)
        embedding = small_trajectory_adata.obsm["X_umap"]
        assert embedding.shape == (small_trajectory_adata.n_obs, 2)
        assert np.isfinite(embedding).all()

    def test_use_downsampled(self, small_trajectory_adata):
        mask = np.zeros(small_trajectory_adata.n_obs, dtype=bool)
        mask[::2] = True
        small_trajectory_adata.obs["is_downsampled"] = mask
        engine = ReductionEngine(ReductionConfig(methods=["pca"], use_downsampled=True))
        result = engine.run(small_trajectory_adata)
        embedding = small_trajectory_adata.obsm["X_pca"]
        assert result.n_embedded == int(mask.sum())
        assert np.isfinite(embedding[mask]).all()
        assert np.isnan(embedding[~mask]).all()

    def test_use_downsampled_without_column(self, small_trajectory_adata):
        engine = ReductionEngine(ReductionConfig(use_downsampled=True))
        with pytest.raises(KeyError, match="is_downsampled"):
            engine.run(small_trajectory_adata)

    def test_layer(self, small_trajectory_adata):
        small_trajectory_adata.layers["raw"] = np.asarray(small_trajectory_adata.X) * 10
        engine = ReductionEngine(ReductionConfig(methods=["pca"], layer="raw"))
        engine.run(small_trajectory_adata)
        assert small_trajectory_adata.uns["reduction"]["layer"] == "raw"

    def test_unknown_method(self, small_trajectory_adata):
        with pytest.raises(ValueError, match="Unknown reduction"):
            ReductionEngine().run(small_trajectory_adata, methods=["mds"])

    def test_tsne_too_few_cells(self, small_trajectory_adata):
        engine = ReductionEngine()
        with pytest.raises(ValueError, match="t-SNE"):
            engine.run_tsne(small_trajectory_adata[:3].copy())

    def test_cluster_matrix_computed(self, small_trajectory_adata):
        engine = ReductionEngine()
        matrix = engine.cluster_matrix(small_trajectory_adata)
        assert list(matrix.index) == [str(i) for i in range(7)]
        assert list(matrix.columns) == list(small_trajectory_adata.var_names)

    def test_cluster_matrix_prefers_centroids(self, small_trajectory_adata):
        centroids = pd.DataFrame(
            np.ones((2, small_trajectory_adata.n_vars)),
            index=["a", "b"],
            columns=small_trajectory_adata.var_names,
        )
        small_trajectory_adata.uns["cluster_centroids"] = centroids
        matrix = ReductionEngine().cluster_matrix(small_trajectory_adata)
        assert list(matrix.index) == ["a", "b"]

    def test_cluster_matrix_recomputes_for_other_key(self, small_trajectory_adata):
        small_trajectory_adata.uns["cluster_centroids"] = pd.DataFrame(
            np.ones((2, small_trajectory_adata.n_vars)),
            index=["a", "b"],
            columns=small_trajectory_adata.var_names,
        )
        small_trajectory_adata.uns["cluster_centroids_key"] = "cluster_id"
        small_trajectory_adata.obs["two"] = np.where(
            small_trajectory_adata.obs["cluster_id"].isin(["0", "1", "2"]), "0", "1"
        )
        matrix = ReductionEngine().cluster_matrix(small_trajectory_adata, cluster_key="two")
        assert list(matrix.index) == ["0", "1"]
        in_first = (small_trajectory_adata.obs["two"] == "0").to_numpy()
        expected = np.asarray(small_trajectory_adata.X)[in_first].mean(axis=0)
        np.testing.assert_allclose(matrix.loc["0"].to_numpy(), expected, rtol=1e-5)

    def test_cluster_reduction_pca(self, small_trajectory_adata):
        engine = ReductionEngine(ReductionConfig(n_pcs=2))
        embeddings = engine.run_cluster_reduction(small_trajectory_adata, methods=["pca"])
        assert "pca" in embeddings
        pca = embeddings["pca"]
        assert list(pca.index) == [str(i) for i in range(7)]
        assert list(pca.columns) == ["PC1", "PC2"]
        assert list(small_trajectory_adata.uns["cluster_embeddings"]) == ["pca"]

    def test_cluster_reduction_too_few_clusters(self, small_trajectory_adata):
        small_trajectory_adata.obs["two"] = np.where(
            small_trajectory_adata.obs["cluster_id"].isin(["0", "1", "2"]), "0", "1"
        )
        engine = ReductionEngine()
        embeddings = engine.run_cluster_reduction(
            small_trajectory_adata, cluster_key="two", methods=["tsne", "diffmap"]
        )
        assert embeddings == {}


class TestRunReductionStage:
    """Tests for the reduction stage runner."""

    def test_writes_outputs(self, small_trajectory_adata, tmp_path):
        from cytotraj.core.reduction.__main__ import run_reduction_stage

        input_path = tmp_path / "clustered.h5ad"
        small_trajectory_adata.write_h5ad(input_path)
        config = ReductionConfig(methods=["pca"], cluster_level=True)
        adata = run_reduction_stage(input_path, tmp_path / "out", config=config)
        assert (tmp_path / "out" / "reduced.h5ad").exists()
        assert "X_pca" in adata.obsm
        assert "pca" in adata.uns["cluster_embeddings"]
