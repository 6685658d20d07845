"""Unit tests for clustering module."""

import pytest
import numpy as np
import pandas as pd

from cytotraj.core.clustering import (
    ClusteringConfig,
    DEConfig,
    ClusteringStageConfig,
    ClusteringEngine,
    ClusteringResult,
    BranchDERunner,
    SelfOrganizingMap,
    relabel_contiguous,
)


class TestClusteringConfig:
    """Tests for ClusteringConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = ClusteringConfig()
        assert config.method == "som"
        assert config.k == 25
        assert (config.xdim, config.ydim) == (6, 6)
        assert config.rlen == 10
        assert config.random_seed == 42
        assert config.cluster_key == "cluster_id"

    def test_custom_values(self):
        """Test custom configuration values."""
        config = ClusteringConfig(method="kmeans", k=8, scale=True)
        assert config.method == "kmeans"
        assert config.k == 8
        assert config.scale is True


class TestDEConfig:
    """Tests for DEConfig dataclass."""

    def test_default_values(self):
        """Test default DE configuration values."""
        config = DEConfig()
        assert config.method == "wilcoxon"
        assert config.n_genes == 10
        assert config.layer is None
        assert config.tie_correct is True


class TestClusteringStageConfig:
    """Tests for ClusteringStageConfig dataclass."""

    def test_from_yaml(self, tmp_path):
        """Test loading config from YAML."""
        yaml_content = """
clustering_stage:
  clustering:
    method: clara
    k: 12
  processing:
    downsampling_size: 0.5
  de:
    method: t-test
"""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text(yaml_content)

        config = ClusteringStageConfig.from_yaml(yaml_file)
        assert config.clustering.method == "clara"
        assert config.clustering.k == 12
        assert config.processing.downsampling_size == 0.5
        assert config.de.method == "t-test"

    def test_to_dict(self):
        """Test converting config to dictionary."""
        d = ClusteringStageConfig().to_dict()
        assert set(d) == {"clustering", "processing", "de"}
        assert d["clustering"]["method"] == "som"
        assert d["processing"]["min_cells_per_cluster"] == 10


class TestRelabelContiguous:
    """Tests for relabel_contiguous."""

    def test_gaps_removed(self):
        labels = relabel_contiguous(np.array([5, 5, 9, 2]))
        assert list(labels) == ["1", "1", "2", "0"]
        assert list(labels.categories) == ["0", "1", "2"]


class TestSelfOrganizingMap:
    """Tests for SelfOrganizingMap."""

    def test_grid_shape(self):
        som = SelfOrganizingMap(xdim=3, ydim=2)
        assert som.n_nodes == 6
        assert som.grid.shape == (6, 2)
        assert som.radius_start > 0

    def test_fit_predict(self, trajectory_adata):
        X = np.asarray(trajectory_adata.X)
        som = SelfOrganizingMap(xdim=3, ydim=3, rlen=5, random_seed=1).fit(X)
        assert som.codes.shape == (9, X.shape[1])
        nodes = som.predict(X)
        assert nodes.shape == (X.shape[0],)
        assert nodes.min() >= 0 and nodes.max() < 9

    def test_reproducible(self, trajectory_adata):
        X = np.asarray(trajectory_adata.X)
        a = SelfOrganizingMap(xdim=2, ydim=2, rlen=3, random_seed=7).fit(X).codes
        b = SelfOrganizingMap(xdim=2, ydim=2, rlen=3, random_seed=7).fit(X).codes
        np.testing.assert_array_equal(a, b)

    def test_too_few_cells(self):
        with pytest.raises(ValueError, match="nodes"):
            SelfOrganizingMap(xdim=5, ydim=5).fit(np.zeros((10, 3)))

    def test_predict_before_fit(self):
        with pytest.raises(RuntimeError):
            SelfOrganizingMap(xdim=2, ydim=2).predict(np.zeros((4, 3)))

    def test_invalid_grid(self):
        with pytest.raises(ValueError):
            SelfOrganizingMap(xdim=0, ydim=3)


class TestClusteringEngine:
    """Tests for ClusteringEngine class."""

    def test_init_default_config(self):
        """Test engine initialization with default config."""
        engine = ClusteringEngine()
        assert engine.config.clustering.method == "som"

    def test_select_layer(self, trajectory_adata):
        """Test layer selection pins the layer into X."""
        engine = ClusteringEngine()
        trajectory_adata.layers["raw"] = np.asarray(trajectory_adata.X) * 2
        layer = engine.select_layer(trajectory_adata, "raw")
        assert layer == "raw"
        np.testing.assert_allclose(
            trajectory_adata.X, trajectory_adata.layers["raw"], rtol=1e-6
        )

    def test_select_layer_fallback(self, trajectory_adata):
        """Test layer fallback when requested layer not found."""
        engine = ClusteringEngine()
        assert engine.select_layer(trajectory_adata, "nonexistent") == "X"

    def test_filter_low_variance_markers(self, trajectory_adata):
        """Test low variance marker filtering."""
        engine = ClusteringEngine()
        trajectory_adata.X[:, 1] = 1.0
        filtered, dropped = engine.filter_low_variance_markers(trajectory_adata, min_std=0.1)
        assert dropped == ["CD38"]
        assert filtered.n_vars == trajectory_adata.n_vars - 1

    def test_filter_all_markers_raises(self, trajectory_adata):
        engine = ClusteringEngine()
        trajectory_adata.X[:, :] = 1.0
        with pytest.raises(ValueError, match="nothing to cluster"):
            engine.filter_low_variance_markers(trajectory_adata)

    def test_kmeans_recovers_clusters(self, trajectory_adata):
        from sklearn.metrics import adjusted_rand_score

        truth = trajectory_adata.obs["cluster_id"].astype(str).to_numpy()
        engine = ClusteringEngine()
        result = engine.run_clustering(
            trajectory_adata, method="kmeans", k=7, cluster_key="kmeans_id"
        )
        assert isinstance(result, ClusteringResult)
        assert result.n_clusters == 7
        assert sum(result.cluster_sizes.values()) == trajectory_adata.n_obs
        assert adjusted_rand_score(truth, trajectory_adata.obs["kmeans_id"]) > 0.9
        assert trajectory_adata.uns["clustering"]["method"] == "kmeans"

    @pytest.mark.parametrize("method", ["clara", "hclust", "mclust"])
    def test_k_based_methods(self, trajectory_adata, method):
        engine = ClusteringEngine()
        result = engine.run_clustering(trajectory_adata, method=method, k=5)
        labels = trajectory_adata.obs["cluster_id"]
        assert 1 <= result.n_clusters <= 5
        assert list(labels.cat.categories) == [str(i) for i in range(result.n_clusters)]
        assert labels.notna().all()

    @pytest.mark.parametrize("method", ["kmeans", "clara", "hclust", "mclust"])
    def test_same_seed_same_labels(self, trajectory_adata, method):
        first = trajectory_adata.copy()
        second = trajectory_adata.copy()
        ClusteringEngine().run_clustering(first, method=method, k=5, random_seed=3)
        ClusteringEngine().run_clustering(second, method=method, k=5, random_seed=3)
        np.testing.assert_array_equal(
            first.obs["cluster_id"].to_numpy(), second.obs["cluster_id"].to_numpy()
        )

    def test_leiden_clustering(self, trajectory_adata):
        X_before = np.asarray(trajectory_adata.X).copy()
        engine = ClusteringEngine()
        result = engine.run_clustering(
            trajectory_adata, method="leiden", neighbors_k=15, resolution=0.5
        )
        labels = trajectory_adata.obs["cluster_id"]
        assert result.method == "leiden"
        assert result.n_clusters >= 2
        assert list(labels.cat.categories) == [str(i) for i in range(result.n_clusters)]
        assert labels.notna().all()
        assert trajectory_adata.uns["clustering"]["method"] == "leiden"
        np.testing.assert_array_equal(np.asarray(trajectory_adata.X), X_before)

    def test_som_clustering(self, trajectory_adata):
        config = ClusteringStageConfig(clustering=ClusteringConfig(xdim=3, ydim=3, rlen=5))
        engine = ClusteringEngine(config)
        result = engine.run_clustering(trajectory_adata)
        assert result.method == "som"
        assert "som_node" in trajectory_adata.obs
        assert trajectory_adata.uns["som"]["codes"].shape == (9, trajectory_adata.n_vars)
        # clusters are the occupied nodes
        assert result.n_clusters == trajectory_adata.obs["som_node"].nunique()

    def test_hclust_subset_assignment(self, trajectory_adata):
        config = ClusteringStageConfig(clustering=ClusteringConfig(hclust_max_cells=50))
        engine = ClusteringEngine(config)
        result = engine.run_clustering(trajectory_adata, method="hclust", k=4)
        assert result.n_clusters <= 4
        assert trajectory_adata.obs["cluster_id"].notna().all()

    def test_scale_option(self, trajectory_adata):
        engine = ClusteringEngine()
        engine.run_clustering(trajectory_adata, method="kmeans", k=3, scale=True)
        assert trajectory_adata.uns["clustering"]["scale"] is True

    def test_unknown_method(self, trajectory_adata):
        with pytest.raises(ValueError, match="Unknown clustering method"):
            ClusteringEngine().run_clustering(trajectory_adata, method="dbscan")

    def test_k_exceeds_cells(self, small_trajectory_adata):
        with pytest.raises(ValueError, match="exceeds"):
            ClusteringEngine().run_clustering(
                small_trajectory_adata, method="kmeans", k=small_trajectory_adata.n_obs + 1
            )

    def test_process_clusters_centroids(self, trajectory_adata):
        engine = ClusteringEngine()
        centroids = engine.process_clusters(trajectory_adata, downsampling_size=1.0)
        assert list(centroids.index) == [str(i) for i in range(7)]
        expected = np.asarray(trajectory_adata.X)[
            (trajectory_adata.obs["cluster_id"] == "3").to_numpy()
        ].mean(axis=0)
        np.testing.assert_allclose(centroids.loc["3"].to_numpy(), expected, rtol=1e-5)
        assert trajectory_adata.obs["is_downsampled"].all()
        assert trajectory_adata.uns["cluster_centroids"].equals(centroids)
        assert trajectory_adata.uns["cluster_centroids_key"] == "cluster_id"

    def test_process_clusters_downsampling(self, trajectory_adata):
        engine = ClusteringEngine()
        engine.process_clusters(
            trajectory_adata, downsampling_size=0.5, min_cells_per_cluster=5
        )
        kept = trajectory_adata.obs.groupby("cluster_id", observed=True)["is_downsampled"].sum()
        assert (kept == 15).all()

    def test_process_clusters_absolute_size_and_minimum(self, trajectory_adata):
        engine = ClusteringEngine()
        engine.process_clusters(
            trajectory_adata, downsampling_size=4, min_cells_per_cluster=8
        )
        kept = trajectory_adata.obs.groupby("cluster_id", observed=True)["is_downsampled"].sum()
        assert (kept == 8).all()

    def test_process_clusters_missing_key(self, trajectory_adata):
        with pytest.raises(KeyError):
            ClusteringEngine().process_clusters(trajectory_adata, cluster_key="nope")

    def test_process_clusters_bad_size(self, trajectory_adata):
        with pytest.raises(ValueError, match="positive"):
            ClusteringEngine().process_clusters(trajectory_adata, downsampling_size=0)


class TestBranchDERunner:
    """Tests for BranchDERunner."""

    def test_one_vs_rest(self, trajectory_adata):
        runner = BranchDERunner()
        result = runner.run_diff(trajectory_adata, groupby="cluster_id", n_genes=3)
        assert set(result.group_markers) == {str(i) for i in range(7)}
        # cluster 4 is high in CD3, cluster 6 in CD19
        assert result.group_markers["4"][0] == "CD3"
        assert result.group_markers["6"][0] == "CD19"
        assert "de_cluster_id" in trajectory_adata.uns

    def test_against_reference(self, trajectory_adata):
        runner = BranchDERunner()
        result = runner.run_diff(
            trajectory_adata, groupby="cluster_id", groups=["4"], reference="0"
        )
        assert list(result.group_markers) == ["4"]
        assert result.reference == "0"
        frame = result.to_frame()
        assert (frame["group"] == "4").all()
        assert "names" in frame.columns

    def test_string_column_is_converted(self, trajectory_adata):
        trajectory_adata.obs["branch"] = np.where(
            trajectory_adata.obs["cluster_id"].isin(["3", "4"]), "a", "b"
        )
        result = BranchDERunner().run_diff(trajectory_adata, groupby="branch")
        assert set(result.group_markers) == {"a", "b"}

    def test_missing_column(self, trajectory_adata):
        with pytest.raises(KeyError):
            BranchDERunner().run_diff(trajectory_adata, groupby="branch_id")

    def test_unknown_group(self, trajectory_adata):
        with pytest.raises(ValueError, match="Unknown groups"):
            BranchDERunner().run_diff(trajectory_adata, groupby="cluster_id", groups=["99"])

    def test_single_group(self, trajectory_adata):
        trajectory_adata.obs["one"] = "x"
        with pytest.raises(ValueError, match="at least two groups"):
            BranchDERunner().run_diff(trajectory_adata, groupby="one")

    def test_empty_result_frame(self):
        from cytotraj.core.clustering import DEResult

        frame = DEResult().to_frame()
        assert list(frame.columns) == ["group", "names", "scores", "pvals_adj"]
        assert frame.empty


class TestRunClusteringStage:
    """Tests for the clustering stage runner."""

    def test_writes_outputs(self, trajectory_adata, tmp_path):
        from cytotraj.core.clustering.__main__ import run_clustering_stage

        input_path = tmp_path / "merged.h5ad"
        trajectory_adata.write_h5ad(input_path)
        config = ClusteringStageConfig(clustering=ClusteringConfig(method="kmeans", k=7))
        adata = run_clustering_stage(input_path, tmp_path / "out", config=config)

        assert (tmp_path / "out" / "clustered.h5ad").exists()
        sizes = pd.read_csv(tmp_path / "out" / "cluster_sizes.csv")
        assert sizes["n_cells"].sum() == adata.n_obs
        assert sizes["fraction"].sum() == pytest.approx(1.0)
        assert "cluster_centroids" in adata.uns

    def test_missing_input(self, tmp_path):
        from cytotraj.core.clustering.__main__ import run_clustering_stage

        with pytest.raises(FileNotFoundError):
            run_clustering_stage(tmp_path / "missing.h5ad", tmp_path / "out")
