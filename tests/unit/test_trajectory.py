"""Unit tests for trajectory module."""

import pytest
import numpy as np
import pandas as pd
import networkx as nx

from cytotraj.core.trajectory import (
    KNNConfig,
    PseudotimeConfig,
    PseudotimeEstimator,
    RandomWalker,
    TrajectoryConfig,
    TrajectoryEngine,
    TreeBuilder,
    TreeConfig,
    WalkConfig,
    assign_branches,
    build_knn_graph,
    define_leaf_cells,
    define_root_cells,
    directed_edges,
    fetch_cluster_meta,
    select_cells,
)
from tests.fixtures import MARKERS, STAGE_ORDER, TRAJECTORY_CENTERS

EXPECTED_EDGES = {("0", "1"), ("1", "2"), ("2", "3"), ("3", "4"), ("2", "5"), ("5", "6")}


def _line_adata(positions):
    """One cell per position on a line, each in its own cluster."""
    import anndata as ad

    X = np.asarray(positions, dtype=np.float32).reshape(-1, 1)
    obs = pd.DataFrame(
        {"cluster_id": pd.Categorical([str(i) for i in range(len(positions))])},
        index=[f"cell_{i}" for i in range(len(positions))],
    )
    return ad.AnnData(X=X, obs=obs, var=pd.DataFrame(index=["m"]))


def _edge_set(tree):
    return set(zip(tree.edges["source"], tree.edges["target"]))


# ============================================================================
# Configuration
# ============================================================================


class TestTrajectoryConfig:
    """Tests for TrajectoryConfig dataclass."""

    def test_default_values(self):
        config = TrajectoryConfig()
        assert config.knn.knn == 30
        assert config.tree.dim_type == "raw"
        assert config.pseudotime.aggregate == "min"
        assert config.walk.walks_per_root == 10
        assert config.root_clusters == []

    def test_from_dict_partial(self):
        config = TrajectoryConfig.from_dict(
            {"knn": {"knn": 12}, "walk": {"mode": "nearest"}, "root_clusters": [3]}
        )
        assert config.knn.knn == 12
        assert config.knn.use_rep == "X"
        assert config.walk.mode == "nearest"
        assert config.root_clusters == ["3"]

    def test_from_yaml_section(self, tmp_path):
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text(
            "trajectory:\n"
            "  tree:\n"
            "    dim_type: tsne\n"
            "  stage_order: [D0, D2]\n"
        )
        config = TrajectoryConfig.from_yaml(yaml_file)
        assert config.tree.dim_type == "tsne"
        assert config.stage_order == ["D0", "D2"]

    def test_to_dict_round_trip(self):
        config = TrajectoryConfig(
            knn=KNNConfig(knn=5),
            pseudotime=PseudotimeConfig(aggregate="mean"),
            leaf_clusters=["4"],
        )
        restored = TrajectoryConfig.from_dict(config.to_dict())
        assert restored == config


# ============================================================================
# kNN graph
# ============================================================================


class TestKNNGraph:
    """Tests for build_knn_graph."""

    def test_symmetric_without_self_loops(self, small_trajectory_adata):
        graph = build_knn_graph(small_trajectory_adata, knn=5)
        assert graph.shape == (small_trajectory_adata.n_obs,) * 2
        assert abs(graph - graph.T).max() == 0
        assert graph.diagonal().sum() == 0
        assert "knn_distances" in small_trajectory_adata.obsp
        assert small_trajectory_adata.uns["knn"]["knn"] == 5

    def test_every_cell_has_k_neighbors(self, small_trajectory_adata):
        graph = build_knn_graph(small_trajectory_adata, knn=4)
        degree = np.diff(graph.indptr)
        assert degree.min() >= 4

    def test_knn_clamped(self):
        adata = _line_adata([0.0, 1.0, 3.0])
        build_knn_graph(adata, knn=10)
        assert adata.uns["knn"]["knn"] == 2

    def test_duplicate_cells_keep_edge(self):
        """Zero distances are kept as tiny positive weights."""
        adata = _line_adata([0.0, 0.0, 5.0])
        graph = build_knn_graph(adata, knn=1)
        assert graph[0, 1] > 0

    def test_embedding_with_dims(self, embedded_adata):
        build_knn_graph(embedded_adata, knn=5, use_rep="X_pca", dim_use=[0, 1])
        assert embedded_adata.uns["knn"]["use_rep"] == "X_pca"
        assert embedded_adata.uns["knn"]["dim_use"] == [0, 1]

    def test_missing_representation(self, small_trajectory_adata):
        with pytest.raises(KeyError, match="X_umap"):
            build_knn_graph(small_trajectory_adata, use_rep="X_umap")

    def test_dim_out_of_range(self, embedded_adata):
        with pytest.raises(ValueError, match="out of range"):
            build_knn_graph(embedded_adata, use_rep="X_pca", dim_use=[0, 9])

    def test_nan_rows_rejected(self, embedded_adata):
        embedded_adata.obsm["X_pca"][0, 0] = np.nan
        with pytest.raises(ValueError, match="NaN"):
            build_knn_graph(embedded_adata, use_rep="X_pca")

    def test_single_cell(self):
        with pytest.raises(ValueError, match="at least 2"):
            build_knn_graph(_line_adata([1.0]))


# ============================================================================
# Tree
# ============================================================================


class TestAssignBranches:
    """Tests for assign_branches."""

    def test_path_is_one_branch(self):
        import networkx as nx

        branches = assign_branches(nx.path_graph(["a", "b", "c"]))
        assert set(branches.values()) == {"1"}

    def test_star(self):
        import networkx as nx

        tree = nx.Graph([("c", "a"), ("c", "b"), ("c", "d")])
        branches = assign_branches(tree)
        # groups ordered by smallest member: {a}, {b}, {c}, {d}
        assert branches == {"a": "1", "b": "2", "c": "3", "d": "4"}


class TestTreeBuilder:
    """Tests for TreeBuilder class."""

    def test_raw_tree(self, trajectory_adata):
        tree = TreeBuilder().build_tree(trajectory_adata)
        assert _edge_set(tree) == EXPECTED_EDGES
        assert tree.leaf_clusters == ["0", "4", "6"]
        assert tree.branch_points == ["2"]

    def test_branches(self, trajectory_adata):
        tree = TreeBuilder().build_tree(trajectory_adata)
        assert tree.branches == {
            "0": "1", "1": "1", "2": "2", "3": "3", "4": "3", "5": "4", "6": "4",
        }
        assert tree.n_branches == 4

        obs = trajectory_adata.obs
        assert list(obs["branch_id"].cat.categories) == ["1", "2", "3", "4"]
        assert (obs.loc[obs["cluster_id"] == "6", "branch_id"] == "4").all()

    def test_uns_record(self, trajectory_adata):
        TreeBuilder().build_tree(trajectory_adata)
        record = trajectory_adata.uns["tree"]
        assert record["dim_type"] == "raw"
        nodes = record["nodes"]
        assert list(nodes["cluster"]) == [str(i) for i in range(7)]
        assert nodes.set_index("cluster").loc["2", "is_branch_point"]
        assert nodes["n_cells"].sum() == trajectory_adata.n_obs
        assert f"coord_{MARKERS[0]}" in nodes.columns

    def test_graph_from_uns(self, trajectory_adata):
        tree = TreeBuilder().build_tree(trajectory_adata)
        graph = TreeBuilder.graph_from_uns(trajectory_adata)
        assert set(graph.nodes) == set(tree.graph.nodes)
        assert graph.number_of_edges() == 6

    def test_graph_from_uns_missing(self, small_trajectory_adata):
        with pytest.raises(KeyError, match="tree"):
            TreeBuilder.graph_from_uns(small_trajectory_adata)

    def test_path_between(self, trajectory_adata):
        tree = TreeBuilder().build_tree(trajectory_adata)
        assert TreeBuilder.path_between(tree, "0", "4") == ["0", "1", "2", "3", "4"]
        assert TreeBuilder.path_between(tree.graph, "6", "4") == ["6", "5", "2", "3", "4"]

    def test_path_between_unknown(self, trajectory_adata):
        tree = TreeBuilder().build_tree(trajectory_adata)
        with pytest.raises(ValueError, match="not in tree"):
            TreeBuilder.path_between(tree, "0", "99")

    def test_pca_tree(self, embedded_adata):
        builder = TreeBuilder(TreeConfig(dim_type="pca", dim_use=[0, 1, 2]))
        tree = builder.build_tree(embedded_adata)
        assert _edge_set(tree) == EXPECTED_EDGES

    def test_tsne_tree(self, embedded_adata):
        tree = TreeBuilder(TreeConfig(dim_type="tsne")).build_tree(embedded_adata)
        assert tree.edges.shape[0] == 6
        assert embedded_adata.uns["tree"]["dim_type"] == "tsne"
        assert "coord_dim2" in tree.nodes.columns

    def test_missing_embedding(self, small_trajectory_adata):
        with pytest.raises(KeyError, match="X_tsne"):
            TreeBuilder(TreeConfig(dim_type="tsne")).build_tree(small_trajectory_adata)

    def test_unknown_dim_type(self, small_trajectory_adata):
        with pytest.raises(ValueError, match="Unknown dim_type"):
            TreeBuilder(TreeConfig(dim_type="mds")).build_tree(small_trajectory_adata)

    def test_missing_cluster_key(self, unclustered_adata):
        with pytest.raises(KeyError, match="cluster_id"):
            TreeBuilder().build_tree(unclustered_adata)

    def test_cluster_level_raw(self, small_trajectory_adata):
        centroids = pd.DataFrame(TRAJECTORY_CENTERS, index=MARKERS).T
        small_trajectory_adata.uns["cluster_centroids"] = centroids
        tree = TreeBuilder(TreeConfig(cluster_level=True)).build_tree(small_trajectory_adata)
        assert _edge_set(tree) == EXPECTED_EDGES
        assert tree.nodes["coord_CD34"].tolist() == [0.0, 1.5, 3.0, 4.5, 6.0, 4.5, 6.0]

    def test_cluster_level_centroids_for_other_key(self, small_trajectory_adata):
        centroids = pd.DataFrame(TRAJECTORY_CENTERS, index=MARKERS).T
        small_trajectory_adata.uns["cluster_centroids"] = centroids
        small_trajectory_adata.uns["cluster_centroids_key"] = "kmeans_id"
        with pytest.raises(KeyError, match="kmeans_id"):
            TreeBuilder(TreeConfig(cluster_level=True)).build_tree(small_trajectory_adata)

    def test_cluster_level_missing(self, small_trajectory_adata):
        with pytest.raises(KeyError, match="cluster_centroids"):
            TreeBuilder(TreeConfig(cluster_level=True)).build_tree(small_trajectory_adata)

    def test_single_cluster(self, small_trajectory_adata):
        small_trajectory_adata.obs["cluster_id"] = "0"
        tree = TreeBuilder().build_tree(small_trajectory_adata)
        assert tree.edges.empty
        assert tree.leaf_clusters == ["0"]
        assert tree.n_branches == 1


# ============================================================================
# Roots and pseudotime
# ============================================================================


class TestSelectCells:
    """Tests for root and leaf selection."""

    def test_by_cluster_and_cell(self, small_trajectory_adata):
        mask = select_cells(small_trajectory_adata, clusters=["0"], cells=["cell_20"])
        assert mask.sum() == 13
        assert mask[20]

    def test_define_root_and_leaf(self, small_trajectory_adata):
        define_root_cells(small_trajectory_adata, clusters=["0"])
        define_leaf_cells(small_trajectory_adata, clusters=["4", "6"])
        obs = small_trajectory_adata.obs
        assert obs["is_root"].sum() == 12
        assert obs["is_leaf"].sum() == 24

    def test_nothing_requested(self, small_trajectory_adata):
        with pytest.raises(ValueError, match="No root"):
            select_cells(small_trajectory_adata)

    def test_unknown_cluster(self, small_trajectory_adata):
        with pytest.raises(ValueError, match="Unknown leaf clusters"):
            select_cells(small_trajectory_adata, clusters=["42"], what="leaf")

    def test_unknown_cell(self, small_trajectory_adata):
        with pytest.raises(ValueError, match="Unknown root cells"):
            select_cells(small_trajectory_adata, cells=["nope"])


class TestPseudotimeEstimator:
    """Tests for PseudotimeEstimator class."""

    def test_line_min(self):
        adata = _line_adata([0.0, 1.0, 2.5, 4.5, 7.0])
        build_knn_graph(adata, knn=1)
        define_root_cells(adata, clusters=["0"])
        result = PseudotimeEstimator().run(adata)
        np.testing.assert_allclose(result.pseudotime, np.array([0.0, 1.0, 2.5, 4.5, 7.0]) / 7.0)
        assert result.max_distance == pytest.approx(7.0)
        assert adata.obs["pseudotime"].iloc[-1] == pytest.approx(1.0)

    def test_line_mean(self):
        adata = _line_adata([0.0, 1.0, 2.5, 4.5, 7.0])
        build_knn_graph(adata, knn=1)
        define_root_cells(adata, clusters=["0", "1"])
        result = PseudotimeEstimator(PseudotimeConfig(aggregate="mean")).run(adata)
        expected = np.array([0.5, 0.5, 2.0, 4.0, 6.5]) / 6.5
        np.testing.assert_allclose(result.pseudotime, expected)
        assert adata.uns["pseudotime"]["n_roots"] == 2

    def test_unnormalized(self):
        adata = _line_adata([0.0, 1.0, 2.5])
        build_knn_graph(adata, knn=1)
        define_root_cells(adata, clusters=["2"])
        result = PseudotimeEstimator().run(adata, normalize=False)
        np.testing.assert_allclose(result.pseudotime, [2.5, 1.5, 0.0])

    def test_unreachable_cells_are_nan(self):
        adata = _line_adata([0.0, 1.0, 100.0, 101.0])
        build_knn_graph(adata, knn=1)
        define_root_cells(adata, clusters=["0"])
        result = PseudotimeEstimator().run(adata)
        assert result.n_unreachable == 2
        assert np.isnan(result.pseudotime[2:]).all()
        np.testing.assert_allclose(result.pseudotime[:2], [0.0, 1.0])

    def test_roots_are_zero(self, path_adata):
        build_knn_graph(path_adata, knn=15)
        mask = define_root_cells(path_adata, clusters=["0"])
        result = PseudotimeEstimator().run(path_adata)
        assert result.n_unreachable == 0
        assert np.all(result.pseudotime[mask] == 0)
        assert np.nanmax(result.pseudotime) == pytest.approx(1.0)

    def test_increases_along_branches(self, path_adata):
        build_knn_graph(path_adata, knn=15)
        define_root_cells(path_adata, clusters=["0"])
        PseudotimeEstimator().run(path_adata)
        means = path_adata.obs.groupby("cluster_id", observed=True)["pseudotime"].mean()
        assert means["0"] < means["1"] < means["2"] < means["3"] < means["4"]
        assert means["2"] < means["5"] < means["6"]

    def test_unknown_aggregate(self):
        adata = _line_adata([0.0, 1.0])
        build_knn_graph(adata, knn=1)
        define_root_cells(adata, clusters=["0"])
        with pytest.raises(ValueError, match="Unknown aggregate"):
            PseudotimeEstimator().run(adata, aggregate="max")

    def test_missing_graph(self, small_trajectory_adata):
        define_root_cells(small_trajectory_adata, clusters=["0"])
        with pytest.raises(KeyError, match="knn_distances"):
            PseudotimeEstimator().run(small_trajectory_adata)

    def test_missing_roots(self, small_trajectory_adata):
        build_knn_graph(small_trajectory_adata, knn=5)
        with pytest.raises(KeyError, match="is_root"):
            PseudotimeEstimator().run(small_trajectory_adata)


# ============================================================================
# Random walks
# ============================================================================


class TestDirectedEdges:
    """Tests for directed_edges."""

    def test_forward_and_backward(self):
        adata = _line_adata([0.0, 1.0, 2.5, 4.5])
        graph = build_knn_graph(adata, knn=1)
        pseudotime = np.array([0.0, 1.0, 2.5, 4.5])

        forward = directed_edges(graph, pseudotime, forward=True)
        assert set(zip(*forward.nonzero())) == {(0, 1), (1, 2), (2, 3)}
        backward = directed_edges(graph, pseudotime, forward=False)
        assert set(zip(*backward.nonzero())) == {(1, 0), (2, 1), (3, 2)}

    def test_nan_pseudotime_drops_edges(self):
        adata = _line_adata([0.0, 1.0, 2.5])
        graph = build_knn_graph(adata, knn=1)
        forward = directed_edges(graph, np.array([0.0, np.nan, 2.5]))
        assert forward.nnz == 0


class TestRandomWalker:
    """Tests for RandomWalker class."""

    @pytest.fixture
    def line_adata(self):
        adata = _line_adata([0.0, 1.0, 2.5, 4.5, 7.0])
        build_knn_graph(adata, knn=1)
        define_root_cells(adata, clusters=["0"])
        define_leaf_cells(adata, clusters=["4"])
        PseudotimeEstimator().run(adata)
        return adata

    @pytest.mark.parametrize("mode", ["random", "nearest"])
    def test_line_walks(self, line_adata, mode):
        result = RandomWalker(WalkConfig(walks_per_root=3, mode=mode)).run(line_adata)
        assert result.n_walks == 3
        assert result.n_success == 3
        np.testing.assert_array_equal(result.traj_value, [3, 3, 3, 3, 3])

        obs = line_adata.obs
        assert obs["is_intermediate"].tolist() == [False, True, True, True, False]
        np.testing.assert_allclose(obs["traj_value_log"], np.log10(4.0))
        np.testing.assert_allclose(obs["traj_value_norm"], 1.0)
        assert result.n_intermediate == 3

    def test_step_limit(self, line_adata):
        result = RandomWalker(WalkConfig(walks_per_root=2, max_steps=2)).run(line_adata)
        assert result.n_success == 0
        assert result.traj_value.sum() == 0
        assert not line_adata.obs["is_intermediate"].any()
        assert line_adata.uns["walk"]["n_success"] == 0

    def test_backward(self, line_adata):
        result = RandomWalker(WalkConfig(walks_per_root=2, backward=True)).run(line_adata)
        assert result.n_walks == 4
        assert result.n_backward_success == 2
        np.testing.assert_array_equal(result.traj_value, [4, 4, 4, 4, 4])

    def test_reproducible_across_workers(self, path_adata):
        build_knn_graph(path_adata, knn=15)
        define_root_cells(path_adata, clusters=["0"])
        define_leaf_cells(path_adata, clusters=["4", "6"])
        PseudotimeEstimator().run(path_adata)

        config = WalkConfig(walks_per_root=3, random_seed=7)
        serial = RandomWalker(config).run(path_adata, n_jobs=1)
        parallel = RandomWalker(config).run(path_adata, n_jobs=2)
        np.testing.assert_array_equal(serial.traj_value, parallel.traj_value)
        assert serial.n_success == parallel.n_success

    def test_intermediate_cells_on_path(self, path_adata):
        build_knn_graph(path_adata, knn=15)
        define_root_cells(path_adata, clusters=["0"])
        define_leaf_cells(path_adata, clusters=["4", "6"])
        PseudotimeEstimator().run(path_adata)

        result = RandomWalker(WalkConfig(walks_per_root=2)).run(path_adata)
        assert result.n_success > 0
        obs = path_adata.obs
        clusters = set(obs.loc[obs["is_intermediate"], "cluster_id"].astype(str))
        assert "2" in clusters
        assert clusters <= {"1", "2", "3", "5"}

    def test_unknown_mode(self, line_adata):
        with pytest.raises(ValueError, match="Unknown walk mode"):
            RandomWalker().run(line_adata, mode="greedy")

    def test_missing_leaves(self, line_adata):
        del line_adata.obs["is_leaf"]
        with pytest.raises(KeyError, match="is_leaf"):
            RandomWalker().run(line_adata)


# ============================================================================
# Engine
# ============================================================================


class TestTrajectoryEngine:
    """Tests for TrajectoryEngine class."""

    @pytest.fixture
    def config(self):
        return TrajectoryConfig(
            knn=KNNConfig(knn=15),
            walk=WalkConfig(walks_per_root=2),
            stage_order=list(STAGE_ORDER),
        )

    def test_run(self, path_adata, config):
        result = TrajectoryEngine(config).run(path_adata)
        assert result.root_clusters == ["0"]
        assert result.leaf_clusters == ["4", "6"]
        assert len(result.tree.edges) == 6
        assert nx.is_connected(result.tree.graph)
        assert sorted(result.tree.leaf_clusters) == ["0", "4", "6"]
        assert result.pseudotime.n_unreachable == 0
        assert result.walk.n_success > 0
        assert result.stage_concordance > 0.5
        assert path_adata.uns["pseudotime"]["stage_concordance"] == pytest.approx(
            result.stage_concordance
        )
        for column in ("branch_id", "is_root", "is_leaf", "pseudotime", "traj_value_norm"):
            assert column in path_adata.obs

    def test_explicit_roots(self, path_adata, config):
        config.root_clusters = ["6"]
        config.leaf_clusters = ["0"]
        result = TrajectoryEngine(config).run(path_adata)
        assert result.root_clusters == ["6"]
        means = path_adata.obs.groupby("cluster_id", observed=True)["pseudotime"].mean()
        assert means["6"] < means["2"] < means["0"]
        assert result.stage_concordance < 0

    def test_root_inference_needs_stage_order(self, path_adata):
        engine = TrajectoryEngine(TrajectoryConfig())
        with pytest.raises(ValueError, match="stage_order"):
            engine.resolve_root_clusters(path_adata)

    def test_root_inference_unknown_stage(self, path_adata):
        engine = TrajectoryEngine(TrajectoryConfig(stage_order=["D99"]))
        with pytest.raises(ValueError, match="no cells"):
            engine.resolve_root_clusters(path_adata)

    def test_leaves_exclude_roots(self, path_adata, config):
        tree = TreeBuilder().build_tree(path_adata)
        engine = TrajectoryEngine(config)
        assert engine.resolve_leaf_clusters(tree, ["4"]) == ["0", "6"]

    def test_leaves_exclude_clusters_of_root_cells(self, path_adata, config):
        in_leaf_cluster = path_adata.obs_names[
            (path_adata.obs["cluster_id"] == "6").to_numpy()
        ]
        config.root_cells = [str(in_leaf_cluster[0])]
        config.stage_order = []
        result = TrajectoryEngine(config).run(path_adata)
        assert result.root_clusters == []
        assert result.leaf_clusters == ["0", "4"]
        assert int(path_adata.obs["is_root"].sum()) == 1
        assert not (path_adata.obs["is_root"] & path_adata.obs["is_leaf"]).any()

    def test_cluster_meta(self, path_adata, config):
        result = TrajectoryEngine(config).run(path_adata)
        meta = result.cluster_meta
        assert list(meta["cluster_id"]) == [str(i) for i in range(7)]
        assert meta["n_cells"].sum() == path_adata.n_obs
        for column in ("branch_id", "mean_pseudotime", "frac_intermediate", "stage_D0"):
            assert column in meta.columns
        row = meta.set_index("cluster_id").loc["0"]
        assert row["frac_root"] == 1.0
        assert row["stage_D0"] == 1.0


class TestFetchClusterMeta:
    """Tests for fetch_cluster_meta."""

    def test_minimal(self, small_trajectory_adata):
        meta = fetch_cluster_meta(small_trajectory_adata)
        assert list(meta.columns[:2]) == ["cluster_id", "n_cells"]
        assert "mean_pseudotime" not in meta.columns
        assert (meta["n_cells"] == 12).all()

    def test_missing_cluster_key(self, unclustered_adata):
        with pytest.raises(KeyError, match="cluster_id"):
            fetch_cluster_meta(unclustered_adata)


# ============================================================================
# Stage runner
# ============================================================================


class TestRunTrajectoryStage:
    """Tests for run_trajectory_stage and its command line."""

    def test_outputs(self, path_adata, tmp_path):
        from cytotraj.core.trajectory.__main__ import run_trajectory_stage

        input_path = tmp_path / "reduced.h5ad"
        path_adata.write_h5ad(input_path)
        config = TrajectoryConfig(
            knn=KNNConfig(knn=15),
            walk=WalkConfig(walks_per_root=2),
            stage_order=list(STAGE_ORDER),
            branch_de=True,
        )
        out_dir = tmp_path / "out"
        adata = run_trajectory_stage(input_path, out_dir, config=config)

        for name in (
            "trajectory.h5ad",
            "cluster_meta.csv",
            "tree_edges.csv",
            "branch_de.csv",
            "run_record.yaml",
        ):
            assert (out_dir / name).exists(), name
        assert "pseudotime" in adata.obs
        edges = pd.read_csv(out_dir / "tree_edges.csv", dtype={"source": str, "target": str})
        assert len(edges) == 6

    def test_missing_input(self, tmp_path):
        from cytotraj.core.trajectory.__main__ import run_trajectory_stage

        with pytest.raises(FileNotFoundError):
            run_trajectory_stage(tmp_path / "absent.h5ad", tmp_path / "out")

    def test_config_from_args(self):
        from cytotraj.core.trajectory.__main__ import build_parser, config_from_args

        args = build_parser().parse_args(
            [
                "--input", "in.h5ad",
                "--output", "out",
                "--root-clusters", "3",
                "--knn", "12",
                "--dim-type", "tsne",
                "--mode", "nearest",
                "--backward",
            ]
        )
        config = config_from_args(args)
        assert config.root_clusters == ["3"]
        assert config.knn.knn == 12
        assert config.tree.dim_type == "tsne"
        assert config.walk.mode == "nearest"
        assert config.walk.backward is True

    def test_main_failure_returns_one(self, tmp_path):
        from cytotraj.core.trajectory.__main__ import main

        assert main(["--input", str(tmp_path / "absent.h5ad"), "--output", str(tmp_path)]) == 1
