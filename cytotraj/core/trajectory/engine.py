"""Trajectory engine.

Runs the trajectory steps in order on a clustered, reduced AnnData:

    kNN graph -> cluster tree -> roots / leaves -> pseudotime -> walks

and summarises the result per cluster.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional
import logging

import numpy as np
import pandas as pd

from ...utils.labels import natural_sorted
from ...utils.stats import stage_concordance
from .config import TrajectoryConfig
from .knn import build_knn_graph
from .pseudotime import PseudotimeEstimator, PseudotimeResult, define_root_cells
from .tree import TreeBuilder, TreeResult
from .walk import RandomWalker, WalkResult, define_leaf_cells


@dataclass
class TrajectoryResult:
    """Result from a full trajectory run.

    Attributes
    ----------
    tree : TreeResult
        Cluster tree
    pseudotime : PseudotimeResult
        Pseudotime summary
    walk : WalkResult
        Random walk summary
    root_clusters : List[str]
        Clusters used as roots
    leaf_clusters : List[str]
        Clusters used as leaves
    stage_concordance : float
        Spearman correlation of pseudotime with stage order (NaN if not
        computed)
    cluster_meta : pd.DataFrame
        Per-cluster summary table
    """

    tree: Optional[TreeResult] = None
    pseudotime: Optional[PseudotimeResult] = None
    walk: Optional[WalkResult] = None
    root_clusters: List[str] = field(default_factory=list)
    leaf_clusters: List[str] = field(default_factory=list)
    stage_concordance: float = float("nan")
    cluster_meta: pd.DataFrame = field(default_factory=pd.DataFrame)


def fetch_cluster_meta(
    adata: Any,
    cluster_key: str = "cluster_id",
    branch_key: str = "branch_id",
    stage_key: str = "stage",
) -> pd.DataFrame:
    """Per-cluster summary of the trajectory.

    Columns are included only where the underlying obs column exists:
    n_cells, branch_id, mean_pseudotime, mean_traj_value,
    frac_intermediate, frac_root, frac_leaf and one ``stage_<label>``
    proportion column per stage.

    Raises
    ------
    KeyError
        If ``cluster_key`` is not in adata.obs
    """
    if cluster_key not in adata.obs:
        raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")

    obs = adata.obs.copy()
    obs["__cluster"] = obs[cluster_key].astype(str)
    grouped = obs.groupby("__cluster", sort=False)
    order = natural_sorted(obs["__cluster"].unique())

    meta = pd.DataFrame(index=pd.Index(order, name=cluster_key))
    meta["n_cells"] = grouped.size().reindex(order).astype(int)

    if branch_key in obs:
        branches = grouped[branch_key].agg(lambda s: str(s.astype(str).iloc[0]))
        meta["branch_id"] = branches.reindex(order)
    if "pseudotime" in obs:
        meta["mean_pseudotime"] = grouped["pseudotime"].mean().reindex(order)
    if "traj_value" in obs:
        meta["mean_traj_value"] = grouped["traj_value"].mean().reindex(order)
    for column, name in (
        ("is_intermediate", "frac_intermediate"),
        ("is_root", "frac_root"),
        ("is_leaf", "frac_leaf"),
    ):
        if column in obs:
            meta[name] = grouped[column].apply(lambda s: float(np.mean(s.astype(bool)))).reindex(order)

    if stage_key in obs:
        props = pd.crosstab(obs["__cluster"], obs[stage_key].astype(str), normalize="index")
        props = props.reindex(order).fillna(0.0)
        for stage in props.columns:
            meta[f"stage_{stage}"] = props[stage]

    return meta.reset_index()


class TrajectoryEngine:
    """Full trajectory inference on a clustered AnnData.

    Parameters
    ----------
    config : TrajectoryConfig, optional
        Trajectory configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.trajectory import TrajectoryEngine, TrajectoryConfig
    >>> config = TrajectoryConfig(root_clusters=["2"], stage_order=["D0", "D2", "D4"])
    >>> result = TrajectoryEngine(config).run(adata)
    >>> result.stage_concordance
    """

    def __init__(
        self,
        config: Optional[TrajectoryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or TrajectoryConfig()
        self.logger = logger or logging.getLogger(__name__)

    def resolve_root_clusters(self, adata: Any) -> List[str]:
        """Configured root clusters, or the cluster most enriched for the first stage.

        Raises
        ------
        ValueError
            If neither roots nor a stage order with a stage column are given
        """
        cfg = self.config
        if cfg.root_clusters or cfg.root_cells:
            return [str(c) for c in cfg.root_clusters]

        if not cfg.stage_order or cfg.stage_key not in adata.obs:
            raise ValueError(
                "No root clusters or cells given, and no stage_order to infer them from"
            )
        first = str(cfg.stage_order[0])
        stages = adata.obs[cfg.stage_key].astype(str)
        if not (stages == first).any():
            raise ValueError(f"First stage '{first}' has no cells")
        clusters = adata.obs[cfg.tree.cluster_key].astype(str)
        enrichment = (stages == first).groupby(clusters).mean()
        enrichment = enrichment.loc[natural_sorted(enrichment.index)]
        root = str(enrichment.idxmax())
        self.logger.info(
            "Root cluster inferred from stage '%s': %s (%.1f%% of its cells)",
            first,
            root,
            100.0 * float(enrichment.max()),
        )
        return [root]

    def resolve_leaf_clusters(
        self,
        tree: TreeResult,
        root_clusters: List[str],
        adata: Any = None,
    ) -> List[str]:
        """Configured leaf clusters, or the tree's leaves other than the roots.

        With ``adata``, clusters holding any ``obs["is_root"]`` cell also
        count as roots, so roots given only as cells are excluded too.
        """
        cfg = self.config
        if cfg.leaf_clusters or cfg.leaf_cells:
            return [str(c) for c in cfg.leaf_clusters]
        excluded = {str(c) for c in root_clusters}
        if adata is not None and "is_root" in adata.obs:
            is_root = adata.obs["is_root"].to_numpy(dtype=bool)
            clusters = adata.obs[cfg.tree.cluster_key].astype(str).to_numpy()
            excluded.update(clusters[is_root])
        leaves = [c for c in tree.leaf_clusters if c not in excluded]
        if not leaves:
            raise ValueError("Tree has no leaf cluster other than the roots; set leaf_clusters")
        return leaves

    def run(self, adata: Any) -> TrajectoryResult:
        """Run kNN, tree, pseudotime and walks on ``adata`` in place.

        Parameters
        ----------
        adata : AnnData
            Clustered AnnData (with embeddings if the tree or kNN graph
            uses them)

        Returns
        -------
        TrajectoryResult
            Tree, pseudotime, walk summaries and per-cluster table
        """
        cfg = self.config
        result = TrajectoryResult()

        build_knn_graph(
            adata,
            knn=cfg.knn.knn,
            use_rep=cfg.knn.use_rep,
            dim_use=cfg.knn.dim_use,
            metric=cfg.knn.metric,
        )

        result.tree = TreeBuilder(cfg.tree, logger=self.logger).build_tree(adata)

        result.root_clusters = self.resolve_root_clusters(adata)
        define_root_cells(
            adata,
            clusters=result.root_clusters,
            cells=cfg.root_cells,
            cluster_key=cfg.tree.cluster_key,
        )
        result.leaf_clusters = self.resolve_leaf_clusters(
            result.tree, result.root_clusters, adata
        )
        define_leaf_cells(
            adata,
            clusters=result.leaf_clusters,
            cells=cfg.leaf_cells,
            cluster_key=cfg.tree.cluster_key,
        )
        self.logger.info(
            "Roots: %s; leaves: %s",
            ", ".join(result.root_clusters) or "(cells)",
            ", ".join(result.leaf_clusters) or "(cells)",
        )

        result.pseudotime = PseudotimeEstimator(cfg.pseudotime, logger=self.logger).run(adata)
        result.walk = RandomWalker(cfg.walk, logger=self.logger).run(adata)

        if cfg.stage_order and cfg.stage_key in adata.obs:
            result.stage_concordance = stage_concordance(
                adata.obs["pseudotime"].to_numpy(dtype=float),
                adata.obs[cfg.stage_key].astype(str).to_numpy(),
                [str(s) for s in cfg.stage_order],
            )
            self.logger.info(
                "Stage concordance (Spearman): %.3f", result.stage_concordance
            )
            adata.uns["pseudotime"]["stage_concordance"] = float(result.stage_concordance)

        result.cluster_meta = fetch_cluster_meta(
            adata,
            cluster_key=cfg.tree.cluster_key,
            branch_key=cfg.tree.branch_key,
            stage_key=cfg.stage_key,
        )
        return result
