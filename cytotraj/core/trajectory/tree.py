"""Minimum spanning tree over cluster centroids.

Clusters are placed at their centroid in the chosen space, joined by a
complete Euclidean graph and reduced to its minimum spanning tree. The
tree is then cut into branches at its branch points (clusters of degree
three or more).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import logging

import networkx as nx
import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist

from ...utils.labels import natural_sort_key, natural_sorted
from .config import DIM_TYPES, TreeConfig
from .knn import get_representation


@dataclass
class TreeResult:
    """Result from tree construction.

    Attributes
    ----------
    graph : nx.Graph
        Minimum spanning tree; nodes are cluster IDs, edges carry
        ``weight`` (centroid distance)
    nodes : pd.DataFrame
        One row per cluster: coordinates, degree, branch, flags
    edges : pd.DataFrame
        Tree edges (source, target, weight)
    branches : Dict[str, str]
        Map of cluster ID to branch ID
    leaf_clusters : List[str]
        Clusters of degree one (or the only cluster)
    branch_points : List[str]
        Clusters of degree three or more
    """

    graph: Any = None  # nx.Graph
    nodes: pd.DataFrame = field(default_factory=pd.DataFrame)
    edges: pd.DataFrame = field(default_factory=pd.DataFrame)
    branches: Dict[str, str] = field(default_factory=dict)
    leaf_clusters: List[str] = field(default_factory=list)
    branch_points: List[str] = field(default_factory=list)

    @property
    def n_branches(self) -> int:
        return len(set(self.branches.values()))


def assign_branches(tree: nx.Graph) -> Dict[str, str]:
    """Split a tree into branches at its branch points.

    Every branch point forms its own branch; removing them leaves
    segments, each of which is a branch. Branches are numbered "1".."m"
    in natural order of their smallest cluster ID.
    """
    branch_points = [n for n in tree.nodes if tree.degree(n) >= 3]
    remainder = tree.copy()
    remainder.remove_nodes_from(branch_points)

    groups = [[n] for n in branch_points]
    groups.extend(list(component) for component in nx.connected_components(remainder))
    groups.sort(key=lambda members: natural_sort_key(min(members, key=natural_sort_key)))

    branches: Dict[str, str] = {}
    for i, members in enumerate(groups, start=1):
        for node in members:
            branches[str(node)] = str(i)
    return branches


class TreeBuilder:
    """Builder of the cluster minimum spanning tree.

    Parameters
    ----------
    config : TreeConfig, optional
        Tree configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.trajectory import TreeBuilder, TreeConfig
    >>> builder = TreeBuilder(TreeConfig(dim_type="tsne"))
    >>> tree = builder.build_tree(adata)
    >>> TreeBuilder.path_between(tree, "0", "7")
    ['0', '3', '7']
    """

    def __init__(
        self,
        config: Optional[TreeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or TreeConfig()
        self.logger = logger or logging.getLogger(__name__)

    def cluster_coordinates(self, adata: Any) -> pd.DataFrame:
        """Cluster centroids in the configured space.

        Returns
        -------
        pd.DataFrame
            Clusters (natural order) x dims

        Raises
        ------
        KeyError
            If the cluster column or the embedding is missing
        ValueError
            If dim_type is unknown, a component index is out of range,
            or a cluster has no embedded cell
        """
        cfg = self.config
        if cfg.dim_type not in DIM_TYPES:
            raise ValueError(f"Unknown dim_type: {cfg.dim_type}. Choose from {list(DIM_TYPES)}")
        if cfg.cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cfg.cluster_key}' not found in adata.obs")

        clusters = adata.obs[cfg.cluster_key].astype(str).to_numpy()
        present = natural_sorted(set(clusters))

        if cfg.cluster_level:
            coords = self._cluster_level_coordinates(adata)
            missing = [c for c in present if c not in coords.index]
            if missing:
                raise ValueError(f"Cluster-level coordinates missing clusters: {missing}")
            return coords.loc[present]

        if cfg.dim_type == "raw":
            values = get_representation(adata, "X")
            columns = [str(v) for v in adata.var_names]
        else:
            key = f"X_{cfg.dim_type}"
            if key not in adata.obsm:
                raise KeyError(
                    f"Embedding '{key}' not found in adata.obsm; run reduction with '{cfg.dim_type}'"
                )
            values = get_representation(adata, key, cfg.dim_use)
            columns = [f"dim{d + 1}" for d in cfg.dim_use]

        df = pd.DataFrame(values, columns=columns)
        df["__cluster"] = clusters
        # nanmean: cells not embedded have NaN rows
        coords = df.groupby("__cluster").mean()
        coords = coords.loc[present]
        coords.index.name = None
        empty = coords.index[coords.isna().any(axis=1)].tolist()
        if empty:
            raise ValueError(f"Clusters without embedded cells: {empty}")
        return coords

    def _cluster_level_coordinates(self, adata: Any) -> pd.DataFrame:
        cfg = self.config
        if cfg.dim_type == "raw":
            coords = adata.uns.get("cluster_centroids")
            if not isinstance(coords, pd.DataFrame):
                raise KeyError("uns['cluster_centroids'] not found; run cluster processing")
            stored_key = adata.uns.get("cluster_centroids_key", cfg.cluster_key)
            if stored_key != cfg.cluster_key:
                raise KeyError(
                    f"uns['cluster_centroids'] were computed for '{stored_key}', "
                    f"not '{cfg.cluster_key}'"
                )
            coords = coords.copy()
            coords.index = coords.index.astype(str)
            return coords

        embeddings = adata.uns.get("cluster_embeddings", {})
        if cfg.dim_type not in embeddings:
            raise KeyError(
                f"Cluster embedding '{cfg.dim_type}' not found in uns['cluster_embeddings']"
            )
        emb = embeddings[cfg.dim_type]
        bad = [d for d in cfg.dim_use if d < 0 or d >= emb.shape[1]]
        if bad:
            raise ValueError(
                f"Component indices {bad} out of range for cluster embedding "
                f"'{cfg.dim_type}' with {emb.shape[1]} columns"
            )
        coords = emb.iloc[:, list(cfg.dim_use)].copy()
        coords.index = coords.index.astype(str)
        return coords

    def build_tree(self, adata: Any) -> TreeResult:
        """Build the cluster tree and assign branches.

        Writes ``adata.obs[branch_key]`` and ``adata.uns["tree"]``.

        Parameters
        ----------
        adata : AnnData
            Clustered AnnData (modified in place)

        Returns
        -------
        TreeResult
            Tree, node and edge tables, branch mapping
        """
        cfg = self.config
        coords = self.cluster_coordinates(adata)
        labels = list(coords.index)
        points = coords.to_numpy(dtype=float)

        complete = nx.Graph()
        complete.add_nodes_from(labels)
        if len(labels) > 1:
            dist = cdist(points, points)
            for i in range(len(labels)):
                for j in range(i + 1, len(labels)):
                    complete.add_edge(labels[i], labels[j], weight=float(dist[i, j]))
        tree = nx.minimum_spanning_tree(complete, weight="weight", algorithm="kruskal")

        branches = assign_branches(tree)
        degree = dict(tree.degree())
        branch_points = [c for c in labels if degree[c] >= 3]
        leaf_clusters = [c for c in labels if degree[c] <= 1]

        counts = adata.obs[cfg.cluster_key].astype(str).value_counts()
        nodes = pd.DataFrame(
            {
                "cluster": labels,
                "branch_id": [branches[c] for c in labels],
                "degree": [int(degree[c]) for c in labels],
                "is_branch_point": [c in branch_points for c in labels],
                "is_leaf": [c in leaf_clusters for c in labels],
                "n_cells": [int(counts.get(c, 0)) for c in labels],
            }
        )
        for j, name in enumerate(coords.columns):
            nodes[f"coord_{name}"] = points[:, j]

        edge_rows = []
        for u, v, data in tree.edges(data=True):
            a, b = sorted((str(u), str(v)), key=natural_sort_key)
            edge_rows.append({"source": a, "target": b, "weight": float(data["weight"])})
        edge_rows.sort(
            key=lambda row: (natural_sort_key(row["source"]), natural_sort_key(row["target"]))
        )
        edges = pd.DataFrame(edge_rows, columns=["source", "target", "weight"])

        cell_clusters = adata.obs[cfg.cluster_key].astype(str)
        branch_ids = natural_sorted(set(branches.values()))
        adata.obs[cfg.branch_key] = pd.Categorical(
            cell_clusters.map(branches).to_numpy(), categories=branch_ids
        )
        adata.uns["tree"] = {
            "nodes": nodes,
            "edges": edges,
            "cluster_key": cfg.cluster_key,
            "branch_key": cfg.branch_key,
            "dim_type": cfg.dim_type,
            "dim_use": [int(d) for d in cfg.dim_use],
            "cluster_level": bool(cfg.cluster_level),
        }

        self.logger.info(
            "Tree: %d clusters, %d edges, %d branches, %d branch points, %d leaves",
            len(labels),
            tree.number_of_edges(),
            len(branch_ids),
            len(branch_points),
            len(leaf_clusters),
        )
        return TreeResult(
            graph=tree,
            nodes=nodes,
            edges=edges,
            branches=branches,
            leaf_clusters=leaf_clusters,
            branch_points=branch_points,
        )

    @staticmethod
    def graph_from_uns(adata: Any) -> nx.Graph:
        """Rebuild the tree graph from ``adata.uns["tree"]``."""
        if "tree" not in adata.uns:
            raise KeyError("uns['tree'] not found; build the tree first")
        record = adata.uns["tree"]
        graph = nx.Graph()
        graph.add_nodes_from(str(c) for c in record["nodes"]["cluster"])
        for row in record["edges"].itertuples(index=False):
            graph.add_edge(str(row.source), str(row.target), weight=float(row.weight))
        return graph

    @staticmethod
    def path_between(tree: Union[TreeResult, nx.Graph], source: str, target: str) -> List[str]:
        """Clusters on the tree path from ``source`` to ``target`` (inclusive).

        Raises
        ------
        ValueError
            If either cluster is not in the tree
        """
        graph = tree.graph if isinstance(tree, TreeResult) else tree
        source, target = str(source), str(target)
        missing = [c for c in (source, target) if c not in graph]
        if missing:
            raise ValueError(f"Clusters not in tree: {missing}")
        return [str(c) for c in nx.shortest_path(graph, source, target)]
