"""Configuration classes for trajectory inference.

Covers the kNN graph, the cluster tree, pseudotime and the random walks
used to score intermediate states.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

DIM_TYPES = ("raw", "pca", "tsne", "diffmap", "umap")
WALK_MODES = ("random", "nearest")
AGGREGATES = ("min", "mean")


@dataclass
class KNNConfig:
    """Configuration for the cell kNN graph.

    Attributes
    ----------
    knn : int
        Neighbors per cell (clamped to n_obs - 1)
    use_rep : str
        "X" for marker space, or an obsm key such as "X_pca"
    dim_use : List[int], optional
        Columns of the representation to use (None uses all)
    metric : str
        Distance metric passed to scikit-learn NearestNeighbors
    """

    knn: int = 30
    use_rep: str = "X"
    dim_use: Optional[List[int]] = None
    metric: str = "euclidean"


@dataclass
class TreeConfig:
    """Configuration for the minimum spanning tree over clusters.

    Attributes
    ----------
    cluster_key : str
        Cluster column in adata.obs
    dim_type : str
        Space for cluster centroids: raw, pca, tsne, diffmap, umap
    dim_use : List[int]
        Embedding components used (ignored for raw, which uses all markers)
    cluster_level : bool
        Use cluster-level embeddings from uns["cluster_embeddings"]
        (or uns["cluster_centroids"] for raw) instead of cell averages
    branch_key : str
        obs column receiving the branch of each cell
    """

    cluster_key: str = "cluster_id"
    dim_type: str = "raw"
    dim_use: List[int] = field(default_factory=lambda: [0, 1])
    cluster_level: bool = False
    branch_key: str = "branch_id"


@dataclass
class PseudotimeConfig:
    """Configuration for pseudotime estimation.

    Attributes
    ----------
    aggregate : str
        Combine distances over root cells by "min" or "mean"
    normalize : bool
        Divide by the largest finite pseudotime
    """

    aggregate: str = "min"
    normalize: bool = True


@dataclass
class WalkConfig:
    """Configuration for random walks.

    Attributes
    ----------
    walks_per_root : int
        Walks started from each root cell
    max_steps : int
        Step limit for a single walk
    mode : str
        "random" (inverse-distance weighted) or "nearest"
    backward : bool
        Also walk from leaf cells back to root cells
    n_jobs : int
        joblib workers (-1 uses all cores)
    random_seed : int
        Random seed for reproducibility
    """

    walks_per_root: int = 10
    max_steps: int = 1000
    mode: str = "random"
    backward: bool = False
    n_jobs: int = 1
    random_seed: int = 42


@dataclass
class TrajectoryConfig:
    """Master configuration for trajectory inference.

    Attributes
    ----------
    knn : KNNConfig
        kNN graph configuration
    tree : TreeConfig
        Cluster tree configuration
    pseudotime : PseudotimeConfig
        Pseudotime configuration
    walk : WalkConfig
        Random walk configuration
    root_clusters : List[str]
        Clusters whose cells are roots
    root_cells : List[str]
        Explicit root cell names (used in addition to root_clusters)
    leaf_clusters : List[str]
        Clusters whose cells are leaves. If empty, the tree's leaf
        clusters other than the roots.
    leaf_cells : List[str]
        Explicit leaf cell names
    stage_order : List[str]
        Stage labels from earliest to latest
    stage_key : str
        obs column with stage labels
    branch_de : bool
        Rank markers between branches after the walk
    """

    knn: KNNConfig = field(default_factory=KNNConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    pseudotime: PseudotimeConfig = field(default_factory=PseudotimeConfig)
    walk: WalkConfig = field(default_factory=WalkConfig)
    root_clusters: List[str] = field(default_factory=list)
    root_cells: List[str] = field(default_factory=list)
    leaf_clusters: List[str] = field(default_factory=list)
    leaf_cells: List[str] = field(default_factory=list)
    stage_order: List[str] = field(default_factory=list)
    stage_key: str = "stage"
    branch_de: bool = False

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TrajectoryConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested trajectory section
        if "trajectory" in data:
            data = data["trajectory"]

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrajectoryConfig":
        """Build configuration from a (possibly partial) dictionary."""
        data = dict(data)
        sections = {
            "knn": KNNConfig(**data.pop("knn", {}) or {}),
            "tree": TreeConfig(**data.pop("tree", {}) or {}),
            "pseudotime": PseudotimeConfig(**data.pop("pseudotime", {}) or {}),
            "walk": WalkConfig(**data.pop("walk", {}) or {}),
        }
        for key in ("root_clusters", "root_cells", "leaf_clusters", "leaf_cells", "stage_order"):
            if key in data:
                data[key] = [str(v) for v in (data[key] or [])]
        return cls(**sections, **data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "knn": asdict(self.knn),
            "tree": asdict(self.tree),
            "pseudotime": asdict(self.pseudotime),
            "walk": asdict(self.walk),
            "root_clusters": list(self.root_clusters),
            "root_cells": list(self.root_cells),
            "leaf_clusters": list(self.leaf_clusters),
            "leaf_cells": list(self.leaf_cells),
            "stage_order": list(self.stage_order),
            "stage_key": self.stage_key,
            "branch_de": self.branch_de,
        }
