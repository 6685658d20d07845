"""Configuration classes for dimensionality reduction."""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

REDUCTION_METHODS = ("pca", "tsne", "diffmap", "umap")


@dataclass
class ReductionConfig:
    """Configuration for cell and cluster embeddings.

    Attributes
    ----------
    methods : List[str]
        Methods to run, in order (pca, tsne, diffmap, umap)
    n_pcs : int
        Number of principal components
    perplexity : float
        t-SNE perplexity
    n_dcs : int
        Number of diffusion components (excluding the trivial one)
    neighbors_k : int
        k for the neighborhood graph used by diffmap and umap
    umap_min_dist : float
        UMAP min_dist
    use_downsampled : bool
        Embed only cells with obs["is_downsampled"]; other rows are NaN
    layer : str, optional
        Layer to embed (None uses X)
    random_seed : int
        Random seed for reproducibility
    cluster_key : str
        Cluster column used by cluster-level reduction
    cluster_level : bool
        Also embed cluster centroids into uns["cluster_embeddings"]
    """

    methods: List[str] = field(default_factory=lambda: ["pca", "tsne"])
    n_pcs: int = 20
    perplexity: float = 30.0
    n_dcs: int = 10
    neighbors_k: int = 15
    umap_min_dist: float = 0.3
    use_downsampled: bool = False
    layer: Optional[str] = None
    random_seed: int = 42
    cluster_key: str = "cluster_id"
    cluster_level: bool = False

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ReductionConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "reduction" in data:
            data = data["reduction"]

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["methods"] = list(self.methods)
        return data
