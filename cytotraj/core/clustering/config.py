"""Configuration classes for clustering module.

All clustering parameters are configurable via YAML.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

CLUSTERING_METHODS = ("som", "kmeans", "clara", "hclust", "leiden", "mclust")


@dataclass
class ClusteringConfig:
    """Configuration for cell clustering.

    Attributes
    ----------
    method : str
        Clustering algorithm: som, kmeans, clara, hclust, leiden, mclust
    k : int
        Number of clusters for kmeans, clara, hclust and mclust
    xdim : int
        SOM grid width
    ydim : int
        SOM grid height
    rlen : int
        Number of SOM training epochs
    som_radius_end : float
        Final SOM neighbourhood radius (grid units)
    clara_samples : int
        Number of CLARA samples
    clara_sample_size : int
        Cells per CLARA sample (0 uses 40 + 2k)
    hclust_linkage : str
        Linkage method for hierarchical clustering
    hclust_max_cells : int
        Above this many cells, hclust is fitted on a random subset
    neighbors_k : int
        k for the neighborhood graph (leiden)
    resolution : float
        Leiden resolution
    n_pcs : int
        Number of principal components for neighbors (leiden)
    scale : bool
        Standardize markers before clustering
    layer : str, optional
        AnnData layer to cluster on (None uses X)
    min_marker_std : float
        Drop markers with std below this value
    random_seed : int
        Random seed for reproducibility
    cluster_key : str
        Key in adata.obs for cluster assignments
    """

    method: str = "som"
    k: int = 25
    xdim: int = 6
    ydim: int = 6
    rlen: int = 10
    som_radius_end: float = 0.0
    clara_samples: int = 5
    clara_sample_size: int = 0
    hclust_linkage: str = "ward"
    hclust_max_cells: int = 5000
    neighbors_k: int = 15
    resolution: float = 1.0
    n_pcs: int = 20
    scale: bool = False
    layer: Optional[str] = None
    min_marker_std: float = 1e-3
    random_seed: int = 42
    cluster_key: str = "cluster_id"


@dataclass
class ProcessingConfig:
    """Configuration for cluster-level processing.

    Attributes
    ----------
    downsampling_size : float
        Fraction in (0, 1] or absolute number of cells kept per cluster
    min_cells_per_cluster : int
        Lower bound of cells kept per cluster
    random_seed : int
        Random seed for downsampling
    """

    downsampling_size: float = 1.0
    min_cells_per_cluster: int = 10
    random_seed: int = 42


@dataclass
class DEConfig:
    """Configuration for differential expression analysis.

    Attributes
    ----------
    method : str
        DE method (wilcoxon, t-test, etc.)
    n_genes : int
        Number of top markers to return per group
    layer : str, optional
        Layer to use for DE analysis (None uses X)
    tie_correct : bool
        Apply tie correction for Wilcoxon test
    """

    method: str = "wilcoxon"
    n_genes: int = 10
    layer: Optional[str] = None
    tie_correct: bool = True


@dataclass
class ClusteringStageConfig:
    """Master configuration for the clustering stage.

    Attributes
    ----------
    clustering : ClusteringConfig
        Clustering configuration
    processing : ProcessingConfig
        Cluster-level processing configuration
    de : DEConfig
        Differential expression configuration
    """

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    de: DEConfig = field(default_factory=DEConfig)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ClusteringStageConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested clustering_stage section
        if "clustering_stage" in data:
            data = data["clustering_stage"]

        return cls(
            clustering=ClusteringConfig(**data.get("clustering", {})),
            processing=ProcessingConfig(**data.get("processing", {})),
            de=DEConfig(**data.get("de", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "clustering": asdict(self.clustering),
            "processing": asdict(self.processing),
            "de": asdict(self.de),
        }
