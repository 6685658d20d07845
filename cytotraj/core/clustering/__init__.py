"""Clustering module for cell population identification.

Assigns every cell to exactly one cluster with a selectable algorithm,
computes cluster centroids with per-cluster downsampling, and ranks the
markers that distinguish clusters or trajectory branches.

Algorithms
----------
- som: batch self-organizing map (FlowSOM-style)
- kmeans: scikit-learn KMeans
- clara: k-medoids on repeated samples
- hclust: agglomerative clustering (scipy)
- leiden: PhenoGraph-style graph clustering (scanpy)
- mclust: Gaussian mixture model (scikit-learn)

Example Usage
-------------
>>> from cytotraj.core.clustering import ClusteringEngine, ClusteringStageConfig
>>> config = ClusteringStageConfig()
>>> config.clustering.method = "som"
>>> engine = ClusteringEngine(config)
>>> result = engine.run_clustering(adata)
>>> centroids = engine.process_clusters(adata)
"""

# Configuration classes
from .config import (
    CLUSTERING_METHODS,
    ClusteringConfig,
    ProcessingConfig,
    DEConfig,
    ClusteringStageConfig,
)

# Clustering engine
from .engine import (
    ClusteringEngine,
    ClusteringResult,
    relabel_contiguous,
)

# Self-organizing map
from .som import SelfOrganizingMap

# Differential expression
from .de import (
    BranchDERunner,
    DEResult,
)

__all__ = [
    # Config
    "CLUSTERING_METHODS",
    "ClusteringConfig",
    "ProcessingConfig",
    "DEConfig",
    "ClusteringStageConfig",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
    "relabel_contiguous",
    "SelfOrganizingMap",
    # DE
    "BranchDERunner",
    "DEResult",
]
