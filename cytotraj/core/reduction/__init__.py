"""Dimensionality reduction module.

Cell-level and cluster-level embeddings (PCA, t-SNE, diffusion map, UMAP)
used to build and inspect the trajectory.

Example Usage
-------------
>>> from cytotraj.core.reduction import ReductionEngine, ReductionConfig
>>> engine = ReductionEngine(ReductionConfig(methods=["pca", "tsne"]))
>>> engine.run(adata)
>>> engine.run_cluster_reduction(adata, cluster_key="cluster_id")
"""

from .config import (
    REDUCTION_METHODS,
    ReductionConfig,
)
from .engine import (
    EMBEDDING_PREFIX,
    ReductionEngine,
    ReductionResult,
)

__all__ = [
    "REDUCTION_METHODS",
    "ReductionConfig",
    "EMBEDDING_PREFIX",
    "ReductionEngine",
    "ReductionResult",
]
