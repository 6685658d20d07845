"""CytoTraj: Trajectory and pseudotime inference for cytometry data.

This package provides tools for:
- Loading, transforming and merging per-sample expression matrices
- Clustering cells (SOM, k-means, CLARA, hierarchical, Leiden, GMM)
- Dimensionality reduction (PCA, t-SNE, diffusion map, UMAP)
- Minimum spanning tree construction over cluster centroids
- Pseudotime estimation from root cells
- Random-walk identification of intermediate-state cells

All stages read and write a single AnnData object, so any stage can run
on its own from an .h5ad file.

Example usage:
    >>> from cytotraj.core.clustering import ClusteringEngine
    >>> from cytotraj.core.reduction import ReductionEngine
    >>> from cytotraj.core.trajectory import TrajectoryEngine, TrajectoryConfig
    >>>
    >>> ClusteringEngine().run_clustering(adata, method="som")
    >>> ReductionEngine().run(adata)
    >>> config = TrajectoryConfig(root_clusters=["3"], leaf_clusters=["7", "12"])
    >>> result = TrajectoryEngine(config).run(adata)
"""

__version__ = "0.1.0"
