"""Core computational modules for CytoTraj.

This package contains the main analysis engines:
- preprocessing: Matrix loading, transformation, sample merging
- clustering: Cell clustering, cluster-level processing, branch DE
- reduction: PCA, t-SNE, diffusion map and UMAP embeddings
- trajectory: kNN graph, cluster tree, pseudotime, random walks
"""
