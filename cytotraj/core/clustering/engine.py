"""Clustering engine for cell population identification.

Provides several interchangeable clustering algorithms (SOM, k-means,
CLARA, hierarchical, Leiden, Gaussian mixture) plus cluster-level
processing: centroids and per-cluster downsampling.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from scipy import sparse

from ...utils.labels import natural_sort_key
from ...utils.stats import standardize_columns
from .config import CLUSTERING_METHODS, ClusteringStageConfig
from .som import SelfOrganizingMap


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    n_clusters : int
        Number of clusters found
    cluster_key : str
        Key in adata.obs containing cluster assignments
    method : str
        Algorithm used
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    dropped_markers : List[str]
        Markers dropped due to low variance
    """

    n_clusters: int = 0
    cluster_key: str = "cluster_id"
    method: str = ""
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    dropped_markers: List[str] = field(default_factory=list)


def relabel_contiguous(labels: np.ndarray) -> pd.Categorical:
    """Map arbitrary labels to categorical strings "0".."k-1".

    Labels are numbered in sorted order of the original values.
    """
    _, inverse = np.unique(np.asarray(labels), return_inverse=True)
    inverse = inverse.ravel()
    n = int(inverse.max()) + 1 if inverse.size else 0
    categories = [str(i) for i in range(n)]
    return pd.Categorical.from_codes(inverse, categories=categories)


class ClusteringEngine:
    """Clustering engine with selectable algorithms.

    Parameters
    ----------
    config : ClusteringStageConfig, optional
        Clustering stage configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.clustering import ClusteringEngine, ClusteringStageConfig
    >>> engine = ClusteringEngine(ClusteringStageConfig())
    >>> result = engine.run_clustering(adata, method="kmeans", k=12)
    >>> centroids = engine.process_clusters(adata)
    """

    def __init__(
        self,
        config: Optional[ClusteringStageConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringStageConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import sklearn  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Clustering requires scikit-learn. Install with: pip install scikit-learn"
            )

    def select_layer(
        self,
        adata: Any,  # AnnData
        layer: Optional[str] = None,
    ) -> str:
        """Select and pin expression layer for clustering.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object
        layer : str, optional
            Layer name to use. Falls back to X if not found.

        Returns
        -------
        str
            Name of the layer being used
        """
        if layer and layer in adata.layers:
            base = adata.layers[layer]
            self.logger.info("Using layer '%s' for clustering", layer)
        else:
            if layer:
                self.logger.warning(
                    "Requested layer '%s' not found; falling back to AnnData.X", layer
                )
            base = adata.X
            layer = "X"

        matrix = base.toarray() if sparse.issparse(base) else np.asarray(base)
        adata.X = matrix.astype(np.float32, copy=True)
        self.logger.debug("Pinned working matrix into AnnData.X (shape=%s)", matrix.shape)
        return layer

    def filter_low_variance_markers(
        self,
        adata: Any,  # AnnData
        min_std: Optional[float] = None,
    ) -> Tuple[Any, List[str]]:
        """Filter out markers with low variance.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object
        min_std : float, optional
            Minimum standard deviation threshold. Uses config default if None.

        Returns
        -------
        Tuple[AnnData, List[str]]
            Filtered AnnData and list of dropped marker names

        Raises
        ------
        ValueError
            If every marker falls below the threshold
        """
        if min_std is None:
            min_std = self.config.clustering.min_marker_std

        values = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X)
        std = np.std(values, axis=0)
        keep = std >= min_std
        if not keep.any():
            raise ValueError(f"All markers have std < {min_std}; nothing to cluster")

        dropped = adata.var_names[np.logical_not(keep)].tolist()
        if dropped:
            self.logger.info(
                "Dropping %d low-variance markers (std < %.4f)", len(dropped), min_std
            )
            adata = adata[:, keep].copy()

        return adata, dropped

    def _working_matrix(self, adata: Any, scale: bool) -> np.ndarray:
        values = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X)
        values = values.astype(float)
        return standardize_columns(values) if scale else values

    def run_clustering(
        self,
        adata: Any,  # AnnData
        method: Optional[str] = None,
        k: Optional[int] = None,
        cluster_key: Optional[str] = None,
        scale: Optional[bool] = None,
        random_seed: Optional[int] = None,
        resolution: Optional[float] = None,
        neighbors_k: Optional[int] = None,
    ) -> ClusteringResult:
        """Assign every cell to exactly one cluster.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object (modified in place)
        method : str, optional
            One of som, kmeans, clara, hclust, leiden, mclust.
            Uses config default if None.
        k : int, optional
            Number of clusters (kmeans, clara, hclust, mclust).
        cluster_key : str, optional
            Key in adata.obs to store cluster assignments
        scale : bool, optional
            Standardize markers before clustering
        random_seed : int, optional
            Random seed for reproducibility
        resolution : float, optional
            Leiden resolution
        neighbors_k : int, optional
            k for the Leiden neighborhood graph

        Returns
        -------
        ClusteringResult
            Clustering result with cluster statistics

        Raises
        ------
        ValueError
            If the method is unknown or k exceeds the number of cells
        """
        cfg = self.config.clustering
        method = method if method is not None else cfg.method
        k = k if k is not None else cfg.k
        cluster_key = cluster_key if cluster_key is not None else cfg.cluster_key
        scale = scale if scale is not None else cfg.scale
        random_seed = random_seed if random_seed is not None else cfg.random_seed
        resolution = resolution if resolution is not None else cfg.resolution
        neighbors_k = neighbors_k if neighbors_k is not None else cfg.neighbors_k

        if method not in CLUSTERING_METHODS:
            raise ValueError(
                f"Unknown clustering method: {method}. Choose from {list(CLUSTERING_METHODS)}"
            )
        if adata.n_obs == 0:
            raise ValueError("Cannot cluster an empty AnnData")
        if method in ("kmeans", "clara", "hclust", "mclust"):
            if k < 1:
                raise ValueError(f"k must be >= 1, got {k}")
            if k > adata.n_obs:
                raise ValueError(f"k={k} exceeds number of cells ({adata.n_obs})")

        X = self._working_matrix(adata, scale)
        self.logger.info(
            "Running %s clustering on %d cells x %d markers (scale=%s)",
            method,
            X.shape[0],
            X.shape[1],
            scale,
        )

        if method == "som":
            labels = self._cluster_som(adata, X, random_seed)
        elif method == "kmeans":
            labels = self._cluster_kmeans(X, k, random_seed)
        elif method == "clara":
            labels = self._cluster_clara(X, k, random_seed)
        elif method == "hclust":
            labels = self._cluster_hclust(X, k, random_seed)
        elif method == "leiden":
            labels = self._cluster_leiden(X, neighbors_k, resolution, random_seed)
        else:
            labels = self._cluster_mclust(X, k, random_seed)

        adata.obs[cluster_key] = relabel_contiguous(labels)

        sizes = adata.obs[cluster_key].value_counts().sort_index()
        result = ClusteringResult(
            n_clusters=int((sizes > 0).sum()),
            cluster_key=cluster_key,
            method=method,
            cluster_sizes={str(c): int(n) for c, n in sizes.items()},
        )
        adata.uns["clustering"] = {
            "method": method,
            "cluster_key": cluster_key,
            "k": int(k),
            "scale": bool(scale),
            "random_seed": int(random_seed),
            "n_clusters": result.n_clusters,
        }
        self.logger.info("Found %d clusters", result.n_clusters)
        return result

    def _cluster_som(self, adata: Any, X: np.ndarray, random_seed: int) -> np.ndarray:
        cfg = self.config.clustering
        som = SelfOrganizingMap(
            xdim=cfg.xdim,
            ydim=cfg.ydim,
            rlen=cfg.rlen,
            radius_end=cfg.som_radius_end,
            random_seed=random_seed,
        )
        nodes = som.fit(X).predict(X)
        adata.obs["som_node"] = nodes.astype(np.int64)
        adata.uns["som"] = {
            "codes": som.codes,
            "xdim": int(cfg.xdim),
            "ydim": int(cfg.ydim),
            "rlen": int(cfg.rlen),
        }
        self.logger.debug(
            "SOM %dx%d: %d occupied nodes",
            cfg.xdim,
            cfg.ydim,
            len(np.unique(nodes)),
        )
        return nodes

    def _cluster_kmeans(self, X: np.ndarray, k: int, random_seed: int) -> np.ndarray:
        from sklearn.cluster import KMeans

        model = KMeans(n_clusters=k, n_init=10, random_state=random_seed)
        return model.fit_predict(X)

    def _cluster_mclust(self, X: np.ndarray, k: int, random_seed: int) -> np.ndarray:
        from sklearn.mixture import GaussianMixture

        model = GaussianMixture(
            n_components=k,
            covariance_type="full",
            reg_covar=1e-4,
            random_state=random_seed,
        )
        return model.fit_predict(X)

    def _cluster_clara(self, X: np.ndarray, k: int, random_seed: int) -> np.ndarray:
        from sklearn.metrics import pairwise_distances_argmin_min
        from sklearn_extra.cluster import KMedoids

        cfg = self.config.clustering
        n_cells = X.shape[0]
        sample_size = cfg.clara_sample_size or (40 + 2 * k)
        sample_size = min(max(sample_size, k), n_cells)
        rng = np.random.default_rng(random_seed)

        best_labels: Optional[np.ndarray] = None
        best_cost = np.inf
        for i in range(max(cfg.clara_samples, 1)):
            sample = rng.choice(n_cells, size=sample_size, replace=False)
            model = KMedoids(
                n_clusters=k,
                method="alternate",
                init="k-medoids++",
                random_state=int(rng.integers(2**31 - 1)),
            ).fit(X[sample])
            labels, dist = pairwise_distances_argmin_min(X, model.cluster_centers_)
            cost = float(dist.sum())
            self.logger.debug("CLARA sample %d: cost=%.4f", i, cost)
            if cost < best_cost:
                best_cost = cost
                best_labels = labels
        return best_labels

    def _cluster_hclust(self, X: np.ndarray, k: int, random_seed: int) -> np.ndarray:
        from scipy.cluster.hierarchy import fcluster, linkage
        from sklearn.metrics import pairwise_distances_argmin

        cfg = self.config.clustering
        n_cells = X.shape[0]
        if n_cells <= cfg.hclust_max_cells:
            tree = linkage(X, method=cfg.hclust_linkage)
            return fcluster(tree, t=k, criterion="maxclust")

        rng = np.random.default_rng(random_seed)
        subset = np.sort(rng.choice(n_cells, size=cfg.hclust_max_cells, replace=False))
        self.logger.info(
            "hclust: fitting on %d of %d cells, assigning the rest to nearest centroid",
            subset.size,
            n_cells,
        )
        tree = linkage(X[subset], method=cfg.hclust_linkage)
        sub_labels = fcluster(tree, t=k, criterion="maxclust")
        groups = np.unique(sub_labels)
        centroids = np.vstack([X[subset][sub_labels == g].mean(axis=0) for g in groups])
        labels = groups[pairwise_distances_argmin(X, centroids)]
        labels[subset] = sub_labels
        return labels

    def _cluster_leiden(
        self,
        X: np.ndarray,
        neighbors_k: int,
        resolution: float,
        random_seed: int,
    ) -> np.ndarray:
        try:
            import anndata as ad
            import scanpy as sc
        except ImportError:
            raise RuntimeError(
                "Leiden clustering requires scanpy. Install with: pip install scanpy"
            )

        cfg = self.config.clustering
        work = ad.AnnData(X=X.astype(np.float32))
        n_obs, n_vars = work.shape
        use_pcs = min(cfg.n_pcs, n_vars - 1, n_obs - 1)
        n_neighbors = max(2, min(neighbors_k, n_obs - 1))

        if use_pcs >= 2:
            sc.tl.pca(work, n_comps=use_pcs, random_state=random_seed)
            sc.pp.neighbors(work, n_neighbors=n_neighbors, use_rep="X_pca",
                            random_state=random_seed)
        else:
            sc.pp.neighbors(work, n_neighbors=n_neighbors, use_rep="X",
                            random_state=random_seed)
        sc.tl.leiden(
            work,
            resolution=resolution,
            random_state=random_seed,
            key_added="leiden",
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )
        return work.obs["leiden"].astype(int).to_numpy()

    def process_clusters(
        self,
        adata: Any,  # AnnData
        cluster_key: Optional[str] = None,
        downsampling_size: Optional[float] = None,
        min_cells_per_cluster: Optional[int] = None,
        random_seed: Optional[int] = None,
    ) -> pd.DataFrame:
        """Compute cluster centroids and per-cluster downsampling.

        Parameters
        ----------
        adata : AnnData
            Clustered AnnData (modified in place)
        cluster_key : str, optional
            Cluster column in adata.obs
        downsampling_size : float, optional
            Fraction in (0, 1] or absolute number of cells kept per cluster
        min_cells_per_cluster : int, optional
            Keep at least this many cells (or all, if fewer)
        random_seed : int, optional
            Random seed for downsampling

        Returns
        -------
        pd.DataFrame
            Clusters x markers mean expression, also stored in
            ``adata.uns["cluster_centroids"]``, with the cluster key in
            ``adata.uns["cluster_centroids_key"]``
        """
        proc = self.config.processing
        cluster_key = cluster_key if cluster_key is not None else self.config.clustering.cluster_key
        downsampling_size = (
            downsampling_size if downsampling_size is not None else proc.downsampling_size
        )
        min_cells_per_cluster = (
            min_cells_per_cluster
            if min_cells_per_cluster is not None
            else proc.min_cells_per_cluster
        )
        random_seed = random_seed if random_seed is not None else proc.random_seed

        if cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")
        if downsampling_size <= 0:
            raise ValueError(f"downsampling_size must be positive, got {downsampling_size}")

        values = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X)
        clusters = adata.obs[cluster_key].astype(str).to_numpy()
        expr = pd.DataFrame(values, columns=adata.var_names.astype(str))
        expr["__cluster"] = clusters
        centroids = expr.groupby("__cluster", sort=False).mean()
        order = sorted(centroids.index, key=natural_sort_key)
        centroids = centroids.loc[order]
        centroids.index.name = None
        adata.uns["cluster_centroids"] = centroids
        adata.uns["cluster_centroids_key"] = cluster_key

        rng = np.random.default_rng(random_seed)
        keep = np.zeros(adata.n_obs, dtype=bool)
        for cluster in order:
            members = np.flatnonzero(clusters == cluster)
            n = members.size
            if downsampling_size <= 1:
                n_keep = int(round(downsampling_size * n))
            else:
                n_keep = int(downsampling_size)
            n_keep = min(max(n_keep, min_cells_per_cluster), n)
            chosen = members if n_keep >= n else rng.choice(members, size=n_keep, replace=False)
            keep[chosen] = True
        adata.obs["is_downsampled"] = keep

        self.logger.info(
            "Cluster processing: %d centroids, %d of %d cells kept by downsampling",
            len(order),
            int(keep.sum()),
            adata.n_obs,
        )
        return centroids
