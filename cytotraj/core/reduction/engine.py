"""Dimensionality reduction engine.

Computes PCA, t-SNE, diffusion map and UMAP embeddings of cells (and
optionally of cluster centroids) via scanpy, with parameters clamped to
what the data size allows.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import numpy as np
import pandas as pd
from scipy import sparse

from ...utils.labels import natural_sorted
from .config import REDUCTION_METHODS, ReductionConfig

EMBEDDING_PREFIX = {"pca": "PC", "tsne": "tSNE", "diffmap": "DC", "umap": "UMAP"}


@dataclass
class ReductionResult:
    """Result from dimensionality reduction.

    Attributes
    ----------
    methods : List[str]
        Methods that were run
    embedding_keys : List[str]
        obsm keys written
    n_embedded : int
        Number of cells embedded
    """

    methods: List[str] = field(default_factory=list)
    embedding_keys: List[str] = field(default_factory=list)
    n_embedded: int = 0


class ReductionEngine:
    """Cell and cluster embeddings.

    Parameters
    ----------
    config : ReductionConfig, optional
        Reduction configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.reduction import ReductionEngine, ReductionConfig
    >>> engine = ReductionEngine(ReductionConfig(methods=["pca", "diffmap"]))
    >>> result = engine.run(adata)
    >>> adata.obsm["X_diffmap"].shape
    """

    def __init__(
        self,
        config: Optional[ReductionConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ReductionConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Dimensionality reduction requires scanpy. Install with: pip install scanpy"
            )

    # ------------------------------------------------------------------
    # Working data
    # ------------------------------------------------------------------

    def _cell_mask(self, adata: Any) -> np.ndarray:
        if not self.config.use_downsampled:
            return np.ones(adata.n_obs, dtype=bool)
        if "is_downsampled" not in adata.obs:
            raise KeyError(
                "use_downsampled is set but adata.obs['is_downsampled'] is missing; "
                "run cluster processing first"
            )
        mask = adata.obs["is_downsampled"].to_numpy(dtype=bool)
        if not mask.any():
            raise ValueError("No cells are marked as downsampled")
        return mask

    def _working_adata(self, adata: Any, mask: np.ndarray) -> Any:
        import anndata as ad

        layer = self.config.layer
        if layer and layer in adata.layers:
            base = adata.layers[layer]
        else:
            if layer:
                self.logger.warning("Layer '%s' not found; using AnnData.X", layer)
            base = adata.X
        values = base.toarray() if sparse.issparse(base) else np.asarray(base)
        return ad.AnnData(X=np.asarray(values[mask], dtype=np.float32))

    def _store(self, adata: Any, key: str, embedding: np.ndarray, mask: np.ndarray) -> None:
        full = np.full((adata.n_obs, embedding.shape[1]), np.nan, dtype=np.float64)
        full[mask] = embedding
        adata.obsm[key] = full

    # ------------------------------------------------------------------
    # Methods on a working AnnData (no NaN rows)
    # ------------------------------------------------------------------

    def _pca(self, work: Any) -> np.ndarray:
        import scanpy as sc

        n_comps = min(self.config.n_pcs, min(work.n_obs, work.n_vars) - 1)
        if n_comps < 1:
            raise ValueError(
                f"PCA needs at least 2 observations and 2 variables, got {work.shape}"
            )
        sc.tl.pca(work, n_comps=n_comps, random_state=self.config.random_seed)
        return np.asarray(work.obsm["X_pca"])

    def _tsne(self, work: Any) -> np.ndarray:
        import scanpy as sc

        if work.n_obs < 4:
            raise ValueError(f"t-SNE needs at least 4 observations, got {work.n_obs}")
        perplexity = min(self.config.perplexity, (work.n_obs - 1) / 3.0)
        sc.tl.tsne(
            work,
            use_rep="X",
            perplexity=perplexity,
            random_state=self.config.random_seed,
        )
        return np.asarray(work.obsm["X_tsne"])

    def _neighbors(self, work: Any) -> None:
        import scanpy as sc

        if "neighbors" in work.uns:
            return
        if work.n_obs < 3:
            raise ValueError(f"Neighbor graph needs at least 3 observations, got {work.n_obs}")
        n_neighbors = max(2, min(self.config.neighbors_k, work.n_obs - 1))
        sc.pp.neighbors(
            work,
            n_neighbors=n_neighbors,
            use_rep="X",
            random_state=self.config.random_seed,
        )

    def _diffmap(self, work: Any) -> np.ndarray:
        import scanpy as sc

        n_dcs = min(self.config.n_dcs, work.n_obs - 2)
        if n_dcs < 2 or work.n_obs < 4:
            raise ValueError(f"Diffusion map needs at least 4 observations, got {work.n_obs}")
        self._neighbors(work)
        # first component is the trivial stationary one
        sc.tl.diffmap(work, n_comps=n_dcs + 1)
        return np.asarray(work.obsm["X_diffmap"])[:, 1:]

    def _umap(self, work: Any) -> np.ndarray:
        import scanpy as sc

        self._neighbors(work)
        sc.tl.umap(
            work,
            min_dist=self.config.umap_min_dist,
            random_state=self.config.random_seed,
        )
        return np.asarray(work.obsm["X_umap"])

    def _embed(self, work: Any, method: str) -> np.ndarray:
        if method == "pca":
            return self._pca(work)
        if method == "tsne":
            return self._tsne(work)
        if method == "diffmap":
            return self._diffmap(work)
        if method == "umap":
            return self._umap(work)
        raise ValueError(
            f"Unknown reduction method: {method}. Choose from {list(REDUCTION_METHODS)}"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def _run_single(self, adata: Any, method: str) -> str:
        mask = self._cell_mask(adata)
        work = self._working_adata(adata, mask)
        embedding = self._embed(work, method)
        key = f"X_{method}"
        self._store(adata, key, embedding, mask)
        self.logger.info(
            "%s: embedded %d cells into %d dims", method, int(mask.sum()), embedding.shape[1]
        )
        return key

    def run_pca(self, adata: Any) -> str:
        """PCA of cells into obsm["X_pca"]."""
        return self._run_single(adata, "pca")

    def run_tsne(self, adata: Any) -> str:
        """t-SNE of cells (on markers) into obsm["X_tsne"]."""
        return self._run_single(adata, "tsne")

    def run_diffusion_map(self, adata: Any) -> str:
        """Diffusion map of cells into obsm["X_diffmap"]."""
        return self._run_single(adata, "diffmap")

    def run_umap(self, adata: Any) -> str:
        """UMAP of cells into obsm["X_umap"]."""
        return self._run_single(adata, "umap")

    def run(self, adata: Any, methods: Optional[List[str]] = None) -> ReductionResult:
        """Run the configured methods in order.

        Parameters
        ----------
        adata : AnnData
            Input AnnData (modified in place)
        methods : List[str], optional
            Methods to run. Uses config default if None.

        Returns
        -------
        ReductionResult
            Methods run and obsm keys written

        Raises
        ------
        ValueError
            If a method is unknown or the data is too small for it
        """
        methods = list(methods if methods is not None else self.config.methods)
        unknown = [m for m in methods if m not in REDUCTION_METHODS]
        if unknown:
            raise ValueError(
                f"Unknown reduction method(s): {unknown}. Choose from {list(REDUCTION_METHODS)}"
            )

        mask = self._cell_mask(adata)
        # one working copy so diffmap and umap share a neighbor graph
        work = self._working_adata(adata, mask)
        result = ReductionResult(n_embedded=int(mask.sum()))
        for method in methods:
            embedding = self._embed(work, method)
            key = f"X_{method}"
            self._store(adata, key, embedding, mask)
            result.methods.append(method)
            result.embedding_keys.append(key)
            self.logger.info(
                "%s: embedded %d cells into %d dims", method, result.n_embedded, embedding.shape[1]
            )

        adata.uns["reduction"] = {
            **self.config.to_dict(),
            "methods": result.methods,
            "layer": self.config.layer or "X",
            "n_embedded": result.n_embedded,
        }
        return result

    def cluster_matrix(self, adata: Any, cluster_key: Optional[str] = None) -> pd.DataFrame:
        """Cluster x marker centroid matrix.

        Stored ``uns["cluster_centroids"]`` are reused only when they were
        computed for ``cluster_key``; otherwise centroids are recomputed.
        """
        cluster_key = cluster_key or self.config.cluster_key
        centroids = adata.uns.get("cluster_centroids")
        stored_key = adata.uns.get("cluster_centroids_key", cluster_key)
        if isinstance(centroids, pd.DataFrame) and len(centroids) and stored_key == cluster_key:
            return centroids
        if cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")
        values = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X)
        df = pd.DataFrame(values, columns=adata.var_names.astype(str))
        df["__cluster"] = adata.obs[cluster_key].astype(str).to_numpy()
        means = df.groupby("__cluster").mean()
        means = means.loc[natural_sorted(means.index)]
        means.index.name = None
        return means

    def run_cluster_reduction(
        self,
        adata: Any,
        cluster_key: Optional[str] = None,
        methods: Optional[List[str]] = None,
    ) -> Dict[str, pd.DataFrame]:
        """Embed cluster centroids into uns["cluster_embeddings"].

        Methods the number of clusters is too small for are skipped with
        a warning.

        Parameters
        ----------
        adata : AnnData
            Clustered AnnData (modified in place)
        cluster_key : str, optional
            Cluster column. Uses config default if None.
        methods : List[str], optional
            Methods to run. Uses config default if None.

        Returns
        -------
        Dict[str, pd.DataFrame]
            Method -> clusters x components DataFrame
        """
        import anndata as ad

        methods = list(methods if methods is not None else self.config.methods)
        unknown = [m for m in methods if m not in REDUCTION_METHODS]
        if unknown:
            raise ValueError(
                f"Unknown reduction method(s): {unknown}. Choose from {list(REDUCTION_METHODS)}"
            )

        centroids = self.cluster_matrix(adata, cluster_key)
        work = ad.AnnData(X=centroids.to_numpy(dtype=np.float32))
        embeddings: Dict[str, pd.DataFrame] = {}
        for method in methods:
            try:
                embedding = self._embed(work, method)
            except ValueError as e:
                self.logger.warning("Cluster-level %s skipped: %s", method, e)
                continue
            columns = [f"{EMBEDDING_PREFIX[method]}{i + 1}" for i in range(embedding.shape[1])]
            embeddings[method] = pd.DataFrame(
                embedding, index=centroids.index.astype(str), columns=columns
            )
        adata.uns["cluster_embeddings"] = embeddings
        self.logger.info(
            "Cluster-level reduction of %d clusters: %s",
            len(centroids),
            ", ".join(embeddings) or "none",
        )
        return embeddings
