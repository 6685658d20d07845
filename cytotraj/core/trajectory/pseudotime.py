"""Pseudotime from shortest paths on the cell kNN graph.

Pseudotime of a cell is its graph distance from the root cells (minimum
or mean over roots), scaled so the most distant reachable cell is 1.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
import logging

import numpy as np
from scipy.sparse.csgraph import dijkstra

from ...utils.stats import scale_to_max
from .config import AGGREGATES, PseudotimeConfig

# root chunk size for the "mean" aggregate (rows of the distance matrix)
MEAN_CHUNK_SIZE = 64


def select_cells(
    adata: Any,
    clusters: Optional[Sequence[str]] = None,
    cells: Optional[Sequence[str]] = None,
    cluster_key: str = "cluster_id",
    what: str = "root",
) -> np.ndarray:
    """Boolean mask of cells in ``clusters`` or named in ``cells``.

    Raises
    ------
    ValueError
        If nothing is requested, a cluster or cell is unknown, or the
        selection is empty
    """
    if not clusters and not cells:
        raise ValueError(f"No {what} clusters or cells given")

    mask = np.zeros(adata.n_obs, dtype=bool)
    if clusters:
        if cluster_key not in adata.obs:
            raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs")
        labels = adata.obs[cluster_key].astype(str)
        wanted = [str(c) for c in clusters]
        unknown = sorted(set(wanted) - set(labels))
        if unknown:
            raise ValueError(f"Unknown {what} clusters: {unknown}")
        mask |= labels.isin(wanted).to_numpy()
    if cells:
        wanted = [str(c) for c in cells]
        names = adata.obs_names.astype(str)
        unknown = sorted(set(wanted) - set(names))
        if unknown:
            shown = unknown[:5]
            raise ValueError(f"Unknown {what} cells ({len(unknown)}): {shown}")
        mask |= names.isin(wanted)

    if not mask.any():
        raise ValueError(f"Empty {what} cell selection")
    return mask


def define_root_cells(
    adata: Any,
    clusters: Optional[Sequence[str]] = None,
    cells: Optional[Sequence[str]] = None,
    cluster_key: str = "cluster_id",
    key_added: str = "is_root",
) -> np.ndarray:
    """Mark root cells in ``adata.obs[key_added]`` and return the mask."""
    mask = select_cells(adata, clusters, cells, cluster_key, what="root")
    adata.obs[key_added] = mask
    return mask


@dataclass
class PseudotimeResult:
    """Result from pseudotime estimation.

    Attributes
    ----------
    pseudotime : np.ndarray
        Per-cell pseudotime (NaN where unreachable)
    n_roots : int
        Number of root cells
    n_unreachable : int
        Cells with no path from any root
    aggregate : str
        Aggregate over roots ("min" or "mean")
    max_distance : float
        Largest finite graph distance before scaling
    """

    pseudotime: np.ndarray = field(default_factory=lambda: np.zeros(0))
    n_roots: int = 0
    n_unreachable: int = 0
    aggregate: str = "min"
    max_distance: float = 0.0


class PseudotimeEstimator:
    """Shortest-path pseudotime on the kNN graph.

    Parameters
    ----------
    config : PseudotimeConfig, optional
        Pseudotime configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.trajectory import PseudotimeEstimator, build_knn_graph
    >>> build_knn_graph(adata, knn=30)
    >>> define_root_cells(adata, clusters=["3"])
    >>> result = PseudotimeEstimator().run(adata)
    """

    def __init__(
        self,
        config: Optional[PseudotimeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PseudotimeConfig()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _mean_distance(graph: Any, roots: np.ndarray) -> np.ndarray:
        """Mean finite distance from roots, computed in chunks of roots."""
        n_obs = graph.shape[0]
        total = np.zeros(n_obs)
        count = np.zeros(n_obs)
        for start in range(0, roots.size, MEAN_CHUNK_SIZE):
            dist = dijkstra(graph, directed=False, indices=roots[start:start + MEAN_CHUNK_SIZE])
            dist = np.atleast_2d(dist)
            finite = np.isfinite(dist)
            total += np.where(finite, dist, 0.0).sum(axis=0)
            count += finite.sum(axis=0)
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(count > 0, total / np.maximum(count, 1), np.inf)

    def run(
        self,
        adata: Any,
        aggregate: Optional[str] = None,
        normalize: Optional[bool] = None,
        graph_key: str = "knn_distances",
        root_key: str = "is_root",
        key_added: str = "pseudotime",
    ) -> PseudotimeResult:
        """Compute pseudotime for every cell.

        Parameters
        ----------
        adata : AnnData
            AnnData with kNN graph and root cells (modified in place)
        aggregate : str, optional
            "min" or "mean" over roots. Uses config default if None.
        normalize : bool, optional
            Scale to [0, 1]. Uses config default if None.
        graph_key : str
            obsp key of the kNN graph
        root_key : str
            Boolean obs column marking root cells
        key_added : str
            obs column for the result

        Returns
        -------
        PseudotimeResult
            Pseudotime and reachability summary

        Raises
        ------
        KeyError
            If the graph or root column is missing
        ValueError
            If the aggregate is unknown or there are no root cells
        """
        aggregate = aggregate if aggregate is not None else self.config.aggregate
        normalize = normalize if normalize is not None else self.config.normalize
        if aggregate not in AGGREGATES:
            raise ValueError(f"Unknown aggregate: {aggregate}. Choose from {list(AGGREGATES)}")
        if graph_key not in adata.obsp:
            raise KeyError(f"kNN graph '{graph_key}' not found in adata.obsp; build it first")
        if root_key not in adata.obs:
            raise KeyError(f"Root column '{root_key}' not found in adata.obs; define roots first")

        roots = np.flatnonzero(adata.obs[root_key].to_numpy(dtype=bool))
        if roots.size == 0:
            raise ValueError("No root cells defined")

        graph = adata.obsp[graph_key].tocsr()
        if aggregate == "min":
            distance = dijkstra(graph, directed=False, indices=roots, min_only=True)
        else:
            distance = self._mean_distance(graph, roots)
        distance = np.asarray(distance, dtype=float)

        unreachable = ~np.isfinite(distance)
        n_unreachable = int(unreachable.sum())
        distance[unreachable] = np.nan
        if n_unreachable:
            self.logger.warning(
                "%d of %d cells are unreachable from the roots; their pseudotime is NaN",
                n_unreachable,
                adata.n_obs,
            )

        max_distance = float(np.nanmax(distance)) if (~unreachable).any() else 0.0
        pseudotime = scale_to_max(distance) if normalize else distance

        adata.obs[key_added] = pseudotime
        adata.uns["pseudotime"] = {
            "aggregate": aggregate,
            "normalize": bool(normalize),
            "n_roots": int(roots.size),
            "n_unreachable": n_unreachable,
            "max_distance": max_distance,
        }
        self.logger.info(
            "Pseudotime from %d roots (%s), max distance %.4f",
            roots.size,
            aggregate,
            max_distance,
        )
        return PseudotimeResult(
            pseudotime=pseudotime,
            n_roots=int(roots.size),
            n_unreachable=n_unreachable,
            aggregate=aggregate,
            max_distance=max_distance,
        )
