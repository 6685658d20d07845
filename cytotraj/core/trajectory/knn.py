"""Cell k-nearest-neighbor graph.

The graph is symmetric, has no self loops, and stores the Euclidean (or
configured metric) distance on every edge. Pseudotime and the random
walks both run on it.
"""

from typing import Any, List, Optional
import logging

import numpy as np
from scipy import sparse
from sklearn.neighbors import NearestNeighbors

logger = logging.getLogger(__name__)

# zero distances would vanish from the sparse structure
MIN_EDGE_DISTANCE = 1e-8


def get_representation(
    adata: Any,
    use_rep: str = "X",
    dim_use: Optional[List[int]] = None,
) -> np.ndarray:
    """Return the cells x dims matrix a graph or tree is built on.

    Parameters
    ----------
    adata : AnnData
        Input AnnData
    use_rep : str
        "X" or an obsm key
    dim_use : List[int], optional
        Columns to keep

    Raises
    ------
    KeyError
        If ``use_rep`` is not in adata.obsm
    ValueError
        If a column index is out of range
    """
    if use_rep == "X":
        base = adata.X
    else:
        if use_rep not in adata.obsm:
            raise KeyError(
                f"Representation '{use_rep}' not found in adata.obsm "
                f"(available: {list(adata.obsm.keys())})"
            )
        base = adata.obsm[use_rep]
    values = base.toarray() if sparse.issparse(base) else np.asarray(base)
    values = np.asarray(values, dtype=float)

    if dim_use is not None:
        dims = [int(d) for d in dim_use]
        bad = [d for d in dims if d < 0 or d >= values.shape[1]]
        if bad:
            raise ValueError(
                f"Component indices {bad} out of range for '{use_rep}' "
                f"with {values.shape[1]} columns"
            )
        values = values[:, dims]
    return values


def build_knn_graph(
    adata: Any,
    knn: int = 30,
    use_rep: str = "X",
    dim_use: Optional[List[int]] = None,
    metric: str = "euclidean",
    key_added: str = "knn_distances",
) -> sparse.csr_matrix:
    """Build the symmetric kNN distance graph of cells.

    Parameters
    ----------
    adata : AnnData
        Input AnnData (modified in place)
    knn : int
        Neighbors per cell, clamped to n_obs - 1
    use_rep : str
        "X" or an obsm key
    dim_use : List[int], optional
        Columns of the representation to use
    metric : str
        Distance metric
    key_added : str
        obsp key for the graph

    Returns
    -------
    sparse.csr_matrix
        n_obs x n_obs graph with distance weights

    Raises
    ------
    ValueError
        If there are fewer than two cells, knn < 1, or the representation
        has NaN rows
    """
    values = get_representation(adata, use_rep, dim_use)
    n_obs = values.shape[0]
    if n_obs < 2:
        raise ValueError(f"kNN graph needs at least 2 cells, got {n_obs}")
    if knn < 1:
        raise ValueError(f"knn must be >= 1, got {knn}")
    nan_rows = int(np.isnan(values).any(axis=1).sum())
    if nan_rows:
        raise ValueError(
            f"Representation '{use_rep}' has {nan_rows} rows with NaN; "
            "embed all cells or use another representation"
        )

    k = min(knn, n_obs - 1)
    if k < knn:
        logger.warning("knn=%d clamped to %d (n_obs=%d)", knn, k, n_obs)

    nn = NearestNeighbors(n_neighbors=k, metric=metric).fit(values)
    # X=None excludes each cell from its own neighbor list
    graph = nn.kneighbors_graph(X=None, n_neighbors=k, mode="distance").tocsr()
    graph.data = np.maximum(graph.data, MIN_EDGE_DISTANCE)
    graph = graph.maximum(graph.T).tocsr()

    adata.obsp[key_added] = graph
    adata.uns["knn"] = {
        "knn": int(k),
        "use_rep": use_rep,
        "dim_use": [int(d) for d in dim_use] if dim_use is not None else [],
        "metric": metric,
        "key": key_added,
    }
    logger.info(
        "kNN graph: %d cells, k=%d, %d edges (rep=%s)",
        n_obs,
        k,
        graph.nnz // 2,
        use_rep,
    )
    return graph
