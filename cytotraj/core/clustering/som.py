"""Batch self-organizing map.

A FlowSOM-style map on a rectangular grid: the codebook is initialised
from random cells and trained with the batch update rule under a Gaussian
neighbourhood whose radius shrinks linearly over the epochs.
"""

from typing import Optional

import numpy as np
from scipy import sparse
from scipy.spatial.distance import cdist
from sklearn.metrics import pairwise_distances_argmin


class SelfOrganizingMap:
    """Self-organizing map with batch training.

    Parameters
    ----------
    xdim : int
        Grid width
    ydim : int
        Grid height
    rlen : int
        Number of training epochs
    radius_start : float, optional
        Initial neighbourhood radius. Defaults to the 0.67 quantile of
        the pairwise grid distances.
    radius_end : float
        Final neighbourhood radius
    random_seed : int
        Random seed for codebook initialisation

    Attributes
    ----------
    grid : np.ndarray
        (xdim * ydim, 2) grid coordinates of each node
    codes : np.ndarray
        (xdim * ydim, n_features) codebook, set by ``fit``

    Example
    -------
    >>> som = SelfOrganizingMap(xdim=10, ydim=10, rlen=10, random_seed=1)
    >>> nodes = som.fit(X).predict(X)
    """

    def __init__(
        self,
        xdim: int = 6,
        ydim: int = 6,
        rlen: int = 10,
        radius_start: Optional[float] = None,
        radius_end: float = 0.0,
        random_seed: int = 42,
    ):
        if xdim < 1 or ydim < 1:
            raise ValueError(f"SOM grid must be at least 1x1, got {xdim}x{ydim}")
        if rlen < 1:
            raise ValueError(f"rlen must be >= 1, got {rlen}")
        self.xdim = xdim
        self.ydim = ydim
        self.rlen = rlen
        self.radius_end = radius_end
        self.random_seed = random_seed

        xs, ys = np.meshgrid(np.arange(xdim), np.arange(ydim), indexing="xy")
        self.grid = np.column_stack([xs.ravel(), ys.ravel()]).astype(float)
        self._grid_dist = cdist(self.grid, self.grid)

        if radius_start is None:
            off_diag = self._grid_dist[np.triu_indices(self.n_nodes, k=1)]
            radius_start = float(np.quantile(off_diag, 0.67)) if off_diag.size else 0.0
        self.radius_start = radius_start
        self.codes: Optional[np.ndarray] = None

    @property
    def n_nodes(self) -> int:
        return self.xdim * self.ydim

    def _neighbourhood(self, radius: float) -> np.ndarray:
        if radius <= 0:
            return np.eye(self.n_nodes)
        return np.exp(-(self._grid_dist ** 2) / (2.0 * radius ** 2))

    def fit(self, X: np.ndarray) -> "SelfOrganizingMap":
        """Train the codebook on X (cells x features)."""
        X = np.asarray(X, dtype=float)
        n_cells = X.shape[0]
        if n_cells < self.n_nodes:
            raise ValueError(
                f"SOM grid has {self.n_nodes} nodes but only {n_cells} cells"
            )

        rng = np.random.default_rng(self.random_seed)
        codes = X[rng.choice(n_cells, size=self.n_nodes, replace=False)].copy()

        radii = np.linspace(self.radius_start, self.radius_end, self.rlen)
        for radius in radii:
            bmu = pairwise_distances_argmin(X, codes)
            # one-hot cell -> node membership
            member = sparse.csr_matrix(
                (np.ones(n_cells), (bmu, np.arange(n_cells))),
                shape=(self.n_nodes, n_cells),
            )
            node_sums = np.asarray(member @ X)
            node_counts = np.asarray(member.sum(axis=1)).ravel()

            h = self._neighbourhood(radius)
            numer = h @ node_sums
            denom = h @ node_counts
            updated = denom > 0
            codes[updated] = numer[updated] / denom[updated, None]

        self.codes = codes
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Best matching unit of each row of X."""
        if self.codes is None:
            raise RuntimeError("SelfOrganizingMap must be fitted before predict")
        return pairwise_distances_argmin(np.asarray(X, dtype=float), self.codes)
