"""Random walks along increasing pseudotime.

Walks start at root cells and only step to kNN neighbors with strictly
larger pseudotime. A walk that reaches a leaf cell within the step limit
is successful, and every cell on it gets one visit. Cells visited often
but neither root nor leaf are intermediate states.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple
import logging

import numpy as np
from joblib import Parallel, cpu_count, delayed
from scipy import sparse

from ...utils.stats import scale_to_max
from .config import WALK_MODES, WalkConfig
from .pseudotime import select_cells


def define_leaf_cells(
    adata: Any,
    clusters: Optional[Sequence[str]] = None,
    cells: Optional[Sequence[str]] = None,
    cluster_key: str = "cluster_id",
    key_added: str = "is_leaf",
) -> np.ndarray:
    """Mark leaf cells in ``adata.obs[key_added]`` and return the mask."""
    mask = select_cells(adata, clusters, cells, cluster_key, what="leaf")
    adata.obs[key_added] = mask
    return mask


def directed_edges(
    graph: sparse.csr_matrix,
    pseudotime: np.ndarray,
    forward: bool = True,
) -> sparse.csr_matrix:
    """Keep only edges along which pseudotime strictly increases (or decreases)."""
    coo = graph.tocoo()
    src_t = pseudotime[coo.row]
    dst_t = pseudotime[coo.col]
    valid = np.isfinite(src_t) & np.isfinite(dst_t)
    keep = valid & ((dst_t > src_t) if forward else (dst_t < src_t))
    return sparse.csr_matrix(
        (coo.data[keep], (coo.row[keep], coo.col[keep])), shape=graph.shape
    )


def walk_chunk(
    starts: np.ndarray,
    seeds: List[np.random.SeedSequence],
    indptr: np.ndarray,
    indices: np.ndarray,
    weights: np.ndarray,
    targets: np.ndarray,
    n_walks: int,
    max_steps: int,
    mode: str,
) -> Tuple[np.ndarray, int, int]:
    """Run all walks of a chunk of start cells.

    This function is designed to be called in parallel. Each start cell
    has its own seed so results do not depend on how starts are chunked.

    Returns
    -------
    Tuple[np.ndarray, int, int]
        Per-cell visit counts, successful walks, total walks
    """
    n_obs = indptr.size - 1
    counts = np.zeros(n_obs, dtype=np.int64)
    n_success = 0
    n_total = 0

    for start, seed in zip(starts, seeds):
        rng = np.random.default_rng(seed)
        for _ in range(n_walks):
            n_total += 1
            cur = int(start)
            path = [cur]
            reached = bool(targets[cur])
            steps = 0
            while not reached and steps < max_steps:
                lo, hi = indptr[cur], indptr[cur + 1]
                if lo == hi:
                    break
                neighbors = indices[lo:hi]
                dist = weights[lo:hi]
                if mode == "nearest":
                    cur = int(neighbors[np.argmin(dist)])
                else:
                    prob = 1.0 / dist
                    cur = int(rng.choice(neighbors, p=prob / prob.sum()))
                path.append(cur)
                steps += 1
                reached = bool(targets[cur])
            if reached:
                n_success += 1
                counts[np.unique(path)] += 1

    return counts, n_success, n_total


@dataclass
class WalkResult:
    """Result from random walks.

    Attributes
    ----------
    traj_value : np.ndarray
        Successful-walk visits per cell
    n_walks : int
        Walks attempted (forward and backward)
    n_success : int
        Walks that reached their targets
    n_backward_success : int
        Successful backward walks
    n_intermediate : int
        Cells flagged as intermediate
    """

    traj_value: np.ndarray = field(default_factory=lambda: np.zeros(0))
    n_walks: int = 0
    n_success: int = 0
    n_backward_success: int = 0
    n_intermediate: int = 0


class RandomWalker:
    """Random walker on the pseudotime-directed kNN graph.

    Parameters
    ----------
    config : WalkConfig, optional
        Walk configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.trajectory import RandomWalker, WalkConfig
    >>> walker = RandomWalker(WalkConfig(walks_per_root=20, n_jobs=4))
    >>> result = walker.run(adata)
    >>> adata.obs.loc[adata.obs["is_intermediate"], "traj_value_norm"].describe()
    """

    def __init__(
        self,
        config: Optional[WalkConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or WalkConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _n_chunks(self, n_starts: int, n_jobs: int) -> int:
        workers = cpu_count() if n_jobs < 0 else max(n_jobs, 1)
        return max(1, min(n_starts, workers * 4))

    def _walk(
        self,
        graph: sparse.csr_matrix,
        starts: np.ndarray,
        targets: np.ndarray,
        seed_seq: np.random.SeedSequence,
        n_walks: int,
        max_steps: int,
        mode: str,
        n_jobs: int,
    ) -> Tuple[np.ndarray, int, int]:
        seeds = seed_seq.spawn(starts.size)
        chunks = np.array_split(np.arange(starts.size), self._n_chunks(starts.size, n_jobs))
        args = (graph.indptr, graph.indices, graph.data, targets, n_walks, max_steps, mode)

        if n_jobs == 1 or len(chunks) == 1:
            results = [
                walk_chunk(starts[idx], [seeds[i] for i in idx], *args) for idx in chunks
            ]
        else:
            results = Parallel(n_jobs=n_jobs, backend="loky")(
                delayed(walk_chunk)(starts[idx], [seeds[i] for i in idx], *args)
                for idx in chunks
            )

        counts = np.zeros(graph.shape[0], dtype=np.int64)
        n_success = 0
        n_total = 0
        for chunk_counts, chunk_success, chunk_total in results:
            counts += chunk_counts
            n_success += chunk_success
            n_total += chunk_total
        return counts, n_success, n_total

    def run(
        self,
        adata: Any,
        walks_per_root: Optional[int] = None,
        max_steps: Optional[int] = None,
        mode: Optional[str] = None,
        backward: Optional[bool] = None,
        n_jobs: Optional[int] = None,
        random_seed: Optional[int] = None,
        graph_key: str = "knn_distances",
        pseudotime_key: str = "pseudotime",
        root_key: str = "is_root",
        leaf_key: str = "is_leaf",
    ) -> WalkResult:
        """Run walks from roots to leaves and score visited cells.

        Writes ``traj_value``, ``traj_value_log``, ``traj_value_norm`` and
        ``is_intermediate`` to adata.obs.

        Parameters
        ----------
        adata : AnnData
            AnnData with kNN graph, pseudotime, root and leaf cells
        walks_per_root : int, optional
            Walks per start cell
        max_steps : int, optional
            Step limit per walk
        mode : str, optional
            "random" or "nearest"
        backward : bool, optional
            Also walk from leaves back to roots
        n_jobs : int, optional
            joblib workers
        random_seed : int, optional
            Random seed

        Returns
        -------
        WalkResult
            Visit counts and walk statistics

        Raises
        ------
        KeyError
            If the graph, pseudotime, root or leaf column is missing
        ValueError
            If the mode is unknown or there are no roots or leaves
        """
        cfg = self.config
        walks_per_root = walks_per_root if walks_per_root is not None else cfg.walks_per_root
        max_steps = max_steps if max_steps is not None else cfg.max_steps
        mode = mode if mode is not None else cfg.mode
        backward = backward if backward is not None else cfg.backward
        n_jobs = n_jobs if n_jobs is not None else cfg.n_jobs
        random_seed = random_seed if random_seed is not None else cfg.random_seed

        if mode not in WALK_MODES:
            raise ValueError(f"Unknown walk mode: {mode}. Choose from {list(WALK_MODES)}")
        if walks_per_root < 1 or max_steps < 1:
            raise ValueError("walks_per_root and max_steps must be >= 1")
        if graph_key not in adata.obsp:
            raise KeyError(f"kNN graph '{graph_key}' not found in adata.obsp")
        for key in (pseudotime_key, root_key, leaf_key):
            if key not in adata.obs:
                raise KeyError(f"Column '{key}' not found in adata.obs")

        pseudotime = adata.obs[pseudotime_key].to_numpy(dtype=float)
        is_root = adata.obs[root_key].to_numpy(dtype=bool)
        is_leaf = adata.obs[leaf_key].to_numpy(dtype=bool)
        if not is_root.any():
            raise ValueError("No root cells defined")
        if not is_leaf.any():
            raise ValueError("No leaf cells defined")

        graph = adata.obsp[graph_key].tocsr()
        roots = np.flatnonzero(is_root & np.isfinite(pseudotime))
        leaves = np.flatnonzero(is_leaf & np.isfinite(pseudotime))
        seed_forward, seed_backward = np.random.SeedSequence(random_seed).spawn(2)

        self.logger.info(
            "Random walks: %d roots x %d walks, mode=%s, max_steps=%d, n_jobs=%d",
            roots.size,
            walks_per_root,
            mode,
            max_steps,
            n_jobs,
        )
        forward = directed_edges(graph, pseudotime, forward=True)
        counts, n_success, n_total = self._walk(
            forward, roots, is_leaf, seed_forward, walks_per_root, max_steps, mode, n_jobs
        )

        n_backward_success = 0
        if backward and leaves.size:
            reverse = directed_edges(graph, pseudotime, forward=False)
            back_counts, n_backward_success, back_total = self._walk(
                reverse, leaves, is_root, seed_backward, walks_per_root, max_steps, mode, n_jobs
            )
            counts += back_counts
            n_success += n_backward_success
            n_total += back_total

        if n_success == 0:
            self.logger.warning("No walk reached its targets; traj_value is zero everywhere")

        traj_log = np.log10(counts + 1.0)
        intermediate = (counts > 0) & ~is_root & ~is_leaf
        adata.obs["traj_value"] = counts
        adata.obs["traj_value_log"] = traj_log
        adata.obs["traj_value_norm"] = scale_to_max(traj_log)
        adata.obs["is_intermediate"] = intermediate
        adata.uns["walk"] = {
            "walks_per_root": int(walks_per_root),
            "max_steps": int(max_steps),
            "mode": mode,
            "backward": bool(backward),
            "random_seed": int(random_seed),
            "n_walks": int(n_total),
            "n_success": int(n_success),
        }

        self.logger.info(
            "Walks: %d of %d successful, %d intermediate cells",
            n_success,
            n_total,
            int(intermediate.sum()),
        )
        return WalkResult(
            traj_value=counts,
            n_walks=n_total,
            n_success=n_success,
            n_backward_success=n_backward_success,
            n_intermediate=int(intermediate.sum()),
        )
