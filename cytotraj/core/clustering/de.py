"""Differential expression between branches or clusters.

Wraps scanpy's ``rank_genes_groups`` to find the markers that separate
trajectory branches (or any other categorical grouping of cells).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

import pandas as pd

from ...utils.labels import natural_sorted
from .config import DEConfig


@dataclass
class DEResult:
    """Result from differential expression testing.

    Attributes
    ----------
    group_markers : Dict[str, List[str]]
        Map of group ID to its top marker names
    key_added : str
        Key in adata.uns containing full DE results
    tables : Dict[str, pd.DataFrame]
        Per-group rank_genes_groups tables
    reference : str
        Reference group ("rest" for one-vs-rest)
    elapsed_seconds : float
        Time taken for DE computation
    """

    group_markers: Dict[str, List[str]] = field(default_factory=dict)
    key_added: str = ""
    tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    reference: str = "rest"
    elapsed_seconds: float = 0.0

    def to_frame(self) -> pd.DataFrame:
        """All per-group tables stacked with a ``group`` column."""
        if not self.tables:
            return pd.DataFrame(columns=["group", "names", "scores", "pvals_adj"])
        frames = []
        for group, df in self.tables.items():
            df = df.copy()
            df.insert(0, "group", group)
            frames.append(df)
        return pd.concat(frames, ignore_index=True)


class BranchDERunner:
    """Differential expression test runner for branches or clusters.

    Parameters
    ----------
    config : DEConfig, optional
        DE configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from cytotraj.core.clustering import BranchDERunner
    >>> runner = BranchDERunner()
    >>> result = runner.run_diff(adata, groupby="branch_id", groups=["2", "3"])
    >>> result.group_markers["2"][:5]
    """

    def __init__(
        self,
        config: Optional[DEConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DEConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Differential expression requires scanpy. "
                "Install with: pip install scanpy"
            )

    def run_diff(
        self,
        adata: Any,  # AnnData
        groupby: str = "branch_id",
        groups: Optional[Sequence[str]] = None,
        reference: str = "rest",
        method: Optional[str] = None,
        n_genes: Optional[int] = None,
        layer: Optional[str] = None,
        tie_correct: Optional[bool] = None,
        key_added: Optional[str] = None,
    ) -> DEResult:
        """Rank markers that distinguish groups of cells.

        Parameters
        ----------
        adata : AnnData
            AnnData with expression data and group labels
        groupby : str
            Column in adata.obs with group labels (e.g. branch_id)
        groups : Sequence[str], optional
            Groups to test. If None, all groups with at least two cells.
        reference : str
            Group to compare against, or "rest" for one-vs-rest
        method : str, optional
            DE method ('wilcoxon', 't-test', ...). Uses config default if None.
        n_genes : int, optional
            Number of top markers per group. Uses config default if None.
        layer : str, optional
            Layer to test on. Uses config default if None.
        tie_correct : bool, optional
            Apply tie correction for Wilcoxon. Uses config default if None.
        key_added : str, optional
            Key to store results in adata.uns

        Returns
        -------
        DEResult
            DE result with per-group marker lists and tables

        Raises
        ------
        KeyError
            If ``groupby`` is not in adata.obs
        ValueError
            If fewer than two groups are available or a group is unknown
        """
        import scanpy as sc

        cfg = self.config
        method = method if method is not None else cfg.method
        n_genes = n_genes if n_genes is not None else cfg.n_genes
        layer = layer if layer is not None else cfg.layer
        tie_correct = tie_correct if tie_correct is not None else cfg.tie_correct
        if key_added is None:
            key_added = f"de_{groupby}"

        if groupby not in adata.obs:
            raise KeyError(f"Group column '{groupby}' not found in adata.obs")

        if layer and layer not in adata.layers:
            self.logger.warning(
                "Layer '%s' not found in adata.layers; falling back to adata.X", layer
            )
            layer = None

        labels = adata.obs[groupby].astype(str)
        counts = labels.value_counts()
        available = natural_sorted(counts[counts >= 2].index)
        too_small = natural_sorted(counts[counts < 2].index)
        if too_small:
            self.logger.warning(
                "Skipping groups with fewer than two cells: %s", ", ".join(too_small)
            )

        if groups is None:
            groups = [g for g in available if g != reference]
        else:
            groups = [str(g) for g in groups]
            unknown = [g for g in groups if g not in set(labels)]
            if unknown:
                raise ValueError(f"Unknown groups in '{groupby}': {unknown}")
            groups = [g for g in groups if g in available and g != reference]
        if reference != "rest" and reference not in available:
            raise ValueError(f"Reference group '{reference}' not found in '{groupby}'")

        enough = len(available) >= 2 if reference == "rest" else bool(groups)
        if not groups or not enough:
            raise ValueError(
                f"Differential expression needs at least two groups in '{groupby}', "
                f"got {len(available)}"
            )

        # rank_genes_groups requires a categorical grouping
        work = adata
        if not isinstance(adata.obs[groupby].dtype, pd.CategoricalDtype):
            work = adata.copy()
            work.obs[groupby] = pd.Categorical(labels, categories=natural_sorted(counts.index))

        start = time.time()
        kwargs = {"tie_correct": tie_correct} if method == "wilcoxon" else {}
        sc.tl.rank_genes_groups(
            work,
            groupby=groupby,
            groups=groups,
            reference=reference,
            method=method,
            n_genes=min(n_genes, work.n_vars),
            layer=layer,
            use_raw=False,
            key_added=key_added,
            **kwargs,
        )
        elapsed = time.time() - start

        result = DEResult(key_added=key_added, reference=reference, elapsed_seconds=elapsed)
        for group in groups:
            df = sc.get.rank_genes_groups_df(work, group=group, key=key_added)
            df = df.dropna(subset=["names"]).reset_index(drop=True)
            result.tables[group] = df
            result.group_markers[group] = df.head(n_genes)["names"].astype(str).tolist()

        if work is not adata:
            adata.uns[key_added] = work.uns[key_added]

        self.logger.info(
            "Differential expression for %d groups finished in %.1fs", len(groups), elapsed
        )
        return result
