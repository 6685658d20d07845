"""Sample merging into a single AnnData object.

Intersects markers across samples, optionally downsamples each sample,
and attaches sample-level metadata (including the stage label) to every
cell.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .config import MergeConfig


@dataclass
class MergeResult:
    """Result from merging samples.

    Attributes
    ----------
    adata : AnnData
        Merged AnnData object
    n_cells : int
        Total number of cells
    n_samples : int
        Number of samples merged
    markers : List[str]
        Marker names shared by all samples
    dropped_markers : List[str]
        Markers present in some but not all samples
    sampled_counts : Dict[str, int]
        Cells kept per sample
    """

    adata: Any = None  # AnnData
    n_cells: int = 0
    n_samples: int = 0
    markers: List[str] = field(default_factory=list)
    dropped_markers: List[str] = field(default_factory=list)
    sampled_counts: Dict[str, int] = field(default_factory=dict)


class DataMerger:
    """Merger of per-sample matrices into one AnnData.

    Parameters
    ----------
    config : MergeConfig
        Merge configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from cytotraj.core.preprocessing import DataMerger, MergeConfig
    >>> merger = DataMerger(MergeConfig(sampling_size=5000))
    >>> result = merger.merge_samples(matrices, {"D0_rep1": {"stage": "D0"}})
    """

    def __init__(
        self,
        config: Optional[MergeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MergeConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import anndata  # noqa: F401
        except ImportError:
            raise RuntimeError(
                "Data merging requires anndata. "
                "Install with: pip install anndata"
            )

    @staticmethod
    def common_markers(matrices: Dict[str, pd.DataFrame]) -> List[str]:
        """Markers present in every sample, in first-sample order."""
        sample_ids = list(matrices.keys())
        if not sample_ids:
            return []
        shared = set(matrices[sample_ids[0]].columns)
        for sample_id in sample_ids[1:]:
            shared &= set(matrices[sample_id].columns)
        return [str(c) for c in matrices[sample_ids[0]].columns if c in shared]

    def downsample_indices(
        self,
        n_cells: int,
        sampling_size: int,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Row positions kept for one sample (sorted, without replacement)."""
        if sampling_size <= 0 or n_cells <= sampling_size:
            return np.arange(n_cells)
        return np.sort(rng.choice(n_cells, size=sampling_size, replace=False))

    def merge_samples(
        self,
        matrices: Dict[str, pd.DataFrame],
        sample_metadata: Dict[str, Dict[str, Any]],
        raw_matrices: Optional[Dict[str, pd.DataFrame]] = None,
        sampling_size: Optional[int] = None,
    ) -> MergeResult:
        """Merge samples into a single AnnData object.

        Parameters
        ----------
        matrices : Dict[str, pd.DataFrame]
            Map of sample_id to transformed cells x markers matrix
        sample_metadata : Dict[str, Dict[str, Any]]
            Map of sample_id to registry fields (must include ``stage``)
        raw_matrices : Dict[str, pd.DataFrame], optional
            Map of sample_id to untransformed matrix, stored as layers["raw"]
        sampling_size : int, optional
            Maximum cells per sample (default from config)

        Returns
        -------
        MergeResult
            Merged result with AnnData object

        Raises
        ------
        ValueError
            If there are no samples or no marker shared by all samples
        """
        import anndata as ad

        cfg = self.config
        sampling_size = sampling_size if sampling_size is not None else cfg.sampling_size

        if not matrices:
            raise ValueError("No samples to merge")

        result = MergeResult()
        markers = self.common_markers(matrices)
        if not markers:
            raise ValueError("No marker is shared by all samples")

        all_markers = set()
        for matrix in matrices.values():
            all_markers.update(str(c) for c in matrix.columns)
        result.dropped_markers = sorted(all_markers - set(markers))
        if result.dropped_markers:
            self.logger.warning(
                "Dropping %d markers not present in every sample: %s",
                len(result.dropped_markers),
                ", ".join(result.dropped_markers),
            )
        result.markers = markers

        rng = np.random.default_rng(cfg.random_seed)
        expr_blocks: List[np.ndarray] = []
        raw_blocks: List[np.ndarray] = []
        obs_blocks: List[pd.DataFrame] = []

        for sample_id, matrix in matrices.items():
            keep = self.downsample_indices(len(matrix), sampling_size, rng)
            sub = matrix.iloc[keep]
            result.sampled_counts[sample_id] = len(sub)
            if len(sub) < len(matrix):
                self.logger.debug(
                    "Sample %s: kept %d of %d cells", sample_id, len(sub), len(matrix)
                )

            expr_blocks.append(sub[markers].to_numpy(dtype=np.float32))

            if cfg.keep_raw_layer and raw_matrices and sample_id in raw_matrices:
                raw = raw_matrices[sample_id].iloc[keep]
                raw_blocks.append(raw[markers].to_numpy(dtype=np.float32))

            obs = pd.DataFrame(
                index=pd.Index([f"{sample_id}_{cell}" for cell in sub.index])
            )
            obs["sample_id"] = sample_id
            for key, value in sample_metadata.get(sample_id, {}).items():
                if key == "sample_id":
                    continue
                obs[key] = value
            obs_blocks.append(obs)

        obs_df = pd.concat(obs_blocks)
        obs_df.index.name = None
        obs_df["sample_id"] = pd.Categorical(
            obs_df["sample_id"], categories=list(matrices.keys())
        )
        if "stage" in obs_df.columns:
            stage_values = obs_df["stage"].astype(str)
            stage_categories = list(dict.fromkeys(stage_values))
            obs_df["stage"] = pd.Categorical(stage_values, categories=stage_categories)

        var_df = pd.DataFrame(index=pd.Index(markers))
        adata = ad.AnnData(X=np.vstack(expr_blocks), obs=obs_df, var=var_df)
        adata.obs_names_make_unique()

        if raw_blocks and len(raw_blocks) == len(expr_blocks):
            adata.layers["raw"] = np.vstack(raw_blocks)

        result.adata = adata
        result.n_cells = adata.n_obs
        result.n_samples = len(matrices)
        return result
