"""Configuration classes for preprocessing.

All preprocessing parameters are configurable via YAML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class LoaderConfig:
    """Configuration for sample loading.

    Attributes
    ----------
    cell_id_col : str
        Matrix column holding cell identifiers (used as index if present)
    sample_id_col : str
        Registry column with sample identifiers
    stage_col : str
        Registry column with the stage label of each sample
    matrix_path_col : str
        Registry column with the expression matrix path
    markers : List[str], optional
        Explicit marker list. If None, all non-excluded columns are markers.
    exclude_columns : List[str]
        Matrix columns never treated as markers
    """

    cell_id_col: str = "cell_id"
    sample_id_col: str = "sample_id"
    stage_col: str = "stage"
    matrix_path_col: str = "matrix_path"
    markers: Optional[List[str]] = None
    exclude_columns: List[str] = field(
        default_factory=lambda: ["Time", "Event_length", "event_length"]
    )


@dataclass
class NormalizationConfig:
    """Configuration for intensity transformation.

    Attributes
    ----------
    transform : str
        One of none, log1p, arcsinh, cytofAsinh
    cofactor : float
        Cofactor for the arcsinh transform (5 for mass, 150 for flow)
    """

    transform: str = "cytofAsinh"
    cofactor: float = 5.0


@dataclass
class MergeConfig:
    """Configuration for sample merging.

    Attributes
    ----------
    sampling_size : int
        Maximum cells kept per sample (0 keeps all)
    keep_raw_layer : bool
        Store untransformed values in layers["raw"]
    random_seed : int
        Random seed for downsampling
    """

    sampling_size: int = 0
    keep_raw_layer: bool = True
    random_seed: int = 42


@dataclass
class PreprocessingConfig:
    """Master configuration for preprocessing.

    Attributes
    ----------
    loader : LoaderConfig
        Loading configuration
    normalization : NormalizationConfig
        Transform configuration
    merge : MergeConfig
        Merge configuration
    """

    loader: LoaderConfig = field(default_factory=LoaderConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingConfig":
        """Build configuration from a (possibly partial) dictionary."""
        return cls(
            loader=LoaderConfig(**data.get("loader", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
            merge=MergeConfig(**data.get("merge", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "loader": {
                "cell_id_col": self.loader.cell_id_col,
                "sample_id_col": self.loader.sample_id_col,
                "stage_col": self.loader.stage_col,
                "matrix_path_col": self.loader.matrix_path_col,
                "markers": list(self.loader.markers or []),
                "exclude_columns": list(self.loader.exclude_columns),
            },
            "normalization": {
                "transform": self.normalization.transform,
                "cofactor": self.normalization.cofactor,
            },
            "merge": {
                "sampling_size": self.merge.sampling_size,
                "keep_raw_layer": self.merge.keep_raw_layer,
                "random_seed": self.merge.random_seed,
            },
        }
