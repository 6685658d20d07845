"""Sample loading with validation.

Loads the sample registry and per-sample expression matrices, collecting
problems as issue strings instead of failing on the first one.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import numpy as np
import pandas as pd

from ...io.csv import load_expression_matrix, load_sample_registry, marker_columns
from .config import LoaderConfig


@dataclass
class LoadResult:
    """Result from loading a single sample.

    Attributes
    ----------
    sample_id : str
        Sample identifier
    stage : str
        Stage label of the sample
    matrix : pd.DataFrame
        Cells x markers matrix (numeric)
    markers : List[str]
        Marker names in matrix column order
    n_cells : int
        Number of cells
    issues : List[str]
        Problems found while loading
    status : str
        'OK' or 'CHECK'
    """

    sample_id: str
    stage: str = ""
    matrix: Optional[pd.DataFrame] = None
    markers: List[str] = field(default_factory=list)
    n_cells: int = 0
    issues: List[str] = field(default_factory=list)
    status: str = "OK"

    @property
    def usable(self) -> bool:
        """True if the matrix loaded and has at least one cell."""
        return self.matrix is not None and self.n_cells > 0 and bool(self.markers)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "sample_id": self.sample_id,
            "stage": self.stage,
            "n_cells": self.n_cells,
            "n_markers": len(self.markers),
            "status": self.status,
            "issues": ";".join(self.issues) if self.issues else "",
        }


class DataLoader:
    """Loader for the sample registry and expression matrices.

    Parameters
    ----------
    config : LoaderConfig
        Loader configuration

    Example
    -------
    >>> from cytotraj.core.preprocessing import DataLoader, LoaderConfig
    >>> loader = DataLoader(LoaderConfig(stage_col="day"))
    >>> registry = loader.load_sample_registry("samples.csv")
    >>> result = loader.load_sample(registry.loc[0, "matrix_path"], "D0_rep1", "D0")
    """

    def __init__(self, config: Optional[LoaderConfig] = None):
        self.config = config or LoaderConfig()

    def load_sample_registry(self, path: Path) -> pd.DataFrame:
        """Load the registry listing samples, matrix paths and stages."""
        cfg = self.config
        df = load_sample_registry(
            path,
            required_columns=[cfg.sample_id_col, cfg.matrix_path_col, cfg.stage_col],
            path_columns=[cfg.matrix_path_col],
        )
        df[cfg.stage_col] = df[cfg.stage_col].astype(str)
        return df

    def load_expression_matrix(self, path: Path) -> pd.DataFrame:
        """Load one matrix and restrict it to marker columns."""
        df = load_expression_matrix(path, id_column=self.config.cell_id_col)
        if self.config.markers:
            missing = [m for m in self.config.markers if m not in df.columns]
            keep = [m for m in self.config.markers if m in df.columns]
            df = df[keep]
            if missing:
                df.attrs["missing_markers"] = missing
        else:
            df = df[marker_columns(df, exclude=self.config.exclude_columns)]
        return df

    def load_sample(
        self,
        matrix_path: Path,
        sample_id: str,
        stage: str = "",
        reference_markers: Optional[Set[str]] = None,
    ) -> LoadResult:
        """Load and validate a single sample.

        Parameters
        ----------
        matrix_path : Path
            Path to the expression matrix CSV
        sample_id : str
            Sample identifier
        stage : str
            Stage label
        reference_markers : Set[str], optional
            Expected marker names for consistency check

        Returns
        -------
        LoadResult
            Loading result with data and validation status
        """
        result = LoadResult(sample_id=sample_id, stage=str(stage))

        try:
            matrix = self.load_expression_matrix(matrix_path)
        except FileNotFoundError:
            result.issues.append("matrix_missing")
            result.status = "CHECK"
            return result
        except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            result.issues.append(f"matrix_error:{e}")
            result.status = "CHECK"
            return result

        if matrix.attrs.get("missing_markers"):
            result.issues.append(
                "missing_markers:" + ",".join(matrix.attrs["missing_markers"])
            )

        non_numeric = [
            c for c in matrix.columns if not pd.api.types.is_numeric_dtype(matrix[c])
        ]
        if non_numeric:
            result.issues.append("non_numeric:" + ",".join(non_numeric))
            matrix = matrix.drop(columns=non_numeric)

        n_nan = int(np.isnan(matrix.to_numpy(dtype=float)).sum()) if matrix.size else 0
        if n_nan > 0:
            result.issues.append(f"nan_values:{n_nan}")
            matrix = matrix.fillna(0.0)

        if len(matrix) == 0:
            result.issues.append("empty_matrix")

        result.matrix = matrix
        result.markers = [str(c) for c in matrix.columns]
        result.n_cells = len(matrix)

        if reference_markers is not None and result.markers:
            present = set(result.markers)
            missing = sorted(reference_markers - present)
            extra = sorted(present - reference_markers)
            if missing:
                result.issues.append("missing_markers:" + ",".join(missing))
            if extra:
                result.issues.append("extra_markers:" + ",".join(extra))

        result.status = "OK" if not result.issues else "CHECK"
        return result

    def load_registry_samples(self, registry: pd.DataFrame) -> List[LoadResult]:
        """Load every sample listed in a registry.

        The first usable sample's markers are the reference for the
        consistency check of the others.
        """
        cfg = self.config
        results: List[LoadResult] = []
        reference: Optional[Set[str]] = None
        for _, row in registry.iterrows():
            result = self.load_sample(
                Path(row[cfg.matrix_path_col]),
                sample_id=str(row[cfg.sample_id_col]),
                stage=str(row[cfg.stage_col]),
                reference_markers=reference,
            )
            if reference is None and result.usable:
                reference = set(result.markers)
            results.append(result)
        return results
