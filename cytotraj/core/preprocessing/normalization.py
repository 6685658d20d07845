"""Intensity transformation for cytometry expression values.

Provides the variance-stabilizing transforms commonly applied to flow
and mass cytometry intensities before clustering.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .config import NormalizationConfig


@dataclass
class TransformSpec:
    """Registered variance stabilization transform.

    Attributes
    ----------
    name : str
        Transform name
    label : str
        Human-readable label
    """

    name: str
    label: str


TRANSFORMS: Dict[str, TransformSpec] = {
    "none": TransformSpec("none", "raw"),
    "log1p": TransformSpec("log1p", "log1p"),
    "arcsinh": TransformSpec("arcsinh", "asinh(x/cofactor)"),
    "cytofAsinh": TransformSpec("cytofAsinh", "asinh(max(x-1, 0)/5)"),
}


@dataclass
class NormalizationResult:
    """Result from transforming a single sample.

    Attributes
    ----------
    sample_id : str
        Sample identifier
    normalized_matrix : pd.DataFrame
        Transformed matrix (same index and columns as the input)
    transform : str
        Transform label applied
    """

    sample_id: str
    normalized_matrix: Optional[pd.DataFrame] = None
    transform: str = ""


class Normalizer:
    """Per-sample intensity transformer.

    Parameters
    ----------
    config : NormalizationConfig
        Normalization configuration

    Example
    -------
    >>> from cytotraj.core.preprocessing import Normalizer, NormalizationConfig
    >>> normalizer = Normalizer(NormalizationConfig(transform="arcsinh", cofactor=150))
    >>> result = normalizer.normalize_sample(matrix, "D0_rep1")
    """

    def __init__(self, config: Optional[NormalizationConfig] = None):
        self.config = config or NormalizationConfig()

    @staticmethod
    def apply_transform(
        values: np.ndarray,
        transform: str,
        cofactor: float = 5.0,
    ) -> np.ndarray:
        """Apply variance stabilization transform.

        Parameters
        ----------
        values : np.ndarray
            Raw intensity values
        transform : str
            Transform name: 'none', 'log1p', 'arcsinh', 'cytofAsinh'
        cofactor : float
            Cofactor for 'arcsinh'

        Returns
        -------
        np.ndarray
            Transformed values
        """
        values = np.asarray(values, dtype=float)

        if transform == "none":
            return values
        elif transform == "log1p":
            return np.log1p(np.maximum(values, 0))
        elif transform == "arcsinh":
            if cofactor <= 0:
                raise ValueError(f"cofactor must be positive, got {cofactor}")
            return np.arcsinh(values / cofactor)
        elif transform == "cytofAsinh":
            return np.arcsinh(np.maximum(values - 1.0, 0.0) / 5.0)
        else:
            raise ValueError(f"Unknown transform: {transform}")

    def normalize_sample(
        self,
        matrix: pd.DataFrame,
        sample_id: str,
        transform: Optional[str] = None,
        cofactor: Optional[float] = None,
    ) -> NormalizationResult:
        """Transform all marker columns of one sample.

        Parameters
        ----------
        matrix : pd.DataFrame
            Cells x markers intensity matrix
        sample_id : str
            Sample identifier
        transform : str, optional
            Transform to apply (default from config)
        cofactor : float, optional
            Arcsinh cofactor (default from config)

        Returns
        -------
        NormalizationResult
            Result with the transformed matrix
        """
        transform = transform or self.config.transform
        cofactor = cofactor if cofactor is not None else self.config.cofactor
        if transform not in TRANSFORMS:
            raise ValueError(f"Unknown transform: {transform}")

        values = self.apply_transform(matrix.to_numpy(dtype=float), transform, cofactor)
        normalized = pd.DataFrame(values, index=matrix.index, columns=matrix.columns)
        return NormalizationResult(
            sample_id=sample_id,
            normalized_matrix=normalized,
            transform=TRANSFORMS[transform].label,
        )
