"""Statistical utilities for CytoTraj.

Provides value rescaling, column standardization and the agreement
between pseudotime and known stage labels.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.stats import spearmanr

ArrayLike = Union[Iterable[float], np.ndarray]


def _to_clean_array(values: ArrayLike) -> np.ndarray:
    """Convert input to clean numpy array, removing non-finite values.

    Parameters
    ----------
    values : ArrayLike
        Input values (list, iterable, or array).

    Returns
    -------
    np.ndarray
        Clean array with only finite values.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr
    return arr[np.isfinite(arr)]


def scale_to_max(values: ArrayLike) -> np.ndarray:
    """Divide values by their largest finite value.

    Non-finite inputs become NaN. If the largest finite value is zero the
    finite entries are returned unchanged (all zeros for non-negative data).

    Parameters
    ----------
    values : ArrayLike
        Input values, expected non-negative.

    Returns
    -------
    np.ndarray
        Scaled values in [0, 1] for non-negative input.
    """
    arr = np.asarray(list(values), dtype=float)
    result = np.full_like(arr, np.nan, dtype=float)
    mask = np.isfinite(arr)
    clean = _to_clean_array(arr)
    if clean.size == 0:
        return result

    top = float(clean.max())
    if top > 0:
        result[mask] = arr[mask] / top
    else:
        result[mask] = arr[mask]
    return result


def standardize_columns(
    matrix: np.ndarray,
    clip: Optional[float] = None,
) -> np.ndarray:
    """Z-score each column of a matrix, optionally clipping the result.

    Constant columns map to zero.

    Parameters
    ----------
    matrix : np.ndarray
        Cells x markers matrix.
    clip : float, optional
        Clip absolute z-scores to this value.

    Returns
    -------
    np.ndarray
        Standardized float64 matrix.
    """
    values = np.asarray(matrix, dtype=float)
    mean = values.mean(axis=0)
    std = values.std(axis=0)
    std[std == 0] = 1.0
    z = (values - mean) / std
    if clip is not None:
        z = np.clip(z, -clip, clip)
    return z


def stage_concordance(
    pseudotime: ArrayLike,
    stages: Sequence[str],
    stage_order: Sequence[str],
) -> float:
    """Spearman correlation between pseudotime and ordered stage labels.

    Cells whose stage is not in ``stage_order`` or whose pseudotime is not
    finite are ignored.

    Parameters
    ----------
    pseudotime : ArrayLike
        Per-cell pseudotime.
    stages : Sequence[str]
        Per-cell stage labels.
    stage_order : Sequence[str]
        Stage labels from earliest to latest.

    Returns
    -------
    float
        Spearman rho. NaN if fewer than two usable cells or only one
        distinct stage remains.
    """
    rank = {str(stage): i for i, stage in enumerate(stage_order)}
    pt = np.asarray(list(pseudotime), dtype=float)
    ordinal = pd.Series([str(s) for s in stages]).map(rank).to_numpy(dtype=float)

    mask = np.isfinite(pt) & np.isfinite(ordinal)
    if mask.sum() < 2 or np.unique(ordinal[mask]).size < 2:
        return float("nan")
    rho, _ = spearmanr(pt[mask], ordinal[mask])
    return float(rho)
