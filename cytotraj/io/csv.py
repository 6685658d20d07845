"""CSV I/O utilities for CytoTraj.

Provides loading of the sample registry and per-sample expression
matrices, plus small output helpers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_REGISTRY_COLUMNS = ["sample_id", "matrix_path", "stage"]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def _resolve_path(value: str, base: Path) -> Path:
    """Resolve a path relative to a base directory."""
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = (base / candidate).resolve()
    return candidate


def load_sample_registry(
    path: PathLike,
    required_columns: Optional[Sequence[str]] = None,
    path_columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Load the sample registry CSV.

    The registry has one row per sample with at least a sample ID, the
    path of its expression matrix and its stage label. Any further columns
    are carried into ``adata.obs`` by the merge step.

    Parameters
    ----------
    path : PathLike
        Path to registry CSV file.
    required_columns : Sequence[str], optional
        Required column names. Defaults to DEFAULT_REGISTRY_COLUMNS.
    path_columns : Sequence[str], optional
        Columns holding file paths, resolved relative to the registry
        location. Defaults to ``["matrix_path"]``.

    Returns
    -------
    pd.DataFrame
        Registry with string sample IDs and absolute matrix paths.

    Raises
    ------
    FileNotFoundError
        If the registry does not exist.
    ValueError
        If required columns are missing or sample IDs are duplicated.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Sample registry not found: {csv_path}")
    df = pd.read_csv(csv_path)

    required = list(required_columns or DEFAULT_REGISTRY_COLUMNS)
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"Sample registry missing columns: {missing}")

    id_col = required[0]
    df[id_col] = df[id_col].astype(str)
    duplicated = df[id_col][df[id_col].duplicated()].tolist()
    if duplicated:
        raise ValueError(f"Duplicate sample IDs in registry: {duplicated}")

    base_dir = csv_path.parent
    for col in path_columns or ["matrix_path"]:
        if col in df.columns:
            df[col] = df[col].apply(lambda p: str(_resolve_path(str(p), base_dir)))

    return df


def load_expression_matrix(
    path: PathLike,
    id_column: Optional[str] = "cell_id",
    drop_columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Read a cell-by-marker expression matrix.

    Parameters
    ----------
    path : PathLike
        Path to matrix CSV file.
    id_column : str, optional
        Column holding cell IDs. If present it becomes the (string) index;
        otherwise cells are numbered from 0.
    drop_columns : Sequence[str], optional
        Columns to drop before returning.

    Returns
    -------
    pd.DataFrame
        Cells x columns table.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Expression matrix not found: {csv_path}")
    df = pd.read_csv(csv_path)

    cols_to_drop = [c for c in (drop_columns or []) if c in df.columns]
    if cols_to_drop:
        df = df.drop(columns=cols_to_drop)

    if id_column and id_column in df.columns:
        df[id_column] = df[id_column].astype(str)
        df = df.set_index(id_column)
    else:
        df.index = pd.Index([str(i) for i in range(len(df))])
    df.index.name = "cell"
    return df


def marker_columns(
    df: pd.DataFrame,
    exclude: Optional[Sequence[str]] = None,
) -> List[str]:
    """Return the marker columns of an expression matrix.

    Parameters
    ----------
    df : pd.DataFrame
        Expression matrix as returned by load_expression_matrix.
    exclude : Sequence[str], optional
        Columns that are never markers (e.g. acquisition time).

    Returns
    -------
    List[str]
        Column names not in ``exclude``.
    """
    excluded = set(exclude or [])
    return [str(col) for col in df.columns if col not in excluded]
