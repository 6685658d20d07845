"""I/O utilities for CytoTraj.

Provides logging setup, structured run records, and CSV I/O.
"""

from .logging import (
    log_json,
    log_yaml,
    setup_stage_logger,
)
from .csv import (
    ensure_output_dir,
    load_expression_matrix,
    load_sample_registry,
    marker_columns,
    write_dataframe,
)

__all__ = [
    # Logging
    "log_json",
    "log_yaml",
    "setup_stage_logger",
    # CSV I/O
    "ensure_output_dir",
    "load_expression_matrix",
    "load_sample_registry",
    "marker_columns",
    "write_dataframe",
]
