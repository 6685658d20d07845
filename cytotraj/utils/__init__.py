"""Utility functions for CytoTraj.

Provides statistical and label helpers shared across the core modules.
"""

from .labels import (
    natural_sort_key,
    natural_sorted,
)
from .stats import (
    scale_to_max,
    standardize_columns,
    stage_concordance,
)

__all__ = [
    "natural_sort_key",
    "natural_sorted",
    "scale_to_max",
    "standardize_columns",
    "stage_concordance",
]
