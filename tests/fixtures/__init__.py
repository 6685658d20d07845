"""Test fixtures for CytoTraj.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    MARKERS,
    STAGE_ORDER,
    TRAJECTORY_CENTERS,
    TRAJECTORY_PARENTS,
    TRAJECTORY_STAGES,
    create_sample_matrix,
    create_trajectory_adata,
    write_sample_registry,
)

__all__ = [
    "MARKERS",
    "STAGE_ORDER",
    "TRAJECTORY_CENTERS",
    "TRAJECTORY_PARENTS",
    "TRAJECTORY_STAGES",
    "create_sample_matrix",
    "create_trajectory_adata",
    "write_sample_registry",
]
