"""Pytest configuration and shared fixtures for CytoTraj tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_trajectory_adata,
    write_sample_registry,
)


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def trajectory_adata():
    """Clustered AnnData along a two-branch trajectory (7 clusters x 30 cells)."""
    return create_trajectory_adata(n_per_cluster=30)


@pytest.fixture
def small_trajectory_adata():
    """Smaller trajectory AnnData for quick tests."""
    return create_trajectory_adata(n_per_cluster=12)


@pytest.fixture
def path_adata():
    """Trajectory AnnData with cells spread along the tree segments."""
    return create_trajectory_adata(n_per_cluster=30, noise=0.15, continuous=True)


@pytest.fixture
def embedded_adata():
    """Trajectory AnnData with X_pca and X_tsne already present."""
    return create_trajectory_adata(n_per_cluster=20, include_embeddings=True)


@pytest.fixture
def unclustered_adata():
    """Trajectory AnnData without cluster assignments."""
    adata = create_trajectory_adata(n_per_cluster=25)
    del adata.obs["cluster_id"]
    return adata


# ============================================================================
# File Fixtures
# ============================================================================


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def sample_registry(tmp_path: Path) -> Path:
    """Registry CSV with four samples (two stages) and their matrices."""
    return write_sample_registry(tmp_path / "data")


@pytest.fixture
def expression_csv(tmp_path: Path) -> Path:
    """A single expression matrix CSV with a cell_id column."""
    df = pd.DataFrame(
        {
            "cell_id": ["a", "b", "c"],
            "CD3": [1.0, 2.0, 3.0],
            "CD19": [0.0, 5.0, np.nan],
            "Time": [10, 20, 30],
        }
    )
    path = tmp_path / "matrix.csv"
    df.to_csv(path, index=False)
    return path


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_pipeline_config(tmp_path) -> Path:
    """Pipeline configuration with preprocess -> cluster -> trajectory."""
    import yaml

    config = {
        "pipeline": {
            "name": "Test Pipeline",
            "version": "1.0",
        },
        "global": {
            "output_dir": str(tmp_path / "output"),
            "registry": str(tmp_path / "data" / "samples.csv"),
        },
        "stages": {
            "preprocess": {
                "name": "Preprocessing",
                "kind": "preprocess",
                "inputs": {"registry": "{global.registry}"},
                "outputs": {"dir": "{global.output_dir}/preprocess"},
            },
            "cluster": {
                "name": "Clustering",
                "kind": "cluster",
                "depends_on": ["preprocess"],
                "inputs": {"adata": "{stages.preprocess.outputs.dir}/merged.h5ad"},
                "outputs": {"dir": "{global.output_dir}/cluster"},
                "params": {"clustering": {"method": "kmeans", "k": 4}},
            },
            "trajectory": {
                "name": "Trajectory",
                "kind": "trajectory",
                "depends_on": ["cluster"],
                "inputs": {"adata": "{stages.cluster.outputs.dir}/clustered.h5ad"},
                "outputs": {"dir": "{global.output_dir}/trajectory"},
                "params": {
                    "stage_order": ["D0", "D2"],
                    "knn": {"knn": 10},
                    "walk": {"walks_per_root": 2, "max_steps": 200},
                },
            },
        },
    }

    path = tmp_path / "pipeline.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
